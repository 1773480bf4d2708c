import numpy as np
import pytest
import yaml

from iohub.ngff import open_ome_zarr
from iohub.ngff.models import TransformationMeta

from beadpsf.synthetic import make_gaussian_bead

# These fixtures return paired
# - paths for testing CLIs
# - objects for testing underlying functions


@pytest.fixture(scope="function")
def bead_stack():
    """
    64 x 64 x 30 stack with a single Gaussian bead at (x, y, z) = (32, 32, 15),
    sigma 3 px laterally and 2 slices axially
    """
    return make_gaussian_bead(
        shape=(30, 64, 64), center=(15, 32, 32), sigma=(2.0, 3.0, 3.0), amplitude=1000.0
    )


@pytest.fixture(scope="function")
def noisy_bead_stack():
    return make_gaussian_bead(
        shape=(30, 64, 64),
        center=(15, 32, 32),
        sigma=(2.0, 3.0, 3.0),
        amplitude=1000.0,
        noise_std=5.0,
        seed=0,
    )


@pytest.fixture(scope="function")
def example_measure_psf_settings(tmp_path):
    settings = {
        "use_max_projection_in_z": True,
        "z_fit_components": 1,
        "median_filter_size": 1,
        "crop_window_size": 40,
    }
    settings_path = tmp_path / "measure_psf_settings.yml"
    with open(settings_path, "w") as file:
        yaml.dump(settings, file)
    yield settings_path, settings


@pytest.fixture(scope="function")
def create_bead_position():
    """
    Factory fixture that writes a ZYX stack into a single-position HCS plate

    Returns a function that returns the path of the position
    """

    def _create_position(tmp_path, zyx_data, scale_zyx=(0.5, 0.05, 0.05)):
        plate_path = tmp_path / "bead.zarr"
        plate_dataset = open_ome_zarr(
            plate_path,
            layout="hcs",
            mode="w",
            channel_names=["GFP"],
        )
        position = plate_dataset.create_position("A", "1", "0")
        position.create_image(
            "0",
            zyx_data[None, None].astype(np.float32),
            transform=[TransformationMeta(type="scale", scale=[1.0, 1.0, *scale_zyx])],
        )
        plate_dataset.close()

        return plate_path / "A" / "1" / "0"

    return _create_position
