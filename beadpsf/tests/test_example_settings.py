from pathlib import Path

import pytest
import yaml

from pydantic import ValidationError

from beadpsf.cli.utils import model_to_yaml, yaml_to_model
from beadpsf.settings import MeasurePSFSettings

settings_files_dir = (Path(__file__) / "../../../settings").resolve()

example_settings_params = [
    ("example_measure_psf_settings.yml", MeasurePSFSettings),
]


def test_all_example_settings_tested():
    num_settings_files = len(
        list(settings_files_dir.glob("*.yml")) + list(settings_files_dir.glob("*.yaml"))
    )
    assert num_settings_files == len(example_settings_params), (
        "Not all example settings files are tested. "
        f"Found {num_settings_files} files, but {len(example_settings_params)} are tested."
    )


@pytest.mark.parametrize("path,settings_cls", example_settings_params)
def test_example_settings(path, settings_cls):
    with open(settings_files_dir / path) as file:
        yaml_settings = yaml.safe_load(file)

    settings_cls(**yaml_settings)


def test_measure_psf_settings():
    # Test defaults
    settings = MeasurePSFSettings()
    assert settings.use_max_projection_in_z
    assert settings.z_fit_components == 1
    assert settings.crop_window_size is None

    # Test extra parameter
    with pytest.raises(ValidationError):
        MeasurePSFSettings(typo_param="test")

    # Test non-positive values
    with pytest.raises(ValidationError):
        MeasurePSFSettings(z_fit_components=0)
    with pytest.raises(ValidationError):
        MeasurePSFSettings(median_filter_size=-1)

    # Test downsample factor range
    with pytest.raises(ValidationError):
        MeasurePSFSettings(downsample_factor=2)


def test_crop_window_size():
    assert MeasurePSFSettings(crop_window_size=False).crop_window_size is None
    assert MeasurePSFSettings(crop_window_size=40).crop_window_size == 40

    with pytest.raises(ValidationError):
        MeasurePSFSettings(crop_window_size=True)
    with pytest.raises(ValidationError):
        MeasurePSFSettings(crop_window_size=0)


def test_yaml_to_model(example_measure_psf_settings):
    settings_path, raw_settings = example_measure_psf_settings

    settings = yaml_to_model(settings_path, MeasurePSFSettings)

    assert settings.crop_window_size == raw_settings["crop_window_size"]
    assert settings.z_fit_components == raw_settings["z_fit_components"]


def test_yaml_to_model_empty_file(tmp_path):
    settings_path = tmp_path / "empty.yml"
    settings_path.touch()

    assert yaml_to_model(settings_path, MeasurePSFSettings) == MeasurePSFSettings()


def test_yaml_to_model_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        yaml_to_model(tmp_path / "missing.yml", MeasurePSFSettings)


def test_model_to_yaml(tmp_path):
    settings = MeasurePSFSettings(z_fit_components=2, crop_window_size=30)
    settings_path = tmp_path / "settings.yml"

    model_to_yaml(settings, settings_path)

    with open(settings_path) as file:
        raw_settings = yaml.safe_load(file)
    assert raw_settings["z_fit_components"] == 2
    assert yaml_to_model(settings_path, MeasurePSFSettings) == settings


def test_model_to_yaml_skips_unset_fields(tmp_path):
    settings_path = tmp_path / "settings.yml"

    model_to_yaml(MeasurePSFSettings(), settings_path)

    with open(settings_path) as file:
        raw_settings = yaml.safe_load(file)
    assert "crop_window_size" not in raw_settings
    assert yaml_to_model(settings_path, MeasurePSFSettings).crop_window_size is None
