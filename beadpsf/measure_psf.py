import logging
import math
import warnings

from pathlib import Path
from typing import Optional

import click
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from iohub.ngff import open_ome_zarr
from numpy.typing import ArrayLike
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from beadpsf.center import LateralCenter, crop_to_bead, find_axial_center, find_lateral_center
from beadpsf.cli.parsing import config_filepath, input_position_dirpaths, output_dirpath
from beadpsf.cli.printing import echo_psf_measurement, echo_settings
from beadpsf.cli.utils import yaml_to_model
from beadpsf.cross_sections import extract_cross_sections
from beadpsf.errors import FittingError, InputError
from beadpsf.fit import GaussianFit, IntensityProfile, fit_gaussian
from beadpsf.preprocess import median_filter_planes, preprocess_stack, validate_stack
from beadpsf.settings import MeasurePSFSettings

_logger = logging.getLogger(__name__)


def _read_only(array: ArrayLike) -> np.ndarray:
    array = np.array(array, dtype=np.float64)
    array.setflags(write=False)
    return array


class CenterEstimate(BaseModel):
    x: int
    y: int
    z: int
    bad_fit: bool = False
    model_config = ConfigDict(frozen=True)


class AxisMeasurement(BaseModel):
    """Profile along one axis with its Gaussian fit, or the reason the fit failed."""

    profile: IntensityProfile
    fit: Optional[GaussianFit] = None
    fwhm: float = math.nan
    component_fwhms: tuple[float, ...] = ()
    fit_error: Optional[str] = None
    model_config = ConfigDict(frozen=True)

    @property
    def bad_fit(self) -> bool:
        return self.fit is None


class SliceView(BaseModel):
    index: int
    plane: np.ndarray
    offset_um: float
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @property
    def title(self) -> str:
        return f"Slice #{self.index} {self.offset_um:0.2f} um"


class SliceViewer:
    """
    Read-only access to the planes of a PSF stack for depth browsing.

    Parameters
    ----------
    zyx_data : np.ndarray
        3D array with shape (Z, Y, X).
    center_slice : int
        In-focus slice that offsets are measured from.
    mics_per_pixel_z : float
        Distance between adjacent slices in microns.
    """

    def __init__(self, zyx_data: np.ndarray, center_slice: int, mics_per_pixel_z: float):
        self._zyx_data = _read_only(zyx_data)
        self.center_slice = center_slice
        self.mics_per_pixel_z = mics_per_pixel_z

    @property
    def num_slices(self) -> int:
        return self._zyx_data.shape[0]

    @property
    def contrast_limits(self) -> tuple[float, float]:
        # fixed across slices so planes can be compared by eye
        return float(self._zyx_data.min()), float(self._zyx_data.max())

    def get_slice(self, index: int) -> SliceView:
        if not 0 <= index < self.num_slices:
            raise IndexError(
                f"Slice {index} is out of range for a stack with {self.num_slices} slices"
            )
        return SliceView(
            index=index,
            plane=self._zyx_data[index],
            offset_um=(self.center_slice - index) * self.mics_per_pixel_z,
        )


class AnalysisResult(BaseModel):
    center: CenterEstimate
    x: AxisMeasurement
    y: AxisMeasurement
    zx: AxisMeasurement
    zy: AxisMeasurement
    zx_image: np.ndarray
    zy_image: np.ndarray
    focal_plane: np.ndarray
    stack: np.ndarray
    crop_origin: tuple[int, int] = (0, 0)
    mics_per_pixel_xy: float
    mics_per_pixel_z: float
    settings: MeasurePSFSettings
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @field_validator("zx_image", "zy_image", "focal_plane", "stack", mode="before")
    @classmethod
    def make_read_only(cls, v):
        return _read_only(v)

    def slice_viewer(self) -> SliceViewer:
        return SliceViewer(self.stack, self.center.z, self.mics_per_pixel_z)

    def summary(self) -> dict:
        summary = {
            "center_x": self.center.x,
            "center_y": self.center.y,
            "center_z": self.center.z,
            "lateral_bad_fit": self.center.bad_fit,
            "crop_origin_y": self.crop_origin[0],
            "crop_origin_x": self.crop_origin[1],
            "mics_per_pixel_xy": self.mics_per_pixel_xy,
            "mics_per_pixel_z": self.mics_per_pixel_z,
        }
        for axis in ("x", "y", "zx", "zy"):
            measurement = getattr(self, axis)
            summary[f"{axis}_fwhm"] = measurement.fwhm
            summary[f"{axis}_mu"] = math.nan if measurement.bad_fit else measurement.fit.center
            summary[f"{axis}_bad_fit"] = measurement.bad_fit
        return summary


def _check_calibration(value: float, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, np.number)):
        raise InputError(f"{name} must be a number, got {value!r}")
    if not (math.isfinite(value) and value > 0):
        raise InputError(f"{name} must be a positive number, got {value}")
    return float(value)


def _measure_axis(
    profile: IntensityProfile,
    scale: float,
    num_components: int,
    max_iterations: int,
    label: str,
) -> AxisMeasurement:
    try:
        fit = fit_gaussian(profile.values, scale, num_components, max_iterations)
    except FittingError as e:
        _logger.warning(f"Fit of the {label} profile failed: {e}")
        return AxisMeasurement(profile=profile, fit_error=str(e))

    return AxisMeasurement(
        profile=profile,
        fit=fit,
        fwhm=fit.fwhm,
        component_fwhms=fit.component_fwhms,
    )


def measure_psf(
    zyx_data: ArrayLike,
    mics_per_pixel_xy: float,
    mics_per_pixel_z: float,
    settings: Optional[MeasurePSFSettings] = None,
    **settings_kwargs,
) -> AnalysisResult:
    """
    Locate a bead in a PSF stack and measure its FWHM along X, Y and Z.

    Parameters
    ----------
    zyx_data : ArrayLike
        3D array with shape (Z, Y, X), or a sequence of 2D planes. The first
        plane is the one nearest the objective.
    mics_per_pixel_xy : float
        Microns per pixel in X and Y.
    mics_per_pixel_z : float
        Microns between adjacent Z planes.
    settings : MeasurePSFSettings, optional
        Analysis settings. If omitted, they are built from `settings_kwargs`.
    **settings_kwargs
        Fields of MeasurePSFSettings, e.g. `z_fit_components=2`.

    Returns
    -------
    AnalysisResult
        Centers, profiles, fits, FWHM values and Z views. Failed profile fits
        are reported with `fit=None` and `fwhm=nan`.

    Raises
    ------
    InputError
        If the calibration, the stack or the settings are invalid.
    FittingError
        If the in-focus slice cannot be found inside the stack.
    """
    if settings is None:
        try:
            settings = MeasurePSFSettings(**settings_kwargs)
        except ValidationError as e:
            raise InputError(f"Invalid settings: {e}") from e
    elif settings_kwargs:
        raise InputError("Pass either a settings object or keyword settings, not both")

    mics_per_pixel_xy = _check_calibration(mics_per_pixel_xy, "mics_per_pixel_xy")
    mics_per_pixel_z = _check_calibration(mics_per_pixel_z, "mics_per_pixel_z")
    zyx_data = validate_stack(zyx_data)

    # Step one: find the in-focus slice
    zyx_data = preprocess_stack(zyx_data, settings.median_filter_size)
    z_center = find_axial_center(
        zyx_data,
        downsample_factor=settings.downsample_factor,
        smoothing_kernel_size=settings.smoothing_kernel_size,
        max_iterations=settings.max_iterations,
    )

    # Step two: find the bead in X and Y on that slice
    if settings.median_filter_size == 1:
        yx_plane_for_fit = median_filter_planes(
            zyx_data[z_center][None], settings.lateral_median_filter_size
        )[0]
    else:
        yx_plane_for_fit = zyx_data[z_center]

    lateral_center = find_lateral_center(
        yx_plane_for_fit,
        peak_snr_threshold=settings.peak_snr_threshold,
        peak_dominance_ratio=settings.peak_dominance_ratio,
        dominance_window_size=settings.dominance_window_size,
        max_iterations=settings.max_iterations,
    )

    crop_origin = (0, 0)
    if settings.crop_window_size is not None and not lateral_center.bad_fit:
        zyx_data, crop_origin = crop_to_bead(
            zyx_data, lateral_center, settings.crop_window_size
        )
        y_start, x_start = crop_origin
        yx_plane_for_fit = yx_plane_for_fit[
            y_start : y_start + zyx_data.shape[1], x_start : x_start + zyx_data.shape[2]
        ]
        # the crop is mostly bead, so only the refinement is repeated
        cropped_center = find_lateral_center(
            yx_plane_for_fit, max_iterations=settings.max_iterations, check_peak=False
        )
        if cropped_center.bad_fit:
            cropped_center = LateralCenter(
                x=lateral_center.x - x_start, y=lateral_center.y - y_start
            )
        lateral_center = cropped_center
        _logger.debug(f"Cropped stack to {zyx_data.shape} at origin {crop_origin}")

    center = CenterEstimate(
        x=lateral_center.x,
        y=lateral_center.y,
        z=z_center,
        bad_fit=lateral_center.bad_fit,
    )
    _logger.info(f"PSF center at (x={center.x}, y={center.y}, z={center.z})")

    # Step three: cross-sections and fits
    sections = extract_cross_sections(
        zyx_data,
        z_center,
        LateralCenter(x=center.x, y=center.y, bad_fit=center.bad_fit),
        mics_per_pixel_xy,
        mics_per_pixel_z,
        use_max_projection=settings.use_max_projection_in_z,
        baseline_num_samples=settings.baseline_num_samples,
    )

    measurements = {
        axis: _measure_axis(
            sections[axis],
            scale,
            num_components,
            settings.max_iterations,
            label,
        )
        for axis, scale, num_components, label in (
            ("x", mics_per_pixel_xy, 1, "X"),
            ("y", mics_per_pixel_xy, 1, "Y"),
            ("zx", mics_per_pixel_z, settings.z_fit_components, "Z/X"),
            ("zy", mics_per_pixel_z, settings.z_fit_components, "Z/Y"),
        )
    }

    return AnalysisResult(
        center=center,
        **measurements,
        zx_image=sections["zx_image"],
        zy_image=sections["zy_image"],
        focal_plane=zyx_data[z_center],
        stack=zyx_data,
        crop_origin=crop_origin,
        mics_per_pixel_xy=mics_per_pixel_xy,
        mics_per_pixel_z=mics_per_pixel_z,
        settings=settings,
    )


def _plot_profile_and_fit(ax, measurement: AxisMeasurement, vertical: bool = False):
    positions = measurement.profile.positions
    values = measurement.profile.values
    fine_positions = np.linspace(positions[0], positions[-1], 10 * positions.size)

    curves = [(positions, values, '.k')]
    if not measurement.bad_fit:
        curves.append((fine_positions, measurement.fit.evaluate(fine_positions), '-r'))
    for x, y, style in curves:
        if vertical:
            ax.plot(y, x, style)
        else:
            ax.plot(x, y, style)

    if measurement.bad_fit:
        label = 'FWHM: fit failed'
    else:
        label = f'FWHM: {measurement.fwhm:0.3f} um'
    ax.text(
        0.02, 0.95, label, transform=ax.transAxes, verticalalignment='top', fontsize=8
    )
    if vertical:
        ax.invert_yaxis()
    ax.set_xticks([])
    ax.set_yticks([])


def plot_psf_measurement(result: AnalysisResult, output_path: Path) -> Path:
    """
    Save a figure of the in-focus plane, the cross-sections and the Z views.

    Parameters
    ----------
    result : AnalysisResult
        Output of `measure_psf`.
    output_path : Path
        Path of the image file to write.

    Returns
    -------
    Path
        Path to the saved figure.
    """
    output_path = Path(output_path)
    shape_Y, shape_X = result.focal_plane.shape
    cmap = 'viridis'

    fig = plt.figure(figsize=(10, 10))
    fig.suptitle(f'Image size: {shape_Y} x {shape_X}')

    # in-focus plane with lines where the cross-sections are taken
    ax = fig.add_axes([0.03, 0.07, 0.4, 0.4])
    ax.imshow(result.focal_plane, cmap=cmap)
    ax.axhline(result.center.y, linestyle='--', color='w')
    ax.axvline(result.center.x, linestyle='--', color='w')
    ax.text(
        0.025 * shape_X,
        0.04 * shape_Y,
        f'PSF center at slice #{result.center.z}',
        color='w',
        verticalalignment='top',
    )
    ax.set_xticks([])
    ax.set_yticks([])

    _plot_profile_and_fit(fig.add_axes([0.435, 0.07, 0.1, 0.4]), result.y, vertical=True)
    _plot_profile_and_fit(fig.add_axes([0.03, 0.475, 0.4, 0.1]), result.x)

    ax = fig.add_axes([0.03, 0.6, 0.4, 0.25])
    ax.imshow(result.zx_image, cmap=cmap, aspect='auto')
    ax.text(1, 1, 'PSF in Z/X', color='w', verticalalignment='top')
    ax.set_xticks([])
    ax.set_yticks([])
    _plot_profile_and_fit(fig.add_axes([0.03, 0.85, 0.4, 0.1]), result.zx)

    ax = fig.add_axes([0.56, 0.07, 0.25, 0.4])
    ax.imshow(result.zy_image, cmap=cmap, aspect='auto')
    ax.text(1, 1, 'PSF in Z/Y', color='w', verticalalignment='top')
    ax.set_xticks([])
    ax.set_yticks([])
    _plot_profile_and_fit(fig.add_axes([0.82, 0.07, 0.1, 0.4]), result.zy, vertical=True)

    viewer = result.slice_viewer()
    slice_view = viewer.get_slice(result.center.z)
    ax = fig.add_axes([0.5, 0.55, 0.4, 0.35])
    vmin, vmax = viewer.contrast_limits
    ax.imshow(slice_view.plane, cmap=cmap, vmin=vmin, vmax=vmax)
    ax.set_title(slice_view.title)
    ax.set_xticks([])
    ax.set_yticks([])

    fig.savefig(output_path)
    plt.close(fig)

    return output_path


@click.command("measure-psf")
@input_position_dirpaths()
@config_filepath()
@output_dirpath()
def measure_psf_cli(
    input_position_dirpaths: list[Path],
    config_filepath: Path,
    output_dirpath: Path,
):
    """
    Measure the PSF of a single bead stack and save a figure and a csv summary

    >> beadpsf measure-psf -i ./bead.zarr/0/0/0 -c ./measure_psf_settings.yml -o ./
    """
    if len(input_position_dirpaths) > 1:
        warnings.warn("Only the first position will be measured.")

    settings = yaml_to_model(config_filepath, MeasurePSFSettings)
    echo_settings(settings)

    click.echo("Loading data...")
    with open_ome_zarr(str(input_position_dirpaths[0]), mode="r") as input_dataset:
        zyx_data = np.asarray(input_dataset["0"][0, 0])
        scale_Z, scale_Y, scale_X = input_dataset.scale[-3:]

    if not math.isclose(scale_Y, scale_X):
        click.echo(f"Y and X scales differ ({scale_Y}, {scale_X}), using the X scale")

    click.echo("Measuring PSF...")
    try:
        result = measure_psf(zyx_data, scale_X, scale_Z, settings)
    except (InputError, FittingError) as e:
        raise click.ClickException(str(e)) from e

    output_dirpath.mkdir(parents=True, exist_ok=True)
    pd.DataFrame([result.summary()]).to_csv(output_dirpath / 'psf_measurement.csv', index=False)
    plot_psf_measurement(result, output_dirpath / 'psf_measurement.png')

    echo_psf_measurement(result)


if __name__ == "__main__":
    measure_psf_cli()
