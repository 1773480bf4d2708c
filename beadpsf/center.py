import logging

from typing import Optional

import numpy as np

from pydantic import BaseModel, ConfigDict
from scipy.ndimage import maximum_filter

from beadpsf.errors import FittingError
from beadpsf.fit import fit_gaussian
from beadpsf.preprocess import downsample_and_smooth, subtract_profile_baseline

_logger = logging.getLogger(__name__)

# scales the median absolute deviation to a standard deviation for Gaussian noise
MAD_TO_STD = 1.4826


class LateralCenter(BaseModel):
    x: int
    y: int
    bad_fit: bool = False
    model_config = ConfigDict(frozen=True)


def find_axial_center(
    zyx_data: np.ndarray,
    downsample_factor: float = 0.25,
    smoothing_kernel_size: int = 2,
    max_iterations: int = 4000,
) -> int:
    """
    Estimate the Z slice that contains the center of the PSF.

    Each plane is downsampled and smoothed, its maximum is taken, and a
    single Gaussian is fit to the resulting Z intensity curve.

    Parameters
    ----------
    zyx_data : np.ndarray
        Baseline-subtracted 3D array with shape (Z, Y, X).
    downsample_factor : float
        Linear resampling factor applied to each plane, by default 0.25.
    smoothing_kernel_size : int
        Box kernel size used after downsampling, by default 2.
    max_iterations : int
        Cap on the number of model evaluations of the optimizer.

    Returns
    -------
    int
        0-based index of the in-focus slice.

    Raises
    ------
    FittingError
        If the fit fails or the estimate lies outside the stack.
    """
    num_slices = zyx_data.shape[0]
    small_zyx = downsample_and_smooth(zyx_data, downsample_factor, smoothing_kernel_size)
    z_profile = small_zyx.max(axis=(1, 2))

    fit = fit_gaussian(z_profile, scale=1.0, num_components=1, max_iterations=max_iterations)
    z_center = int(np.round(fit.center))

    if not 0 <= z_center < num_slices:
        raise FittingError(
            f"PSF center in Z estimated as slice {z_center}. That is out of range. "
            f"PSF stack has {num_slices} slices"
        )

    _logger.debug(f"PSF center in Z at slice {z_center} (fit center {fit.center:.3f})")
    return z_center


def _secondary_peak_height(
    yx_plane: np.ndarray, peak_y: int, peak_x: int, window_size: int
) -> Optional[float]:
    """Brightest local maximum outside the `window_size` square around the main peak."""
    is_local_max = yx_plane == maximum_filter(yx_plane, size=window_size, mode="nearest")

    half_window = window_size // 2
    is_local_max[
        max(0, peak_y - half_window) : peak_y + half_window + 1,
        max(0, peak_x - half_window) : peak_x + half_window + 1,
    ] = False

    if not is_local_max.any():
        return None
    return float(yx_plane[is_local_max].max())


def find_lateral_center(
    yx_plane: np.ndarray,
    peak_snr_threshold: float = 5.0,
    peak_dominance_ratio: float = 0.5,
    dominance_window_size: int = 9,
    max_iterations: int = 4000,
    check_peak: bool = True,
) -> LateralCenter:
    """
    Find the bead center in a single plane.

    The brightest pixel gives a first estimate, which is rejected when it does
    not stand out of the background by `peak_snr_threshold` robust standard
    deviations, or when another local maximum reaches `peak_dominance_ratio`
    of its height above background. Otherwise the estimate is refined by
    Gaussian fits to the maximum profiles along X and Y.

    Parameters
    ----------
    yx_plane : np.ndarray
        2D array with shape (Y, X).
    peak_snr_threshold : float
        Minimum peak height above the plane median, in units of the noise
        estimated from the median absolute deviation, by default 5.0.
    peak_dominance_ratio : float
        Height of the second brightest local maximum, relative to the peak,
        at which the plane counts as holding several beads, by default 0.5.
    dominance_window_size : int
        Size of the square neighborhood used to find local maxima. Maxima
        inside this window around the peak belong to the same bead.
    max_iterations : int
        Cap on the number of model evaluations of the optimizer.
    check_peak : bool
        Apply the noise and dominance tests, by default True. Disable when the
        plane was already accepted and only the refinement should run, e.g.
        on a crop around the bead where the background is not sampled.

    Returns
    -------
    LateralCenter
        Pixel coordinates of the bead and a `bad_fit` flag. When `bad_fit` is
        set the coordinates are the peak location, or the plane center if the
        plane has no peak at all.
    """
    yx_plane = np.asarray(yx_plane, dtype=np.float64)
    shape_Y, shape_X = yx_plane.shape
    peak_y, peak_x = (int(i) for i in np.unravel_index(np.argmax(yx_plane), yx_plane.shape))

    background = np.median(yx_plane)
    prominence = yx_plane[peak_y, peak_x] - background

    if not prominence > 0:
        _logger.warning("No peak found in the in-focus plane, using the plane center")
        return LateralCenter(x=shape_X // 2, y=shape_Y // 2, bad_fit=True)

    if check_peak:
        noise = MAD_TO_STD * np.median(np.abs(yx_plane - background))
        if prominence <= peak_snr_threshold * noise:
            _logger.warning(
                f"Peak at (x={peak_x}, y={peak_y}) is only {prominence / noise:.1f} noise "
                f"levels above background"
            )
            return LateralCenter(x=peak_x, y=peak_y, bad_fit=True)

        secondary_height = _secondary_peak_height(
            yx_plane, peak_y, peak_x, dominance_window_size
        )
        if (
            secondary_height is not None
            and secondary_height - background >= peak_dominance_ratio * prominence
        ):
            _logger.warning(
                f"Peak at (x={peak_x}, y={peak_y}) is not dominant, a second maximum reaches "
                f"{(secondary_height - background) / prominence:.0%} of its height"
            )
            return LateralCenter(x=peak_x, y=peak_y, bad_fit=True)

    try:
        x_fit, y_fit = (
            fit_gaussian(
                subtract_profile_baseline(yx_plane.max(axis=axis)),
                max_iterations=max_iterations,
            )
            for axis in (0, 1)
        )
    except FittingError as e:
        _logger.warning(f"Could not refine the lateral PSF center: {e}")
        return LateralCenter(x=peak_x, y=peak_y, bad_fit=True)

    x_center = int(np.round(x_fit.center))
    y_center = int(np.round(y_fit.center))
    if not (0 <= x_center < shape_X and 0 <= y_center < shape_Y):
        _logger.warning(f"Lateral fit center (x={x_center}, y={y_center}) is outside the plane")
        return LateralCenter(x=peak_x, y=peak_y, bad_fit=True)

    return LateralCenter(x=x_center, y=y_center)


def crop_to_bead(
    zyx_data: np.ndarray,
    center: LateralCenter,
    window_size: int,
) -> tuple[np.ndarray, tuple[int, int]]:
    """
    Crop a stack to a square window centered on the bead.

    The window spans `window_size / 2` pixels on each side of the center and
    is clipped to the plane, so each spatial size is at most `window_size + 1`.

    Returns
    -------
    tuple[np.ndarray, tuple[int, int]]
        Cropped copy of the stack and the (y, x) origin of the crop.
    """
    if window_size <= 0:
        raise ValueError(f"window_size must be positive, got {window_size}")

    _, shape_Y, shape_X = zyx_data.shape
    half_window = window_size / 2

    y_start = max(0, int(np.ceil(center.y - half_window)))
    y_stop = min(shape_Y, int(np.floor(center.y + half_window)) + 1)
    x_start = max(0, int(np.ceil(center.x - half_window)))
    x_stop = min(shape_X, int(np.floor(center.x + half_window)) + 1)

    cropped = zyx_data[:, y_start:y_stop, x_start:x_stop].copy()
    return cropped, (y_start, x_start)
