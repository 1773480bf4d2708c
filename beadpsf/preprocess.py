import logging

from typing import Sequence, Union

import numpy as np
import torch
import torch.nn.functional as F

from numpy.typing import ArrayLike
from scipy.ndimage import median_filter

from beadpsf.errors import InputError

_logger = logging.getLogger(__name__)


def validate_stack(zyx_data: Union[ArrayLike, Sequence[ArrayLike]]) -> np.ndarray:
    """
    Check a PSF stack and return an independently owned float64 copy.

    Parameters
    ----------
    zyx_data : ArrayLike or Sequence[ArrayLike]
        3D array with shape (Z, Y, X), or a sequence of 2D planes ordered by depth.
        Depth index 0 is the plane nearest the objective.

    Returns
    -------
    np.ndarray
        Float64 copy of the stack with shape (Z, Y, X).

    Raises
    ------
    InputError
        If the planes are ragged, the stack is not 3D or empty, or it holds
        non-numeric or non-finite values.
    """
    if isinstance(zyx_data, (list, tuple)):
        plane_shapes = {np.shape(plane) for plane in zyx_data}
        if len(plane_shapes) > 1:
            raise InputError(f"All planes must share the same shape, got {sorted(plane_shapes)}")

    zyx_data = np.asarray(zyx_data)
    if zyx_data.dtype == object or not (
        np.issubdtype(zyx_data.dtype, np.number) or zyx_data.dtype == bool
    ):
        raise InputError(f"Stack must be numeric, got dtype {zyx_data.dtype}")
    if zyx_data.ndim != 3:
        raise InputError(f"Stack must be 3D (Z, Y, X), got {zyx_data.ndim} dimensions")
    if zyx_data.size == 0:
        raise InputError(f"Stack must not be empty, got shape {zyx_data.shape}")

    zyx_data = np.array(zyx_data, dtype=np.float64, copy=True)
    if not np.all(np.isfinite(zyx_data)):
        raise InputError("Stack contains NaN or infinite values")

    return zyx_data


def median_filter_planes(zyx_data: np.ndarray, size: int = 1) -> np.ndarray:
    """
    Median filter every Z plane with the same size x size window.

    A window size of 1 returns an unmodified copy.
    """
    if size < 1:
        raise InputError(f"Median filter size must be >= 1, got {size}")

    zyx_data = np.asarray(zyx_data, dtype=np.float64)
    if size == 1:
        return zyx_data.copy()

    return median_filter(zyx_data, size=(1, size, size), mode="reflect")


def subtract_baseline(zyx_data: np.ndarray) -> np.ndarray:
    # the Gaussian model has no offset term, so the background has to go first
    baseline = np.median(zyx_data)
    _logger.debug(f"Subtracting image-wide baseline {baseline:.4g}")
    return zyx_data - baseline


def preprocess_stack(zyx_data: np.ndarray, median_filter_size: int = 1) -> np.ndarray:
    """
    Median filter each plane and subtract the image-wide median.

    Parameters
    ----------
    zyx_data : np.ndarray
        3D array with shape (Z, Y, X), any numeric dtype.
    median_filter_size : int
        Median filter window applied to every plane, by default 1 (no filtering).

    Returns
    -------
    np.ndarray
        Float64 stack with median zero.
    """
    zyx_data = np.asarray(zyx_data, dtype=np.float64)
    zyx_data = median_filter_planes(zyx_data, median_filter_size)
    return subtract_baseline(zyx_data)


def downsample_and_smooth(
    zyx_data: np.ndarray,
    factor: float = 0.25,
    kernel_size: int = 2,
) -> np.ndarray:
    """
    Downsample each Z plane and blur it with a small box kernel.

    Used to clean up the stack before taking per-plane maxima, which are
    otherwise dominated by hot pixels.

    Parameters
    ----------
    zyx_data : np.ndarray
        3D array with shape (Z, Y, X).
    factor : float
        Linear resampling factor in Y and X, by default 0.25.
    kernel_size : int
        Size of the square box kernel, by default 2. The output keeps the
        size of the downsampled planes.

    Returns
    -------
    np.ndarray
        Array with shape (Z, Y', X') where Y' and X' are at least 1.
    """
    shape_Z, shape_Y, shape_X = zyx_data.shape
    output_size = (max(1, int(round(shape_Y * factor))), max(1, int(round(shape_X * factor))))

    # planes are treated as a batch of single-channel images
    zyx_image = torch.from_numpy(np.ascontiguousarray(zyx_data, dtype=np.float32))[:, None]
    small_image = F.interpolate(
        zyx_image,
        size=output_size,
        mode="bilinear",
        align_corners=False,
        antialias=True,
    )

    kernel = torch.ones((1, 1, kernel_size, kernel_size), dtype=small_image.dtype)
    padded_image = F.pad(small_image, (0, kernel_size - 1, 0, kernel_size - 1))
    smooth_image = F.conv2d(padded_image, kernel)

    return smooth_image[:, 0].numpy().astype(np.float64)


def subtract_profile_baseline(profile: ArrayLike, num_samples: int = 5) -> np.ndarray:
    """Subtract the mean of the `num_samples` lowest values from a 1D profile."""
    profile = np.asarray(profile, dtype=np.float64)
    lowest = np.sort(profile)[:num_samples]
    return profile - lowest.mean()
