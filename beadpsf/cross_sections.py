import numpy as np

from beadpsf.center import LateralCenter
from beadpsf.fit import IntensityProfile
from beadpsf.preprocess import subtract_profile_baseline


def extract_lateral_profiles(
    yx_plane: np.ndarray,
    center: LateralCenter,
    scale_xy: float,
) -> tuple[IntensityProfile, IntensityProfile]:
    """Return the X profile along row `center.y` and the Y profile along column `center.x`."""
    x_profile = IntensityProfile.from_values(yx_plane[center.y, :], scale_xy)
    y_profile = IntensityProfile.from_values(yx_plane[:, center.x], scale_xy)
    return x_profile, y_profile


def project_zx(
    zyx_data: np.ndarray, y_center: int, use_max_projection: bool = True
) -> np.ndarray:
    """
    Z/X view of the stack with shape (X, Z).

    Either the maximum intensity projection along Y, or the slice at `y_center`.
    """
    if use_max_projection:
        zx_image = zyx_data.max(axis=1)
    else:
        zx_image = zyx_data[:, y_center, :]
    return np.ascontiguousarray(zx_image.T)


def project_zy(
    zyx_data: np.ndarray, x_center: int, use_max_projection: bool = True
) -> np.ndarray:
    """
    Z/Y view of the stack with shape (Z, Y).

    Either the maximum intensity projection along X, or the slice at
    `x_center`. The (Y, Z) image is rotated by three quarter-turns, so depth
    runs down the rows and Y is mirrored.
    """
    if use_max_projection:
        zy_image = zyx_data.max(axis=2)
    else:
        zy_image = zyx_data[:, :, x_center]
    return np.ascontiguousarray(np.rot90(zy_image.T, 3))


def axial_profile(
    image: np.ndarray,
    depth_axis: int,
    scale_z: float,
    baseline_num_samples: int = 5,
) -> IntensityProfile:
    """Per-depth maximum of a Z/X or Z/Y image, with its baseline removed."""
    spatial_axis = 1 - depth_axis
    profile = subtract_profile_baseline(image.max(axis=spatial_axis), baseline_num_samples)
    return IntensityProfile.from_values(profile, scale_z)


def extract_cross_sections(
    zyx_data: np.ndarray,
    z_center: int,
    center: LateralCenter,
    scale_xy: float,
    scale_z: float,
    use_max_projection: bool = True,
    baseline_num_samples: int = 5,
) -> dict:
    """
    Build the lateral and axial cross-sections through the bead.

    Parameters
    ----------
    zyx_data : np.ndarray
        Preprocessed (and possibly cropped) 3D array with shape (Z, Y, X).
    z_center : int
        In-focus slice.
    center : LateralCenter
        Bead center in the in-focus slice.
    scale_xy, scale_z : float
        Microns per pixel in XY and per slice in Z.
    use_max_projection : bool
        Use maximum intensity projections for the Z views instead of slices
        through the center, by default True.
    baseline_num_samples : int
        Number of lowest values averaged to estimate the Z profile baseline.

    Returns
    -------
    dict
        Profiles `x`, `y`, `zx`, `zy` (IntensityProfile) and images
        `zx_image` (X, Z) and `zy_image` (Z, Y).
    """
    x_profile, y_profile = extract_lateral_profiles(zyx_data[z_center], center, scale_xy)

    zx_image = project_zx(zyx_data, center.y, use_max_projection)
    zy_image = project_zy(zyx_data, center.x, use_max_projection)

    return {
        "x": x_profile,
        "y": y_profile,
        "zx": axial_profile(zx_image, 1, scale_z, baseline_num_samples),
        "zy": axial_profile(zy_image, 0, scale_z, baseline_num_samples),
        "zx_image": zx_image,
        "zy_image": zy_image,
    }
