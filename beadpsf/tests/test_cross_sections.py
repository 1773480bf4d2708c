import numpy as np
import pytest

from beadpsf.center import LateralCenter
from beadpsf.cross_sections import (
    axial_profile,
    extract_cross_sections,
    extract_lateral_profiles,
    project_zx,
    project_zy,
)
from beadpsf.synthetic import make_gaussian_bead


@pytest.fixture()
def single_plane_stack():
    """Stack that is dark except for a 2D Gaussian spot in slice 15"""
    zyx_data = np.zeros((30, 40, 50))
    zyx_data[15] = make_gaussian_bead(shape=(1, 40, 50), center=(0, 20, 25), background=0)[0]
    return zyx_data


@pytest.fixture()
def tilted_stack():
    """Bead whose lateral position drifts in Y by 2 px per slice"""
    planes = [
        make_gaussian_bead(
            shape=(1, 64, 48),
            center=(0, 32 + 2 * (z - 15), 24),
            sigma=(1, 2, 2),
            amplitude=1000.0 * np.exp(-((z - 15) ** 2) / (2 * 4**2)),
            background=0,
        )[0]
        for z in range(30)
    ]
    return np.stack(planes)


def test_extract_lateral_profiles():
    yx_plane = np.arange(20, dtype=float).reshape(4, 5)

    x_profile, y_profile = extract_lateral_profiles(yx_plane, LateralCenter(x=1, y=2), 0.1)

    np.testing.assert_array_equal(x_profile.values, [10, 11, 12, 13, 14])
    np.testing.assert_array_equal(y_profile.values, [1, 6, 11, 16])
    np.testing.assert_allclose(x_profile.positions, [0, 0.1, 0.2, 0.3, 0.4])


def test_projection_shapes():
    zyx_data = np.random.default_rng(0).random((7, 5, 6))

    zx_image = project_zx(zyx_data, 2, use_max_projection=True)
    zy_image = project_zy(zyx_data, 3, use_max_projection=True)

    assert zx_image.shape == (6, 7)
    assert zy_image.shape == (7, 5)
    np.testing.assert_array_equal(zx_image, zyx_data.max(axis=1).T)
    # three quarter-turns keep depth down the rows and mirror Y
    np.testing.assert_array_equal(zy_image, zyx_data.max(axis=2)[:, ::-1])


def test_slice_views():
    zyx_data = np.random.default_rng(0).random((7, 5, 6))

    zx_image = project_zx(zyx_data, 2, use_max_projection=False)
    zy_image = project_zy(zyx_data, 3, use_max_projection=False)

    np.testing.assert_array_equal(zx_image, zyx_data[:, 2, :].T)
    np.testing.assert_array_equal(zy_image, zyx_data[:, ::-1, 3])


def test_axial_profile_is_per_depth_and_baseline_subtracted():
    zx_image = np.tile(np.array([3.0, 3.0, 3.0, 3.0, 3.0, 8.0, 3.0]), (4, 1))

    profile = axial_profile(zx_image, depth_axis=1, scale_z=0.5)

    np.testing.assert_allclose(profile.values, [0, 0, 0, 0, 0, 5, 0])
    np.testing.assert_allclose(profile.positions, np.arange(7) * 0.5)


def test_projection_toggle_single_bright_plane(single_plane_stack):
    center = LateralCenter(x=25, y=20)

    projected = extract_cross_sections(single_plane_stack, 15, center, 0.05, 0.5, True)
    sliced = extract_cross_sections(single_plane_stack, 15, center, 0.05, 0.5, False)

    np.testing.assert_allclose(projected["zx"].values, sliced["zx"].values)
    np.testing.assert_allclose(projected["zy"].values, sliced["zy"].values)


def test_projection_toggle_tilted_bead(tilted_stack):
    center = LateralCenter(x=24, y=32)

    projected = extract_cross_sections(tilted_stack, 15, center, 0.05, 0.5, True)
    sliced = extract_cross_sections(tilted_stack, 15, center, 0.05, 0.5, False)

    # the slice through the center misses the bead away from focus
    difference = projected["zx"].values - sliced["zx"].values
    assert difference.max() > 0.1 * projected["zx"].values.max()


def test_extract_cross_sections_keys(single_plane_stack):
    sections = extract_cross_sections(
        single_plane_stack, 15, LateralCenter(x=25, y=20), 0.05, 0.5
    )

    assert sections["x"].values.size == 50
    assert sections["y"].values.size == 40
    assert sections["zx"].values.size == 30
    assert sections["zy"].values.size == 30
    assert sections["zx_image"].shape == (50, 30)
    assert sections["zy_image"].shape == (30, 40)
