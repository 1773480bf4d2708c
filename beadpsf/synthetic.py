import numpy as np


def make_gaussian_bead(
    shape: tuple[int, int, int] = (30, 64, 64),
    center: tuple[float, float, float] = (15, 32, 32),
    sigma: tuple[float, float, float] = (2.0, 3.0, 3.0),
    amplitude: float = 1000.0,
    background: float = 100.0,
    noise_std: float = 0.0,
    seed: int | None = None,
) -> np.ndarray:
    """
    Render a 3D Gaussian bead on a flat background.

    Parameters
    ----------
    shape : tuple[int, int, int]
        Stack shape (Z, Y, X).
    center : tuple[float, float, float]
        Bead center (z, y, x) in slices/pixels, 0-based.
    sigma : tuple[float, float, float]
        Gaussian standard deviation (z, y, x) in slices/pixels.
    amplitude : float
        Peak height above background.
    background : float
        Constant background level.
    noise_std : float
        Standard deviation of additive Gaussian noise, by default 0 (no noise).
    seed : int | None
        Seed for the noise generator.

    Returns
    -------
    np.ndarray
        Float64 array with shape (Z, Y, X).
    """
    z, y, x = np.meshgrid(*(np.arange(n) for n in shape), indexing="ij")
    exponent = sum(
        (coords - c) ** 2 / (2 * s**2) for coords, c, s in zip((z, y, x), center, sigma)
    )
    zyx_data = background + amplitude * np.exp(-exponent)

    if noise_std > 0:
        rng = np.random.default_rng(seed)
        zyx_data = zyx_data + rng.normal(0.0, noise_std, size=shape)

    return zyx_data
