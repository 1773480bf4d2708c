import logging
import warnings

import numpy as np

from numpy.typing import ArrayLike
from pydantic import BaseModel, ConfigDict, field_validator
from scipy.optimize import OptimizeWarning, curve_fit

from beadpsf.errors import FittingError

_logger = logging.getLogger(__name__)

FWHM_PER_SIGMA = 2 * np.sqrt(2 * np.log(2))


def fwhm_from_sigma(sigma: float) -> float:
    """Full width at half maximum of a Gaussian with standard deviation `sigma`."""
    return float(FWHM_PER_SIGMA * abs(sigma))


def _read_only(array: ArrayLike) -> np.ndarray:
    array = np.array(array, dtype=np.float64)
    array.setflags(write=False)
    return array


class IntensityProfile(BaseModel):
    positions: np.ndarray
    values: np.ndarray
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @field_validator("positions", "values", mode="before")
    @classmethod
    def check_1d(cls, v):
        v = _read_only(v)
        assert v.ndim == 1, "Profile must be 1D."
        return v

    @classmethod
    def from_values(cls, values: ArrayLike, scale: float = 1.0) -> "IntensityProfile":
        values = np.asarray(values, dtype=np.float64).ravel()
        return cls(positions=np.arange(values.size) * scale, values=values)


class GaussianComponent(BaseModel):
    amplitude: float
    center: float
    sigma: float
    model_config = ConfigDict(frozen=True)

    @property
    def fwhm(self) -> float:
        return fwhm_from_sigma(self.sigma)


class GaussianFit(BaseModel):
    """
    Result of fitting a sum of Gaussians to a 1D profile.

    Components are sorted by descending amplitude, so the first component is
    the one reported as the PSF width.
    """

    components: tuple[GaussianComponent, ...]
    residual_sum_of_squares: float
    model_config = ConfigDict(frozen=True)

    @property
    def num_components(self) -> int:
        return len(self.components)

    @property
    def center(self) -> float:
        return self.components[0].center

    @property
    def fwhm(self) -> float:
        return self.components[0].fwhm

    @property
    def component_fwhms(self) -> tuple[float, ...]:
        return tuple(component.fwhm for component in self.components)

    def evaluate(self, positions: ArrayLike) -> np.ndarray:
        params = [
            p for c in self.components for p in (c.amplitude, c.center, c.sigma)
        ]
        return gaussian_sum(np.asarray(positions, dtype=np.float64), *params)


def gaussian_sum(x: np.ndarray, *params: float) -> np.ndarray:
    """Sum of Gaussians without offset; `params` holds (amplitude, center, sigma) triplets."""
    y = np.zeros_like(x, dtype=np.float64)
    for amplitude, center, sigma in zip(params[0::3], params[1::3], params[2::3]):
        y += amplitude * np.exp(-((x - center) ** 2) / (2 * sigma**2))
    return y


def _initial_guess(x: np.ndarray, y: np.ndarray, num_components: int) -> list[float]:
    step = x[1] - x[0]
    peak_index = int(np.argmax(y))
    amplitude = y[peak_index]

    # samples above half maximum approximate the FWHM
    num_above_half = np.count_nonzero(y >= amplitude / 2)
    sigma = max(num_above_half * step / FWHM_PER_SIGMA, step / 2)

    p0 = []
    for k in range(num_components):
        p0 += [amplitude * 0.5**k, x[peak_index], sigma * 2**k]
    return p0


def fit_gaussian(
    values: ArrayLike,
    scale: float = 1.0,
    num_components: int = 1,
    max_iterations: int = 4000,
) -> GaussianFit:
    """
    Fit a sum of Gaussians to a baseline-subtracted 1D intensity profile.

    Parameters
    ----------
    values : ArrayLike
        1D intensity profile. The model has no offset term, so the baseline
        must be subtracted by the caller.
    scale : float
        Physical units per sample. The position axis is `arange(n) * scale`,
        so fitted centers and sigmas are in physical units.
    num_components : int
        Number of Gaussian terms, by default 1.
    max_iterations : int
        Cap on the number of model evaluations of the optimizer.

    Returns
    -------
    GaussianFit
        Fitted components sorted by descending amplitude.

    Raises
    ------
    FittingError
        If the profile is too short, non-finite or has no positive signal,
        or if the optimizer does not converge.
    """
    if num_components < 1:
        raise ValueError(f"num_components must be >= 1, got {num_components}")
    if scale <= 0:
        raise ValueError(f"scale must be positive, got {scale}")

    y = np.asarray(values, dtype=np.float64).ravel()
    if y.size < 3 * num_components:
        raise FittingError(
            f"Need at least {3 * num_components} samples for a {num_components}-component fit, "
            f"got {y.size}"
        )
    if not np.all(np.isfinite(y)):
        raise FittingError("Profile contains NaN or infinite values")
    if not np.any(y > 0):
        raise FittingError("Profile has no signal above baseline")

    x = np.arange(y.size) * scale
    p0 = _initial_guess(x, y, num_components)
    lower_bounds = [0.0, -np.inf, scale * 1e-3] * num_components
    upper_bounds = [np.inf, np.inf, np.inf] * num_components

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", OptimizeWarning)
            popt, _ = curve_fit(
                gaussian_sum,
                x,
                y,
                p0=p0,
                bounds=(lower_bounds, upper_bounds),
                max_nfev=max_iterations,
            )
    except (RuntimeError, ValueError) as e:
        raise FittingError(f"Gaussian fit did not converge: {e}") from e

    if not np.all(np.isfinite(popt)):
        raise FittingError("Gaussian fit returned non-finite parameters")

    components = sorted(
        (
            GaussianComponent(amplitude=a, center=mu, sigma=abs(sigma))
            for a, mu, sigma in popt.reshape(-1, 3)
        ),
        key=lambda c: (-c.amplitude, c.center),
    )
    residual = float(np.sum((gaussian_sum(x, *popt) - y) ** 2))
    _logger.debug(
        f"Fitted {num_components}-component Gaussian: "
        f"{[(round(c.center, 4), round(c.sigma, 4)) for c in components]}"
    )

    return GaussianFit(components=tuple(components), residual_sum_of_squares=residual)
