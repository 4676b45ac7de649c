"""
Prior distribution families for model parameters.

Each prior validates its hyperparameters, evaluates a log-density summed
over all elements of a (possibly vector-valued) parameter, and can draw
values for dispersed chain initialisation.

Supported families:
    Normal(mu, sigma)         # conjugate for Gaussian-likelihood means
    HalfNormal(sigma)         # positive scale parameters
    Uniform(lower, upper)     # bounded, e.g. sigma ~ U(0, 10)
    Flat()                    # improper, constant density
"""

from typing import Tuple
import numpy as np
from numpy.typing import NDArray

from models.errors import SpecError

_LOG_SQRT_2PI = 0.5 * np.log(2.0 * np.pi)


class Prior:
    """Base class for prior families."""

    #: True if the density is proper and can be sampled
    proper: bool = True
    #: (lower, upper) bounds of the support
    support: Tuple[float, float] = (-np.inf, np.inf)

    def validate(self) -> None:
        """Raise SpecError if hyperparameters are outside their support."""

    def logpdf(self, x: NDArray[np.float64]) -> float:
        raise NotImplementedError

    def sample(self, rng: np.random.Generator, shape: Tuple[int, ...]) -> NDArray[np.float64]:
        raise NotImplementedError

    def in_support(self, x: NDArray[np.float64]) -> bool:
        lower, upper = self.support
        x = np.asarray(x, dtype=np.float64)
        return bool(np.all((x > lower) & (x < upper)))


class Normal(Prior):
    """Gaussian prior N(mu, sigma^2)."""

    def __init__(self, mu: float = 0.0, sigma: float = 1.0) -> None:
        self.mu = float(mu)
        self.sigma = float(sigma)

    def validate(self) -> None:
        if not np.isfinite(self.mu):
            raise SpecError(f"Normal prior mu must be finite. Got {self.mu}")
        if not np.isfinite(self.sigma) or self.sigma <= 0:
            raise SpecError(f"Normal prior sigma must be positive. Got {self.sigma}")

    @property
    def precision(self) -> float:
        return 1.0 / self.sigma ** 2

    def logpdf(self, x: NDArray[np.float64]) -> float:
        z = (np.asarray(x, dtype=np.float64) - self.mu) / self.sigma
        return float(np.sum(-0.5 * z * z - np.log(self.sigma) - _LOG_SQRT_2PI))

    def sample(self, rng: np.random.Generator, shape: Tuple[int, ...]) -> NDArray[np.float64]:
        return rng.normal(self.mu, self.sigma, size=shape)

    def __repr__(self) -> str:
        return f"Normal(mu={self.mu}, sigma={self.sigma})"


class HalfNormal(Prior):
    """Half-normal prior on (0, inf) with scale sigma."""

    support = (0.0, np.inf)

    def __init__(self, sigma: float = 1.0) -> None:
        self.sigma = float(sigma)

    def validate(self) -> None:
        if not np.isfinite(self.sigma) or self.sigma <= 0:
            raise SpecError(f"HalfNormal prior sigma must be positive. Got {self.sigma}")

    def logpdf(self, x: NDArray[np.float64]) -> float:
        x = np.asarray(x, dtype=np.float64)
        if np.any(x <= 0):
            return -np.inf
        z = x / self.sigma
        return float(np.sum(-0.5 * z * z - np.log(self.sigma) - _LOG_SQRT_2PI + np.log(2.0)))

    def sample(self, rng: np.random.Generator, shape: Tuple[int, ...]) -> NDArray[np.float64]:
        return np.abs(rng.normal(0.0, self.sigma, size=shape))

    def __repr__(self) -> str:
        return f"HalfNormal(sigma={self.sigma})"


class Uniform(Prior):
    """Uniform prior on the open interval (lower, upper)."""

    def __init__(self, lower: float = 0.0, upper: float = 1.0) -> None:
        self.lower = float(lower)
        self.upper = float(upper)
        self.support = (self.lower, self.upper)

    def validate(self) -> None:
        if not (np.isfinite(self.lower) and np.isfinite(self.upper)):
            raise SpecError(
                f"Uniform prior bounds must be finite. Got ({self.lower}, {self.upper})"
            )
        if self.lower >= self.upper:
            raise SpecError(
                f"Uniform prior requires lower < upper. Got ({self.lower}, {self.upper})"
            )

    def logpdf(self, x: NDArray[np.float64]) -> float:
        x = np.asarray(x, dtype=np.float64)
        if np.any((x <= self.lower) | (x >= self.upper)):
            return -np.inf
        return float(-x.size * np.log(self.upper - self.lower))

    def sample(self, rng: np.random.Generator, shape: Tuple[int, ...]) -> NDArray[np.float64]:
        return rng.uniform(self.lower, self.upper, size=shape)

    def __repr__(self) -> str:
        return f"Uniform(lower={self.lower}, upper={self.upper})"


class Flat(Prior):
    """Improper flat prior over the real line."""

    proper = False

    def logpdf(self, x: NDArray[np.float64]) -> float:
        return 0.0

    def sample(self, rng: np.random.Generator, shape: Tuple[int, ...]) -> NDArray[np.float64]:
        raise SpecError("Flat prior is improper and cannot be sampled")

    def __repr__(self) -> str:
        return "Flat()"
