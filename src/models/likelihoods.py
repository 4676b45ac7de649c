"""
Likelihoods linking observed responses to model parameters.

Both likelihoods share a linear predictor

    eta_i = sum_k a_k + sum_j X_j[i] @ beta_j

and differ in the observation model:

    NormalLikelihood:  y_i ~ Normal(eta_i, sigma^2)
    ProbitLikelihood:  y_i ~ Bernoulli(Phi(eta_i))

Likelihoods only describe which data entries and parameters they touch;
shape checks against a concrete data mapping happen in ModelBuilder.
"""

from typing import Dict, Mapping, Optional, Sequence, Tuple, Union
import numpy as np
from numpy.typing import NDArray
from scipy.special import log_ndtr, ndtr

from models.errors import SpecError

Values = Mapping[str, NDArray[np.float64]]
Data = Mapping[str, NDArray[np.float64]]


class LinearPredictor:
    """
    Linear predictor built from intercepts and covariate slopes.

    Parameters
    ----------
    intercepts : sequence of str
        Names of scalar parameters added to every observation.
    slopes : dict, optional
        Mapping parameter name -> covariate name. A scalar parameter pairs
        with a 1-D covariate of length N; a vector parameter of size K pairs
        with an (N, K) covariate matrix.
    """

    def __init__(
        self,
        intercepts: Sequence[str] = (),
        slopes: Optional[Dict[str, str]] = None,
    ) -> None:
        if isinstance(intercepts, str):
            intercepts = (intercepts,)
        self.intercepts: Tuple[str, ...] = tuple(intercepts)
        self.slopes: Dict[str, str] = dict(slopes or {})

        overlap = set(self.intercepts) & set(self.slopes)
        if overlap:
            raise SpecError(f"Parameters used as both intercept and slope: {sorted(overlap)}")

    @property
    def parameters(self) -> Tuple[str, ...]:
        return self.intercepts + tuple(self.slopes)

    @property
    def covariates(self) -> Tuple[str, ...]:
        return tuple(self.slopes.values())

    def design(self, name: str, data: Data, n_obs: int) -> NDArray[np.float64]:
        """
        Design matrix of a single parameter, shape (n_obs, size).

        The predictor is linear in each parameter: eta = Z @ theta + rest.
        """
        if name in self.intercepts:
            return np.ones((n_obs, 1))
        if name in self.slopes:
            X = np.asarray(data[self.slopes[name]], dtype=np.float64)
            return X[:, None] if X.ndim == 1 else X
        raise KeyError(name)

    def evaluate(
        self,
        values: Values,
        data: Data,
        n_obs: int,
        exclude: Optional[str] = None,
    ) -> NDArray[np.float64]:
        """
        Evaluate the predictor for every observation.

        Parameters
        ----------
        values : mapping
            Parameter values by name.
        data : mapping
            Observed data by name.
        n_obs : int
            Number of observations.
        exclude : str, optional
            Parameter left out of the sum (partial residual for Gibbs).
        """
        eta = np.zeros(n_obs)
        for name in self.intercepts:
            if name != exclude:
                eta += float(np.asarray(values[name]).reshape(-1)[0])
        for name in self.slopes:
            if name != exclude:
                Z = self.design(name, data, n_obs)
                eta += Z @ np.asarray(values[name], dtype=np.float64).reshape(-1)
        return eta

    def __repr__(self) -> str:
        return f"LinearPredictor(intercepts={self.intercepts}, slopes={self.slopes})"


class Likelihood:
    """Base class for observation models."""

    def __init__(
        self,
        response: str,
        predictor: LinearPredictor,
        length: Optional[str] = None,
    ) -> None:
        self.response = response
        self.predictor = predictor
        self.length = length

    @property
    def parameters(self) -> Tuple[str, ...]:
        return self.predictor.parameters

    @property
    def data_names(self) -> Tuple[str, ...]:
        names = (self.response,) + self.predictor.covariates
        if self.length is not None:
            names += (self.length,)
        return names

    def n_obs(self, data: Data) -> int:
        return int(np.asarray(data[self.response]).shape[0])

    def validate_response(self, y: NDArray[np.float64]) -> None:
        if y.ndim != 1:
            raise SpecError(f"Response '{self.response}' must be one-dimensional. Got shape {y.shape}")

    def log_density(self, values: Values, data: Data) -> float:
        raise NotImplementedError

    def simulate(
        self,
        values: Values,
        data: Data,
        rng: np.random.Generator,
    ) -> NDArray[np.float64]:
        """Draw a replicated response vector given parameter values."""
        raise NotImplementedError


class NormalLikelihood(Likelihood):
    """
    Gaussian observation model y ~ Normal(eta, sigma^2).

    Parameters
    ----------
    response : str
        Data entry holding the observed responses.
    predictor : LinearPredictor
        Mean structure.
    sigma : str or float
        Name of the noise-scale parameter, or a fixed positive value.
    length : str, optional
        Integer data entry that must equal the number of observations.
    """

    def __init__(
        self,
        response: str,
        predictor: LinearPredictor,
        sigma: Union[str, float] = "sigma",
        length: Optional[str] = None,
    ) -> None:
        super().__init__(response, predictor, length)
        if not isinstance(sigma, str):
            sigma = float(sigma)
            if not np.isfinite(sigma) or sigma <= 0:
                raise SpecError(f"Fixed sigma must be positive. Got {sigma}")
        self.sigma = sigma

    @property
    def parameters(self) -> Tuple[str, ...]:
        if isinstance(self.sigma, str):
            return self.predictor.parameters + (self.sigma,)
        return self.predictor.parameters

    def sigma_value(self, values: Values) -> float:
        if isinstance(self.sigma, str):
            return float(np.asarray(values[self.sigma]).reshape(-1)[0])
        return self.sigma

    def log_density(self, values: Values, data: Data) -> float:
        sigma = self.sigma_value(values)
        if not sigma > 0:
            return -np.inf
        y = data[self.response]
        resid = y - self.predictor.evaluate(values, data, y.shape[0])
        n = y.shape[0]
        return float(
            -0.5 * np.sum(resid * resid) / sigma ** 2
            - n * np.log(sigma)
            - 0.5 * n * np.log(2.0 * np.pi)
        )

    def simulate(
        self,
        values: Values,
        data: Data,
        rng: np.random.Generator,
    ) -> NDArray[np.float64]:
        n = self.n_obs(data)
        eta = self.predictor.evaluate(values, data, n)
        return eta + self.sigma_value(values) * rng.standard_normal(n)

    def __repr__(self) -> str:
        return f"NormalLikelihood(response={self.response!r}, sigma={self.sigma!r}, {self.predictor})"


class ProbitLikelihood(Likelihood):
    """
    Binary-response model y ~ Bernoulli(Phi(eta)).

    The log-likelihood is computed with log_ndtr so that linear predictors
    far in the tails stay finite.
    """

    def validate_response(self, y: NDArray[np.float64]) -> None:
        super().validate_response(y)
        if not np.all((y == 0) | (y == 1)):
            raise SpecError(f"Probit response '{self.response}' must contain only 0 and 1")

    def log_density(self, values: Values, data: Data) -> float:
        y = data[self.response]
        eta = self.predictor.evaluate(values, data, y.shape[0])
        return float(np.sum(np.where(y == 1, log_ndtr(eta), log_ndtr(-eta))))

    def simulate(
        self,
        values: Values,
        data: Data,
        rng: np.random.Generator,
    ) -> NDArray[np.float64]:
        n = self.n_obs(data)
        p = ndtr(self.predictor.evaluate(values, data, n))
        return (rng.uniform(size=n) < p).astype(np.float64)

    def __repr__(self) -> str:
        return f"ProbitLikelihood(response={self.response!r}, {self.predictor})"
