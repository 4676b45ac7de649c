"""
Synthetic data for the demonstrated models.

Generates data mappings in the shape the model library expects, from known
generating parameters, so that recovered posteriors can be checked against
the truth:

    normal_sample       y_i ~ N(mu, sigma^2)
    linear_regression   y_i ~ N(alpha + X_i @ beta, sigma^2),  X_ij ~ N(0, 1)
    probit              y_i ~ Bernoulli(Phi(alpha + X_i @ beta))
"""

from typing import Dict, Optional, Sequence
import numpy as np
from numpy.typing import NDArray
from scipy.special import ndtr

DataDict = Dict[str, NDArray[np.float64]]


class SyntheticDataGenerator:
    """
    Seeded generator of synthetic observed data.

    Attributes
    ----------
    n_obs : int
        Number of observations per dataset
    rng : np.random.Generator
        Random stream; successive calls draw fresh datasets
    """

    def __init__(self, n_obs: int = 100, random_seed: Optional[int] = None) -> None:
        """
        Initialize generator.

        Parameters
        ----------
        n_obs : int
            Number of observations (N). Default 100.
        random_seed : int, optional
            Random seed for reproducibility.
        """
        if n_obs <= 0:
            raise ValueError(f"n_obs must be positive. Got {n_obs}")

        self.n_obs = n_obs
        self.rng = np.random.default_rng(random_seed)

    def covariates(self, n_covariates: int) -> NDArray[np.float64]:
        """Standard normal covariate matrix, shape (n_obs, n_covariates)."""
        if n_covariates <= 0:
            raise ValueError(f"n_covariates must be positive. Got {n_covariates}")
        return self.rng.standard_normal((self.n_obs, n_covariates))

    def normal_sample(self, mu: float = 0.0, sigma: float = 1.0) -> DataDict:
        """
        Normal sample for mean estimation.

        Returns
        -------
        data : dict
            ``N`` and ``y`` of shape (n_obs,).
        """
        if sigma <= 0:
            raise ValueError(f"sigma must be positive. Got {sigma}")
        y = mu + sigma * self.rng.standard_normal(self.n_obs)
        return {"N": self.n_obs, "y": y}

    def linear_regression(
        self,
        alpha: float = 0.1,
        beta: Sequence[float] = (0.3, -0.3),
        sigma: float = 1.0,
    ) -> DataDict:
        """
        Linear regression data with standard normal covariates.

        Returns
        -------
        data : dict
            ``N``, ``K``, ``X`` of shape (n_obs, K) and ``y`` of shape (n_obs,).
        """
        if sigma <= 0:
            raise ValueError(f"sigma must be positive. Got {sigma}")
        beta = np.asarray(beta, dtype=np.float64)
        X = self.covariates(beta.size)
        y = alpha + X @ beta + sigma * self.rng.standard_normal(self.n_obs)
        return {"N": self.n_obs, "K": beta.size, "X": X, "y": y}

    def probit(
        self,
        alpha: float = 0.0,
        beta: Sequence[float] = (0.4, -0.2),
    ) -> DataDict:
        """
        Binary responses from a probit model.

        Returns
        -------
        data : dict
            ``N``, ``K``, ``X`` of shape (n_obs, K) and 0/1 ``y``.
        """
        beta = np.asarray(beta, dtype=np.float64)
        X = self.covariates(beta.size)
        p = ndtr(alpha + X @ beta)
        y = (self.rng.uniform(size=self.n_obs) < p).astype(np.float64)
        return {"N": self.n_obs, "K": beta.size, "X": X, "y": y}

    def __repr__(self) -> str:
        return f"SyntheticDataGenerator(n_obs={self.n_obs})"
