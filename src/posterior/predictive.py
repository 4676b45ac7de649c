"""
Posterior predictive checks for model validation.

Replicated responses are drawn from the likelihood at posterior draws and
compared with the observed data. These replicates also feed
posterior-predictive overlay plots.
"""

from typing import Dict, Optional
import numpy as np
from numpy.typing import NDArray

from inference.chains import InferenceSummary


class PosteriorPredictiveCheck:
    """
    Posterior predictive checks for model validation.

    Compares observed data to draws from posterior predictive distribution
    to assess whether the model generates plausible data.
    """

    @staticmethod
    def simulate(
        result: InferenceSummary,
        rng: Optional[np.random.Generator] = None,
        n_draws: Optional[int] = None,
    ) -> NDArray[np.float64]:
        """
        Draw replicated responses.

        Parameters
        ----------
        result : InferenceSummary
            Completed run of a model with a likelihood.
        rng : np.random.Generator, optional
            Random stream. Default: a fresh unseeded generator.
        n_draws : int, optional
            Number of pooled posterior draws to use, chosen without
            replacement. Default: all of them.

        Returns
        -------
        replicated : NDArray[np.float64]
            Shape (n_draws, N).
        """
        model = result.model
        if model.likelihood is None:
            raise ValueError("Model has no likelihood to simulate from")
        rng = rng if rng is not None else np.random.default_rng()

        thetas = np.concatenate([c.flat_samples()[: result.n_draws] for c in result.chains])
        if n_draws is not None:
            if not (0 < n_draws <= thetas.shape[0]):
                raise ValueError(f"n_draws must be in [1, {thetas.shape[0]}]. Got {n_draws}")
            thetas = thetas[rng.choice(thetas.shape[0], size=n_draws, replace=False)]

        return np.stack(
            [model.likelihood.simulate(model.unpack(theta), model.data, rng) for theta in thetas]
        )

    @staticmethod
    def compute_ppcheck(
        replicated: NDArray[np.float64],
        observed_data: NDArray[np.float64],
    ) -> Dict[str, float]:
        """
        Compute posterior predictive check statistics.

        Parameters
        ----------
        replicated : NDArray[np.float64]
            Replicated data, shape (draws, N)
        observed_data : NDArray[np.float64]
            Observed data, shape (N,)

        Returns
        -------
        ppc_stats : Dict[str, float]
            Posterior predictive p-values:
            - mean_pvalue: p-value for mean
            - std_pvalue: p-value for std
            - max_pvalue: p-value for max absolute value
        """
        replicated = np.asarray(replicated, dtype=np.float64)
        if replicated.size == 0:
            return {}

        obs_mean = np.mean(observed_data)
        pp_means = np.mean(replicated, axis=1)
        mean_pvalue = float(np.mean(pp_means >= obs_mean))

        obs_std = np.std(observed_data)
        pp_stds = np.std(replicated, axis=1)
        std_pvalue = float(np.mean(pp_stds >= obs_std))

        obs_max = np.max(np.abs(observed_data))
        pp_maxs = np.max(np.abs(replicated), axis=1)
        max_pvalue = float(np.mean(pp_maxs >= obs_max))

        return {
            "mean_pvalue": mean_pvalue,
            "std_pvalue": std_pvalue,
            "max_pvalue": max_pvalue,
        }
