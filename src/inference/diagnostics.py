"""
Convergence diagnostics from multi-chain posterior samples.

Key diagnostics:
- Rhat (potential scale reduction): <1.01 indicates convergence, >1.1 is poor
- ESS (effective sample size): >100 per chain recommended
- MCSE (Monte Carlo standard error of the mean): sd / sqrt(ESS)

Poor values are reported, never raised: a chain that fails to mix (e.g.
a non-identifiable pair of intercepts) is a valid statistical outcome.
"""

from typing import Dict, Mapping
import numpy as np
from numpy.typing import NDArray

RHAT_THRESHOLD = 1.1


class DiagnosticSummary:
    """Convergence statistics for one scalar quantity."""

    def __init__(self, rhat: float, ess: float, mcse_mean: float) -> None:
        self.rhat = rhat
        self.ess = ess
        self.mcse_mean = mcse_mean

    def converged(self, threshold: float = RHAT_THRESHOLD) -> bool:
        return bool(np.isfinite(self.rhat) and self.rhat <= threshold)

    def as_dict(self) -> Dict[str, float]:
        return {"rhat": self.rhat, "ess": self.ess, "mcse_mean": self.mcse_mean}

    def __repr__(self) -> str:
        return f"DiagnosticSummary(rhat={self.rhat:.3f}, ess={self.ess:.1f})"


class DiagnosticsComputer:
    """
    Compute convergence diagnostics from posterior samples.

    All methods take samples shaped (chains, draws).
    """

    @staticmethod
    def rhat(posterior_samples: NDArray[np.float64], split: bool = False) -> float:
        """
        Compute Rhat (potential scale reduction factor).

        Rhat compares between-chain to within-chain variance. Values near
        1.0 indicate the chains agree on the same distribution.

        Parameters
        ----------
        posterior_samples : NDArray[np.float64]
            Posterior samples from multiple chains, shape (chains, draws).
        split : bool
            Split every chain in half first, which also detects drift within
            a single chain. Default False.

        Returns
        -------
        rhat : float
            Potential scale reduction factor.
        """
        posterior_samples = np.asarray(posterior_samples, dtype=np.float64)
        if split:
            half = posterior_samples.shape[1] // 2
            posterior_samples = np.concatenate(
                [posterior_samples[:, :half], posterior_samples[:, -half:]], axis=0
            ) if half else posterior_samples[:, :0]

        n_chains, n_draws = posterior_samples.shape

        if n_chains < 2:
            raise ValueError("Need at least 2 chains for Rhat")
        if n_draws < 2:
            raise ValueError("Need at least 2 draws per chain for Rhat")

        # Between-chain variance
        chain_means = np.mean(posterior_samples, axis=1)  # (chains,)
        B = n_draws * np.var(chain_means, ddof=1)

        # Within-chain variance
        chain_vars = np.var(posterior_samples, axis=1, ddof=1)  # (chains,)
        W = np.mean(chain_vars)

        # Estimated posterior variance
        var_hat = ((n_draws - 1) / n_draws) * W + (1 / n_draws) * B

        if W > 0:
            return float(np.sqrt(var_hat / W))
        # Constant chains: converged only if they sit at the same value
        return 1.0 if B == 0 else float("inf")

    @staticmethod
    def ess(posterior_samples: NDArray[np.float64]) -> float:
        """
        Compute effective sample size (ESS) across chains.

        Combines within-chain autocorrelation with between-chain variance
        and truncates the autocorrelation sum with Geyer's initial monotone
        positive sequence.

        Parameters
        ----------
        posterior_samples : NDArray[np.float64]
            Shape (chains, draws), or (draws,) for a single chain.

        Returns
        -------
        ess : float
            Effective sample size, in [1, chains * draws * log10(chains * draws)].
        """
        x = np.asarray(posterior_samples, dtype=np.float64)
        if x.ndim == 1:
            x = x[np.newaxis, :]
        n_chains, n_draws = x.shape
        n_total = n_chains * n_draws

        if n_draws < 4:
            return float(n_total)

        acov = np.stack([_autocovariance(chain) for chain in x])  # (chains, draws)
        chain_vars = acov[:, 0] * n_draws / (n_draws - 1)
        W = np.mean(chain_vars)
        B_over_n = np.var(np.mean(x, axis=1), ddof=1) if n_chains > 1 else 0.0
        var_hat = (n_draws - 1) / n_draws * W + B_over_n

        if var_hat < 1e-10:
            return float(n_total)  # No variation → ESS = n

        rho = 1.0 - (W - np.mean(acov, axis=0)) / var_hat
        rho[0] = 1.0

        tau = -1.0
        previous = np.inf
        for t in range(0, n_draws - 1, 2):
            pair = rho[t] + rho[t + 1]
            if pair < 0:
                break
            pair = min(pair, previous)
            tau += 2.0 * pair
            previous = pair

        ess = n_total / max(tau, 1.0 / np.log10(n_total))
        return float(max(1.0, ess))

    @staticmethod
    def compute(samples: Mapping[str, NDArray[np.float64]]) -> Dict[str, DiagnosticSummary]:
        """
        Diagnostics for every quantity.

        Parameters
        ----------
        samples : mapping
            Quantity name -> samples of shape (chains, draws).

        Returns
        -------
        diagnostics : Dict[str, DiagnosticSummary]
            Split Rhat is used when only one chain is available. Rhat is NaN
            when there are too few draws to compute it.
        """
        out = {}
        for name, x in samples.items():
            x = np.asarray(x, dtype=np.float64)
            n_chains, n_draws = x.shape
            split = n_chains < 2
            try:
                rhat = DiagnosticsComputer.rhat(x, split=split)
            except ValueError:
                rhat = float("nan")
            ess = DiagnosticsComputer.ess(x) if n_draws else float("nan")
            sd = np.std(x, ddof=1) if x.size > 1 else float("nan")
            out[name] = DiagnosticSummary(rhat, ess, float(sd / np.sqrt(ess)))
        return out


def _autocovariance(x: NDArray[np.float64]) -> NDArray[np.float64]:
    """Biased autocovariance at all lags via FFT."""
    n = x.shape[0]
    centered = x - np.mean(x)
    size = 2 ** int(np.ceil(np.log2(2 * n)))
    f = np.fft.rfft(centered, n=size)
    return np.fft.irfft(f * np.conjugate(f), n=size)[:n] / n
