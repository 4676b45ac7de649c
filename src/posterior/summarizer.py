"""
Posterior summaries: means and credible intervals of pooled draws.

Draws are pooled across chains after warm-up has been discarded (chains
only hold recorded draws). Every flattened parameter element and derived
quantity gets a QuantitySummary:

    mean, sd            # of the pooled draws
    lower, upper        # credible interval at the configured level

Intervals are equal-tailed percentiles by default, e.g. 2.5% / 97.5% for
level 0.95, or highest-density intervals via arviz.
"""

from typing import Dict, Iterable, Optional, Tuple
import numpy as np
from numpy.typing import NDArray
import arviz as az

from inference.chains import InferenceSummary

INTERVAL_KINDS = ("equal-tailed", "hdi")


class QuantitySummary:
    """Posterior mean and credible interval of one scalar quantity."""

    def __init__(self, mean: float, sd: float, lower: float, upper: float) -> None:
        self.mean = mean
        self.sd = sd
        self.lower = lower
        self.upper = upper

    def contains(self, value: float) -> bool:
        return bool(self.lower <= value <= self.upper)

    def excludes_zero(self) -> bool:
        return not self.contains(0.0)

    def as_dict(self) -> Dict[str, float]:
        return {"mean": self.mean, "sd": self.sd, "lower": self.lower, "upper": self.upper}

    def __repr__(self) -> str:
        return (
            f"QuantitySummary(mean={self.mean:.4g}, "
            f"interval=[{self.lower:.4g}, {self.upper:.4g}])"
        )


class PosteriorSummarizer:
    """
    Reduce completed chains to reportable statistics.

    Parameters
    ----------
    level : float
        Credible interval probability mass, in (0, 1). Default 0.95.
    interval : {"equal-tailed", "hdi"}
        Interval kind. Default "equal-tailed".
    """

    def __init__(self, level: float = 0.95, interval: str = "equal-tailed") -> None:
        if not (0.0 < level < 1.0):
            raise ValueError(f"level must be in (0, 1). Got {level}")
        if interval not in INTERVAL_KINDS:
            raise ValueError(f"interval must be one of {INTERVAL_KINDS}. Got {interval!r}")
        self.level = level
        self.interval_kind = interval

    def pooled(self, result: InferenceSummary, name: str) -> NDArray[np.float64]:
        """Draws of ``name`` from all chains, shape (chains * draws, ...)."""
        x = result.samples(name)
        return x.reshape((-1,) + x.shape[2:])

    def interval(self, draws: NDArray[np.float64]) -> Tuple[float, float]:
        """Credible interval of one-dimensional draws."""
        draws = np.asarray(draws, dtype=np.float64)
        if self.interval_kind == "hdi":
            lower, upper = az.hdi(draws, hdi_prob=self.level)
        else:
            q = [(1.0 - self.level) / 2.0, (1.0 + self.level) / 2.0]
            lower, upper = np.quantile(draws, q)
        return float(lower), float(upper)

    def summarize_draws(self, draws: NDArray[np.float64]) -> QuantitySummary:
        draws = np.asarray(draws, dtype=np.float64).reshape(-1)
        if draws.size == 0:
            raise ValueError("Cannot summarize an empty set of draws")
        lower, upper = self.interval(draws)
        sd = float(np.std(draws, ddof=1)) if draws.size > 1 else 0.0
        return QuantitySummary(float(np.mean(draws)), sd, lower, upper)

    def summarize(
        self,
        result: InferenceSummary,
        names: Optional[Iterable[str]] = None,
    ) -> Dict[str, QuantitySummary]:
        """
        Summaries keyed by quantity name.

        Parameters
        ----------
        result : InferenceSummary
            Completed run.
        names : iterable of str, optional
            Flattened parameter names (``beta[0]``) or derived names.
            Default: all of them.
        """
        names = result.quantity_names if names is None else list(names)
        return {name: self.summarize_draws(self.pooled(result, name)) for name in names}

    def as_table(
        self,
        result: InferenceSummary,
        names: Optional[Iterable[str]] = None,
    ) -> Dict[str, Dict[str, float]]:
        """Plain nested dicts, merged with Rhat and ESS, for external reporting."""
        table = {}
        for name, s in self.summarize(result, names).items():
            row = s.as_dict()
            if name in result.diagnostics:
                row.update(result.diagnostics[name].as_dict())
            table[name] = row
        return table

    def __repr__(self) -> str:
        return f"PosteriorSummarizer(level={self.level}, interval={self.interval_kind!r})"


def check_derived_consistency(result: InferenceSummary) -> float:
    """
    Largest absolute difference between stored and recomputed derived values.

    Every recorded draw stores its derived quantities; recomputing them from
    the draw's parameter values must reproduce the stored numbers exactly.
    """
    model = result.model
    worst = 0.0
    for chain in result.chains:
        for draw in chain.draws:
            recomputed = model.evaluate_derived(draw.values)
            for name, value in draw.derived.items():
                worst = max(worst, abs(recomputed[name] - value))
    return worst
