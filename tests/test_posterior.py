"""
Unit tests for posterior summaries and predictive checks.

Tests cover:
- Pooled means and equal-tailed intervals
- HDI intervals via arviz
- Derived quantity consistency
- Posterior predictive replication and p-values
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose

from inference.chains import ChainManager
from models import Normal, Parameter, build_model
from models.library import normal_mean_model, probit_counterfactual_model
from posterior import PosteriorPredictiveCheck, PosteriorSummarizer, QuantitySummary
from posterior.summarizer import check_derived_consistency
from simulation.synthetic import SyntheticDataGenerator


@pytest.fixture(scope="module")
def normal_run():
    data = SyntheticDataGenerator(n_obs=50, random_seed=31).normal_sample(mu=2.0, sigma=1.5)
    model = normal_mean_model(data)
    return ChainManager(model, n_chains=2, n_iter=500, burn_in=300, random_seed=32).run()


@pytest.fixture(scope="module")
def counterfactual_run():
    data = SyntheticDataGenerator(n_obs=300, random_seed=33).probit(beta=(0.4, -0.2))
    model = probit_counterfactual_model(data, x_baseline=[0.0, 0.0], x_alternative=[1.0, 0.0])
    return ChainManager(model, n_chains=2, n_iter=300, burn_in=300, random_seed=34).run()


class TestQuantitySummary:
    """Interval helpers."""

    def test_contains(self) -> None:
        s = QuantitySummary(0.5, 0.1, 0.3, 0.7)
        assert s.contains(0.3)
        assert s.contains(0.6)
        assert not s.contains(0.8)
        assert s.excludes_zero()

    def test_interval_straddling_zero(self) -> None:
        assert not QuantitySummary(0.0, 1.0, -2.0, 2.0).excludes_zero()

    def test_as_dict(self) -> None:
        assert QuantitySummary(1.0, 0.5, 0.0, 2.0).as_dict() == {
            "mean": 1.0, "sd": 0.5, "lower": 0.0, "upper": 2.0,
        }


class TestPosteriorSummarizer:
    """Pooled summaries."""

    @pytest.mark.parametrize("level", [0.0, 1.0, -0.5, 1.5])
    def test_invalid_level(self, level) -> None:
        with pytest.raises(ValueError):
            PosteriorSummarizer(level=level)

    def test_invalid_interval_kind(self) -> None:
        with pytest.raises(ValueError):
            PosteriorSummarizer(interval="central")

    def test_equal_tailed_matches_quantiles(self) -> None:
        draws = np.random.default_rng(0).standard_normal(4000)
        s = PosteriorSummarizer().summarize_draws(draws)
        lo, hi = np.quantile(draws, [0.025, 0.975])
        assert_allclose([s.lower, s.upper], [lo, hi], rtol=1e-12)
        assert s.mean == pytest.approx(draws.mean())

    def test_level_controls_width(self) -> None:
        draws = np.random.default_rng(1).standard_normal(4000)
        wide = PosteriorSummarizer(level=0.95).summarize_draws(draws)
        narrow = PosteriorSummarizer(level=0.5).summarize_draws(draws)
        assert narrow.upper - narrow.lower < wide.upper - wide.lower

    def test_hdi_shorter_for_skewed_draws(self) -> None:
        draws = np.random.default_rng(2).exponential(1.0, size=5000)
        equal = PosteriorSummarizer().summarize_draws(draws)
        hdi = PosteriorSummarizer(interval="hdi").summarize_draws(draws)
        assert hdi.upper - hdi.lower < equal.upper - equal.lower
        assert hdi.lower < equal.lower

    def test_empty_draws(self) -> None:
        with pytest.raises(ValueError):
            PosteriorSummarizer().summarize_draws(np.array([]))

    def test_pooled_draws(self, normal_run) -> None:
        summarizer = PosteriorSummarizer()
        pooled = summarizer.pooled(normal_run, "mu")
        assert pooled.shape == (1000,)
        assert_allclose(pooled[:500], normal_run.chains[0].samples("mu"))

    def test_summarize_all_quantities(self, normal_run) -> None:
        summary = PosteriorSummarizer().summarize(normal_run)
        assert set(summary) == {"mu", "sigma"}
        assert summary["mu"].contains(2.0)
        assert summary["sigma"].lower > 0

    def test_summarize_selected(self, normal_run) -> None:
        summary = PosteriorSummarizer().summarize(normal_run, ["sigma"])
        assert list(summary) == ["sigma"]

    def test_as_table_includes_diagnostics(self, normal_run) -> None:
        table = PosteriorSummarizer().as_table(normal_run)
        assert set(table["mu"]) >= {"mean", "sd", "lower", "upper", "rhat", "ess"}


class TestDerivedQuantities:
    """Derived draws agree with their definitions."""

    def test_counterfactual_consistency(self, counterfactual_run) -> None:
        assert check_derived_consistency(counterfactual_run) == 0.0

    def test_difference_is_drawwise(self, counterfactual_run) -> None:
        p1 = counterfactual_run.samples("p1")
        p2 = counterfactual_run.samples("p2")
        assert_allclose(counterfactual_run.samples("p_diff"), p2 - p1)

    def test_probabilities_in_unit_interval(self, counterfactual_run) -> None:
        summary = PosteriorSummarizer().summarize(counterfactual_run, ["p1", "p2"])
        for s in summary.values():
            assert 0.0 <= s.lower <= s.upper <= 1.0

    def test_positive_effect_detected(self, counterfactual_run) -> None:
        # beta[0] = 0.4 > 0, so moving x[0] from 0 to 1 raises the probability
        s = PosteriorSummarizer().summarize(counterfactual_run, ["p_diff"])["p_diff"]
        assert s.mean > 0


class TestPosteriorPredictive:
    """Replicated data."""

    def test_simulate_shape(self, normal_run) -> None:
        rep = PosteriorPredictiveCheck.simulate(normal_run, np.random.default_rng(3), n_draws=40)
        assert rep.shape == (40, 50)

    def test_simulate_all_draws(self, normal_run) -> None:
        rep = PosteriorPredictiveCheck.simulate(normal_run, np.random.default_rng(4))
        assert rep.shape == (1000, 50)

    def test_simulate_is_reproducible(self, normal_run) -> None:
        a = PosteriorPredictiveCheck.simulate(normal_run, np.random.default_rng(5), n_draws=10)
        b = PosteriorPredictiveCheck.simulate(normal_run, np.random.default_rng(5), n_draws=10)
        assert_allclose(a, b, rtol=0, atol=0)

    @pytest.mark.parametrize("n_draws", [0, 1001])
    def test_invalid_n_draws(self, normal_run, n_draws) -> None:
        with pytest.raises(ValueError):
            PosteriorPredictiveCheck.simulate(normal_run, n_draws=n_draws)

    def test_probit_replicates_are_binary(self, counterfactual_run) -> None:
        rep = PosteriorPredictiveCheck.simulate(counterfactual_run, np.random.default_rng(6), n_draws=20)
        assert set(np.unique(rep)) <= {0.0, 1.0}

    def test_requires_likelihood(self) -> None:
        model = build_model([Parameter("z", Normal(0.0, 1.0))])
        run = ChainManager(model, n_chains=1, n_iter=10, burn_in=0, random_seed=0).run()
        with pytest.raises(ValueError, match="no likelihood"):
            PosteriorPredictiveCheck.simulate(run)

    def test_ppcheck_pvalues(self, normal_run) -> None:
        rep = PosteriorPredictiveCheck.simulate(normal_run, np.random.default_rng(7), n_draws=200)
        stats = PosteriorPredictiveCheck.compute_ppcheck(rep, normal_run.model.data["y"])
        assert set(stats) == {"mean_pvalue", "std_pvalue", "max_pvalue"}
        assert all(0.0 <= p <= 1.0 for p in stats.values())
        # A well-specified model does not put the observed mean in the tails
        assert 0.05 < stats["mean_pvalue"] < 0.95

    def test_ppcheck_empty(self) -> None:
        assert PosteriorPredictiveCheck.compute_ppcheck(np.empty((0, 5)), np.zeros(5)) == {}
