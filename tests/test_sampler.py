"""
Unit tests for the Metropolis-within-Gibbs sampler.

Tests cover:
- Update schedule construction (Gibbs vs Metropolis, block updates)
- Gibbs full conditionals against closed-form posteriors
- Metropolis rejection of non-finite proposals
- Proposal tuning
- Restarting from a saved ChainState
- Error handling (invalid configuration, NumericError)
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose

from inference.sampler import ChainState, GibbsStep, MetropolisStep, MetropolisWithinGibbs
from models import (
    Flat,
    LinearPredictor,
    Normal,
    NormalLikelihood,
    NumericError,
    Parameter,
    Uniform,
    build_model,
)
from models.library import linear_regression_model, probit_model
from simulation.synthetic import SyntheticDataGenerator


@pytest.fixture
def regression_model():
    data = SyntheticDataGenerator(n_obs=100, random_seed=11).linear_regression()
    return linear_regression_model(data)


@pytest.fixture
def probit():
    data = SyntheticDataGenerator(n_obs=200, random_seed=12).probit()
    return probit_model(data)


class TestSchedule:
    """Schedule construction."""

    def test_regression_schedule(self, regression_model) -> None:
        sampler = MetropolisWithinGibbs(regression_model)
        assert sampler.schedule() == ["gibbs:alpha", "gibbs:beta", "metropolis:sigma"]

    def test_probit_schedule_is_metropolis(self, probit) -> None:
        sampler = MetropolisWithinGibbs(probit)
        assert sampler.schedule() == ["metropolis:alpha", "metropolis:beta"]

    def test_block_schedule(self, probit) -> None:
        sampler = MetropolisWithinGibbs(probit, block=True)
        assert sampler.schedule() == ["metropolis:alpha+beta"]

    def test_gibbs_disabled(self, regression_model) -> None:
        sampler = MetropolisWithinGibbs(regression_model, gibbs=False)
        assert all(label.startswith("metropolis:") for label in sampler.schedule())

    def test_prior_only_model_uses_gibbs(self) -> None:
        model = build_model([Parameter("z", Normal(0, 1))])
        assert MetropolisWithinGibbs(model).schedule() == ["gibbs:z"]

    def test_flat_prior_outside_predictor_is_metropolis(self) -> None:
        model = build_model(
            [Parameter("mu", Normal(0, 10)), Parameter("sigma", Uniform(0, 5)), Parameter("free", Flat())],
            NormalLikelihood("y", LinearPredictor(intercepts=("mu",)), sigma="sigma"),
            data={"y": [0.1, -0.2, 0.4]},
        )
        assert MetropolisWithinGibbs(model).schedule() == [
            "gibbs:mu", "metropolis:sigma", "metropolis:free",
        ]

    def test_per_parameter_scales(self, probit) -> None:
        sampler = MetropolisWithinGibbs(probit, proposal_scale={"alpha": 0.05, "beta": 0.2})
        assert sampler.initial_scales() == {"metropolis:alpha": 0.05, "metropolis:beta": 0.2}
        block = MetropolisWithinGibbs(probit, proposal_scale={"alpha": 0.05, "beta": 0.2}, block=True)
        assert block.initial_scales() == {"metropolis:alpha+beta": 0.05}

    @pytest.mark.parametrize("scale", [0.0, -1.0, np.inf])
    def test_invalid_scale(self, probit, scale) -> None:
        with pytest.raises(ValueError):
            MetropolisWithinGibbs(probit, proposal_scale=scale)

    def test_unknown_scale_parameter(self, probit) -> None:
        with pytest.raises(ValueError, match="unknown"):
            MetropolisWithinGibbs(probit, proposal_scale={"gamma": 0.1})

    def test_invalid_tune_interval(self, probit) -> None:
        with pytest.raises(ValueError):
            MetropolisWithinGibbs(probit, tune_interval=0)


class TestGibbsStep:
    """Closed-form conditional draws."""

    def test_known_sigma_normal_mean_posterior(self) -> None:
        # y_i ~ N(mu, 2^2), mu ~ N(1, 3^2): posterior is N(m, v) in closed form
        y = np.array([2.0, 3.5, 1.0, 4.2, 2.8])
        model = build_model(
            [Parameter("mu", Normal(1.0, 3.0))],
            NormalLikelihood("y", LinearPredictor(intercepts=("mu",)), sigma=2.0),
            data={"y": y},
        )
        precision = len(y) / 4.0 + 1.0 / 9.0
        mean = (y.sum() / 4.0 + 1.0 / 9.0) / precision

        sampler = MetropolisWithinGibbs(model)
        state = sampler.initialize(np.array([0.0]))
        rng = np.random.default_rng(0)
        draws = np.array([sampler.step(state, rng).theta[0] for _ in range(20000)])

        assert abs(draws.mean() - mean) < 0.025
        assert abs(draws.var() - 1.0 / precision) < 0.03

    def test_vector_coefficients_match_least_squares(self) -> None:
        data = SyntheticDataGenerator(n_obs=500, random_seed=3).linear_regression(
            alpha=0.0, beta=(1.0, -2.0), sigma=0.5
        )
        model = build_model(
            [Parameter("beta", Flat(), shape="K")],
            NormalLikelihood("y", LinearPredictor(slopes={"beta": "X"}), sigma=0.5),
            data=data,
        )
        sampler = MetropolisWithinGibbs(model)
        state = sampler.initialize(np.zeros(2))
        rng = np.random.default_rng(1)
        draws = np.array([sampler.step(state, rng).theta.copy() for _ in range(4000)])

        ols, *_ = np.linalg.lstsq(data["X"], data["y"], rcond=None)
        assert_allclose(draws.mean(axis=0), ols, atol=0.01)

    def test_log_posterior_tracked(self, regression_model) -> None:
        sampler = MetropolisWithinGibbs(regression_model)
        state = sampler.initialize(regression_model.pack({"alpha": 0, "beta": [0, 0], "sigma": 1}))
        rng = np.random.default_rng(2)
        for _ in range(20):
            sampler.step(state, rng)
            assert state.log_posterior == regression_model.log_posterior(state.theta)

    def test_singular_precision_raises(self) -> None:
        model = build_model(
            [Parameter("mu", Flat())],
            NormalLikelihood("y", LinearPredictor(intercepts=("mu",)), sigma=1.0),
            data={"y": np.zeros(0)},
        )
        step = GibbsStep(model, model.parameter("mu"))
        state = ChainState(np.array([0.0]), 0.0, {})
        with pytest.raises(NumericError, match="singular"):
            step.update(state, np.random.default_rng(0))

    def test_non_finite_state_after_draw_raises(self, regression_model) -> None:
        # sigma outside its support: the draw succeeds, the new state is -inf
        theta = regression_model.pack({"alpha": 0.0, "beta": [0.0, 0.0], "sigma": -1.0})
        state = ChainState(theta, 0.0, {})
        step = GibbsStep(regression_model, regression_model.parameter("alpha"))
        with pytest.raises(NumericError, match="after Gibbs update of 'alpha'"):
            step.update(state, np.random.default_rng(12))


class TestMetropolisStep:
    """Random-walk Metropolis updates."""

    def test_out_of_support_proposals_rejected(self) -> None:
        model = build_model([Parameter("s", Uniform(0.0, 1.0))])
        sampler = MetropolisWithinGibbs(model, proposal_scale=5.0)
        state = sampler.initialize(np.array([0.5]))
        rng = np.random.default_rng(3)
        for _ in range(500):
            sampler.step(state, rng)
            assert 0.0 < state.theta[0] < 1.0
            assert np.isfinite(state.log_posterior)
        assert state.proposed["metropolis:s"] == 500
        assert state.accepted["metropolis:s"] < 500

    def test_only_block_indices_move(self, regression_model) -> None:
        sampler = MetropolisWithinGibbs(regression_model, gibbs=False)
        step = sampler.steps[2]
        assert isinstance(step, MetropolisStep)
        theta0 = regression_model.pack({"alpha": 0.1, "beta": [0.3, -0.3], "sigma": 1.0})
        state = sampler.initialize(theta0)
        rng = np.random.default_rng(4)
        for _ in range(50):
            step.update(state, rng)
        assert_allclose(state.theta[:3], theta0[:3])

    def test_acceptance_rates(self, probit) -> None:
        sampler = MetropolisWithinGibbs(probit, proposal_scale=1e-4)
        state = sampler.initialize(np.zeros(probit.dim))
        rng = np.random.default_rng(5)
        for _ in range(100):
            sampler.step(state, rng)
        rates = state.acceptance_rates()
        assert set(rates) == {"metropolis:alpha", "metropolis:beta"}
        assert all(r > 0.8 for r in rates.values())


class TestTuning:
    """Warm-up proposal adaptation."""

    def test_tiny_scale_grows(self, probit) -> None:
        sampler = MetropolisWithinGibbs(probit, proposal_scale=1e-4)
        state = sampler.initialize(np.zeros(probit.dim))
        rng = np.random.default_rng(6)
        for _ in range(100):
            sampler.step(state, rng)
        sampler.tune(state)
        assert state.scales["metropolis:alpha"] > 1e-4

    def test_huge_scale_shrinks(self, probit) -> None:
        sampler = MetropolisWithinGibbs(probit, proposal_scale=100.0)
        state = sampler.initialize(np.zeros(probit.dim))
        rng = np.random.default_rng(7)
        for _ in range(100):
            sampler.step(state, rng)
        sampler.tune(state)
        assert state.scales["metropolis:beta"] < 100.0

    def test_tune_resets_window_only(self, probit) -> None:
        sampler = MetropolisWithinGibbs(probit)
        state = sampler.initialize(np.zeros(probit.dim))
        rng = np.random.default_rng(8)
        for _ in range(10):
            sampler.step(state, rng)
        sampler.tune(state)
        assert state.window_rate("metropolis:alpha") == 0.0
        assert state.proposed["metropolis:alpha"] == 10


class TestRestart:
    """Continuation from saved states."""

    def test_copy_continues_identically(self, regression_model) -> None:
        sampler = MetropolisWithinGibbs(regression_model)
        state = sampler.initialize(regression_model.pack({"alpha": 0, "beta": [0, 0], "sigma": 1}))
        rng = np.random.default_rng(9)
        for _ in range(10):
            sampler.step(state, rng)

        saved = state.copy()
        rng_a = np.random.default_rng(10)
        rng_b = np.random.default_rng(10)
        for _ in range(10):
            sampler.step(state, rng_a)
            sampler.step(saved, rng_b)
        assert_allclose(state.theta, saved.theta, rtol=0, atol=0)

    def test_copy_is_independent(self, regression_model) -> None:
        sampler = MetropolisWithinGibbs(regression_model)
        state = sampler.initialize(regression_model.pack({"alpha": 0, "beta": [0, 0], "sigma": 1}))
        saved = state.copy()
        sampler.step(state, np.random.default_rng(11))
        assert_allclose(saved.theta, [0, 0, 0, 1])

    def test_initialize_rejects_non_finite(self, regression_model) -> None:
        sampler = MetropolisWithinGibbs(regression_model)
        with pytest.raises(NumericError):
            sampler.initialize(regression_model.pack({"alpha": 0, "beta": [0, 0], "sigma": -1}))
