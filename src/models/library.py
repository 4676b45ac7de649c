"""
Ready-made models for the demonstrated analyses.

    normal_mean_model            y_i ~ N(mu, sigma^2)
    linear_regression_model      y_i ~ N(alpha + X_i @ beta, sigma^2)
    two_intercept_model          y_i ~ N(a1 + a2 + X_i @ beta, sigma^2)
    probit_model                 y_i ~ Bernoulli(Phi(alpha + X_i @ beta))
    probit_counterfactual_model  probit_model + p1, p2, p2 - p1 at fixed rows

Priors are vague: Normal(0, 100) on locations and coefficients, Uniform(0, 10)
on the noise scale. The two-intercept model is deliberately
non-identifiable: only a1 + a2 is informed by the data, exposed as the
derived quantity ``a_sum``.
"""

from typing import Mapping, Sequence
import numpy as np

from models.derived import difference, linear_combination, probit_probability
from models.likelihoods import LinearPredictor, NormalLikelihood, ProbitLikelihood
from models.priors import Normal, Uniform
from models.spec import ModelSpec, Parameter, build_model

LOCATION_SCALE = 100.0
SIGMA_UPPER = 10.0


def normal_mean_model(
    data: Mapping[str, object],
    prior_scale: float = LOCATION_SCALE,
    sigma_upper: float = SIGMA_UPPER,
) -> ModelSpec:
    """Estimate the mean and scale of a normal sample. Needs ``y`` and ``N``."""
    return build_model(
        parameters=[
            Parameter("mu", Normal(0.0, prior_scale)),
            Parameter("sigma", Uniform(0.0, sigma_upper)),
        ],
        likelihood=NormalLikelihood("y", LinearPredictor(intercepts=("mu",)), sigma="sigma", length="N"),
        data=data,
    )


def linear_regression_model(
    data: Mapping[str, object],
    prior_scale: float = LOCATION_SCALE,
    sigma_upper: float = SIGMA_UPPER,
) -> ModelSpec:
    """Linear regression on ``X`` (N, K). Needs ``y``, ``X``, ``N``, ``K``."""
    return build_model(
        parameters=[
            Parameter("alpha", Normal(0.0, prior_scale)),
            Parameter("beta", Normal(0.0, prior_scale), shape="K"),
            Parameter("sigma", Uniform(0.0, sigma_upper)),
        ],
        likelihood=NormalLikelihood(
            "y",
            LinearPredictor(intercepts=("alpha",), slopes={"beta": "X"}),
            sigma="sigma",
            length="N",
        ),
        data=data,
    )


def two_intercept_model(
    data: Mapping[str, object],
    prior_scale: float = LOCATION_SCALE,
    sigma_upper: float = SIGMA_UPPER,
) -> ModelSpec:
    """Linear regression with two additive intercepts a1 and a2."""
    return build_model(
        parameters=[
            Parameter("a1", Normal(0.0, prior_scale)),
            Parameter("a2", Normal(0.0, prior_scale)),
            Parameter("beta", Normal(0.0, prior_scale), shape="K"),
            Parameter("sigma", Uniform(0.0, sigma_upper)),
        ],
        likelihood=NormalLikelihood(
            "y",
            LinearPredictor(intercepts=("a1", "a2"), slopes={"beta": "X"}),
            sigma="sigma",
            length="N",
        ),
        derived=[linear_combination("a_sum", {"a1": 1.0, "a2": 1.0})],
        data=data,
    )


def probit_model(
    data: Mapping[str, object],
    prior_scale: float = 10.0,
) -> ModelSpec:
    """Probit regression of binary ``y`` on ``X`` (N, K)."""
    return build_model(
        parameters=[
            Parameter("alpha", Normal(0.0, prior_scale)),
            Parameter("beta", Normal(0.0, prior_scale), shape="K"),
        ],
        likelihood=ProbitLikelihood(
            "y",
            LinearPredictor(intercepts=("alpha",), slopes={"beta": "X"}),
            length="N",
        ),
        data=data,
    )


def probit_counterfactual_model(
    data: Mapping[str, object],
    x_baseline: Sequence[float],
    x_alternative: Sequence[float],
    prior_scale: float = 10.0,
) -> ModelSpec:
    """
    Probit regression with counterfactual predictions.

    Derived quantities:
        p1      Phi(alpha + x_baseline @ beta)
        p2      Phi(alpha + x_alternative @ beta)
        p_diff  p2 - p1
    """
    data = dict(data)
    data["x_baseline"] = np.asarray(x_baseline, dtype=np.float64)
    data["x_alternative"] = np.asarray(x_alternative, dtype=np.float64)
    return build_model(
        parameters=[
            Parameter("alpha", Normal(0.0, prior_scale)),
            Parameter("beta", Normal(0.0, prior_scale), shape="K"),
        ],
        likelihood=ProbitLikelihood(
            "y",
            LinearPredictor(intercepts=("alpha",), slopes={"beta": "X"}),
            length="N",
        ),
        derived=[
            probit_probability("p1", intercepts=("alpha",), slopes={"beta": "x_baseline"}),
            probit_probability("p2", intercepts=("alpha",), slopes={"beta": "x_alternative"}),
            difference("p_diff", "p2", "p1"),
        ],
        data=data,
    )
