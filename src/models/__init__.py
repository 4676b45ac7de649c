"""
Model specification: priors, likelihoods and derived quantities.

**Priors (priors.py):**
- Normal, HalfNormal, Uniform, Flat families with hyperparameter validation

**Likelihoods (likelihoods.py):**
- LinearPredictor shared by all observation models
- NormalLikelihood (Gaussian regression) and ProbitLikelihood (binary response)

**Specification (spec.py):**
- Parameter declarations with shapes resolved from data (e.g. "K")
- ModelBuilder / build_model validating everything up front (SpecError)
- ModelSpec exposing log_posterior and evaluate_derived

**Library (library.py):**
- The demonstrated models: normal mean, linear regression, two-intercept
  regression, probit regression and probit counterfactual predictions

**Usage:**
```python
from models import build_model, Parameter, Normal, Uniform
from models import LinearPredictor, NormalLikelihood

model = build_model(
    parameters=[
        Parameter("alpha", Normal(0, 100)),
        Parameter("beta", Normal(0, 100), shape="K"),
        Parameter("sigma", Uniform(0, 10)),
    ],
    likelihood=NormalLikelihood(
        "y", LinearPredictor(intercepts=("alpha",), slopes={"beta": "X"}), sigma="sigma"
    ),
    data={"y": y, "X": X, "K": 2},
)
model.log_posterior({"alpha": 0.1, "beta": [0.3, -0.3], "sigma": 1.0})
```
"""

from models.errors import SpecError, NumericError
from models.priors import Prior, Normal, HalfNormal, Uniform, Flat
from models.likelihoods import LinearPredictor, NormalLikelihood, ProbitLikelihood
from models.derived import DerivedQuantity, linear_combination, probit_probability, difference
from models.spec import Parameter, ParameterInfo, ModelSpec, ModelBuilder, build_model

__all__ = [
    # Errors
    "SpecError",
    "NumericError",
    # Priors
    "Prior",
    "Normal",
    "HalfNormal",
    "Uniform",
    "Flat",
    # Likelihoods
    "LinearPredictor",
    "NormalLikelihood",
    "ProbitLikelihood",
    # Derived quantities
    "DerivedQuantity",
    "linear_combination",
    "probit_probability",
    "difference",
    # Specification
    "Parameter",
    "ParameterInfo",
    "ModelSpec",
    "ModelBuilder",
    "build_model",
]
