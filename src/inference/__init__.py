"""
Bayesian inference: Metropolis-within-Gibbs sampling and chain management.

This module provides the sampling pipeline:
1. MetropolisWithinGibbs: fixed update schedule of Gibbs and Metropolis steps
2. ChainManager: independent, reproducibly seeded chains (optionally threaded)
3. DiagnosticsComputer: Rhat, ESS, MCSE
4. InferenceSummary: completed chains, diagnostics and arviz export

**Usage:**
```python
from models.library import linear_regression_model
from inference import ChainManager

model = linear_regression_model(data)
manager = ChainManager(model, n_chains=4, n_iter=1000, burn_in=500, random_seed=1)
summary = manager.run()

summary.diagnostics["beta[0]"].rhat   # ~1.0
summary.samples("beta").shape         # (4, 1000, 2)
```

**Key Classes:**
- MetropolisWithinGibbs, GibbsStep, MetropolisStep, ChainState
- Chain, ChainStatus, Draw
- ChainManager, InferenceSummary
- DiagnosticsComputer, DiagnosticSummary
"""

from inference.sampler import (
    MetropolisWithinGibbs,
    GibbsStep,
    MetropolisStep,
    ChainState,
)
from inference.chains import Chain, ChainStatus, Draw, ChainManager, InferenceSummary
from inference.diagnostics import DiagnosticsComputer, DiagnosticSummary

__all__ = [
    "MetropolisWithinGibbs",
    "GibbsStep",
    "MetropolisStep",
    "ChainState",
    "Chain",
    "ChainStatus",
    "Draw",
    "ChainManager",
    "InferenceSummary",
    "DiagnosticsComputer",
    "DiagnosticSummary",
]
