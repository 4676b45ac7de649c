"""
Derived quantities: pure functions of parameters and fixed covariates.

A derived quantity is evaluated for every recorded draw, in declaration
order, so later quantities may reference earlier ones (e.g. a contrast
p2 - p1 between two predicted probabilities).
"""

from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple
import numpy as np
from numpy.typing import NDArray
from scipy.special import ndtr

Values = Mapping[str, NDArray[np.float64]]
Data = Mapping[str, NDArray[np.float64]]
DerivedFunction = Callable[[Values, Data, Mapping[str, float]], float]


class DerivedQuantity:
    """
    Named scalar function of parameter values.

    Parameters
    ----------
    name : str
        Quantity name, unique among parameters and derived quantities.
    function : callable
        ``function(values, data, derived) -> float`` where ``derived`` holds
        the quantities evaluated before this one.
    parameters : sequence of str
        Parameters the function reads.
    covariates : sequence of str
        Data entries the function reads.
    quantities : sequence of str
        Earlier derived quantities the function reads.
    """

    def __init__(
        self,
        name: str,
        function: DerivedFunction,
        parameters: Sequence[str] = (),
        covariates: Sequence[str] = (),
        quantities: Sequence[str] = (),
    ) -> None:
        self.name = name
        self.function = function
        self.parameters: Tuple[str, ...] = tuple(parameters)
        self.covariates: Tuple[str, ...] = tuple(covariates)
        self.quantities: Tuple[str, ...] = tuple(quantities)

    def __call__(self, values: Values, data: Data, derived: Mapping[str, float]) -> float:
        return float(self.function(values, data, derived))

    def __repr__(self) -> str:
        return f"DerivedQuantity({self.name!r}, parameters={self.parameters})"


def linear_combination(name: str, weights: Dict[str, float]) -> DerivedQuantity:
    """Weighted sum of scalar parameters, e.g. ``a1 + a2``."""
    weights = dict(weights)

    def _combine(values: Values, data: Data, derived: Mapping[str, float]) -> float:
        return sum(w * float(np.asarray(values[p]).reshape(-1)[0]) for p, w in weights.items())

    return DerivedQuantity(name, _combine, parameters=tuple(weights))


def probit_probability(
    name: str,
    intercepts: Sequence[str] = (),
    slopes: Optional[Dict[str, str]] = None,
) -> DerivedQuantity:
    """
    Predicted success probability Phi(a + x @ beta) at a fixed covariate row.

    ``slopes`` maps each coefficient parameter to a data entry holding a
    single covariate row (scalar or length-K vector).
    """
    if isinstance(intercepts, str):
        intercepts = (intercepts,)
    intercepts = tuple(intercepts)
    slopes = dict(slopes or {})

    def _probability(values: Values, data: Data, derived: Mapping[str, float]) -> float:
        eta = sum(float(np.asarray(values[a]).reshape(-1)[0]) for a in intercepts)
        for param, covariate in slopes.items():
            x = np.asarray(data[covariate], dtype=np.float64).reshape(-1)
            eta += float(x @ np.asarray(values[param], dtype=np.float64).reshape(-1))
        return float(ndtr(eta))

    return DerivedQuantity(
        name,
        _probability,
        parameters=intercepts + tuple(slopes),
        covariates=tuple(slopes.values()),
    )


def difference(name: str, minuend: str, subtrahend: str) -> DerivedQuantity:
    """Contrast ``minuend - subtrahend`` between two earlier derived quantities."""

    def _difference(values: Values, data: Data, derived: Mapping[str, float]) -> float:
        return derived[minuend] - derived[subtrahend]

    return DerivedQuantity(name, _difference, quantities=(minuend, subtrahend))
