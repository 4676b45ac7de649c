"""
Model specification: parameters, priors, likelihood and derived quantities.

A ModelBuilder collects declarative definitions and validates them against
an observed-data mapping, producing an immutable ModelSpec:

    theta = (theta_1, ..., theta_P)                 # flat parameter vector
    log p(theta | y) = sum_p log p(theta_p) + log p(y | theta) + const

The ModelSpec is the only thing the sampler sees. It converts between the
flat vector used for proposals and named, shaped values used by the
likelihood and derived quantities.
"""

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union
import numpy as np
from numpy.typing import NDArray

from models.derived import DerivedQuantity
from models.errors import SpecError
from models.likelihoods import Likelihood
from models.priors import Flat, Prior, Uniform

ShapeLike = Union[int, str, Tuple[Union[int, str], ...]]
ParamValues = Mapping[str, NDArray[np.float64]]

INIT_STRATEGIES = ("jitter", "prior")


class Parameter:
    """
    Declared model parameter.

    Parameters
    ----------
    name : str
        Parameter name.
    prior : Prior
        Prior distribution.
    shape : int, str or tuple
        () for scalars, an int, or the name of an integer data entry such
        as ``"K"`` resolved at build time.
    initial : array-like, optional
        Fixed starting value. Overrides the initialisation strategy.
    """

    def __init__(
        self,
        name: str,
        prior: Prior,
        shape: ShapeLike = (),
        initial: Optional[NDArray[np.float64]] = None,
    ) -> None:
        self.name = name
        self.prior = prior
        self.shape = tuple(shape) if isinstance(shape, (tuple, list)) else (shape,)
        self.initial = initial

    def __repr__(self) -> str:
        return f"Parameter({self.name!r}, prior={self.prior}, shape={self.shape})"


class ParameterInfo:
    """Parameter with a resolved shape and position in the flat vector."""

    def __init__(self, parameter: Parameter, shape: Tuple[int, ...], offset: int) -> None:
        self.name = parameter.name
        self.prior = parameter.prior
        self.shape = shape
        self.size = int(np.prod(shape)) if shape else 1
        self.offset = offset
        self.slice = slice(offset, offset + self.size)
        self.initial = parameter.initial

    @property
    def flat_names(self) -> List[str]:
        if not self.shape:
            return [self.name]
        return [
            f"{self.name}[{','.join(str(i) for i in idx)}]"
            for idx in np.ndindex(*self.shape)
        ]

    def __repr__(self) -> str:
        return f"ParameterInfo({self.name!r}, shape={self.shape}, offset={self.offset})"


class ModelSpec:
    """
    Immutable, validated Bayesian model.

    Attributes
    ----------
    parameters : tuple of ParameterInfo
        Parameters in declaration order.
    likelihood : Likelihood or None
        Observation model. None means the posterior equals the prior.
    derived : tuple of DerivedQuantity
        Derived quantities in evaluation order.
    data : mapping
        Read-only observed data.
    dim : int
        Length of the flat parameter vector.
    """

    def __init__(
        self,
        parameters: Sequence[ParameterInfo],
        likelihood: Optional[Likelihood],
        derived: Sequence[DerivedQuantity],
        data: Mapping[str, NDArray[np.float64]],
    ) -> None:
        self.parameters: Tuple[ParameterInfo, ...] = tuple(parameters)
        self.likelihood = likelihood
        self.derived: Tuple[DerivedQuantity, ...] = tuple(derived)
        self.data = MappingProxyType(dict(data))
        self.dim = sum(p.size for p in self.parameters)
        self._by_name: Dict[str, ParameterInfo] = {p.name: p for p in self.parameters}

    @property
    def names(self) -> List[str]:
        return [p.name for p in self.parameters]

    @property
    def flat_names(self) -> List[str]:
        return [n for p in self.parameters for n in p.flat_names]

    @property
    def derived_names(self) -> List[str]:
        return [d.name for d in self.derived]

    def parameter(self, name: str) -> ParameterInfo:
        return self._by_name[name]

    @property
    def n_obs(self) -> int:
        if self.likelihood is None:
            return 0
        return self.likelihood.n_obs(self.data)

    # ------------------------------------------------------------------
    # Flat vector <-> named values
    # ------------------------------------------------------------------

    def unpack(self, theta: NDArray[np.float64]) -> Dict[str, NDArray[np.float64]]:
        """Split a flat vector into named, shaped arrays."""
        theta = np.asarray(theta, dtype=np.float64)
        if theta.shape != (self.dim,):
            raise ValueError(f"theta must have shape ({self.dim},). Got {theta.shape}")
        return {p.name: theta[p.slice].reshape(p.shape) for p in self.parameters}

    def pack(self, values: ParamValues) -> NDArray[np.float64]:
        """Concatenate named values into a flat vector."""
        theta = np.empty(self.dim)
        for p in self.parameters:
            if p.name not in values:
                raise ValueError(f"Missing value for parameter '{p.name}'")
            v = np.asarray(values[p.name], dtype=np.float64)
            if v.size != p.size:
                raise ValueError(
                    f"Parameter '{p.name}' must have {p.size} elements. Got {v.size}"
                )
            theta[p.slice] = v.reshape(-1)
        return theta

    def _as_values(self, values: Union[ParamValues, NDArray[np.float64]]) -> Dict[str, NDArray[np.float64]]:
        if isinstance(values, Mapping):
            return self.unpack(self.pack(values))
        return self.unpack(values)

    # ------------------------------------------------------------------
    # Densities
    # ------------------------------------------------------------------

    def log_prior(self, values: Union[ParamValues, NDArray[np.float64]]) -> float:
        return self._log_prior(self._as_values(values))

    def log_likelihood(self, values: Union[ParamValues, NDArray[np.float64]]) -> float:
        if self.likelihood is None:
            return 0.0
        return self.likelihood.log_density(self._as_values(values), self.data)

    def log_posterior(self, values: Union[ParamValues, NDArray[np.float64]]) -> float:
        """
        Unnormalised log-posterior: log-prior plus log-likelihood.

        Deterministic and side-effect free. Returns -inf when the values lie
        outside the prior support; the likelihood is skipped in that case.
        """
        values = self._as_values(values)
        lp = self._log_prior(values)
        if not np.isfinite(lp):
            return -np.inf
        if self.likelihood is not None:
            lp += self.likelihood.log_density(values, self.data)
        return float(lp)

    def _log_prior(self, values: Dict[str, NDArray[np.float64]]) -> float:
        return float(sum(p.prior.logpdf(values[p.name]) for p in self.parameters))

    def evaluate_derived(self, values: Union[ParamValues, NDArray[np.float64]]) -> Dict[str, float]:
        """Evaluate every derived quantity, in declaration order."""
        values = self._as_values(values)
        out: Dict[str, float] = {}
        for d in self.derived:
            out[d.name] = d(values, self.data, out)
        return out

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def initial_values(
        self,
        rng: np.random.Generator,
        strategy: str = "jitter",
    ) -> NDArray[np.float64]:
        """
        Draw a dispersed starting vector.

        Parameters
        ----------
        rng : np.random.Generator
            Chain-owned random stream.
        strategy : {"jitter", "prior"}
            ``"jitter"`` draws uniform(-2, 2) for unbounded supports and
            in-support values otherwise. ``"prior"`` draws from proper
            priors, falling back to jitter for improper ones.

        Returns
        -------
        theta : NDArray[np.float64]
            Flat vector of shape (dim,).
        """
        if strategy not in INIT_STRATEGIES:
            raise ValueError(f"strategy must be one of {INIT_STRATEGIES}. Got {strategy!r}")

        theta = np.empty(self.dim)
        for p in self.parameters:
            if p.initial is not None:
                theta[p.slice] = np.asarray(p.initial, dtype=np.float64).reshape(-1)
            elif strategy == "prior" and p.prior.proper:
                theta[p.slice] = p.prior.sample(rng, (p.size,))
            else:
                theta[p.slice] = _jitter(p.prior, rng, p.size)
        return theta

    def __repr__(self) -> str:
        return (
            f"ModelSpec(parameters={self.names}, likelihood={self.likelihood}, "
            f"derived={self.derived_names}, n_obs={self.n_obs})"
        )


def _jitter(prior: Prior, rng: np.random.Generator, size: int) -> NDArray[np.float64]:
    lower, upper = prior.support
    if isinstance(prior, Uniform):
        return rng.uniform(lower, upper, size=size)
    if np.isfinite(lower):
        # Positive support: exp(uniform(-2, 2)) shifted onto the bound
        return lower + np.exp(rng.uniform(-2.0, 2.0, size=size))
    return rng.uniform(-2.0, 2.0, size=size)


class ModelBuilder:
    """
    Builder for validated Bayesian models.

    Parameters
    ----------
    parameters : sequence of Parameter
        Declared parameters with priors.
    likelihood : Likelihood, optional
        Observation model. If None, the posterior is the prior.
    derived : sequence of DerivedQuantity, optional
        Derived quantities evaluated per draw.
    """

    def __init__(
        self,
        parameters: Sequence[Parameter],
        likelihood: Optional[Likelihood] = None,
        derived: Sequence[DerivedQuantity] = (),
    ) -> None:
        self.parameters = list(parameters)
        self.likelihood = likelihood
        self.derived = list(derived)
        self.model: Optional[ModelSpec] = None

    def build(self, data: Optional[Mapping[str, object]] = None) -> ModelSpec:
        """
        Validate definitions against data and build the model.

        Raises
        ------
        SpecError
            Undefined variable reference, invalid prior hyperparameter,
            or data inconsistent with declared shapes and index ranges.
        """
        frozen = _freeze_data(data or {})

        if not self.parameters:
            raise SpecError("Model must declare at least one parameter")

        infos: List[ParameterInfo] = []
        seen = set()
        offset = 0
        for param in self.parameters:
            if param.name in seen:
                raise SpecError(f"Duplicate parameter name '{param.name}'")
            seen.add(param.name)
            if not isinstance(param.prior, Prior):
                raise SpecError(f"Parameter '{param.name}' needs a Prior. Got {param.prior!r}")
            param.prior.validate()
            shape = _resolve_shape(param, frozen)
            info = ParameterInfo(param, shape, offset)
            if param.initial is not None:
                init = np.asarray(param.initial, dtype=np.float64)
                if init.size != info.size:
                    raise SpecError(
                        f"Initial value of '{param.name}' must have {info.size} elements. Got {init.size}"
                    )
            infos.append(info)
            offset += info.size

        by_name = {p.name: p for p in infos}

        if self.likelihood is not None:
            self._validate_likelihood(by_name, frozen)

        derived_seen: set = set()
        for d in self.derived:
            if d.name in seen or d.name in derived_seen:
                raise SpecError(f"Derived quantity '{d.name}' clashes with an existing name")
            _require(d.parameters, seen, f"derived quantity '{d.name}'", "parameter")
            _require(d.covariates, frozen, f"derived quantity '{d.name}'", "data variable")
            _require(d.quantities, derived_seen, f"derived quantity '{d.name}'", "derived quantity")
            derived_seen.add(d.name)

        model = ModelSpec(infos, self.likelihood, self.derived, frozen)
        _dry_run_derived(model)

        self.model = model
        return model

    def _validate_likelihood(
        self,
        params: Mapping[str, ParameterInfo],
        data: Mapping[str, NDArray[np.float64]],
    ) -> None:
        lik = self.likelihood
        _require(lik.parameters, params, "likelihood", "parameter")
        _require(lik.data_names, data, "likelihood", "data variable")

        y = data[lik.response]
        lik.validate_response(y)
        n_obs = y.shape[0]

        if lik.length is not None:
            declared = data[lik.length]
            if declared.ndim != 0 or declared != int(declared) or int(declared) != n_obs:
                raise SpecError(
                    f"'{lik.length}' = {declared} does not match length of "
                    f"'{lik.response}' ({n_obs})"
                )

        for name in lik.predictor.intercepts:
            if params[name].size != 1:
                raise SpecError(f"Intercept '{name}' must be scalar. Got shape {params[name].shape}")

        for name, covariate in lik.predictor.slopes.items():
            X = data[covariate]
            size = params[name].size
            if X.shape[0] != n_obs:
                raise SpecError(
                    f"Covariate '{covariate}' has {X.shape[0]} rows but "
                    f"'{lik.response}' has {n_obs}"
                )
            expected = (n_obs,) if (size == 1 and X.ndim == 1) else (n_obs, size)
            if X.shape != expected:
                raise SpecError(
                    f"Covariate '{covariate}' must have shape {expected} to match "
                    f"'{name}' (size {size}). Got {X.shape}"
                )

    def get_model(self) -> ModelSpec:
        """
        Get the built model.

        Raises
        ------
        RuntimeError
            If the model has not been built yet.
        """
        if self.model is None:
            raise RuntimeError("Model has not been built. Call .build() first.")
        return self.model

    def __repr__(self) -> str:
        return (
            f"ModelBuilder(parameters={[p.name for p in self.parameters]}, "
            f"likelihood={self.likelihood}, derived={[d.name for d in self.derived]})"
        )


def build_model(
    parameters: Sequence[Parameter],
    likelihood: Optional[Likelihood] = None,
    derived: Sequence[DerivedQuantity] = (),
    data: Optional[Mapping[str, object]] = None,
) -> ModelSpec:
    """Build a ModelSpec in one call. See ModelBuilder.build."""
    return ModelBuilder(parameters, likelihood, derived).build(data)


def _freeze_data(data: Mapping[str, object]) -> Dict[str, NDArray[np.float64]]:
    frozen = {}
    for name, value in data.items():
        try:
            arr = np.array(value, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise SpecError(f"Data variable '{name}' is not numeric: {e}") from e
        if not np.all(np.isfinite(arr)):
            raise SpecError(f"Data variable '{name}' contains non-finite values")
        arr.setflags(write=False)
        frozen[name] = arr
    return frozen


def _resolve_shape(param: Parameter, data: Mapping[str, NDArray[np.float64]]) -> Tuple[int, ...]:
    dims = []
    for dim in param.shape:
        if isinstance(dim, str):
            if dim not in data:
                raise SpecError(
                    f"Shape of '{param.name}' references undefined data variable '{dim}'"
                )
            value = data[dim]
            if value.ndim != 0 or value != int(value):
                raise SpecError(f"Index range '{dim}' must be an integer scalar. Got {value}")
            dim = int(value)
        elif not isinstance(dim, (int, np.integer)):
            raise SpecError(f"Dimensions of '{param.name}' must be integers. Got {param.shape}")
        if int(dim) <= 0:
            raise SpecError(f"Dimensions of '{param.name}' must be positive. Got {param.shape}")
        dims.append(int(dim))
    return tuple(dims)


def _require(names, defined, owner: str, kind: str) -> None:
    missing = [n for n in names if n not in defined]
    if missing:
        raise SpecError(f"{owner} references undefined {kind}(s): {missing}")


def _dry_run_derived(model: ModelSpec) -> None:
    # Shape mismatches between coefficients and covariate rows surface here
    if not model.derived:
        return
    values = {p.name: np.zeros(p.shape) for p in model.parameters}
    try:
        model.evaluate_derived(values)
    except (ValueError, IndexError) as e:
        raise SpecError(f"Derived quantities cannot be evaluated: {e}") from e
