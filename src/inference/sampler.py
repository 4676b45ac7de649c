"""
Metropolis-within-Gibbs sampler.

One iteration (a "sweep") runs a fixed schedule of update steps, one per
parameter in declaration order:

- GibbsStep: closed-form draw from the Gaussian full conditional. Used when
  the parameter enters a Gaussian likelihood's linear predictor and has a
  Normal (or Flat) prior:

      theta_p | rest ~ N(m, P^-1)
      P = Z'Z / sigma^2 + I / tau^2
      m = P^-1 (Z'r / sigma^2 + mu0 / tau^2)

  where Z is the parameter's design matrix and r the partial residual.

- MetropolisStep: random-walk proposal theta' = theta + s * z, z ~ N(0, I),
  accepted with probability min(1, exp(lp(theta') - lp(theta))). Proposals
  with a non-finite log-posterior are always rejected.

Each step conditions on the most recent values of all other parameters.
During warm-up the proposal scale s of every Metropolis step is tuned from
its acceptance rate; scales are frozen once draws are recorded.
"""

from typing import Dict, List, Mapping, Optional, Union
import logging
import numpy as np
from numpy.typing import NDArray
from scipy.linalg import LinAlgError, cho_solve, cholesky, solve_triangular

from models.errors import NumericError
from models.likelihoods import NormalLikelihood
from models.priors import Flat, Normal
from models.spec import ModelSpec, ParameterInfo

logger = logging.getLogger(__name__)

DEFAULT_PROPOSAL_SCALE = 0.5
DEFAULT_TUNE_INTERVAL = 100


class ChainState:
    """
    Mutable state of one chain: the current point and step bookkeeping.

    Attributes
    ----------
    theta : NDArray[np.float64]
        Current flat parameter vector.
    log_posterior : float
        Log-posterior at theta. Always finite.
    scales : Dict[str, float]
        Proposal scale per Metropolis step label.
    accepted, proposed : Dict[str, int]
        Lifetime counters per Metropolis step label.
    """

    def __init__(
        self,
        theta: NDArray[np.float64],
        log_posterior: float,
        scales: Dict[str, float],
    ) -> None:
        self.theta = np.array(theta, dtype=np.float64)
        self.log_posterior = float(log_posterior)
        self.scales = dict(scales)
        self.accepted: Dict[str, int] = {k: 0 for k in scales}
        self.proposed: Dict[str, int] = {k: 0 for k in scales}
        self._window_accepted: Dict[str, int] = {k: 0 for k in scales}
        self._window_proposed: Dict[str, int] = {k: 0 for k in scales}

    def record(self, label: str, accepted: bool) -> None:
        self.proposed[label] += 1
        self._window_proposed[label] += 1
        if accepted:
            self.accepted[label] += 1
            self._window_accepted[label] += 1

    def window_rate(self, label: str) -> float:
        proposed = self._window_proposed[label]
        return self._window_accepted[label] / proposed if proposed else 0.0

    def reset_window(self) -> None:
        for k in self._window_proposed:
            self._window_accepted[k] = 0
            self._window_proposed[k] = 0

    def acceptance_rates(self) -> Dict[str, float]:
        return {
            k: (self.accepted[k] / self.proposed[k] if self.proposed[k] else float("nan"))
            for k in self.proposed
        }

    def copy(self) -> "ChainState":
        """Independent copy, e.g. to continue sampling from a saved point."""
        new = ChainState(self.theta, self.log_posterior, self.scales)
        new.accepted = dict(self.accepted)
        new.proposed = dict(self.proposed)
        return new

    def __repr__(self) -> str:
        return f"ChainState(log_posterior={self.log_posterior:.3f}, scales={self.scales})"


class GibbsStep:
    """Closed-form Gaussian full-conditional draw for one parameter."""

    kind = "gibbs"

    def __init__(self, model: ModelSpec, param: ParameterInfo) -> None:
        self.model = model
        self.param = param
        self.label = f"gibbs:{param.name}"
        if isinstance(param.prior, Normal):
            self.prior_mean = param.prior.mu
            self.prior_precision = param.prior.precision
        else:
            self.prior_mean = 0.0
            self.prior_precision = 0.0

        lik = model.likelihood
        self.in_predictor = lik is not None and param.name in lik.predictor.parameters

    def update(self, state: ChainState, rng: np.random.Generator) -> None:
        p = self.param
        precision = np.eye(p.size) * self.prior_precision
        shift = np.full(p.size, self.prior_mean * self.prior_precision)

        if self.in_predictor:
            lik = self.model.likelihood
            data = self.model.data
            values = self.model.unpack(state.theta)
            y = data[lik.response]
            n = y.shape[0]
            sigma2 = lik.sigma_value(values) ** 2
            Z = lik.predictor.design(p.name, data, n)
            resid = y - lik.predictor.evaluate(values, data, n, exclude=p.name)
            precision = precision + Z.T @ Z / sigma2
            shift = shift + Z.T @ resid / sigma2

        try:
            L = cholesky(precision, lower=True)
        except LinAlgError as e:
            raise NumericError(
                f"Full conditional of '{p.name}' has a singular precision matrix"
            ) from e

        mean = cho_solve((L, True), shift)
        z = rng.standard_normal(p.size)
        state.theta[p.slice] = mean + solve_triangular(L, z, lower=True, trans="T")

        lp = self.model.log_posterior(state.theta)
        if not np.isfinite(lp):
            raise NumericError(
                f"Non-finite log-posterior ({lp}) after Gibbs update of '{p.name}'"
            )
        state.log_posterior = lp


class MetropolisStep:
    """Random-walk Metropolis update of one or more parameters as a block."""

    kind = "metropolis"

    def __init__(self, model: ModelSpec, params: List[ParameterInfo]) -> None:
        self.model = model
        self.params = list(params)
        self.label = "metropolis:" + "+".join(p.name for p in self.params)
        self.indices = np.concatenate(
            [np.arange(p.offset, p.offset + p.size) for p in self.params]
        )

    def update(self, state: ChainState, rng: np.random.Generator) -> None:
        proposal = state.theta.copy()
        proposal[self.indices] += state.scales[self.label] * rng.standard_normal(self.indices.size)
        log_u = np.log(rng.uniform())

        lp = self.model.log_posterior(proposal)
        accepted = bool(np.isfinite(lp) and log_u < lp - state.log_posterior)
        if accepted:
            state.theta = proposal
            state.log_posterior = lp
        state.record(self.label, accepted)


Step = Union[GibbsStep, MetropolisStep]


class MetropolisWithinGibbs:
    """
    Component-wise MCMC sampler for a ModelSpec.

    The update schedule is fixed at construction and can be inspected with
    ``schedule()``. Steps hold no per-chain state; everything mutable lives
    in the ChainState passed to ``step``, so one sampler serves all chains.

    Parameters
    ----------
    model : ModelSpec
        Model to sample.
    proposal_scale : float or mapping
        Random-walk standard deviation, either global or per parameter name.
        A block step starts from the smallest scale of its members.
    block : bool
        If True, all Metropolis parameters are updated jointly in a single
        step placed at the position of the first one. Default False.
    gibbs : bool
        Use closed-form Gibbs draws where conjugate. Default True.
    tune_interval : int
        Warm-up iterations between proposal scale adjustments. Default 100.
    """

    def __init__(
        self,
        model: ModelSpec,
        proposal_scale: Union[float, Mapping[str, float]] = DEFAULT_PROPOSAL_SCALE,
        block: bool = False,
        gibbs: bool = True,
        tune_interval: int = DEFAULT_TUNE_INTERVAL,
    ) -> None:
        scales = proposal_scale if isinstance(proposal_scale, Mapping) else {}
        default = DEFAULT_PROPOSAL_SCALE if isinstance(proposal_scale, Mapping) else proposal_scale
        for value in list(scales.values()) + [default]:
            if not (np.isfinite(value) and value > 0):
                raise ValueError(f"proposal_scale must be positive. Got {value}")
        unknown = set(scales) - set(model.names)
        if unknown:
            raise ValueError(f"proposal_scale given for unknown parameters: {sorted(unknown)}")
        if tune_interval < 1:
            raise ValueError(f"tune_interval must be >= 1. Got {tune_interval}")

        self.model = model
        self.block = block
        self.gibbs = gibbs
        self.tune_interval = tune_interval
        self._default_scale = float(default)
        self._param_scales = {k: float(v) for k, v in scales.items()}
        self.steps: List[Step] = self._build_schedule()

    def _is_conjugate(self, param: ParameterInfo) -> bool:
        lik = self.model.likelihood
        if lik is None:
            return isinstance(param.prior, Normal)
        if not isinstance(param.prior, (Normal, Flat)):
            return False
        if isinstance(lik, NormalLikelihood) and param.name in lik.predictor.parameters:
            return True
        # Parameter outside the likelihood: its full conditional is the prior
        return isinstance(param.prior, Normal) and param.name not in lik.parameters

    def _build_schedule(self) -> List[Step]:
        steps: List[Step] = []
        pending: List[ParameterInfo] = []
        block_position: Optional[int] = None

        for param in self.model.parameters:
            if self.gibbs and self._is_conjugate(param):
                steps.append(GibbsStep(self.model, param))
            elif self.block:
                if block_position is None:
                    block_position = len(steps)
                pending.append(param)
            else:
                steps.append(MetropolisStep(self.model, [param]))

        if pending:
            steps.insert(block_position, MetropolisStep(self.model, pending))
        return steps

    def schedule(self) -> List[str]:
        """Labels of the update steps, in the order they run each sweep."""
        return [s.label for s in self.steps]

    def initial_scales(self) -> Dict[str, float]:
        scales = {}
        for s in self.steps:
            if isinstance(s, MetropolisStep):
                scales[s.label] = min(
                    self._param_scales.get(p.name, self._default_scale) for p in s.params
                )
        return scales

    def initialize(self, theta: NDArray[np.float64]) -> ChainState:
        """
        Validate a starting point and wrap it in a fresh ChainState.

        Raises
        ------
        NumericError
            If the log-posterior at theta is not finite.
        """
        theta = np.asarray(theta, dtype=np.float64)
        lp = self.model.log_posterior(theta)
        if not np.isfinite(lp):
            raise NumericError(f"Non-finite log-posterior ({lp}) at initial values {theta}")
        return ChainState(theta, lp, self.initial_scales())

    def step(self, state: ChainState, rng: np.random.Generator) -> ChainState:
        """Advance the state by one full sweep of the schedule."""
        for s in self.steps:
            s.update(state, rng)
        return state

    def tune(self, state: ChainState) -> None:
        """
        Rescale proposals from the acceptance rate of the last window.

        Uses the same table as PyMC's Metropolis tuning.
        """
        for label, scale in state.scales.items():
            rate = state.window_rate(label)
            if rate < 0.001:
                scale *= 0.1
            elif rate < 0.05:
                scale *= 0.5
            elif rate < 0.2:
                scale *= 0.9
            elif rate > 0.95:
                scale *= 10.0
            elif rate > 0.75:
                scale *= 2.0
            elif rate > 0.5:
                scale *= 1.1
            logger.debug("Tuned %s: acceptance %.2f -> scale %.4g", label, rate, scale)
            state.scales[label] = scale
        state.reset_window()

    def __repr__(self) -> str:
        return f"MetropolisWithinGibbs(schedule={self.schedule()})"
