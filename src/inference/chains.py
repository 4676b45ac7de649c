"""
Chain management: independent chains, draws and run summaries.

Each Chain owns its random stream, its ChainState and an append-only list
of immutable Draws, and moves through

    UNINITIALIZED -> WARMING -> SAMPLING -> COMPLETE

Warm-up draws are discarded. The ChainManager seeds chains from
independent SeedSequence children, runs them (optionally in a thread
pool), waits for all of them to finish and only then computes diagnostics.
A fixed random_seed reproduces every draw bit for bit, regardless of the
number of worker threads.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Union
import logging
import threading
import time
import numpy as np
from numpy.typing import NDArray
import arviz as az

from inference.diagnostics import RHAT_THRESHOLD, DiagnosticSummary, DiagnosticsComputer
from inference.sampler import DEFAULT_PROPOSAL_SCALE, DEFAULT_TUNE_INTERVAL, ChainState, MetropolisWithinGibbs
from models.errors import NumericError
from models.spec import INIT_STRATEGIES, ModelSpec

logger = logging.getLogger(__name__)

MAX_INIT_ATTEMPTS = 100

InitialValues = Union[ChainState, Mapping[str, object], NDArray[np.float64]]


class ChainStatus(Enum):
    UNINITIALIZED = "uninitialized"
    WARMING = "warming"
    SAMPLING = "sampling"
    COMPLETE = "complete"


_TRANSITIONS = {
    ChainStatus.UNINITIALIZED: ChainStatus.WARMING,
    ChainStatus.WARMING: ChainStatus.SAMPLING,
    ChainStatus.SAMPLING: ChainStatus.COMPLETE,
}


@dataclass(frozen=True)
class Draw:
    """One recorded posterior draw. Arrays are read-only."""

    chain_id: int
    iteration: int
    theta: NDArray[np.float64]
    values: Mapping[str, NDArray[np.float64]]
    derived: Mapping[str, float]
    log_posterior: float


class Chain:
    """
    A single Markov chain.

    Parameters
    ----------
    chain_id : int
        Index of the chain within its run.
    model : ModelSpec
        Model being sampled.
    sampler : MetropolisWithinGibbs
        Update schedule shared (read-only) between chains.
    rng : np.random.Generator
        Random stream owned exclusively by this chain.
    """

    def __init__(
        self,
        chain_id: int,
        model: ModelSpec,
        sampler: MetropolisWithinGibbs,
        rng: np.random.Generator,
    ) -> None:
        self.chain_id = chain_id
        self.model = model
        self.sampler = sampler
        self.rng = rng
        self.status = ChainStatus.UNINITIALIZED
        self.state: Optional[ChainState] = None
        self.stopped_early = False
        self._draws: List[Draw] = []

    @property
    def draws(self) -> tuple:
        return tuple(self._draws)

    def __len__(self) -> int:
        return len(self._draws)

    def _transition(self, target: ChainStatus) -> None:
        if _TRANSITIONS.get(self.status) is not target:
            raise RuntimeError(
                f"Chain {self.chain_id}: illegal transition {self.status.value} -> {target.value}"
            )
        self.status = target

    def initialize(
        self,
        initial: Optional[InitialValues] = None,
        strategy: str = "jitter",
    ) -> ChainState:
        """
        Set the starting point.

        Parameters
        ----------
        initial : ChainState, mapping or array, optional
            Warm start. A ChainState is continued as-is (including tuned
            proposal scales); values are validated. If None, draw dispersed
            values with ``strategy`` until the log-posterior is finite.
        strategy : {"jitter", "prior"}
            Initialisation strategy, see ModelSpec.initial_values.

        Raises
        ------
        NumericError
            If no finite starting point is available.
        ValueError
            If a ChainState does not fit this model and update schedule.
        """
        if self.status is not ChainStatus.UNINITIALIZED:
            raise RuntimeError(f"Chain {self.chain_id} is already {self.status.value}")

        if isinstance(initial, ChainState):
            self._check_state(initial)
            self.state = initial.copy()
        elif initial is not None:
            theta = self.model.pack(initial) if isinstance(initial, Mapping) else initial
            self.state = self.sampler.initialize(theta)
        else:
            for attempt in range(MAX_INIT_ATTEMPTS):
                theta = self.model.initial_values(self.rng, strategy)
                if np.isfinite(self.model.log_posterior(theta)):
                    break
            else:
                raise NumericError(
                    f"Chain {self.chain_id}: no finite initial point after {MAX_INIT_ATTEMPTS} attempts"
                )
            self.state = self.sampler.initialize(theta)
        return self.state

    def _check_state(self, state: ChainState) -> None:
        if state.theta.shape != (self.model.dim,):
            raise ValueError(
                f"Chain {self.chain_id}: warm-start theta has shape {state.theta.shape}, "
                f"expected ({self.model.dim},)"
            )
        expected = set(self.sampler.initial_scales())
        if set(state.scales) != expected:
            raise ValueError(
                f"Chain {self.chain_id}: warm-start state has steps {sorted(state.scales)}, "
                f"sampler expects {sorted(expected)}"
            )

    def run(
        self,
        n_iter: int,
        burn_in: int = 0,
        tune: bool = True,
        stop_event: Optional[threading.Event] = None,
    ) -> "Chain":
        """
        Run warm-up then record ``n_iter`` draws.

        ``stop_event`` is checked before every iteration; once set, the chain
        finishes with the draws recorded so far.
        """
        if self.state is None:
            self.initialize()
        state = self.state

        self._transition(ChainStatus.WARMING)
        for i in range(burn_in):
            if stop_event is not None and stop_event.is_set():
                self.stopped_early = True
                break
            self.sampler.step(state, self.rng)
            if tune and (i + 1) % self.sampler.tune_interval == 0:
                self.sampler.tune(state)
        state.reset_window()

        self._transition(ChainStatus.SAMPLING)
        for i in range(n_iter):
            if self.stopped_early or (stop_event is not None and stop_event.is_set()):
                self.stopped_early = True
                break
            self.sampler.step(state, self.rng)
            self._record(i)

        self._transition(ChainStatus.COMPLETE)
        logger.debug(
            "Chain %d complete: %d draws, acceptance %s",
            self.chain_id, len(self._draws), self.acceptance_rates(),
        )
        return self

    def _record(self, iteration: int) -> None:
        theta = self.state.theta.copy()
        theta.setflags(write=False)
        values = self.model.unpack(theta)
        self._draws.append(
            Draw(
                chain_id=self.chain_id,
                iteration=iteration,
                theta=theta,
                values=MappingProxyType(values),
                derived=MappingProxyType(self.model.evaluate_derived(values)),
                log_posterior=self.state.log_posterior,
            )
        )

    def flat_samples(self) -> NDArray[np.float64]:
        """Recorded draws as an array of shape (draws, dim)."""
        if not self._draws:
            return np.empty((0, self.model.dim))
        return np.stack([d.theta for d in self._draws])

    def samples(self, name: str) -> NDArray[np.float64]:
        """Draws of one parameter, shape (draws, *shape)."""
        param = self.model.parameter(name)
        return self.flat_samples()[:, param.slice].reshape((len(self._draws),) + param.shape)

    def derived_samples(self, name: str) -> NDArray[np.float64]:
        """Draws of one derived quantity, shape (draws,)."""
        if name not in self.model.derived_names:
            raise KeyError(name)
        return np.array([d.derived[name] for d in self._draws])

    def log_posterior_trace(self) -> NDArray[np.float64]:
        return np.array([d.log_posterior for d in self._draws])

    def acceptance_rates(self) -> Dict[str, float]:
        return {} if self.state is None else self.state.acceptance_rates()

    def __repr__(self) -> str:
        return f"Chain(id={self.chain_id}, status={self.status.value}, draws={len(self._draws)})"


class InferenceSummary:
    """
    Completed run: chains, diagnostics and timing.

    Attributes
    ----------
    model : ModelSpec
        Sampled model.
    chains : list of Chain
        Completed chains.
    diagnostics : Dict[str, DiagnosticSummary]
        Per flattened parameter (e.g. ``beta[0]``) and derived quantity.
    n_draws : int
        Recorded draws per chain (fewer if stopped early).
    n_burn_in : int
        Discarded warm-up iterations per chain.
    n_chains : int
        Number of chains.
    sampling_time : float
        Wall time in seconds.
    """

    def __init__(
        self,
        model: ModelSpec,
        chains: Sequence[Chain],
        diagnostics: Dict[str, DiagnosticSummary],
        n_draws: int,
        n_burn_in: int,
        sampling_time: float,
    ) -> None:
        self.model = model
        self.chains = list(chains)
        self.diagnostics = diagnostics
        self.n_draws = n_draws
        self.n_burn_in = n_burn_in
        self.n_chains = len(self.chains)
        self.sampling_time = sampling_time
        self.total_samples = n_draws * self.n_chains

    @property
    def quantity_names(self) -> List[str]:
        return self.model.flat_names + self.model.derived_names

    def samples(self, name: str) -> NDArray[np.float64]:
        """
        Draws by chain, shape (chains, draws, ...).

        ``name`` may be a parameter (``beta``), a flattened element
        (``beta[1]``) or a derived quantity. Chains are truncated to the
        shortest one if any stopped early.

        Raises
        ------
        KeyError
            If the name is unknown.
        """
        n = self.n_draws
        if name in self.model.names:
            return np.stack([c.samples(name)[:n] for c in self.chains])
        if name in self.model.derived_names:
            return np.stack([c.derived_samples(name)[:n] for c in self.chains])
        flat_names = self.model.flat_names
        if name in flat_names:
            idx = flat_names.index(name)
            return np.stack([c.flat_samples()[:n, idx] for c in self.chains])
        raise KeyError(f"Unknown quantity '{name}'")

    def last_values(self) -> List[Dict[str, NDArray[np.float64]]]:
        """Final parameter values of every chain, for warm starts."""
        return [self.model.unpack(c.state.theta.copy()) for c in self.chains]

    def final_states(self) -> List[ChainState]:
        """Copies of every chain's final state, including tuned scales."""
        return [c.state.copy() for c in self.chains]

    def not_converged(self, threshold: float = RHAT_THRESHOLD) -> List[str]:
        """Quantities whose Rhat exceeds ``threshold``."""
        return [name for name, d in self.diagnostics.items() if not d.converged(threshold)]

    def acceptance_rates(self) -> List[Dict[str, float]]:
        return [c.acceptance_rates() for c in self.chains]

    def to_inference_data(self):
        """
        Export draws as arviz.InferenceData for plotting and reporting.

        Parameters and derived quantities go to the ``posterior`` group,
        the log-posterior trace to ``sample_stats`` as ``lp``.
        """
        posterior = {name: self.samples(name) for name in self.model.names}
        posterior.update({name: self.samples(name) for name in self.model.derived_names})
        lp = np.stack([c.log_posterior_trace()[: self.n_draws] for c in self.chains])
        return az.from_dict(posterior=posterior, sample_stats={"lp": lp})

    def __repr__(self) -> str:
        return (
            f"InferenceSummary(draws={self.n_draws}, burn_in={self.n_burn_in}, "
            f"chains={self.n_chains}, time={self.sampling_time:.1f}s)"
        )


class ChainManager:
    """
    Run several independent chains and collect diagnostics.

    Parameters
    ----------
    model : ModelSpec
        Model to sample.
    n_chains : int
        Number of chains. Default 4.
    n_iter : int
        Recorded draws per chain. Default 1000.
    burn_in : int
        Discarded warm-up iterations per chain. Default 500.
    proposal_scale : float or mapping
        Initial random-walk scale for Metropolis steps. Default 0.5.
    tune : bool
        Adapt proposal scales during warm-up. Default True.
    tune_interval : int
        Warm-up iterations between adaptations. Default 100.
    block : bool
        Joint Metropolis update of all non-conjugate parameters. Default False.
    gibbs : bool
        Use closed-form Gibbs updates where conjugate. Default True.
    init : {"jitter", "prior"}
        Dispersed initialisation strategy. Default "jitter".
    random_seed : int, optional
        Seed for reproducible runs.
    cores : int
        Worker threads running chains. Default 1.
    """

    def __init__(
        self,
        model: ModelSpec,
        n_chains: int = 4,
        n_iter: int = 1000,
        burn_in: int = 500,
        proposal_scale: Union[float, Mapping[str, float]] = DEFAULT_PROPOSAL_SCALE,
        tune: bool = True,
        tune_interval: int = DEFAULT_TUNE_INTERVAL,
        block: bool = False,
        gibbs: bool = True,
        init: str = "jitter",
        random_seed: Optional[int] = None,
        cores: int = 1,
    ) -> None:
        if n_chains < 1:
            raise ValueError(f"n_chains must be >= 1. Got {n_chains}")
        if n_iter < 1:
            raise ValueError(f"n_iter must be >= 1. Got {n_iter}")
        if burn_in < 0:
            raise ValueError(f"burn_in must be >= 0. Got {burn_in}")
        if init not in INIT_STRATEGIES:
            raise ValueError(f"init must be one of {INIT_STRATEGIES}. Got {init!r}")
        if cores < 1:
            raise ValueError(f"cores must be >= 1. Got {cores}")

        self.model = model
        self.n_chains = n_chains
        self.n_iter = n_iter
        self.burn_in = burn_in
        self.tune = tune
        self.init = init
        self.random_seed = random_seed
        self.cores = cores
        self.sampler = MetropolisWithinGibbs(
            model,
            proposal_scale=proposal_scale,
            block=block,
            gibbs=gibbs,
            tune_interval=tune_interval,
        )

    def make_chains(self) -> List[Chain]:
        """Fresh chains with independent random streams."""
        seeds = np.random.SeedSequence(self.random_seed).spawn(self.n_chains)
        return [
            Chain(i, self.model, self.sampler, np.random.default_rng(seed))
            for i, seed in enumerate(seeds)
        ]

    def _run_chain(
        self,
        chain: Chain,
        initial: Optional[InitialValues],
        stop_event: Optional[threading.Event],
    ) -> Chain:
        chain.initialize(initial, strategy=self.init)
        return chain.run(self.n_iter, burn_in=self.burn_in, tune=self.tune, stop_event=stop_event)

    def run(
        self,
        initial_values: Optional[Sequence[InitialValues]] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> InferenceSummary:
        """
        Run all chains to completion and compute diagnostics.

        Parameters
        ----------
        initial_values : sequence, optional
            One warm start per chain (ChainState, mapping or flat array),
            e.g. ``summary.final_states()`` of an earlier run.
        stop_event : threading.Event, optional
            Cooperative stop, honoured after the current iteration.

        Returns
        -------
        summary : InferenceSummary
        """
        if initial_values is not None and len(initial_values) != self.n_chains:
            raise ValueError(
                f"initial_values must have one entry per chain ({self.n_chains}). "
                f"Got {len(initial_values)}"
            )
        inits = list(initial_values) if initial_values is not None else [None] * self.n_chains

        logger.info(
            "Sampling %d chains: %d warm-up + %d draws, schedule %s",
            self.n_chains, self.burn_in, self.n_iter, self.sampler.schedule(),
        )
        start_time = time.time()

        chains = self.make_chains()
        if self.cores > 1 and self.n_chains > 1:
            with ThreadPoolExecutor(max_workers=min(self.cores, self.n_chains)) as pool:
                futures = [
                    pool.submit(self._run_chain, chain, init, stop_event)
                    for chain, init in zip(chains, inits)
                ]
                chains = [f.result() for f in futures]
        else:
            chains = [self._run_chain(c, init, stop_event) for c, init in zip(chains, inits)]

        sampling_time = time.time() - start_time
        n_draws = min(len(c) for c in chains)

        flat = np.stack([c.flat_samples()[:n_draws] for c in chains])  # (chains, draws, dim)
        arrays = {name: flat[:, :, idx] for idx, name in enumerate(self.model.flat_names)}
        for name in self.model.derived_names:
            arrays[name] = np.stack([c.derived_samples(name)[:n_draws] for c in chains])
        diagnostics = DiagnosticsComputer.compute(arrays)

        summary = InferenceSummary(
            model=self.model,
            chains=chains,
            diagnostics=diagnostics,
            n_draws=n_draws,
            n_burn_in=self.burn_in,
            sampling_time=sampling_time,
        )

        poorly_mixed = summary.not_converged()
        if poorly_mixed:
            logger.warning("Rhat > %.2f for: %s", RHAT_THRESHOLD, ", ".join(poorly_mixed))
        logger.info("Sampling finished in %.1fs", sampling_time)
        return summary

    def __repr__(self) -> str:
        return (
            f"ChainManager(n_chains={self.n_chains}, n_iter={self.n_iter}, "
            f"burn_in={self.burn_in}, cores={self.cores})"
        )
