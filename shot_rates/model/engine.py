"""
Inference engine boundary and the PyMC implementation of it.

The core only ever hands an engine a ModelSpec and a flat observed-data
mapping, and gets back per-chain arrays of monitored draws plus the
deviance. Any engine honouring the InferenceEngine protocol can be
substituted.
"""

from __future__ import annotations

import logging
from typing import Mapping, Protocol

import numpy as np
import pymc as pm
import pytensor.tensor as pt
from pymc.exceptions import SamplingError

from shot_rates.model.errors import InferenceError
from shot_rates.model.spec import (
    DETERMINISTIC_OPS,
    FAMILY_PARAMS,
    DeterministicNode,
    ModelSpec,
    Ref,
    StochasticNode,
)
from shot_rates.utils.constants import DEVIANCE, TEAM_INDEX

logger = logging.getLogger(__name__)

ChainDraws = dict[int, dict[str, np.ndarray]]


class InferenceEngine(Protocol):
    """Anything that can sample a ModelSpec."""

    def sample(
        self,
        spec: ModelSpec,
        data: Mapping[str, np.ndarray],
        n_chains: int,
        burn_in: int,
        n_draws: int,
        random_seed: int | None = None,
        initvals: list[dict] | None = None,
    ) -> ChainDraws:
        """
        Returns:
            {chain_id: {parameter name: array of n_draws}} for every monitored
            entry (vector nodes flattened to 'name[t]') plus 'deviance'
        """
        ...


def validate_graph(spec: ModelSpec, data: Mapping[str, np.ndarray]) -> None:
    """
    Check a ModelSpec is well-formed against its data before compiling.

    Raises:
        InferenceError: Unknown family/op, missing parameters, unresolvable
            references, constant parameters outside their domain, or not
            exactly one observed node
    """
    defined: dict[str, str] = {}
    observed = []

    def check_ref(node_name: str, ref: Ref) -> None:
        if ref.name not in defined and ref.name not in data:
            raise InferenceError(f"Node {node_name!r}: reference to undefined {ref.name!r}")
        if ref.index is not None and ref.index not in data:
            raise InferenceError(f"Node {node_name!r}: unknown index column {ref.index!r}")
        if ref.index is None and defined.get(ref.name) == "team":
            raise InferenceError(
                f"Node {node_name!r}: team-level {ref.name!r} used without an index"
            )

    for node in spec.nodes:
        if node.name in defined:
            raise InferenceError(f"Duplicate node name {node.name!r}")

        if isinstance(node, DeterministicNode):
            if node.op not in DETERMINISTIC_OPS:
                raise InferenceError(f"Node {node.name!r}: unknown op {node.op!r}")
            if node.op == "exp_linear" and len(node.args) % 2 != 1:
                raise InferenceError(f"Node {node.name!r}: exp_linear needs 1 + 2k arguments")
            for ref in node.args:
                check_ref(node.name, ref)
            defined[node.name] = node.plate
            continue

        if node.family not in FAMILY_PARAMS:
            raise InferenceError(f"Node {node.name!r}: unknown family {node.family!r}")
        params = node.param_dict
        expected = FAMILY_PARAMS[node.family]
        if set(params) != set(expected):
            raise InferenceError(
                f"Node {node.name!r}: {node.family} needs parameters {expected}, "
                f"got {tuple(params)}"
            )
        for pname, value in params.items():
            if isinstance(value, Ref):
                check_ref(node.name, value)
        _check_constant_domain(node, params)

        if node.observed is not None:
            if node.observed not in data:
                raise InferenceError(
                    f"Node {node.name!r}: observed column {node.observed!r} not in data"
                )
            observed.append(node.name)
        defined[node.name] = node.plate

    if observed != [spec.observed]:
        raise InferenceError(
            f"Expected exactly one observed node {spec.observed!r}, found {observed}"
        )


def _check_constant_domain(node: StochasticNode, params: dict) -> None:
    def const(name):
        value = params[name]
        return None if isinstance(value, Ref) else float(value)

    positive = {
        "gamma": ("shape", "rate"),
        "normal": ("precision",),
        "poisson": ("rate",),
        "negative_binomial": ("size",),
    }.get(node.family, ())

    for pname in positive:
        value = const(pname)
        if value is not None and not value > 0:
            raise InferenceError(
                f"Node {node.name!r}: {node.family} {pname} must be positive, got {value}"
            )

    if node.family == "uniform":
        lower, upper = const("lower"), const("upper")
        if lower is not None and upper is not None and not upper > lower:
            raise InferenceError(
                f"Node {node.name!r}: uniform bounds must satisfy lower < upper, "
                f"got ({lower}, {upper})"
            )
    if node.family == "negative_binomial":
        prob = const("prob")
        if prob is not None and not 0 < prob <= 1:
            raise InferenceError(f"Node {node.name!r}: prob must be in (0, 1], got {prob}")


class PyMCEngine:
    """
    Compile a ModelSpec into a PyMC model and sample it.

    Args:
        cores: Worker processes for chains (chains are joined after all finish)
        step: 'nuts' (PyMC default) or 'metropolis'
        target_accept: NUTS target acceptance rate
        progressbar: Show PyMC progress bars
    """

    def __init__(
        self,
        cores: int = 1,
        step: str = "nuts",
        target_accept: float = 0.9,
        progressbar: bool = False,
    ):
        if step not in ("nuts", "metropolis"):
            raise ValueError(f"Unknown step method: {step}")
        self.cores = cores
        self.step = step
        self.target_accept = target_accept
        self.progressbar = progressbar

    def build(self, spec: ModelSpec, data: Mapping[str, np.ndarray]) -> pm.Model:
        """Compile the graph. Deterministic nodes are only stored if monitored."""
        validate_graph(spec, data)

        monitored_nodes = {node for _, node, _ in spec.monitored_entries()}
        n_obs = len(data[spec.observed])
        shapes = {"scalar": None, "team": spec.n_teams, "obs": n_obs}
        team_idx = np.asarray(data[TEAM_INDEX], dtype=np.int64) - 1 if TEAM_INDEX in data else None

        values: dict[str, object] = {}

        def resolve(ref: Ref):
            value = values[ref.name] if ref.name in values else np.asarray(data[ref.name])
            if ref.index is not None:
                index = team_idx if ref.index == TEAM_INDEX else np.asarray(data[ref.index]) - 1
                value = value[index]
            return value

        def param(value):
            return resolve(value) if isinstance(value, Ref) else float(value)

        with pm.Model() as model:
            for node in spec.nodes:
                if isinstance(node, DeterministicNode):
                    args = [resolve(a) for a in node.args]
                    expr = _deterministic(node.op, args)
                    if node.name in monitored_nodes:
                        expr = pm.Deterministic(node.name, expr)
                    values[node.name] = expr
                    continue

                p = {k: param(v) for k, v in node.params}
                kwargs = {"shape": shapes[node.plate]} if node.observed is None else {}
                if node.observed is not None:
                    kwargs["observed"] = np.asarray(data[node.observed])
                values[node.name] = _distribution(node, p, kwargs)

        return model

    def sample(
        self,
        spec: ModelSpec,
        data: Mapping[str, np.ndarray],
        n_chains: int,
        burn_in: int,
        n_draws: int,
        random_seed: int | None = None,
        initvals: list[dict] | None = None,
    ) -> ChainDraws:
        model = self.build(spec, data)

        with model:
            if self.step == "metropolis":
                step_kwargs = {"step": pm.Metropolis()}
            else:
                step_kwargs = {"target_accept": self.target_accept}
            try:
                idata = pm.sample(
                    draws=n_draws,
                    tune=burn_in,
                    chains=n_chains,
                    cores=self.cores,
                    initvals=initvals,
                    random_seed=random_seed,
                    progressbar=self.progressbar,
                    compute_convergence_checks=False,
                    **step_kwargs,
                )
            except SamplingError as e:
                raise InferenceError(f"Chain initialization failed for {spec.kind.value}: {e}") from e

            idata = pm.compute_log_likelihood(
                idata, var_names=[spec.observed], progressbar=False
            )

        log_lik = idata.log_likelihood[spec.observed]
        obs_dims = [d for d in log_lik.dims if d not in ("chain", "draw")]
        deviance = (-2.0 * log_lik.sum(dim=obs_dims)).values

        posterior = idata.posterior
        chains: ChainDraws = {}
        for c in range(n_chains):
            draws = {}
            for out_name, node_name, index in spec.monitored_entries():
                values = posterior[node_name].values[c]
                draws[out_name] = np.asarray(values if index is None else values[:, index], dtype=float)
            draws[DEVIANCE] = np.asarray(deviance[c], dtype=float)
            chains[c] = draws

        if not np.all(np.isfinite(deviance)):
            raise InferenceError(f"Non-finite deviance in {spec.kind.value} draws")

        return chains


def _deterministic(op: str, args: list):
    if op == "exp_linear":
        eta = args[0]
        for coef, covariate in zip(args[1::2], args[2::2]):
            eta = eta + coef * covariate
        return pt.exp(eta)
    if op == "inv_sqrt":
        return pt.sqrt(1.0 / args[0])
    if op == "nb_prob":
        size, mean = args
        return size / (size + mean)
    raise InferenceError(f"Unknown op {op!r}")


def _distribution(node: StochasticNode, p: dict, kwargs: dict):
    if node.family == "gamma":
        return pm.Gamma(node.name, alpha=p["shape"], beta=p["rate"], **kwargs)
    if node.family == "normal":
        return pm.Normal(node.name, mu=p["mean"], tau=p["precision"], **kwargs)
    if node.family == "uniform":
        return pm.Uniform(node.name, lower=p["lower"], upper=p["upper"], **kwargs)
    if node.family == "poisson":
        return pm.Poisson(node.name, mu=p["rate"], **kwargs)
    if node.family == "negative_binomial":
        return pm.NegativeBinomial(node.name, n=p["size"], p=p["prob"], **kwargs)
    raise InferenceError(f"Unknown family {node.family!r}")
