"""
Declarative model graphs for the three shot-rate models.

A ModelSpec is a pure description: stochastic nodes with a distribution
family and parameters (constants or references to other nodes/data),
deterministic link transforms, the observed node, and the monitored
parameter names. Nothing here samples; the inference engine compiles it.

Model structures (team t, observation i):

    Pooled Poisson:
        attempts[i] ~ Poisson(lambda[team[i]])
        lambda[t]   ~ Gamma(alpha, beta)

    Poisson regression with random intercept:
        log(lambda[i]) = intercept[team[i]] + b_win * win_prob[i]
        attempts[i]    ~ Poisson(lambda[i])
        intercept[t]   ~ Normal(mu, precision=inv_tau_sq)

    Negative-binomial regression with random intercept:
        same linear predictor
        attempts[i] ~ NegBinomial(p[i], r),  p[i] = r / (r + lambda[i])

Normal distributions are parameterized by precision throughout.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Union

from shot_rates.model.errors import ConfigError
from shot_rates.utils.constants import OUTCOME, TEAM_INDEX, WIN_PROB


class ModelKind(str, Enum):
    """The three supported model variants."""

    POOLED_POISSON = "pooled_poisson"
    POISSON_REGRESSION = "poisson_regression"
    NEGATIVE_BINOMIAL_REGRESSION = "negative_binomial_regression"

    @property
    def is_regression(self) -> bool:
        return self is not ModelKind.POOLED_POISSON


Plate = Literal["scalar", "team", "obs"]

# Parameter names expected by each family
FAMILY_PARAMS: dict[str, tuple[str, ...]] = {
    "gamma": ("shape", "rate"),
    "normal": ("mean", "precision"),
    "uniform": ("lower", "upper"),
    "poisson": ("rate",),
    "negative_binomial": ("prob", "size"),
}

DETERMINISTIC_OPS = ("exp_linear", "inv_sqrt", "nb_prob")

INDEXED_NAME = re.compile(r"^(?P<base>[A-Za-z_][A-Za-z0-9_]*)\[(?P<index>\d+)\]$")


@dataclass(frozen=True)
class Ref:
    """Reference to a node or data column, optionally gathered by an index column."""

    name: str
    index: str | None = None


Param = Union[float, Ref]


@dataclass(frozen=True)
class StochasticNode:
    """A random node with a distribution family and parameters."""

    name: str
    family: str
    params: tuple[tuple[str, Param], ...]
    plate: Plate = "scalar"
    observed: str | None = None  # Data column for the likelihood node

    @property
    def param_dict(self) -> dict[str, Param]:
        return dict(self.params)


@dataclass(frozen=True)
class DeterministicNode:
    """
    A deterministic transform of other nodes.

    Ops:
        exp_linear: exp(args[0] + args[1]*args[2] + args[3]*args[4] + ...)
        inv_sqrt:   sqrt(1 / args[0])
        nb_prob:    args[0] / (args[0] + args[1])
    """

    name: str
    op: str
    args: tuple[Ref, ...]
    plate: Plate = "scalar"


Node = Union[StochasticNode, DeterministicNode]


def stochastic(
    name: str, family: str, plate: Plate = "scalar", observed: str | None = None, **params: Param
) -> StochasticNode:
    """Convenience constructor keeping parameter order stable."""
    return StochasticNode(
        name=name,
        family=family,
        params=tuple(params.items()),
        plate=plate,
        observed=observed,
    )


# === Prior configuration ===


def _check_positive(owner: str, **values: float) -> None:
    for name, value in values.items():
        if not value > 0:
            raise ConfigError(f"{owner}.{name} must be positive, got {value}")


@dataclass(frozen=True)
class PooledPoissonPriors:
    """
    Hyper-priors for the pooled Poisson model.

    Team means are plausibly 9-30 attempts per 90 minutes; the defaults put
    most prior mass on lambda around 15.
    """

    alpha_shape: float = 30.0
    alpha_rate: float = 1.0
    beta_shape: float = 20.0
    beta_rate: float = 10.0

    def __post_init__(self):
        _check_positive(
            type(self).__name__,
            alpha_shape=self.alpha_shape,
            alpha_rate=self.alpha_rate,
            beta_shape=self.beta_shape,
            beta_rate=self.beta_rate,
        )


@dataclass(frozen=True)
class RegressionPriors:
    """Priors for the random-intercept log-link regression."""

    b_win_mean: float = 0.0
    b_win_precision: float = 1e-4
    mu_mean: float = 0.0
    mu_precision: float = 1e-6
    inv_tau_sq_shape: float = 0.5
    inv_tau_sq_rate: float = 0.5

    def __post_init__(self):
        _check_positive(
            type(self).__name__,
            b_win_precision=self.b_win_precision,
            mu_precision=self.mu_precision,
            inv_tau_sq_shape=self.inv_tau_sq_shape,
            inv_tau_sq_rate=self.inv_tau_sq_rate,
        )


@dataclass(frozen=True)
class NegativeBinomialPriors(RegressionPriors):
    """Regression priors plus the Uniform prior on the dispersion r."""

    r_lower: float = 0.0
    r_upper: float = 50.0

    def __post_init__(self):
        super().__post_init__()
        if self.r_lower < 0 or not self.r_upper > self.r_lower:
            raise ConfigError(
                f"NegativeBinomialPriors needs 0 <= r_lower < r_upper, "
                f"got ({self.r_lower}, {self.r_upper})"
            )


Priors = Union[PooledPoissonPriors, RegressionPriors, NegativeBinomialPriors]


# === Model specification ===


@dataclass(frozen=True)
class ModelSpec:
    """
    Immutable declarative model graph handed to the inference engine.

    Attributes:
        kind: Which model variant this graph describes
        n_teams: Number of teams K (size of the 'team' plate)
        nodes: Nodes in dependency order
        observed: Name of the likelihood node
        monitored: Parameter names whose draws are returned; either base
            names ('lambda') or single indexed entries ('intercept[3]')
        priors: Prior configuration the graph was built from
    """

    kind: ModelKind
    n_teams: int
    nodes: tuple[Node, ...]
    observed: str
    monitored: tuple[str, ...]
    priors: Priors = field(compare=False)

    def node(self, name: str) -> Node:
        for node in self.nodes:
            if node.name == name:
                return node
        raise KeyError(name)

    @property
    def node_names(self) -> tuple[str, ...]:
        return tuple(n.name for n in self.nodes)

    @property
    def required_data(self) -> tuple[str, ...]:
        """Data columns referenced anywhere in the graph."""
        names = set(self.node_names)
        columns = []
        for node in self.nodes:
            refs = node.args if isinstance(node, DeterministicNode) else [
                p for _, p in node.params if isinstance(p, Ref)
            ]
            for ref in refs:
                for col in (ref.name, ref.index):
                    if col is not None and col not in names and col not in columns:
                        columns.append(col)
            if isinstance(node, StochasticNode) and node.observed and node.observed not in columns:
                columns.append(node.observed)
        return tuple(columns)

    def monitored_entries(self) -> list[tuple[str, str, int | None]]:
        """
        Expand monitored names into (output name, node name, 0-based index).

        Vector nodes monitored by base name expand to one entry per team,
        named with 1-based indices ('lambda[1]', ...).
        """
        entries = []
        for name in self.monitored:
            match = INDEXED_NAME.match(name)
            if match:
                entries.append((name, match["base"], int(match["index"]) - 1))
                continue
            node = self.node(name)
            if node.plate == "team":
                entries.extend(
                    (f"{name}[{t}]", name, t - 1) for t in range(1, self.n_teams + 1)
                )
            else:
                entries.append((name, name, None))
        return entries


def _validate_monitored(monitored: tuple[str, ...], nodes: tuple[Node, ...], n_teams: int) -> None:
    by_name = {n.name: n for n in nodes}
    for name in monitored:
        match = INDEXED_NAME.match(name)
        base = match["base"] if match else name
        if base not in by_name:
            raise ConfigError(f"Monitored parameter {name!r} is not a node in the model")
        if by_name[base].plate == "obs":
            raise ConfigError(
                f"Monitored parameter {name!r} is per-observation; monitor team or scalar nodes"
            )
        if match:
            if by_name[base].plate != "team":
                raise ConfigError(f"Monitored parameter {name!r} indexes a non-team node")
            team = int(match["index"])
            if not 1 <= team <= n_teams:
                raise ConfigError(
                    f"Monitored parameter {name!r}: team {team} outside 1..{n_teams}"
                )


def _check_n_teams(n_teams: int) -> None:
    if n_teams < 1:
        raise ConfigError(f"n_teams must be at least 1, got {n_teams}")


def _make_spec(kind, n_teams, nodes, monitored, priors) -> ModelSpec:
    nodes = tuple(nodes)
    monitored = tuple(monitored)
    _validate_monitored(monitored, nodes, n_teams)
    return ModelSpec(
        kind=kind,
        n_teams=n_teams,
        nodes=nodes,
        observed=OUTCOME,
        monitored=monitored,
        priors=priors,
    )


def pooled_poisson(
    n_teams: int,
    priors: PooledPoissonPriors | None = None,
    monitored: tuple[str, ...] = ("lambda", "alpha", "beta"),
) -> ModelSpec:
    """Hierarchical Poisson with per-team rates drawn from a shared Gamma."""
    _check_n_teams(n_teams)
    priors = priors or PooledPoissonPriors()

    nodes = [
        stochastic("alpha", "gamma", shape=priors.alpha_shape, rate=priors.alpha_rate),
        stochastic("beta", "gamma", shape=priors.beta_shape, rate=priors.beta_rate),
        stochastic("lambda", "gamma", plate="team", shape=Ref("alpha"), rate=Ref("beta")),
        stochastic(
            OUTCOME, "poisson", plate="obs", observed=OUTCOME,
            rate=Ref("lambda", index=TEAM_INDEX),
        ),
    ]
    return _make_spec(ModelKind.POOLED_POISSON, n_teams, nodes, monitored, priors)


def _random_intercept_nodes(priors: RegressionPriors) -> list[Node]:
    """Shared hierarchy and log-link linear predictor of both regression models."""
    return [
        stochastic("mu", "normal", mean=priors.mu_mean, precision=priors.mu_precision),
        stochastic(
            "inv_tau_sq", "gamma", shape=priors.inv_tau_sq_shape, rate=priors.inv_tau_sq_rate
        ),
        DeterministicNode("tau", op="inv_sqrt", args=(Ref("inv_tau_sq"),)),
        stochastic(
            "intercept", "normal", plate="team", mean=Ref("mu"), precision=Ref("inv_tau_sq")
        ),
        stochastic("b_win", "normal", mean=priors.b_win_mean, precision=priors.b_win_precision),
        DeterministicNode(
            "lambda",
            op="exp_linear",
            args=(Ref("intercept", index=TEAM_INDEX), Ref("b_win"), Ref(WIN_PROB)),
            plate="obs",
        ),
    ]


def poisson_regression(
    n_teams: int,
    priors: RegressionPriors | None = None,
    monitored: tuple[str, ...] = ("intercept", "b_win", "mu", "tau"),
) -> ModelSpec:
    """Poisson regression on win probability with a per-team random intercept."""
    _check_n_teams(n_teams)
    priors = priors or RegressionPriors()

    nodes = _random_intercept_nodes(priors) + [
        stochastic(OUTCOME, "poisson", plate="obs", observed=OUTCOME, rate=Ref("lambda")),
    ]
    return _make_spec(ModelKind.POISSON_REGRESSION, n_teams, nodes, monitored, priors)


def negative_binomial_regression(
    n_teams: int,
    priors: NegativeBinomialPriors | None = None,
    monitor_teams: tuple[int, ...] | None = None,
) -> ModelSpec:
    """
    Negative-binomial regression with a per-team random intercept.

    Args:
        n_teams: Number of teams
        priors: Prior configuration
        monitor_teams: If given, only these teams' intercepts are monitored
            (memory saving for long runs); all intercepts otherwise
    """
    _check_n_teams(n_teams)
    priors = priors or NegativeBinomialPriors()

    nodes = _random_intercept_nodes(priors) + [
        stochastic("r", "uniform", lower=priors.r_lower, upper=priors.r_upper),
        DeterministicNode("p", op="nb_prob", args=(Ref("r"), Ref("lambda")), plate="obs"),
        stochastic(
            OUTCOME, "negative_binomial", plate="obs", observed=OUTCOME,
            prob=Ref("p"), size=Ref("r"),
        ),
    ]

    if monitor_teams is None:
        intercepts = ("intercept",)
    else:
        intercepts = tuple(f"intercept[{t}]" for t in monitor_teams)
    monitored = intercepts + ("b_win", "r", "mu", "tau")

    return _make_spec(ModelKind.NEGATIVE_BINOMIAL_REGRESSION, n_teams, nodes, monitored, priors)


def build_spec(
    kind: ModelKind | str,
    n_teams: int,
    priors: Priors | None = None,
    **kwargs,
) -> ModelSpec:
    """Build the ModelSpec for a model kind."""
    try:
        kind = ModelKind(kind)
    except ValueError:
        raise ConfigError(f"Unknown model kind: {kind!r}") from None

    builders = {
        ModelKind.POOLED_POISSON: (pooled_poisson, PooledPoissonPriors),
        ModelKind.POISSON_REGRESSION: (poisson_regression, RegressionPriors),
        ModelKind.NEGATIVE_BINOMIAL_REGRESSION: (
            negative_binomial_regression,
            NegativeBinomialPriors,
        ),
    }
    builder, prior_type = builders[kind]
    if priors is not None and not isinstance(priors, prior_type):
        raise ConfigError(
            f"{kind.value} expects {prior_type.__name__}, got {type(priors).__name__}"
        )
    return builder(n_teams, priors, **kwargs)
