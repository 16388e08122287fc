"""
Inference driver for shot-rate models.

Supports:
- Multi-chain MCMC through any InferenceEngine (PyMC by default)
- Burn-in discarding and per-chain collection of monitored draws
- Conversion of draws to ArviZ InferenceData
- Saving and loading of fitted models (ModelSpec + draws)
"""

from __future__ import annotations

import logging
import pickle
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal, Mapping, Sequence, Union

import arviz as az
import numpy as np

from shot_rates.model.data import ResolvedDataset, ResolvedObservation, observations_to_data
from shot_rates.model.engine import InferenceEngine, PyMCEngine
from shot_rates.model.errors import ConfigError, DataError, InferenceError
from shot_rates.model.spec import INDEXED_NAME, ModelSpec
from shot_rates.utils.constants import DEVIANCE, TEAM_INDEX

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PosteriorSample:
    """
    One retained draw of every monitored parameter.

    Attributes:
        chain: Chain identifier
        draw: Draw index within the chain (0 = first post-burn-in draw)
        values: Parameter name -> value, including 'deviance'
    """

    chain: int
    draw: int
    values: Mapping[str, float] = field(compare=False)

    def __getitem__(self, name: str) -> float:
        return self.values[name]


Chains = dict[int, list[PosteriorSample]]
ModelData = Union[Sequence[ResolvedObservation], ResolvedDataset, Mapping[str, np.ndarray]]


@dataclass
class InferenceConfig:
    """Configuration for model inference."""

    # MCMC settings
    n_chains: int = 3
    burn_in: int = 1000
    n_draws: int = 2000
    cores: int = 1
    step: Literal["nuts", "metropolis"] = "nuts"
    target_accept: float = 0.9
    progressbar: bool = False

    # Caching
    cache_dir: Path = Path("~/.cache/shot_rates").expanduser()


def _check_counts(n_chains: int, burn_in: int, n_draws: int) -> None:
    if n_chains < 1:
        raise ConfigError(f"n_chains must be at least 1, got {n_chains}")
    if burn_in < 0:
        raise ConfigError(f"burn_in must be non-negative, got {burn_in}")
    if n_draws < 1:
        raise ConfigError(f"n_draws must be at least 1, got {n_draws}")


def prepare_data(spec: ModelSpec, data: ModelData) -> dict[str, np.ndarray]:
    """
    Convert observations to the flat observed-data mapping and check it against the ModelSpec.

    Raises:
        DataError: Empty data, missing columns, or team ids outside 1..n_teams
    """
    if isinstance(data, ResolvedDataset):
        flat = data.to_model_data()
    elif isinstance(data, Mapping):
        flat = {k: np.asarray(v) for k, v in data.items()}
    else:
        flat = observations_to_data(list(data))

    missing = [c for c in spec.required_data if c not in flat]
    if missing:
        raise DataError(f"Data missing columns required by {spec.kind.value}: {missing}")
    if len(flat[spec.observed]) == 0:
        raise DataError("No observations to model")

    teams = flat[TEAM_INDEX]
    bad = teams[(teams < 1) | (teams > spec.n_teams)]
    if len(bad):
        raise DataError(f"Team ids {sorted(set(bad.tolist()))[:5]} outside 1..{spec.n_teams}")
    if np.any(flat[spec.observed] < 0):
        raise DataError("Observed attempt counts must be non-negative")

    return flat


def draws_to_samples(draws: Mapping[int, Mapping[str, np.ndarray]]) -> Chains:
    """Turn per-chain parameter arrays into ordered PosteriorSample lists."""
    chains: Chains = {}
    for chain_id, params in draws.items():
        names = list(params)
        n = len(params[names[0]])
        chains[chain_id] = [
            PosteriorSample(
                chain=chain_id,
                draw=i,
                values={name: float(params[name][i]) for name in names},
            )
            for i in range(n)
        ]
    return chains


class ModelFitter:
    """
    Runs the inference engine for a ModelSpec and collects posterior draws.

    The fitter keeps no state between calls; each run returns fresh draws.

    Usage:
        fitter = ModelFitter(InferenceConfig(n_chains=3, burn_in=500, n_draws=1000))
        chains = fitter.run(spec, dataset, random_seed=1)

        fitter.save("pooled_poisson", spec, chains)
        spec, chains = ModelFitter.load("pooled_poisson")
    """

    def __init__(
        self,
        config: InferenceConfig | None = None,
        engine: InferenceEngine | None = None,
    ):
        self.config = config or InferenceConfig()
        self.engine = engine or PyMCEngine(
            cores=self.config.cores,
            step=self.config.step,
            target_accept=self.config.target_accept,
            progressbar=self.config.progressbar,
        )

    def run(
        self,
        spec: ModelSpec,
        data: ModelData,
        n_chains: int | None = None,
        burn_in: int | None = None,
        n_draws: int | None = None,
        random_seed: int | None = None,
        initvals: list[dict] | None = None,
    ) -> Chains:
        """
        Sample the model and return retained draws per chain.

        Args:
            spec: Model graph
            data: Resolved observations (or flat observed-data mapping)
            n_chains, burn_in, n_draws: Override the configured counts
            random_seed: Seed for chain initialization and sampling
            initvals: Optional initial values, one dict per chain

        Returns:
            {chain_id: [PosteriorSample, ...]} with n_draws samples per chain

        Raises:
            InferenceError: Malformed graph or failed chain initialization
        """
        n_chains = self.config.n_chains if n_chains is None else n_chains
        burn_in = self.config.burn_in if burn_in is None else burn_in
        n_draws = self.config.n_draws if n_draws is None else n_draws
        _check_counts(n_chains, burn_in, n_draws)

        if initvals is not None and len(initvals) != n_chains:
            raise ConfigError(f"Got {len(initvals)} initial value sets for {n_chains} chains")

        flat = prepare_data(spec, data)

        logger.info(
            "Sampling %s: %d chains x %d draws (+ %d burn-in), %d observations",
            spec.kind.value, n_chains, n_draws, burn_in, len(flat[spec.observed]),
        )
        start = datetime.now()

        draws = self.engine.sample(
            spec,
            flat,
            n_chains=n_chains,
            burn_in=burn_in,
            n_draws=n_draws,
            random_seed=random_seed,
            initvals=initvals,
        )

        if len(draws) != n_chains:
            raise InferenceError(f"Engine returned {len(draws)} chains, expected {n_chains}")
        for chain_id, params in draws.items():
            if DEVIANCE not in params:
                raise InferenceError(f"Engine returned no deviance for chain {chain_id}")

        logger.info("Sampling complete in %.1fs", (datetime.now() - start).total_seconds())
        return draws_to_samples(draws)

    def save(self, name: str, spec: ModelSpec, chains: Chains) -> Path:
        """
        Save a fitted model to the cache directory.

        Saves:
        - ModelSpec (the graph the draws came from)
        - Draws as ArviZ InferenceData (NetCDF)
        - Metadata
        """
        checkpoint_dir = self.config.cache_dir / name
        checkpoint_dir.mkdir(parents=True, exist_ok=True)

        to_inference_data(chains).to_netcdf(str(checkpoint_dir / "trace.nc"))

        metadata = {
            "spec": spec,
            "saved_at": datetime.now(),
            "config": self.config,
        }
        with open(checkpoint_dir / "metadata.pkl", "wb") as f:
            pickle.dump(metadata, f)

        logger.info("Saved fit to %s", checkpoint_dir)
        return checkpoint_dir

    @classmethod
    def load(cls, name: str, cache_dir: Path | None = None) -> tuple[ModelSpec, Chains]:
        """
        Load a previously saved fit.

        Returns:
            (spec, chains) tuple
        """
        cache_dir = cache_dir or InferenceConfig().cache_dir
        checkpoint_dir = Path(cache_dir) / name

        if not checkpoint_dir.exists():
            raise ConfigError(f"Checkpoint not found: {checkpoint_dir}")

        with open(checkpoint_dir / "metadata.pkl", "rb") as f:
            metadata = pickle.load(f)

        idata = az.from_netcdf(str(checkpoint_dir / "trace.nc"))
        chains = from_inference_data(idata)

        logger.info("Loaded fit from %s", checkpoint_dir)
        return metadata["spec"], chains


def run(
    spec: ModelSpec,
    data: ModelData,
    n_chains: int,
    burn_in: int,
    n_draws: int,
    engine: InferenceEngine | None = None,
    random_seed: int | None = None,
) -> Chains:
    """Sample a ModelSpec with a default-configured fitter."""
    return ModelFitter(engine=engine).run(
        spec,
        data,
        n_chains=n_chains,
        burn_in=burn_in,
        n_draws=n_draws,
        random_seed=random_seed,
    )


def to_inference_data(chains: Chains) -> az.InferenceData:
    """
    Convert draws to ArviZ InferenceData with (chain, draw) dims.

    Indexed entries such as 'lambda[1]', 'lambda[2]' are regrouped into one
    variable with a '<name>_team' dimension whose coordinates are team ids.
    """
    chain_ids = sorted(chains)
    names = list(chains[chain_ids[0]][0].values)

    def stacked(name):
        return np.array([[s.values[name] for s in chains[c]] for c in chain_ids])

    posterior, dims, coords = {}, {}, {}
    grouped: dict[str, list[tuple[int, str]]] = {}
    for name in names:
        match = INDEXED_NAME.match(name)
        if match:
            grouped.setdefault(match["base"], []).append((int(match["index"]), name))
        else:
            posterior[name] = stacked(name)

    for base, entries in grouped.items():
        entries.sort()
        dim = f"{base}_team"
        posterior[base] = np.stack([stacked(name) for _, name in entries], axis=-1)
        dims[base] = [dim]
        coords[dim] = [team for team, _ in entries]

    return az.from_dict(posterior=posterior, coords=coords, dims=dims)


def from_inference_data(idata: az.InferenceData) -> Chains:
    """Inverse of to_inference_data."""
    posterior = idata.posterior
    chain_ids = [int(c) for c in posterior["chain"].values]
    draws: dict[int, dict[str, np.ndarray]] = {c: {} for c in chain_ids}

    for name, var in posterior.data_vars.items():
        extra = [d for d in var.dims if d not in ("chain", "draw")]
        values = var.transpose("chain", "draw", *extra).values
        for i, chain_id in enumerate(chain_ids):
            if not extra:
                draws[chain_id][name] = values[i]
                continue
            for j, team in enumerate(var[extra[0]].values):
                draws[chain_id][f"{name}[{int(team)}]"] = values[i, :, j]

    return draws_to_samples(draws)
