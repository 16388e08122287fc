"""
Posterior-predictive simulation for shot-rate models.

Supports:
- Simulated attempts per game for a team at any win probability
- Poisson and negative-binomial outcome models
- Summaries and grids for comparing win-probability settings or model families
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from shot_rates.model.errors import ConfigError
from shot_rates.model.inference import Chains
from shot_rates.model.spec import INDEXED_NAME, ModelKind, ModelSpec


@dataclass
class PredictiveSummary:
    """Predicted attempts-per-game distribution for one team and win probability."""

    team_id: int
    win_prob: float
    mean: float
    std: float
    median: float
    ci_lower: float  # 5th percentile
    ci_upper: float  # 95th percentile
    samples: np.ndarray | None = None  # Full simulated draws if requested


class PosteriorPredictor:
    """
    Simulate new outcomes from fitted posterior draws.

    For each simulated game a posterior draw is picked with replacement, then:
        regression models:  lambda = exp(intercept[team] + b_win * win_prob)
        pooled model:       lambda = lambda[team]
    and the outcome is Poisson(lambda), or NegBinomial(r / (r + lambda), r)
    for the negative-binomial model.
    """

    def __init__(
        self,
        chains: Chains,
        model_kind: ModelKind | str,
        n_teams: int | None = None,
    ):
        try:
            self.model_kind = ModelKind(model_kind)
        except ValueError:
            raise ConfigError(f"Unknown model kind: {model_kind!r}") from None

        if not chains or not any(chains.values()):
            raise ConfigError("No posterior draws to predict from")

        self._team_param = "intercept" if self.model_kind.is_regression else "lambda"
        self._cache_posterior_arrays(chains)
        self.n_teams = n_teams if n_teams is not None else max(self._team_draws, default=0)

    @classmethod
    def from_spec(cls, chains: Chains, spec: ModelSpec) -> "PosteriorPredictor":
        return cls(chains, spec.kind, n_teams=spec.n_teams)

    def _cache_posterior_arrays(self, chains: Chains) -> None:
        """Flatten draws across chains once; chain order is irrelevant here."""
        samples = [s for c in sorted(chains) for s in chains[c]]
        names = samples[0].values.keys()

        self._team_draws: dict[int, np.ndarray] = {}
        for name in names:
            match = INDEXED_NAME.match(name)
            if match and match["base"] == self._team_param:
                self._team_draws[int(match["index"])] = np.array(
                    [s.values[name] for s in samples]
                )

        def scalar(name):
            if name not in names:
                raise ConfigError(f"Posterior draws have no {name!r} for {self.model_kind.value}")
            return np.array([s.values[name] for s in samples])

        self._b_win = scalar("b_win") if self.model_kind.is_regression else None
        if self.model_kind is ModelKind.NEGATIVE_BINOMIAL_REGRESSION:
            self._r = scalar("r")
            if np.any(self._r <= 0):
                raise ConfigError("Dispersion draws r must be positive")
        else:
            self._r = None

        self._n_total = len(samples)

    def _team_values(self, team_id: int) -> np.ndarray:
        if not 1 <= team_id <= self.n_teams:
            raise ConfigError(f"Team id {team_id} outside fitted range 1..{self.n_teams}")
        if team_id not in self._team_draws:
            raise ConfigError(f"{self._team_param}[{team_id}] was not monitored")
        return self._team_draws[team_id]

    def expected_rate(self, team_id: int, win_prob: float = 0.0) -> np.ndarray:
        """Posterior draws of lambda for a team at a win probability."""
        values = self._team_values(team_id)
        if not self.model_kind.is_regression:
            return values
        return np.exp(values + self._b_win * win_prob)

    def simulate(
        self,
        team_id: int,
        win_prob: float,
        n_sim: int = 1000,
        random_seed: int | np.random.Generator | None = None,
    ) -> np.ndarray:
        """
        Draw n_sim simulated attempt counts.

        Raises:
            ConfigError: Unknown team, unmonitored team, win_prob outside [0, 1],
                or n_sim < 1
        """
        if n_sim < 1:
            raise ConfigError(f"n_sim must be at least 1, got {n_sim}")
        if not 0.0 <= win_prob <= 1.0:
            raise ConfigError(f"win_prob must be in [0, 1], got {win_prob}")

        rng = (
            random_seed
            if isinstance(random_seed, np.random.Generator)
            else np.random.default_rng(random_seed)
        )
        lam = self.expected_rate(team_id, win_prob)
        idx = rng.integers(0, self._n_total, size=n_sim)
        lam = lam[idx]

        if self._r is None:
            return rng.poisson(lam)

        r = self._r[idx]
        return rng.negative_binomial(r, r / (r + lam))

    def summarize(
        self,
        team_id: int,
        win_prob: float,
        n_sim: int = 1000,
        random_seed: int | np.random.Generator | None = None,
        return_samples: bool = False,
    ) -> PredictiveSummary:
        samples = self.simulate(team_id, win_prob, n_sim=n_sim, random_seed=random_seed)
        return PredictiveSummary(
            team_id=team_id,
            win_prob=win_prob,
            mean=float(samples.mean()),
            std=float(samples.std()),
            median=float(np.median(samples)),
            ci_lower=float(np.percentile(samples, 5)),
            ci_upper=float(np.percentile(samples, 95)),
            samples=samples if return_samples else None,
        )

    def predict_grid(
        self,
        team_ids: list[int],
        win_probs: list[float],
        n_sim: int = 1000,
        random_seed: int | None = None,
    ) -> pd.DataFrame:
        """
        Summaries for every (team, win probability) combination.

        Returns:
            DataFrame with team_id, win_prob, mean, std, median, ci_lower, ci_upper
        """
        rng = np.random.default_rng(random_seed)
        rows = []
        for team_id in team_ids:
            for win_prob in win_probs:
                s = self.summarize(team_id, win_prob, n_sim=n_sim, random_seed=rng)
                rows.append({
                    "team_id": s.team_id,
                    "win_prob": s.win_prob,
                    "mean": s.mean,
                    "std": s.std,
                    "median": s.median,
                    "ci_lower": s.ci_lower,
                    "ci_upper": s.ci_upper,
                })
        return pd.DataFrame(rows)


def predict(
    posterior_draws: Chains,
    model_kind: ModelKind | str,
    team_id: int,
    win_prob: float,
    n_sim: int,
    n_teams: int | None = None,
    random_seed: int | np.random.Generator | None = None,
) -> np.ndarray:
    """
    Empirical posterior-predictive distribution of attempts per game.

    Args:
        posterior_draws: {chain_id: [PosteriorSample, ...]} from the driver
        model_kind: Model the draws came from
        team_id: Team to simulate (1..n_teams)
        win_prob: Pre-game win probability
        n_sim: Number of simulated games
        n_teams: Number of fitted teams; inferred from the draws if omitted
        random_seed: Seed or Generator for resampling and simulation

    Returns:
        Integer array of n_sim simulated counts (unordered)
    """
    predictor = PosteriorPredictor(posterior_draws, model_kind, n_teams=n_teams)
    return predictor.simulate(team_id, win_prob, n_sim=n_sim, random_seed=random_seed)
