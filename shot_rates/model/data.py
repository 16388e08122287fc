"""
Data pipeline for turning raw soccer event and match records into model input.

This module transforms raw records into a format suitable for Bayesian modelling,
with proper handling of:
- Shot-attempt filtering by event-type code
- Match duration (stoppage and extra time included)
- One randomly selected team per match, so observations are independent
- Rate normalization to attempts per 90 minutes
- Market-implied win probability from decimal odds
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields
from typing import Any, Iterable, Literal, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from shot_rates.model.errors import ConfigError, DataError
from shot_rates.utils.constants import (
    MINUTES_PER_GAME,
    OUTCOME,
    SHOT_EVENT_CODE,
    TEAM_INDEX,
    WIN_PROB,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawEvent:
    """A single in-game action from the event table."""

    match_id: str
    team: str
    event_type: int
    time: float  # Elapsed minutes


@dataclass(frozen=True)
class RawMatch:
    """A single game from the match table, with decimal win odds."""

    match_id: str
    home_team: str
    away_team: str
    home_odds: float | None
    away_odds: float | None
    date: str | None = None


@dataclass(frozen=True)
class ResolvedObservation:
    """
    One independent observation: a single team's shot volume in one match.

    Attributes:
        match_id: Match identifier
        team_id: Dense team id (1..K) from the run's TeamCode
        attempts: Raw shot-attempt count
        duration: Match duration in minutes
        attempts_per_game: Attempts normalized to 90 minutes, rounded to an integer
        win_prob: Market-implied pre-game win probability (1 / decimal odds)
        is_home: Whether the selected team played at home
    """

    match_id: str
    team_id: int
    attempts: int
    duration: float
    attempts_per_game: int
    win_prob: float
    is_home: bool


@dataclass
class ResolverConfig:
    """Configuration for observation resolution."""

    # Event-type code marking a shot attempt
    shot_event_code: int = SHOT_EVENT_CODE

    # Length of the reference match
    minutes_per_game: float = MINUTES_PER_GAME

    # Tie rule for rounding the per-90 rate: 4.5 -> 5 ("half_up") or 4 ("half_even")
    rounding: Literal["half_up", "half_even"] = "half_up"

    def __post_init__(self):
        if self.rounding not in ("half_up", "half_even"):
            raise ConfigError(f"Unknown rounding rule: {self.rounding!r}")
        if not self.minutes_per_game > 0:
            raise ConfigError(
                f"minutes_per_game must be positive, got {self.minutes_per_game}"
            )


def round_count(value: float, rule: str = "half_up") -> int:
    """Round a non-negative rate to an integer count."""
    if rule == "half_up":
        return int(math.floor(value + 0.5))
    if rule == "half_even":
        return int(round(value))
    raise ConfigError(f"Unknown rounding rule: {rule!r}")


class TeamCode:
    """
    Bijection from team name to a dense integer id in 1..K.

    Ids are assigned in sorted name order, so the same set of teams always
    gets the same coding.
    """

    def __init__(self, names: Iterable[str]):
        self._names: tuple[str, ...] = tuple(sorted(set(names)))
        self._ids: dict[str, int] = {name: i + 1 for i, name in enumerate(self._names)}

    def encode(self, name: str) -> int:
        try:
            return self._ids[name]
        except KeyError:
            raise ConfigError(f"Unknown team: {name!r}") from None

    def decode(self, team_id: int) -> str:
        if not 1 <= team_id <= len(self._names):
            raise ConfigError(
                f"Team id {team_id} outside observed range 1..{len(self._names)}"
            )
        return self._names[team_id - 1]

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    def as_dict(self) -> dict[str, int]:
        return dict(self._ids)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._ids

    def __repr__(self) -> str:
        return f"TeamCode(n_teams={len(self)})"


@dataclass(frozen=True)
class ResolvedDataset:
    """Immutable collection of resolved observations with its team coding."""

    observations: tuple[ResolvedObservation, ...]
    team_code: TeamCode = field(compare=False)

    @property
    def n_teams(self) -> int:
        return len(self.team_code)

    def __len__(self) -> int:
        return len(self.observations)

    def __iter__(self):
        return iter(self.observations)

    def to_dataframe(self) -> pd.DataFrame:
        """One row per observation, with team names attached."""
        columns = [f.name for f in fields(ResolvedObservation)]
        df = pd.DataFrame([vars(obs) for obs in self.observations], columns=columns)
        df["team"] = [self.team_code.decode(t) for t in df["team_id"]]
        return df

    def to_model_data(self) -> dict[str, np.ndarray]:
        return observations_to_data(self.observations)

    def team_means(self) -> pd.Series:
        """Sample mean of attempts per game, indexed by team id."""
        df = self.to_dataframe()
        return df.groupby("team_id")["attempts_per_game"].mean()


def observations_to_data(
    observations: Sequence[ResolvedObservation],
) -> dict[str, np.ndarray]:
    """
    Build the flat observed-data mapping handed to the inference engine.

    Returns:
        Dictionary with 'attempts' (int), 'team' (1-based int) and
        'win_prob' (float) arrays, aligned by observation.
    """
    if len(observations) == 0:
        raise DataError("No observations to model")

    return {
        OUTCOME: np.array([o.attempts_per_game for o in observations], dtype=np.int64),
        TEAM_INDEX: np.array([o.team_id for o in observations], dtype=np.int64),
        WIN_PROB: np.array([o.win_prob for o in observations], dtype=np.float64),
    }


def _as_frame(records: Any, record_type: type) -> pd.DataFrame:
    """Accept either a DataFrame or an iterable of record dataclasses."""
    columns = [f.name for f in fields(record_type)]
    if isinstance(records, pd.DataFrame):
        missing = [c for c in columns if c not in records.columns and c != "date"]
        if missing:
            raise DataError(f"{record_type.__name__} table missing columns: {missing}")
        return records
    return pd.DataFrame([vars(r) for r in records], columns=columns)


def _is_missing(value: Any) -> bool:
    return value is None or bool(pd.isna(value))


def _win_probability(odds: Any, match_id: Any, team: str) -> float:
    if _is_missing(odds):
        raise DataError(f"Match {match_id}: missing odds for {team}")
    odds = float(odds)
    # Decimal odds are at least 1, so win_prob stays in (0, 1]
    if not odds >= 1:
        raise DataError(f"Match {match_id}: decimal odds {odds} below 1 for {team}")
    return 1.0 / odds


def resolve_dataset(
    events: Iterable[RawEvent] | pd.DataFrame,
    matches: Iterable[RawMatch] | pd.DataFrame,
    seed: int | np.random.Generator | None = None,
    config: ResolverConfig | None = None,
) -> ResolvedDataset:
    """
    Resolve raw records into exactly one observation per match.

    Only matches with event records are resolved. For each, one of the two
    teams is picked uniformly at random; this removes the negative correlation
    between the two teams' shot counts in the same match.

    Args:
        events: Event records (or a DataFrame with RawEvent columns)
        matches: Match records (or a DataFrame with RawMatch columns)
        seed: Seed or Generator driving team selection
        config: Resolver configuration

    Returns:
        ResolvedDataset with observations and the TeamCode used

    Raises:
        DataError: Zero/missing duration, missing odds or odds below 1,
            or events for a match absent from the match table
    """
    config = config or ResolverConfig()
    rng = seed if isinstance(seed, np.random.Generator) else np.random.default_rng(seed)

    events_df = _as_frame(events, RawEvent)
    matches_df = _as_frame(matches, RawMatch)

    if matches_df["match_id"].duplicated().any():
        dupes = matches_df.loc[matches_df["match_id"].duplicated(), "match_id"].tolist()
        raise DataError(f"Duplicate match ids in match table: {dupes[:5]}")

    match_table = matches_df.set_index("match_id")
    match_ids = sorted(events_df["match_id"].unique())

    unknown = [m for m in match_ids if m not in match_table.index]
    if unknown:
        raise DataError(f"Events reference matches missing from match table: {unknown[:5]}")

    # Duration from all events, attempts from shot events only
    durations = events_df.groupby("match_id")["time"].max()
    shots = events_df[events_df["event_type"] == config.shot_event_code]
    counts = shots.groupby(["match_id", "team"]).size().to_dict()

    resolved = match_table.loc[match_ids]
    team_code = TeamCode(
        pd.concat([resolved["home_team"], resolved["away_team"]]).tolist()
    )

    observations = []
    for match_id in match_ids:
        row = match_table.loc[match_id]

        duration = durations.get(match_id)
        if _is_missing(duration) or not float(duration) > 0:
            raise DataError(f"Match {match_id}: invalid duration {duration}")
        duration = float(duration)

        is_home = bool(rng.integers(2) == 0)
        team = row["home_team"] if is_home else row["away_team"]
        odds = row["home_odds"] if is_home else row["away_odds"]

        attempts = int(counts.get((match_id, team), 0))
        rate = attempts / duration

        observations.append(
            ResolvedObservation(
                match_id=match_id,
                team_id=team_code.encode(team),
                attempts=attempts,
                duration=duration,
                attempts_per_game=round_count(rate * config.minutes_per_game, config.rounding),
                win_prob=_win_probability(odds, match_id, team),
                is_home=is_home,
            )
        )

    logger.info(
        "Resolved %d observations across %d teams", len(observations), len(team_code)
    )
    return ResolvedDataset(observations=tuple(observations), team_code=team_code)


def resolve(
    events: Iterable[RawEvent] | pd.DataFrame,
    matches: Iterable[RawMatch] | pd.DataFrame,
    seed: int | np.random.Generator | None = None,
    config: ResolverConfig | None = None,
) -> list[ResolvedObservation]:
    """Resolve raw records into one ResolvedObservation per match."""
    return list(resolve_dataset(events, matches, seed=seed, config=config).observations)


def dispersion_summary(dataset: ResolvedDataset) -> dict:
    """
    Compare empirical variance of attempts per game against the Poisson mean.

    A variance/mean ratio well above 1 motivates the negative-binomial model.

    Returns dict with:
        - by_team: DataFrame of per-team n, mean, variance, ratio
        - mean, variance, ratio: pooled over teams (within-team residuals)
        - chi2, dof, p_value: Poisson dispersion test on within-team residuals
    """
    df = dataset.to_dataframe()
    grouped = df.groupby("team_id")["attempts_per_game"]

    by_team = pd.DataFrame({
        "team": [dataset.team_code.decode(t) for t in grouped.mean().index],
        "n": grouped.size(),
        "mean": grouped.mean(),
        "variance": grouped.var(ddof=1),
    })
    by_team["ratio"] = by_team["variance"] / by_team["mean"]

    # Pearson statistic against each team's own mean
    team_mean = grouped.transform("mean")
    valid = team_mean > 0
    chi2 = float((((df["attempts_per_game"] - team_mean) ** 2)[valid] / team_mean[valid]).sum())
    dof = int(valid.sum() - grouped.ngroups)

    residual_var = float(((df["attempts_per_game"] - team_mean) ** 2).sum() / max(dof, 1))
    pooled_mean = float(df["attempts_per_game"].mean())

    return {
        "by_team": by_team,
        "mean": pooled_mean,
        "variance": residual_var,
        "ratio": residual_var / pooled_mean if pooled_mean > 0 else float("nan"),
        "chi2": chi2,
        "dof": dof,
        "p_value": float(stats.chi2.sf(chi2, dof)) if dof > 0 else float("nan"),
    }
