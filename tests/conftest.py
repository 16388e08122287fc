"""Shared fixtures for shot_rates tests."""

import numpy as np
import pytest

from shot_rates.model.data import RawEvent, RawMatch, ResolvedObservation
from shot_rates.model.inference import draws_to_samples


def make_chains(params, n_chains=3, n_draws=500):
    """
    Build PosteriorSample chains from per-parameter values.

    Each value may be a scalar (held constant) or an array of shape
    (n_chains, n_draws).
    """
    draws = {}
    for c in range(n_chains):
        draws[c] = {
            name: np.full(n_draws, value, dtype=float) if np.isscalar(value) else np.asarray(value[c], dtype=float)
            for name, value in params.items()
        }
    return draws_to_samples(draws)


@pytest.fixture
def chain_factory():
    return make_chains


@pytest.fixture
def raw_matches():
    """Six matches between four teams with decimal odds."""
    return [
        RawMatch("m1", "Arsenal", "Chelsea", 2.0, 4.0, "2016-08-13"),
        RawMatch("m2", "Chelsea", "Everton", 1.5, 6.0, "2016-08-20"),
        RawMatch("m3", "Everton", "Arsenal", 3.0, 2.5, "2016-08-27"),
        RawMatch("m4", "Burnley", "Arsenal", 5.0, 1.8, "2016-09-10"),
        RawMatch("m5", "Chelsea", "Burnley", 1.4, 8.0, "2016-09-17"),
        RawMatch("m6", "Arsenal", "Everton", 1.9, 4.5, "2016-09-24"),
    ]


@pytest.fixture
def raw_events():
    """
    Events for five of the six matches (m6 has none).

    Every match lasts 90 minutes except m4, which lasts 20 minutes with one
    shot per team (4.5 attempts per 90 for either selected team).
    """
    events = []
    shots = {
        "m1": {"Arsenal": 12, "Chelsea": 9},
        "m2": {"Chelsea": 18, "Everton": 6},
        "m3": {"Everton": 10, "Arsenal": 14},
        "m5": {"Chelsea": 20, "Burnley": 5},
    }
    for match_id, by_team in shots.items():
        for team, n in by_team.items():
            events.extend(RawEvent(match_id, team, 1, float(t + 1)) for t in range(n))
        # Non-shot events, including the final whistle
        events.append(RawEvent(match_id, list(by_team)[0], 3, 45.0))
        events.append(RawEvent(match_id, list(by_team)[1], 2, 90.0))

    events.append(RawEvent("m4", "Burnley", 1, 5.0))
    events.append(RawEvent("m4", "Arsenal", 1, 12.0))
    events.append(RawEvent("m4", "Arsenal", 4, 20.0))
    return events


@pytest.fixture
def two_team_observations():
    """Two teams, four matches each, with known per-90 attempt counts."""
    counts = {1: [14, 16, 15, 15], 2: [16, 18, 17, 17]}
    observations = []
    for team_id, values in counts.items():
        for i, count in enumerate(values):
            observations.append(
                ResolvedObservation(
                    match_id=f"t{team_id}-{i}",
                    team_id=team_id,
                    attempts=count,
                    duration=90.0,
                    attempts_per_game=count,
                    win_prob=0.5,
                    is_home=bool(i % 2),
                )
            )
    return observations
