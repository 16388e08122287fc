"""Tests for shot_rates.model.inference: the driver, persistence, and end-to-end fits."""

import numpy as np
import pytest

from shot_rates.model.data import ResolvedObservation
from shot_rates.model.diagnostics import diagnose
from shot_rates.model.errors import ConfigError, DataError, InferenceError
from shot_rates.model.inference import (
    InferenceConfig,
    ModelFitter,
    PosteriorSample,
    from_inference_data,
    run,
    to_inference_data,
)
from shot_rates.model.predictions import PosteriorPredictor
from shot_rates.model.spec import (
    negative_binomial_regression,
    poisson_regression,
    pooled_poisson,
)


class FakeEngine:
    """Engine returning deterministic draws, recording what it was given."""

    def __init__(self, include_deviance=True):
        self.include_deviance = include_deviance
        self.calls = []

    def sample(self, spec, data, n_chains, burn_in, n_draws, random_seed=None, initvals=None):
        self.calls.append(dict(data=data, n_chains=n_chains, burn_in=burn_in, n_draws=n_draws))
        chains = {}
        for c in range(n_chains):
            draws = {
                name: np.arange(n_draws, dtype=float) + c
                for name, _, _ in spec.monitored_entries()
            }
            if self.include_deviance:
                draws["deviance"] = np.full(n_draws, 100.0 + c)
            chains[c] = draws
        return chains


class TestDriver:
    """Test the inference driver with a stand-in engine."""

    def test_chain_and_draw_counts(self, two_team_observations):
        spec = pooled_poisson(2)
        chains = run(spec, two_team_observations, n_chains=3, burn_in=10, n_draws=25, engine=FakeEngine())

        assert sorted(chains) == [0, 1, 2]
        for chain_id, samples in chains.items():
            assert len(samples) == 25
            assert all(isinstance(s, PosteriorSample) for s in samples)
            assert [s.draw for s in samples] == list(range(25))
            assert {s.chain for s in samples} == {chain_id}

    def test_samples_carry_monitored_and_deviance(self, two_team_observations):
        spec = pooled_poisson(2)
        chains = run(spec, two_team_observations, 2, 0, 5, engine=FakeEngine())

        sample = chains[1][3]
        assert set(sample.values) == {"lambda[1]", "lambda[2]", "alpha", "beta", "deviance"}
        assert sample["alpha"] == 4.0
        assert sample["deviance"] == 101.0

    def test_engine_receives_flat_data(self, two_team_observations):
        engine = FakeEngine()
        run(pooled_poisson(2), two_team_observations, 2, 50, 10, engine=engine)

        (call,) = engine.calls
        assert call["burn_in"] == 50
        np.testing.assert_array_equal(call["data"]["team"], [1, 1, 1, 1, 2, 2, 2, 2])
        np.testing.assert_array_equal(
            call["data"]["attempts"], [14, 16, 15, 15, 16, 18, 17, 17]
        )

    def test_missing_deviance_is_inference_error(self, two_team_observations):
        with pytest.raises(InferenceError):
            run(pooled_poisson(2), two_team_observations, 2, 0, 5,
                engine=FakeEngine(include_deviance=False))

    def test_team_outside_spec(self, two_team_observations):
        with pytest.raises(DataError):
            run(pooled_poisson(1), two_team_observations, 2, 0, 5, engine=FakeEngine())

    def test_empty_data(self):
        with pytest.raises(DataError):
            run(pooled_poisson(2), [], 2, 0, 5, engine=FakeEngine())

    def test_missing_covariate_column(self):
        data = {"attempts": np.array([3, 4]), "team": np.array([1, 2])}
        with pytest.raises(DataError, match="win_prob"):
            run(poisson_regression(2), data, 2, 0, 5, engine=FakeEngine())

    @pytest.mark.parametrize("counts", [(0, 10, 10), (2, -1, 10), (2, 10, 0)])
    def test_invalid_counts(self, counts, two_team_observations):
        n_chains, burn_in, n_draws = counts
        with pytest.raises(ConfigError):
            run(pooled_poisson(2), two_team_observations, n_chains, burn_in, n_draws,
                engine=FakeEngine())

    def test_config_defaults_used(self, two_team_observations):
        engine = FakeEngine()
        fitter = ModelFitter(InferenceConfig(n_chains=2, burn_in=7, n_draws=9), engine=engine)
        chains = fitter.run(pooled_poisson(2), two_team_observations)

        assert len(chains) == 2
        assert len(chains[0]) == 9
        assert engine.calls[0]["burn_in"] == 7

    def test_initvals_must_match_chains(self, two_team_observations):
        fitter = ModelFitter(engine=FakeEngine())
        with pytest.raises(ConfigError):
            fitter.run(pooled_poisson(2), two_team_observations, n_chains=3,
                       burn_in=0, n_draws=5, initvals=[{}])


class TestPersistence:
    """Test conversion to InferenceData and save/load."""

    def test_inference_data_round_trip(self, two_team_observations):
        spec = negative_binomial_regression(5, monitor_teams=(2, 4))
        data = {
            "attempts": np.array([10, 12]),
            "team": np.array([2, 4]),
            "win_prob": np.array([0.4, 0.6]),
        }
        chains = run(spec, data, 2, 0, 6, engine=FakeEngine())

        idata = to_inference_data(chains)
        assert "intercept" in idata.posterior
        assert list(idata.posterior["intercept_team"].values) == [2, 4]

        restored = from_inference_data(idata)
        assert sorted(restored) == sorted(chains)
        for c in chains:
            for original, loaded in zip(chains[c], restored[c]):
                assert dict(original.values) == pytest.approx(dict(loaded.values))

    def test_save_and_load(self, tmp_path, two_team_observations):
        spec = pooled_poisson(2)
        fitter = ModelFitter(InferenceConfig(cache_dir=tmp_path), engine=FakeEngine())
        chains = fitter.run(spec, two_team_observations, n_chains=2, burn_in=0, n_draws=4)

        path = fitter.save("pooled", spec, chains)
        assert (path / "trace.nc").exists()

        loaded_spec, loaded_chains = ModelFitter.load("pooled", cache_dir=tmp_path)
        assert loaded_spec == spec
        assert loaded_chains[1][2]["lambda[2]"] == chains[1][2]["lambda[2]"]
        assert loaded_chains[0][0]["deviance"] == chains[0][0]["deviance"]

    def test_load_missing_checkpoint(self, tmp_path):
        with pytest.raises(ConfigError):
            ModelFitter.load("nothing_here", cache_dir=tmp_path)


class TestEndToEnd:
    """Fit the models with PyMC on small synthetic datasets."""

    def test_pooled_poisson_recovers_team_means(self, two_team_observations):
        spec = pooled_poisson(2)
        chains = run(spec, two_team_observations, n_chains=3, burn_in=100, n_draws=500, random_seed=42)

        assert len(chains) == 3
        assert all(len(samples) == 500 for samples in chains.values())

        sample_means = {1: 15.0, 2: 17.0}
        for team, expected in sample_means.items():
            draws = [s[f"lambda[{team}]"] for samples in chains.values() for s in samples]
            assert np.mean(draws) == pytest.approx(expected, abs=1.5)

        report = diagnose(chains)
        assert report.dic is not None
        assert report.max_psrf < 1.2
        for value in report.ess.values():
            assert 0 <= value <= 3 * 500

    def test_dic_independent_of_monitored_subset(self, two_team_observations):
        full = run(pooled_poisson(2), two_team_observations, 2, 100, 200, random_seed=7)
        subset = run(pooled_poisson(2, monitored=("alpha",)), two_team_observations, 2, 100, 200, random_seed=7)

        assert set(subset[0][0].values) == {"alpha", "deviance"}
        assert diagnose(subset).dic.dic == pytest.approx(diagnose(full).dic.dic)

    def test_bad_initial_values_raise_inference_error(self, two_team_observations):
        fitter = ModelFitter(InferenceConfig(n_chains=2, burn_in=10, n_draws=10))
        with pytest.raises(InferenceError, match="pooled_poisson"):
            fitter.run(pooled_poisson(2), two_team_observations, initvals=[{"alpha": -1.0}] * 2)

    def test_negative_binomial_regression_fit(self):
        rng = np.random.default_rng(5)
        n_teams, n_obs = 3, 60
        team = np.tile(np.arange(1, n_teams + 1), n_obs // n_teams)
        win_prob = rng.uniform(0.1, 0.9, size=n_obs)
        lam = np.exp(2.6 + 0.5 * win_prob)
        attempts = rng.negative_binomial(8, 8 / (8 + lam))
        data = {"attempts": attempts, "team": team, "win_prob": win_prob}

        chains = run(negative_binomial_regression(n_teams), data, n_chains=2,
                     burn_in=300, n_draws=300, random_seed=13)

        r = np.array([s["r"] for samples in chains.values() for s in samples])
        deviance = np.array([s["deviance"] for samples in chains.values() for s in samples])
        assert np.all((r > 0) & (r < 50))
        assert np.all(np.isfinite(deviance))
        assert {"intercept[1]", "intercept[3]", "b_win", "mu", "tau"} <= set(chains[0][0].values)

    def test_poisson_regression_win_probability_effect(self):
        rng = np.random.default_rng(3)
        n_teams, n_obs = 3, 90
        team = np.tile(np.arange(1, n_teams + 1), n_obs // n_teams)
        win_prob = rng.uniform(0.1, 0.9, size=n_obs)
        team_effect = np.array([2.5, 2.7, 2.9])
        attempts = rng.poisson(np.exp(team_effect[team - 1] + 0.8 * win_prob))

        observations = [
            ResolvedObservation(
                match_id=f"r{i}", team_id=int(t), attempts=int(a), duration=90.0,
                attempts_per_game=int(a), win_prob=float(w), is_home=True,
            )
            for i, (t, a, w) in enumerate(zip(team, attempts, win_prob))
        ]

        spec = poisson_regression(n_teams)
        chains = run(spec, observations, n_chains=2, burn_in=500, n_draws=500, random_seed=11)

        b_win = np.mean([s["b_win"] for samples in chains.values() for s in samples])
        assert b_win > 0

        predictor = PosteriorPredictor.from_spec(chains, spec)
        high = predictor.simulate(team_id=2, win_prob=1.0, n_sim=4000, random_seed=0)
        low = predictor.simulate(team_id=2, win_prob=0.1, n_sim=4000, random_seed=0)
        assert high.mean() > low.mean()
