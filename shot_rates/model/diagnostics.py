"""
Convergence and fit diagnostics computed directly from posterior draws.

Includes:
- Potential scale reduction factor (Gelman-Rubin) per parameter
- Effective sample size via Geyer's initial monotone sequence
- Deviance information criterion (plug-in penalty var(D)/2)
- Posterior summaries and DIC ranking of model variants

Nothing here calls the inference engine. High PSRF or low ESS are
reported as warnings inside the DiagnosticReport, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping

import arviz as az
import numpy as np
import pandas as pd

from shot_rates.model.errors import ConfigError
from shot_rates.model.inference import Chains, to_inference_data
from shot_rates.utils.constants import DEVIANCE, PSRF_THRESHOLD
from shot_rates.utils.logging import (
    print_info,
    print_section,
    print_subsection,
    print_success,
    print_table,
    print_warning,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DICSummary:
    """Deviance information criterion: DIC = mean deviance + penalty."""

    mean_deviance: float
    penalty: float
    dic: float


@dataclass(frozen=True)
class DiagnosticReport:
    """
    Per-model convergence and fit summary.

    Attributes:
        psrf: Potential scale reduction factor per parameter
        ess: Effective sample size per parameter
        max_psrf: Largest PSRF across parameters (NaN if undefined)
        dic: DIC summary, or None if draws carry no deviance
        n_chains: Number of chains
        n_draws: Draws per chain
        psrf_threshold: Advisory PSRF gate
        warnings: Advisory messages (high PSRF, low ESS)
    """

    psrf: Mapping[str, float]
    ess: Mapping[str, float]
    max_psrf: float
    dic: DICSummary | None
    n_chains: int
    n_draws: int
    psrf_threshold: float = PSRF_THRESHOLD
    warnings: tuple[str, ...] = field(default=())

    @property
    def converged(self) -> bool:
        """True if the maximum PSRF is below the advisory threshold."""
        return bool(self.max_psrf < self.psrf_threshold)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({"psrf": pd.Series(self.psrf), "ess": pd.Series(self.ess)})

    def print_summary(self, show_parameters: bool = False) -> None:
        """Human-readable report for the console."""
        print_section("CONVERGENCE DIAGNOSTICS")
        print_info(f"Chains: {self.n_chains}, draws per chain: {self.n_draws}")
        print_info(f"Max PSRF: {self.max_psrf:.3f} (threshold {self.psrf_threshold})")
        if self.ess:
            print_info(f"Min ESS: {min(self.ess.values()):.0f}")
        if self.dic is not None:
            print_info(
                f"DIC: {self.dic.dic:.1f} "
                f"(mean deviance {self.dic.mean_deviance:.1f}, penalty {self.dic.penalty:.1f})"
            )

        if show_parameters:
            print_subsection("Per-parameter PSRF / ESS")
            print_table(self.to_dataframe())

        if self.warnings:
            for message in self.warnings:
                print_warning(message)
        else:
            print_success("No convergence warnings")


def stack_draws(chains: Chains) -> dict[str, np.ndarray]:
    """
    Arrange draws as {parameter: array of shape (n_chains, n_draws)}.

    Raises:
        ConfigError: No chains, empty chains, unequal chain lengths, or
            parameters missing from some draws
    """
    if not chains:
        raise ConfigError("No chains to diagnose")

    chain_ids = sorted(chains)
    lengths = {len(chains[c]) for c in chain_ids}
    if len(lengths) != 1:
        raise ConfigError(f"Chains have unequal lengths: {sorted(lengths)}")
    if lengths == {0}:
        raise ConfigError("Chains contain no draws")

    names = list(chains[chain_ids[0]][0].values)
    try:
        return {
            name: np.array(
                [[s.values[name] for s in chains[c]] for c in chain_ids], dtype=float
            )
            for name in names
        }
    except KeyError as e:
        raise ConfigError(f"Parameter {e.args[0]!r} missing from some draws") from None


def psrf(draws: np.ndarray) -> float:
    """
    Potential scale reduction factor (classic Gelman-Rubin) for one parameter.

    Args:
        draws: Array of shape (n_chains, n_draws)

    Returns:
        ArviZ identity R-hat; 1.0 when all chains are identical constants,
        inf when chains are constant but disagree, NaN with fewer than two chains
    """
    m, n = draws.shape
    if m < 2 or n < 2:
        return float("nan")

    if np.all(draws.var(axis=1) == 0):
        return 1.0 if np.all(draws == draws.flat[0]) else float("inf")

    return float(az.rhat(draws, method="identity"))


def ess(draws: np.ndarray) -> float:
    """
    Effective sample size for one parameter.

    ArviZ 'mean' ESS (Geyer's initial monotone sequence over the chain-averaged
    autocorrelation), clipped to [0, N]. Constant draws give N.

    Args:
        draws: Array of shape (n_chains, n_draws)
    """
    total = draws.size
    if np.all(draws.var(axis=1) == 0):
        return float(total)

    value = float(az.ess(draws, method="mean"))
    return float(np.clip(value, 0, total))


def dic(deviance: np.ndarray) -> DICSummary:
    """DIC from deviance draws (any shape; all draws pooled)."""
    d = np.asarray(deviance, dtype=float).ravel()
    mean_deviance = float(d.mean())
    penalty = float(d.var() / 2.0)
    return DICSummary(mean_deviance=mean_deviance, penalty=penalty, dic=mean_deviance + penalty)


def diagnose(
    chains: Chains,
    psrf_threshold: float = PSRF_THRESHOLD,
    min_ess: float | None = None,
) -> DiagnosticReport:
    """
    Compute PSRF, ESS and DIC for a collection of posterior draws.

    Args:
        chains: {chain_id: [PosteriorSample, ...]} from the inference driver
        psrf_threshold: Advisory gate on the maximum PSRF
        min_ess: If given, warn about parameters with fewer effective draws

    Returns:
        DiagnosticReport; problems are listed in its warnings
    """
    stacked = stack_draws(chains)
    n_chains, n_draws = next(iter(stacked.values())).shape

    params = {name: arr for name, arr in stacked.items() if name != DEVIANCE}
    psrf_values = {name: psrf(arr) for name, arr in params.items()}
    ess_values = {name: ess(arr) for name, arr in params.items()}

    defined = {k: v for k, v in psrf_values.items() if not np.isnan(v)}
    worst = max(defined, key=defined.get) if defined else None
    max_psrf = defined[worst] if worst is not None else float("nan")

    warnings = []
    if n_chains < 2:
        warnings.append("PSRF needs at least two chains; convergence not assessed")
    elif max_psrf >= psrf_threshold:
        warnings.append(
            f"High PSRF detected: {worst} = {max_psrf:.3f} (threshold {psrf_threshold})"
        )
    if min_ess is not None:
        low = sorted(name for name, v in ess_values.items() if v < min_ess)
        if low:
            warnings.append(f"Low ESS (< {min_ess:g}) for: {', '.join(low)}")

    for message in warnings:
        logger.warning(message)

    return DiagnosticReport(
        psrf=psrf_values,
        ess=ess_values,
        max_psrf=max_psrf,
        dic=dic(stacked[DEVIANCE]) if DEVIANCE in stacked else None,
        n_chains=n_chains,
        n_draws=n_draws,
        psrf_threshold=psrf_threshold,
        warnings=tuple(warnings),
    )


def summarize_posterior(chains: Chains) -> pd.DataFrame:
    """
    Tabulate posterior mean, sd, quantiles, PSRF and ESS per parameter.

    Returns:
        DataFrame indexed by parameter name ('lambda[1]', 'b_win', ...)
    """
    stacked = stack_draws(chains)
    quantiles = {
        "q2.5": lambda x: np.percentile(x, 2.5),
        "median": np.median,
        "q97.5": lambda x: np.percentile(x, 97.5),
    }
    table = az.summary(
        to_inference_data(chains),
        kind="stats",
        stat_funcs=quantiles,
        extend=True,
        round_to="none",
    )
    table = table[["mean", "sd", *quantiles]].astype(float)
    table["psrf"] = [psrf(stacked[name]) for name in table.index]
    table["ess"] = [ess(stacked[name]) for name in table.index]
    return table


def compare_models(reports: Mapping[str, DiagnosticReport]) -> pd.DataFrame:
    """
    Rank model variants by DIC (lower is better).

    DIC is only meaningful relative to the other models fitted to the same
    data, so the table also reports each model's difference from the best.
    """
    rows = []
    for name, report in reports.items():
        if report.dic is None:
            raise ConfigError(f"Model {name!r} has no deviance draws; cannot compare DIC")
        rows.append({
            "model": name,
            "mean_deviance": report.dic.mean_deviance,
            "penalty": report.dic.penalty,
            "dic": report.dic.dic,
            "max_psrf": report.max_psrf,
        })

    table = pd.DataFrame(rows).sort_values("dic").reset_index(drop=True)
    table["delta_dic"] = table["dic"] - table["dic"].min()
    table.index = table.index + 1
    table.index.name = "rank"
    return table
