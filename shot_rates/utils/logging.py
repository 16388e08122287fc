"""Logging setup and console report helpers."""

from __future__ import annotations

import logging

import pandas as pd

# Third-party loggers that are chatty during sampling
SAMPLER_LOGGERS = ("pymc", "pytensor")


def setup_logging(verbose: bool = True, quiet_sampler: bool = True) -> None:
    """
    Configure logging for console output.

    Args:
        verbose: INFO level for shot_rates if True, WARNING otherwise
        quiet_sampler: Raise PyMC and pytensor loggers to WARNING
    """
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("shot_rates").setLevel(level)
    if quiet_sampler:
        for name in SAMPLER_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def print_section(title: str) -> None:
    """Print a formatted section header."""
    width = 70
    print("=" * width)
    print(title)
    print("=" * width)


def print_subsection(title: str) -> None:
    print("\n" + "-" * 70)
    print(title)
    print("-" * 70)


def print_success(message: str) -> None:
    print(f"✓ {message}")


def print_warning(message: str) -> None:
    print(f"⚠️  {message}")


def print_info(message: str) -> None:
    print(f"ℹ  {message}")


def print_table(df: pd.DataFrame, float_format: str = "{:.3f}") -> None:
    """Print a parameter table (posterior summary, DIC ranking) with fixed precision."""
    print(df.to_string(float_format=float_format.format))
