"""Shared utilities for the shot-rates project."""

from .logging import (
    setup_logging,
    print_section,
    print_subsection,
    print_success,
    print_warning,
    print_info,
    print_table,
)
from .constants import (
    SHOT_EVENT_CODE,
    MINUTES_PER_GAME,
    PSRF_THRESHOLD,
    DEVIANCE,
)

__all__ = [
    "setup_logging",
    "print_section",
    "print_subsection",
    "print_success",
    "print_warning",
    "print_info",
    "print_table",
    "SHOT_EVENT_CODE",
    "MINUTES_PER_GAME",
    "PSRF_THRESHOLD",
    "DEVIANCE",
]
