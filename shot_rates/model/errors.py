"""
Error kinds raised by the shot-rate pipeline.

All errors are raised where they are detected and carry the match id,
team id or parameter name needed to locate the problem.
"""


class ShotRatesError(Exception):
    """Base class for shot-rate pipeline errors."""


class DataError(ShotRatesError, ValueError):
    """Malformed or missing resolver input (zero duration, missing odds)."""


class ConfigError(ShotRatesError, ValueError):
    """Invalid priors or out-of-range query parameters."""


class InferenceError(ShotRatesError, RuntimeError):
    """Engine-reported graph invalidity or failure to initialize chains."""
