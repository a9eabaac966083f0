"""Exception and warning types raised by the CAT engine."""
from __future__ import annotations


class CatError(Exception):
    """Base class for engine errors."""


class ConfigurationError(CatError, ValueError):
    """The item bank, constraints, or norms are missing or malformed."""


class NumericalInstability(CatError, ArithmeticError):
    """A matrix could not be inverted (singular or non-finite)."""


class SessionStateError(CatError, RuntimeError):
    """An operation is not valid in the session's current state."""


class OutOfRangeResponse(UserWarning):
    """A response index fell outside ``[0, K-1]`` and was clamped."""


__all__ = [
    "CatError",
    "ConfigurationError",
    "NumericalInstability",
    "SessionStateError",
    "OutOfRangeResponse",
]
