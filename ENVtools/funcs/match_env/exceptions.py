"""
Error taxonomy for local-environment matching.
"""


class MatchEnvError(Exception):
    """Base class for local-environment matching errors."""


class InvalidArgumentError(MatchEnvError, ValueError):
    """Bad index, shape, length or option value."""


class OutOfCapacityError(MatchEnvError, ValueError):
    """More vectors offered to an environment than it can hold."""


class EmptyResultError(MatchEnvError, RuntimeError):
    """Result accessor called before any completed run."""
