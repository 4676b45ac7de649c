"""
Error types raised by model construction and sampling.
"""


class SpecError(ValueError):
    """Malformed or inconsistent model specification.

    Raised only while a model is being built, never during sampling.
    """


class NumericError(RuntimeError):
    """Non-finite log-posterior for an accepted parameter state."""
