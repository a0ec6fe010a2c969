"""Exceptions raised across the reading indexer."""


class ConfigurationError(ValueError):
    """Task configuration is missing or invalid. Fatal for that task only."""


class ExpressionError(ValueError):
    """A field expression could not be parsed or evaluated."""


class SinkError(RuntimeError):
    """A sink rejected or failed a write."""
