"""
Error Types
===========

Exceptions raised by the ESM statistics pipeline.

Each error is local to one (model, estimator) pipeline instance; the
hypothesis runner catches them per fit so that one failing model does not
abort the remaining models.
"""


class ESMStatsError(Exception):
    """Base class for all pipeline errors."""


class DataError(ESMStatsError, ValueError):
    """Missing or malformed columns in the input data."""


class ConfigError(ESMStatsError, ValueError):
    """Invalid sampler, optimizer or run configuration."""


class ModelSpecError(ESMStatsError, ValueError):
    """Inconsistent model specification or prior set."""


class ConvergenceError(ESMStatsError, RuntimeError):
    """Frequentist optimizer did not converge within its iteration budget."""


class SamplerDivergenceError(ESMStatsError, RuntimeError):
    """MCMC sampler could not proceed (e.g. every chain is constant)."""


class MissingPriorSamplesError(ESMStatsError, LookupError):
    """Equality hypothesis requested on a fit without prior draws."""
