"""
Run Configuration
=================

Immutable configuration for one analysis run.

RunConfig replaces ambient global state (workspace clearing, global seeds):
the seed and the sampler/optimizer settings are passed explicitly to the
estimators that need them.

Defaults follow the preregistration:
- 4 chains, 3000 iterations of which 1000 warmup
- target acceptance 0.95, maximum tree depth 12
- REML fits with a derivative-free optimizer, convergence
  warnings recorded but not re-emitted
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from .errors import ConfigError


@dataclass(frozen=True)
class SamplerConfig:
    """
    MCMC settings for the Bayesian estimator.

    :param chains: Number of independent chains (>= 1)
    :param warmup: Adaptation iterations per chain, excluded from summaries
    :param iterations: Total iterations per chain (warmup included)
    :param target_accept: NUTS target acceptance rate in (0, 1)
    :param max_treedepth: Maximum NUTS tree depth (>= 1)
    :param seed: Seed; chain streams are derived from it
    :param sample_prior: Also draw from the prior (needed for equality tests)
    :param cores: Worker processes (None = one per chain)
    :param progressbar: Show the sampler progress bar
    """
    chains: int = 4
    warmup: int = 1000
    iterations: int = 3000
    target_accept: float = 0.95
    max_treedepth: int = 12
    seed: int = 42
    sample_prior: bool = True
    cores: Optional[int] = None
    progressbar: bool = False

    def __post_init__(self) -> None:
        if self.chains < 1:
            raise ConfigError(f"chains must be >= 1, got {self.chains}")
        if self.warmup < 0:
            raise ConfigError(f"warmup must be >= 0, got {self.warmup}")
        if self.iterations <= self.warmup:
            raise ConfigError(
                f"iterations ({self.iterations}) must exceed warmup ({self.warmup})"
            )
        if not 0.0 < self.target_accept < 1.0:
            raise ConfigError(f"target_accept must be in (0, 1), got {self.target_accept}")
        if self.max_treedepth < 1:
            raise ConfigError(f"max_treedepth must be >= 1, got {self.max_treedepth}")
        if self.cores is not None and self.cores < 1:
            raise ConfigError(f"cores must be >= 1, got {self.cores}")

    @property
    def draws(self) -> int:
        """Post-warmup draws per chain."""
        return self.iterations - self.warmup


@dataclass(frozen=True)
class OptimizerConfig:
    """
    Optimizer settings for the frequentist estimator.

    :param method: statsmodels optimizer name(s), tried in order
    :param maxiter: Iteration budget per optimizer
    :param check_convergence: Re-emit optimizer warnings (default: record only)
    """
    method: Tuple[str, ...] = ("powell",)
    maxiter: int = 2000
    check_convergence: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.method, str):
            object.__setattr__(self, "method", (self.method,))
        if not self.method:
            raise ConfigError("At least one optimizer method is required")
        if self.maxiter < 1:
            raise ConfigError(f"maxiter must be >= 1, got {self.maxiter}")


@dataclass(frozen=True)
class RunConfig:
    """Seed plus sampler and optimizer settings for one run."""
    seed: int = 42
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)

    def __post_init__(self) -> None:
        # The run seed is the single source of randomness
        if self.sampler.seed != self.seed:
            object.__setattr__(self, "sampler", replace(self.sampler, seed=self.seed))
