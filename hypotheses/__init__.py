"""
ESM Hypothesis Testing Module
=============================

Preregistered hypothesis tests for the ESM sharing/rumination/savouring
study.

Models M1-M6 and hypotheses H1-H10 are declared in config.py; the runner
fits each model under the frequentist and both Bayesian variants and
assembles the results table.

Usage:
    from hypotheses import run_all, MODELS, HYPOTHESES
    from esm_stats import load_esm_data, RunConfig

    raw = load_esm_data("/path/to/esm.csv")
    out = run_all(raw, RunConfig(seed=2024))
    print(out["table"])
"""

from .config import MODELS, HYPOTHESES, ModelConfig, HypothesisConfig, get_model, get_hypothesis
from .runner import (
    fit_model,
    run_hypothesis,
    run_all,
    summarize_results,
)

__all__ = [
    "MODELS",
    "HYPOTHESES",
    "ModelConfig",
    "HypothesisConfig",
    "get_model",
    "get_hypothesis",
    "fit_model",
    "run_hypothesis",
    "run_all",
    "summarize_results",
]
