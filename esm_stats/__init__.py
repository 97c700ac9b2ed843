"""
ESM Stats - Hierarchical Models for Experience-Sampling Data
============================================================

Preregistered multilevel analysis of daily events, sharing, rumination
and savouring in relation to psychopathology.

Architecture Note:
    Data containers (datasets, model specs, fits, hypothesis results) are
    plain dictionaries (TypedDicts) with documented keys, built by
    create_* factory functions. Run configuration is an immutable
    dataclass passed explicitly to the estimators.

Architecture:
- errors: Error taxonomy
- settings: RunConfig, SamplerConfig, OptimizerConfig
- specs: ModelSpec and PriorSet definitions
- prepare: Loading, filtering, scaling and categorical casting
- lmm: REML linear mixed models (statsmodels) with Satterthwaite df
  and random-effect likelihood-ratio tests
- bayes: MCMC linear mixed models (PyMC / ArviZ)
- inference: Directional and equality hypothesis tests
- aggregate: Fixed-shape results table

Usage:
    from esm_stats import load_esm_data, create_model_spec, prepare, fit_lmm

    raw = load_esm_data("esm.csv")
    spec = create_model_spec(
        "share_neg",
        ["psychopathology", "neg_intensity", "age", "gender"],
        random_slopes=["neg_intensity"],
    )
    fit = fit_lmm(spec, prepare(raw, spec))
    print(fit["coefficients"])
"""
from __future__ import annotations

__version__ = "0.1.0"

from .errors import (
    ESMStatsError,
    DataError,
    ConfigError,
    ModelSpecError,
    ConvergenceError,
    SamplerDivergenceError,
    MissingPriorSamplesError,
)

from .settings import (
    RunConfig,
    SamplerConfig,
    OptimizerConfig,
)

from .specs import (
    INTERCEPT,
    ModelSpec,
    PriorSpec,
    PriorSet,
    DEFAULT_PRIOR,
    create_model_spec,
    create_prior,
    create_prior_set,
    non_informative_prior_set,
    resolve_prior,
    missing_priors,
    describe_model_spec,
)

from .prepare import (
    AnalysisDataset,
    REQUIRED_COLUMNS,
    load_esm_data,
    create_analysis_dataset,
    describe_dataset,
    scale_numeric_data,
    cast_categoricals,
    prepare,
    model_frame,
    get_n_subjects,
    get_n_observations,
    get_obs_per_subject,
)

from .lmm import (
    FrequentistFit,
    create_frequentist_fit,
    summarize_frequentist_fit,
    fit_lmm,
    fixed_effects_table,
    random_effects_table,
    get_random_effects,
    satterthwaite_df,
)

from .bayes import (
    BayesianFit,
    create_bayesian_fit,
    summarize_bayesian_fit,
    fit_bayes,
    coef_param,
    get_chain_draws,
    get_posterior_draws,
    get_warmup_draws,
    get_prior_draws,
    posterior_summary,
)

from .inference import (
    parse_expression,
    one_sided_p,
    test_fixed_effect,
    test_fixed_effect_equal,
    test_random_effect,
    test_hypothesis,
)

from .aggregate import (
    HypothesisResult,
    VARIANTS,
    ANALYSIS_TYPES,
    COLUMNS,
    NOT_APPLICABLE,
    FAILED,
    create_hypothesis_result,
    format_hypothesis_result,
    assemble,
)
