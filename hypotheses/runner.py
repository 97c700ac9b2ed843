"""
Hypothesis Runner
=================

Generic execution engine for the preregistered analysis.

This module handles the common workflow:
1. Prepare data per model (outcome filter, scaling, categoricals)
2. Fit each model under the requested variants:
   frequentist (REML), Bayesian with non-informative priors,
   Bayesian with informed priors
3. Evaluate each hypothesis on its model's fits
4. Assemble the fixed-shape results table

Failures are local: a model that cannot be prepared or fitted is recorded
as an error for its variants and the remaining models still run.
"""

from typing import Dict, Any, Optional, List, Sequence
import warnings

import numpy as np
import pandas as pd

from esm_stats import (
    RunConfig,
    VARIANTS,
    prepare,
    fit_lmm,
    fit_bayes,
    summarize_frequentist_fit,
    summarize_bayesian_fit,
    create_hypothesis_result,
    format_hypothesis_result,
    assemble,
)
from esm_stats import inference
from esm_stats.aggregate import LRT_ANALYSIS_TYPE, HypothesisResult

from .config import HYPOTHESES, MODELS, get_hypothesis, get_model


# -----------------------------------------------------------------------------
# ModelFits (dictionary-based, no classes)
# -----------------------------------------------------------------------------

ModelFits = Dict[str, Any]


def create_model_fits(
    model_id: int,
    fits: Optional[Dict[str, Any]] = None,
    errors: Optional[Dict[str, str]] = None,
) -> ModelFits:
    """
    Create a ModelFits dictionary.

    :param model_id: Model number
    :param fits: Variant -> FrequentistFit / BayesianFit
    :param errors: Variant -> error message for failed fits
    """
    return {
        "model_id": model_id,
        "fits": fits if fits is not None else {},
        "errors": errors if errors is not None else {},
    }


# -----------------------------------------------------------------------------
# Model Fitting
# -----------------------------------------------------------------------------

def fit_model(
    model_id: int,
    raw: pd.DataFrame,
    run_config: Optional[RunConfig] = None,
    variants: Sequence[str] = VARIANTS,
    verbose: bool = True,
) -> ModelFits:
    """
    Fit one preregistered model under each requested variant.

    Args:
        model_id: Model number (1-6)
        raw: Raw ESM DataFrame
        run_config: Seed, sampler and optimizer settings
        variants: Subset of ("frequentist", "non_informative", "informed")
        verbose: Print progress messages

    Returns:
        ModelFits dict; variants that failed appear under "errors"
    """
    run_config = run_config or RunConfig()
    config = get_model(model_id)
    spec = config["spec"]
    fits: Dict[str, Any] = {}
    errors: Dict[str, str] = {}

    if verbose:
        print(f"\n[M{model_id}] {spec['outcome']} ~ {' + '.join(spec['fixed_effects'])}")

    try:
        ds = prepare(raw, spec)
    except Exception as e:
        warnings.warn(f"Failed to prepare data for M{model_id}: {str(e)}")
        for variant in variants:
            errors[variant] = f"Data preparation failed: {str(e)}"
        return create_model_fits(model_id, fits, errors)

    for variant in variants:
        try:
            if variant == "frequentist":
                fit = fit_lmm(spec, ds, options=run_config.optimizer)
                summary = summarize_frequentist_fit(fit)
            else:
                fit = fit_bayes(
                    spec,
                    ds,
                    prior_set=config["priors"][variant],
                    sampling=run_config.sampler,
                )
                summary = summarize_bayesian_fit(fit)
        except Exception as e:
            warnings.warn(f"Failed to fit M{model_id} ({variant}): {str(e)}")
            errors[variant] = f"{type(e).__name__}: {str(e)}"
            if verbose:
                print(f"  {variant}: FAILED - {errors[variant]}")
            continue

        fits[variant] = fit
        if verbose:
            print(f"  {variant}: done")
            print(summary)

    return create_model_fits(model_id, fits, errors)


# -----------------------------------------------------------------------------
# Hypothesis Evaluation
# -----------------------------------------------------------------------------

def _bayes_expression(config: Dict[str, Any]) -> str:
    op = {"greater": ">", "less": "<", "equal": "="}[config["direction"]]
    return f"{config['coefficient']} {op} 0"


def _frequentist_result(h_id: int, config: Dict[str, Any], fit: Dict[str, Any]) -> HypothesisResult:
    """Frequentist row: Wald (directional or two-sided) or random-slope LRT."""
    base = {"hypothesis_id": h_id, "variant": "frequentist", "model": config["model"],
            "h0": config["h0"], "h1": config["h1"]}
    coefficient = config["coefficient"]

    if config.get("frequentist_test") == "lrt":
        lrt = inference.test_random_effect(fit, coefficient)
        wald = inference.test_fixed_effect_equal(fit, coefficient)
        return create_hypothesis_result(
            **base,
            analysis_type=LRT_ANALYSIS_TYPE,
            estimate=wald["estimate"],
            est_error=wald["std_error"],
            p_value=lrt["p_value"],
            note=f"LRT chi2({lrt['df']:.0f}) = {lrt['statistic']:.2f} for random slope removal",
        )

    if config["direction"] == "equal":
        test = inference.test_fixed_effect_equal(fit, coefficient)
    else:
        test = inference.test_fixed_effect(fit, coefficient, config["direction"])
    return create_hypothesis_result(
        **base,
        estimate=test["estimate"],
        est_error=test["std_error"],
        p_value=test["p_value"],
    )


def _bayesian_result(
    h_id: int,
    config: Dict[str, Any],
    fit: Dict[str, Any],
    variant: str,
) -> HypothesisResult:
    """Bayesian row: P(H1|y) from posterior draws."""
    test = inference.test_hypothesis(fit, _bayes_expression(config))
    prob = test["posterior_probability"]
    if config["direction"] == "equal":
        # The tested expression is H0; report P(H1|y)
        prob = 1.0 - prob if np.isfinite(prob) else prob
    return create_hypothesis_result(
        hypothesis_id=h_id,
        variant=variant,
        model=config["model"],
        h0=config["h0"],
        h1=config["h1"],
        estimate=test["estimate"],
        est_error=test["est_error"],
        posterior_probability=prob,
        ci_lower=test["ci_lower"],
        ci_upper=test["ci_upper"],
    )


def run_hypothesis(
    hypothesis_id: int,
    model_fits: Optional[ModelFits],
    variants: Sequence[str] = VARIANTS,
    verbose: bool = True,
) -> List[HypothesisResult]:
    """
    Evaluate one hypothesis on its model's fits.

    Args:
        hypothesis_id: Hypothesis number (1-10)
        model_fits: ModelFits of the hypothesis' model (None if not fitted)
        variants: Variants to report
        verbose: Print progress messages

    Returns:
        One HypothesisResult per variant
    """
    config = get_hypothesis(hypothesis_id)
    results = []

    for variant in variants:
        base = {"hypothesis_id": hypothesis_id, "variant": variant,
                "model": config["model"], "h0": config["h0"], "h1": config["h1"]}

        if config["model"] is None or model_fits is None:
            results.append(create_hypothesis_result(
                **base, status="not_applicable", note="Not estimated by the confirmatory models"))
            continue
        if variant in model_fits["errors"]:
            results.append(create_hypothesis_result(
                **base, status="failed", note=model_fits["errors"][variant]))
            continue
        if variant not in model_fits["fits"]:
            results.append(create_hypothesis_result(
                **base, status="not_applicable", note="Variant not run"))
            continue

        fit = model_fits["fits"][variant]
        try:
            if variant == "frequentist":
                result = _frequentist_result(hypothesis_id, config, fit)
            else:
                result = _bayesian_result(hypothesis_id, config, fit, variant)
        except Exception as e:
            warnings.warn(f"H{hypothesis_id} ({variant}) failed: {str(e)}")
            result = create_hypothesis_result(
                **base, status="failed", note=f"{type(e).__name__}: {str(e)}")
        results.append(result)

    if verbose:
        print(f"\n[H{hypothesis_id}] {config['name']}")
        for result in results:
            print(f"  {format_hypothesis_result(result)}")
    return results


def run_all(
    raw: pd.DataFrame,
    run_config: Optional[RunConfig] = None,
    models: Optional[List[int]] = None,
    variants: Sequence[str] = VARIANTS,
    verbose: bool = True,
) -> Dict[str, Any]:
    """
    Fit the (selected) models and evaluate all ten hypotheses.

    Args:
        raw: Raw ESM DataFrame
        run_config: Seed, sampler and optimizer settings
        models: Model numbers to fit (default: all)
        variants: Estimator variants to run
        verbose: Print progress messages

    Returns:
        Dict with "fits" (model id -> ModelFits), "results" (list of
        HypothesisResult) and "table" (assembled results table)
    """
    run_config = run_config or RunConfig()
    models = models or list(MODELS.keys())

    if verbose:
        print("=" * 70)
        print(f"MODEL FITTING (M{', M'.join(str(m) for m in models)})")
        print("=" * 70)

    fits: Dict[int, ModelFits] = {}
    for model_id in models:
        fits[model_id] = fit_model(model_id, raw, run_config, variants=variants, verbose=verbose)

    if verbose:
        print("\n" + "=" * 70)
        print("HYPOTHESIS TESTING (H1-H10)")
        print("=" * 70)

    results: List[HypothesisResult] = []
    for h_id, config in HYPOTHESES.items():
        model_fits = fits.get(config["model"]) if config["model"] is not None else None
        results.extend(run_hypothesis(h_id, model_fits, variants=variants, verbose=verbose))

    table = assemble(results, definitions=HYPOTHESES)
    return {"fits": fits, "results": results, "table": table}


def summarize_results(results: List[HypothesisResult]) -> pd.DataFrame:
    """
    Long-format summary of hypothesis results, including status and notes.

    Returns:
        DataFrame with one row per HypothesisResult
    """
    rows = []
    for result in results:
        rows.append({
            "Hypothesis": f"H{result['hypothesis_id']}",
            "Variant": result["variant"],
            "Model": result["model"],
            "Estimate": result["estimate"],
            "CI": (result["ci_lower"], result["ci_upper"]),
            "p(y|H0)": result["p_value"],
            "p(H1|y)": result["posterior_probability"],
            "Status": result["status"],
            "Note": result["note"],
        })
    return pd.DataFrame(rows)
