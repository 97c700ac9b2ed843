"""
Linear Mixed Models Module
==========================

Frequentist estimation of the preregistered hierarchical models using
statsmodels MixedLM, fitted by restricted maximum likelihood (REML).

Architecture Note:
    This module uses dictionaries instead of classes for data structures
    to stay consistent with the rest of esm_stats. A FrequentistFit is
    created once per (ModelSpec, dataset) pair and never modified.

Key features:
- Random intercept and random slopes per subject, optional nested
  day-within-subject intercept
- Satterthwaite degrees of freedom for the fixed effects, computed
  numerically from the REML likelihood
- Likelihood-ratio tests for removing each random-effect term
- Non-convergence raises ConvergenceError instead of returning a
  degenerate fit
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple
import warnings

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.formula.api import mixedlm
from statsmodels.regression.mixed_linear_model import MixedLM, MixedLMResults
from statsmodels.tools.numdiff import approx_fprime, approx_hess

from .errors import ConvergenceError
from .prepare import AnalysisDataset, model_frame, group_codes
from .settings import OptimizerConfig
from .specs import INTERCEPT, ModelSpec, describe_model_spec, fixed_formula, random_formula


# statsmodels labels the random intercept with the group name
_SM_GROUP = "Group"


# =============================================================================
# FrequentistFit (dict)
# =============================================================================

FrequentistFit = Dict[str, Any]


def create_frequentist_fit(
    spec: ModelSpec,
    model: Optional[MixedLMResults] = None,
    coefficients: Optional[pd.DataFrame] = None,
    random_effects: Optional[pd.DataFrame] = None,
    lrt: Optional[pd.DataFrame] = None,
    fit_stats: Optional[Dict[str, float]] = None,
    n_obs: int = 0,
    n_groups: int = 0,
    converged: bool = False,
    fit_warnings: Optional[List[str]] = None,
) -> FrequentistFit:
    """
    Create a FrequentistFit dictionary with all model output.

    :param spec: ModelSpec that was fitted
    :param model: Fitted statsmodels MixedLMResults object
    :param coefficients: Fixed-effect table (estimate, SE, df, t, p, CI)
    :param random_effects: Variance components (variance, SD, correlation)
    :param lrt: Likelihood-ratio tests for random-term removal
    :param fit_stats: REML log-likelihood, AIC, BIC, residual scale
    :param n_obs: Number of observations
    :param n_groups: Number of subjects
    :param converged: Whether optimization converged
    :param fit_warnings: Warnings recorded during fitting
    :returns: FrequentistFit dictionary
    """
    return {
        "estimator": "frequentist",
        "spec": spec,
        "model": model,
        "formula": describe_model_spec(spec),
        "coefficients": coefficients if coefficients is not None else pd.DataFrame(),
        "random_effects": random_effects if random_effects is not None else pd.DataFrame(),
        "lrt": lrt if lrt is not None else pd.DataFrame(),
        "fit_stats": fit_stats if fit_stats is not None else {},
        "n_obs": n_obs,
        "n_groups": n_groups,
        "converged": converged,
        "warnings": fit_warnings if fit_warnings is not None else [],
    }


def summarize_frequentist_fit(fit: FrequentistFit) -> str:
    """
    Generate a summary string for a frequentist fit.

    :param fit: FrequentistFit dictionary
    :returns: Human-readable summary string
    """
    lines = [
        f"LMM (REML): {fit['formula']}",
        f"  N observations: {fit['n_obs']}",
        f"  N subjects: {fit['n_groups']}",
        f"  Converged: {fit['converged']}",
        f"  REML log-lik: {fit['fit_stats'].get('llf', np.nan):.2f}",
    ]
    coefs = fit["coefficients"]
    if not coefs.empty:
        lines.append("  Fixed effects:")
        for _, row in coefs.iterrows():
            lines.append(
                f"    {row['term']:<28} {row['estimate']:>8.3f} "
                f"(SE {row['std_error']:.3f}, df {row['df']:.1f}, p {row['p_value']:.4f})"
            )
    if fit["warnings"]:
        lines.append(f"  Warnings: {len(fit['warnings'])}")
    return "\n".join(lines)


def fixed_effects_table(fit: FrequentistFit) -> pd.DataFrame:
    """Fixed-effect table of a frequentist fit."""
    return fit["coefficients"]


def random_effects_table(fit: FrequentistFit) -> pd.DataFrame:
    """Variance-component table of a frequentist fit."""
    return fit["random_effects"]


# =============================================================================
# Model Fitting
# =============================================================================

def _build_model(
    df: pd.DataFrame,
    spec: ModelSpec,
    slopes: Optional[Sequence[str]] = None,
    intercept: Optional[bool] = None,
    nested: Optional[bool] = None,
) -> MixedLM:
    """Build (but do not fit) the statsmodels MixedLM for a spec."""
    subject = spec["groups"][0]
    nested = len(spec["groups"]) == 2 if nested is None else nested
    vc_formula = None
    if nested:
        vc_formula = {spec["groups"][1]: f"0 + C({spec['groups'][1]})"}
    return mixedlm(
        fixed_formula(spec),
        data=df,
        groups=df[subject],
        re_formula=random_formula(spec, slopes=slopes, intercept=intercept),
        vc_formula=vc_formula,
    )


def nested_cell_note(df: pd.DataFrame, spec: ModelSpec) -> Optional[str]:
    """
    Note when the nested subject:day intercept is not identifiable.

    With one row per subject:day cell the nested variance and the residual
    variance describe the same quantity; the fit only splits their sum.

    :returns: Message for nested models whose cells all hold a single row,
        otherwise None
    """
    if len(spec["groups"]) != 2:
        return None
    sizes = df.groupby(list(spec["groups"]), observed=True).size()
    if len(sizes) and (sizes <= 1).all():
        return (
            f"Every {spec['groups'][0]}:{spec['groups'][1]} cell in '{spec['name']}' has one row; "
            f"the nested intercept is confounded with the residual variance"
        )
    return None


def design_matrices(df: pd.DataFrame, spec: ModelSpec) -> Dict[str, Any]:
    """
    Model matrices shared with the Bayesian estimator.

    The fixed-effect matrix carries an explicit "Intercept" column, so the
    intercept is an ordinary coefficient that can receive its own prior.

    :param df: Complete-case model frame (see prepare.model_frame)
    :param spec: ModelSpec
    :returns: Dict with y, X, fe_names, Z, re_names
    """
    model = _build_model(df, spec)
    return {
        "y": np.asarray(model.endog, dtype=float),
        "X": np.asarray(model.exog, dtype=float),
        "fe_names": list(model.exog_names),
        "Z": np.asarray(model.exog_re, dtype=float),
        "re_names": [_re_term_name(n) for n in model.data.exog_re_names],
    }


def _fit_mixedlm(
    model: MixedLM,
    options: OptimizerConfig,
) -> Tuple[MixedLMResults, List[str]]:
    """Fit by REML, recording (not emitting) optimizer warnings."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        result = model.fit(reml=True, method=list(options.method), maxiter=options.maxiter)
    messages = [str(w.message) for w in caught]
    if options.check_convergence:
        for msg in messages:
            warnings.warn(msg)
    return result, messages


def fit_lmm(
    spec: ModelSpec,
    ds: AnalysisDataset,
    options: Optional[OptimizerConfig] = None,
    lrt: bool = True,
    verbose: bool = False,
) -> FrequentistFit:
    """
    Fit a linear mixed model by REML.

    :param spec: ModelSpec to fit
    :param ds: AnalysisDataset prepared for this spec
    :param options: Optimizer settings (default: OptimizerConfig())
    :param lrt: Also run likelihood-ratio tests for random-term removal
    :param verbose: Print a summary of the fit
    :returns: FrequentistFit dictionary
    :raises ConvergenceError: If the optimizer does not converge

    Example:
        >>> fit = fit_lmm(spec, prepare(raw, spec))
        >>> print(fit["coefficients"])
    """
    options = options or OptimizerConfig()
    df = model_frame(ds, spec)
    n_obs = len(df)
    n_groups = df[spec["groups"][0]].nunique()

    model = _build_model(df, spec)
    result, fit_warnings = _fit_mixedlm(model, options)

    note = nested_cell_note(df, spec)
    if note:
        warnings.warn(note)
        fit_warnings.append(note)

    if not result.converged:
        raise ConvergenceError(
            f"LMM for '{spec['name']}' did not converge "
            f"(method={list(options.method)}, maxiter={options.maxiter})"
        )

    df_satt, se, notes = satterthwaite_df(model, result, df, spec)
    fit_warnings.extend(notes)
    coef_df = _extract_coefficients(result, df_satt, se)
    re_df = _extract_random_effects(result, spec)

    lrt_df = pd.DataFrame()
    if lrt:
        lrt_df, lrt_notes = random_effect_lrt(df, spec, result, options)
        fit_warnings.extend(lrt_notes)

    fit_stats = {
        "llf": float(result.llf),
        "aic": float(result.aic) if np.isfinite(result.aic) else np.nan,
        "bic": float(result.bic) if np.isfinite(result.bic) else np.nan,
        "scale": float(result.scale),
    }

    fit = create_frequentist_fit(
        spec=spec,
        model=result,
        coefficients=coef_df,
        random_effects=re_df,
        lrt=lrt_df,
        fit_stats=fit_stats,
        n_obs=n_obs,
        n_groups=n_groups,
        converged=True,
        fit_warnings=fit_warnings,
    )
    if verbose:
        print(summarize_frequentist_fit(fit))
    return fit


def _extract_coefficients(
    result: MixedLMResults,
    df_satt: np.ndarray,
    se: np.ndarray,
) -> pd.DataFrame:
    """Fixed-effect table with Satterthwaite-adjusted tests."""
    estimate = np.asarray(result.fe_params, dtype=float)
    se = np.where(np.isfinite(se), se, np.asarray(result.bse_fe, dtype=float))
    t_value = estimate / se

    p_value = np.where(
        np.isfinite(df_satt),
        2 * stats.t.sf(np.abs(t_value), np.where(np.isfinite(df_satt), df_satt, 1.0)),
        2 * stats.norm.sf(np.abs(t_value)),
    )
    crit = np.where(
        np.isfinite(df_satt),
        stats.t.ppf(0.975, np.where(np.isfinite(df_satt), df_satt, 1.0)),
        stats.norm.ppf(0.975),
    )

    return pd.DataFrame({
        "term": list(result.fe_params.index),
        "estimate": estimate,
        "std_error": se,
        "df": df_satt,
        "t_value": t_value,
        "p_value": p_value,
        "ci_lower": estimate - crit * se,
        "ci_upper": estimate + crit * se,
    })


def _re_term_name(name: str) -> str:
    return INTERCEPT if name == _SM_GROUP else name


def _extract_random_effects(result: MixedLMResults, spec: ModelSpec) -> pd.DataFrame:
    """Variance components: subject covariance, nested variance, residual."""
    subject = spec["groups"][0]
    cov_re = result.cov_re
    names = [_re_term_name(n) for n in cov_re.index]
    values = np.asarray(cov_re, dtype=float)

    rows = []
    for i, name in enumerate(names):
        corr = np.nan
        if i > 0 and values[0, 0] > 0 and values[i, i] > 0:
            corr = values[0, i] / np.sqrt(values[0, 0] * values[i, i])
        rows.append({
            "group": subject,
            "term": name,
            "variance": values[i, i],
            "std_dev": np.sqrt(max(values[i, i], 0.0)),
            "corr": corr,
        })

    if len(spec["groups"]) == 2:
        vc_value = float(np.atleast_1d(result.vcomp)[0])
        rows.append({
            "group": f"{subject}:{spec['groups'][1]}",
            "term": INTERCEPT,
            "variance": vc_value,
            "std_dev": np.sqrt(max(vc_value, 0.0)),
            "corr": np.nan,
        })

    rows.append({
        "group": "Residual",
        "term": "",
        "variance": float(result.scale),
        "std_dev": np.sqrt(float(result.scale)),
        "corr": np.nan,
    })
    return pd.DataFrame(rows)


def get_random_effects(fit: FrequentistFit) -> Optional[pd.DataFrame]:
    """Extract subject-level conditional modes (BLUPs) from a fit."""
    if fit["model"] is None:
        return None

    rows = []
    for group, effects in fit["model"].random_effects.items():
        row = {"group": group}
        for name, value in dict(effects).items():
            row[_re_term_name(str(name))] = value
        rows.append(row)
    return pd.DataFrame(rows)


# =============================================================================
# Satterthwaite Degrees of Freedom
# =============================================================================

def _group_blocks(
    model: MixedLM,
    df: pd.DataFrame,
    spec: ModelSpec,
) -> List[Tuple[np.ndarray, np.ndarray, np.ndarray, Optional[np.ndarray]]]:
    """Per-subject (y, X, Z, nested cell codes) blocks in data order."""
    codes = group_codes(df, spec)
    y = np.asarray(model.endog, dtype=float)
    X = np.asarray(model.exog, dtype=float)
    Z = np.asarray(model.exog_re, dtype=float)
    nested = codes.get("nested")

    blocks = []
    for g in range(len(codes["subject_labels"])):
        idx = np.flatnonzero(codes["subject"] == g)
        cells = nested[idx] if nested is not None else None
        blocks.append((y[idx], X[idx], Z[idx], cells))
    return blocks


def _unpack_theta(theta: np.ndarray, k_re: int, nested: bool) -> Tuple[np.ndarray, float, float]:
    """theta = [lower triangle of G, nested variance (optional), residual variance]."""
    m = k_re * (k_re + 1) // 2
    G = np.zeros((k_re, k_re))
    G[np.tril_indices(k_re)] = theta[:m]
    G = G + G.T - np.diag(np.diag(G))
    tau2 = float(theta[m]) if nested else 0.0
    return G, tau2, float(theta[-1])


def _reml_terms(
    theta: np.ndarray,
    blocks: Sequence[Tuple[np.ndarray, np.ndarray, np.ndarray, Optional[np.ndarray]]],
    k_re: int,
    nested: bool,
) -> Tuple[float, np.ndarray]:
    """REML log-likelihood (up to a constant) and X'V^-1 X at theta."""
    G, tau2, sigma2 = _unpack_theta(theta, k_re, nested)
    p = blocks[0][1].shape[1]
    xtvx = np.zeros((p, p))
    xtvy = np.zeros(p)
    logdet = 0.0
    solved = []

    for y, X, Z, cells in blocks:
        V = Z @ G @ Z.T + sigma2 * np.eye(len(y))
        if cells is not None:
            V = V + tau2 * (cells[:, None] == cells[None, :])
        sign, ld = np.linalg.slogdet(V)
        if sign <= 0:
            return -np.inf, np.full((p, p), np.nan)
        logdet += ld
        vinv_x = np.linalg.solve(V, X)
        vinv_y = np.linalg.solve(V, y)
        xtvx += X.T @ vinv_x
        xtvy += X.T @ vinv_y
        solved.append((y, X, V))

    beta = np.linalg.solve(xtvx, xtvy)
    rss = 0.0
    for y, X, V in solved:
        r = y - X @ beta
        rss += r @ np.linalg.solve(V, r)

    sign, ld_xtvx = np.linalg.slogdet(xtvx)
    if sign <= 0:
        return -np.inf, xtvx
    return -0.5 * (logdet + ld_xtvx + rss), xtvx


def satterthwaite_df(
    model: MixedLM,
    result: MixedLMResults,
    df: pd.DataFrame,
    spec: ModelSpec,
) -> Tuple[np.ndarray, np.ndarray, List[str]]:
    """
    Satterthwaite denominator degrees of freedom for each fixed effect.

    df_k = 2 * Var(b_k)^2 / (g_k' A g_k), where Var(b) = (X'V^-1 X)^-1,
    g_k is the gradient of Var(b_k) with respect to the variance
    parameters and A is their asymptotic covariance (inverse negative
    Hessian of the REML log-likelihood).

    :returns: (df per coefficient, SE per coefficient, notes). Entries are
        NaN when the approximation is not available; callers then use the
        normal reference distribution.
    """
    p = len(result.fe_params)
    nan = np.full(p, np.nan)
    nested = len(spec["groups"]) == 2

    cov_re = np.asarray(result.cov_re, dtype=float)
    k_re = cov_re.shape[0]
    theta = list(cov_re[np.tril_indices(k_re)])
    if nested:
        theta.append(float(np.atleast_1d(result.vcomp)[0]))
    theta.append(float(result.scale))
    theta = np.asarray(theta, dtype=float)

    blocks = _group_blocks(model, df, spec)

    def loglik(t: np.ndarray) -> float:
        return _reml_terms(t, blocks, k_re, nested)[0]

    def vcov_diag(t: np.ndarray) -> np.ndarray:
        xtvx = _reml_terms(t, blocks, k_re, nested)[1]
        return np.diag(np.linalg.inv(xtvx))

    try:
        with np.errstate(all="ignore"):
            hess = approx_hess(theta, loglik)
            A = np.linalg.inv(-hess)
            v = vcov_diag(theta)
            jac = np.asarray(approx_fprime(theta, vcov_diag, centered=True)).reshape(p, -1)
            denom = np.einsum("ki,ij,kj->k", jac, A, jac)
            df_satt = 2.0 * v ** 2 / denom
    except (np.linalg.LinAlgError, ValueError) as e:
        return nan, nan, [f"Satterthwaite df unavailable ({e}); using normal reference"]

    se = np.sqrt(v)
    bad = ~np.isfinite(df_satt) | (df_satt <= 0)
    notes = []
    if bad.any():
        terms = [t for t, b in zip(result.fe_params.index, bad) if b]
        notes.append(f"Satterthwaite df not finite for {terms}; using normal reference")
    df_satt = np.where(bad, np.nan, np.clip(df_satt, 1.0, len(df) - p))
    se = np.where(np.isfinite(se), se, np.nan)
    return df_satt, se, notes


# =============================================================================
# Random-Effect Likelihood-Ratio Tests
# =============================================================================

def _n_cov_params(n_subject_terms: int, nested: bool) -> int:
    return n_subject_terms * (n_subject_terms + 1) // 2 + int(nested) + 1


def random_effect_lrt(
    df: pd.DataFrame,
    spec: ModelSpec,
    full: MixedLMResults,
    options: OptimizerConfig,
) -> Tuple[pd.DataFrame, List[str]]:
    """
    Refit with each random-effect term removed and compare by REML LRT.

    One row per random term: each random slope, the subject random
    intercept and (for nested models) the nested intercept. A removal
    that would leave no subject-level random effect is reported with
    NaN statistics.

    :returns: (LRT table, notes)
    """
    subject = spec["groups"][0]
    nested = len(spec["groups"]) == 2
    slopes = list(spec["random_slopes"])
    intercept = spec["random_intercept"]
    n_terms = len(slopes) + int(intercept)
    n_par_full = _n_cov_params(n_terms, nested)

    reductions = []
    for slope in slopes:
        reductions.append((slope, f"{slope} in ({random_formula(spec)} | {subject})",
                           [s for s in slopes if s != slope], intercept, nested))
    if intercept:
        reductions.append((INTERCEPT, f"(1 | {subject})", slopes, False, nested))
    if nested:
        reductions.append((f"{subject}:{spec['groups'][1]}",
                           f"(1 | {subject}:{spec['groups'][1]})", slopes, intercept, False))

    rows = []
    notes: List[str] = []
    for key, label, red_slopes, red_intercept, red_nested in reductions:
        row = {
            "term": key,
            "removed": label,
            "n_par": np.nan,
            "loglik": np.nan,
            "statistic": np.nan,
            "df": np.nan,
            "p_value": np.nan,
        }
        n_red_terms = len(red_slopes) + int(red_intercept)
        if n_red_terms == 0:
            notes.append(f"LRT for {label} skipped (no subject-level random effect left)")
            rows.append(row)
            continue

        reduced_model = _build_model(df, spec, slopes=red_slopes,
                                     intercept=red_intercept, nested=red_nested)
        reduced, _ = _fit_mixedlm(reduced_model, options)
        if not reduced.converged:
            notes.append(f"LRT for {label} skipped (reduced model did not converge)")
            rows.append(row)
            continue

        n_par_red = _n_cov_params(n_red_terms, red_nested)
        stat = max(2.0 * (full.llf - reduced.llf), 0.0)
        df_diff = n_par_full - n_par_red
        row.update({
            "n_par": n_par_red,
            "loglik": float(reduced.llf),
            "statistic": float(stat),
            "df": df_diff,
            "p_value": float(stats.chi2.sf(stat, df_diff)),
        })
        rows.append(row)

    return pd.DataFrame(rows), notes
