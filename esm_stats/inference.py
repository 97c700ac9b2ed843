"""
Hypothesis Tests
================

Reduces fitted models to preregistered hypothesis tests.

Frequentist fits:
- test_fixed_effect(): one-sided p-value from the two-sided Satterthwaite
  p-value and the sign of the estimate
- test_random_effect(): two-sided chi-square p-value of the LRT for
  removing a random term (reported as "Frequentist (LRT)")

Bayesian fits:
- test_hypothesis(): posterior probability, estimate, error and credible
  interval for "coef < t", "coef > t" or "coef = t"

Summaries of Bayesian tests follow the usual hypothesis() layout:
estimate and error are the posterior mean and SD of (coef - t); the
credible interval is one-sided at 1 - alpha for directional hypotheses
and two-sided for equality. Equality hypotheses use the Savage-Dickey
density ratio and need prior draws from the fit.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Literal, Tuple

import numpy as np
from scipy import stats

from .bayes import BayesianFit, coef_param, get_posterior_draws, get_prior_draws
from .errors import ConvergenceError, MissingPriorSamplesError
from .lmm import FrequentistFit


Direction = Literal["less", "greater"]

_EXPRESSION = re.compile(r"^\s*(?P<coef>[^<>=]+?)\s*(?P<op><|>|=)\s*(?P<target>[-+]?\d*\.?\d+(?:[eE][-+]?\d+)?)\s*$")


def parse_expression(expression: str) -> Tuple[str, str, float]:
    """
    Split "coef < 0" into ("coef", "<", 0.0).

    :raises ValueError: If the expression is not "<name> <op> <number>"
    """
    match = _EXPRESSION.match(expression)
    if match is None:
        raise ValueError(
            f"Cannot parse hypothesis '{expression}'; expected '<coefficient> <|>|= <number>'"
        )
    return match.group("coef"), match.group("op"), float(match.group("target"))


# =============================================================================
# Frequentist
# =============================================================================

def _require_converged(fit: FrequentistFit) -> None:
    if not fit.get("converged", False):
        raise ConvergenceError(
            f"Refusing to test hypotheses on non-converged fit '{fit['spec']['name']}'"
        )


def one_sided_p(p_two_sided: float, estimate: float, direction: Direction) -> float:
    """
    One-sided p-value from a two-sided p-value.

    p/2 when the estimate has the sign the direction expects (negative for
    "less", positive for "greater"), otherwise 1 - p/2.
    """
    if direction not in ("less", "greater"):
        raise ValueError(f"direction must be 'less' or 'greater', got '{direction}'")
    matches = estimate < 0 if direction == "less" else estimate > 0
    half = p_two_sided / 2.0
    return half if matches else 1.0 - half


def test_fixed_effect(
    fit: FrequentistFit,
    coefficient: str,
    direction: Direction,
) -> Dict[str, Any]:
    """
    Directional test of a fixed-effect coefficient.

    :param fit: Converged FrequentistFit
    :param coefficient: Term name in the coefficient table
    :param direction: "less" (H1: coef < 0) or "greater" (H1: coef > 0)
    :returns: Dict with p_value (one-sided), p_two_sided, estimate,
        std_error, df
    :raises ConvergenceError: If the fit did not converge
    :raises KeyError: If the coefficient is not in the model
    """
    _require_converged(fit)
    coefs = fit["coefficients"]
    match = coefs[coefs["term"] == coefficient]
    if match.empty:
        raise KeyError(f"Coefficient '{coefficient}' not in model. Available: {list(coefs['term'])}")
    row = match.iloc[0]
    p_two = float(row["p_value"])
    return {
        "test": "wald",
        "coefficient": coefficient,
        "direction": direction,
        "estimate": float(row["estimate"]),
        "std_error": float(row["std_error"]),
        "df": float(row["df"]),
        "p_two_sided": p_two,
        "p_value": one_sided_p(p_two, float(row["estimate"]), direction),
    }


def test_fixed_effect_equal(fit: FrequentistFit, coefficient: str) -> Dict[str, Any]:
    """Two-sided test of H0: coef = 0."""
    _require_converged(fit)
    coefs = fit["coefficients"]
    match = coefs[coefs["term"] == coefficient]
    if match.empty:
        raise KeyError(f"Coefficient '{coefficient}' not in model. Available: {list(coefs['term'])}")
    row = match.iloc[0]
    return {
        "test": "wald",
        "coefficient": coefficient,
        "direction": "two-sided",
        "estimate": float(row["estimate"]),
        "std_error": float(row["std_error"]),
        "df": float(row["df"]),
        "p_two_sided": float(row["p_value"]),
        "p_value": float(row["p_value"]),
    }


def test_random_effect(fit: FrequentistFit, term: str) -> Dict[str, Any]:
    """
    Likelihood-ratio test for removing a random term.

    The p-value is the two-sided chi-square p-value of the variance
    component test; it is not a directional test of the mean effect.

    :param fit: Converged FrequentistFit with an LRT table
    :param term: Random slope covariate, "Intercept" or "subject:day"
    """
    _require_converged(fit)
    lrt = fit["lrt"]
    if lrt.empty or term not in set(lrt["term"]):
        raise KeyError(f"No LRT row for random term '{term}'")
    row = lrt[lrt["term"] == term].iloc[0]
    return {
        "test": "lrt",
        "term": term,
        "statistic": float(row["statistic"]),
        "df": float(row["df"]),
        "p_value": float(row["p_value"]),
    }


# =============================================================================
# Bayesian
# =============================================================================

def _density_at(draws: np.ndarray, point: float) -> float:
    """Gaussian KDE density of draws at a point."""
    draws = draws[np.isfinite(draws)]
    if draws.size < 2 or np.ptp(draws) == 0:
        return np.nan
    return float(stats.gaussian_kde(draws)(point)[0])


def test_hypothesis(
    fit: BayesianFit,
    expression: str,
    alpha: float = 0.05,
) -> Dict[str, Any]:
    """
    Evaluate a hypothesis about one fixed effect from posterior draws.

    :param fit: BayesianFit
    :param expression: "coef < t", "coef > t" or "coef = t"
    :param alpha: 1 - credibility of the interval
    :returns: Dict with estimate, est_error, ci_lower, ci_upper,
        posterior_probability (of the expression) and evidence_ratio
    :raises MissingPriorSamplesError: For "=" without prior draws
    """
    coefficient, op, target = parse_expression(expression)
    param = coef_param(coefficient)
    draws = get_posterior_draws(fit, param)
    diff = draws - target

    result: Dict[str, Any] = {
        "expression": expression,
        "coefficient": coefficient,
        "operator": op,
        "estimate": float(diff.mean()),
        "est_error": float(diff.std(ddof=1)),
        "n_draws": int(diff.size),
    }

    if op == "<":
        prob = float(np.mean(diff < 0))
        ci = (-np.inf, float(np.quantile(diff, 1 - alpha)))
    elif op == ">":
        prob = float(np.mean(diff > 0))
        ci = (float(np.quantile(diff, alpha)), np.inf)
    else:
        prior_draws = get_prior_draws(fit, param)
        if not fit.get("has_prior_samples", False) or prior_draws is None:
            raise MissingPriorSamplesError(
                f"'{expression}' needs prior draws; refit with sample_prior=True"
            )
        posterior_density = _density_at(diff, 0.0)
        prior_density = _density_at(prior_draws - target, 0.0)
        bf01 = posterior_density / prior_density if prior_density > 0 else np.nan
        prob = float(bf01 / (1.0 + bf01)) if np.isfinite(bf01) else np.nan
        ci = (float(np.quantile(diff, alpha / 2)), float(np.quantile(diff, 1 - alpha / 2)))
        result.update({
            "ci_lower": ci[0],
            "ci_upper": ci[1],
            "posterior_probability": prob,
            "evidence_ratio": float(bf01),
        })
        return result

    result.update({
        "ci_lower": ci[0],
        "ci_upper": ci[1],
        "posterior_probability": prob,
        "evidence_ratio": prob / (1.0 - prob) if prob < 1.0 else np.inf,
    })
    return result
