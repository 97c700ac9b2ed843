"""
Results Aggregation
===================

Collects per-hypothesis results from all models and estimator variants
into one fixed-shape table for reporting.

The table always has one row per (hypothesis 1-10, variant), ordered by
hypothesis id and then by variant (frequentist, non-informative,
informed). Combinations without a result are kept as "n.a." rows and
failed fits as "failed" rows, so downstream reporting can rely on the
shape.

Columns:
    Model, H0, H1, Analysis type, Estimate, Est.Error, p(y|H0), p(H1|y)

Frequentist rows leave p(H1|y) empty (NaN); Bayesian rows leave
p(y|H0) empty.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional

import numpy as np
import pandas as pd


N_HYPOTHESES = 10

VARIANTS = ("frequentist", "non_informative", "informed")

ANALYSIS_TYPES = {
    "frequentist": "Frequentist",
    "non_informative": "Bayesian (non-informative priors)",
    "informed": "Bayesian (informed priors)",
}

# Frequentist row reported from a random-effect likelihood-ratio test
LRT_ANALYSIS_TYPE = "Frequentist (LRT)"

COLUMNS = ["Model", "H0", "H1", "Analysis type", "Estimate", "Est.Error", "p(y|H0)", "p(H1|y)"]

NOT_APPLICABLE = "n.a."
FAILED = "failed"


# -----------------------------------------------------------------------------
# HypothesisResult (dictionary-based, no classes)
# -----------------------------------------------------------------------------

HypothesisResult = Dict[str, Any]


def create_hypothesis_result(
    hypothesis_id: int,
    variant: str,
    model: Optional[int] = None,
    h0: str = "",
    h1: str = "",
    analysis_type: Optional[str] = None,
    estimate: float = np.nan,
    est_error: float = np.nan,
    p_value: float = np.nan,
    posterior_probability: float = np.nan,
    ci_lower: float = np.nan,
    ci_upper: float = np.nan,
    status: str = "ok",
    note: str = "",
) -> HypothesisResult:
    """
    Create a HypothesisResult dictionary.

    :param hypothesis_id: Preregistered hypothesis number (1-10)
    :param variant: "frequentist", "non_informative" or "informed"
    :param model: Model number the hypothesis was tested on
    :param h0: Null hypothesis text
    :param h1: Alternative hypothesis text
    :param analysis_type: Label for the table (default from variant)
    :param p_value: p(y|H0), frequentist rows only
    :param posterior_probability: p(H1|y), Bayesian rows only
    :param status: "ok", "failed" or "not_applicable"
    :param note: Error message or remark
    :raises ValueError: On unknown variant, status or hypothesis id
    """
    if variant not in VARIANTS:
        raise ValueError(f"Unknown variant '{variant}'. Available: {list(VARIANTS)}")
    if status not in ("ok", "failed", "not_applicable"):
        raise ValueError(f"Unknown status '{status}'")
    if not 1 <= int(hypothesis_id) <= N_HYPOTHESES:
        raise ValueError(f"Hypothesis id must be in 1..{N_HYPOTHESES}, got {hypothesis_id}")
    return {
        "hypothesis_id": int(hypothesis_id),
        "variant": variant,
        "model": model,
        "h0": h0,
        "h1": h1,
        "analysis_type": analysis_type or ANALYSIS_TYPES[variant],
        "estimate": estimate,
        "est_error": est_error,
        "p_value": p_value,
        "posterior_probability": posterior_probability,
        "ci_lower": ci_lower,
        "ci_upper": ci_upper,
        "status": status,
        "note": note,
    }


def format_hypothesis_result(result: HypothesisResult) -> str:
    """Format a HypothesisResult for display."""
    tag = f"H{result['hypothesis_id']}/{result['variant']}"
    if result["status"] != "ok":
        return f"HypothesisResult({tag}: {result['status'].upper()} {result['note']})".rstrip()
    if result["variant"] == "frequentist":
        return f"HypothesisResult({tag}: p={result['p_value']:.4f})"
    return f"HypothesisResult({tag}: P(H1|y)={result['posterior_probability']:.3f})"


# -----------------------------------------------------------------------------
# Table Assembly
# -----------------------------------------------------------------------------

def _row(result: Optional[HypothesisResult], definition: Mapping[str, Any], variant: str) -> Dict[str, Any]:
    """One table row from a result (or its absence)."""
    model = definition.get("model")
    row = {
        "Model": model if model is not None else NOT_APPLICABLE,
        "H0": definition.get("h0", ""),
        "H1": definition.get("h1", ""),
        "Analysis type": ANALYSIS_TYPES[variant],
        "Estimate": NOT_APPLICABLE,
        "Est.Error": NOT_APPLICABLE,
        "p(y|H0)": NOT_APPLICABLE,
        "p(H1|y)": NOT_APPLICABLE,
    }
    if result is None or result["status"] == "not_applicable":
        return row

    row["Model"] = result["model"] if result["model"] is not None else row["Model"]
    row["H0"] = result["h0"] or row["H0"]
    row["H1"] = result["h1"] or row["H1"]
    row["Analysis type"] = result["analysis_type"]

    if result["status"] == "failed":
        for col in ("Estimate", "Est.Error", "p(y|H0)", "p(H1|y)"):
            row[col] = FAILED
        return row

    row["Estimate"] = result["estimate"]
    row["Est.Error"] = result["est_error"]
    if variant == "frequentist":
        row["p(y|H0)"] = result["p_value"]
        row["p(H1|y)"] = np.nan
    else:
        row["p(y|H0)"] = np.nan
        row["p(H1|y)"] = result["posterior_probability"]
    return row


def assemble(
    results: Iterable[HypothesisResult],
    definitions: Optional[Mapping[int, Mapping[str, Any]]] = None,
) -> pd.DataFrame:
    """
    Assemble hypothesis results into the fixed 30-row results table.

    :param results: HypothesisResult dicts (any order, any subset)
    :param definitions: Optional hypothesis id -> {"model", "h0", "h1"}
        used to label rows that have no result
    :returns: DataFrame with COLUMNS, hypothesis-major, variant-minor,
        indexed by (Hypothesis, Variant)
    :raises ValueError: If two results share a (hypothesis, variant)
    """
    definitions = definitions or {}
    by_key: Dict[tuple, HypothesisResult] = {}
    for result in results:
        key = (result["hypothesis_id"], result["variant"])
        if key in by_key:
            raise ValueError(f"Duplicate result for hypothesis {key[0]} ({key[1]})")
        by_key[key] = result

    rows = []
    index = []
    for h_id in range(1, N_HYPOTHESES + 1):
        definition = definitions.get(h_id, {})
        for variant in VARIANTS:
            rows.append(_row(by_key.get((h_id, variant)), definition, variant))
            index.append((h_id, variant))

    return pd.DataFrame(
        rows,
        columns=COLUMNS,
        index=pd.MultiIndex.from_tuples(index, names=["Hypothesis", "Variant"]),
    )
