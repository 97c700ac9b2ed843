"""
Data Preparation Module
=======================

Turns raw ESM records into model-ready datasets:
- CSV loading with required-column checks
- Per-model filtering of rows with a missing outcome
- z-scoring of numeric covariates (over the full dataset)
- Categorical casting of subject, day and gender

Architecture Note:
    This module uses dictionaries instead of classes for data structures
    to stay consistent with the rest of esm_stats.

    AnalysisDataset is a TypedDict containing:
    - data: pandas DataFrame, one row per (subject, day)
    - outcome, covariates: modelled columns
    - id_var, time_var: identifier columns
    - scaled, unscaled: covariates that were / could not be z-scored
    - n_dropped: rows removed because the outcome was missing

Inputs are never modified in place; every function returns new frames.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, TypedDict, Union
import warnings

import numpy as np
import pandas as pd

from .errors import DataError
from .specs import CATEGORICAL_COLUMNS, ModelSpec, spec_columns


ID_VAR = "subject"
TIME_VAR = "day"

REQUIRED_COLUMNS = (
    "subject",
    "day",
    "gender",
    "age",
    "psychopathology",
    "neg_intensity",
    "pos_intensity",
    "rumination",
    "savouring",
    "share_neg",
    "share_pos",
)

NA_VALUES = ["", "NA", "N/A", "NaN", "nan"]


# =============================================================================
# Loading
# =============================================================================

def load_esm_data(
    path: Union[str, Path],
    required: Sequence[str] = REQUIRED_COLUMNS,
) -> pd.DataFrame:
    """
    Load the raw ESM table from CSV.

    Empty cells and "NA" are read as missing.

    :param path: CSV file path
    :param required: Columns that must be present
    :returns: Raw DataFrame (no scaling or casting applied)
    :raises DataError: If the file lacks required columns
    """
    df = pd.read_csv(path, na_values=NA_VALUES, keep_default_na=True)
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise DataError(f"Required columns missing from {path}: {missing}")
    return df


# =============================================================================
# Analysis Dataset TypedDict
# =============================================================================

class AnalysisDataset(TypedDict):
    """
    Container for one model's prepared data.

    Keys:
        data: Prepared DataFrame (outcome non-missing, covariates scaled)
        outcome: Outcome column
        covariates: Fixed-effect covariate columns
        id_var: Subject identifier column
        time_var: Day identifier column
        scaled: Covariates that were z-scored
        unscaled: Numeric covariates left unscaled (zero variance)
        n_dropped: Rows removed because the outcome was missing
    """
    data: pd.DataFrame
    outcome: str
    covariates: List[str]
    id_var: str
    time_var: str
    scaled: List[str]
    unscaled: List[str]
    n_dropped: int


def create_analysis_dataset(
    data: pd.DataFrame,
    outcome: str,
    covariates: Optional[List[str]] = None,
    id_var: str = ID_VAR,
    time_var: str = TIME_VAR,
    scaled: Optional[List[str]] = None,
    unscaled: Optional[List[str]] = None,
    n_dropped: int = 0,
) -> AnalysisDataset:
    """
    Create an AnalysisDataset dictionary with validation.

    :raises DataError: If outcome, covariate or id columns are missing
    """
    covariates = list(covariates or [])
    missing = [c for c in [outcome, *covariates, id_var] if c not in data.columns]
    if missing:
        raise DataError(f"Columns not found in data: {missing}")
    return {
        "data": data,
        "outcome": outcome,
        "covariates": covariates,
        "id_var": id_var,
        "time_var": time_var,
        "scaled": list(scaled or []),
        "unscaled": list(unscaled or []),
        "n_dropped": int(n_dropped),
    }


def get_n_subjects(ds: AnalysisDataset) -> int:
    """Get number of unique subjects in dataset."""
    return ds["data"][ds["id_var"]].nunique()


def get_n_observations(ds: AnalysisDataset) -> int:
    """Get total number of observations in dataset."""
    return len(ds["data"])


def get_obs_per_subject(ds: AnalysisDataset) -> pd.Series:
    """Get number of observations per subject."""
    return ds["data"].groupby(ds["id_var"], observed=True).size()


def describe_dataset(ds: AnalysisDataset) -> str:
    """
    Generate a human-readable description of the dataset.

    :param ds: AnalysisDataset dictionary
    :returns: Multi-line description string
    """
    obs = get_obs_per_subject(ds)
    lines = [
        f"AnalysisDataset: {ds['outcome']}",
        f"  Subjects: {get_n_subjects(ds)}",
        f"  Observations: {get_n_observations(ds)} ({ds['n_dropped']} dropped, missing outcome)",
        f"  Obs/subject: {obs.min() if len(obs) else 0}-{obs.max() if len(obs) else 0} "
        f"(median {obs.median() if len(obs) else 0:.0f})",
        f"  Covariates: {ds['covariates']}",
        f"  Scaled: {ds['scaled']}",
    ]
    if ds["unscaled"]:
        lines.append(f"  Unscaled (zero variance): {ds['unscaled']}")
    return "\n".join(lines)


# =============================================================================
# Scaling
# =============================================================================

def scale_numeric_data(
    df: pd.DataFrame,
    columns: Optional[Sequence[str]] = None,
    exclude: Sequence[str] = CATEGORICAL_COLUMNS,
) -> Tuple[pd.DataFrame, List[str], List[str]]:
    """
    z-score numeric columns (sample SD, ddof=1).

    Columns with zero variance (or fewer than two observed values) are left
    unscaled instead of being divided by zero.

    :param df: Input DataFrame (not modified)
    :param columns: Columns to scale (default: every numeric column)
    :param exclude: Columns never scaled (identifiers, categorical codes)
    :returns: (scaled copy, scaled columns, unscaled columns)
    """
    df = df.copy()
    if columns is None:
        columns = [c for c in df.columns if pd.api.types.is_numeric_dtype(df[c])]
    columns = [c for c in columns if c not in exclude]

    scaled: List[str] = []
    unscaled: List[str] = []
    for col in columns:
        if not pd.api.types.is_numeric_dtype(df[col]):
            continue
        values = df[col].astype(float)
        sd = values.std()
        if values.count() < 2 or not np.isfinite(sd) or sd == 0:
            unscaled.append(col)
            continue
        df[col] = (values - values.mean()) / sd
        scaled.append(col)

    return df, scaled, unscaled


def cast_categoricals(
    df: pd.DataFrame,
    columns: Sequence[str] = CATEGORICAL_COLUMNS,
) -> pd.DataFrame:
    """Cast identifier-like columns to unordered categoricals."""
    df = df.copy()
    for col in columns:
        if col in df.columns:
            df[col] = pd.Categorical(df[col].astype(str).where(df[col].notna()), ordered=False)
    return df


# =============================================================================
# Model Preparation
# =============================================================================

def prepare(
    raw: pd.DataFrame,
    spec: ModelSpec,
    verbose: bool = False,
) -> AnalysisDataset:
    """
    Prepare raw records for one model.

    Steps:
    1. Check that every column the model reads exists
    2. z-score the numeric covariates over the full raw table
    3. Drop rows with a missing outcome (outcome-specific)
    4. Cast subject, day and gender to categoricals

    :param raw: Raw ESM DataFrame (not modified)
    :param spec: ModelSpec to prepare for
    :param verbose: Print a dataset summary
    :returns: AnalysisDataset for this model
    :raises DataError: If a referenced column is absent or subject x day
        is not unique after filtering
    """
    missing = [c for c in spec_columns(spec) if c not in raw.columns]
    if missing:
        raise DataError(f"Model '{spec['name']}' references missing columns: {missing}")

    numeric_covariates = [
        c for c in spec["fixed_effects"]
        if c not in CATEGORICAL_COLUMNS and pd.api.types.is_numeric_dtype(raw[c])
    ]

    df, scaled, unscaled = scale_numeric_data(raw, numeric_covariates)
    if unscaled:
        warnings.warn(f"Zero-variance covariates left unscaled: {unscaled}")

    n_before = len(df)
    df = df.dropna(subset=[spec["outcome"]]).reset_index(drop=True)
    n_dropped = n_before - len(df)

    df = cast_categoricals(df)

    keys = [c for c in (ID_VAR, TIME_VAR) if c in df.columns]
    if len(keys) == 2:
        dup = df.duplicated(subset=keys, keep=False)
        if dup.any():
            raise DataError(
                f"subject x day is not unique for model '{spec['name']}' "
                f"({int(dup.sum())} duplicated rows)"
            )

    ds = create_analysis_dataset(
        df,
        outcome=spec["outcome"],
        covariates=list(spec["fixed_effects"]),
        id_var=spec["groups"][0],
        time_var=TIME_VAR,
        scaled=scaled,
        unscaled=unscaled,
        n_dropped=n_dropped,
    )
    if verbose:
        print(describe_dataset(ds))
    return ds


def model_frame(ds: AnalysisDataset, spec: ModelSpec) -> pd.DataFrame:
    """
    Complete-case frame over every column the model reads.

    Unused categorical levels are removed so they never produce empty
    design-matrix columns.
    """
    cols = list(dict.fromkeys(spec_columns(spec)))
    df = ds["data"][cols].dropna().reset_index(drop=True)
    for col in cols:
        if isinstance(df[col].dtype, pd.CategoricalDtype):
            df[col] = df[col].cat.remove_unused_categories()
    return df


def group_codes(df: pd.DataFrame, spec: ModelSpec) -> Dict[str, Any]:
    """
    Integer codes for the grouping levels.

    :returns: Dict with "subject" codes/labels and, for nested models,
        "nested" codes/labels for each subject:day cell
    """
    subject = spec["groups"][0]
    codes, labels = pd.factorize(df[subject].astype(str), sort=True)
    out: Dict[str, Any] = {"subject": codes, "subject_labels": list(labels)}
    if len(spec["groups"]) == 2:
        cell = df[subject].astype(str) + ":" + df[spec["groups"][1]].astype(str)
        nested_codes, nested_labels = pd.factorize(cell, sort=True)
        out["nested"] = nested_codes
        out["nested_labels"] = list(nested_labels)
    return out
