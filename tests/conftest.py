"""
Shared fixtures: a synthetic 20-subject x 14-day ESM dataset.

Person-level covariates (psychopathology, age, gender) are constant within
subject; event intensities vary by day. Covariates are standardised over
all rows up front, so z-scoring inside prepare() leaves them unchanged and
the generating coefficients are recovered on the same scale.
"""
import numpy as np
import pandas as pd
import pytest


N_SUBJECTS = 20
N_DAYS = 14

# Generating fixed effect of psychopathology on share_neg
TRUE_PSYCHOPATHOLOGY = 0.5


def _standardise(values):
    values = np.asarray(values, dtype=float)
    return (values - values.mean()) / values.std(ddof=1)


def make_esm_data(seed=2024, n_subjects=N_SUBJECTS, n_days=N_DAYS, missing_share_neg=6):
    rng = np.random.default_rng(seed)
    subject = np.repeat(np.arange(1, n_subjects + 1), n_days)
    day = np.tile(np.arange(1, n_days + 1), n_subjects)
    n = len(subject)
    idx = subject - 1

    psych = _standardise(rng.normal(size=n_subjects)[idx])
    age = _standardise(rng.normal(30, 8, size=n_subjects)[idx])
    gender = np.where(np.arange(n_subjects) % 2 == 0, "f", "m")[idx]
    neg_intensity = _standardise(rng.normal(size=n))
    pos_intensity = _standardise(rng.normal(size=n))

    def outcome(intercept, b_psych, intensity, b_int, slope_sd=0.15):
        u0 = rng.normal(0, 0.3, size=n_subjects)[idx]
        u1 = rng.normal(0, slope_sd, size=n_subjects)[idx]
        noise = rng.normal(0, 0.5, size=n)
        return intercept + b_psych * psych + (b_int + u1) * intensity + u0 + noise

    share_neg = outcome(2.0, TRUE_PSYCHOPATHOLOGY, neg_intensity, 0.3)
    share_pos = outcome(2.5, -0.3, pos_intensity, 0.35)
    rumination = outcome(2.5, 0.3, neg_intensity, 0.4) + 0.2 * share_neg
    savouring = outcome(3.0, -0.25, pos_intensity, 0.4) + 0.25 * share_pos

    df = pd.DataFrame({
        "subject": subject,
        "day": day,
        "gender": gender,
        "age": age,
        "psychopathology": psych,
        "neg_intensity": neg_intensity,
        "pos_intensity": pos_intensity,
        "rumination": rumination,
        "savouring": savouring,
        "share_neg": share_neg,
        "share_pos": share_pos,
    })
    if missing_share_neg:
        rows = rng.choice(n, size=missing_share_neg, replace=False)
        df.loc[rows, "share_neg"] = np.nan
    return df


@pytest.fixture
def esm_data():
    return make_esm_data()


@pytest.fixture(scope="session")
def esm_data_session():
    return make_esm_data()
