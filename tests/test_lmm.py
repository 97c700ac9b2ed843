"""Tests for the REML estimator (esm_stats.lmm)."""
import warnings

import numpy as np
import pandas as pd
import pytest

from esm_stats import (
    ConvergenceError,
    OptimizerConfig,
    create_model_spec,
    fit_lmm,
    fixed_effects_table,
    get_random_effects,
    prepare,
    random_effects_table,
    summarize_frequentist_fit,
)
from esm_stats import inference, lmm
from esm_stats.lmm import design_matrices, nested_cell_note
from esm_stats.prepare import model_frame

from conftest import N_SUBJECTS, TRUE_PSYCHOPATHOLOGY


@pytest.fixture(scope="module")
def m1_spec():
    return create_model_spec(
        "share_neg",
        ["psychopathology", "neg_intensity", "age", "gender"],
        random_slopes=["neg_intensity"],
        name="M1",
    )


@pytest.fixture(scope="module")
def m1_fit(esm_data_session, m1_spec):
    return fit_lmm(m1_spec, prepare(esm_data_session, m1_spec))


class TestFitLMM:

    def test_recovers_known_effect(self, m1_fit):
        coefs = fixed_effects_table(m1_fit).set_index("term")
        assert coefs.loc["psychopathology", "estimate"] == pytest.approx(TRUE_PSYCHOPATHOLOGY, abs=0.2)

        test = inference.test_fixed_effect(m1_fit, "psychopathology", "greater")
        assert test["p_value"] < 0.05
        assert test["p_value"] == pytest.approx(test["p_two_sided"] / 2)

    def test_coefficient_table(self, m1_fit):
        coefs = fixed_effects_table(m1_fit)
        assert list(coefs.columns) == [
            "term", "estimate", "std_error", "df", "t_value", "p_value", "ci_lower", "ci_upper",
        ]
        assert coefs["term"].iloc[0] == "Intercept"
        assert set(coefs["term"]) == {
            "Intercept", "C(gender)[T.m]", "psychopathology", "neg_intensity", "age",
        }
        assert (coefs["std_error"] > 0).all()
        assert (coefs["ci_lower"] < coefs["estimate"]).all()
        assert (coefs["estimate"] < coefs["ci_upper"]).all()
        assert coefs["p_value"].between(0, 1).all()

    def test_satterthwaite_df_range(self, m1_fit):
        df = fixed_effects_table(m1_fit)["df"].to_numpy()
        finite = df[np.isfinite(df)]
        assert finite.size > 0
        assert (finite >= 1).all()
        assert (finite <= m1_fit["n_obs"] - 5).all()

    def test_person_level_df_near_subject_count(self, m1_fit):
        # Between-subject covariates get roughly n_subjects - k df, far below n_obs
        coefs = fixed_effects_table(m1_fit).set_index("term")
        df_psych = coefs.loc["psychopathology", "df"]
        if np.isfinite(df_psych):
            assert df_psych < m1_fit["n_obs"] / 2

    def test_random_effects_table(self, m1_fit):
        re_df = random_effects_table(m1_fit)
        assert list(re_df["term"]) == ["Intercept", "neg_intensity", ""]
        assert list(re_df["group"]) == ["subject", "subject", "Residual"]
        assert (re_df["variance"] >= 0).all()
        assert np.isnan(re_df["corr"].iloc[0])

    def test_blups(self, m1_fit):
        blups = get_random_effects(m1_fit)
        assert len(blups) == N_SUBJECTS
        assert {"Intercept", "neg_intensity"} <= set(blups.columns)

    def test_lrt_table(self, m1_fit):
        lrt = m1_fit["lrt"]
        assert list(lrt["term"]) == ["neg_intensity", "Intercept"]
        assert (lrt["df"] == 2).all()
        assert (lrt["statistic"] >= 0).all()
        assert lrt["p_value"].between(0, 1).all()

        test = inference.test_random_effect(m1_fit, "neg_intensity")
        assert test["test"] == "lrt"
        with pytest.raises(KeyError):
            inference.test_random_effect(m1_fit, "age")

    def test_fit_metadata(self, m1_fit, esm_data_session):
        assert m1_fit["converged"] is True
        assert m1_fit["n_groups"] == N_SUBJECTS
        assert m1_fit["n_obs"] == int(esm_data_session["share_neg"].notna().sum())
        assert np.isfinite(m1_fit["fit_stats"]["llf"])
        assert "share_neg ~" in summarize_frequentist_fit(m1_fit)

    def test_without_lrt(self, esm_data_session, m1_spec):
        fit = fit_lmm(m1_spec, prepare(esm_data_session, m1_spec), lrt=False)
        assert fit["lrt"].empty


class TestConvergence:

    def test_non_convergence_raises(self, esm_data, m1_spec, monkeypatch):
        class _NotConverged:
            converged = False

        monkeypatch.setattr(lmm, "_fit_mixedlm", lambda model, options: (_NotConverged(), []))
        with pytest.raises(ConvergenceError, match="did not converge"):
            fit_lmm(m1_spec, prepare(esm_data, m1_spec), options=OptimizerConfig(maxiter=5))

    def test_warnings_recorded_not_emitted(self, recwarn):
        class _Result:
            converged = True

        class _Model:
            def fit(self, **kwargs):
                warnings.warn("optimizer hiccup")
                return _Result()

        result, messages = lmm._fit_mixedlm(_Model(), OptimizerConfig())
        assert result.converged
        assert messages == ["optimizer hiccup"]
        assert not any("hiccup" in str(w.message) for w in recwarn)

        with pytest.warns(UserWarning, match="hiccup"):
            lmm._fit_mixedlm(_Model(), OptimizerConfig(check_convergence=True))


class TestDesignMatrices:

    def test_random_effect_names(self, esm_data_session, m1_spec):
        df = model_frame(prepare(esm_data_session, m1_spec), m1_spec)
        mats = design_matrices(df, m1_spec)
        assert mats["re_names"] == ["Intercept", "neg_intensity"]
        assert mats["fe_names"][0] == "Intercept"
        assert mats["Z"].shape == (len(df), 2)
        assert mats["X"].shape == (len(df), len(mats["fe_names"]))
        assert mats["y"].shape == (len(df),)

    def test_intercept_only_names(self, esm_data_session):
        spec = create_model_spec("rumination", ["psychopathology"])
        df = model_frame(prepare(esm_data_session, spec), spec)
        assert design_matrices(df, spec)["re_names"] == ["Intercept"]


class TestNestedCells:

    @pytest.fixture
    def nested_spec(self):
        return create_model_spec("rumination", ["neg_intensity"], groups=("subject", "day"), name="nested")

    def test_single_row_cells_noted(self, esm_data, nested_spec):
        df = model_frame(prepare(esm_data, nested_spec), nested_spec)
        note = nested_cell_note(df, nested_spec)
        assert note is not None
        assert "subject:day" in note
        assert "'nested'" in note

    def test_repeated_cells_not_noted(self, nested_spec):
        df = pd.DataFrame({"subject": [1, 1, 1, 2, 2], "day": [1, 1, 2, 1, 1]})
        assert nested_cell_note(df, nested_spec) is None

    def test_subject_only_not_noted(self, esm_data, m1_spec):
        df = model_frame(prepare(esm_data, m1_spec), m1_spec)
        assert nested_cell_note(df, m1_spec) is None

    def test_fit_warns(self, esm_data, nested_spec, monkeypatch, recwarn):
        class _NotConverged:
            converged = False

        monkeypatch.setattr(lmm, "_fit_mixedlm", lambda model, options: (_NotConverged(), []))
        with pytest.raises(ConvergenceError):
            fit_lmm(nested_spec, prepare(esm_data, nested_spec), lrt=False)
        assert any("confounded" in str(w.message) for w in recwarn)
