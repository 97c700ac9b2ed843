"""Tests for the fixed-shape results table."""
import numpy as np
import pytest

from esm_stats import (
    ANALYSIS_TYPES,
    COLUMNS,
    FAILED,
    NOT_APPLICABLE,
    VARIANTS,
    assemble,
    create_hypothesis_result,
    format_hypothesis_result,
)
from esm_stats.aggregate import LRT_ANALYSIS_TYPE


def _ok(h_id, variant, **kwargs):
    values = {"estimate": 0.4, "est_error": 0.1}
    if variant == "frequentist":
        values["p_value"] = 0.01
    else:
        values["posterior_probability"] = 0.97
    values.update(kwargs)
    return create_hypothesis_result(h_id, variant, model=1, h0="b <= 0", h1="b > 0", **values)


class TestHypothesisResult:

    def test_defaults(self):
        result = create_hypothesis_result(3, "informed")
        assert result["analysis_type"] == ANALYSIS_TYPES["informed"]
        assert np.isnan(result["p_value"])
        assert result["status"] == "ok"

    @pytest.mark.parametrize("kwargs", [
        {"hypothesis_id": 0, "variant": "frequentist"},
        {"hypothesis_id": 11, "variant": "frequentist"},
        {"hypothesis_id": 1, "variant": "weakly_informative"},
        {"hypothesis_id": 1, "variant": "frequentist", "status": "skipped"},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            create_hypothesis_result(**kwargs)

    def test_format(self):
        assert "p=0.0100" in format_hypothesis_result(_ok(1, "frequentist"))
        assert "P(H1|y)=0.970" in format_hypothesis_result(_ok(1, "informed"))
        failed = create_hypothesis_result(1, "informed", status="failed", note="boom")
        assert "FAILED" in format_hypothesis_result(failed)


class TestAssemble:

    def test_partial_results_fill_table(self):
        # Results for only 2 of 10 hypotheses
        results = [_ok(h, v) for h in (1, 2) for v in VARIANTS]
        table = assemble(results)
        assert len(table) == 30
        assert list(table.columns) == COLUMNS

        by_hypothesis = table.groupby(level="Hypothesis")["Estimate"].apply(
            lambda s: (s == NOT_APPLICABLE).all()
        )
        assert by_hypothesis.sum() == 8
        assert not by_hypothesis.loc[1]
        assert not by_hypothesis.loc[2]

    def test_ordering(self):
        results = [_ok(h, v) for h in (5, 1) for v in reversed(VARIANTS)]
        table = assemble(results)
        assert list(table.index.get_level_values("Hypothesis")) == [h for h in range(1, 11) for _ in VARIANTS]
        assert list(table.index.get_level_values("Variant")[:3]) == list(VARIANTS)
        assert list(table["Analysis type"].iloc[:3]) == [ANALYSIS_TYPES[v] for v in VARIANTS]

    def test_unused_columns_are_empty(self):
        table = assemble([_ok(1, "frequentist"), _ok(1, "informed")])
        freq = table.loc[(1, "frequentist")]
        bayes = table.loc[(1, "informed")]
        assert freq["p(y|H0)"] == pytest.approx(0.01)
        assert np.isnan(freq["p(H1|y)"])
        assert bayes["p(H1|y)"] == pytest.approx(0.97)
        assert np.isnan(bayes["p(y|H0)"])

    def test_failed_marker(self):
        failed = create_hypothesis_result(4, "non_informative", model=4, status="failed",
                                          note="ConvergenceError")
        table = assemble([failed])
        row = table.loc[(4, "non_informative")]
        assert row["Model"] == 4
        for col in ("Estimate", "Est.Error", "p(y|H0)", "p(H1|y)"):
            assert row[col] == FAILED

    def test_definitions_label_missing_rows(self):
        table = assemble([], definitions={8: {"model": None, "h0": "b <= 0", "h1": "b > 0"}})
        row = table.loc[(8, "frequentist")]
        assert row["Model"] == NOT_APPLICABLE
        assert row["H0"] == "b <= 0"

    def test_custom_analysis_type(self):
        lrt = _ok(6, "frequentist", analysis_type=LRT_ANALYSIS_TYPE)
        table = assemble([lrt])
        assert table.loc[(6, "frequentist"), "Analysis type"] == "Frequentist (LRT)"

    def test_duplicates_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            assemble([_ok(1, "frequentist"), _ok(1, "frequentist")])
