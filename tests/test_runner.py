"""Tests for the hypothesis configuration and runner."""
import arviz as az
import numpy as np
import pytest

from esm_stats import (
    FAILED,
    NOT_APPLICABLE,
    ConvergenceError,
    VARIANTS,
    RunConfig,
    SamplerConfig,
    create_bayesian_fit,
    missing_priors,
    resolve_prior,
)
from hypotheses import HYPOTHESES, MODELS, get_hypothesis, get_model, run_all, run_hypothesis
from hypotheses import runner
from hypotheses.config import hypotheses_for_model

import run_hypotheses


class TestConfig:

    def test_models_and_hypotheses(self):
        assert sorted(MODELS) == [1, 2, 3, 4, 5, 6]
        assert sorted(HYPOTHESES) == list(range(1, 11))
        for model in MODELS.values():
            spec = model["spec"]
            assert spec["random_slopes"]
            assert set(model["priors"]) == {"non_informative", "informed"}

    def test_hypotheses_reference_model_coefficients(self):
        for h_id, config in HYPOTHESES.items():
            if config["model"] is None:
                continue
            spec = get_model(config["model"])["spec"]
            assert config["coefficient"] in spec["fixed_effects"], h_id

    def test_informed_priors_cover_every_coefficient(self):
        for model_id, model in MODELS.items():
            informed = model["priors"]["informed"]
            assert missing_priors(model["spec"], informed) == [], model_id
            assert resolve_prior(informed, "C(gender)[T.m]")["sigma"] == 0.3
            assert resolve_prior(informed, "age")["sigma"] == 0.2

    def test_lookup(self):
        assert hypotheses_for_model(1) == [1, 7]
        with pytest.raises(ValueError):
            get_hypothesis(11)
        with pytest.raises(ValueError):
            get_model(7)


def _synthetic_bayes_model_fits(model_id, coefficient, center):
    rng = np.random.default_rng(0)
    spec = get_model(model_id)["spec"]
    coefs = ["Intercept", *spec["fixed_effects"]]
    posterior = {f"b_{c}": rng.normal(0.0, 0.1, size=(2, 500)) for c in coefs}
    posterior[f"b_{coefficient}"] = rng.normal(center, 0.1, size=(2, 500))
    prior = {f"b_{c}": rng.normal(0.0, 1.0, size=(1, 1000)) for c in coefs}
    idata = az.from_dict(posterior=posterior, prior=prior)
    fit = create_bayesian_fit(spec, idata, coefs)
    return runner.create_model_fits(model_id, fits={"non_informative": fit, "informed": fit})


class TestRunHypothesis:

    def test_unmapped_hypothesis_not_applicable(self):
        results = run_hypothesis(8, None, verbose=False)
        assert [r["status"] for r in results] == ["not_applicable"] * 3

    def test_failed_fit_marked(self):
        fits = runner.create_model_fits(2, errors={"frequentist": "ConvergenceError: x"})
        results = run_hypothesis(2, fits, variants=("frequentist",), verbose=False)
        assert results[0]["status"] == "failed"

    def test_bayesian_directional(self):
        fits = _synthetic_bayes_model_fits(2, "psychopathology", -0.4)
        results = run_hypothesis(2, fits, variants=("non_informative", "informed"), verbose=False)
        for result in results:
            assert result["posterior_probability"] > 0.99
            assert result["estimate"] == pytest.approx(-0.4, abs=0.05)

    def test_bayesian_null_hypothesis_reports_p_h1(self):
        # Posterior far from zero: H1 (b_age != 0) is supported
        fits = _synthetic_bayes_model_fits(1, "age", 1.0)
        result = run_hypothesis(7, fits, variants=("informed",), verbose=False)[0]
        assert result["status"] == "ok"
        assert result["posterior_probability"] > 0.9

    def test_missing_variant_not_applicable(self):
        fits = _synthetic_bayes_model_fits(2, "psychopathology", -0.4)
        result = run_hypothesis(2, fits, variants=("frequentist",), verbose=False)[0]
        assert result["status"] == "not_applicable"


class TestRunAll:

    @pytest.fixture(scope="class")
    def frequentist_run(self, esm_data_session):
        return run_all(
            esm_data_session,
            RunConfig(seed=1),
            models=[1, 6],
            variants=("frequentist",),
            verbose=False,
        )

    def test_table_shape(self, frequentist_run):
        table = frequentist_run["table"]
        assert len(table) == 30
        assert table.loc[(1, "frequentist"), "p(y|H0)"] < 0.05
        assert table.loc[(1, "informed"), "Estimate"] == NOT_APPLICABLE
        # Model 2 was not fitted
        assert table.loc[(2, "frequentist"), "Estimate"] == NOT_APPLICABLE

    def test_h6_uses_lrt(self, frequentist_run):
        row = frequentist_run["table"].loc[(6, "frequentist")]
        assert row["Analysis type"] == "Frequentist (LRT)"
        assert 0.0 <= row["p(y|H0)"] <= 1.0

    def test_h7_two_sided(self, frequentist_run):
        row = frequentist_run["table"].loc[(7, "frequentist")]
        assert row["Model"] == 1
        assert 0.0 <= row["p(y|H0)"] <= 1.0

    def test_summary(self, frequentist_run):
        summary = runner.summarize_results(frequentist_run["results"])
        assert len(summary) == 10
        assert set(summary["Status"]) <= {"ok", "not_applicable", "failed"}

    def test_failure_is_local(self, esm_data, monkeypatch):
        real_fit = runner.fit_lmm

        def flaky(spec, ds, options=None, **kwargs):
            if spec["name"] == "M2":
                raise ConvergenceError("LMM for 'M2' did not converge")
            return real_fit(spec, ds, options=options, lrt=False)

        monkeypatch.setattr(runner, "fit_lmm", flaky)
        with pytest.warns(UserWarning, match="M2"):
            out = run_all(esm_data, models=[1, 2], variants=("frequentist",), verbose=False)
        table = out["table"]
        assert table.loc[(2, "frequentist"), "Estimate"] == FAILED
        assert isinstance(table.loc[(1, "frequentist"), "Estimate"], float)

    def test_bayesian_run_completes(self, esm_data_session):
        cfg = RunConfig(seed=3, sampler=SamplerConfig(chains=2, warmup=100, iterations=300, cores=1))
        out = run_all(esm_data_session, cfg, models=[1], variants=VARIANTS, verbose=False)
        assert out["fits"][1]["errors"] == {}
        table = out["table"]
        for h_id in (1, 7):
            for variant in VARIANTS:
                assert table.loc[(h_id, variant), "Estimate"] != FAILED, (h_id, variant)
        for variant in ("non_informative", "informed"):
            assert 0.0 <= table.loc[(1, variant), "p(H1|y)"] <= 1.0
        assert table.loc[(1, "informed"), "p(H1|y)"] > 0.5


class TestCLI:

    def test_describe(self, capsys):
        assert run_hypotheses.main(["--describe"]) == 0
        out = capsys.readouterr().out
        assert "H6:" in out
        assert "H10:" in out

    def test_missing_data_file(self, tmp_path, capsys):
        assert run_hypotheses.main(["--data", str(tmp_path / "missing.csv"), "--quiet"]) == 1

    def test_frequentist_only_writes_csv(self, esm_data, tmp_path):
        data = tmp_path / "esm.csv"
        esm_data.to_csv(data, index=False)
        output = tmp_path / "results.csv"
        code = run_hypotheses.main([
            "--data", str(data), "--models", "1", "--frequentist-only",
            "--quiet", "--output", str(output),
        ])
        assert code == 0
        assert output.exists()
        assert len(output.read_text().strip().splitlines()) == 31

    def test_sampler_and_optimizer_flags(self, esm_data, tmp_path, monkeypatch):
        data = tmp_path / "esm.csv"
        esm_data.to_csv(data, index=False)
        captured = {}

        def fake_run_all(raw, run_config, **kwargs):
            captured["run_config"] = run_config
            return run_all(raw, run_config, models=[1], variants=("frequentist",), verbose=False)

        monkeypatch.setattr(run_hypotheses, "run_all", fake_run_all)
        code = run_hypotheses.main([
            "--data", str(data), "--quiet",
            "--target-accept", "0.9", "--max-treedepth", "10",
            "--optimizer", "lbfgs", "powell", "--maxiter", "500",
        ])
        assert code == 0
        cfg = captured["run_config"]
        assert cfg.sampler.target_accept == 0.9
        assert cfg.sampler.max_treedepth == 10
        assert cfg.optimizer.method == ("lbfgs", "powell")
        assert cfg.optimizer.maxiter == 500
        assert cfg.optimizer.check_convergence is False

    def test_invalid_target_accept_rejected(self):
        with pytest.raises(SystemExit):
            run_hypotheses.main(["--target-accept", "1.5"])
