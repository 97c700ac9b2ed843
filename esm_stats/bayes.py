"""
Bayesian Mixed Models Module
============================

MCMC estimation of the preregistered hierarchical models with PyMC (NUTS).

Architecture Note:
    A BayesianFit is a plain dictionary wrapping an ArviZ InferenceData
    object. It is created once per (ModelSpec, dataset, PriorSet) and
    never modified; hypothesis tests and external plotting read from it.

Model structure:
    y ~ Normal(X b + Z u[subject] (+ v[subject:day]), sigma)

- X has an explicit "Intercept" column; every coefficient b_<name>
  gets its own prior from the PriorSet (fallback: DEFAULT_PRIOR)
- Subject effects u use a non-centred parameterisation with an LKJ(1)
  Cholesky prior on their correlation and half-Student-t(3, 0, 2.5)
  standard deviations
- sigma ~ half-Student-t(3, 0, 2.5)

Chains run as independent processes seeded from one seed. Warmup draws
are kept in the "warmup_posterior" group for trace plots and excluded
from every summary. Convergence (R-hat, ESS) is not checked here;
posterior_summary(..., diagnostics=True) computes it on request.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
import warnings

import numpy as np
import pandas as pd
import pymc as pm
import arviz as az

from .errors import SamplerDivergenceError
from .lmm import design_matrices, nested_cell_note
from .prepare import AnalysisDataset, group_codes, model_frame
from .settings import SamplerConfig
from .specs import ModelSpec, PriorSet, PriorSpec, resolve_prior


RE_SD_NU = 3.0
RE_SD_SCALE = 2.5
LKJ_ETA = 1.0


# =============================================================================
# BayesianFit (dict)
# =============================================================================

BayesianFit = Dict[str, Any]


def create_bayesian_fit(
    spec: ModelSpec,
    idata: az.InferenceData,
    coef_names: List[str],
    prior_set: Optional[PriorSet] = None,
    sampling: Optional[SamplerConfig] = None,
    n_obs: int = 0,
    n_groups: int = 0,
    fit_warnings: Optional[List[str]] = None,
) -> BayesianFit:
    """
    Create a BayesianFit dictionary around sampler output.

    :param spec: ModelSpec that was fitted
    :param idata: InferenceData with a "posterior" group (and optionally
        "warmup_posterior", "sample_stats", "prior")
    :param coef_names: Fixed-effect coefficient names, intercept first
    :param prior_set: PriorSet used for the fixed effects
    :param sampling: Sampler settings used
    :param n_obs: Number of observations
    :param n_groups: Number of subjects
    :param fit_warnings: Non-fatal sampler warnings
    :returns: BayesianFit dictionary
    """
    posterior = idata.posterior
    n_divergent = 0
    if "sample_stats" in idata.groups() and "diverging" in idata.sample_stats:
        n_divergent = int(idata.sample_stats["diverging"].sum())

    return {
        "estimator": "bayesian",
        "spec": spec,
        "prior_set": prior_set,
        "idata": idata,
        "coef_names": list(coef_names),
        "n_chains": int(posterior.sizes["chain"]),
        "n_draws": int(posterior.sizes["draw"]),
        "n_warmup": int(idata.warmup_posterior.sizes["draw"])
        if "warmup_posterior" in idata.groups() else 0,
        "n_divergent": n_divergent,
        "has_prior_samples": "prior" in idata.groups(),
        "sampling": sampling,
        "n_obs": n_obs,
        "n_groups": n_groups,
        "warnings": fit_warnings if fit_warnings is not None else [],
    }


def coef_param(coefficient: str) -> str:
    """Posterior variable name of a fixed-effect coefficient."""
    return f"b_{coefficient}"


def summarize_bayesian_fit(fit: BayesianFit) -> str:
    """
    Generate a summary string for a Bayesian fit.

    :param fit: BayesianFit dictionary
    :returns: Human-readable summary string
    """
    prior_name = fit["prior_set"]["name"] if fit["prior_set"] else "default"
    lines = [
        f"Bayesian LMM ({prior_name} priors): {fit['spec']['name']}",
        f"  N observations: {fit['n_obs']}",
        f"  N subjects: {fit['n_groups']}",
        f"  Chains: {fit['n_chains']} x {fit['n_draws']} post-warmup draws "
        f"({fit['n_warmup']} warmup)",
        f"  Divergent transitions: {fit['n_divergent']}",
    ]
    for coef in fit["coef_names"]:
        draws = get_posterior_draws(fit, coef_param(coef))
        lines.append(f"    {coef:<28} {draws.mean():>8.3f} (SD {draws.std(ddof=1):.3f})")
    return "\n".join(lines)


# =============================================================================
# Draw Accessors
# =============================================================================

def get_chain_draws(fit: BayesianFit, param: str) -> np.ndarray:
    """Post-warmup draws of a scalar parameter, shape (chains, draws)."""
    posterior = fit["idata"].posterior
    if param not in posterior:
        raise KeyError(f"Parameter '{param}' not in posterior. Available: {list(posterior.data_vars)}")
    return np.asarray(posterior[param].values, dtype=float)


def get_posterior_draws(fit: BayesianFit, param: str) -> np.ndarray:
    """Pooled post-warmup draws, ordered by iteration within chain."""
    return get_chain_draws(fit, param).reshape(-1)


def get_warmup_draws(fit: BayesianFit, param: str) -> np.ndarray:
    """Warmup draws (chains, warmup) kept for diagnostic plotting."""
    idata = fit["idata"]
    if "warmup_posterior" not in idata.groups():
        return np.empty((fit["n_chains"], 0))
    return np.asarray(idata.warmup_posterior[param].values, dtype=float)


def get_prior_draws(fit: BayesianFit, param: str) -> Optional[np.ndarray]:
    """Pooled prior draws of a parameter, or None if none were sampled."""
    idata = fit["idata"]
    if "prior" not in idata.groups() or param not in idata.prior:
        return None
    return np.asarray(idata.prior[param].values, dtype=float).reshape(-1)


def posterior_summary(
    fit: BayesianFit,
    var_names: Optional[List[str]] = None,
    diagnostics: bool = False,
    hdi_prob: float = 0.95,
) -> pd.DataFrame:
    """
    ArviZ summary of post-warmup draws.

    :param fit: BayesianFit dictionary
    :param var_names: Parameters (default: fixed effects)
    :param diagnostics: Include R-hat and ESS
    :param hdi_prob: HDI probability
    """
    if var_names is None:
        var_names = [coef_param(c) for c in fit["coef_names"]]
    return az.summary(
        fit["idata"],
        var_names=var_names,
        kind="all" if diagnostics else "stats",
        hdi_prob=hdi_prob,
    )


# =============================================================================
# Model Construction
# =============================================================================

def _prior_rv(name: str, prior: PriorSpec):
    """Create the PyMC random variable for one coefficient prior."""
    family = prior["family"]
    if family == "normal":
        return pm.Normal(name, mu=prior["mu"], sigma=prior["sigma"])
    if family == "student_t":
        return pm.StudentT(name, nu=prior["nu"], mu=prior["mu"], sigma=prior["sigma"])
    return pm.Cauchy(name, alpha=prior["mu"], beta=prior["sigma"])


def build_model(
    spec: ModelSpec,
    df: pd.DataFrame,
    prior_set: Optional[PriorSet] = None,
) -> tuple[pm.Model, List[str]]:
    """
    Build the PyMC model for a spec.

    :param spec: ModelSpec
    :param df: Complete-case model frame
    :param prior_set: Fixed-effect priors
    :returns: (PyMC model, fixed-effect coefficient names)
    """
    design = design_matrices(df, spec)
    codes = group_codes(df, spec)
    X, Z, y = design["X"], design["Z"], design["y"]
    coef_names = design["fe_names"]
    re_names = design["re_names"]
    subject = spec["groups"][0]
    subj_idx = codes["subject"]

    coords = {"subject": codes["subject_labels"], "re_term": re_names}

    with pm.Model(coords=coords) as model:
        betas = [_prior_rv(coef_param(c), resolve_prior(prior_set, c)) for c in coef_names]
        beta = pm.math.stack(betas)
        mu = pm.math.dot(X, beta)

        k = Z.shape[1]
        if k == 1:
            sd = pm.HalfStudentT(f"sd_{subject}__{re_names[0]}", nu=RE_SD_NU, sigma=RE_SD_SCALE)
            z = pm.Normal(f"z_{subject}", 0.0, 1.0, dims="subject")
            mu = mu + (z * sd)[subj_idx] * Z[:, 0]
        else:
            chol, corr, stds = pm.LKJCholeskyCov(
                f"L_{subject}",
                n=k,
                eta=LKJ_ETA,
                sd_dist=pm.HalfStudentT.dist(nu=RE_SD_NU, sigma=RE_SD_SCALE, size=k),
                compute_corr=True,
            )
            z = pm.Normal(f"z_{subject}", 0.0, 1.0, dims=("subject", "re_term"))
            u = pm.math.dot(z, chol.T)
            mu = mu + (u[subj_idx] * Z).sum(axis=1)
            for j, term in enumerate(re_names):
                pm.Deterministic(f"sd_{subject}__{term}", stds[j])
            for i in range(k):
                for j in range(i + 1, k):
                    pm.Deterministic(f"cor_{subject}__{re_names[i]}__{re_names[j]}", corr[i, j])

        if len(spec["groups"]) == 2:
            cell = f"{subject}_{spec['groups'][1]}"
            n_cells = len(codes["nested_labels"])
            sd_cell = pm.HalfStudentT(f"sd_{cell}__Intercept", nu=RE_SD_NU, sigma=RE_SD_SCALE)
            z_cell = pm.Normal(f"z_{cell}", 0.0, 1.0, shape=n_cells)
            mu = mu + (z_cell * sd_cell)[codes["nested"]]

        sigma = pm.HalfStudentT("sigma", nu=RE_SD_NU, sigma=RE_SD_SCALE)
        pm.Normal("y", mu=mu, sigma=sigma, observed=y)

    return model, coef_names


def _check_constant_chains(idata: az.InferenceData, coef_names: List[str]) -> None:
    """Raise if every chain is stuck for every fixed effect."""
    stuck = []
    for coef in coef_names:
        values = np.asarray(idata.posterior[coef_param(coef)].values)
        stuck.append(bool(np.all(np.ptp(values, axis=1) == 0)))
    if stuck and all(stuck):
        raise SamplerDivergenceError("All chains produced constant output for every fixed effect")


def _divergence_warnings(idata: az.InferenceData, label: str) -> List[str]:
    """Warn about post-warmup divergent transitions; they are not fatal."""
    if "sample_stats" not in idata.groups() or "diverging" not in idata.sample_stats:
        return []
    n_divergent = int(idata.sample_stats["diverging"].sum())
    if n_divergent == 0:
        return []
    msg = f"{n_divergent} divergent transitions after warmup in {label}"
    warnings.warn(msg)
    return [msg]


# =============================================================================
# Model Fitting
# =============================================================================

def fit_bayes(
    spec: ModelSpec,
    ds: AnalysisDataset,
    prior_set: Optional[PriorSet] = None,
    sampling: Optional[SamplerConfig] = None,
    verbose: bool = False,
) -> BayesianFit:
    """
    Fit a hierarchical linear model by MCMC.

    :param spec: ModelSpec to fit
    :param ds: AnalysisDataset prepared for this spec
    :param prior_set: Fixed-effect priors (missing entries use DEFAULT_PRIOR)
    :param sampling: Sampler settings (default: SamplerConfig())
    :param verbose: Print a summary of the fit
    :returns: BayesianFit dictionary
    :raises SamplerDivergenceError: If the sampler produced constant output

    Example:
        >>> fit = fit_bayes(spec, ds, prior_set, SamplerConfig(chains=2))
        >>> get_posterior_draws(fit, "b_psychopathology").mean()
    """
    sampling = sampling or SamplerConfig()
    df = model_frame(ds, spec)
    model, coef_names = build_model(spec, df, prior_set)

    with model:
        idata = pm.sample(
            draws=sampling.draws,
            tune=sampling.warmup,
            chains=sampling.chains,
            cores=sampling.cores,
            random_seed=sampling.seed,
            discard_tuned_samples=False,
            compute_convergence_checks=False,
            progressbar=sampling.progressbar,
            nuts={"target_accept": sampling.target_accept, "max_treedepth": sampling.max_treedepth},
        )
        if sampling.sample_prior:
            prior = pm.sample_prior_predictive(
                draws=sampling.chains * sampling.draws,
                random_seed=sampling.seed,
            )
            idata.extend(prior)

    _check_constant_chains(idata, coef_names)

    label = f"'{spec['name']}' ({prior_set['name'] if prior_set else 'default'} priors)"
    fit_warnings = _divergence_warnings(idata, label)
    note = nested_cell_note(df, spec)
    if note:
        warnings.warn(note)
        fit_warnings.append(note)

    fit = create_bayesian_fit(
        spec=spec,
        idata=idata,
        coef_names=coef_names,
        prior_set=prior_set,
        sampling=sampling,
        n_obs=len(df),
        n_groups=df[spec["groups"][0]].nunique(),
        fit_warnings=fit_warnings,
    )
    if verbose:
        print(summarize_bayesian_fit(fit))
    return fit
