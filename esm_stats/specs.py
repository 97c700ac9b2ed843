"""
Model Specifications and Prior Sets
===================================

Declarative descriptions of the hierarchical models and their priors.

Architecture Note:
    ModelSpec, PriorSpec and PriorSet are TypedDicts built by factory
    functions that validate on construction. A spec that passes
    create_model_spec() is valid for both estimators; nothing is parsed
    or checked again at fit time.

A ModelSpec describes:
- outcome: response column
- fixed_effects: ordered covariate columns (the intercept is implicit
  for statsmodels and explicit "Intercept" for the Bayesian estimator)
- groups: ("subject",) or ("subject", "day") with day nested in subject
- random_slopes: covariates with a subject-level random slope
- random_intercept: subject-level random intercept (default True)

A PriorSet maps coefficient names to PriorSpec dicts. Coefficients with
no entry fall back to DEFAULT_PRIOR.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple, TypedDict

from .errors import ModelSpecError


INTERCEPT = "Intercept"

# Columns that are always treated as categorical
CATEGORICAL_COLUMNS = ("subject", "day", "gender")

PRIOR_FAMILIES = ("normal", "student_t", "cauchy")


# =============================================================================
# ModelSpec
# =============================================================================

class ModelSpec(TypedDict):
    """
    One hierarchical linear model.

    Keys:
        name: Short model label (e.g. "M1")
        outcome: Response column
        fixed_effects: Ordered fixed-effect covariates
        groups: Grouping levels, outermost first
        random_slopes: Covariates with subject-level random slopes
        random_intercept: Whether subjects get a random intercept
        description: Free-text description
    """
    name: str
    outcome: str
    fixed_effects: Tuple[str, ...]
    groups: Tuple[str, ...]
    random_slopes: Tuple[str, ...]
    random_intercept: bool
    description: str


def create_model_spec(
    outcome: str,
    fixed_effects: Sequence[str],
    groups: Sequence[str] = ("subject",),
    random_slopes: Sequence[str] = (),
    random_intercept: bool = True,
    name: str = "",
    description: str = "",
) -> ModelSpec:
    """
    Create a validated ModelSpec.

    :param outcome: Response column
    :param fixed_effects: Fixed-effect covariates
    :param groups: ("subject",) or ("subject", "day")
    :param random_slopes: Covariates that also get a subject random slope
    :param random_intercept: Include a subject random intercept
    :param name: Model label
    :param description: Free-text description
    :returns: ModelSpec dictionary
    :raises ModelSpecError: If the structure is inconsistent
    """
    fixed_effects = tuple(fixed_effects)
    groups = tuple(groups)
    random_slopes = tuple(random_slopes)

    if not outcome:
        raise ModelSpecError("Outcome name must be non-empty")
    if outcome in fixed_effects:
        raise ModelSpecError(f"Outcome '{outcome}' cannot also be a fixed effect")
    if len(set(fixed_effects)) != len(fixed_effects):
        raise ModelSpecError(f"Duplicate fixed effects in {list(fixed_effects)}")
    if INTERCEPT in fixed_effects:
        raise ModelSpecError(f"'{INTERCEPT}' is reserved; the intercept is always included")

    if not 1 <= len(groups) <= 2:
        raise ModelSpecError(f"One or two grouping levels are supported, got {list(groups)}")
    if len(set(groups)) != len(groups):
        raise ModelSpecError(f"Duplicate grouping levels in {list(groups)}")
    overlap = set(groups) & (set(fixed_effects) | {outcome})
    if overlap:
        raise ModelSpecError(f"Grouping columns used as variables: {sorted(overlap)}")

    missing = [s for s in random_slopes if s not in fixed_effects]
    if missing:
        raise ModelSpecError(
            f"Random slopes {missing} must also appear in the fixed effects {list(fixed_effects)}"
        )
    if len(set(random_slopes)) != len(random_slopes):
        raise ModelSpecError(f"Duplicate random slopes in {list(random_slopes)}")
    if not random_intercept and not random_slopes and len(groups) == 1:
        raise ModelSpecError("Model has no random effects")

    return {
        "name": name or outcome,
        "outcome": outcome,
        "fixed_effects": fixed_effects,
        "groups": groups,
        "random_slopes": random_slopes,
        "random_intercept": bool(random_intercept),
        "description": description,
    }


def spec_columns(spec: ModelSpec) -> List[str]:
    """All data columns a model reads (outcome, covariates, groups)."""
    return [spec["outcome"], *spec["fixed_effects"], *spec["groups"]]


def fixed_formula(spec: ModelSpec, categorical: Sequence[str] = CATEGORICAL_COLUMNS) -> str:
    """statsmodels formula for the fixed part, e.g. 'y ~ x + C(gender)'."""
    terms = [f"C({fe})" if fe in categorical else fe for fe in spec["fixed_effects"]]
    rhs = " + ".join(terms) if terms else "1"
    return f"{spec['outcome']} ~ {rhs}"


def random_formula(
    spec: ModelSpec,
    slopes: Optional[Sequence[str]] = None,
    intercept: Optional[bool] = None,
) -> str:
    """
    statsmodels re_formula for the subject level.

    :param spec: Model specification
    :param slopes: Override the random slopes (used for LRT refits)
    :param intercept: Override the random intercept (used for LRT refits)
    """
    slopes = spec["random_slopes"] if slopes is None else tuple(slopes)
    intercept = spec["random_intercept"] if intercept is None else intercept
    lead = "1" if intercept else "0"
    return " + ".join([lead, *slopes])


def describe_model_spec(spec: ModelSpec) -> str:
    """lme4-style one-line description of the model."""
    parts = [f"({random_formula(spec)} | {spec['groups'][0]})"]
    if len(spec["groups"]) == 2:
        parts.append(f"(1 | {spec['groups'][0]}:{spec['groups'][1]})")
    fixed = " + ".join(spec["fixed_effects"]) or "1"
    return f"{spec['outcome']} ~ {fixed} + {' + '.join(parts)}"


# =============================================================================
# Priors
# =============================================================================

class PriorSpec(TypedDict):
    """
    Prior for one coefficient.

    Keys:
        family: "normal", "student_t" or "cauchy"
        mu: Location
        sigma: Scale (> 0)
        nu: Degrees of freedom (student_t only)
    """
    family: str
    mu: float
    sigma: float
    nu: Optional[float]


def create_prior(
    family: str = "normal",
    mu: float = 0.0,
    sigma: float = 1.0,
    nu: Optional[float] = None,
) -> PriorSpec:
    """
    Create a validated PriorSpec.

    :raises ModelSpecError: On unknown family or invalid parameters
    """
    if family not in PRIOR_FAMILIES:
        raise ModelSpecError(f"Unknown prior family '{family}'. Available: {list(PRIOR_FAMILIES)}")
    if not sigma > 0:
        raise ModelSpecError(f"Prior scale must be positive, got {sigma}")
    if family == "student_t":
        nu = 3.0 if nu is None else float(nu)
        if not nu > 0:
            raise ModelSpecError(f"Student-t degrees of freedom must be positive, got {nu}")
    else:
        nu = None
    return {"family": family, "mu": float(mu), "sigma": float(sigma), "nu": nu}


# Estimator fallback for coefficients without an explicit prior
DEFAULT_PRIOR: PriorSpec = create_prior("normal", 0.0, 10.0)


class PriorSet(TypedDict):
    """
    Named mapping of coefficient name to prior.

    Keys:
        name: Variant label ("non_informative" or "informed")
        priors: Coefficient name -> PriorSpec (reserved key: "Intercept")
    """
    name: str
    priors: Dict[str, PriorSpec]


def create_prior_set(name: str, priors: Dict[str, Any]) -> PriorSet:
    """
    Create a PriorSet from PriorSpec dicts or (family, mu, sigma[, nu]) tuples.

    Example:
        >>> create_prior_set("informed", {
        ...     "Intercept": ("student_t", 2.5, 1.0, 3),
        ...     "psychopathology": ("normal", 0.2, 0.1),
        ... })
    """
    parsed: Dict[str, PriorSpec] = {}
    for coef, value in priors.items():
        if isinstance(value, dict):
            parsed[coef] = create_prior(**value)
        else:
            parsed[coef] = create_prior(*value)
    return {"name": name, "priors": parsed}


def non_informative_prior_set(spec: ModelSpec) -> PriorSet:
    """Unit-scale normal priors centred at zero for every fixed effect."""
    coefs = [INTERCEPT, *spec["fixed_effects"]]
    return create_prior_set("non_informative", {c: ("normal", 0.0, 1.0) for c in coefs})


def resolve_prior(prior_set: Optional[PriorSet], coefficient: str) -> PriorSpec:
    """
    Look up the prior for a design-matrix coefficient.

    Categorical terms are matched on their base column, so a prior keyed
    "gender" applies to "C(gender)[T.male]".
    """
    if prior_set is None:
        return DEFAULT_PRIOR
    priors = prior_set["priors"]
    if coefficient in priors:
        return priors[coefficient]
    base = base_column(coefficient)
    return priors.get(base, DEFAULT_PRIOR)


def base_column(term: str) -> str:
    """Strip patsy decoration: 'C(gender)[T.male]' -> 'gender'."""
    if term.startswith("C(") and ")" in term:
        return term[2:term.index(")")]
    return term


def missing_priors(spec: ModelSpec, prior_set: PriorSet) -> List[str]:
    """Fixed-effect coefficients (intercept included) without an explicit prior."""
    return [c for c in [INTERCEPT, *spec["fixed_effects"]] if c not in prior_set["priors"]]
