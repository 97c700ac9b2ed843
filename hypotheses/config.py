"""
Hypothesis Configuration
========================

Declarative definitions of the preregistered models (M1-M6) and
hypotheses (H1-H10).

This module centralizes the statistical design to:
1. Keep model structures and priors as data, not code
2. Enable batch processing via the runner
3. Document the preregistration in one place

Each model is a ModelConfig dict with:
- spec: ModelSpec (outcome, fixed effects, random slope, grouping)
- priors: {"non_informative": PriorSet, "informed": PriorSet}
- description: Scientific rationale

Each hypothesis is a HypothesisConfig dict with:
- name: Short descriptive name
- model: Model number (None = not estimated by the confirmatory models)
- h0, h1: Hypothesis texts for the results table
- coefficient: Fixed effect under test
- direction: "greater", "less" or "equal" (null hypothesis)
- frequentist_test: "wald" (default) or "lrt" (random-slope removal)
- description: Full rationale

All continuous covariates are z-scored, so informed prior locations and
scales are in outcome units per SD of the covariate.
"""

from typing import Dict, Any, List

from esm_stats import create_model_spec, create_prior_set, non_informative_prior_set


ModelConfig = Dict[str, Any]
HypothesisConfig = Dict[str, Any]

COVARIATES = ["age", "gender"]

# Informed priors for the control covariates, shared by all models: small
# effects centred at zero (outcome units per SD of age; male vs female)
COVARIATE_PRIORS = {
    "age": ("normal", 0.0, 0.2),
    "gender": ("normal", 0.0, 0.3),
}


def _model(
    model_id: int,
    outcome: str,
    predictors: List[str],
    random_slope: str,
    informed: Dict[str, Any],
    description: str,
) -> ModelConfig:
    spec = create_model_spec(
        outcome=outcome,
        fixed_effects=predictors + COVARIATES,
        groups=("subject",),
        random_slopes=[random_slope],
        name=f"M{model_id}",
        description=description.strip(),
    )
    return {
        "id": model_id,
        "spec": spec,
        "priors": {
            "non_informative": non_informative_prior_set(spec),
            "informed": create_prior_set("informed", {**COVARIATE_PRIORS, **informed}),
        },
        "description": description,
    }


MODELS: Dict[int, ModelConfig] = {
    # =========================================================================
    # M1: Sharing of negative events
    # =========================================================================
    1: _model(
        1,
        outcome="share_neg",
        predictors=["psychopathology", "neg_intensity"],
        random_slope="neg_intensity",
        informed={
            "Intercept": ("student_t", 2.0, 1.0, 3),
            "psychopathology": ("normal", 0.15, 0.10),
            "neg_intensity": ("normal", 0.30, 0.10),
        },
        description="""
        share_neg ~ psychopathology + neg_intensity + age + gender
                    + (1 + neg_intensity | subject)
        """,
    ),
    # =========================================================================
    # M2: Sharing of positive events
    # =========================================================================
    2: _model(
        2,
        outcome="share_pos",
        predictors=["psychopathology", "pos_intensity"],
        random_slope="pos_intensity",
        informed={
            "Intercept": ("student_t", 2.5, 1.0, 3),
            "psychopathology": ("normal", -0.15, 0.10),
            "pos_intensity": ("normal", 0.35, 0.10),
        },
        description="""
        share_pos ~ psychopathology + pos_intensity + age + gender
                    + (1 + pos_intensity | subject)
        """,
    ),
    # =========================================================================
    # M3: Rumination about negative events
    # =========================================================================
    3: _model(
        3,
        outcome="rumination",
        predictors=["psychopathology", "neg_intensity"],
        random_slope="neg_intensity",
        informed={
            "Intercept": ("student_t", 2.5, 1.0, 3),
            "psychopathology": ("normal", 0.30, 0.10),
            "neg_intensity": ("normal", 0.40, 0.10),
        },
        description="""
        rumination ~ psychopathology + neg_intensity + age + gender
                     + (1 + neg_intensity | subject)
        """,
    ),
    # =========================================================================
    # M4: Savouring of positive events
    # =========================================================================
    4: _model(
        4,
        outcome="savouring",
        predictors=["psychopathology", "pos_intensity"],
        random_slope="pos_intensity",
        informed={
            "Intercept": ("student_t", 3.0, 1.0, 3),
            "psychopathology": ("normal", -0.25, 0.10),
            "pos_intensity": ("normal", 0.40, 0.10),
        },
        description="""
        savouring ~ psychopathology + pos_intensity + age + gender
                    + (1 + pos_intensity | subject)
        """,
    ),
    # =========================================================================
    # M5: Sharing and rumination
    # =========================================================================
    5: _model(
        5,
        outcome="rumination",
        predictors=["share_neg", "psychopathology", "neg_intensity"],
        random_slope="share_neg",
        informed={
            "Intercept": ("student_t", 2.5, 1.0, 3),
            "share_neg": ("normal", 0.20, 0.10),
            "psychopathology": ("normal", 0.30, 0.10),
            "neg_intensity": ("normal", 0.40, 0.10),
        },
        description="""
        rumination ~ share_neg + psychopathology + neg_intensity + age + gender
                     + (1 + share_neg | subject)
        """,
    ),
    # =========================================================================
    # M6: Sharing and savouring
    # =========================================================================
    6: _model(
        6,
        outcome="savouring",
        predictors=["share_pos", "psychopathology", "pos_intensity"],
        random_slope="share_pos",
        informed={
            "Intercept": ("student_t", 3.0, 1.0, 3),
            "share_pos": ("normal", 0.25, 0.10),
            "psychopathology": ("normal", -0.25, 0.10),
            "pos_intensity": ("normal", 0.40, 0.10),
        },
        description="""
        savouring ~ share_pos + psychopathology + pos_intensity + age + gender
                    + (1 + share_pos | subject)
        """,
    ),
}


HYPOTHESES: Dict[int, HypothesisConfig] = {
    1: {
        "name": "Psychopathology -> sharing negative events",
        "model": 1,
        "coefficient": "psychopathology",
        "direction": "greater",
        "h0": "b_psychopathology <= 0",
        "h1": "b_psychopathology > 0",
        "description": """
        People with higher psychopathology scores share negative daily events
        more often (social sharing as a bid for support).
        """,
    },
    2: {
        "name": "Psychopathology -> sharing positive events",
        "model": 2,
        "coefficient": "psychopathology",
        "direction": "less",
        "h0": "b_psychopathology >= 0",
        "h1": "b_psychopathology < 0",
        "description": """
        People with higher psychopathology scores share positive daily events
        less often (dampened capitalization).
        """,
    },
    3: {
        "name": "Psychopathology -> rumination",
        "model": 3,
        "coefficient": "psychopathology",
        "direction": "greater",
        "h0": "b_psychopathology <= 0",
        "h1": "b_psychopathology > 0",
        "description": """
        Higher psychopathology predicts more rumination about the day's most
        negative event, controlling for its intensity.
        """,
    },
    4: {
        "name": "Psychopathology -> savouring",
        "model": 4,
        "coefficient": "psychopathology",
        "direction": "less",
        "h0": "b_psychopathology >= 0",
        "h1": "b_psychopathology < 0",
        "description": """
        Higher psychopathology predicts less savouring of the day's most
        positive event, controlling for its intensity.
        """,
    },
    5: {
        "name": "Sharing negative events -> rumination",
        "model": 5,
        "coefficient": "share_neg",
        "direction": "greater",
        "h0": "b_share_neg <= 0",
        "h1": "b_share_neg > 0",
        "description": """
        On days when a negative event is shared more, people ruminate more
        about it (co-rumination).
        """,
    },
    6: {
        "name": "Sharing positive events -> savouring",
        "model": 6,
        "coefficient": "share_pos",
        "direction": "greater",
        "frequentist_test": "lrt",
        "h0": "b_share_pos <= 0",
        "h1": "b_share_pos > 0",
        "description": """
        On days when a positive event is shared more, people savour it more
        (capitalization). The frequentist row reports the likelihood-ratio
        test for removing the share_pos random slope (two-sided variance
        component test); the Bayesian rows test the fixed slope.
        """,
    },
    7: {
        "name": "Age and sharing negative events (null)",
        "model": 1,
        "coefficient": "age",
        "direction": "equal",
        "h0": "b_age = 0",
        "h1": "b_age != 0",
        "description": """
        Age is unrelated to sharing of negative events once psychopathology
        and event intensity are accounted for.
        """,
    },
    8: {
        "name": "Psychopathology x intensity -> sharing negative events",
        "model": None,
        "coefficient": None,
        "direction": "greater",
        "h0": "b_psychopathology:neg_intensity <= 0",
        "h1": "b_psychopathology:neg_intensity > 0",
        "description": """
        Psychopathology strengthens the within-person link between negative
        event intensity and sharing. Requires a cross-level interaction that
        the confirmatory models do not estimate.
        """,
    },
    9: {
        "name": "Psychopathology x sharing -> rumination",
        "model": None,
        "coefficient": None,
        "direction": "greater",
        "h0": "b_psychopathology:share_neg <= 0",
        "h1": "b_psychopathology:share_neg > 0",
        "description": """
        The sharing-rumination link is stronger at higher psychopathology.
        Not estimated by the confirmatory models.
        """,
    },
    10: {
        "name": "Psychopathology x sharing -> savouring",
        "model": None,
        "coefficient": None,
        "direction": "less",
        "h0": "b_psychopathology:share_pos >= 0",
        "h1": "b_psychopathology:share_pos < 0",
        "description": """
        The sharing-savouring link is weaker at higher psychopathology.
        Not estimated by the confirmatory models.
        """,
    },
}


def get_model(model_id: int) -> ModelConfig:
    """Get configuration for a specific model."""
    if model_id not in MODELS:
        raise ValueError(f"Unknown model: {model_id}. Available: {list(MODELS.keys())}")
    return MODELS[model_id]


def get_hypothesis(hypothesis_id: int) -> HypothesisConfig:
    """Get configuration for a specific hypothesis."""
    if hypothesis_id not in HYPOTHESES:
        raise ValueError(f"Unknown hypothesis: {hypothesis_id}. Available: {list(HYPOTHESES.keys())}")
    return HYPOTHESES[hypothesis_id]


def list_hypotheses() -> List[int]:
    """List all hypothesis IDs."""
    return list(HYPOTHESES.keys())


def hypotheses_for_model(model_id: int) -> List[int]:
    """Hypotheses tested on a given model."""
    return [h_id for h_id, cfg in HYPOTHESES.items() if cfg["model"] == model_id]
