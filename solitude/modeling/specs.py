"""
Model specifications for the four research questions.

A ModelSpec is an immutable value (outcome, variant, fixed terms, random
terms) that renders to both formula dialects used downstream:

    fixed_formula   "satisfaction ~ ltime_pm + ltime_pm2 + ..."     (statsmodels)
    re_formula      "1 + satisfaction_lag_pmc + ltime_pmc + ..."     (statsmodels)
    bambi_formula   "satisfaction ~ ... + (1 + ... | participant_id)"  (bambi)

Variants:
    mar            outcome ~ day, random intercept + day slope
    unconditional  outcome ~ 1, random intercept (ICC)
    rq1            between/within linear + quadratic solitude time, lagged outcome
    rq3a           within-person time terms x within-person choice
    rq3b           within-person time terms x subject-level motivation
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Tuple

from ..preprocessing.constants import (
    CHOICE_COL,
    CONDITIONAL_OUTCOMES,
    DAY_COL,
    GMC_SUFFIX,
    MOTIVATION_COL,
    OUTCOMES,
    PARTICIPANT_COL,
    TIME_COL,
)
from ..preprocessing.features import (
    between_name,
    lag_name,
    quadratic_name,
    within_name,
)


VARIANTS = ("mar", "unconditional", "rq1", "rq3a", "rq3b")

VARIANT_LABELS = {
    "mar": "MAR check",
    "unconditional": "Unconditional",
    "rq1": "RQ1: Tipping point",
    "rq3a": "RQ3a: Choiceful motivation",
    "rq3b": "RQ3b: Self-determined motivation",
}

# Research questions whose time coefficients go into the summary table
TIME_EFFECT_VARIANTS = ("rq1", "rq3a", "rq3b")


@dataclass(frozen=True)
class ModelSpec:
    """Immutable multilevel model specification (usable as a cache key)."""
    outcome: str
    variant: str
    fixed_terms: Tuple[str, ...]
    random_terms: Tuple[str, ...]
    group: str = PARTICIPANT_COL

    @property
    def label(self) -> str:
        return f"{self.outcome}:{self.variant}"

    @property
    def fixed_formula(self) -> str:
        rhs = " + ".join(self.fixed_terms) if self.fixed_terms else "1"
        return f"{self.outcome} ~ {rhs}"

    @property
    def re_formula(self) -> str:
        return " + ".join(("1",) + self.random_terms)

    @property
    def bambi_formula(self) -> str:
        return f"{self.fixed_formula} + ({self.re_formula} | {self.group})"

    @property
    def predictors(self) -> Tuple[str, ...]:
        """Data columns referenced by fixed or random terms (no duplicates)."""
        seen: List[str] = []
        for term in self.fixed_terms + self.random_terms:
            for col in term.split(":"):
                if col not in seen:
                    seen.append(col)
        return tuple(seen)

    @property
    def columns(self) -> Tuple[str, ...]:
        return (self.outcome, self.group) + self.predictors

    @property
    def has_covariates(self) -> bool:
        return bool(self.fixed_terms)

    def cache_token(self) -> str:
        """Stable text form; identical specs give identical tokens."""
        return f"{self.variant}|{self.fixed_formula}|{self.re_formula}|{self.group}"


def resolve_outcome(outcome: str) -> str:
    """Map a display name ('Satisfaction') or column ('satisfaction') to the column."""
    lowered = {name.lower(): col for name, col in OUTCOMES.items()}
    key = str(outcome).strip().lower()
    if key not in lowered:
        raise ValueError(f"Unknown outcome: {outcome}. Valid outcomes: {list(OUTCOMES)}")
    return lowered[key]


def _interactions(terms: Tuple[str, ...], moderator: str) -> Tuple[str, ...]:
    """Expand ``(a + b) * m`` into a, b, m, a:m, b:m."""
    return terms + (moderator,) + tuple(f"{term}:{moderator}" for term in terms)


def build_model_spec(outcome: str, variant: str) -> ModelSpec:
    """
    Build the specification for one outcome and research-question variant.

    Args:
        outcome: One of Satisfaction, Lonely, Alonely, Stress, Autonomy, LTime
            (case-insensitive; LTime only for 'unconditional')
        variant: One of VARIANTS

    Returns:
        ModelSpec
    """
    column = resolve_outcome(outcome)
    if variant not in VARIANTS:
        raise ValueError(f"Unknown variant: {variant}. Valid variants: {VARIANTS}")
    if column not in CONDITIONAL_OUTCOMES and variant != "unconditional":
        raise ValueError(f"Outcome {outcome} is only modelled with the unconditional variant")

    time_within = (within_name(TIME_COL), quadratic_name(within_name(TIME_COL)))
    time_between = (between_name(TIME_COL), quadratic_name(between_name(TIME_COL)))
    lag_within = within_name(lag_name(column)) if column in CONDITIONAL_OUTCOMES else None

    if variant == "mar":
        fixed: Tuple[str, ...] = (DAY_COL,)
        random: Tuple[str, ...] = (DAY_COL,)
    elif variant == "unconditional":
        fixed = ()
        random = ()
    elif variant == "rq1":
        fixed = time_between + (lag_within,) + time_within
        random = (lag_within,) + time_within
    elif variant == "rq3a":
        choice_within = within_name(CHOICE_COL)
        fixed = (lag_within,) + _interactions(time_within, choice_within)
        random = fixed
    else:
        # subject-level moderator: no random slope, it does not vary within subject
        motivation = f"{MOTIVATION_COL}{GMC_SUFFIX}"
        fixed = (lag_within,) + _interactions(time_within, motivation)
        random = (lag_within,) + time_within

    return ModelSpec(outcome=column, variant=variant, fixed_terms=fixed, random_terms=random)


def research_plan() -> Iterator[Tuple[str, str]]:
    """Default (outcome, variant) pairs fitted in one full report build."""
    for column in CONDITIONAL_OUTCOMES:
        for variant in VARIANTS:
            yield column, variant
    for column in OUTCOMES.values():
        if column not in CONDITIONAL_OUTCOMES:
            yield column, "unconditional"
