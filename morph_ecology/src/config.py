from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

import pandas as pd


# Normalized long-form header -> canonical short name. Keys are what
# `schema.normalize_header` produces *before* this table is applied.
CANONICAL_RENAMES: Dict[str, str] = {
    "language_name": "language",
    "glottolog_name": "language",
    "language_subfamily": "subfamily",
    "language_family": "family",
    "hill_or_valley": "hill_valley",
    "hill_valley_split": "hill_valley",
    "cell_complexity_number_of_paradigm_cells": "cell_complexity",
    "form_complexity_number_of_distinct_forms": "form_complexity",
    "case_marking_complexity_distinctions_plus_optionality": "case_marking_complexity",
    "altitude_m": "altitude",
    "mean_altitude_m": "altitude",
    "standard_deviation_of_slope": "stdev_of_slope",
    "stdev_slope": "stdev_of_slope",
    "speaker_population": "population",
    "number_of_speakers": "population",
    "l2": "L2",
    "l2_speakers": "L2",
    "intensity_of_agriculture": "agricultural_intensity",
    "political_organisation": "political_organization",
}

ID_COL = "language"
GROUP_COL = "subfamily"

COMPLEXITY_COLS: Tuple[str, ...] = ("cell_complexity", "form_complexity", "case_marking_complexity")

REQUIRED_COLUMNS: Tuple[str, ...] = (
    ID_COL,
    GROUP_COL,
    "hill_valley",
    *COMPLEXITY_COLS,
    "altitude",
    "stdev_of_slope",
    "population",
    "L2",
    "agricultural_intensity",
    "political_organization",
)

# Textual "not applicable" markers rewritten to missing during cleaning.
NA_TOKENS: Tuple[str, ...] = ("N/A",)

# Source column -> z-scaled column name.
SCALED_COLUMNS: Dict[str, str] = {
    "population": "scaled_population",
    "altitude": "scaled_altitude",
    "stdev_of_slope": "scaled_stdev_slope",
    "case_marking_complexity": "scaled_case_marking_complexity",
    "form_complexity": "scaled_form_complexity",
    "cell_complexity": "scaled_cell_complexity",
}

# Predictors that enter model formulas as categorical factors.
CATEGORICAL_PREDICTORS: Tuple[str, ...] = ("hill_valley", "L2")

# Categorical predictor -> (reference level, focal level). Treatment coding
# uses the alphabetically first level as reference, so the reference here
# must sort first among the observed levels. The focal contrast is the one
# reported, tested for significance and tracked by leave-one-out.
CATEGORICAL_CONTRASTS: Dict[str, Tuple[str, str]] = {
    "hill_valley": ("Hill", "Valley"),
    "L2": ("No", "Yes"),
}

ALPHA = 0.05

# Influence cutoff is INFLUENCE_NUMERATOR / n.
INFLUENCE_NUMERATOR = 4.0

# Random-intercept variance at or below this is reported as a boundary fit.
SINGULAR_VARIANCE_TOL = 1e-6


@dataclass(frozen=True)
class BinaryDefinition:
    """A 0/1 indicator derived from one categorical source column."""

    name: str
    source: str
    func: Callable[[pd.Series], pd.Series]
    description: str


def _text(x: pd.Series) -> pd.Series:
    return x.astype(str).str.strip()


def binary_definitions() -> Dict[str, BinaryDefinition]:
    """Return the binary indicator catalog.

    `hill_binary` and `hill_valley_binary` are two different codings of
    the same terrain column and must coexist: they disagree exactly on the
    Split rows.
    """

    def intensive_agriculture(x: pd.Series) -> pd.Series:
        return _text(x) == "Intensive/irrigated"

    def state_level(x: pd.Series) -> pd.Series:
        return _text(x) == "State"

    def hill_only(x: pd.Series) -> pd.Series:
        # Valley and Split collapse together.
        return _text(x) == "Hill"

    def not_split(x: pd.Series) -> pd.Series:
        return _text(x) != "Split"

    return {
        "agriculture_binary": BinaryDefinition(
            name="agriculture_binary",
            source="agricultural_intensity",
            func=intensive_agriculture,
            description="1 iff agricultural_intensity == 'Intensive/irrigated'.",
        ),
        "political_organization_binary": BinaryDefinition(
            name="political_organization_binary",
            source="political_organization",
            func=state_level,
            description="1 iff political_organization == 'State'.",
        ),
        "hill_binary": BinaryDefinition(
            name="hill_binary",
            source="hill_valley",
            func=hill_only,
            description="1 iff hill_valley == 'Hill' (Valley and Split -> 0).",
        ),
        "hill_valley_binary": BinaryDefinition(
            name="hill_valley_binary",
            source="hill_valley",
            func=not_split,
            description="0 iff hill_valley == 'Split' (Hill and Valley -> 1).",
        ),
    }


OUTLIER_MODES: Tuple[str, ...] = ("explicit", "most_influential", "flagged")


@dataclass(frozen=True)
class OutlierRule:
    """Which languages are removed to build the sensitivity variant.

    mode:
        "explicit"          drop exactly `languages`
        "most_influential"  drop the single highest-Cook's-distance language
                            of `reference_model`
        "flagged"           drop every language flagged (D > 4/n) by
                            `reference_model`
    """

    mode: str = "explicit"
    languages: Tuple[str, ...] = ("Limbu",)
    reference_model: Optional[str] = None

    def __post_init__(self) -> None:
        if self.mode not in OUTLIER_MODES:
            raise ValueError(f"Unknown outlier mode '{self.mode}'. Use one of {OUTLIER_MODES}.")
        if self.mode != "explicit" and not self.reference_model:
            raise ValueError(f"Outlier mode '{self.mode}' needs a reference_model.")


@dataclass(frozen=True)
class PipelineConfig:
    input_tsv: str
    output_dir: Optional[str] = None
    outlier_rule: OutlierRule = field(default_factory=OutlierRule)
    loo_models: Optional[Tuple[str, ...]] = None
    alpha: float = ALPHA
    n_jobs: int = 1
    fit_timeout: Optional[float] = None
    figures: bool = True
    dpi: int = 300
