from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from morph_ecology.src.features import make_variant

TERRAIN = ["Hill", "Valley", "Split"]
AGRICULTURE = ["Intensive/irrigated", "Extensive", "Casual"]
POLITY = ["State", "Chiefdom", "Band"]


def synthetic_languages(n_groups: int = 8, per_group: int = 5, seed: int = 0) -> pd.DataFrame:
    """Canonical, already-clean language table with a real hill effect."""

    rng = np.random.default_rng(seed)
    rows = []
    for g in range(n_groups):
        sub_effect = rng.normal(0.0, 0.8)
        for k in range(per_group):
            i = g * per_group + k
            terrain = TERRAIN[(k + g) % 3]
            hill = 1.0 if terrain == "Hill" else 0.0
            altitude = 400.0 + 400.0 * hill + rng.normal(0.0, 300.0)
            rows.append(
                {
                    "language": "Limbu" if i == 0 else f"lang_{i:03d}",
                    "subfamily": f"sub_{g}",
                    "family": "Sino-Tibetan",
                    "hill_valley": terrain,
                    "cell_complexity": 20.0 + 4.0 * hill + sub_effect + rng.normal(0.0, 1.5),
                    "form_complexity": 12.0 + sub_effect + rng.normal(0.0, 1.5),
                    "case_marking_complexity": 5.0 + 3.0 * hill + sub_effect + rng.normal(0.0, 1.0),
                    "altitude": altitude,
                    "stdev_of_slope": 3.0 + 1.0 * hill + rng.normal(0.0, 1.0),
                    "population": float(np.exp(rng.normal(9.0, 1.2))),
                    "L2": "Yes" if (i % 4 == 0) else "No",
                    "agricultural_intensity": AGRICULTURE[i % 3],
                    "political_organization": POLITY[(i // 2) % 3],
                }
            )
    return pd.DataFrame(rows)


RAW_HEADERS = {
    "language": "Language name",
    "subfamily": "Language subfamily",
    "family": "Language family",
    "hill_valley": "Hill/Valley?",
    "cell_complexity": "Cell complexity (number of paradigm cells)",
    "form_complexity": "Form complexity",
    "case_marking_complexity": "Case marking complexity (distinctions + optionality)",
    "altitude": "Altitude (m)",
    "stdev_of_slope": "Standard deviation of slope",
    "population": "Speaker population",
    "L2": "L2?",
    "agricultural_intensity": "Intensity of agriculture",
    "political_organization": "Political organisation",
}


@pytest.fixture
def languages() -> pd.DataFrame:
    return synthetic_languages()


@pytest.fixture
def small_languages() -> pd.DataFrame:
    return synthetic_languages(n_groups=6, per_group=4, seed=1)


@pytest.fixture
def full_variant(languages):
    return make_variant(languages, "full")


@pytest.fixture
def raw_tsv(tmp_path, small_languages):
    """Raw table with free-form headers, a sparse notes column and one N/A cell."""

    raw = small_languages.rename(columns=RAW_HEADERS)
    raw["Notes"] = ""
    raw.loc[0, "Notes"] = "checked by fieldworker"
    raw["Form complexity"] = raw["Form complexity"].map(lambda v: f"{v:.4f}")
    raw.loc[5, "Form complexity"] = "N/A"
    path = tmp_path / "languages.tsv"
    raw.to_csv(path, sep="\t", index=False)
    return str(path)
