import numpy as np
import pandas as pd
import pytest

from morph_ecology.src.config import SCALED_COLUMNS
from morph_ecology.src.errors import DegenerateScalingError
from morph_ecology.src.features import (
    add_binary_features,
    add_scaled_features,
    derive_variant,
    make_variant,
    scaling_summary,
)
from morph_ecology.src.standardize import fit_standardizer


def test_hill_codings_example():
    df = pd.DataFrame(
        {
            "hill_valley": ["Hill", "Valley", "Split", "Hill", "Valley"],
            "agricultural_intensity": ["Intensive/irrigated", "Extensive", "Casual", "Extensive", "Intensive/irrigated"],
            "political_organization": ["State", "Band", "State", "Chiefdom", "Band"],
        }
    )
    out = add_binary_features(df)
    assert out["hill_binary"].tolist() == [1, 0, 0, 1, 0]
    assert out["hill_valley_binary"].tolist() == [1, 1, 0, 1, 1]
    assert out["agriculture_binary"].tolist() == [1, 0, 0, 0, 1]
    assert out["political_organization_binary"].tolist() == [1, 0, 1, 0, 0]
    assert out["hill_valley"].tolist() == df["hill_valley"].tolist()


def test_hill_codings_disagree_exactly_on_split(full_variant):
    f = full_variant.frame
    disagree = f["hill_binary"] != f["hill_valley_binary"]
    assert (disagree == (f["hill_valley"] == "Split")).all()


def test_binary_columns_have_no_nulls(full_variant):
    for c in ["hill_binary", "hill_valley_binary", "agriculture_binary", "political_organization_binary"]:
        assert full_variant.frame[c].notna().all()
        assert set(full_variant.frame[c].unique()) <= {0, 1}


def test_scaling_example():
    df = pd.DataFrame({"x": [10.0, 20.0, 30.0]})
    out = fit_standardizer(df, {"x": "scaled_x"}).transform(df)
    np.testing.assert_allclose(out["scaled_x"].to_numpy(), [-1.0, 0.0, 1.0])


def test_scaled_columns_are_standard(full_variant):
    summary = scaling_summary(full_variant)
    assert set(summary["column"]) == set(SCALED_COLUMNS.values())
    np.testing.assert_allclose(summary["scaled_mean"], 0.0, atol=1e-12)
    np.testing.assert_allclose(summary["scaled_sd"], 1.0, rtol=1e-12)


def test_constant_column_is_reported():
    df = pd.DataFrame({"altitude": [100.0, 100.0, 100.0], "population": [1.0, 2.0, 3.0]})
    with pytest.raises(DegenerateScalingError) as exc:
        add_scaled_features(df, {"population": "scaled_population", "altitude": "scaled_altitude"})
    assert exc.value.column == "altitude"


def test_single_row_cannot_be_scaled():
    with pytest.raises(DegenerateScalingError):
        fit_standardizer(pd.DataFrame({"x": [1.0]}), {"x": "scaled_x"})


def test_scaling_recomputed_per_variant(languages, full_variant):
    sens = make_variant(languages, "sensitivity", exclude=["Limbu"])
    assert sens.n_obs == full_variant.n_obs - 1
    assert sens.excluded == ("Limbu",)

    summary = scaling_summary(sens)
    np.testing.assert_allclose(summary["scaled_mean"], 0.0, atol=1e-12)
    np.testing.assert_allclose(summary["scaled_sd"], 1.0, rtol=1e-12)

    merged = full_variant.frame.merge(sens.frame, on="language", suffixes=("_full", "_sens"))
    assert not np.allclose(merged["scaled_altitude_full"], merged["scaled_altitude_sens"])


def test_derive_variant_matches_make_variant(languages, full_variant):
    a = derive_variant(full_variant, "sensitivity", exclude=["Limbu"])
    b = make_variant(languages, "sensitivity", exclude=["Limbu"])
    pd.testing.assert_frame_equal(a.frame, b.frame)


def test_subfamily_passes_through(languages, full_variant):
    pd.testing.assert_series_equal(
        full_variant.frame["subfamily"], languages["subfamily"].reset_index(drop=True)
    )


def test_transform_does_not_touch_input(languages):
    before = languages.copy()
    make_variant(languages, "full")
    pd.testing.assert_frame_equal(languages, before)
