import numpy as np
import pandas as pd
import pytest

from morph_ecology.src.data import (
    DatasetVariant,
    clean_table,
    filter_languages,
    load_language_table,
    replace_na_tokens,
)
from morph_ecology.src.errors import MissingDataExhaustionError


def _messy() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "language": ["a", "b", "c", "d"],
            "sparse_notes": ["x", np.nan, np.nan, "y"],
            "score": ["1.5", "N/A", "2.5", "3.0"],
            "terrain": ["Hill", "Valley", " N/A ", "Split"],
        }
    )


def test_clean_drops_columns_then_rows():
    out = clean_table(_messy())
    assert "sparse_notes" not in out.columns
    assert out["language"].tolist() == ["a", "d"]
    assert out.isna().sum().sum() == 0


def test_clean_coerces_numeric_text():
    out = clean_table(_messy())
    assert pd.api.types.is_numeric_dtype(out["score"])
    assert out["score"].tolist() == [1.5, 3.0]


def test_na_token_rewrite_targets_only_token():
    out = replace_na_tokens(_messy())
    assert out["score"].isna().tolist() == [False, True, False, False]
    assert out["terrain"].isna().tolist() == [False, False, True, False]
    assert out["sparse_notes"].isna().sum() == 2


def test_clean_is_idempotent(languages):
    once = clean_table(languages)
    twice = clean_table(once)
    pd.testing.assert_frame_equal(once, twice)


def test_clean_raises_when_every_column_has_gaps():
    df = pd.DataFrame({"a": [1.0, np.nan], "b": [np.nan, 2.0]})
    with pytest.raises(MissingDataExhaustionError) as exc:
        clean_table(df)
    assert exc.value.n_cols == 0


def test_clean_raises_when_every_row_has_na_token():
    df = pd.DataFrame({"a": ["N/A", "N/A"], "b": ["x", "y"]})
    with pytest.raises(MissingDataExhaustionError) as exc:
        clean_table(df)
    assert exc.value.n_rows == 0


def test_load_keeps_na_text(tmp_path):
    path = tmp_path / "t.tsv"
    path.write_text("language\tscore\tnotes\na\tN/A\t\nb\t2\tok\n", encoding="utf-8")
    raw = load_language_table(str(path))
    assert raw.loc[0, "score"] == "N/A"
    assert pd.isna(raw.loc[0, "notes"])


def test_variant_copies_frame(languages):
    v = DatasetVariant(name="full", frame=languages)
    languages.loc[0, "altitude"] = -1.0
    assert v.frame.loc[0, "altitude"] != -1.0
    assert v.n_obs == languages.shape[0]
    assert v.languages == sorted(languages["language"])


def test_filter_languages_ignores_unknown(languages):
    out = filter_languages(languages, ["Limbu", "not-a-language"])
    assert out.shape[0] == languages.shape[0] - 1
    assert "Limbu" not in set(out["language"])
