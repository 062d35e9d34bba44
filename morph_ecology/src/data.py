from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import ID_COL, NA_TOKENS
from .errors import MissingDataExhaustionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatasetVariant:
    """Named, immutable snapshot of the language table.

    The frame is copied on construction; every stage that needs a changed
    table builds a new variant instead of editing this one.
    """

    name: str
    frame: pd.DataFrame
    excluded: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "frame", self.frame.copy().reset_index(drop=True))
        object.__setattr__(self, "excluded", tuple(str(x) for x in self.excluded))

    @property
    def n_obs(self) -> int:
        return int(self.frame.shape[0])

    @property
    def languages(self) -> List[str]:
        return sorted(self.frame[ID_COL].astype(str).unique().tolist())


def coerce_numeric(x) -> pd.Series:
    if isinstance(x, pd.Series):
        return pd.to_numeric(x, errors="coerce")
    return pd.to_numeric(pd.Series(x), errors="coerce")


def load_language_table(path: str) -> pd.DataFrame:
    """Read the raw tab-separated language table.

    Only empty cells are read as missing. The literal "N/A" text is kept
    so that cleaning can treat it separately from truly absent values.
    """

    raw = pd.read_csv(path, sep="\t", keep_default_na=False, na_values=[""])
    logger.info("Loaded %s: %d rows x %d columns", path, raw.shape[0], raw.shape[1])
    return raw


def drop_incomplete_columns(df: pd.DataFrame) -> pd.DataFrame:
    incomplete = [c for c in df.columns if df[c].isna().any()]
    if incomplete:
        logger.info("Dropping %d column(s) with missing values: %s", len(incomplete), incomplete)
    return df.drop(columns=incomplete)


def replace_na_tokens(df: pd.DataFrame, tokens: Sequence[str] = NA_TOKENS) -> pd.DataFrame:
    token_set = {str(t) for t in tokens}
    out = df.copy()
    for c in out.columns:
        if pd.api.types.is_numeric_dtype(out[c]):
            continue
        hit = out[c].map(lambda v: isinstance(v, str) and v.strip() in token_set)
        if hit.any():
            out[c] = out[c].mask(hit.astype(bool), np.nan)
    return out


def drop_incomplete_rows(df: pd.DataFrame) -> pd.DataFrame:
    out = df.dropna(axis=0, how="any")
    n_dropped = int(df.shape[0] - out.shape[0])
    if n_dropped:
        logger.info("Dropping %d row(s) with missing values", n_dropped)
    return out.reset_index(drop=True)


def coerce_numeric_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Convert text columns whose every value parses as a number."""

    out = df.copy()
    for c in out.columns:
        if pd.api.types.is_numeric_dtype(out[c]):
            continue
        conv = coerce_numeric(out[c])
        if conv.notna().all():
            out[c] = conv
    return out


def clean_table(df: pd.DataFrame, *, na_tokens: Sequence[str] = NA_TOKENS) -> pd.DataFrame:
    """Column filter, N/A token rewrite, row filter, numeric coercion.

    Raises
    ------
    MissingDataExhaustionError
        If no row or no column survives.
    """

    out = drop_incomplete_columns(df)
    out = replace_na_tokens(out, na_tokens)
    out = drop_incomplete_rows(out)
    if out.shape[0] == 0 or out.shape[1] == 0:
        raise MissingDataExhaustionError(out.shape[0], out.shape[1])
    out = coerce_numeric_columns(out)
    logger.info("Cleaned table: %d rows x %d columns", out.shape[0], out.shape[1])
    return out


def filter_languages(df: pd.DataFrame, exclude: Iterable[str]) -> pd.DataFrame:
    excl = {str(x) for x in exclude}
    if not excl:
        return df.copy()
    ids = df[ID_COL].astype(str)
    unknown = sorted(excl - set(ids))
    if unknown:
        logger.warning("Excluded language(s) not present in data: %s", unknown)
    return df.loc[~ids.isin(excl)].reset_index(drop=True)
