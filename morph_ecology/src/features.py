from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping, Optional

import pandas as pd

from .config import SCALED_COLUMNS, BinaryDefinition, binary_definitions
from .data import DatasetVariant, filter_languages
from .schema import require_columns
from .standardize import fit_standardizer

logger = logging.getLogger(__name__)


def add_binary_features(
    df: pd.DataFrame,
    definitions: Optional[Mapping[str, BinaryDefinition]] = None,
) -> pd.DataFrame:
    if definitions is None:
        definitions = binary_definitions()
    require_columns(df, sorted({d.source for d in definitions.values()}), stage="feature derivation")

    out = df.copy()
    for name, d in definitions.items():
        out[name] = d.func(df[d.source]).astype(int)
    return out


def add_scaled_features(df: pd.DataFrame, names: Optional[Mapping[str, str]] = None) -> pd.DataFrame:
    """Append z-scores computed on the rows of `df` only."""

    if names is None:
        names = SCALED_COLUMNS
    require_columns(df, list(names), stage="feature scaling")
    return fit_standardizer(df, names).transform(df)


def transform(df: pd.DataFrame) -> pd.DataFrame:
    """Derive every binary and scaled column; source columns are kept."""
    return add_scaled_features(add_binary_features(df))


def make_variant(cleaned: pd.DataFrame, name: str, *, exclude: Iterable[str] = ()) -> DatasetVariant:
    """Build a named variant from the cleaned table.

    Rows are filtered first, then every feature is derived on what is left,
    so scaling always reflects this variant's own mean and sd.
    """

    exclude = tuple(str(x) for x in exclude)
    rows = filter_languages(cleaned, exclude)
    variant = DatasetVariant(name=name, frame=transform(rows), excluded=exclude)
    logger.info("Variant '%s': %d languages (excluded: %s)", name, variant.n_obs, list(exclude) or "none")
    return variant


def derive_variant(base: DatasetVariant, name: str, *, exclude: Iterable[str] = ()) -> DatasetVariant:
    exclude = tuple(str(x) for x in exclude)
    rows = filter_languages(base.frame, exclude)
    return DatasetVariant(name=name, frame=transform(rows), excluded=base.excluded + exclude)


def scaling_summary(variant: DatasetVariant, names: Optional[Mapping[str, str]] = None) -> pd.DataFrame:
    """Mean / sd of each scaled column (should be 0 / 1 within tolerance)."""

    if names is None:
        names = SCALED_COLUMNS
    rows: Dict[str, Dict[str, float]] = {}
    for src, scaled in names.items():
        s = variant.frame[scaled].astype(float)
        rows[scaled] = {
            "variant": variant.name,
            "source": src,
            "source_mean": float(variant.frame[src].astype(float).mean()),
            "source_sd": float(variant.frame[src].astype(float).std(ddof=1)),
            "scaled_mean": float(s.mean()),
            "scaled_sd": float(s.std(ddof=1)),
        }
    return pd.DataFrame.from_dict(rows, orient="index").rename_axis("column").reset_index()
