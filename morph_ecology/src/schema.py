from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional

import pandas as pd

from .config import CANONICAL_RENAMES
from .errors import SchemaResolutionError

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[\s?()/\-]+")
_INVALID = re.compile(r"[^0-9A-Za-z_]")
_UNDERSCORES = re.compile(r"_+")


def normalize_header(header, renames: Optional[Mapping[str, str]] = None) -> str:
    """Rewrite one raw header into the canonical snake_case vocabulary.

    Never raises: any input (including non-strings) yields a best-effort
    identifier, "unnamed" when nothing survives.
    """

    if renames is None:
        renames = CANONICAL_RENAMES

    s = "" if header is None else str(header)
    s = s.replace("+", "_plus_")
    s = _SEPARATORS.sub("_", s)
    s = _INVALID.sub("", s)
    s = _UNDERSCORES.sub("_", s).strip("_").lower()
    if not s:
        s = "unnamed"
    return renames.get(s, s)


def normalize_columns(df: pd.DataFrame, renames: Optional[Mapping[str, str]] = None) -> pd.DataFrame:
    """Return a copy of `df` with canonical column names.

    Collisions after normalization get numeric suffixes (`_2`, `_3`, ...)
    so no column is silently overwritten.
    """

    seen: Dict[str, int] = {}
    cols: List[str] = []
    for raw in df.columns:
        name = normalize_header(raw, renames)
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        seen.setdefault(name, 1)
        cols.append(name)

    changed = [(str(a), b) for a, b in zip(df.columns, cols) if str(a) != b]
    if changed:
        logger.debug("Renamed %d column(s): %s", len(changed), changed)

    out = df.copy()
    out.columns = cols
    return out


def require_columns(df: pd.DataFrame, columns: Iterable[str], *, stage: str = "normalization") -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise SchemaResolutionError(missing, stage=stage)
