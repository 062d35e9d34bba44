from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping

import numpy as np
import pandas as pd

from .errors import DegenerateScalingError


@dataclass(frozen=True)
class Standardizer:
    """z-scaler fitted on one dataset variant.

    `names` maps each source column to its scaled column name. Mean and
    sample sd belong to the variant the scaler was fitted on and must not
    be reused on another variant.
    """

    names: Dict[str, str]
    mean_: pd.Series
    std_: pd.Series

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        out = df.copy()
        for c, scaled in self.names.items():
            out[scaled] = (df[c].astype(float) - float(self.mean_[c])) / float(self.std_[c])
        return out


def fit_standardizer(df: pd.DataFrame, names: Mapping[str, str]) -> Standardizer:
    """Fit mean / sample sd (ddof=1) per column.

    Raises
    ------
    DegenerateScalingError
        For a constant column, or one with fewer than two values.
    """

    names = dict(names)
    cols = list(names)
    values = df[cols].astype(float)
    mean_ = values.mean(axis=0)
    std_ = values.std(axis=0, ddof=1)
    for c in cols:
        sd = float(std_[c])
        if not np.isfinite(sd) or sd == 0.0:
            raise DegenerateScalingError(c, sd)
    return Standardizer(names=names, mean_=mean_, std_=std_)
