from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List

import numpy as np
import pandas as pd

from .config import ID_COL, INFLUENCE_NUMERATOR
from .errors import DegenerateFitError
from .modeling import FittedModel, fit_frame
from .stats import generalized_cooks_distance

logger = logging.getLogger(__name__)


def influence_threshold(n: int) -> float:
    """Cook's distance cutoff 4/n for a fit on n observations."""
    if int(n) <= 0:
        raise ValueError(f"influence threshold needs n > 0 (got n={n})")
    return INFLUENCE_NUMERATOR / float(n)


@dataclass(frozen=True)
class InfluenceTable:
    """Per-language Cook's distance for one fitted model.

    `threshold` is computed from this fit's own n_obs.
    """

    model: str
    variant: str
    n_obs: int
    threshold: float
    table: pd.DataFrame = field(compare=False)

    @property
    def flagged(self) -> List[str]:
        return self.table.loc[self.table["influential"], "language"].astype(str).tolist()

    def most_influential(self) -> str:
        t = self.table.dropna(subset=["cooks_d"])
        if t.empty:
            raise ValueError(f"No finite Cook's distance for {self.model}")
        return str(t.sort_values(["cooks_d", "language"], ascending=[False, True]).iloc[0]["language"])


def _lmm_case_deletion(fitted: FittedModel) -> np.ndarray:
    """Refit without each row in turn; D_i against the full-fit covariance."""

    beta = fitted.fixed_params()
    cov = fitted.fixed_cov().to_numpy(dtype=float)
    data = fitted.data
    out = np.full(data.shape[0], np.nan, dtype=float)
    for i in range(data.shape[0]):
        sub = data.drop(index=i).reset_index(drop=True)
        try:
            refit = fit_frame(fitted.spec, sub, variant=f"{fitted.variant}-case{i}", emit_warnings=False)
        except DegenerateFitError as e:
            logger.warning(
                "Cook's distance undefined for %s in %s: %s",
                data.loc[i, ID_COL],
                fitted.name,
                e.reason,
            )
            continue
        beta_i = refit.fixed_params().reindex(beta.index)
        out[i] = generalized_cooks_distance(beta.to_numpy(), beta_i.to_numpy(dtype=float), cov)
    return out


def cooks_distance(fitted: FittedModel) -> InfluenceTable:
    """Cook's distance per observation of `fitted`, flagged against 4/n.

    Logistic models use statsmodels' closed-form GLM influence. Mixed
    models use case deletion: each language is removed, the model is
    refit on the same (unrescaled) rows, and the shift in fixed effects is
    measured in the metric of the full-fit covariance.
    """

    if fitted.spec.family == "logit":
        d = np.asarray(fitted.result.get_influence().cooks_distance[0], dtype=float)
    else:
        d = _lmm_case_deletion(fitted)

    thr = influence_threshold(fitted.n_obs)
    tab = pd.DataFrame(
        {
            "language": list(fitted.languages),
            "cooks_d": d,
            "threshold": thr,
        }
    )
    tab["influential"] = np.isfinite(tab["cooks_d"].to_numpy()) & (tab["cooks_d"].to_numpy() > thr)
    tab = tab.sort_values(["cooks_d", "language"], ascending=[False, True], na_position="last")
    tab = tab.reset_index(drop=True)

    n_flag = int(tab["influential"].sum())
    if n_flag:
        logger.info(
            "%s: %d influential observation(s) (D > %.4f): %s",
            fitted.name,
            n_flag,
            thr,
            tab.loc[tab["influential"], "language"].tolist(),
        )
    return InfluenceTable(model=fitted.name, variant=fitted.variant, n_obs=fitted.n_obs, threshold=thr, table=tab)


def influence_long_table(tables: Iterable[InfluenceTable]) -> pd.DataFrame:
    parts = []
    for t in tables:
        x = t.table.copy()
        x.insert(0, "n_obs", t.n_obs)
        x.insert(0, "variant", t.variant)
        x.insert(0, "model", t.model)
        parts.append(x)
    if not parts:
        return pd.DataFrame(columns=["model", "variant", "n_obs", "language", "cooks_d", "threshold", "influential"])
    return pd.concat(parts, axis=0, ignore_index=True)
