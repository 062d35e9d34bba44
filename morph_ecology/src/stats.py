from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Tuple

import numpy as np
import pandas as pd
from scipy import stats

# Latent-scale residual variance of the logit link (pi^2 / 3).
LOGIT_LATENT_VARIANCE = math.pi ** 2 / 3.0


def tidy_coef_table(params: pd.Series, se: pd.Series, pvalues: pd.Series) -> pd.DataFrame:
    """Create a tidy coefficient table restricted to the terms in `params`."""
    terms = list(params.index)
    est = params.to_numpy(dtype=float)
    bse = se.reindex(terms).to_numpy(dtype=float)
    stat = est / np.where(bse == 0, np.nan, bse)
    p = pvalues.reindex(terms).to_numpy(dtype=float)
    return pd.DataFrame({"term": terms, "estimate": est, "se": bse, "stat": stat, "p_value": p})


def fixed_effect_variance(exog: np.ndarray, params: Iterable[float]) -> float:
    """Variance of the fixed-effect linear predictor X @ beta (ddof=1)."""
    eta = np.asarray(exog, dtype=float) @ np.asarray(list(params), dtype=float)
    if eta.size < 2:
        return float("nan")
    return float(np.var(eta, ddof=1))


def r2_nakagawa(var_fixed: float, var_random: float, var_resid: float) -> Tuple[float, float]:
    """Marginal and conditional R^2 (Nakagawa & Schielzeth 2013).

    marginal    = var_f / (var_f + var_u + var_e)
    conditional = (var_f + var_u) / (var_f + var_u + var_e)
    """

    var_random = max(float(var_random), 0.0)
    total = float(var_fixed) + var_random + float(var_resid)
    if not np.isfinite(total) or total <= 0:
        return float("nan"), float("nan")
    return float(var_fixed) / total, (float(var_fixed) + var_random) / total


def generalized_cooks_distance(beta: np.ndarray, beta_drop: np.ndarray, cov: np.ndarray) -> float:
    """(b - b_(i))' V^-1 (b - b_(i)) / p, with V the full-fit covariance.

    Uses a pseudo-inverse so a near-singular V still gives a finite value.
    """

    d = np.asarray(beta, dtype=float) - np.asarray(beta_drop, dtype=float)
    p = d.size
    if p == 0 or not np.all(np.isfinite(d)):
        return float("nan")
    v_inv = np.linalg.pinv(np.asarray(cov, dtype=float))
    return float(d @ v_inv @ d) / p


@dataclass(frozen=True)
class NormalityResult:
    """Shapiro-Wilk test plus shape descriptors for one set of values."""

    n: int
    statistic: float
    p_value: float
    skewness: float
    excess_kurtosis: float
    testable: bool


def shapiro_normality(values: Iterable[float]) -> NormalityResult:
    v = np.asarray(list(values), dtype=float)
    v = v[np.isfinite(v)]
    n = int(v.size)
    if n < 3:
        return NormalityResult(n, float("nan"), float("nan"), float("nan"), float("nan"), False)

    w, p = stats.shapiro(v)
    if np.ptp(v) == 0:
        sk, ku = float("nan"), float("nan")
    else:
        sk = float(stats.skew(v))
        ku = float(stats.kurtosis(v))
    return NormalityResult(n, float(w), float(p), sk, ku, True)
