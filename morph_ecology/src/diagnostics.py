from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

import pandas as pd

from .config import ALPHA
from .modeling import FittedModel
from .stats import NormalityResult, shapiro_normality


@dataclass(frozen=True)
class AssumptionReport:
    """Read-only residual and random-effect diagnostics for one fitted model.

    residual_fitted:
        One row per language (language, fitted, residual), for
        residual-vs-fitted / heteroscedasticity inspection.
    residual_normality:
        Shapiro-Wilk on the model residuals.
    random_effect_normality:
        Shapiro-Wilk on the predicted random intercepts (one per
        subfamily); None for models without a random effect.
    """

    model: str
    variant: str
    residual_fitted: pd.DataFrame = field(compare=False)
    residual_normality: NormalityResult
    random_effect_normality: Optional[NormalityResult]

    def row(self, alpha: float = ALPHA) -> Dict[str, object]:
        r = self.residual_normality
        out: Dict[str, object] = {
            "model": self.model,
            "variant": self.variant,
            "resid_n": r.n,
            "resid_shapiro_w": r.statistic,
            "resid_shapiro_p": r.p_value,
            "resid_skew": r.skewness,
            "resid_excess_kurtosis": r.excess_kurtosis,
            "resid_normal": bool(r.testable and r.p_value > alpha),
        }
        g = self.random_effect_normality
        out.update(
            {
                "ranef_n": g.n if g else 0,
                "ranef_shapiro_w": g.statistic if g else float("nan"),
                "ranef_shapiro_p": g.p_value if g else float("nan"),
                "ranef_normal": bool(g.testable and g.p_value > alpha) if g else None,
            }
        )
        return out


def check_assumptions(fitted: FittedModel) -> AssumptionReport:
    resid = fitted.residuals()
    fit = fitted.fitted_values()
    pairs = pd.DataFrame(
        {
            "language": list(fitted.languages),
            "fitted": fit.to_numpy(dtype=float),
            "residual": resid.to_numpy(dtype=float),
        }
    )

    ranef = None
    if fitted.spec.family == "lmm":
        ranef = shapiro_normality(fitted.random_effects().to_numpy(dtype=float))

    return AssumptionReport(
        model=fitted.name,
        variant=fitted.variant,
        residual_fitted=pairs,
        residual_normality=shapiro_normality(resid.to_numpy(dtype=float)),
        random_effect_normality=ranef,
    )


def assumption_table(reports: Iterable[AssumptionReport], alpha: float = ALPHA) -> pd.DataFrame:
    return pd.DataFrame([r.row(alpha) for r in reports])
