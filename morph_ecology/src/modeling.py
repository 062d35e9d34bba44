from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf
from statsmodels.tools.sm_exceptions import PerfectSeparationError

from .config import (
    ALPHA,
    CATEGORICAL_CONTRASTS,
    CATEGORICAL_PREDICTORS,
    COMPLEXITY_COLS,
    GROUP_COL,
    ID_COL,
    SCALED_COLUMNS,
    SINGULAR_VARIANCE_TOL,
)
from .data import DatasetVariant
from .errors import ConvergenceWarning, DegenerateFitError, SingularityWarning
from .schema import require_columns
from .stats import LOGIT_LATENT_VARIANCE, fixed_effect_variance, r2_nakagawa, tidy_coef_table

logger = logging.getLogger(__name__)

FAMILIES = ("lmm", "logit")

LMM_RESPONSES: Tuple[str, ...] = tuple(SCALED_COLUMNS[c] for c in COMPLEXITY_COLS)

LMM_PREDICTORS: Tuple[str, ...] = (
    "hill_valley",
    "L2",
    "scaled_population",
    "agriculture_binary",
    "political_organization_binary",
    "scaled_altitude",
    "scaled_stdev_slope",
)

LOGIT_DESIGNS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("hill_binary", ("scaled_altitude",)),
    ("hill_binary", ("scaled_stdev_slope",)),
    ("hill_binary", ("scaled_altitude", "scaled_stdev_slope")),
    ("hill_valley_binary", ("scaled_altitude", "scaled_stdev_slope")),
)


def spec_name(family: str, response: str, predictors: Sequence[str], variant: str) -> str:
    return f"{family}__{response}__{'+'.join(predictors)}__{variant}"


@dataclass(frozen=True)
class ModelSpec:
    """One declared model: response, fixed effects, grouping, variant."""

    name: str
    family: str
    response: str
    predictors: Tuple[str, ...]
    group: Optional[str] = GROUP_COL
    variant: str = "full"

    def __post_init__(self) -> None:
        if self.family not in FAMILIES:
            raise ValueError(f"Unsupported family='{self.family}'. Use one of {FAMILIES}.")
        if self.family == "lmm" and not self.group:
            raise ValueError(f"{self.name}: a mixed model needs a grouping column.")
        if not self.predictors:
            raise ValueError(f"{self.name}: at least one predictor is required.")
        for p in self.predictors:
            if p in CATEGORICAL_PREDICTORS and p not in CATEGORICAL_CONTRASTS:
                raise ValueError(f"{self.name}: categorical predictor '{p}' has no declared contrast.")

    @property
    def focal_term(self) -> str:
        """Coefficient name of the first predictor's focal effect.

        Numeric predictors are their own term; a categorical predictor is
        represented by its focal-vs-reference contrast, e.g.
        `C(hill_valley)[T.Valley]` (Valley against Hill).
        """
        p = self.predictors[0]
        if p in CATEGORICAL_PREDICTORS:
            return f"C({p})[T.{CATEGORICAL_CONTRASTS[p][1]}]"
        return p

    @property
    def formula(self) -> str:
        terms = [f"C({p})" if p in CATEGORICAL_PREDICTORS else p for p in self.predictors]
        return f"{self.response} ~ " + " + ".join(terms)

    @property
    def columns(self) -> List[str]:
        cols = [ID_COL, self.response, *self.predictors]
        if self.family == "lmm":
            cols.append(str(self.group))
        return cols

    def for_variant(self, variant: str) -> "ModelSpec":
        return replace(
            self,
            variant=variant,
            name=spec_name(self.family, self.response, self.predictors, variant),
        )


def lmm_spec(response: str, predictor: str, variant: str = "full") -> ModelSpec:
    return ModelSpec(
        name=spec_name("lmm", response, (predictor,), variant),
        family="lmm",
        response=response,
        predictors=(predictor,),
        group=GROUP_COL,
        variant=variant,
    )


def logit_spec(response: str, predictors: Sequence[str], variant: str = "full") -> ModelSpec:
    predictors = tuple(predictors)
    return ModelSpec(
        name=spec_name("logit", response, predictors, variant),
        family="logit",
        response=response,
        predictors=predictors,
        group=None,
        variant=variant,
    )


def build_catalog(variants: Sequence[str] = ("full", "sensitivity")) -> List[ModelSpec]:
    """The full {response x predictor x variant} catalog, in a stable order."""

    specs: List[ModelSpec] = []
    for v in variants:
        for resp in LMM_RESPONSES:
            for pred in LMM_PREDICTORS:
                specs.append(lmm_spec(resp, pred, v))
        for resp, preds in LOGIT_DESIGNS:
            specs.append(logit_spec(resp, preds, v))
    return specs


@dataclass(frozen=True)
class FittedModel:
    """Immutable fit of one ModelSpec on one dataset variant."""

    spec: ModelSpec
    variant: str
    n_obs: int
    n_groups: int
    coefs: pd.DataFrame = field(compare=False)
    r2_marginal: float
    r2_conditional: float
    group_variance: float
    converged: bool
    warnings: Tuple[str, ...]
    languages: Tuple[str, ...] = field(repr=False)
    result: Any = field(repr=False, compare=False)
    data: pd.DataFrame = field(repr=False, compare=False)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def fixed_terms(self) -> List[str]:
        return self.coefs["term"].astype(str).tolist()

    @property
    def focal_term(self) -> str:
        return self.spec.focal_term

    def coefficient(self, term: Optional[str] = None) -> Dict[str, float]:
        term = self.focal_term if term is None else term
        row = self.coefs.loc[self.coefs["term"] == term]
        if row.empty:
            raise KeyError(f"Term '{term}' not in {self.name} (terms: {self.fixed_terms})")
        r = row.iloc[0]
        return {
            "term": term,
            "estimate": float(r["estimate"]),
            "se": float(r["se"]),
            "stat": float(r["stat"]),
            "p_value": float(r["p_value"]),
        }

    def fixed_params(self) -> pd.Series:
        return pd.Series(self.coefs["estimate"].to_numpy(dtype=float), index=self.fixed_terms)

    def fixed_cov(self) -> pd.DataFrame:
        terms = self.fixed_terms
        return self.result.cov_params().loc[terms, terms]

    def residuals(self) -> pd.Series:
        """Conditional residuals (LMM) or deviance residuals (logit), by language."""
        if self.spec.family == "logit":
            r = self.result.resid_deviance
        else:
            r = self.result.resid
        return pd.Series(np.asarray(r, dtype=float), index=list(self.languages), name="residual")

    def fitted_values(self) -> pd.Series:
        return pd.Series(
            np.asarray(self.result.fittedvalues, dtype=float), index=list(self.languages), name="fitted"
        )

    def random_effects(self) -> pd.Series:
        """Predicted random intercept per group level (empty for logit)."""
        if self.spec.family != "lmm":
            return pd.Series(dtype=float, name="random_intercept")
        re = {str(g): float(np.asarray(v, dtype=float)[0]) for g, v in self.result.random_effects.items()}
        return pd.Series(re, name="random_intercept").sort_index()

    def significant(self, alpha: float = ALPHA, term: Optional[str] = None) -> bool:
        p = self.coefficient(term)["p_value"]
        return bool(np.isfinite(p) and p < alpha)

    def summary_row(self, alpha: float = ALPHA) -> Dict[str, object]:
        c = self.coefficient()
        return {
            "model": self.name,
            "family": self.spec.family,
            "response": self.spec.response,
            "predictors": "+".join(self.spec.predictors),
            "variant": self.variant,
            "n_obs": self.n_obs,
            "n_groups": self.n_groups,
            "focal_term": c["term"],
            "estimate": c["estimate"],
            "se": c["se"],
            "p_value": c["p_value"],
            "significant": bool(np.isfinite(c["p_value"]) and c["p_value"] < alpha),
            "r2_marginal": self.r2_marginal,
            "r2_conditional": self.r2_conditional,
            "group_variance": self.group_variance,
            "converged": self.converged,
            "warnings": " | ".join(self.warnings),
        }


def _check_design(spec: ModelSpec, data: pd.DataFrame) -> None:
    n = int(data.shape[0])
    if n < len(spec.predictors) + 2:
        raise DegenerateFitError(spec.name, f"too few complete observations (n={n})")

    if data[spec.response].nunique() < 2:
        raise DegenerateFitError(spec.name, f"response '{spec.response}' has no variance")
    for p in spec.predictors:
        if data[p].nunique() < 2:
            raise DegenerateFitError(spec.name, f"predictor '{p}' has no variance")
        if p in CATEGORICAL_PREDICTORS:
            levels = sorted(data[p].astype(str).unique())
            ref, focal = CATEGORICAL_CONTRASTS[p]
            if levels[0] != ref or focal not in levels:
                raise DegenerateFitError(
                    spec.name,
                    f"predictor '{p}' needs reference level '{ref}' and focal level '{focal}' (levels: {levels})",
                )

    if spec.family == "logit":
        vals = set(pd.unique(data[spec.response].astype(float)))
        if not vals <= {0.0, 1.0}:
            raise DegenerateFitError(spec.name, f"response '{spec.response}' is not 0/1")
    else:
        sizes = data[str(spec.group)].value_counts()
        n_multi = int((sizes >= 2).sum())
        if n_multi < 2:
            raise DegenerateFitError(
                spec.name,
                f"grouping factor '{spec.group}' has {n_multi} level(s) with >=2 observations; "
                "random-intercept variance is not estimable",
            )


def _run_statsmodels(spec: ModelSpec, data: pd.DataFrame):
    if spec.family == "lmm":
        model = smf.mixedlm(spec.formula, data=data, groups=data[str(spec.group)])
        return model.fit(reml=True)
    model = smf.glm(spec.formula, data=data, family=sm.families.Binomial())
    return model.fit()


def fit_frame(
    spec: ModelSpec,
    frame: pd.DataFrame,
    *,
    variant: str,
    emit_warnings: bool = True,
) -> FittedModel:
    """Fit `spec` on the complete cases of `frame`.

    Raises
    ------
    SchemaResolutionError
        If a referenced column is absent.
    DegenerateFitError
        If the design cannot support the model or statsmodels fails.
    """

    require_columns(frame, spec.columns, stage=f"model '{spec.name}'")
    data = frame[spec.columns].dropna().reset_index(drop=True)
    _check_design(spec, data)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            res = _run_statsmodels(spec, data)
        except (np.linalg.LinAlgError, ValueError, PerfectSeparationError) as e:
            raise DegenerateFitError(spec.name, f"fit failed: {e}") from e

    notes: List[str] = []
    for w in caught:
        if issubclass(w.category, (DeprecationWarning, FutureWarning)):
            continue
        msg = f"{w.category.__name__}: {w.message}"
        if msg not in notes:
            notes.append(msg)

    if spec.family == "lmm":
        converged = bool(getattr(res, "converged", True))
        group_var = float(np.asarray(res.cov_re, dtype=float).ravel()[0])
        fe = res.fe_params
        coefs = tidy_coef_table(fe, res.bse_fe, res.pvalues)
        var_f = fixed_effect_variance(res.model.exog, fe.to_numpy(dtype=float))
        r2m, r2c = r2_nakagawa(var_f, group_var, float(res.scale))
        n_groups = int(data[str(spec.group)].nunique())
    else:
        converged = bool(getattr(res, "converged", True))
        group_var = float("nan")
        coefs = tidy_coef_table(res.params, res.bse, res.pvalues)
        var_f = fixed_effect_variance(res.model.exog, res.params.to_numpy(dtype=float))
        r2m, r2c = r2_nakagawa(var_f, 0.0, LOGIT_LATENT_VARIANCE)
        n_groups = 0

    singular = spec.family == "lmm" and group_var <= SINGULAR_VARIANCE_TOL
    if singular:
        notes.append(f"SingularityWarning: random-intercept variance at boundary ({group_var:.3g})")
    if not converged:
        notes.append("ConvergenceWarning: optimizer did not report convergence")

    if notes and emit_warnings:
        logger.warning("%s on '%s': %s", spec.name, variant, "; ".join(notes))
        for msg in notes:
            category = SingularityWarning if msg.startswith("SingularityWarning") else ConvergenceWarning
            warnings.warn(f"{spec.name} [{variant}]: {msg}", category, stacklevel=2)

    return FittedModel(
        spec=spec,
        variant=variant,
        n_obs=int(data.shape[0]),
        n_groups=n_groups,
        coefs=coefs,
        r2_marginal=r2m,
        r2_conditional=r2c,
        group_variance=group_var,
        converged=converged,
        warnings=tuple(notes),
        languages=tuple(data[ID_COL].astype(str).tolist()),
        result=res,
        data=data,
    )


def fit_model(spec: ModelSpec, variant: DatasetVariant, *, emit_warnings: bool = True) -> FittedModel:
    return fit_frame(spec, variant.frame, variant=variant.name, emit_warnings=emit_warnings)


def fit_catalog(
    specs: Iterable[ModelSpec],
    variants: Mapping[str, DatasetVariant],
) -> Tuple[Dict[str, FittedModel], pd.DataFrame]:
    """Fit each spec on the variant it declares.

    Degenerate fits are recorded in the returned failure table; other
    errors propagate.
    """

    fitted: Dict[str, FittedModel] = {}
    failures: List[Dict[str, str]] = []
    for spec in specs:
        if spec.variant not in variants:
            logger.debug("Skipping %s: variant '%s' not built", spec.name, spec.variant)
            continue
        try:
            fitted[spec.name] = fit_model(spec, variants[spec.variant])
        except DegenerateFitError as e:
            logger.error("Fit failed for %s: %s", spec.name, e.reason)
            failures.append({"model": spec.name, "variant": spec.variant, "reason": e.reason})

    logger.info("Fitted %d model(s), %d failure(s)", len(fitted), len(failures))
    return fitted, pd.DataFrame(failures, columns=["model", "variant", "reason"])


def summary_table(fitted: Iterable[FittedModel], alpha: float = ALPHA) -> pd.DataFrame:
    return pd.DataFrame([m.summary_row(alpha) for m in fitted])


def coefficient_table(fitted: Iterable[FittedModel]) -> pd.DataFrame:
    """Long table: every fixed-effect term of every model."""
    parts = []
    for m in fitted:
        t = m.coefs.copy()
        t.insert(0, "variant", m.variant)
        t.insert(0, "model", m.name)
        parts.append(t)
    if not parts:
        return pd.DataFrame(columns=["model", "variant", "term", "estimate", "se", "stat", "p_value"])
    return pd.concat(parts, axis=0, ignore_index=True)
