from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .config import REQUIRED_COLUMNS, PipelineConfig
from .data import DatasetVariant, clean_table, load_language_table
from .diagnostics import AssumptionReport, assumption_table, check_assumptions
from .features import make_variant, scaling_summary
from .influence import InfluenceTable, cooks_distance, influence_long_table
from .io_utils import collect_environment_info, ensure_dir, safe_filename, write_csv, write_json
from .modeling import FittedModel, build_catalog, coefficient_table, fit_catalog, summary_table
from .schema import normalize_columns, require_columns
from .sensitivity import (
    LeaveOneOutResult,
    build_sensitivity_variant,
    leave_one_out,
    loo_records_table,
    loo_summary_table,
    select_outliers,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    cleaned: pd.DataFrame = field(compare=False)
    variants: Dict[str, DatasetVariant]
    fitted: Dict[str, FittedModel]
    failures: pd.DataFrame = field(compare=False)
    influence: Dict[str, InfluenceTable]
    assumptions: Dict[str, AssumptionReport]
    loo: Dict[str, LeaveOneOutResult]
    outliers: Tuple[str, ...]


def prepare_table(raw: pd.DataFrame) -> pd.DataFrame:
    """Normalize headers and clean; both steps check the required columns."""

    normalized = normalize_columns(raw)
    require_columns(normalized, REQUIRED_COLUMNS, stage="normalization")
    cleaned = clean_table(normalized)
    require_columns(cleaned, REQUIRED_COLUMNS, stage="cleaning (column dropped for missing values)")
    return cleaned


def default_loo_targets(fitted: Dict[str, FittedModel], alpha: float) -> List[str]:
    """Full-variant mixed models whose focal term is significant."""
    return sorted(
        name
        for name, m in fitted.items()
        if m.spec.family == "lmm" and m.spec.variant == "full" and m.significant(alpha)
    )


def run_analysis(
    cleaned: pd.DataFrame,
    config: PipelineConfig,
) -> PipelineResult:
    full = make_variant(cleaned, "full")

    fitted_full, fail_full = fit_catalog(build_catalog(("full",)), {"full": full})
    influence: Dict[str, InfluenceTable] = {name: cooks_distance(m) for name, m in fitted_full.items()}

    outliers = select_outliers(config.outlier_rule, influence)
    sens = build_sensitivity_variant(full, outliers)

    fitted_sens, fail_sens = fit_catalog(build_catalog(("sensitivity",)), {"sensitivity": sens})
    for name, m in fitted_sens.items():
        influence[name] = cooks_distance(m)

    fitted = {**fitted_full, **fitted_sens}
    assumptions = {name: check_assumptions(m) for name, m in fitted.items()}

    if config.loo_models is None:
        targets = default_loo_targets(fitted_full, config.alpha)
    else:
        unknown = [n for n in config.loo_models if n not in fitted_full]
        if unknown:
            raise ValueError(f"Unknown or unfitted leave-one-out model(s): {unknown}")
        targets = list(config.loo_models)

    loo: Dict[str, LeaveOneOutResult] = {}
    for name in targets:
        loo[name] = leave_one_out(
            full,
            fitted_full[name].spec,
            alpha=config.alpha,
            n_jobs=config.n_jobs,
            timeout=config.fit_timeout,
        )

    failures = pd.concat([fail_full, fail_sens], axis=0, ignore_index=True)
    return PipelineResult(
        cleaned=cleaned,
        variants={"full": full, "sensitivity": sens},
        fitted=fitted,
        failures=failures,
        influence=influence,
        assumptions=assumptions,
        loo=loo,
        outliers=outliers,
    )


def write_outputs(result: PipelineResult, config: PipelineConfig) -> None:
    output_dir = str(config.output_dir)
    out_tables = ensure_dir(os.path.join(output_dir, "tables"))

    write_json(collect_environment_info(), os.path.join(output_dir, "environment.json"))

    for name, v in result.variants.items():
        write_csv(v.frame, os.path.join(out_tables, f"dataset_{name}.csv"))
        write_csv(scaling_summary(v), os.path.join(out_tables, f"scaling_{name}.csv"))

    fitted = list(result.fitted.values())
    write_csv(summary_table(fitted, config.alpha), os.path.join(out_tables, "model_summary.csv"))
    write_csv(coefficient_table(fitted), os.path.join(out_tables, "model_coefficients.csv"))
    write_csv(result.failures, os.path.join(out_tables, "model_failures.csv"))
    write_csv(influence_long_table(result.influence.values()), os.path.join(out_tables, "influence.csv"))
    write_csv(assumption_table(result.assumptions.values(), config.alpha), os.path.join(out_tables, "assumptions.csv"))
    write_csv(loo_records_table(result.loo), os.path.join(out_tables, "leave_one_out.csv"))
    write_csv(loo_summary_table(result.loo), os.path.join(out_tables, "leave_one_out_summary.csv"))

    manifest = {
        "input_tsv": config.input_tsv,
        "outlier_rule": asdict(config.outlier_rule),
        "excluded_languages": list(result.outliers),
        "n_full": result.variants["full"].n_obs,
        "n_sensitivity": result.variants["sensitivity"].n_obs,
        "alpha": config.alpha,
        "n_models": len(result.fitted),
        "n_fit_failures": int(result.failures.shape[0]),
        "n_models_with_warnings": sum(1 for m in fitted if m.warnings),
        "loo_models": sorted(result.loo),
        "n_jobs": config.n_jobs,
        "fit_timeout": config.fit_timeout,
    }
    write_json(manifest, os.path.join(output_dir, "run_manifest.json"))

    if config.figures:
        write_figures(result, os.path.join(output_dir, "figures"), dpi=config.dpi)


def write_figures(result: PipelineResult, out_figures: str, *, dpi: int) -> None:
    from .plotting import histogram, influence_bars, loo_estimates, residuals_vs_fitted

    ensure_dir(out_figures)
    for name, rep in result.assumptions.items():
        stem = safe_filename(name)
        pairs = rep.residual_fitted
        residuals_vs_fitted(
            pairs["fitted"],
            pairs["residual"],
            base_path=os.path.join(out_figures, "residuals", f"resid_fitted_{stem}"),
            dpi=dpi,
        )
        histogram(
            pairs["residual"],
            bins=15,
            xlabel="Residual",
            ylabel="Count (languages)",
            base_path=os.path.join(out_figures, "residuals", f"resid_hist_{stem}"),
            dpi=dpi,
        )

    for name, inf in result.influence.items():
        influence_bars(
            inf.table["language"].tolist(),
            inf.table["cooks_d"].to_numpy(dtype=float),
            inf.threshold,
            base_path=os.path.join(out_figures, "influence", f"cooks_{safe_filename(name)}"),
            dpi=dpi,
        )

    for name, r in result.loo.items():
        rec = r.records.sort_values("dropped_language")
        loo_estimates(
            rec["dropped_language"].tolist(),
            rec["estimate"].to_numpy(dtype=float),
            rec["se"].to_numpy(dtype=float),
            base_estimate=r.base_estimate,
            base_path=os.path.join(out_figures, "leave_one_out", f"loo_{safe_filename(name)}"),
            dpi=dpi,
        )


def run_pipeline(config: PipelineConfig) -> PipelineResult:
    """Load, clean, fit, diagnose, and (optionally) write every output table.

    Schema, cleaning, and scaling errors abort the run.
    """

    raw = load_language_table(config.input_tsv)
    cleaned = prepare_table(raw)
    result = run_analysis(cleaned, config)

    if config.output_dir:
        write_outputs(result, config)
        logger.info("Outputs written to %s", config.output_dir)
    return result
