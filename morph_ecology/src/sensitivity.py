"""Sensitivity analyses: outlier-filtered variant and leave-one-out refits.

Each leave-one-out candidate is its own dataset variant (features
re-derived, scaling recomputed) and is fit independently of every other
candidate, so the sweep can run in worker processes. Records are keyed by
the dropped language and sorted deterministically before they are
returned.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import time
from dataclasses import dataclass, field
from multiprocessing.connection import wait as wait_connections
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from .config import ALPHA, OutlierRule
from .data import DatasetVariant
from .errors import DegenerateFitError, DegenerateScalingError
from .features import derive_variant
from .influence import InfluenceTable
from .modeling import ModelSpec, fit_model

logger = logging.getLogger(__name__)

LOO_COLUMNS = [
    "dropped_language",
    "n_obs",
    "estimate",
    "se",
    "p_value",
    "significant",
    "status",
    "error",
    "warnings",
]


def select_outliers(rule: OutlierRule, influence: Mapping[str, InfluenceTable]) -> Tuple[str, ...]:
    """Apply the declared outlier rule and return the languages to drop."""

    if rule.mode == "explicit":
        return tuple(str(x) for x in rule.languages)

    if rule.reference_model not in influence:
        raise ValueError(
            f"Outlier rule references '{rule.reference_model}', which has no influence table. "
            f"Available: {sorted(influence)}"
        )
    table = influence[str(rule.reference_model)]
    if rule.mode == "most_influential":
        return (table.most_influential(),)
    return tuple(table.flagged)


def build_sensitivity_variant(
    full: DatasetVariant,
    languages: Tuple[str, ...],
    *,
    name: str = "sensitivity",
) -> DatasetVariant:
    if not languages:
        logger.warning("Outlier rule selected no languages; '%s' equals '%s'", name, full.name)
    variant = derive_variant(full, name, exclude=languages)
    logger.info("Sensitivity variant '%s': %d languages, excluded %s", name, variant.n_obs, list(languages))
    return variant


@dataclass(frozen=True)
class LeaveOneOutResult:
    """All leave-one-out refits of one model on one base variant."""

    model: str
    term: str
    base_variant: str
    alpha: float
    base_estimate: float
    base_p_value: float
    records: pd.DataFrame = field(compare=False)

    @property
    def _ok(self) -> pd.DataFrame:
        return self.records.loc[self.records["status"] == "ok"]

    @property
    def n_iterations(self) -> int:
        return int(self.records.shape[0])

    @property
    def n_failed(self) -> int:
        return int((self.records["status"] != "ok").sum())

    @property
    def n_significant(self) -> int:
        return int(self._ok["significant"].astype(bool).sum())

    @property
    def estimate_min(self) -> float:
        ok = self._ok
        return float(ok["estimate"].min()) if len(ok) else float("nan")

    @property
    def estimate_max(self) -> float:
        ok = self._ok
        return float(ok["estimate"].max()) if len(ok) else float("nan")

    @property
    def median_p_value(self) -> float:
        ok = self._ok
        return float(ok["p_value"].median()) if len(ok) else float("nan")

    def summary_row(self) -> Dict[str, object]:
        return {
            "model": self.model,
            "term": self.term,
            "base_variant": self.base_variant,
            "base_estimate": self.base_estimate,
            "base_p_value": self.base_p_value,
            "n_iterations": self.n_iterations,
            "n_failed": self.n_failed,
            "n_significant": self.n_significant,
            "estimate_min": self.estimate_min,
            "estimate_max": self.estimate_max,
            "median_p_value": self.median_p_value,
        }


def _failed(language: str, error: str) -> Dict[str, object]:
    return {
        "dropped_language": language,
        "n_obs": np.nan,
        "estimate": np.nan,
        "se": np.nan,
        "p_value": np.nan,
        "significant": False,
        "status": "failed",
        "error": error,
        "warnings": "",
    }


def _loo_iteration(
    base: DatasetVariant,
    spec: ModelSpec,
    term: str,
    language: str,
    alpha: float,
) -> Dict[str, object]:
    try:
        candidate = derive_variant(base, f"{base.name}-minus-{language}", exclude=(language,))
        fitted = fit_model(spec, candidate, emit_warnings=False)
        c = fitted.coefficient(term)
    except (DegenerateFitError, DegenerateScalingError, KeyError) as e:
        return _failed(language, f"{type(e).__name__}: {e}")

    p = c["p_value"]
    return {
        "dropped_language": language,
        "n_obs": fitted.n_obs,
        "estimate": c["estimate"],
        "se": c["se"],
        "p_value": p,
        "significant": bool(np.isfinite(p) and p < alpha),
        "status": "ok",
        "error": "",
        "warnings": " | ".join(fitted.warnings),
    }


LooIteration = Callable[[DatasetVariant, ModelSpec, str, str, float], Dict[str, object]]


def _mp_context():
    # fork hands the already-built base variant to the child without pickling
    if "fork" in mp.get_all_start_methods():
        return mp.get_context("fork")
    return mp.get_context()


def _worker(conn, iteration: LooIteration, base, spec, term, language, alpha) -> None:
    try:
        conn.send(iteration(base, spec, term, language, alpha))
    finally:
        conn.close()


def _run_parallel(
    base: DatasetVariant,
    spec: ModelSpec,
    term: str,
    languages: List[str],
    alpha: float,
    n_jobs: int,
    timeout: Optional[float],
    iteration: LooIteration = _loo_iteration,
) -> Dict[str, Dict[str, object]]:
    """One worker process per refit, at most `n_jobs` alive at a time.

    A refit's clock starts when its own process starts. A refit still
    running after `timeout` seconds is terminated and recorded as failed;
    refits waiting for a free slot are never charged for that wait.
    """

    ctx = _mp_context()
    pending = list(languages)
    running: Dict[str, Tuple[Any, Any, float]] = {}
    out: Dict[str, Dict[str, object]] = {}
    poll = 0.5 if timeout is None else min(0.5, max(float(timeout) / 10.0, 0.01))
    try:
        while pending or running:
            while pending and len(running) < max(int(n_jobs), 1):
                lang = pending.pop(0)
                recv, send = ctx.Pipe(duplex=False)
                proc = ctx.Process(
                    target=_worker,
                    args=(send, iteration, base, spec, term, lang, alpha),
                    daemon=True,
                )
                proc.start()
                send.close()
                running[lang] = (proc, recv, time.monotonic())

            ready = wait_connections([conn for _, conn, _ in running.values()], timeout=poll)
            now = time.monotonic()
            for lang, (proc, conn, started) in list(running.items()):
                if conn in ready:
                    try:
                        out[lang] = conn.recv()
                    except EOFError:
                        proc.join()
                        logger.warning("Leave-one-out worker for %s exited with code %s", lang, proc.exitcode)
                        out[lang] = _failed(lang, f"worker exited with code {proc.exitcode}")
                elif timeout is not None and now - started > timeout:
                    proc.terminate()
                    logger.warning("Leave-one-out refit without %s timed out after %ss", lang, timeout)
                    out[lang] = _failed(lang, f"timeout after {timeout}s")
                else:
                    continue
                proc.join()
                conn.close()
                del running[lang]
    finally:
        for proc, conn, _ in running.values():
            proc.terminate()
            proc.join()
            conn.close()
    return out


def sort_records(records: pd.DataFrame) -> pd.DataFrame:
    """Ascending p-value; failed iterations last; ties by language."""
    out = records.assign(_failed=(records["status"] != "ok").astype(int))
    out = out.sort_values(["_failed", "p_value", "dropped_language"], na_position="last", kind="mergesort")
    return out.drop(columns="_failed").reset_index(drop=True)


def leave_one_out(
    base: DatasetVariant,
    spec: ModelSpec,
    *,
    term: Optional[str] = None,
    alpha: float = ALPHA,
    n_jobs: int = 1,
    timeout: Optional[float] = None,
) -> LeaveOneOutResult:
    """Refit `spec` once per language of `base`, each time without that language.

    A refit that fails is recorded with status "failed" instead of aborting
    the sweep. `timeout` (seconds per refit) is enforced when the sweep runs
    in worker processes, one per refit, which happens when `n_jobs > 1` or
    a timeout is set.

    Raises
    ------
    DegenerateFitError
        If the model cannot be fit on `base` itself.
    """

    base_fit = fit_model(spec, base)
    term = base_fit.focal_term if term is None else term
    base_coef = base_fit.coefficient(term)
    languages = base.languages

    logger.info("Leave-one-out for %s (%s): %d refits", spec.name, term, len(languages))
    if n_jobs > 1 or timeout is not None:
        by_lang = _run_parallel(base, spec, term, languages, alpha, n_jobs, timeout)
    else:
        by_lang = {lang: _loo_iteration(base, spec, term, lang, alpha) for lang in languages}

    records = pd.DataFrame([by_lang[lang] for lang in languages], columns=LOO_COLUMNS)
    result = LeaveOneOutResult(
        model=spec.name,
        term=term,
        base_variant=base.name,
        alpha=float(alpha),
        base_estimate=base_coef["estimate"],
        base_p_value=base_coef["p_value"],
        records=sort_records(records),
    )
    if result.n_failed:
        logger.warning("%s: %d of %d leave-one-out refits failed", spec.name, result.n_failed, result.n_iterations)
    return result


def loo_records_table(results: Mapping[str, LeaveOneOutResult]) -> pd.DataFrame:
    parts = []
    for name, r in results.items():
        x = r.records.copy()
        x.insert(0, "term", r.term)
        x.insert(0, "model", name)
        parts.append(x)
    if not parts:
        return pd.DataFrame(columns=["model", "term", *LOO_COLUMNS])
    return pd.concat(parts, axis=0, ignore_index=True)


def loo_summary_table(results: Mapping[str, LeaveOneOutResult]) -> pd.DataFrame:
    return pd.DataFrame([r.summary_row() for r in results.values()])
