from __future__ import annotations

import argparse
import logging

from .config import ALPHA, OUTLIER_MODES, OutlierRule, PipelineConfig
from .io_utils import resolve_input_tsv
from .pipeline import run_pipeline


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="morph-ecology",
        description=(
            "Morphological complexity vs. terrain / sociocultural predictors: mixed-effects and "
            "logistic models with subfamily random intercepts, influence diagnostics, "
            "leave-one-out robustness, and assumption checks."
        ),
    )

    p.add_argument("--input", type=str, default=None, help="Path to the tab-separated language table")
    p.add_argument("--output", type=str, default="./output", help="Output directory")

    p.add_argument(
        "--outlier-mode",
        type=str,
        default="explicit",
        choices=list(OUTLIER_MODES),
        help=(
            "How the sensitivity variant is built: 'explicit' drops --exclude; "
            "'most_influential' / 'flagged' use Cook's distance of --reference-model."
        ),
    )
    p.add_argument(
        "--exclude",
        type=str,
        default="Limbu",
        help="Comma-separated languages removed for the sensitivity variant (explicit mode)",
    )
    p.add_argument("--reference-model", type=str, default=None, help="Model name for influence-based outlier modes")

    p.add_argument(
        "--loo-model",
        action="append",
        default=None,
        help="Full-variant model name to run leave-one-out on (repeatable). Default: every significant mixed model.",
    )
    p.add_argument("--alpha", type=float, default=ALPHA, help="Significance level")
    p.add_argument("--n-jobs", type=int, default=1, help="Worker processes for leave-one-out refits")
    p.add_argument("--fit-timeout", type=float, default=None, help="Seconds allowed per leave-one-out refit")

    p.add_argument("--no-figures", action="store_true", help="Skip figure output")
    p.add_argument("--dpi", type=int, default=300, help="PNG output resolution")
    p.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )

    return p


def main(argv=None):
    p = build_argparser()
    args = p.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    languages = tuple(s.strip() for s in args.exclude.split(",") if s.strip())
    rule = OutlierRule(mode=args.outlier_mode, languages=languages, reference_model=args.reference_model)

    config = PipelineConfig(
        input_tsv=resolve_input_tsv(args.input),
        output_dir=args.output,
        outlier_rule=rule,
        loo_models=tuple(args.loo_model) if args.loo_model else None,
        alpha=args.alpha,
        n_jobs=args.n_jobs,
        fit_timeout=args.fit_timeout,
        figures=not args.no_figures,
        dpi=args.dpi,
    )
    run_pipeline(config)


if __name__ == "__main__":
    main()
