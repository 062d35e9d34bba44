import json
import os

import numpy as np
import pytest

from conftest import RAW_HEADERS, synthetic_languages
from morph_ecology.src.config import OutlierRule, PipelineConfig
from morph_ecology.src.errors import SchemaResolutionError
from morph_ecology.src.features import make_variant
from morph_ecology.src.main import build_argparser
from morph_ecology.src.modeling import fit_model, lmm_spec
from morph_ecology.src.pipeline import default_loo_targets, prepare_table, run_pipeline

CASE_HILL = lmm_spec("scaled_case_marking_complexity", "hill_valley")


def _raw(seed=1):
    raw = synthetic_languages(n_groups=6, per_group=4, seed=seed).rename(columns=RAW_HEADERS)
    raw["Notes"] = np.nan
    raw.loc[0, "Notes"] = "checked"
    return raw


@pytest.fixture(scope="module")
def pipeline_run(tmp_path_factory):
    root = tmp_path_factory.mktemp("pipeline")
    raw = _raw()
    raw["Form complexity"] = raw["Form complexity"].map(lambda v: f"{v:.4f}")
    raw.loc[5, "Form complexity"] = "N/A"
    path = root / "languages.tsv"
    raw.to_csv(path, sep="\t", index=False)

    config = PipelineConfig(
        input_tsv=str(path),
        output_dir=str(root / "out"),
        loo_models=(CASE_HILL.name,),
        figures=False,
    )
    return config, run_pipeline(config)


def test_variants(pipeline_run):
    _, result = pipeline_run
    full = result.variants["full"]
    sens = result.variants["sensitivity"]
    assert full.n_obs == 23
    assert "lang_005" not in full.languages
    assert result.outliers == ("Limbu",)
    assert sens.languages == [x for x in full.languages if x != "Limbu"]
    assert "notes" not in full.frame.columns


def test_every_model_is_accounted_for(pipeline_run):
    _, result = pipeline_run
    n = len(result.fitted) + result.failures.shape[0]
    assert n == 2 * 25
    assert set(result.influence) == set(result.fitted)
    assert set(result.assumptions) == set(result.fitted)
    for name, inf in result.influence.items():
        assert inf.threshold == pytest.approx(4.0 / result.fitted[name].n_obs)


def test_requested_loo_only(pipeline_run):
    _, result = pipeline_run
    assert list(result.loo) == [CASE_HILL.name]
    r = result.loo[CASE_HILL.name]
    assert r.n_iterations == result.variants["full"].n_obs


def test_outputs_written(pipeline_run):
    config, result = pipeline_run
    out = config.output_dir
    for name in [
        "dataset_full.csv",
        "dataset_sensitivity.csv",
        "scaling_full.csv",
        "model_summary.csv",
        "model_coefficients.csv",
        "model_failures.csv",
        "influence.csv",
        "assumptions.csv",
        "leave_one_out.csv",
        "leave_one_out_summary.csv",
    ]:
        assert os.path.isfile(os.path.join(out, "tables", name)), name
    assert not os.path.exists(os.path.join(out, "figures"))

    with open(os.path.join(out, "run_manifest.json"), encoding="utf-8") as f:
        manifest = json.load(f)
    assert manifest["excluded_languages"] == ["Limbu"]
    assert manifest["n_full"] == 23
    assert manifest["n_sensitivity"] == 22
    assert manifest["outlier_rule"]["mode"] == "explicit"


def test_missing_required_column():
    raw = _raw().drop(columns=["Altitude (m)"])
    with pytest.raises(SchemaResolutionError) as exc:
        prepare_table(raw)
    assert exc.value.missing == ["altitude"]
    assert exc.value.stage == "normalization"


def test_required_column_lost_in_cleaning():
    raw = _raw()
    raw.loc[3, "Speaker population"] = np.nan
    with pytest.raises(SchemaResolutionError) as exc:
        prepare_table(raw)
    assert exc.value.missing == ["population"]
    assert exc.value.stage.startswith("cleaning")


def test_argparser_defaults():
    args = build_argparser().parse_args([])
    assert args.outlier_mode == "explicit"
    assert args.exclude == "Limbu"
    assert args.loo_model is None
    assert args.n_jobs == 1

    args = build_argparser().parse_args(
        ["--outlier-mode", "flagged", "--reference-model", CASE_HILL.name, "--loo-model", "a", "--loo-model", "b"]
    )
    rule = OutlierRule(mode=args.outlier_mode, reference_model=args.reference_model)
    assert rule.reference_model == CASE_HILL.name
    assert args.loo_model == ["a", "b"]


def test_default_targets_follow_valley_contrast():
    df = synthetic_languages()
    col = "case_marking_complexity"
    df.loc[df["hill_valley"] == "Hill", col] -= 3.0
    df.loc[df["hill_valley"] == "Valley", col] -= 5.0
    v = make_variant(df, "full")

    terrain = fit_model(CASE_HILL, v)
    assert terrain.coefficient("C(hill_valley)[T.Split]")["p_value"] > terrain.coefficient()["p_value"]
    sens = fit_model(CASE_HILL.for_variant("sensitivity"), v)
    assert default_loo_targets({terrain.name: terrain, sens.name: sens}, 0.05) == [CASE_HILL.name]
