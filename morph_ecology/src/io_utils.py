from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional

import pandas as pd


def ensure_dir(path: str | os.PathLike) -> str:
    os.makedirs(path, exist_ok=True)
    return os.fspath(path)


def _for_writing(out_path: str) -> str:
    parent = os.path.dirname(os.fspath(out_path))
    if parent:
        ensure_dir(parent)
    return os.fspath(out_path)


def write_csv(df: pd.DataFrame, out_path: str) -> str:
    """Write one output table (no index column)."""
    df.to_csv(_for_writing(out_path), index=False)
    return out_path


def write_json(record: Dict[str, Any], out_path: str) -> str:
    # Non-JSON values (paths, numpy scalars) are written as their str()
    with open(_for_writing(out_path), "w", encoding="utf-8") as fh:
        fh.write(json.dumps(record, indent=2, ensure_ascii=False, default=str))
    return out_path


def safe_filename(name: str) -> str:
    """Model names contain '+'; keep file names to [A-Za-z0-9_.-]."""
    return "".join(ch if ch.isalnum() or ch in "_.-" else "-" for ch in str(name))


def collect_environment_info(packages: Optional[list[str]] = None) -> Dict[str, Any]:
    """Collect a lightweight reproducibility record (system + key package versions)."""
    import datetime
    import platform
    import sys
    from importlib import metadata as importlib_metadata

    if packages is None:
        packages = [
            "numpy",
            "pandas",
            "statsmodels",
            "scipy",
            "matplotlib",
        ]

    pkg_versions: Dict[str, Any] = {}
    for pkg in packages:
        try:
            pkg_versions[pkg] = importlib_metadata.version(pkg)
        except importlib_metadata.PackageNotFoundError:
            pkg_versions[pkg] = None

    return {
        "timestamp_utc": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "python": {
            "version": sys.version,
            "executable": sys.executable,
        },
        "platform": {
            "platform": platform.platform(),
            "machine": platform.machine(),
        },
        "cpu_count": os.cpu_count(),
        "packages": pkg_versions,
    }


def resolve_input_tsv(input_tsv: Optional[str], default_name: str = "languages.tsv") -> str:
    """Resolve the input table path.

    If `input_tsv` is provided, it is used as-is. Otherwise the current
    directory tree is searched for `default_name`.
    """

    if input_tsv is not None:
        if not os.path.isfile(input_tsv):
            raise FileNotFoundError(f"Input table not found: {input_tsv}")
        return input_tsv

    for root, _, files in os.walk("."):
        if default_name in files:
            return os.path.join(root, default_name)

    raise FileNotFoundError(
        f"Input table '{default_name}' not found. Pass --input /path/to/{default_name}."
    )
