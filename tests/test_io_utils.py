import json
import os

import numpy as np
import pandas as pd

from morph_ecology.src.io_utils import safe_filename, write_csv, write_json


def test_writers_create_parent_dirs(tmp_path):
    out = str(tmp_path / "a" / "b" / "t.csv")
    write_csv(pd.DataFrame({"x": [1, 2]}), out)
    assert pd.read_csv(out).columns.tolist() == ["x"]

    path = str(tmp_path / "c" / "m.json")
    write_json({"n": np.int64(3), "where": tmp_path}, path)
    with open(path, encoding="utf-8") as f:
        rec = json.load(f)
    assert rec["n"] == "3"
    assert rec["where"] == str(tmp_path)


def test_safe_filename():
    name = safe_filename("logit__hill_binary__scaled_altitude+scaled_stdev_slope__full")
    assert "+" not in name
    assert os.sep not in safe_filename("a/b")
