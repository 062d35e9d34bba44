import os

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def test_pyproject_readme_is_not_a_requirements_doc():
    with open(os.path.join(ROOT, "pyproject.toml"), encoding="utf-8") as f:
        text = f.read()
    assert "SPEC_FULL" not in text
    for line in text.splitlines():
        if line.startswith("readme"):
            path = line.split("=", 1)[1].strip().strip('"')
            assert os.path.isfile(os.path.join(ROOT, path))
