import tomllib
from pathlib import Path

PYPROJECT = Path(__file__).resolve().parents[2] / "pyproject.toml"


def _project():
    with open(PYPROJECT, "rb") as f:
        return tomllib.load(f)["project"]


def test_pyproject_dependencies():
    deps = " ".join(_project()["dependencies"])

    assert "mcp" in deps
    assert "pydantic" in deps
    assert "pyyaml" in deps


def test_pyproject_test_extra():
    extra = _project()["optional-dependencies"]["test"]

    assert "pytest" in extra
    assert "pytest-asyncio" in extra


def test_pyproject_scripts():
    scripts = _project()["scripts"]

    assert scripts["commit-divider"] == "commit_divider.cli.commit_divider:main"
    assert scripts["commit-divider-mcp"] == "commit_divider.mcp_server.__main__:main"
