"""Tests for pyproject.toml: packaging metadata and code quality tool configuration."""

import re
from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

PROJECT_ROOT = Path(__file__).parent.parent


@pytest.fixture(scope="module")
def pyproject() -> dict:
    with open(PROJECT_ROOT / "pyproject.toml", "rb") as f:
        return tomllib.load(f)


def _requirement_names(requirements) -> set:
    return {re.split(r"[<>=!~\[ ]", req, 1)[0].lower() for req in requirements}


class TestPackaging:
    """The package installs the burrow CLI with its runtime dependencies."""

    def test_console_script(self, pyproject):
        assert pyproject["project"]["scripts"]["burrow"] == "burrow.cli:cli"

    def test_runtime_dependencies(self, pyproject):
        names = _requirement_names(pyproject["project"]["dependencies"])
        assert {"click", "pyyaml", "libtmux", "rich"} <= names

    def test_test_extra(self, pyproject):
        names = _requirement_names(pyproject["project"]["optional-dependencies"]["test"])
        assert {"pytest", "pytest-mock", "time-machine"} <= names

    def test_version_matches_package(self, pyproject):
        from burrow import __version__
        assert pyproject["project"]["version"] == __version__

    def test_src_layout(self, pyproject):
        assert pyproject["tool"]["setuptools"]["packages"]["find"]["where"] == ["src"]
        assert (PROJECT_ROOT / "src" / "burrow" / "__init__.py").exists()


class TestToolConfiguration:
    """mypy, black and flake8 agree on the target version and line length."""

    def test_mypy_targets_310(self, pyproject):
        assert pyproject["tool"]["mypy"]["python_version"] == "3.10"

    def test_black(self, pyproject):
        black = pyproject["tool"]["black"]
        assert "py310" in black["target-version"]
        assert 79 <= black["line-length"] <= 120

    def test_flake8_matches_black(self, pyproject):
        assert pyproject["tool"]["flake8"]["max-line-length"] == \
            pyproject["tool"]["black"]["line-length"]

    def test_integration_marker_registered(self, pyproject):
        markers = pyproject["tool"]["pytest"]["ini_options"]["markers"]
        assert any(m.startswith("integration:") for m in markers)
