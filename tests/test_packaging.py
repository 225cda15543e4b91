from __future__ import annotations

import tomllib
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
APP_DIR = ROOT / "src" / "rps_arena"


def load_pyproject() -> dict:
    return tomllib.loads((ROOT / "pyproject.toml").read_text(encoding="utf-8"))


def test_every_source_module_is_installed() -> None:
    installed = set(load_pyproject()["tool"]["setuptools"]["py-modules"])
    on_disk = {p.stem for p in APP_DIR.glob("*.py")}
    assert installed == on_disk


def test_console_script_points_at_cli_main() -> None:
    assert load_pyproject()["project"]["scripts"]["wof"] == "cli:main"
