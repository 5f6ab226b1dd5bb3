import importlib
from pathlib import Path

import tomllib

REPO_ROOT = Path(__file__).resolve().parents[2]


def test_zaplight_entrypoint_target_is_importable() -> None:
    pyproject = tomllib.loads((REPO_ROOT / "pyproject.toml").read_text(encoding="utf-8"))
    target = pyproject["project"]["scripts"]["zaplight"]
    module_name, symbol = target.split(":")

    module = importlib.import_module(module_name)
    entrypoint = getattr(module, symbol)

    assert callable(entrypoint)
