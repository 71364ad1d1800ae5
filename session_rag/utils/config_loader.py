import os
from pathlib import Path

import yaml

# session_rag/ package directory; relative config paths resolve against it
PACKAGE_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG = PACKAGE_ROOT / "config" / "config.yaml"


def load_config(config_path: str | None = None) -> dict:
    """
    Read the YAML config.

    Lookup order: explicit argument, then CONFIG_PATH, then the packaged
    session_rag/config/config.yaml.
    """
    path = Path(config_path or os.getenv("CONFIG_PATH") or DEFAULT_CONFIG)
    if not path.is_absolute():
        path = PACKAGE_ROOT / path
    if not path.exists():
        raise FileNotFoundError(f"Config file not found at {path}")

    with open(path, "r", encoding="utf-8") as file:
        data = yaml.safe_load(file) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config at {path} must be a mapping, got {type(data).__name__}")
    return data
