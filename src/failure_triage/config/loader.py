"""Reads triage.yaml, expands environment references and validates the result."""

import os
import re
from pathlib import Path
from typing import Any

import yaml

from .schema import TriageConfig

DEFAULT_CONFIG_FILES = ("triage.yaml", ".e2e-triage.yaml")


def substitute_env_vars(text: str) -> str:
    """Expand ``${NAME}`` and ``${NAME:-fallback}`` references in raw YAML text.

    Raises:
        ValueError: If ``NAME`` is unset and no fallback is given
    """

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        value = os.environ.get(var_name)
        if value is None:
            if default is not None:
                return default
            raise ValueError(f"Environment variable {var_name} not found")
        return value

    return re.sub(r"\$\{([^}:]+)(?::-([^}]*))?\}", replacer, text)


def find_config_file(project_root: Path) -> Path | None:
    """Return the first default config file present in ``project_root``."""
    for name in DEFAULT_CONFIG_FILES:
        candidate = project_root / name
        if candidate.is_file():
            return candidate
    return None


def load_config(path: Path | None = None, project_root: Path | None = None) -> TriageConfig:
    """
    Build the effective configuration.

    With no explicit path, ``triage.yaml`` in the project root is used when
    present, otherwise defaults (plus ``TRIAGE_*`` environment overrides).

    Args:
        path: Explicit config file (must exist)
        project_root: Overrides ``paths.project_root``

    Returns:
        The validated configuration

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist
        ValueError: On a missing variable, a non-mapping document or
            contradictory settings (pydantic's ValidationError included)
    """
    if path is not None and not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    if path is None:
        path = find_config_file(project_root or Path.cwd())

    config_dict: dict[str, Any] = {}
    if path is not None:
        loaded = yaml.safe_load(substitute_env_vars(path.read_text()))
        if loaded is not None and not isinstance(loaded, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")
        config_dict = loaded or {}

    if project_root is not None:
        paths = config_dict.get("paths")
        config_dict["paths"] = {
            **(paths if isinstance(paths, dict) else {}),
            "project_root": str(project_root),
        }

    # init kwargs take precedence over TRIAGE_* environment variables
    config = TriageConfig(**config_dict)

    validate_config(config)

    return config


def validate_config(config: TriageConfig) -> None:
    """Checks that span several sections, run after schema validation."""
    if config.paths.src_dir not in config.paths.source_dirs:
        raise ValueError(
            f"src_dir {config.paths.src_dir!r} must be listed in paths.source_dirs"
        )

    for ext in (*config.analysis.extensions, *config.watch.extensions):
        if not ext.startswith("."):
            raise ValueError(f"File extension must start with '.': {ext}")

    if config.paths.test_dir and Path(config.paths.test_dir).is_absolute():
        raise ValueError("paths.test_dir must be relative to the project root")
