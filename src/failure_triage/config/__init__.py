"""Configuration loading and validation."""

from .loader import load_config
from .schema import (
    AnalysisConfig,
    FixConfig,
    HarnessConfig,
    LoggingConfig,
    PathsConfig,
    SessionConfig,
    TriageConfig,
    WatchConfig,
)

__all__ = [
    # Loader
    "load_config",
    # Root config
    "TriageConfig",
    # Sections
    "AnalysisConfig",
    "FixConfig",
    "HarnessConfig",
    "LoggingConfig",
    "PathsConfig",
    "SessionConfig",
    "WatchConfig",
]
