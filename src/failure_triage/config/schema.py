"""Pydantic models for configuration schema."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SOURCE_EXTENSIONS = [".ts", ".tsx", ".js", ".jsx", ".cjs", ".mjs"]


class PathsConfig(BaseModel):
    """Locations of the analyzed project and the tool's working files."""

    project_root: Path = Path(".")
    cache_dir: Path = Path(".e2e-cache")
    source_dirs: list[str] = ["src", "tests/e2e"]
    src_dir: str = "src"
    test_dir: str = "tests/e2e"
    test_results_dir: str = "test-results"
    alias_prefix: str = "@/"

    @field_validator("source_dirs")
    @classmethod
    def validate_source_dirs(cls, v: list[str]) -> list[str]:
        """Reject absolute or parent-relative source directories."""
        for entry in v:
            if Path(entry).is_absolute() or ".." in Path(entry).parts:
                raise ValueError(f"Source directory must be inside the project: {entry}")
        return v

    @property
    def root(self) -> Path:
        return self.project_root.resolve()

    @property
    def cache_path(self) -> Path:
        """Cache directory resolved against the project root."""
        if self.cache_dir.is_absolute():
            return self.cache_dir
        return self.root / self.cache_dir

    @property
    def backup_path(self) -> Path:
        return self.cache_path / "backups"

    @property
    def sessions_path(self) -> Path:
        return self.cache_path / "sessions"

    @property
    def history_path(self) -> Path:
        return self.cache_path / "history"


class AnalysisConfig(BaseModel):
    """Thresholds and bounds for the analyzers."""

    confidence_threshold: float = Field(0.3, ge=0.0, le=1.0)
    max_trace_depth: int = Field(20, ge=1, le=200)
    max_graph_depth: int = Field(10, ge=1, le=100)
    graph_cache_max_age: int = Field(3600, ge=0, description="Seconds")
    graph_sample_size: int = Field(10, ge=1, le=1000)
    scan_workers: int = Field(8, ge=1, le=64)
    tracer_cache_size: int = Field(512, ge=16)
    patterns_file: Path | None = None
    extensions: list[str] = SOURCE_EXTENSIONS


class FixConfig(BaseModel):
    """Fix generation and application settings."""

    templates_file: Path | None = None
    auto_apply_confidence: float = Field(0.8, ge=0.0, le=1.0)
    keep_backups: int = Field(10, ge=1, le=500)
    backup_by_default: bool = True


class SessionConfig(BaseModel):
    """Session tracking settings."""

    ttl_hours: int = Field(24, ge=1, le=24 * 30)
    env_var: str = "TRIAGE_SESSION_ID"


class WatchConfig(BaseModel):
    """Watch mode settings."""

    debounce_ms: int = Field(1000, ge=50, le=60_000)
    poll_interval: float = Field(0.5, ge=0.05, le=10.0)
    paths: list[str] = ["src", "tests/e2e"]
    ignore: list[str] = [
        "node_modules",
        ".e2e-cache",
        "dist",
        "build",
        ".git",
        "test-results",
        "playwright-report",
    ]
    extensions: list[str] = SOURCE_EXTENSIONS


class HarnessConfig(BaseModel):
    """External test harness invocation."""

    command: list[str] = ["npx", "playwright", "test", "--reporter=json"]
    report_file: str | None = None
    timeout: int = Field(1800, ge=10, le=4 * 3600, description="Seconds")
    max_attempts: int = Field(2, ge=1, le=10)
    initial_delay: float = Field(1.0, ge=0.0, le=60.0)
    max_delay: float = Field(10.0, ge=0.0, le=300.0)

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: list[str]) -> list[str]:
        """Command must be a non-empty argument list."""
        if not v or not v[0].strip():
            raise ValueError("Harness command must not be empty")
        return v

    @model_validator(mode="after")
    def check_delays(self) -> "HarnessConfig":
        """Initial retry delay must not exceed the maximum."""
        if self.initial_delay > self.max_delay:
            raise ValueError("initial_delay must be <= max_delay")
        return self


class FileLoggingConfig(BaseModel):
    """File logging configuration."""

    enabled: bool = False
    path: Path = Path(".e2e-cache/triage.log")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "console"] = "console"
    max_value_length: int = Field(2000, ge=80)
    file: FileLoggingConfig = FileLoggingConfig()


class TriageConfig(BaseSettings):
    """Root configuration for failure-triage."""

    paths: PathsConfig = PathsConfig()
    analysis: AnalysisConfig = AnalysisConfig()
    fixes: FixConfig = FixConfig()
    session: SessionConfig = SessionConfig()
    watch: WatchConfig = WatchConfig()
    harness: HarnessConfig = HarnessConfig()
    logging: LoggingConfig = LoggingConfig()

    model_config = SettingsConfigDict(
        env_prefix="TRIAGE_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )
