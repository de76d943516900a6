"""Settings for the nudge engine."""

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "nudge"


class Settings(BaseModel):
    """Engine settings. Relative log paths are resolved against cache_dir."""

    model_config = ConfigDict(extra="forbid")

    cache_dir: Path = DEFAULT_CACHE_DIR
    variable_log: Path = Path("variables.tsv")
    audit_log: Path = Path("audit.log")
    pid_file: Path = Path("nudge.pid")

    # Idle monitor
    short_idle_threshold: float = Field(default=600, gt=0)
    long_idle_threshold: float = Field(default=5400, gt=0)
    present_poll_interval: float = Field(default=111, gt=0)
    idle_poll_interval: float = Field(default=2, gt=0)
    subtract_detection_lag: bool = False
    internal_idle: bool = False

    # Scheduler
    dismissal_threshold: int = Field(default=3, ge=1)
    excursion_timeout: float = Field(default=300, gt=0)
    day_boundary_hour: int = Field(default=5, ge=0, le=23)

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    def resolve(self, path: Path) -> Path:
        """Resolve a configured path against cache_dir."""
        path = Path(path).expanduser()
        if path.is_absolute():
            return path
        return Path(self.cache_dir).expanduser() / path

    @property
    def variable_log_path(self) -> Path:
        return self.resolve(self.variable_log)

    @property
    def audit_log_path(self) -> Path:
        return self.resolve(self.audit_log)

    @property
    def pid_file_path(self) -> Path:
        return self.resolve(self.pid_file)

    def successes_log_path(self, fn: str) -> Path:
        return self.resolve(Path(f"successes-{fn}"))

    def calls_log_path(self, fn: str) -> Path:
        return self.resolve(Path(f"calls-{fn}"))


def load_settings(path: Path | None = None, **overrides) -> Settings:
    """Load settings from a JSON file. Missing file means defaults.

    Args:
        path: Optional path to a JSON settings file.
        **overrides: Values that take precedence over the file.

    Raises:
        ConfigurationError: If the file is not valid JSON or fails validation.
    """
    data: dict = {}
    if path is not None and Path(path).exists():
        try:
            with open(path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Settings file {path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {path} must contain a JSON object")
    data.update(overrides)
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e
