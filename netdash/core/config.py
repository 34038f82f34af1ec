"""
Configuration management.
"""

from pathlib import Path
from datetime import datetime
from typing import Any, Optional
import json

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


CONFIG_FILENAME = ".netdash.yaml"

# Keys of the config file that belong to EngineSettings
ENGINE_KEYS = (
    "iperf_command",
    "ping_command",
    "traceroute_command",
    "iperf_port",
    "grace_period",
    "traceroute_timeout",
    "ping_interval",
    "force_flush",
    "duration",
    "ping_count",
    "max_hops",
)


def load_config_file(search_dirs: Optional[list[Path]] = None) -> dict[str, Any]:
    """
    Load optional config from ~/.netdash.yaml or ./.netdash.yaml.

    Returns dict with output_dir (Path), verbose (bool) and any engine
    settings present. Missing keys are omitted so callers can use their
    own defaults.
    """
    result: dict[str, Any] = {}
    dirs = search_dirs if search_dirs is not None else [Path.home(), Path.cwd()]
    raw: dict[str, Any] = {}
    for directory in dirs:
        path = directory / CONFIG_FILENAME
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    raw = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Ignoring unreadable config file {path}: {e}")
                raw = {}
            break
    if not isinstance(raw, dict) or not raw:
        return result
    if "output_dir" in raw:
        result["output_dir"] = Path(raw["output_dir"]).expanduser().resolve()
    if "verbose" in raw:
        result["verbose"] = bool(raw["verbose"])
    for key in ENGINE_KEYS:
        if key in raw:
            result[key] = raw[key]
    return result


class EngineSettings(BaseSettings):
    """
    Settings for the test engine.

    Values come from keyword arguments, then NETDASH_* environment
    variables, then the defaults below.
    """

    model_config = SettingsConfigDict(env_prefix="NETDASH_", extra="ignore")

    iperf_command: str = "iperf3"
    ping_command: str = "ping"
    traceroute_command: str = "traceroute"
    iperf_port: int = Field(default=5201, ge=1, le=65535)

    # Extra time granted after the nominal run so the tool can flush its summary
    grace_period: float = Field(default=30.0, ge=0)
    traceroute_timeout: float = Field(default=60.0, gt=0)
    ping_interval: float = Field(default=1.0, gt=0)
    force_flush: bool = True

    duration: int = Field(default=10, ge=1)
    ping_count: int = Field(default=4, ge=1)
    max_hops: int = Field(default=30, ge=1, le=255)

    @classmethod
    def from_file_config(cls, file_cfg: dict[str, Any]) -> "EngineSettings":
        """Build settings from the engine keys of a loaded config file."""
        return cls(**{key: file_cfg[key] for key in ENGINE_KEYS if key in file_cfg})


class AppConfig(BaseModel):
    """Application configuration for the command-line host."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    output_dir: Path = Field(default=Path("output"))
    verbose: bool = False

    @field_validator('output_dir', mode='before')
    @classmethod
    def validate_output_dir(cls, v):
        """Validate and convert output_dir to Path."""
        if v is None:
            return Path("output")
        if isinstance(v, str):
            return Path(v)
        if isinstance(v, Path):
            return v
        return Path("output")

    def model_post_init(self, __context):
        """Ensure output directory exists and is resolved to absolute path."""
        self.output_dir = self.output_dir.resolve()
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def create_test_run_dir(self, test_name: str) -> Path:
        """Create a directory for a test run."""
        timestamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
        test_dir = self.output_dir / f"{timestamp}_{test_name}"
        test_dir.mkdir(parents=True, exist_ok=True)
        return test_dir

    def save_results(self, test_dir: Path, records: list[dict]) -> Path:
        """Save serialized test records to results.json."""
        results_file = test_dir / "results.json"
        payload = {
            "saved_at": datetime.now().isoformat(),
            "records": records,
        }
        with open(results_file, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, default=str)
        return results_file
