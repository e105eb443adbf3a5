"""Configuration loader.

Loads settings from ~/.relmind/config.json, then applies environment
overrides (RELMIND_DB, GROQ_MODEL).
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".relmind"
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.json"
DEFAULT_MODEL = "llama-3.3-70b-versatile"
DEFAULT_MATCH_THRESHOLD = 0.5
DEFAULT_AUTO_BIND_THRESHOLD = 0.85
DEFAULT_TEMPERATURE = 0.1


@dataclass
class RelmindConfig:
    """Runtime settings.

    Attributes:
        db_path: SQLite database file.
        log_dir: Directory for the JSONL event log.
        model: Groq model used for extraction.
        temperature: Sampling temperature for extraction.
        match_threshold: Minimum score for a candidate name match.
        auto_bind_threshold: Minimum top score to bind a mention automatically.
    """

    db_path: Path | None = None
    log_dir: Path | None = None
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    match_threshold: float = DEFAULT_MATCH_THRESHOLD
    auto_bind_threshold: float = DEFAULT_AUTO_BIND_THRESHOLD

    def __post_init__(self) -> None:
        """Validate config and set defaults."""
        if self.db_path is None:
            self.db_path = DEFAULT_HOME / "relmind.db"

        if self.log_dir is None:
            self.log_dir = DEFAULT_HOME / "logs"

        for name in ("match_threshold", "auto_bind_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1")

        if self.match_threshold > self.auto_bind_threshold:
            raise ValueError("match_threshold cannot exceed auto_bind_threshold")


def load_config(config_path: Path | None = None) -> RelmindConfig:
    """Load RelmindConfig from a JSON file.

    The config file should have this structure:
    ```json
    {
      "db_path": "~/.relmind/relmind.db",
      "log_dir": "~/.relmind/logs",
      "extraction": {
        "model": "llama-3.3-70b-versatile",
        "temperature": 0.1
      },
      "matching": {
        "threshold": 0.5,
        "auto_bind": 0.85
      }
    }
    ```

    Args:
        config_path: Path to config file. Uses DEFAULT_CONFIG_PATH if None.

    Returns:
        RelmindConfig instance with loaded values.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
        return RelmindConfig()

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        return RelmindConfig()
    except OSError as e:
        logger.warning("Cannot read %s: %s. Using defaults.", path, e)
        return RelmindConfig()

    if not isinstance(data, dict):
        logger.warning("Config in %s is not an object. Using defaults.", path)
        return RelmindConfig()

    return _parse_config(data)


def _ratio(value: Any, default: float) -> float:
    """Accept a number in [0, 1], else fall back to default."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if not 0.0 <= value <= 1.0:
        return default
    return float(value)


def _path(value: Any) -> Path | None:
    if not isinstance(value, str) or not value:
        return None
    return Path(value).expanduser()


def _parse_config(data: dict[str, Any]) -> RelmindConfig:
    """Parse config dictionary into RelmindConfig.

    Args:
        data: Parsed JSON data.

    Returns:
        RelmindConfig instance.
    """
    extraction = data.get("extraction", {})
    if not isinstance(extraction, dict):
        extraction = {}

    matching = data.get("matching", {})
    if not isinstance(matching, dict):
        matching = {}

    model = extraction.get("model", DEFAULT_MODEL)
    if not isinstance(model, str) or not model:
        model = DEFAULT_MODEL

    temperature = extraction.get("temperature", DEFAULT_TEMPERATURE)
    if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
        temperature = DEFAULT_TEMPERATURE

    threshold = _ratio(matching.get("threshold"), DEFAULT_MATCH_THRESHOLD)
    auto_bind = _ratio(matching.get("auto_bind"), DEFAULT_AUTO_BIND_THRESHOLD)
    if threshold > auto_bind:
        logger.warning("matching.threshold exceeds matching.auto_bind, using defaults")
        threshold, auto_bind = DEFAULT_MATCH_THRESHOLD, DEFAULT_AUTO_BIND_THRESHOLD

    return RelmindConfig(
        db_path=_path(data.get("db_path")),
        log_dir=_path(data.get("log_dir")),
        model=model,
        temperature=float(temperature),
        match_threshold=threshold,
        auto_bind_threshold=auto_bind,
    )


def config_from_env(config: RelmindConfig) -> RelmindConfig:
    """Apply environment variable overrides to a config."""
    db = os.getenv("RELMIND_DB")
    if db:
        config.db_path = Path(db).expanduser()

    model = os.getenv("GROQ_MODEL")
    if model:
        config.model = model

    return config


def save_config(config: RelmindConfig, config_path: Path | None = None) -> None:
    """Save RelmindConfig to a JSON file.

    Args:
        config: The config to save.
        config_path: Path to write to. Uses DEFAULT_CONFIG_PATH if None.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    # Ensure parent directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "db_path": str(config.db_path),
        "log_dir": str(config.log_dir),
        "extraction": {
            "model": config.model,
            "temperature": config.temperature,
        },
        "matching": {
            "threshold": config.match_threshold,
            "auto_bind": config.auto_bind_threshold,
        },
    }

    try:
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        raise
