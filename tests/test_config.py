"""Tests for configuration loading."""

import json
from pathlib import Path

import pytest

from relmind.config import (
    DEFAULT_HOME,
    RelmindConfig,
    config_from_env,
    load_config,
    save_config,
)


class TestRelmindConfig:
    """Tests for RelmindConfig dataclass."""

    def test_default_values(self) -> None:
        """Should have sensible defaults."""
        config = RelmindConfig()

        assert config.db_path == DEFAULT_HOME / "relmind.db"
        assert config.log_dir == DEFAULT_HOME / "logs"
        assert config.model == "llama-3.3-70b-versatile"
        assert config.temperature == 0.1
        assert config.match_threshold == 0.5
        assert config.auto_bind_threshold == 0.85

    def test_custom_values(self, tmp_path: Path) -> None:
        config = RelmindConfig(
            db_path=tmp_path / "r.db",
            log_dir=tmp_path / "logs",
            match_threshold=0.6,
            auto_bind_threshold=0.9,
        )

        assert config.db_path == tmp_path / "r.db"
        assert config.match_threshold == 0.6

    def test_threshold_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="between 0 and 1"):
            RelmindConfig(auto_bind_threshold=1.5)

    def test_threshold_order(self) -> None:
        """Should reject a match threshold above the auto-bind threshold."""
        with pytest.raises(ValueError, match="cannot exceed"):
            RelmindConfig(match_threshold=0.9, auto_bind_threshold=0.8)


class TestLoadConfig:
    """Tests for load_config function."""

    def test_missing_file(self, tmp_path: Path) -> None:
        """Should return defaults if file doesn't exist."""
        config = load_config(tmp_path / "nonexistent.json")
        assert config.model == "llama-3.3-70b-versatile"

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text("{ invalid json")

        config = load_config(path)

        assert config.match_threshold == 0.5

    def test_non_object(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")

        assert load_config(path).auto_bind_threshold == 0.85

    def test_full_config(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps(
                {
                    "db_path": str(tmp_path / "people.db"),
                    "log_dir": str(tmp_path / "logs"),
                    "extraction": {"model": "llama-3.1-8b-instant", "temperature": 0},
                    "matching": {"threshold": 0.4, "auto_bind": 0.9},
                }
            )
        )

        config = load_config(path)

        assert config.db_path == tmp_path / "people.db"
        assert config.log_dir == tmp_path / "logs"
        assert config.model == "llama-3.1-8b-instant"
        assert config.temperature == 0.0
        assert config.match_threshold == 0.4
        assert config.auto_bind_threshold == 0.9

    def test_invalid_values_use_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps(
                {
                    "db_path": 42,
                    "extraction": "nope",
                    "matching": {"threshold": "high", "auto_bind": 2},
                }
            )
        )

        config = load_config(path)

        assert config.db_path == DEFAULT_HOME / "relmind.db"
        assert config.model == "llama-3.3-70b-versatile"
        assert config.match_threshold == 0.5
        assert config.auto_bind_threshold == 0.85

    def test_inverted_thresholds_use_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"matching": {"threshold": 0.9, "auto_bind": 0.6}}))

        config = load_config(path)

        assert (config.match_threshold, config.auto_bind_threshold) == (0.5, 0.85)


class TestEnvOverrides:
    def test_overrides_applied(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("RELMIND_DB", str(tmp_path / "env.db"))
        monkeypatch.setenv("GROQ_MODEL", "env-model")

        config = config_from_env(RelmindConfig())

        assert config.db_path == tmp_path / "env.db"
        assert config.model == "env-model"

    def test_unset_leaves_config(self, monkeypatch) -> None:
        monkeypatch.delenv("RELMIND_DB", raising=False)
        monkeypatch.delenv("GROQ_MODEL", raising=False)

        config = config_from_env(RelmindConfig(model="kept"))

        assert config.model == "kept"


class TestSaveConfig:
    def test_save_and_load(self, tmp_path: Path) -> None:
        """Should write a file that loads back to the same settings."""
        path = tmp_path / "nested" / "config.json"
        original = RelmindConfig(
            db_path=tmp_path / "r.db",
            log_dir=tmp_path / "logs",
            model="custom",
            match_threshold=0.55,
        )

        save_config(original, path)
        loaded = load_config(path)

        assert loaded == original
