"""
Tests for configuration loading and the database manager.
"""

from pathlib import Path

import pytest

from screensync.common.config import get_settings, load_yaml_config, merge_configs
from screensync.common.database import DatabaseManager
from screensync.common.exceptions import ConfigError, DatabaseError


class TestYamlConfig:
    """Tests for YAML loading and merging."""

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        assert load_yaml_config(tmp_path / "absent.yaml") == {}

    def test_non_mapping_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigError) as exc_info:
            load_yaml_config(path)

        assert exc_info.value.details == {"path": str(path)}

    def test_merge_is_deep(self) -> None:
        base = {"platform": {"timeout_s": 15, "max_retries": 2}, "debug": False}
        override = {"platform": {"timeout_s": 5}}

        assert merge_configs(base, override) == {
            "platform": {"timeout_s": 5, "max_retries": 2},
            "debug": False,
        }

    def test_test_profile_loaded(self) -> None:
        settings = get_settings()

        assert settings.env == "test"
        assert settings.playback.baseline_media_ids == [1, 2]
        assert settings.upload.min_bytes == 204800


class TestDatabaseManager:
    """Tests for the uninitialised database manager."""

    def test_engine_requires_init(self) -> None:
        with pytest.raises(DatabaseError):
            DatabaseManager().engine

    def test_session_factory_requires_init(self) -> None:
        with pytest.raises(DatabaseError):
            DatabaseManager().session_factory
