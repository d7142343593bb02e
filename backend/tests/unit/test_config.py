"""Tests for configuration loading."""

import json

import pytest

from event_media import config as cfg


@pytest.fixture
def data_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    monkeypatch.setenv("EVENT_MEDIA_DATA_HOME", str(home))
    for env_var in cfg.ENV_MAP:
        monkeypatch.delenv(env_var, raising=False)
    return home


class TestPaths:
    """Tests for data home resolution."""

    def test_data_home_override(self, data_home):
        """Test the environment override."""
        assert cfg.get_data_home() == data_home

    def test_ensure_data_home(self, data_home):
        """Test the directory structure is created."""
        cfg.ensure_data_home()

        assert (data_home / "storage").is_dir()
        assert (data_home / "locks").is_dir()

    def test_defaults_live_under_data_home(self, data_home):
        """Test default paths."""
        config = cfg.get_default_config()

        assert config["paths"]["storage_root"] == str(data_home / "storage")
        assert config["database"]["url"].endswith("metadata.db")


class TestLoadConfig:
    """Tests for file merging."""

    def test_missing_file_gives_defaults(self, data_home):
        """Test built-in defaults."""
        assert cfg.load_config(data_home / "nope.json") == cfg.get_default_config()

    def test_partial_file_merged(self, data_home, tmp_path):
        """Test missing sections and keys are filled from defaults."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"search": {"threshold": 80.0}, "paths": {"watermark_path": "~/wm.png"}}))

        config = cfg.load_config(path)

        assert config["search"]["threshold"] == 80.0
        assert config["search"]["max_workers"] == 8
        assert config["thumbnails"]["width"] == 900
        assert not config["paths"]["watermark_path"].startswith("~")

    def test_data_home_file_found(self, data_home):
        """Test config.json in the data home is picked up."""
        data_home.mkdir(parents=True)
        (data_home / "config.json").write_text(json.dumps({"lifecycle": {"batch_size": 5}}))

        assert cfg.get_config()["lifecycle"]["batch_size"] == 5


class TestEnvOverrides:
    """Tests for environment variables."""

    def test_typed_overrides(self, data_home, monkeypatch):
        """Test values are converted to the key's type."""
        monkeypatch.setenv("FACE_MATCH_THRESHOLD", "85.5")
        monkeypatch.setenv("REAP_BATCH_SIZE", "3")
        monkeypatch.setenv("EVENT_MEDIA_DEBUG", "true")
        monkeypatch.setenv("CRON_SECRET", "tick")

        config = cfg.get_config()

        assert config["search"]["threshold"] == 85.5
        assert config["lifecycle"]["batch_size"] == 3
        assert config["server"]["debug"] is True
        assert config["security"]["cron_secret"] == "tick"

    def test_invalid_value_ignored(self, data_home, monkeypatch):
        """Test unparsable values keep the default."""
        monkeypatch.setenv("SEARCH_WORKERS", "many")

        assert cfg.get_config()["search"]["max_workers"] == 8

    def test_region_applies_to_both_clients(self, data_home, monkeypatch):
        """Test AWS_REGION sets storage and biometrics regions."""
        monkeypatch.setenv("AWS_REGION", "sa-east-1")

        config = cfg.get_config()

        assert config["storage"]["region"] == "sa-east-1"
        assert config["biometrics"]["region"] == "sa-east-1"
