"""
Tests for configuration loading.

Run with: pytest tests/test_config.py -v
"""

import logging
import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from faceid import config as config_module
from faceid.config import get_config, get_project_root, get_section, get_server_config, load_config
from faceid.pipeline import build_pipeline


class TestProjectConfig:
    """Tests against the shipped config.yaml."""

    def test_project_root(self):
        assert (get_project_root() / "config.yaml").exists()

    def test_sections_present(self):
        config = get_config(reload=True)
        for section in ("preprocessing", "descriptor", "matching", "attempts", "detection", "storage", "api"):
            assert section in config

    def test_defaults(self):
        config = get_config()

        assert config["descriptor"]["algorithm"] == "block_pattern"
        assert config["preprocessing"]["grid_size"] == config["descriptor"]["grid_size"]
        assert config["attempts"]["max_attempts"] == 3
        assert config["detection"]["enabled"] is False

    def test_shipped_config_builds(self):
        pipeline = build_pipeline(get_config())
        assert pipeline.tag == "block_pattern/1"

    def test_missing_section(self):
        with pytest.raises(KeyError):
            get_section("does_not_exist")


class TestLoadConfig:

    def test_custom_file(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("matching:\n  verify_threshold: 0.15\n", encoding="utf-8")

        assert load_config(str(path)) == {"matching": {"verify_threshold": 0.15}}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        assert load_config(str(path)) == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))


class TestServerConfig:

    def test_port_from_base_url(self, monkeypatch):
        monkeypatch.setattr(config_module, "get_api_config",
                            lambda: {"base_url": "http://localhost:9000"})
        assert get_server_config() == {"host": "0.0.0.0", "port": 9000}

    def test_explicit_host(self, monkeypatch):
        monkeypatch.setattr(config_module, "get_api_config",
                            lambda: {"base_url": "http://10.0.0.5:8080/"})
        assert get_server_config() == {"host": "10.0.0.5", "port": 8080}

    def test_missing_port_uses_default(self, monkeypatch):
        monkeypatch.setattr(config_module, "get_api_config",
                            lambda: {"base_url": "http://kiosk-server"})
        assert get_server_config() == {"host": "kiosk-server", "port": 8000}

    def test_bad_port_warns_and_falls_back(self, monkeypatch, caplog):
        monkeypatch.setattr(config_module, "get_api_config",
                            lambda: {"base_url": "http://localhost:http"})

        with caplog.at_level(logging.WARNING, logger="faceid.config"):
            assert get_server_config() == {"host": "0.0.0.0", "port": 8000}

        assert "Invalid api.base_url" in caplog.text
