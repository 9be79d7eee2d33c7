"""
Unit tests for provisioner/config.py and provisioner/app.py
"""

import os

import pytest

from provisioner.app import create_services
from provisioner.config import Settings
from provisioner.exceptions import ConfigError
from provisioner.services.default_scripts import DEFAULT_SCRIPT_NAMES


# ─────────────────────────────────────────────────────────────────────────────
# 1. Settings
# ─────────────────────────────────────────────────────────────────────────────

class TestSettings:

    def test_paths_derived_from_base(self):
        settings = Settings(base_path="/srv/prov")
        assert settings.scripts_dir == os.path.join("/srv/prov", "scripts")
        assert settings.database_url == "sqlite:///" + os.path.join("/srv/prov", "data", "provisioner.db")

    def test_from_env(self):
        settings = Settings.from_env({
            "BASE_PATH": "/srv/prov",
            "SSH_DIAL_TIMEOUT": "5",
            "SSH_COMMAND_TIMEOUT": "600",
            "LOG_LEVEL": "debug",
        })
        assert settings.base_path == "/srv/prov"
        assert settings.dial_timeout == 5.0
        assert settings.command_timeout == 600.0
        assert settings.log_level == "DEBUG"

    def test_database_path(self):
        settings = Settings.from_env({"DATABASE_PATH": "/tmp/p.db"})
        assert settings.database_url == "sqlite:////tmp/p.db"

    def test_database_url_wins_over_path(self):
        settings = Settings.from_env({"DATABASE_PATH": "/tmp/p.db", "DATABASE_URL": "sqlite:///other.db"})
        assert settings.database_url == "sqlite:///other.db"

    def test_yaml_file_with_env_override(self, tmp_path):
        config = tmp_path / "provisioner.yaml"
        config.write_text("base_path: /from/yaml\ncommand_timeout: 120\n", encoding="utf-8")

        settings = Settings.from_env({"CONFIG_PATH": str(config), "SSH_COMMAND_TIMEOUT": "60"})

        assert settings.base_path == "/from/yaml"
        assert settings.command_timeout == 60.0

    def test_unknown_yaml_key(self, tmp_path):
        config = tmp_path / "provisioner.yaml"
        config.write_text("bogus: 1\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            Settings.from_env({"CONFIG_PATH": str(config)})

    def test_invalid_yaml(self, tmp_path):
        config = tmp_path / "provisioner.yaml"
        config.write_text("base_path: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            Settings.from_env({"CONFIG_PATH": str(config)})

    def test_missing_yaml(self, tmp_path):
        with pytest.raises(ConfigError):
            Settings.from_env({"CONFIG_PATH": str(tmp_path / "absent.yaml")})

    @pytest.mark.parametrize("value", ["abc", "0", "-3"])
    def test_invalid_timeout(self, value):
        with pytest.raises(ConfigError):
            Settings.from_env({"SSH_DIAL_TIMEOUT": value})

    def test_invalid_log_level(self):
        with pytest.raises(ConfigError):
            Settings(log_level="chatty")


# ─────────────────────────────────────────────────────────────────────────────
# 2. create_services
# ─────────────────────────────────────────────────────────────────────────────

class TestCreateServices:

    def test_wires_persisted_catalog(self, tmp_path):
        settings = Settings(base_path=str(tmp_path), database_url=f"sqlite:///{tmp_path / 'p.db'}")

        services = create_services(settings)

        assert os.path.isdir(settings.scripts_dir)
        assert (tmp_path / "p.db").exists()
        assert set(DEFAULT_SCRIPT_NAMES) <= set(services.catalog.names())
        assert services.runner.catalog is services.catalog

    def test_creates_database_directory(self, tmp_path):
        create_services(Settings(base_path=str(tmp_path)))
        assert (tmp_path / "data" / "provisioner.db").exists()

    def test_catalog_survives_restart(self, tmp_path):
        settings = Settings(base_path=str(tmp_path), database_url=f"sqlite:///{tmp_path / 'p.db'}")
        first = create_services(settings)
        first.catalog.set("k8s_init", "echo custom")
        first.catalog.save()

        second = create_services(settings)

        assert second.catalog.get("k8s_init") == "echo custom"
