"""Tests for configuration loading."""

from pathlib import Path

import pytest

from key_cypher.core.config import DEFAULT_SETTLE_DELAY, get_settings, load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    for name in ("KCY_HOME", "KCY_CATALOG", "KCY_BACKUP_DIR", "KCY_SETTLE_DELAY"):
        monkeypatch.delenv(name, raising=False)


class TestConfig:
    def test_load_missing_config(self, tmp_path: Path):
        assert load_config(tmp_path / "nope.toml") == {}

    def test_load_config_file(self, tmp_path: Path):
        config_file = tmp_path / "config.toml"
        config_file.write_text('home = "/srv/u"\nsettle_delay = 0.5\n')
        assert load_config(config_file) == {"home": "/srv/u", "settle_delay": 0.5}

    def test_defaults_derive_from_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("KCY_HOME", str(tmp_path))

        settings = get_settings(tmp_path / "nope.toml")

        data_dir = tmp_path / ".local" / "share" / "keycypher"
        assert settings.home == tmp_path
        assert settings.catalog_path == data_dir / "catalog.json"
        assert settings.backup_dir == data_dir / "backups"
        assert settings.settle_delay == DEFAULT_SETTLE_DELAY

    def test_config_file_values(self, tmp_path: Path):
        config_file = tmp_path / "config.toml"
        config_file.write_text(
            f'home = "{tmp_path}"\n'
            f'catalog_path = "{tmp_path / "cat.json"}"\n'
            f'backup_dir = "{tmp_path / "bk"}"\n'
            "settle_delay = 0\n"
        )

        settings = get_settings(config_file)

        assert settings.catalog_path == tmp_path / "cat.json"
        assert settings.backup_dir == tmp_path / "bk"
        assert settings.settle_delay == 0.0

    def test_env_overrides_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        config_file = tmp_path / "config.toml"
        config_file.write_text(f'catalog_path = "{tmp_path / "from_file.json"}"\n')
        monkeypatch.setenv("KCY_HOME", str(tmp_path))
        monkeypatch.setenv("KCY_CATALOG", str(tmp_path / "from_env.json"))
        monkeypatch.setenv("KCY_SETTLE_DELAY", "1.5")

        settings = get_settings(config_file)

        assert settings.catalog_path == tmp_path / "from_env.json"
        assert settings.settle_delay == 1.5

    @pytest.mark.parametrize(("raw", "expected"), [("soon", DEFAULT_SETTLE_DELAY), ("-3", 0.0)])
    def test_bad_settle_delay(self, raw: str, expected: float, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("KCY_SETTLE_DELAY", raw)
        monkeypatch.setenv("KCY_HOME", "/tmp")
        assert get_settings(Path("/nonexistent/config.toml")).settle_delay == expected
