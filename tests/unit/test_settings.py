"""
Tests for settings models and SettingsManager
=============================================
"""

import json
import os
import stat

import pytest

from subcore.models.providers import ProviderName
from subcore.models.settings import SETTINGS_VERSION, CoreSettings, ProviderEnabled
from subcore.utils.paths import CorePaths, config_dir
from subcore.utils.settings import SettingsManager, deep_merge


class TestProviderEnabled:
    @pytest.mark.parametrize("raw,expected", [
        (True, ProviderEnabled.ENABLED),
        (False, ProviderEnabled.DISABLED),
        ("auto", ProviderEnabled.AUTO),
        ("on", ProviderEnabled.ENABLED),
        ("OFF", ProviderEnabled.DISABLED),
        ("nonsense", ProviderEnabled.AUTO),
        (None, ProviderEnabled.AUTO),
    ])
    def test_parse_legacy_values(self, raw, expected):
        assert ProviderEnabled.parse(raw) == expected


class TestCoreSettings:
    def test_defaults(self):
        settings = CoreSettings()
        assert settings.behavior.refresh_interval == 60
        assert settings.behavior.min_refresh_interval == 10
        assert settings.status_refresh.refresh_interval == 300
        assert settings.status_refresh.min_refresh_interval == 60
        assert settings.provider_order == list(ProviderName)
        assert settings.provider(ProviderName.KIRO).fetch_status is False
        assert settings.provider(ProviderName.ANTHROPIC).fetch_status is True

    def test_from_dict_reads_camel_case(self):
        settings = CoreSettings.from_dict({
            "version": SETTINGS_VERSION,
            "providers": {"codex": {"enabled": False, "fetchStatus": False}, "bogus": {"enabled": True}},
            "behavior": {"refreshInterval": 30, "refreshOnToolResult": True},
            "providerOrder": ["zai", "codex", "unknown"],
            "defaultProvider": "zai",
        })
        assert settings.provider(ProviderName.CODEX).enabled == ProviderEnabled.DISABLED
        assert settings.behavior.refresh_interval == 30
        assert settings.behavior.min_refresh_interval == 10
        assert settings.behavior.refresh_on_tool_result is True
        assert settings.provider_order[:2] == [ProviderName.ZAI, ProviderName.CODEX]
        assert set(settings.provider_order) == set(ProviderName)
        assert settings.default_provider == ProviderName.ZAI

    def test_status_refresh_only_carries_intervals(self):
        settings = CoreSettings.from_dict({
            "statusRefresh": {"refreshInterval": 600, "refreshOnTurnStart": True},
        })
        assert settings.status_refresh.refresh_interval == 600
        assert settings.status_refresh.min_refresh_interval == 60
        assert settings.to_dict()["statusRefresh"] == {"refreshInterval": 600, "minRefreshInterval": 60}

    def test_round_trip(self):
        settings = CoreSettings()
        settings.default_provider = ProviderName.GEMINI
        settings.providers[ProviderName.ZAI].enabled = ProviderEnabled.DISABLED
        restored = CoreSettings.from_dict(settings.to_dict())
        assert restored.to_dict() == settings.to_dict()


class TestDeepMerge:
    def test_nested_values_merge(self):
        merged = deep_merge({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}, "b": None})
        assert merged == {"a": {"x": 1, "y": 3}, "b": 1}

    def test_default_provider_can_be_cleared(self):
        assert deep_merge({"defaultProvider": "zai"}, {"defaultProvider": None}) == {"defaultProvider": None}


class TestSettingsManager:
    def test_missing_file_gives_defaults(self, core_paths):
        manager = SettingsManager(core_paths.settings_path)
        assert manager.load().to_dict() == CoreSettings().to_dict()
        assert manager.migrated is False

    def test_unreadable_file_gives_defaults(self, core_paths):
        core_paths.ensure_dirs()
        core_paths.settings_path.write_text("{broken")
        assert SettingsManager(core_paths.settings_path).load().behavior.refresh_interval == 60

    def test_old_version_is_migrated_and_saved(self, core_paths):
        core_paths.ensure_dirs()
        core_paths.settings_path.write_text(json.dumps({"version": 1, "behavior": {"refreshInterval": 120}}))

        manager = SettingsManager(core_paths.settings_path)
        settings = manager.load()

        assert manager.migrated is True
        assert settings.behavior.refresh_interval == 120
        assert json.loads(core_paths.settings_path.read_text())["version"] == SETTINGS_VERSION

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_save_is_private(self, core_paths):
        manager = SettingsManager(core_paths.settings_path)
        manager.load()
        manager.save()
        mode = stat.S_IMODE(core_paths.settings_path.stat().st_mode)
        assert mode == 0o600

    def test_apply_patch(self, core_paths):
        manager = SettingsManager(core_paths.settings_path)
        settings = manager.apply_patch({"providers": {"zai": {"enabled": "off"}}, "defaultProvider": "codex"})
        assert settings.provider(ProviderName.ZAI).enabled == ProviderEnabled.DISABLED
        assert settings.default_provider == ProviderName.CODEX
        reloaded = SettingsManager(core_paths.settings_path).load()
        assert reloaded.default_provider == ProviderName.CODEX


class TestPaths:
    def test_home_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SUBCORE_HOME", str(tmp_path / "custom"))
        assert config_dir() == tmp_path / "custom"
        assert CorePaths.default().cache_path == tmp_path / "custom" / "cache.json"

    def test_in_directory(self, tmp_path):
        paths = CorePaths.in_directory(tmp_path)
        assert paths.lock_path == tmp_path / "cache.lock"
        assert paths.settings_path == tmp_path / "settings.json"
