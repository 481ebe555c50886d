"""Tests for SettingsManager (QSettings-backed preferences)."""

import pytest
from PySide6.QtCore import QSettings

from fastcut.services.settings_manager import SettingsManager
from fastcut.services.timeline_ops import OverlapPolicy
from fastcut.utils.config import HISTORY_DEPTH, MEDIA_CACHE_CAPACITY, SNAP_THRESHOLD_MS


@pytest.fixture
def settings(tmp_path):
    qs = QSettings(str(tmp_path / "settings.ini"), QSettings.Format.IniFormat)
    return SettingsManager(qs)


class TestSettingsManager:
    def test_defaults(self, settings):
        assert settings.get_history_depth() == HISTORY_DEPTH
        assert settings.get_snap_threshold_ms() == SNAP_THRESHOLD_MS
        assert settings.get_snap_enabled() is True
        assert settings.get_cache_capacity() == MEDIA_CACHE_CAPACITY
        assert settings.get_overlap_policy() == OverlapPolicy.OVERWRITE
        assert settings.get_ffmpeg_path() is None

    def test_set_and_get(self, settings):
        settings.set_history_depth(20)
        settings.set_snap_enabled(False)
        settings.set_overlap_policy(OverlapPolicy.RIPPLE)
        settings.set_ffmpeg_path("/opt/ffmpeg")
        settings.set_memory_threshold_bytes(1024)
        assert settings.get_history_depth() == 20
        assert settings.get_snap_enabled() is False
        assert settings.get_overlap_policy() == OverlapPolicy.RIPPLE
        assert settings.get_ffmpeg_path() == "/opt/ffmpeg"
        assert settings.get_memory_threshold_bytes() == 1024

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "settings.ini")
        first = SettingsManager(QSettings(path, QSettings.Format.IniFormat))
        first.set_drag_commit_interval_ms(0)
        first.set_autosave_idle_ms(500)
        first.sync()
        second = SettingsManager(QSettings(path, QSettings.Format.IniFormat))
        assert second.get_drag_commit_interval_ms() == 0
        assert second.get_autosave_idle_ms() == 500

    def test_invalid_values_rejected(self, settings):
        with pytest.raises(ValueError):
            settings.set_history_depth(-1)
        with pytest.raises(ValueError):
            settings.set_cache_capacity(0)

    def test_unknown_policy_falls_back(self, tmp_path):
        qs = QSettings(str(tmp_path / "s.ini"), QSettings.Format.IniFormat)
        qs.setValue("editing/overlap_policy", "sideways")
        assert SettingsManager(qs).get_overlap_policy() == OverlapPolicy.OVERWRITE

    def test_reset(self, settings):
        settings.set_audio_chunk_ms(250)
        settings.reset()
        assert settings.get_audio_chunk_ms() == 1000
