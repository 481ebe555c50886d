"""Settings manager for engine preferences."""

from __future__ import annotations

from PySide6.QtCore import QSettings

from fastcut.services.timeline_ops import OverlapPolicy
from fastcut.utils.config import (
    APP_NAME,
    AUDIO_CHUNK_MS,
    AUTOSAVE_IDLE_MS,
    DRAG_COMMIT_INTERVAL_MS,
    EXPORT_MEMORY_THRESHOLD_BYTES,
    HISTORY_DEPTH,
    MEDIA_CACHE_CAPACITY,
    ORG_NAME,
    SNAP_THRESHOLD_MS,
)


class SettingsManager:
    """Wrapper around QSettings for type-safe preference management."""

    def __init__(self, settings: QSettings | None = None):
        self._settings = settings if settings is not None else QSettings(ORG_NAME, APP_NAME)

    def sync(self) -> None:
        self._settings.sync()

    # ---------------------------------------------------- Editing

    def get_history_depth(self) -> int:
        """Maximum number of undo steps (default: 100)."""
        return self._settings.value("editing/history_depth", HISTORY_DEPTH, int)

    def set_history_depth(self, depth: int) -> None:
        if depth < 0:
            raise ValueError("history depth must be >= 0")
        self._settings.setValue("editing/history_depth", depth)

    def get_snap_threshold_ms(self) -> int:
        return self._settings.value("editing/snap_threshold_ms", SNAP_THRESHOLD_MS, int)

    def set_snap_threshold_ms(self, ms: int) -> None:
        self._settings.setValue("editing/snap_threshold_ms", ms)

    def get_snap_enabled(self) -> bool:
        return self._settings.value("editing/snap_enabled", True, bool)

    def set_snap_enabled(self, enabled: bool) -> None:
        self._settings.setValue("editing/snap_enabled", enabled)

    def get_drag_commit_interval_ms(self) -> int:
        """Minimum spacing of store updates during a drag; 0 = only on drop."""
        return self._settings.value("editing/drag_commit_interval_ms", DRAG_COMMIT_INTERVAL_MS, int)

    def set_drag_commit_interval_ms(self, ms: int) -> None:
        self._settings.setValue("editing/drag_commit_interval_ms", ms)

    def get_overlap_policy(self) -> OverlapPolicy:
        value = self._settings.value("editing/overlap_policy", OverlapPolicy.OVERWRITE.value, str)
        try:
            return OverlapPolicy(value)
        except ValueError:
            return OverlapPolicy.OVERWRITE

    def set_overlap_policy(self, policy: OverlapPolicy) -> None:
        self._settings.setValue("editing/overlap_policy", OverlapPolicy(policy).value)

    # ---------------------------------------------------- Media

    def get_cache_capacity(self) -> int:
        return self._settings.value("media/cache_capacity", MEDIA_CACHE_CAPACITY, int)

    def set_cache_capacity(self, entries: int) -> None:
        if entries <= 0:
            raise ValueError("cache capacity must be > 0")
        self._settings.setValue("media/cache_capacity", entries)

    def get_ffmpeg_path(self) -> str | None:
        """Custom FFmpeg path (None for auto-detect)."""
        path = self._settings.value("advanced/ffmpeg_path", "", str)
        return path if path else None

    def set_ffmpeg_path(self, path: str | None) -> None:
        self._settings.setValue("advanced/ffmpeg_path", path or "")

    # ---------------------------------------------------- Export / autosave

    def get_audio_chunk_ms(self) -> int:
        return self._settings.value("export/audio_chunk_ms", AUDIO_CHUNK_MS, int)

    def set_audio_chunk_ms(self, ms: int) -> None:
        self._settings.setValue("export/audio_chunk_ms", ms)

    def get_memory_threshold_bytes(self) -> int:
        """Exports estimated above this size stream to disk."""
        return self._settings.value("export/memory_threshold_bytes", EXPORT_MEMORY_THRESHOLD_BYTES, int)

    def set_memory_threshold_bytes(self, size: int) -> None:
        self._settings.setValue("export/memory_threshold_bytes", size)

    def get_autosave_idle_ms(self) -> int:
        return self._settings.value("autosave/idle_ms", AUTOSAVE_IDLE_MS, int)

    def set_autosave_idle_ms(self, ms: int) -> None:
        self._settings.setValue("autosave/idle_ms", ms)

    def reset(self) -> None:
        """Drop every stored preference."""
        self._settings.clear()
