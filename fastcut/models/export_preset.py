"""Export preset and settings models (pure Python, no Qt dependency)."""

from __future__ import annotations

from dataclasses import dataclass

from fastcut.utils.config import (
    AUDIO_CHUNK_MS,
    EXPORT_MEMORY_THRESHOLD_BYTES,
    EXPORT_QUEUE_SIZE,
)


@dataclass
class ExportPreset:
    """Defines a single export output configuration."""

    name: str
    codec: str              # "h264", "hevc", "vp9"
    container: str          # "mp4", "mkv", "webm"
    video_bitrate_kbps: int = 8000
    audio_codec: str = "aac"
    audio_bitrate_kbps: int = 192
    crf: int = 23
    suffix: str = ""        # Filename suffix, e.g. "_hevc"

    @property
    def file_extension(self) -> str:
        return f".{self.container}"


DEFAULT_PRESETS: list[ExportPreset] = [
    ExportPreset("MP4 (H.264)", "h264", "mp4"),
    ExportPreset("MP4 (HEVC)", "hevc", "mp4", video_bitrate_kbps=5000, crf=28, suffix="_hevc"),
    ExportPreset("MKV (HEVC)", "hevc", "mkv", video_bitrate_kbps=5000, crf=28, suffix="_hevc_mkv"),
    ExportPreset("WebM (VP9)", "vp9", "webm", video_bitrate_kbps=4000, audio_codec="libopus",
                 audio_bitrate_kbps=128, crf=31, suffix="_vp9"),
]


@dataclass
class ExportSettings:
    """Everything the export pipeline needs besides the project itself."""

    preset: ExportPreset
    output_path: str | None = None      # Used when the estimate exceeds the memory threshold
    fps: float | None = None            # None = project frame rate
    chunk_ms: int = AUDIO_CHUNK_MS
    memory_threshold_bytes: int = EXPORT_MEMORY_THRESHOLD_BYTES
    queue_size: int = EXPORT_QUEUE_SIZE

    def estimated_size_bytes(self, duration_ms: int) -> int:
        kbps = self.preset.video_bitrate_kbps + self.preset.audio_bitrate_kbps
        return kbps * 1000 // 8 * duration_ms // 1000
