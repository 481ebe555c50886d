"""Media file metadata model (pure Python, no Qt dependency).

Elements reference media by ``media_id`` only; the engine never keeps the
raw bytes of a file around.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class MediaFile:
    """Metadata of a stored media file."""

    media_id: str
    path: str
    media_type: str         # "video", "audio" or "image"
    duration_ms: int = 0    # 0 for images
    width: int = 0
    height: int = 0
    sample_rate: int = 0    # 0 when the file has no audio stream
    channels: int = 0
    file_size: int = 0      # Bytes

    @property
    def has_audio(self) -> bool:
        return self.sample_rate > 0 and self.channels > 0

    def to_dict(self) -> dict:
        return {
            "media_id": self.media_id,
            "path": self.path,
            "media_type": self.media_type,
            "duration_ms": self.duration_ms,
            "width": self.width,
            "height": self.height,
            "sample_rate": self.sample_rate,
            "channels": self.channels,
            "file_size": self.file_size,
        }

    @classmethod
    def from_dict(cls, data: dict) -> MediaFile:
        return cls(
            media_id=data["media_id"],
            path=data["path"],
            media_type=data["media_type"],
            duration_ms=data.get("duration_ms", 0),
            width=data.get("width", 0),
            height=data.get("height", 0),
            sample_rate=data.get("sample_rate", 0),
            channels=data.get("channels", 0),
            file_size=data.get("file_size", 0),
        )
