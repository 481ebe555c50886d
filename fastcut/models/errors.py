"""Error types shared by the timeline engine (pure Python, no Qt dependency)."""

from __future__ import annotations


class FastCutError(Exception):
    """Base class for all engine errors."""


class EditRejected(FastCutError, ValueError):
    """An edit would break a timeline invariant. No state was changed."""

    def __init__(self, reason: str, conflicts: tuple[str, ...] = ()):
        super().__init__(reason)
        self.reason = reason
        self.conflicts = conflicts


class DecodeFailure(FastCutError):
    """Media could not be decoded (corrupt, missing or unsupported)."""

    def __init__(self, media_id: str, message: str = ""):
        super().__init__(f"Cannot decode media {media_id}: {message}" if message else f"Cannot decode media {media_id}")
        self.media_id = media_id


class EncodeFailure(FastCutError):
    """The encoder rejected frames/audio or exited with an error."""


class MuxFailure(EncodeFailure):
    """Muxing the encoded streams into the output container failed."""


class StorageFailure(FastCutError):
    """Reading or writing media files / project documents failed."""
