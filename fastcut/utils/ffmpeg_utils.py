"""Locating the FFmpeg executable."""

from __future__ import annotations

import shutil
from pathlib import Path


def find_ffmpeg(preferred: str | None = None) -> str | None:
    """
    Find the ffmpeg executable.

    Search order:
    1. *preferred* (the user's configured path, see SettingsManager)
    2. config.FFMPEG_PATH
    3. System PATH

    Returns:
        Path to ffmpeg or None if not found
    """
    from .config import FFMPEG_PATH
    for candidate in (preferred, FFMPEG_PATH):
        if candidate and Path(candidate).is_file():
            return candidate

    return shutil.which("ffmpeg")
