"""Application configuration constants."""

from __future__ import annotations

import sys
from pathlib import Path

APP_NAME = "FastCut"
ORG_NAME = "FastCut"

# Per-user data directory (logs, autosave, media store)
DATA_DIR = Path.home() / ".fastcut"

# FFmpeg
if sys.platform == "darwin":
    FFMPEG_PATH = "/opt/homebrew/bin/ffmpeg"
else:
    FFMPEG_PATH = "ffmpeg"

# History
HISTORY_DEPTH = 100

# Snapping / dragging
SNAP_THRESHOLD_MS = 100
DRAG_COMMIT_INTERVAL_MS = 16  # ~one animation frame at 60 Hz; 0 = only on drop

# Media cache
MEDIA_CACHE_CAPACITY = 512   # Decoded frames / audio chunks kept in memory
MEDIA_LOAD_WORKERS = 4

# Chunked I/O
CHUNK_BYTES = 1024 * 1024

# Audio
DEFAULT_SAMPLE_RATE = 48000
AUDIO_CHUNK_MS = 1000

# Export
EXPORT_MEMORY_THRESHOLD_BYTES = 64 * 1024 * 1024
EXPORT_QUEUE_SIZE = 8

# Autosave
AUTOSAVE_IDLE_MS = 2000
