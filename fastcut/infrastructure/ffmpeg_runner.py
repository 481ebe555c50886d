"""FFmpeg process abstraction. Every FFmpeg subprocess call goes through this class.

Keeps the decoder and encoder independent of ``subprocess`` so tests can
swap in a mock runner.
"""

from __future__ import annotations

import subprocess
import sys
import threading
from pathlib import Path
from typing import Any

from fastcut.services.ffmpeg_logger import log_ffmpeg_command
from fastcut.utils.ffmpeg_utils import find_ffmpeg


class FFmpegRunner:
    """Runs the FFmpeg executable."""

    def __init__(self, ffmpeg_path: str | None = None):
        """*ffmpeg_path* is a preferred location; falls back to config → PATH."""
        self._ffmpeg = find_ffmpeg(ffmpeg_path)

    @property
    def ffmpeg_path(self) -> str | None:
        return self._ffmpeg

    def is_available(self) -> bool:
        """Whether the FFmpeg executable exists."""
        return self._ffmpeg is not None and Path(self._ffmpeg).is_file()

    def _command(self, args: list[str], kwargs: dict) -> list[str]:
        if not self._ffmpeg:
            raise FileNotFoundError("FFmpeg not found. Set a path in settings or install it on PATH.")
        if sys.platform == "win32":
            kwargs.setdefault("creationflags", subprocess.CREATE_NO_WINDOW)
        log_ffmpeg_command(args)
        return [self._ffmpeg, *args]

    def run(
        self,
        args: list[str],
        *,
        check: bool = False,
        capture_output: bool = True,
        text: bool = True,
        **kwargs: Any,
    ) -> subprocess.CompletedProcess:
        """Run FFmpeg synchronously. *args* excludes the binary path."""
        kwargs.update(capture_output=capture_output, text=text)
        return subprocess.run(self._command(args, kwargs), check=check, **kwargs)

    def run_async(
        self,
        args: list[str],
        **kwargs: Any,
    ) -> subprocess.Popen:
        """Start FFmpeg without waiting (Popen), for streamed input/output."""
        return subprocess.Popen(self._command(args, kwargs), **kwargs)


_default_runner: FFmpegRunner | None = None
_runner_lock = threading.Lock()


def get_ffmpeg_runner() -> FFmpegRunner:
    """Return the shared FFmpegRunner instance."""
    global _default_runner
    with _runner_lock:
        if _default_runner is None:
            _default_runner = FFmpegRunner()
        return _default_runner


def configure_ffmpeg_runner(ffmpeg_path: str | None) -> FFmpegRunner:
    """Replace the shared runner, e.g. after the user picks a custom FFmpeg path."""
    global _default_runner
    with _runner_lock:
        _default_runner = FFmpegRunner(ffmpeg_path)
        return _default_runner
