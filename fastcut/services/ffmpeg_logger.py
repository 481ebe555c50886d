"""Dedicated file log for FFmpeg commands, stderr lines and exit codes.

Records go to ``<DATA_DIR>/logs/ffmpeg.log`` and never reach the root
logger, so decoder chatter does not flood the application log.
"""

import logging
from pathlib import Path

from fastcut.utils.config import DATA_DIR

_logger = logging.getLogger("ffmpeg_output")
_logger.setLevel(logging.DEBUG)
_logger.propagate = False


def get_ffmpeg_log_path() -> Path:
    log_dir = DATA_DIR / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / "ffmpeg.log"


def _ensure_handler() -> None:
    # Attached on first use; an unwritable data dir silences the log.
    if _logger.handlers:
        return
    try:
        handler: logging.Handler = logging.FileHandler(get_ffmpeg_log_path(), encoding="utf-8")
    except OSError:
        handler = logging.NullHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    _logger.addHandler(handler)


def log_ffmpeg_command(args: list[str]) -> None:
    _ensure_handler()
    _logger.info(f"Executing: {' '.join(args)}")


def log_ffmpeg_line(line: str) -> None:
    _ensure_handler()
    _logger.debug(line.rstrip())


def log_ffmpeg_exit(returncode: int, context: str = "") -> None:
    """Record how an FFmpeg process ended; non-zero codes log as warnings."""
    _ensure_handler()
    suffix = f" ({context})" if context else ""
    if returncode == 0:
        _logger.info(f"FFmpeg finished{suffix}")
    else:
        _logger.warning(f"FFmpeg exited with code {returncode}{suffix}")
