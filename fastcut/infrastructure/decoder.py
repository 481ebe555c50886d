"""Media decoding abstraction.

IMediaDecoder is the collaborator the media cache calls on a miss.
FFmpegDecoder decodes through an FFmpeg pipe, reading stdout in bounded
blocks so a long audio range never needs one huge read.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable

import numpy as np

from fastcut.infrastructure.ffmpeg_runner import FFmpegRunner, get_ffmpeg_runner
from fastcut.models.errors import DecodeFailure
from fastcut.models.media_file import MediaFile
from fastcut.services.ffmpeg_logger import log_ffmpeg_exit, log_ffmpeg_line
from fastcut.utils.config import CHUNK_BYTES, DEFAULT_SAMPLE_RATE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioChunk:
    """Decoded PCM: float32 samples shaped ``(frames, channels)`` in [-1, 1]."""

    samples: np.ndarray
    sample_rate: int

    @property
    def channels(self) -> int:
        return self.samples.shape[1] if self.samples.ndim == 2 else 1

    @property
    def frames(self) -> int:
        return self.samples.shape[0]


@runtime_checkable
class IMediaDecoder(Protocol):
    """Decodes frames and audio ranges of stored media."""

    def decode_frame(self, media_id: str, timestamp_ms: float) -> np.ndarray:
        """Return an RGBA uint8 image ``(height, width, 4)``."""
        ...

    def decode_audio_chunk(self, media_id: str, start_ms: float, end_ms: float) -> AudioChunk:
        """Return the audio of ``[start_ms, end_ms)`` in source-media time."""
        ...


class FFmpegDecoder:
    """IMediaDecoder implementation backed by FFmpeg pipes."""

    def __init__(
        self,
        media_lookup: Callable[[str], MediaFile],
        width: int,
        height: int,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        runner: FFmpegRunner | None = None,
        block_size: int = CHUNK_BYTES,
    ):
        self._lookup = media_lookup
        self._width = width
        self._height = height
        self._sample_rate = sample_rate
        self._runner = runner or get_ffmpeg_runner()
        self._block_size = block_size

    def _media(self, media_id: str) -> MediaFile:
        try:
            return self._lookup(media_id)
        except KeyError as e:
            raise DecodeFailure(media_id, "unknown media") from e

    def _read_output(self, media_id: str, args: list[str], limit: int | None = None) -> bytes:
        """Run FFmpeg writing to stdout and collect its output block by block."""
        args = ["-hide_banner", "-v", "error"] + args
        try:
            proc = self._runner.run_async(
                args, stdout=subprocess.PIPE, stderr=subprocess.PIPE
            )
        except (FileNotFoundError, OSError) as e:
            raise DecodeFailure(media_id, str(e)) from e

        blocks: list[bytes] = []
        received = 0
        while True:
            block = proc.stdout.read(self._block_size)
            if not block:
                break
            blocks.append(block)
            received += len(block)
            if limit is not None and received >= limit:
                break
        proc.stdout.close()
        stderr = proc.stderr.read().decode("utf-8", errors="replace")
        proc.stderr.close()
        returncode = proc.wait()
        log_ffmpeg_exit(returncode, f"decode {media_id}")
        for line in stderr.splitlines()[-20:]:
            log_ffmpeg_line(line)
        if returncode != 0 and (limit is None or received < limit):
            raise DecodeFailure(media_id, stderr[-500:] or f"FFmpeg exit code {returncode}")
        return b"".join(blocks)

    def decode_frame(self, media_id: str, timestamp_ms: float) -> np.ndarray:
        media = self._media(media_id)
        logger.debug(f"Decoding frame {media_id} @ {timestamp_ms:.1f}ms")
        size = self._width * self._height * 4
        args = []
        if media.media_type == "video":
            args += ["-ss", f"{max(0.0, timestamp_ms) / 1000.0:.3f}"]
        args += [
            "-i", media.path,
            "-frames:v", "1",
            "-vf", f"scale={self._width}:{self._height}",
            "-f", "rawvideo",
            "-pix_fmt", "rgba",
            "pipe:1",
        ]
        data = self._read_output(media_id, args, limit=size)
        if len(data) < size:
            raise DecodeFailure(media_id, f"short frame ({len(data)} of {size} bytes)")
        return np.frombuffer(data[:size], dtype=np.uint8).reshape(self._height, self._width, 4).copy()

    def decode_audio_chunk(self, media_id: str, start_ms: float, end_ms: float) -> AudioChunk:
        media = self._media(media_id)
        if not media.has_audio:
            raise DecodeFailure(media_id, "no audio stream")
        channels = media.channels
        args = [
            "-ss", f"{max(0.0, start_ms) / 1000.0:.3f}",
            "-t", f"{max(0.0, end_ms - start_ms) / 1000.0:.3f}",
            "-i", media.path,
            "-vn",
            "-f", "f32le",
            "-ac", str(channels),
            "-ar", str(self._sample_rate),
            "pipe:1",
        ]
        data = self._read_output(media_id, args)
        usable = len(data) - len(data) % (4 * channels)
        samples = np.frombuffer(data[:usable], dtype=np.float32).reshape(-1, channels).copy()
        return AudioChunk(samples=samples, sample_rate=self._sample_rate)
