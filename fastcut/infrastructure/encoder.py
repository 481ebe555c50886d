"""Encode/mux collaborator and export output targets.

FFmpegEncoder receives frames and audio chunks in order, streams the
frames as raw RGBA into one FFmpeg process, spools audio to a temporary
WAV file, and muxes both into the output target on finalize().
"""

from __future__ import annotations

import io
import logging
import os
import shutil
import subprocess
import tempfile
import threading
import wave
from pathlib import Path
from typing import Protocol, runtime_checkable

import numpy as np

from fastcut.infrastructure.ffmpeg_runner import FFmpegRunner, get_ffmpeg_runner
from fastcut.models.errors import EncodeFailure, MuxFailure
from fastcut.models.export_preset import ExportSettings
from fastcut.services.ffmpeg_logger import log_ffmpeg_exit, log_ffmpeg_line
from fastcut.utils.config import CHUNK_BYTES
from fastcut.utils.time_utils import fps_fraction

logger = logging.getLogger(__name__)

# FFmpeg muxer name per container extension.
_MUXERS = {"mp4": "mp4", "mkv": "matroska", "webm": "webm", "mov": "mov"}


# ------------------------------------------------------------------ Output targets


class MemoryOutputTarget:
    """Keeps the finished file in memory (small exports)."""

    uses_pipe = True

    def __init__(self, container: str = "mp4"):
        self.container = container
        self._buffer = io.BytesIO()
        self.committed = False

    @property
    def path(self) -> Path | None:
        return None

    @property
    def size_bytes(self) -> int:
        return self._buffer.getbuffer().nbytes

    def getvalue(self) -> bytes:
        return self._buffer.getvalue()

    def open(self) -> None:
        self._buffer = io.BytesIO()
        self.committed = False

    def output_args(self) -> list[str]:
        args = ["-f", _MUXERS.get(self.container, self.container)]
        if self.container in ("mp4", "mov"):
            # A pipe is not seekable, so the moov atom cannot be patched in afterwards.
            args += ["-movflags", "frag_keyframe+empty_moov"]
        return args + ["pipe:1"]

    def write(self, data: bytes) -> None:
        self._buffer.write(data)

    def commit(self) -> None:
        self.committed = True

    def discard(self) -> None:
        self._buffer = io.BytesIO()
        self.committed = False

    def save(self, path: str | Path) -> Path:
        """Write the committed bytes to *path* (temp file + replace)."""
        path = Path(path)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(self.getvalue())
        os.replace(tmp, path)
        return path


class StreamingOutputTarget:
    """Writes to ``<path>.partial`` and renames it into place on commit.

    A failed or cancelled export never leaves a file at *path*.
    """

    uses_pipe = False

    def __init__(self, path: str | Path, container: str | None = None):
        self._path = Path(path)
        self.container = container or self._path.suffix.lstrip(".") or "mp4"
        self.partial_path = self._path.with_name(self._path.name + ".partial")
        self.committed = False
        self._file = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def size_bytes(self) -> int:
        source = self._path if self.committed else self.partial_path
        return source.stat().st_size if source.exists() else 0

    def open(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self.partial_path.unlink(missing_ok=True)
        self.committed = False

    def output_args(self) -> list[str]:
        return ["-f", _MUXERS.get(self.container, self.container), "-y", str(self.partial_path)]

    def write(self, data: bytes) -> None:
        if self._file is None:
            self._file = open(self.partial_path, "ab")
        self._file.write(data)

    def _close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def commit(self) -> None:
        self._close()
        os.replace(self.partial_path, self._path)
        self.committed = True

    def discard(self) -> None:
        self._close()
        self.partial_path.unlink(missing_ok=True)
        self.committed = False


OutputTarget = MemoryOutputTarget | StreamingOutputTarget


# ------------------------------------------------------------------ Encoder protocol


@runtime_checkable
class IEncoder(Protocol):
    """Consumes frames and audio in submission order and produces the output file."""

    def open(self, target: OutputTarget, settings: ExportSettings, width: int, height: int,
             fps: float, sample_rate: int, channels: int) -> None:
        ...

    def write_video(self, index: int, frame: np.ndarray) -> None:
        ...

    def write_audio(self, first_sample: int, samples: np.ndarray) -> None:
        ...

    def finalize(self) -> None:
        ...

    def abort(self) -> None:
        ...


def video_encoder_args(settings: ExportSettings) -> list[str]:
    """Video codec flags for the preset (software encoders)."""
    preset = settings.preset
    if preset.codec == "vp9":
        return ["-c:v", "libvpx-vp9", "-crf", str(preset.crf), "-b:v", "0"]
    encoder = "libx265" if preset.codec == "hevc" else "libx264"
    return ["-c:v", encoder, "-preset", "medium", "-crf", str(preset.crf), "-pix_fmt", "yuv420p"]


class FFmpegEncoder:
    """IEncoder implementation: raw RGBA over stdin, WAV spool, final mux."""

    def __init__(self, runner: FFmpegRunner | None = None, work_dir: str | Path | None = None,
                 block_size: int = CHUNK_BYTES):
        self._runner = runner or get_ffmpeg_runner()
        self._work_root = Path(work_dir) if work_dir else None
        self._block_size = block_size
        self._proc: subprocess.Popen | None = None
        self._stderr: list[str] = []
        self._stderr_thread: threading.Thread | None = None
        self._wav: wave.Wave_write | None = None
        self._tmp_dir: Path | None = None
        self._target: OutputTarget | None = None
        self._settings: ExportSettings | None = None
        self._frame_size = 0
        self._next_frame = 0
        self._next_sample = 0
        self._channels = 2

    @property
    def video_path(self) -> Path:
        return self._tmp_dir / "video.mkv"

    @property
    def audio_path(self) -> Path:
        return self._tmp_dir / "audio.wav"

    def open(self, target, settings, width, height, fps, sample_rate, channels) -> None:
        self._target = target
        self._settings = settings
        self._frame_size = width * height * 4
        self._next_frame = 0
        self._next_sample = 0
        self._channels = channels
        self._stderr = []
        self._tmp_dir = Path(tempfile.mkdtemp(prefix="fastcut_export_", dir=self._work_root))

        rate = fps_fraction(fps)
        args = [
            "-hide_banner", "-v", "error",
            "-f", "rawvideo",
            "-pix_fmt", "rgba",
            "-s", f"{width}x{height}",
            "-r", f"{rate.numerator}/{rate.denominator}",
            "-i", "pipe:0",
            "-an",
            *video_encoder_args(settings),
            "-y", str(self.video_path),
        ]
        try:
            self._proc = self._runner.run_async(
                args, stdin=subprocess.PIPE, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE,
                text=False,
            )
        except OSError as e:
            self._cleanup()
            raise EncodeFailure(f"could not start FFmpeg: {e}") from e

        # Drain stderr in a background thread so the encoder never blocks on it.
        def _drain_stderr():
            for raw in self._proc.stderr:
                line = raw.decode("utf-8", errors="replace").rstrip()
                self._stderr.append(line)
                log_ffmpeg_line(line)

        self._stderr_thread = threading.Thread(target=_drain_stderr, daemon=True)
        self._stderr_thread.start()

        self._wav = wave.open(str(self.audio_path), "wb")
        self._wav.setnchannels(channels)
        self._wav.setsampwidth(2)
        self._wav.setframerate(sample_rate)
        target.open()
        logger.info(f"Encoder opened: {width}x{height} @ {fps} fps, {sample_rate} Hz x{channels}")

    def write_video(self, index: int, frame: np.ndarray) -> None:
        if index != self._next_frame:
            raise EncodeFailure(f"frame {index} out of order (expected {self._next_frame})")
        data = np.ascontiguousarray(frame, dtype=np.uint8).tobytes()
        if len(data) != self._frame_size:
            raise EncodeFailure(f"frame {index} has {len(data)} bytes, expected {self._frame_size}")
        try:
            self._proc.stdin.write(data)
        except (BrokenPipeError, OSError) as e:
            raise EncodeFailure(f"video encoder stopped at frame {index}: {self._stderr_tail()}") from e
        self._next_frame += 1

    def write_audio(self, first_sample: int, samples: np.ndarray) -> None:
        if first_sample != self._next_sample:
            raise EncodeFailure(f"audio chunk at {first_sample} out of order (expected {self._next_sample})")
        pcm = (np.clip(samples, -1.0, 1.0) * 32767.0).astype("<i2")
        self._wav.writeframes(pcm.tobytes())
        self._next_sample += samples.shape[0]

    def finalize(self) -> None:
        try:
            self._finish_video()
            self._wav.close()
            self._wav = None
            self._mux()
        finally:
            self._cleanup()

    def abort(self) -> None:
        if self._proc is not None and self._proc.poll() is None:
            self._proc.kill()
            self._proc.wait()
        self._cleanup()

    # ------------------------------------------------------------ Internals

    def _stderr_tail(self) -> str:
        return "\n".join(self._stderr[-10:])

    def _finish_video(self) -> None:
        try:
            self._proc.stdin.close()
        except (BrokenPipeError, OSError):
            pass
        returncode = self._proc.wait()
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=5)
        self._proc = None
        log_ffmpeg_exit(returncode, "video encode")
        if returncode != 0:
            raise EncodeFailure(f"video encoder exited with code {returncode}: {self._stderr_tail()}")

    def _mux(self) -> None:
        preset = self._settings.preset
        args = [
            "-hide_banner", "-v", "error",
            "-i", str(self.video_path),
            "-i", str(self.audio_path),
            "-map", "0:v", "-map", "1:a",
            "-c:v", "copy",
            "-c:a", preset.audio_codec, "-b:a", f"{preset.audio_bitrate_kbps}k",
            *self._target.output_args(),
        ]
        if not self._target.uses_pipe:
            result = self._runner.run(args, capture_output=True, text=True)
            log_ffmpeg_exit(result.returncode, "mux")
            if result.returncode != 0:
                raise MuxFailure(f"mux failed (code {result.returncode}): {result.stderr[-500:]}")
            return

        try:
            proc = self._runner.run_async(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as e:
            raise MuxFailure(f"could not start FFmpeg: {e}") from e
        # Small outputs only (memory target), so stderr cannot fill its pipe here.
        while True:
            block = proc.stdout.read(self._block_size)
            if not block:
                break
            self._target.write(block)
        stderr = proc.stderr.read().decode("utf-8", errors="replace")
        returncode = proc.wait()
        log_ffmpeg_exit(returncode, "mux")
        if returncode != 0:
            raise MuxFailure(f"mux failed (code {returncode}): {stderr[-500:]}")

    def _cleanup(self) -> None:
        if self._wav is not None:
            self._wav.close()
            self._wav = None
        if self._tmp_dir is not None:
            shutil.rmtree(self._tmp_dir, ignore_errors=True)
            self._tmp_dir = None
