"""Export pipeline: renders a document snapshot frame by frame into an encoder.

State machine::

    IDLE → PREPARING → RENDERING → ENCODING → DONE
                 ↘           ↘           ↘
                  FAILED / CANCELLED (terminal, restartable via prepare())

Rendering and mixing happen on the calling thread. Frames and audio
chunks go through a bounded queue to an encoder thread, which consumes
them in submission order, so memory stays bounded however long the
timeline is.
"""

from __future__ import annotations

import logging
import queue
import tempfile
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from fastcut.infrastructure.encoder import (
    IEncoder,
    MemoryOutputTarget,
    OutputTarget,
    StreamingOutputTarget,
)
from fastcut.models.document import Project, TimelineDocument
from fastcut.models.errors import EditRejected, EncodeFailure
from fastcut.models.export_preset import ExportSettings
from fastcut.services import audio_mixer
from fastcut.services.compositor import Compositor
from fastcut.services.media_cache import MediaCache
from fastcut.utils.time_utils import frame_count, frame_to_ms, ms_to_sample

logger = logging.getLogger(__name__)


class ExportState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RENDERING = "rendering"
    ENCODING = "encoding"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExportState.DONE, ExportState.FAILED, ExportState.CANCELLED)


@dataclass
class ExportArtifact:
    """A finished export."""

    target: OutputTarget
    frame_count: int
    duration_ms: int
    sample_count: int
    size_bytes: int

    @property
    def path(self) -> Path | None:
        return self.target.path

    @property
    def data(self) -> bytes | None:
        if isinstance(self.target, MemoryOutputTarget):
            return self.target.getvalue()
        return None


_END = object()  # Queue sentinel


class ExportPipeline:
    """Drives one export at a time for *project*.

    *encoder_factory* returns a fresh IEncoder per run. *on_state* is
    called with the new ExportState on every transition.
    """

    def __init__(
        self,
        project: Project,
        compositor: Compositor,
        cache: MediaCache,
        encoder_factory: Callable[[], IEncoder],
        settings: ExportSettings,
        on_state: Callable[[ExportState], None] | None = None,
    ):
        self._project = project
        self._compositor = compositor
        self._cache = cache
        self._encoder_factory = encoder_factory
        self.settings = settings
        self.on_state = on_state
        self._state = ExportState.IDLE
        self._document: TimelineDocument | None = None
        self._target: OutputTarget | None = None
        self._encoder: IEncoder | None = None
        self.failure_cause: BaseException | None = None
        self.total_frames = 0
        self.total_samples = 0
        self.frames_done = 0

    # ------------------------------------------------------------ Properties

    @property
    def state(self) -> ExportState:
        return self._state

    @property
    def document(self) -> TimelineDocument | None:
        """The snapshot being exported. Later edits to the project do not affect it."""
        return self._document

    @property
    def target(self) -> OutputTarget | None:
        return self._target

    @property
    def fps(self) -> float:
        return self.settings.fps or self._project.fps

    # ------------------------------------------------------------ Phases

    def prepare(self, document: TimelineDocument) -> bool:
        """Snapshot and validate the document, size the job, pick the output target.

        Pass the live ``TimelineStore.document``; ``Project.document`` is only
        refreshed on load and save. Returns False (state FAILED) if there is
        nothing to export.
        """
        if self._state in (ExportState.PREPARING, ExportState.RENDERING, ExportState.ENCODING):
            raise RuntimeError(f"export already {self._state.value}")
        self.failure_cause = None
        self.frames_done = 0
        self._target = None
        self._encoder = None
        self._set_state(ExportState.PREPARING)

        doc = document
        duration = doc.duration_ms
        if doc.is_empty or duration <= 0:
            self._fail(EditRejected("nothing to export: the timeline is empty"))
            return False

        self._document = doc
        self.total_frames = frame_count(duration, self.fps)
        self.total_samples = ms_to_sample(duration, self._project.sample_rate)
        self._target = self._choose_target(duration)
        logger.info(
            f"Export prepared: {duration}ms, {self.total_frames} frames, "
            f"{self.total_samples} samples -> {type(self._target).__name__}"
        )
        return True

    def run(
        self,
        cancel_event: threading.Event | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> ExportArtifact | None:
        """Render and encode. Returns the artifact, or None if failed or cancelled."""
        if self._state != ExportState.PREPARING:
            raise RuntimeError("prepare() must succeed before run()")
        project = self._project
        settings = self.settings

        try:
            self._encoder = self._encoder_factory()
            self._encoder.open(
                self._target, settings, project.width, project.height,
                self.fps, project.sample_rate, project.channels,
            )
        except Exception as e:
            return self._fail(e)

        self._set_state(ExportState.RENDERING)
        work: queue.Queue = queue.Queue(maxsize=max(1, settings.queue_size))
        errors: list[BaseException] = []
        consumer = threading.Thread(
            target=self._consume, args=(work, errors), name="export-encoder", daemon=True
        )
        consumer.start()

        cancelled = False
        try:
            cancelled = self._produce(work, errors, cancel_event, on_progress)
        except Exception as e:
            errors.append(e)
        finally:
            work.put(_END)
            consumer.join()

        if cancelled:
            return self._cancel()
        if errors:
            return self._fail(errors[0])

        self._set_state(ExportState.ENCODING)
        try:
            self._encoder.finalize()
            self._target.commit()
        except Exception as e:
            return self._fail(e)

        self._set_state(ExportState.DONE)
        artifact = ExportArtifact(
            target=self._target,
            frame_count=self.frames_done,
            duration_ms=self._document.duration_ms,
            sample_count=self.total_samples,
            size_bytes=self._target.size_bytes,
        )
        logger.info(f"Export done: {artifact.frame_count} frames, {artifact.size_bytes} bytes")
        return artifact

    # ------------------------------------------------------------ Internals

    def _choose_target(self, duration_ms: int) -> OutputTarget:
        settings = self.settings
        container = settings.preset.container
        if settings.estimated_size_bytes(duration_ms) <= settings.memory_threshold_bytes:
            return MemoryOutputTarget(container)
        path = settings.output_path
        if path is None:
            path = Path(tempfile.gettempdir()) / f"fastcut_{uuid.uuid4().hex[:8]}{settings.preset.file_extension}"
        return StreamingOutputTarget(path, container)

    def _produce(self, work, errors, cancel_event, on_progress) -> bool:
        """Render every frame (and audio ahead of it). Returns True if cancelled."""
        doc = self._document
        project = self._project
        duration = doc.duration_ms
        chunk_ms = self.settings.chunk_ms
        chunks = audio_mixer.iter_chunks(
            doc, 0, duration, project.sample_rate, project.channels, self._cache, chunk_ms
        )
        audio_end_ms = 0

        for index in range(self.total_frames):
            if cancel_event is not None and cancel_event.is_set():
                return True
            if errors:
                return False
            timestamp = frame_to_ms(index, self.fps)
            # Mix the next audio chunk whenever the frame reaches a chunk boundary.
            while audio_end_ms <= timestamp and audio_end_ms < duration:
                first, samples = next(chunks)
                work.put(("audio", first, samples))
                audio_end_ms = min(audio_end_ms + chunk_ms, duration)
            frame = self._compositor.render_frame(doc, timestamp)
            work.put(("video", index, frame))
            self.frames_done = index + 1
            if on_progress is not None:
                on_progress(self.frames_done, self.total_frames)

        if cancel_event is not None and cancel_event.is_set():
            return True
        for first, samples in chunks:
            work.put(("audio", first, samples))
        return False

    def _consume(self, work: queue.Queue, errors: list) -> None:
        """Encoder thread. After an error it keeps draining so the producer never blocks."""
        while True:
            item = work.get()
            if item is _END:
                return
            if errors:
                continue
            kind, position, payload = item
            try:
                if kind == "video":
                    self._encoder.write_video(position, payload)
                else:
                    self._encoder.write_audio(position, payload)
            except Exception as e:
                errors.append(e)

    def _fail(self, cause: BaseException) -> None:
        if not isinstance(cause, (EncodeFailure, EditRejected)):
            logger.exception("Export failed", exc_info=cause)
        else:
            logger.error(f"Export failed: {cause}")
        self.failure_cause = cause
        self._release()
        self._set_state(ExportState.FAILED)
        return None

    def _cancel(self) -> None:
        logger.info(f"Export cancelled after {self.frames_done}/{self.total_frames} frames")
        self._release()
        self._set_state(ExportState.CANCELLED)
        return None

    def _release(self) -> None:
        """Abort the encoder and discard partial output."""
        if self._encoder is not None:
            try:
                self._encoder.abort()
            except Exception:
                logger.exception("Encoder abort failed")
        if self._target is not None:
            self._target.discard()

    def _set_state(self, state: ExportState) -> None:
        self._state = state
        logger.debug(f"Export state: {state.value}")
        if self.on_state is not None:
            self.on_state(state)
