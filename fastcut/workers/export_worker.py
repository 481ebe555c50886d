"""Background worker for timeline export."""

from __future__ import annotations

import threading

from PySide6.QtCore import QObject, QThread, Signal

from fastcut.models.document import TimelineDocument
from fastcut.services.export_pipeline import ExportPipeline, ExportState


class ExportWorker(QObject):
    """Runs an ExportPipeline in a background thread.

    Signals:
        progress(int, int): (frames_done, total_frames)
        state_changed(str): ExportState value on every transition
        finished(object): ExportArtifact on success
        error(str): failure message
        cancelled(): the export was cancelled
    """

    progress = Signal(int, int)
    state_changed = Signal(str)
    finished = Signal(object)
    error = Signal(str)
    cancelled = Signal()

    def __init__(self, pipeline: ExportPipeline, document: TimelineDocument):
        super().__init__()
        self._pipeline = pipeline
        self._document = document
        self._cancel_event = threading.Event()

    @property
    def pipeline(self) -> ExportPipeline:
        return self._pipeline

    def cancel(self) -> None:
        self._cancel_event.set()

    def run(self) -> None:
        self._cancel_event.clear()
        self._pipeline.on_state = lambda state: self.state_changed.emit(state.value)
        try:
            if not self._pipeline.prepare(self._document):
                self.error.emit(str(self._pipeline.failure_cause))
                return
            artifact = self._pipeline.run(
                self._cancel_event,
                on_progress=lambda done, total: self.progress.emit(done, total),
            )
        except Exception as e:
            self.error.emit(str(e))
            return

        if artifact is not None:
            self.finished.emit(artifact)
        elif self._pipeline.state == ExportState.CANCELLED:
            self.cancelled.emit()
        else:
            self.error.emit(str(self._pipeline.failure_cause))


def start_export_thread(worker: ExportWorker) -> QThread:
    """Move *worker* to a new QThread and start it. The thread quits when the worker ends."""
    thread = QThread()
    worker.moveToThread(thread)
    thread.started.connect(worker.run)
    worker.finished.connect(thread.quit)
    worker.error.connect(thread.quit)
    worker.cancelled.connect(thread.quit)
    thread.start()
    return thread
