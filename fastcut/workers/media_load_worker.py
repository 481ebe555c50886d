"""Background worker for loading a project's media metadata."""

from __future__ import annotations

from PySide6.QtCore import QObject, Signal

from fastcut.services.media_storage import IMediaStorage, load_project_media
from fastcut.utils.config import MEDIA_LOAD_WORKERS


class MediaLoadWorker(QObject):
    """Loads all media of a project with a bounded thread pool.

    Signals:
        progress(int, int): (loaded, total)
        finished(object): MediaLoadResult
        error(str): storage listing failed
    """

    progress = Signal(int, int)
    finished = Signal(object)
    error = Signal(str)

    def __init__(self, storage: IMediaStorage, project_id: str, max_workers: int = MEDIA_LOAD_WORKERS):
        super().__init__()
        self._storage = storage
        self._project_id = project_id
        self._max_workers = max_workers

    def run(self) -> None:
        try:
            result = load_project_media(
                self._storage,
                self._project_id,
                self._max_workers,
                on_progress=lambda done, total: self.progress.emit(done, total),
            )
        except Exception as e:
            self.error.emit(str(e))
            return
        self.finished.emit(result)
