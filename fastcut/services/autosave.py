"""Debounced automatic saving of the timeline document."""

from __future__ import annotations

import logging

from PySide6.QtCore import QObject, QTimer, Signal, Slot

from fastcut.models.errors import StorageFailure
from fastcut.services.project_io import ProjectPersistence
from fastcut.services.timeline_store import TimelineStore
from fastcut.utils.config import AUTOSAVE_IDLE_MS

logger = logging.getLogger(__name__)


class AutoSaveManager(QObject):
    """Saves the store's document once edits have been idle for *idle_ms*.

    Only committed edits (history changes) schedule a save; transient drag
    updates never do. A failed save leaves the in-memory document as is
    and is retried on the next trigger.
    """

    save_completed = Signal(str)    # Saved file path
    save_failed = Signal(str)       # Error message

    def __init__(
        self,
        store: TimelineStore,
        persistence: ProjectPersistence,
        project_id: str,
        idle_ms: int = AUTOSAVE_IDLE_MS,
        parent: QObject | None = None,
    ):
        super().__init__(parent)
        self._store = store
        self._persistence = persistence
        self._project_id = project_id
        self._dirty = False
        self.save_count = 0

        self._idle_timer = QTimer(self)
        self._idle_timer.setSingleShot(True)
        self._idle_timer.setInterval(idle_ms)
        self._idle_timer.timeout.connect(self._on_idle_timeout)

        store.history_changed.connect(self.notify_edit)

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def is_pending(self) -> bool:
        return self._idle_timer.isActive()

    @property
    def idle_ms(self) -> int:
        return self._idle_timer.interval()

    def set_idle_ms(self, ms: int) -> None:
        self._idle_timer.setInterval(ms)

    @Slot()
    def notify_edit(self) -> None:
        """Restart the idle countdown; bursts of edits coalesce into one save."""
        self._dirty = True
        self._idle_timer.start()

    def save_now(self) -> bool:
        """Save immediately, cancelling any pending countdown."""
        self._idle_timer.stop()
        return self._do_save()

    def _do_save(self) -> bool:
        document = self._store.document
        try:
            path = self._persistence.save_project_document(self._project_id, document)
        except StorageFailure as e:
            logger.warning(f"Autosave failed, will retry on next edit: {e}")
            self.save_failed.emit(str(e))
            return False
        # An edit may have landed while saving; stay dirty unless this is still current.
        self._dirty = self._store.document is not document
        self.save_count += 1
        self.save_completed.emit(str(path))
        return True

    @Slot()
    def _on_idle_timeout(self) -> None:
        if self._dirty:
            self._do_save()
