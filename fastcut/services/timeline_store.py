"""Timeline state store: the single owner of the current TimelineDocument.

History is a QUndoStack of snapshot commands. Each command holds two
document references (before/after), so undo and redo only swap the
current pointer. Documents are immutable and share structure, so a
history entry costs two references regardless of project size.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable

from PySide6.QtCore import QObject, Signal
from PySide6.QtGui import QUndoCommand, QUndoStack

from fastcut.models.document import TimelineDocument
from fastcut.models.element import Element
from fastcut.models.errors import EditRejected
from fastcut.models.track import TrackKind
from fastcut.services import timeline_ops as ops
from fastcut.services.timeline_ops import Move, OverlapPolicy
from fastcut.utils.config import HISTORY_DEPTH

logger = logging.getLogger(__name__)

TrackCallback = Callable[[object], None]


class SnapshotCommand(QUndoCommand):
    """Swap between two document snapshots."""

    def __init__(self, store: TimelineStore, before: TimelineDocument,
                 after: TimelineDocument, label: str):
        super().__init__(label)
        self._store = store
        self._before = before
        self._after = after

    @property
    def before(self) -> TimelineDocument:
        return self._before

    @property
    def after(self) -> TimelineDocument:
        return self._after

    def redo(self) -> None:
        self._store._set_document(self._after)

    def undo(self) -> None:
        self._store._set_document(self._before)


class TimelineStore(QObject):
    """Owns the current document and its undo/redo history.

    Every public edit is atomic: it either installs a new document (and
    pushes exactly one history entry) or raises EditRejected and changes
    nothing. Between ``begin_transient_edit`` and
    ``commit_transient_edit`` edits replace the current document without
    touching the history; the commit pushes a single entry spanning the
    whole bracket.

    Signals:
        document_changed(object): every time the current document changes
        history_changed(): after a committed edit, undo or redo
        transient_cancelled(): an open transient edit was reverted (explicitly,
            or implicitly by undo, redo or reset)
    """

    document_changed = Signal(object)
    history_changed = Signal()
    transient_cancelled = Signal()

    def __init__(
        self,
        document: TimelineDocument | None = None,
        history_depth: int = HISTORY_DEPTH,
        overlap_policy: OverlapPolicy = OverlapPolicy.OVERWRITE,
        parent: QObject | None = None,
    ):
        super().__init__(parent)
        self._document = document or TimelineDocument()
        self._undo_stack = QUndoStack(self)
        self._undo_stack.setUndoLimit(history_depth)
        self._overlap_policy = overlap_policy
        self._transient_base: TimelineDocument | None = None
        self._track_subscribers: dict[str, list[TrackCallback]] = defaultdict(list)
        self._element_subscribers: dict[str, list[TrackCallback]] = defaultdict(list)

    # ------------------------------------------------------------ Properties

    @property
    def document(self) -> TimelineDocument:
        return self._document

    @property
    def undo_stack(self) -> QUndoStack:
        return self._undo_stack

    @property
    def history_depth(self) -> int:
        return self._undo_stack.undoLimit()

    @property
    def overlap_policy(self) -> OverlapPolicy:
        return self._overlap_policy

    @overlap_policy.setter
    def overlap_policy(self, policy: OverlapPolicy) -> None:
        self._overlap_policy = OverlapPolicy(policy)

    @property
    def in_transient_edit(self) -> bool:
        return self._transient_base is not None

    @property
    def transient_base(self) -> TimelineDocument | None:
        return self._transient_base

    def can_undo(self) -> bool:
        return self._undo_stack.canUndo()

    def can_redo(self) -> bool:
        return self._undo_stack.canRedo()

    @property
    def undo_count(self) -> int:
        """Number of entries that undo() can currently walk back."""
        return self._undo_stack.index()

    # ------------------------------------------------------------ Element edits

    def add_element(self, track_id: str, element: Element, override: bool = False) -> str:
        result: list[str] = []

        def fn(doc):
            new_doc, element_id = ops.add_element(doc, track_id, element, override, self._overlap_policy)
            result.append(element_id)
            return new_doc

        self._edit("Add element", fn)
        return result[0]

    def remove_element(self, track_id: str, element_id: str) -> None:
        self._edit("Remove element", lambda doc: ops.remove_element(doc, track_id, element_id))

    def move_element(self, track_id: str, element_id: str, new_track_id: str,
                     new_start_ms: int, override: bool = False) -> None:
        self._edit("Move element", lambda doc: ops.move_element(
            doc, track_id, element_id, new_track_id, new_start_ms, override, self._overlap_policy
        ))

    def move_elements(self, moves: list[Move], override: bool = False) -> None:
        self._edit("Move elements", lambda doc: ops.move_elements(
            doc, moves, override, self._overlap_policy
        ))

    def trim_element(self, track_id: str, element_id: str,
                     new_trim_in_ms: int, new_trim_out_ms: int) -> None:
        self._edit("Trim element", lambda doc: ops.trim_element(
            doc, track_id, element_id, new_trim_in_ms, new_trim_out_ms
        ))

    def split_element(self, track_id: str, element_id: str, at_ms: int) -> tuple[str, str]:
        result: list[tuple[str, str]] = []

        def fn(doc):
            new_doc, left_id, right_id = ops.split_element(doc, track_id, element_id, at_ms)
            result.append((left_id, right_id))
            return new_doc

        self._edit("Split element", fn)
        return result[0]

    def update_element_properties(self, track_id: str, element_id: str, patch: dict) -> None:
        self._edit("Edit properties", lambda doc: ops.update_element_properties(
            doc, track_id, element_id, patch
        ))

    def ripple_delete(self, track_id: str, element_id: str) -> None:
        self._edit("Ripple delete", lambda doc: ops.ripple_delete(doc, track_id, element_id))

    # ------------------------------------------------------------ Track edits

    def add_track(self, kind: TrackKind, name: str | None = None,
                  index: int | None = None, track_id: str | None = None) -> str:
        result: list[str] = []

        def fn(doc):
            new_doc, new_id = ops.add_track(doc, kind, name, index, track_id)
            result.append(new_id)
            return new_doc

        self._edit("Add track", fn)
        return result[0]

    def remove_track(self, track_id: str) -> None:
        self._edit("Remove track", lambda doc: ops.remove_track(doc, track_id))

    def set_track_flags(self, track_id: str, muted: bool | None = None,
                        locked: bool | None = None, volume: float | None = None,
                        hidden: bool | None = None) -> None:
        self._edit("Track settings", lambda doc: ops.set_track_flags(
            doc, track_id, muted, locked, volume, hidden
        ))

    def add_marker(self, ms: int) -> None:
        self._edit("Add marker", lambda doc: ops.add_marker(doc, ms))

    def remove_marker(self, ms: int) -> None:
        self._edit("Remove marker", lambda doc: ops.remove_marker(doc, ms))

    # ------------------------------------------------------------ History

    def undo(self) -> TimelineDocument | None:
        """Step back one committed edit. Returns None when there is nothing to undo."""
        if self.in_transient_edit:
            self.cancel_transient_edit()
        if not self._undo_stack.canUndo():
            return None
        self._undo_stack.undo()
        self.history_changed.emit()
        return self._document

    def redo(self) -> TimelineDocument | None:
        """Re-apply one undone edit. Returns None when there is nothing to redo."""
        if self.in_transient_edit:
            self.cancel_transient_edit()
        if not self._undo_stack.canRedo():
            return None
        self._undo_stack.redo()
        self.history_changed.emit()
        return self._document

    def reset(self, document: TimelineDocument) -> None:
        """Install *document* (e.g. after loading) and drop all history."""
        had_transient = self._transient_base is not None
        self._transient_base = None
        self._undo_stack.clear()
        self._set_document(document)
        if had_transient:
            self.transient_cancelled.emit()

    # ------------------------------------------------------------ Transient edits

    def begin_transient_edit(self) -> None:
        if self._transient_base is not None:
            raise RuntimeError("A transient edit is already open")
        self._transient_base = self._document

    def update_transient(self, fn: Callable[[TimelineDocument], TimelineDocument]) -> None:
        """Replace the transient document with ``fn(base)``.

        The result is always computed from the pre-edit document, so
        successive updates replace each other instead of accumulating.
        """
        if self._transient_base is None:
            raise RuntimeError("No transient edit is open")
        self._set_document(fn(self._transient_base))

    def commit_transient_edit(self, label: str = "Edit") -> bool:
        """Close the bracket. Pushes one entry; returns False if nothing changed."""
        base = self._transient_base
        if base is None:
            raise RuntimeError("No transient edit is open")
        self._transient_base = None
        if self._document is base:
            return False
        self._undo_stack.push(SnapshotCommand(self, base, self._document, label))
        self.history_changed.emit()
        return True

    def cancel_transient_edit(self) -> None:
        base = self._transient_base
        if base is None:
            return
        self._transient_base = None
        self._set_document(base)
        self.transient_cancelled.emit()

    # ------------------------------------------------------------ Subscriptions

    def subscribe_track(self, track_id: str, callback: TrackCallback) -> None:
        """Call ``callback(track_or_None)`` whenever that track object changes."""
        self._track_subscribers[track_id].append(callback)

    def subscribe_element(self, element_id: str, callback: TrackCallback) -> None:
        """Call ``callback(element_or_None)`` whenever that element object changes."""
        self._element_subscribers[element_id].append(callback)

    def unsubscribe(self, callback: TrackCallback) -> None:
        for registry in (self._track_subscribers, self._element_subscribers):
            for key in list(registry):
                callbacks = [cb for cb in registry[key] if cb is not callback]
                if callbacks:
                    registry[key] = callbacks
                else:
                    del registry[key]

    # ------------------------------------------------------------ Internals

    def _edit(self, label: str, fn: Callable[[TimelineDocument], TimelineDocument]) -> None:
        try:
            new_doc = fn(self._document)
        except EditRejected as e:
            logger.debug(f"{label} rejected: {e.reason}")
            raise
        if new_doc is self._document:
            return
        if self._transient_base is not None:
            self._set_document(new_doc)
            return
        self._undo_stack.push(SnapshotCommand(self, self._document, new_doc, label))
        self.history_changed.emit()

    def _set_document(self, document: TimelineDocument) -> None:
        old = self._document
        if document is old:
            return
        self._document = document
        self._notify(old, document)
        self.document_changed.emit(document)

    def _notify(self, old: TimelineDocument, new: TimelineDocument) -> None:
        if not self._track_subscribers and not self._element_subscribers:
            return
        old_tracks = {t.track_id: t for t in old.tracks}
        new_tracks = {t.track_id: t for t in new.tracks}
        for track_id in old_tracks.keys() | new_tracks.keys():
            before = old_tracks.get(track_id)
            after = new_tracks.get(track_id)
            if before is after:
                continue
            for cb in list(self._track_subscribers.get(track_id, ())):
                cb(after)

        if not self._element_subscribers:
            return
        for element_id, callbacks in list(self._element_subscribers.items()):
            before = old.find_element(element_id)
            after = new.find_element(element_id)
            if before is after:
                continue
            for cb in list(callbacks):
                cb(after)
