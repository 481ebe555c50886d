"""Drag interaction controller: pointer samples in, at most one history entry out.

Every pointer sample recomputes a candidate placement (snap + collision)
for the render layer. The store only sees that candidate at a bounded
rate, as a transient edit recomputed from the pre-drag document, and the
whole gesture is committed as one history entry on release.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Iterable

from PySide6.QtCore import QObject, Signal

from fastcut.models.document import Selection, TimelineDocument
from fastcut.models.element import Element
from fastcut.models.errors import EditRejected
from fastcut.services import timeline_ops as ops
from fastcut.services.snap_index import SnapIndex, SnapTarget
from fastcut.services.timeline_ops import Move
from fastcut.services.timeline_store import TimelineStore
from fastcut.utils.config import DRAG_COMMIT_INTERVAL_MS, SNAP_THRESHOLD_MS

logger = logging.getLogger(__name__)


class DragPhase(Enum):
    IDLE = auto()
    DRAGGING = auto()
    COMMITTED = auto()
    CANCELLED = auto()


@dataclass
class DragState:
    """Transient state of one gesture. Never persisted."""

    element_ids: tuple[str, ...]
    anchor_id: str
    pointer_offset_ms: int                  # Pointer position minus anchor start at grab time
    origins: dict[str, tuple[str, int]]     # element_id -> (track_id, start_ms) before the drag
    delta_ms: int = 0
    track_shift: int = 0
    proposed_start_ms: int = 0              # Anchor start under the current candidate
    proposed_track_id: str = ""
    snap_target: SnapTarget | None = None
    valid: bool = True
    conflicts: tuple[str, ...] = field(default_factory=tuple)


class DragController(QObject):
    """State machine ``IDLE → DRAGGING → {COMMITTED, CANCELLED} → IDLE``.

    Signals:
        candidate_changed(object): DragState after every pointer sample
        phase_changed(object): DragPhase on every transition
        committed(object): the committed TimelineDocument
        cancelled(): the gesture was reverted
    """

    candidate_changed = Signal(object)
    phase_changed = Signal(object)
    committed = Signal(object)
    cancelled = Signal()

    def __init__(
        self,
        store: TimelineStore,
        snap_index: SnapIndex | None = None,
        commit_interval_ms: int = DRAG_COMMIT_INTERVAL_MS,
        snap_threshold_ms: int = SNAP_THRESHOLD_MS,
        clock: Callable[[], float] = time.monotonic,
        parent: QObject | None = None,
    ):
        super().__init__(parent)
        self._store = store
        self._index = snap_index or SnapIndex()
        self.commit_interval_ms = commit_interval_ms
        self.snap_threshold_ms = snap_threshold_ms
        self.snap_enabled = True
        self._clock = clock
        self._phase = DragPhase.IDLE
        self._state: DragState | None = None
        self._base: TimelineDocument | None = None
        self._elements: dict[str, Element] = {}
        self._last_apply: float | None = None
        self._applied: tuple[int, int] | None = None  # (delta, track_shift) in the store
        self.store_updates = 0  # Transient store writes during the current gesture
        self._orphaned = False  # Gesture ended by the store; swallow its remaining samples
        self._cancelling = False
        store.transient_cancelled.connect(self._on_transient_cancelled)

    # ------------------------------------------------------------ Properties

    @property
    def phase(self) -> DragPhase:
        return self._phase

    @property
    def state(self) -> DragState | None:
        return self._state

    @property
    def snap_index(self) -> SnapIndex:
        return self._index

    # ------------------------------------------------------------ Gesture

    def begin(
        self,
        selection: Selection | Iterable[tuple[str, str]],
        pointer_ms: int,
        anchor_id: str | None = None,
    ) -> bool:
        """Grab the selected elements. Returns False if nothing draggable is selected."""
        if self._phase == DragPhase.DRAGGING:
            raise RuntimeError("A drag is already in progress")
        self._orphaned = False
        doc = self._store.document
        elements: dict[str, Element] = {}
        for track_id, element_id in selection:
            track = doc.get_track(track_id)
            elem = track.get(element_id) if track is not None else None
            if elem is None or track.locked:
                continue
            elements[element_id] = elem
        if not elements:
            return False
        if anchor_id not in elements:
            anchor_id = min(elements.values(), key=lambda e: (e.start_ms, e.element_id)).element_id
        anchor = elements[anchor_id]

        self._base = doc
        self._elements = elements
        self._index.sync(doc)
        self._store.begin_transient_edit()
        self._state = DragState(
            element_ids=tuple(elements),
            anchor_id=anchor_id,
            pointer_offset_ms=pointer_ms - anchor.start_ms,
            origins={eid: (e.track_id, e.start_ms) for eid, e in elements.items()},
            proposed_start_ms=anchor.start_ms,
            proposed_track_id=anchor.track_id,
        )
        self._last_apply = None
        self._applied = (0, 0)
        self.store_updates = 0
        self._set_phase(DragPhase.DRAGGING)
        return True

    def pointer_moved(self, pointer_ms: float, track_id: str | None = None,
                      bypass_snap: bool = False) -> DragState | None:
        """Consume one pointer sample and return the updated candidate.

        Returns None for samples of a gesture the store already cancelled.
        """
        if self._orphaned:
            return None
        state = self._require_dragging()
        anchor = self._elements[state.anchor_id]

        track_shift = self._track_shift(anchor, track_id)
        delta = int(round(pointer_ms - state.pointer_offset_ms - anchor.start_ms))

        group_start = min(e.start_ms for e in self._elements.values())
        group_end = max(e.end_ms for e in self._elements.values())
        snap = None
        if self.snap_enabled and not bypass_snap:
            delta, snap = self._snap(delta, group_start, group_end)
        delta = max(delta, -group_start)

        conflicts = []
        for elem in self._elements.values():
            target = self._target_track(elem, track_shift)
            conflicts += self._index.collisions(
                target, elem.start_ms + delta, elem.end_ms + delta, exclude_ids=state.element_ids
            )

        state.delta_ms = delta
        state.track_shift = track_shift
        state.proposed_start_ms = anchor.start_ms + delta
        state.proposed_track_id = self._target_track(anchor, track_shift)
        state.snap_target = snap
        state.valid = not conflicts
        state.conflicts = tuple(c.element_id for c in conflicts)
        self.candidate_changed.emit(state)

        if state.valid and self.commit_interval_ms > 0:
            now = self._clock()
            if self._last_apply is None or (now - self._last_apply) * 1000 >= self.commit_interval_ms:
                self._apply(state)
                self._last_apply = now
        return state

    def pointer_released(self) -> bool:
        """End the gesture. Returns True if a history entry was pushed."""
        if self._orphaned:
            self._orphaned = False
            return False
        state = self._require_dragging()
        if not state.valid:
            logger.debug(f"Drop rejected: overlaps {state.conflicts}")
            self.cancel()
            return False
        if not self._apply(state):
            self.cancel()
            return False
        pushed = self._store.commit_transient_edit("Move elements" if len(state.element_ids) > 1 else "Move element")
        self._finish()
        self._set_phase(DragPhase.COMMITTED)
        self.committed.emit(self._store.document)
        self._set_phase(DragPhase.IDLE)
        return pushed

    def cancel(self) -> None:
        """Revert to the pre-drag document without touching the history."""
        if self._phase != DragPhase.DRAGGING:
            return
        self._cancelling = True
        try:
            self._store.cancel_transient_edit()
        finally:
            self._cancelling = False
        self._abandon()

    # ------------------------------------------------------------ Internals

    def _require_dragging(self) -> DragState:
        if self._phase != DragPhase.DRAGGING or self._state is None:
            raise RuntimeError("No drag in progress")
        return self._state

    def _on_transient_cancelled(self) -> None:
        # Undo, redo or reset in the store closed our bracket mid-gesture.
        if self._phase == DragPhase.DRAGGING and not self._cancelling:
            logger.debug("Drag abandoned: transient edit cancelled by the store")
            self._orphaned = True
            self._abandon()

    def _abandon(self) -> None:
        self._finish()
        self._set_phase(DragPhase.CANCELLED)
        self.cancelled.emit()
        self._set_phase(DragPhase.IDLE)

    def _finish(self) -> None:
        self._state = None
        self._base = None
        self._elements = {}
        self._last_apply = None
        self._applied = None

    def _set_phase(self, phase: DragPhase) -> None:
        self._phase = phase
        self.phase_changed.emit(phase)

    def _track_shift(self, anchor: Element, track_id: str | None) -> int:
        """Track-index offset requested by the pointer, 0 if not every element can follow."""
        if track_id is None or track_id == anchor.track_id:
            return 0
        doc = self._base
        target_index = doc.track_index(track_id)
        if target_index < 0:
            return 0
        shift = target_index - doc.track_index(anchor.track_id)
        for elem in self._elements.values():
            i = doc.track_index(elem.track_id) + shift
            if not 0 <= i < len(doc):
                return 0
            target = doc.tracks[i]
            if target.locked or not target.accepts(elem.kind):
                return 0
        return shift

    def _target_track(self, elem: Element, track_shift: int) -> str:
        if track_shift == 0:
            return elem.track_id
        doc = self._base
        return doc.tracks[doc.track_index(elem.track_id) + track_shift].track_id

    def _snap(self, delta: int, group_start: int, group_end: int) -> tuple[int, SnapTarget | None]:
        """Snap the leading or trailing edge of the group, whichever is closer."""
        exclude = self._state.element_ids
        lead = self._index.nearest_snap(group_start + delta, self.snap_threshold_ms, exclude_ids=exclude)
        trail = self._index.nearest_snap(group_end + delta, self.snap_threshold_ms, exclude_ids=exclude)
        lead_dist = abs(lead.time_ms - (group_start + delta)) if lead else None
        trail_dist = abs(trail.time_ms - (group_end + delta)) if trail else None
        if lead is not None and (trail is None or lead_dist <= trail_dist):
            return lead.time_ms - group_start, lead
        if trail is not None:
            return trail.time_ms - group_end, trail
        return delta, None

    def _apply(self, state: DragState) -> bool:
        """Write the candidate into the store's transient document."""
        key = (state.delta_ms, state.track_shift)
        if key == self._applied:
            return True
        moves = [
            Move(elem.track_id, elem.element_id,
                 self._target_track(elem, state.track_shift), elem.start_ms + state.delta_ms)
            for elem in self._elements.values()
        ]
        try:
            self._store.update_transient(lambda base: ops.move_elements(base, moves))
        except EditRejected as e:
            logger.debug(f"Drag candidate rejected by store: {e.reason}")
            state.valid = False
            return False
        self._applied = key
        self.store_updates += 1
        return True
