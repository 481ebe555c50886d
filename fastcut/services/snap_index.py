"""Snap & collision index over element edges.

Keeps a sorted edge list per track so that "nearest edge within a
threshold" is a binary search (same idea as the old drag manager's
``apply_snap``), plus the playhead, the origin and user markers as
always-present candidates. ``sync`` updates only the tracks whose object
identity changed, and inside those only the edges of elements that were
added, removed or changed.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from fastcut.models.document import TimelineDocument
from fastcut.models.element import Element
from fastcut.models.track import Track


class SnapSource(str, Enum):
    EDGE = "edge"
    PLAYHEAD = "playhead"
    MARKER = "marker"
    ORIGIN = "origin"


@dataclass(frozen=True)
class SnapTarget:
    time_ms: int
    source: SnapSource
    track_id: str | None = None
    element_id: str | None = None


class _TrackEdges:
    """Sorted ``(time, element_id)`` edges of one track plus its element map."""

    __slots__ = ("track", "edges", "elements")

    def __init__(self, track: Track):
        self.track = track
        self.elements: dict[str, Element] = {e.element_id: e for e in track}
        self.edges: list[tuple[int, str]] = sorted(
            edge for e in track for edge in ((e.start_ms, e.element_id), (e.end_ms, e.element_id))
        )

    def update(self, track: Track) -> None:
        new_elements = {e.element_id: e for e in track}
        for element_id, old in self.elements.items():
            new = new_elements.get(element_id)
            if new is old:
                continue
            self._remove_edge((old.start_ms, element_id))
            self._remove_edge((old.end_ms, element_id))
        for element_id, new in new_elements.items():
            if self.elements.get(element_id) is new:
                continue
            bisect.insort(self.edges, (new.start_ms, element_id))
            bisect.insort(self.edges, (new.end_ms, element_id))
        self.elements = new_elements
        self.track = track

    def _remove_edge(self, edge: tuple[int, str]) -> None:
        i = bisect.bisect_left(self.edges, edge)
        if i < len(self.edges) and self.edges[i] == edge:
            del self.edges[i]


class SnapIndex:
    """Answers nearest-snap and overlap queries for the drag controller."""

    def __init__(self, document: TimelineDocument | None = None):
        self._document: TimelineDocument | None = None
        self._tracks: dict[str, _TrackEdges] = {}
        self._markers: list[int] = []
        self._playhead_ms: int | None = None
        self.rebuilt_tracks = 0  # Tracks re-indexed by the last sync()
        if document is not None:
            self.sync(document)

    @property
    def document(self) -> TimelineDocument | None:
        return self._document

    def set_playhead(self, ms: int | None) -> None:
        self._playhead_ms = ms

    def set_markers(self, markers: Iterable[int]) -> None:
        self._markers = sorted(set(markers))

    def sync(self, document: TimelineDocument) -> None:
        """Bring the index up to date with *document* incrementally."""
        self.rebuilt_tracks = 0
        if document is self._document:
            return
        seen = set()
        for track in document.tracks:
            seen.add(track.track_id)
            entry = self._tracks.get(track.track_id)
            if entry is None:
                self._tracks[track.track_id] = _TrackEdges(track)
                self.rebuilt_tracks += 1
            elif entry.track is not track:
                entry.update(track)
                self.rebuilt_tracks += 1
        for track_id in list(self._tracks):
            if track_id not in seen:
                del self._tracks[track_id]
        if self._document is None or document.markers != self._document.markers:
            self.set_markers(document.markers)
        self._document = document

    # ------------------------------------------------------------ Queries

    def edges(self, track_id: str) -> list[int]:
        entry = self._tracks.get(track_id)
        return [t for t, _ in entry.edges] if entry else []

    def nearest_snap(
        self,
        time_ms: float,
        threshold_ms: float,
        track_ids: Iterable[str] | None = None,
        exclude_ids: Iterable[str] = (),
    ) -> SnapTarget | None:
        """Closest snap candidate within *threshold_ms* of *time_ms*, or None."""
        exclude = set(exclude_ids)
        best: SnapTarget | None = None
        best_dist = float("inf")

        def consider(candidate: SnapTarget) -> None:
            nonlocal best, best_dist
            dist = abs(candidate.time_ms - time_ms)
            if dist <= threshold_ms and dist < best_dist:
                best, best_dist = candidate, dist

        consider(SnapTarget(0, SnapSource.ORIGIN))
        if self._playhead_ms is not None:
            consider(SnapTarget(self._playhead_ms, SnapSource.PLAYHEAD))
        idx = bisect.bisect_left(self._markers, time_ms)
        for i in (idx - 1, idx):
            if 0 <= i < len(self._markers):
                consider(SnapTarget(self._markers[i], SnapSource.MARKER))

        ids = list(self._tracks) if track_ids is None else track_ids
        for track_id in ids:
            entry = self._tracks.get(track_id)
            if entry is None:
                continue
            edges = entry.edges
            idx = bisect.bisect_left(edges, (time_ms, ""))
            # Walk outwards past excluded edges; stop once beyond the threshold.
            i = idx - 1
            while i >= 0 and time_ms - edges[i][0] <= threshold_ms:
                if edges[i][1] not in exclude:
                    consider(SnapTarget(edges[i][0], SnapSource.EDGE, track_id, edges[i][1]))
                    break
                i -= 1
            i = idx
            while i < len(edges) and edges[i][0] - time_ms <= threshold_ms:
                if edges[i][1] not in exclude:
                    consider(SnapTarget(edges[i][0], SnapSource.EDGE, track_id, edges[i][1]))
                    break
                i += 1
        return best

    def collisions(
        self,
        track_id: str,
        start_ms: int,
        end_ms: int,
        exclude_ids: Iterable[str] = (),
    ) -> list[Element]:
        """Existing elements on *track_id* overlapping ``[start_ms, end_ms)``."""
        entry = self._tracks.get(track_id)
        if entry is None:
            return []
        return entry.track.overlapping(start_ms, end_ms, exclude=exclude_ids)
