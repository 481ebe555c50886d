"""Timeline document, project and selection models (pure Python, no Qt dependency)."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterator

from fastcut.models.element import Element
from fastcut.models.errors import EditRejected
from fastcut.models.track import Track


@dataclass(frozen=True, slots=True)
class TimelineDocument:
    """Authoritative, immutable snapshot of the timeline.

    ``tracks[0]`` is the topmost layer. Every modifier returns a new
    document that reuses all untouched Track and Element objects by
    reference, so an edit only allocates along the path to the change.
    """

    tracks: tuple[Track, ...] = ()
    markers: tuple[int, ...] = ()
    version: int = 0

    def __iter__(self) -> Iterator[Track]:
        return iter(self.tracks)

    def __len__(self) -> int:
        return len(self.tracks)

    @property
    def duration_ms(self) -> int:
        """Total timeline length: the furthest element end over all tracks."""
        return max((t.end_ms for t in self.tracks), default=0)

    @property
    def element_count(self) -> int:
        return sum(len(t) for t in self.tracks)

    @property
    def is_empty(self) -> bool:
        return self.element_count == 0

    def track_index(self, track_id: str) -> int:
        for i, t in enumerate(self.tracks):
            if t.track_id == track_id:
                return i
        return -1

    def get_track(self, track_id: str) -> Track | None:
        i = self.track_index(track_id)
        return self.tracks[i] if i >= 0 else None

    def find_element(self, element_id: str) -> Element | None:
        for track in self.tracks:
            elem = track.get(element_id)
            if elem is not None:
                return elem
        return None

    # -------------------------------------------------------- Structural sharing

    def with_track(self, track: Track) -> TimelineDocument:
        """Replace the track with the same id; siblings are shared."""
        i = self.track_index(track.track_id)
        if i < 0:
            raise KeyError(track.track_id)
        tracks = self.tracks[:i] + (track,) + self.tracks[i + 1:]
        return replace(self, tracks=tracks, version=self.version + 1)

    def with_tracks(self, *tracks: Track) -> TimelineDocument:
        doc = self
        for t in tracks:
            doc = doc.with_track(t)
        return replace(doc, version=self.version + 1)

    def inserting_track(self, track: Track, index: int | None = None) -> TimelineDocument:
        if index is None:
            index = len(self.tracks)
        tracks = self.tracks[:index] + (track,) + self.tracks[index:]
        return replace(self, tracks=tracks, version=self.version + 1)

    def removing_track(self, track_id: str) -> TimelineDocument:
        tracks = tuple(t for t in self.tracks if t.track_id != track_id)
        return replace(self, tracks=tracks, version=self.version + 1)

    def with_markers(self, markers) -> TimelineDocument:
        return replace(self, markers=tuple(sorted(set(markers))), version=self.version + 1)

    def validate(self) -> None:
        """Check the invariants edits maintain; used on documents read from disk."""
        track_ids: set[str] = set()
        element_ids: set[str] = set()
        for track in self.tracks:
            if track.track_id in track_ids:
                raise EditRejected(f"duplicate track id {track.track_id}")
            track_ids.add(track.track_id)
            track.validate()
            for elem in track:
                if elem.element_id in element_ids:
                    raise EditRejected(f"duplicate element id {elem.element_id}", (elem.element_id,))
                element_ids.add(elem.element_id)
        if any(m < 0 for m in self.markers):
            raise EditRejected("markers must be >= 0")

    # -------------------------------------------------------- Serialization

    def to_dict(self) -> dict:
        return {
            "markers": list(self.markers),
            "tracks": [t.to_dict() for t in self.tracks],
        }

    @classmethod
    def from_dict(cls, data: dict) -> TimelineDocument:
        return cls(
            tracks=tuple(Track.from_dict(t) for t in data.get("tracks", [])),
            markers=tuple(sorted(data.get("markers", []))),
        )


@dataclass
class Project:
    """A project: canvas/output format plus its current document."""

    project_id: str
    width: int = 1920
    height: int = 1080
    fps: float = 30.0
    sample_rate: int = 48000
    channels: int = 2
    document: TimelineDocument = field(default_factory=TimelineDocument)

    @property
    def canvas_size(self) -> tuple[int, int]:
        return (self.width, self.height)


@dataclass(frozen=True, slots=True)
class Selection:
    """Set of selected ``(track_id, element_id)`` pairs. Never part of history."""

    items: frozenset[tuple[str, str]] = frozenset()

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(sorted(self.items))

    def __contains__(self, item: tuple[str, str]) -> bool:
        return item in self.items

    @property
    def element_ids(self) -> list[str]:
        return [eid for _, eid in sorted(self.items)]

    def add(self, track_id: str, element_id: str) -> Selection:
        return Selection(self.items | {(track_id, element_id)})

    def remove(self, track_id: str, element_id: str) -> Selection:
        return Selection(self.items - {(track_id, element_id)})

    def toggle(self, track_id: str, element_id: str) -> Selection:
        if (track_id, element_id) in self.items:
            return self.remove(track_id, element_id)
        return self.add(track_id, element_id)

    def clear(self) -> Selection:
        return Selection()

    def prune(self, document: TimelineDocument) -> Selection:
        """Drop entries whose element no longer exists on that track."""
        kept = set()
        for track_id, element_id in self.items:
            track = document.get_track(track_id)
            if track is not None and track.get(element_id) is not None:
                kept.add((track_id, element_id))
        return Selection(frozenset(kept))
