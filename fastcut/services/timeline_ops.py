"""Pure edit operations on TimelineDocument values.

Every function takes a document and returns a new one (plus ids where the
caller needs them). Only the tracks an edit touches are rebuilt; every
other Track and Element is shared with the input document. Invariant
violations raise EditRejected and leave nothing half-applied, since the
input document is never modified.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable

from fastcut.models.document import TimelineDocument
from fastcut.models.element import Element, new_element_id
from fastcut.models.errors import EditRejected
from fastcut.models.track import Track, TrackKind, new_track_id


class OverlapPolicy(str, Enum):
    """How an explicitly overridden overlap is resolved."""

    OVERWRITE = "overwrite"  # Overlapped elements are truncated, split or removed
    RIPPLE = "ripple"        # Elements from the insertion point on are pushed right


@dataclass(frozen=True)
class Move:
    """One element relocation inside a (possibly multi-element) move."""

    track_id: str
    element_id: str
    new_track_id: str
    new_start_ms: int


# ------------------------------------------------------------------ Lookups


def _require_track(doc: TimelineDocument, track_id: str, editable: bool = True) -> Track:
    track = doc.get_track(track_id)
    if track is None:
        raise EditRejected(f"no track {track_id!r}")
    if editable and track.locked:
        raise EditRejected(f"track {track_id!r} is locked")
    return track


def _require_element(doc: TimelineDocument, track_id: str, element_id: str) -> tuple[Track, Element]:
    track = _require_track(doc, track_id)
    elem = track.get(element_id)
    if elem is None:
        raise EditRejected(f"no element {element_id!r} on track {track_id!r}")
    return track, elem


# ------------------------------------------------------------------ Overlap resolution


def _overwrite(track: Track, incoming: Element, conflicts: list[Element]) -> Track:
    """Cut the conflicting elements back so that *incoming* fits."""
    s, e = incoming.start_ms, incoming.end_ms
    replacements: list[Element] = []
    for c in conflicts:
        if c.start_ms < s:
            # Head part survives up to the incoming start.
            replacements.append(replace(c, trim_out_ms=c.trim_out_ms + (c.end_ms - s)))
        if c.end_ms > e:
            # Tail part survives from the incoming end.
            tail_id = c.element_id if c.start_ms >= s else new_element_id()
            replacements.append(replace(
                c,
                element_id=tail_id,
                start_ms=e,
                trim_in_ms=c.trim_in_ms + (e - c.start_ms),
            ))
    return track.replacing((c.element_id for c in conflicts), (*replacements, incoming))


def _ripple(track: Track, incoming: Element, conflicts: list[Element]) -> Track:
    """Split an element straddling the insertion point, then push the rest right."""
    s = incoming.start_ms
    delta = incoming.visible_duration_ms
    removed: list[str] = []
    added: list[Element] = []
    for c in conflicts:
        if c.start_ms < s:
            removed.append(c.element_id)
            added.append(replace(c, trim_out_ms=c.trim_out_ms + (c.end_ms - s)))
            added.append(replace(
                c,
                element_id=new_element_id(),
                start_ms=s + delta,
                trim_in_ms=c.trim_in_ms + (s - c.start_ms),
            ))
    for elem in track:
        if elem.start_ms >= s and elem.element_id not in removed:
            removed.append(elem.element_id)
            added.append(replace(elem, start_ms=elem.start_ms + delta))
    added.append(incoming)
    return track.replacing(removed, added)


def _place(
    track: Track,
    incoming: Element,
    override: bool,
    policy: OverlapPolicy,
) -> Track:
    """Insert *incoming* into *track*, enforcing the no-overlap invariant."""
    if not track.accepts(incoming.kind):
        raise EditRejected(
            f"{incoming.kind.value} element cannot be placed on a {track.kind.value} track"
        )
    conflicts = track.overlapping(incoming.start_ms, incoming.end_ms)
    if not conflicts:
        return track.with_element(incoming)
    if not override:
        raise EditRejected(
            f"element would overlap {len(conflicts)} element(s) on track {track.track_id!r}",
            conflicts=tuple(c.element_id for c in conflicts),
        )
    if policy == OverlapPolicy.RIPPLE:
        return _ripple(track, incoming, conflicts)
    return _overwrite(track, incoming, conflicts)


# ------------------------------------------------------------------ Element edits


def add_element(
    doc: TimelineDocument,
    track_id: str,
    element: Element,
    override: bool = False,
    policy: OverlapPolicy = OverlapPolicy.OVERWRITE,
) -> tuple[TimelineDocument, str]:
    track = _require_track(doc, track_id)
    if not element.element_id:
        element = replace(element, element_id=new_element_id())
    if doc.find_element(element.element_id) is not None:
        raise EditRejected(f"element id {element.element_id!r} already exists")
    element = replace(element, track_id=track_id)
    element.validate()
    return doc.with_track(_place(track, element, override, policy)), element.element_id


def remove_element(doc: TimelineDocument, track_id: str, element_id: str) -> TimelineDocument:
    track, _ = _require_element(doc, track_id, element_id)
    return doc.with_track(track.without_element(element_id))


def move_elements(
    doc: TimelineDocument,
    moves: Iterable[Move],
    override: bool = False,
    policy: OverlapPolicy = OverlapPolicy.OVERWRITE,
) -> TimelineDocument:
    """Relocate one or more elements atomically."""
    moves = list(moves)
    if not moves:
        return doc
    tracks: dict[str, Track] = {}
    moving: list[Element] = []
    displaced = False
    for mv in moves:
        track, elem = _require_element(doc, mv.track_id, mv.element_id)
        _require_track(doc, mv.new_track_id)
        if mv.new_start_ms < 0:
            raise EditRejected(f"start must be >= 0 (got {mv.new_start_ms})")
        tracks.setdefault(track.track_id, track)
        moving.append(elem.moved(mv.new_track_id, mv.new_start_ms))
        if mv.new_track_id != elem.track_id or mv.new_start_ms != elem.start_ms:
            displaced = True
    if not displaced:
        return doc

    # Lift every moving element first so they never collide with their own old spans.
    moving_ids = {mv.element_id for mv in moves}
    for track_id, track in list(tracks.items()):
        tracks[track_id] = track.replacing(moving_ids)

    for elem in moving:
        target = tracks.get(elem.track_id)
        if target is None:
            target = doc.get_track(elem.track_id)
        clash = [
            o for o in moving
            if o is not elem and o.track_id == elem.track_id
            and o.start_ms < elem.end_ms and elem.start_ms < o.end_ms
        ]
        if clash:
            raise EditRejected(
                "moved elements would overlap each other",
                conflicts=tuple(o.element_id for o in clash),
            )
        tracks[elem.track_id] = _place(target, elem, override, policy)

    return doc.with_tracks(*tracks.values())


def move_element(
    doc: TimelineDocument,
    track_id: str,
    element_id: str,
    new_track_id: str,
    new_start_ms: int,
    override: bool = False,
    policy: OverlapPolicy = OverlapPolicy.OVERWRITE,
) -> TimelineDocument:
    return move_elements(doc, [Move(track_id, element_id, new_track_id, new_start_ms)], override, policy)


def trim_element(
    doc: TimelineDocument,
    track_id: str,
    element_id: str,
    new_trim_in_ms: int,
    new_trim_out_ms: int,
) -> TimelineDocument:
    """Change the trims; the media stays anchored, so the start follows trim_in."""
    track, elem = _require_element(doc, track_id, element_id)
    new_start = elem.start_ms + (new_trim_in_ms - elem.trim_in_ms)
    if new_start < 0:
        raise EditRejected(f"trim would move the element before 0 (start {new_start})")
    trimmed = replace(elem, start_ms=new_start, trim_in_ms=new_trim_in_ms, trim_out_ms=new_trim_out_ms)
    trimmed.validate()
    conflicts = track.overlapping(trimmed.start_ms, trimmed.end_ms, exclude=(element_id,))
    if conflicts:
        raise EditRejected(
            "trim would overlap neighbouring elements",
            conflicts=tuple(c.element_id for c in conflicts),
        )
    return doc.with_track(track.replacing((element_id,), (trimmed,)))


def split_element(
    doc: TimelineDocument,
    track_id: str,
    element_id: str,
    at_ms: int,
) -> tuple[TimelineDocument, str, str]:
    """Split into two contiguous elements; the left one keeps the original id."""
    track, elem = _require_element(doc, track_id, element_id)
    if not elem.start_ms < at_ms < elem.end_ms:
        raise EditRejected(
            f"split point {at_ms} outside visible span [{elem.start_ms}, {elem.end_ms})"
        )
    left = replace(elem, trim_out_ms=elem.trim_out_ms + (elem.end_ms - at_ms))
    right = replace(
        elem,
        element_id=new_element_id(),
        start_ms=at_ms,
        trim_in_ms=elem.trim_in_ms + (at_ms - elem.start_ms),
    )
    new_doc = doc.with_track(track.replacing((element_id,), (left, right)))
    return new_doc, left.element_id, right.element_id


def update_element_properties(
    doc: TimelineDocument,
    track_id: str,
    element_id: str,
    patch: dict,
) -> TimelineDocument:
    track, elem = _require_element(doc, track_id, element_id)
    if not patch:
        return doc
    updated = elem.with_properties(patch)
    return doc.with_track(track.replacing((element_id,), (updated,)))


def ripple_delete(doc: TimelineDocument, track_id: str, element_id: str) -> TimelineDocument:
    """Remove an element and close the gap it leaves on its track."""
    track, elem = _require_element(doc, track_id, element_id)
    gap = elem.visible_duration_ms
    shifted = [replace(e, start_ms=e.start_ms - gap) for e in track if e.start_ms >= elem.end_ms]
    removed = [element_id] + [e.element_id for e in shifted]
    return doc.with_track(track.replacing(removed, shifted))


# ------------------------------------------------------------------ Track edits


def add_track(
    doc: TimelineDocument,
    kind: TrackKind,
    name: str | None = None,
    index: int | None = None,
    track_id: str | None = None,
) -> tuple[TimelineDocument, str]:
    track_id = track_id or new_track_id()
    if doc.get_track(track_id) is not None:
        raise EditRejected(f"track id {track_id!r} already exists")
    if index is not None and not 0 <= index <= len(doc):
        raise EditRejected(f"track index {index} out of range")
    kind = TrackKind(kind)
    track = Track(track_id=track_id, kind=kind, name=name or f"{kind.value.title()} {len(doc) + 1}")
    return doc.inserting_track(track, index), track_id


def remove_track(doc: TimelineDocument, track_id: str) -> TimelineDocument:
    _require_track(doc, track_id)
    return doc.removing_track(track_id)


def set_track_flags(
    doc: TimelineDocument,
    track_id: str,
    muted: bool | None = None,
    locked: bool | None = None,
    volume: float | None = None,
    hidden: bool | None = None,
) -> TimelineDocument:
    track = _require_track(doc, track_id, editable=False)
    if volume is not None and volume < 0:
        raise EditRejected(f"track volume must be >= 0 (got {volume})")
    updated = track.with_flags(muted=muted, locked=locked, volume=volume, hidden=hidden)
    if updated == track:
        return doc
    return doc.with_track(updated)


def add_marker(doc: TimelineDocument, ms: int) -> TimelineDocument:
    if ms < 0:
        raise EditRejected(f"marker must be >= 0 (got {ms})")
    return doc.with_markers((*doc.markers, ms))


def remove_marker(doc: TimelineDocument, ms: int) -> TimelineDocument:
    if ms not in doc.markers:
        raise EditRejected(f"no marker at {ms}")
    return doc.with_markers(m for m in doc.markers if m != ms)
