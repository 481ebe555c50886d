"""Track model: an ordered lane of non-overlapping elements of one kind."""

from __future__ import annotations

import bisect
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Iterator

from fastcut.models.element import Element, ElementKind
from fastcut.models.errors import EditRejected


class TrackKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    TEXT = "text"


ALLOWED_ELEMENT_KINDS: dict[TrackKind, tuple[ElementKind, ...]] = {
    TrackKind.VIDEO: (ElementKind.VIDEO, ElementKind.IMAGE),
    TrackKind.AUDIO: (ElementKind.AUDIO,),
    TrackKind.TEXT: (ElementKind.TEXT,),
}


def new_track_id() -> str:
    return uuid.uuid4().hex[:16]


def _sorted(elements: Iterable[Element]) -> tuple[Element, ...]:
    return tuple(sorted(elements, key=lambda e: (e.start_ms, e.element_id)))


@dataclass(frozen=True, slots=True)
class Track:
    """Immutable track. Elements are kept sorted by start time.

    The ordering is recomputed by every method that returns a modified
    track; callers never sort by hand.
    """

    track_id: str
    kind: TrackKind
    elements: tuple[Element, ...] = ()
    name: str = ""
    muted: bool = False     # Silences audio only
    hidden: bool = False    # Hides visuals only
    locked: bool = False
    volume: float = 1.0
    _starts: tuple[int, ...] = field(init=False, repr=False, compare=False, default=())
    _ends: tuple[int, ...] = field(init=False, repr=False, compare=False, default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "_starts", tuple(e.start_ms for e in self.elements))
        object.__setattr__(self, "_ends", tuple(e.end_ms for e in self.elements))

    def __len__(self) -> int:
        return len(self.elements)

    def __iter__(self) -> Iterator[Element]:
        return iter(self.elements)

    def __getitem__(self, index: int) -> Element:
        return self.elements[index]

    @property
    def end_ms(self) -> int:
        """End of the last visible span (0 for an empty track)."""
        return self._ends[-1] if self._ends else 0

    @property
    def is_visual(self) -> bool:
        return self.kind != TrackKind.AUDIO

    def accepts(self, kind: ElementKind) -> bool:
        return kind in ALLOWED_ELEMENT_KINDS[self.kind]

    # -------------------------------------------------------- Queries

    def index_of(self, element_id: str) -> int:
        for i, e in enumerate(self.elements):
            if e.element_id == element_id:
                return i
        return -1

    def get(self, element_id: str) -> Element | None:
        i = self.index_of(element_id)
        return self.elements[i] if i >= 0 else None

    def element_at(self, timeline_ms: float) -> Element | None:
        """Return the element whose visible span contains *timeline_ms*.

        Binary search over start times; valid because spans never overlap.
        """
        idx = bisect.bisect_right(self._starts, timeline_ms) - 1
        if idx < 0:
            return None
        elem = self.elements[idx]
        return elem if elem.contains(timeline_ms) else None

    def overlapping(self, start_ms: int, end_ms: int, exclude: Iterable[str] = ()) -> list[Element]:
        """Elements whose visible span intersects ``[start_ms, end_ms)``."""
        if end_ms <= start_ms:
            return []
        skip = set(exclude)
        # Ends are sorted too because spans are disjoint and ordered.
        idx = bisect.bisect_right(self._ends, start_ms)
        result = []
        for elem in self.elements[idx:]:
            if elem.start_ms >= end_ms:
                break
            if elem.element_id not in skip and elem.end_ms > start_ms:
                result.append(elem)
        return result

    def elements_in_range(self, start_ms: float, end_ms: float) -> list[Element]:
        return [e for e in self.elements if e.start_ms < end_ms and e.end_ms > start_ms]

    # -------------------------------------------------------- Editing

    def with_element(self, element: Element) -> Track:
        if not self.accepts(element.kind):
            raise EditRejected(
                f"{element.kind.value} element cannot be placed on a {self.kind.value} track"
            )
        return replace(self, elements=_sorted((*self.elements, element)))

    def without_element(self, element_id: str) -> Track:
        return replace(
            self, elements=tuple(e for e in self.elements if e.element_id != element_id)
        )

    def replacing(self, removed_ids: Iterable[str], added: Iterable[Element] = ()) -> Track:
        """Drop *removed_ids* and insert *added* in a single pass."""
        removed = set(removed_ids)
        kept = [e for e in self.elements if e.element_id not in removed]
        added = list(added)
        for elem in added:
            if not self.accepts(elem.kind):
                raise EditRejected(
                    f"{elem.kind.value} element cannot be placed on a {self.kind.value} track"
                )
        return replace(self, elements=_sorted(kept + added))

    def with_flags(
        self,
        muted: bool | None = None,
        locked: bool | None = None,
        volume: float | None = None,
        hidden: bool | None = None,
    ) -> Track:
        return replace(
            self,
            muted=self.muted if muted is None else muted,
            hidden=self.hidden if hidden is None else hidden,
            locked=self.locked if locked is None else locked,
            volume=self.volume if volume is None else volume,
        )

    def validate(self) -> None:
        """Raise EditRejected unless every element is valid, fits the track and
        no two visible spans overlap."""
        prev: Element | None = None
        for elem in self.elements:
            elem.validate()
            if not self.accepts(elem.kind):
                raise EditRejected(
                    f"{elem.kind.value} element cannot be placed on a {self.kind.value} track"
                )
            if prev is not None and prev.end_ms > elem.start_ms:
                raise EditRejected(
                    f"{prev.element_id} overlaps {elem.element_id} on track {self.track_id}",
                    (prev.element_id, elem.element_id),
                )
            prev = elem

    # -------------------------------------------------------- Serialization

    def to_dict(self) -> dict:
        return {
            "track_id": self.track_id,
            "kind": self.kind.value,
            "name": self.name,
            "muted": self.muted,
            "hidden": self.hidden,
            "locked": self.locked,
            "volume": self.volume,
            "elements": [e.to_dict() for e in self.elements],
        }

    @classmethod
    def from_dict(cls, data: dict) -> Track:
        track_id = data["track_id"]
        return cls(
            track_id=track_id,
            kind=TrackKind(data["kind"]),
            name=data.get("name", ""),
            muted=data.get("muted", False),
            hidden=data.get("hidden", False),
            locked=data.get("locked", False),
            volume=data.get("volume", 1.0),
            elements=_sorted(Element.from_dict(d, track_id) for d in data.get("elements", [])),
        )
