"""Timeline element model (pure Python, no Qt dependency).

Elements are immutable. Every edit produces a new instance via
``dataclasses.replace`` so that documents can share unchanged elements.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum

from fastcut.models.errors import EditRejected


class ElementKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"
    TEXT = "text"


# Properties that update_element_properties may touch, per kind.
EDITABLE_PROPERTIES: dict[ElementKind, frozenset[str]] = {
    ElementKind.VIDEO: frozenset({"opacity", "transform", "volume"}),
    ElementKind.IMAGE: frozenset({"opacity", "transform"}),
    ElementKind.AUDIO: frozenset({"volume"}),
    ElementKind.TEXT: frozenset({"opacity", "transform", "text", "font_size", "color"}),
}

_MEDIA_KINDS = (ElementKind.VIDEO, ElementKind.AUDIO, ElementKind.IMAGE)


def new_element_id() -> str:
    return uuid.uuid4().hex[:16]


@dataclass(frozen=True, slots=True)
class Transform:
    """Placement of a visual element on the canvas."""

    x: int = 0          # Pixel offset from the left edge
    y: int = 0          # Pixel offset from the top edge
    scale: float = 1.0

    @property
    def is_identity(self) -> bool:
        return self.x == 0 and self.y == 0 and self.scale == 1.0

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "scale": self.scale}

    @classmethod
    def from_dict(cls, data: dict) -> Transform:
        return cls(
            x=data.get("x", 0),
            y=data.get("y", 0),
            scale=data.get("scale", 1.0),
        )


@dataclass(frozen=True, slots=True)
class Element:
    """A time-positioned reference to media or generated content.

    The visible span on the timeline is
    ``[start_ms, start_ms + duration_ms - trim_in_ms - trim_out_ms)``.
    *duration_ms* is the length of the underlying media region; the trims
    hide its head and tail.
    """

    element_id: str
    track_id: str
    kind: ElementKind
    start_ms: int
    duration_ms: int
    media_id: str | None = None
    trim_in_ms: int = 0
    trim_out_ms: int = 0
    opacity: float = 1.0
    volume: float = 1.0
    transform: Transform = field(default_factory=Transform)
    text: str = ""
    font_size: int = 48
    color: str = "#FFFFFF"

    @property
    def visible_duration_ms(self) -> int:
        return self.duration_ms - self.trim_in_ms - self.trim_out_ms

    @property
    def end_ms(self) -> int:
        return self.start_ms + self.visible_duration_ms

    @property
    def is_visual(self) -> bool:
        return self.kind != ElementKind.AUDIO

    @property
    def is_audible(self) -> bool:
        return self.kind in (ElementKind.AUDIO, ElementKind.VIDEO) and self.media_id is not None

    def contains(self, timeline_ms: float) -> bool:
        return self.start_ms <= timeline_ms < self.end_ms

    def source_time_ms(self, timeline_ms: float) -> float:
        """Map a timeline position to a position inside the source media."""
        return self.trim_in_ms + (timeline_ms - self.start_ms)

    def validate(self) -> None:
        """Raise EditRejected if the element breaks its own invariants."""
        if self.start_ms < 0:
            raise EditRejected(f"start must be >= 0 (got {self.start_ms})")
        if self.duration_ms <= 0:
            raise EditRejected(f"duration must be > 0 (got {self.duration_ms})")
        if self.trim_in_ms < 0 or self.trim_out_ms < 0:
            raise EditRejected("trims must be >= 0")
        if self.trim_in_ms + self.trim_out_ms >= self.duration_ms:
            raise EditRejected(
                f"trim_in + trim_out ({self.trim_in_ms + self.trim_out_ms}) "
                f"must be < duration ({self.duration_ms})"
            )
        if not 0.0 <= self.opacity <= 1.0:
            raise EditRejected(f"opacity must be within [0, 1] (got {self.opacity})")
        if self.volume < 0.0:
            raise EditRejected(f"volume must be >= 0 (got {self.volume})")
        if self.transform.scale <= 0:
            raise EditRejected("transform scale must be > 0")
        if self.kind in _MEDIA_KINDS and not self.media_id:
            raise EditRejected(f"{self.kind.value} element needs a media reference")
        if self.kind == ElementKind.TEXT:
            if self.media_id is not None:
                raise EditRejected("text element cannot reference media")
            if not self.text:
                raise EditRejected("text element needs text")
            if self.font_size <= 0:
                raise EditRejected("font size must be > 0")

    def moved(self, track_id: str, start_ms: int) -> Element:
        return replace(self, track_id=track_id, start_ms=start_ms)

    def trimmed(self, trim_in_ms: int, trim_out_ms: int) -> Element:
        return replace(self, trim_in_ms=trim_in_ms, trim_out_ms=trim_out_ms)

    def with_properties(self, patch: dict) -> Element:
        """Return a copy with *patch* applied, validating keys for this kind."""
        allowed = EDITABLE_PROPERTIES[self.kind]
        unknown = set(patch) - allowed
        if unknown:
            raise EditRejected(
                f"{self.kind.value} element has no editable properties {sorted(unknown)}"
            )
        values = dict(patch)
        if "transform" in values and isinstance(values["transform"], dict):
            values["transform"] = Transform.from_dict(values["transform"])
        updated = replace(self, **values)
        updated.validate()
        return updated

    # -------------------------------------------------------- Serialization

    def to_dict(self) -> dict:
        d: dict = {
            "element_id": self.element_id,
            "kind": self.kind.value,
            "start_ms": self.start_ms,
            "duration_ms": self.duration_ms,
            "trim_in_ms": self.trim_in_ms,
            "trim_out_ms": self.trim_out_ms,
        }
        if self.media_id is not None:
            d["media_id"] = self.media_id
        if self.is_visual:
            d["opacity"] = self.opacity
            if not self.transform.is_identity:
                d["transform"] = self.transform.to_dict()
        if self.is_audible:
            d["volume"] = self.volume
        if self.kind == ElementKind.TEXT:
            d["text"] = self.text
            d["font_size"] = self.font_size
            d["color"] = self.color
        return d

    @classmethod
    def from_dict(cls, data: dict, track_id: str) -> Element:
        return cls(
            element_id=data["element_id"],
            track_id=track_id,
            kind=ElementKind(data["kind"]),
            start_ms=data["start_ms"],
            duration_ms=data["duration_ms"],
            media_id=data.get("media_id"),
            trim_in_ms=data.get("trim_in_ms", 0),
            trim_out_ms=data.get("trim_out_ms", 0),
            opacity=data.get("opacity", 1.0),
            volume=data.get("volume", 1.0),
            transform=Transform.from_dict(data.get("transform", {})),
            text=data.get("text", ""),
            font_size=data.get("font_size", 48),
            color=data.get("color", "#FFFFFF"),
        )
