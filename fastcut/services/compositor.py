"""Frame compositor: layers the active elements of a document into one RGBA frame.

Pure with respect to the document. Rendering the same document at the
same timestamp twice gives identical pixels, and the second render is
served from the memo and the media cache without new decodes.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from functools import lru_cache

import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFont

from fastcut.models.document import TimelineDocument
from fastcut.models.element import Element, ElementKind
from fastcut.models.errors import DecodeFailure
from fastcut.models.track import Track
from fastcut.services.media_cache import MediaCache

logger = logging.getLogger(__name__)

_MEMO_SIZE = 64
_CHECKER_PX = 32


def _get_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    try:
        return ImageFont.truetype("arial.ttf", size)
    except OSError:
        try:
            return ImageFont.truetype("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf", size)
        except OSError:
            return ImageFont.load_default()


@lru_cache(maxsize=128)
def render_text(text: str, font_size: int, color: str) -> np.ndarray:
    """Rasterize *text* into a tight RGBA image (read-only array)."""
    font = _get_font(font_size)
    probe = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    left, top, right, bottom = probe.multiline_textbbox((0, 0), text, font=font)
    img = Image.new("RGBA", (max(1, right - left), max(1, bottom - top)), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    rgb = ImageColor.getrgb(color)[:3]
    draw.multiline_text((-left, -top), text, fill=(*rgb, 255), font=font)
    arr = np.asarray(img, dtype=np.uint8).copy()
    arr.setflags(write=False)
    return arr


@lru_cache(maxsize=8)
def placeholder_frame(width: int, height: int) -> np.ndarray:
    """Magenta/black checkerboard shown in place of undecodable media."""
    ys = (np.arange(height) // _CHECKER_PX)[:, None]
    xs = (np.arange(width) // _CHECKER_PX)[None, :]
    magenta = ((ys + xs) % 2 == 0)
    frame = np.zeros((height, width, 4), dtype=np.uint8)
    frame[..., 3] = 255
    frame[magenta, 0] = 255
    frame[magenta, 2] = 255
    frame.setflags(write=False)
    return frame


class Compositor:
    """Renders ``(document, timestamp)`` to an ``(height, width, 4)`` uint8 frame."""

    def __init__(self, cache: MediaCache, width: int, height: int):
        self._cache = cache
        self._width = width
        self._height = height
        self._memo: OrderedDict[tuple[int, float], tuple[TimelineDocument, list]] = OrderedDict()
        self._memo_lock = threading.Lock()
        self.decode_failures = 0

    @property
    def size(self) -> tuple[int, int]:
        return (self._width, self._height)

    def active_elements(self, document: TimelineDocument, timestamp_ms: float) -> list[tuple[Track, Element]]:
        """Visual elements shown at *timestamp_ms*, bottom layer first."""
        key = (id(document), float(timestamp_ms))
        with self._memo_lock:
            hit = self._memo.get(key)
            if hit is not None and hit[0] is document:
                self._memo.move_to_end(key)
                return hit[1]
        active = []
        for track in reversed(document.tracks):
            if track.hidden or not track.is_visual:
                continue
            elem = track.element_at(timestamp_ms)
            if elem is not None and elem.is_visual:
                active.append((track, elem))
        # The document reference keeps id() from being reused while memoized.
        with self._memo_lock:
            self._memo[key] = (document, active)
            while len(self._memo) > _MEMO_SIZE:
                self._memo.popitem(last=False)
        return active

    def render_frame(self, document: TimelineDocument, timestamp_ms: float) -> np.ndarray:
        canvas = np.zeros((self._height, self._width, 3), dtype=np.float32)
        for _track, elem in self.active_elements(document, timestamp_ms):
            layer = self._layer_image(elem, timestamp_ms)
            self._blend(canvas, layer, elem)
        out = np.empty((self._height, self._width, 4), dtype=np.uint8)
        out[..., :3] = np.clip(np.rint(canvas), 0, 255).astype(np.uint8)
        out[..., 3] = 255
        return out

    def _layer_image(self, elem: Element, timestamp_ms: float) -> np.ndarray:
        if elem.kind == ElementKind.TEXT:
            return render_text(elem.text, elem.font_size, elem.color)
        source_ms = elem.source_time_ms(timestamp_ms) if elem.kind == ElementKind.VIDEO else 0
        try:
            return self._cache.get_frame(elem.media_id, source_ms)
        except DecodeFailure as e:
            self.decode_failures += 1
            logger.warning(f"Placeholder for element {elem.element_id}: {e}")
            return placeholder_frame(self._width, self._height)

    def _blend(self, canvas: np.ndarray, layer: np.ndarray, elem: Element) -> None:
        """Alpha-composite *layer* over *canvas* in place, honoring transform and opacity."""
        t = elem.transform
        if t.scale != 1.0:
            h, w = layer.shape[:2]
            new_size = (max(1, round(w * t.scale)), max(1, round(h * t.scale)))
            layer = np.asarray(Image.fromarray(np.ascontiguousarray(layer)).resize(new_size, Image.Resampling.BILINEAR))

        h, w = layer.shape[:2]
        # Visible region of the layer after the pixel offset, clipped to the canvas.
        x0, y0 = max(0, t.x), max(0, t.y)
        x1, y1 = min(self._width, t.x + w), min(self._height, t.y + h)
        if x0 >= x1 or y0 >= y1:
            return
        src = layer[y0 - t.y:y1 - t.y, x0 - t.x:x1 - t.x].astype(np.float32)
        alpha = src[..., 3:4] * (elem.opacity / 255.0)
        region = canvas[y0:y1, x0:x1]
        region *= 1.0 - alpha
        region += src[..., :3] * alpha
