"""Decoded frame / audio cache shared by preview and export rendering.

LRU-bounded and thread-safe. Concurrent misses on the same key wait on a
single in-flight decode instead of decoding twice.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future
from typing import Any, Callable, Hashable

import numpy as np

from fastcut.infrastructure.decoder import AudioChunk, IMediaDecoder
from fastcut.models.errors import DecodeFailure
from fastcut.utils.config import MEDIA_CACHE_CAPACITY

logger = logging.getLogger(__name__)


class MediaCache:
    """LRU cache keyed by ``(kind, media_id, time...)``.

    Cached arrays are marked read-only; callers must copy before
    modifying them.
    """

    def __init__(self, decoder: IMediaDecoder, capacity: int = MEDIA_CACHE_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._decoder = decoder
        self._capacity = capacity
        self._lock = threading.Lock()
        self._entries: OrderedDict[Hashable, Any] = OrderedDict()
        self._inflight: dict[Hashable, Future] = {}
        self.hits = 0
        self.misses = 0
        self.decode_calls = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    @staticmethod
    def frame_key(media_id: str, timestamp_ms: float) -> tuple:
        return ("frame", media_id, round(float(timestamp_ms), 3))

    @staticmethod
    def audio_key(media_id: str, start_ms: float, end_ms: float) -> tuple:
        return ("audio", media_id, round(float(start_ms), 3), round(float(end_ms), 3))

    def get_frame(self, media_id: str, timestamp_ms: float) -> np.ndarray:
        """Decoded RGBA frame of *media_id* at source time *timestamp_ms*."""
        return self._get(
            self.frame_key(media_id, timestamp_ms),
            media_id,
            lambda: self._decoder.decode_frame(media_id, timestamp_ms),
        )

    def get_audio(self, media_id: str, start_ms: float, end_ms: float) -> AudioChunk:
        """Decoded audio of ``[start_ms, end_ms)`` in source time."""
        return self._get(
            self.audio_key(media_id, start_ms, end_ms),
            media_id,
            lambda: self._decoder.decode_audio_chunk(media_id, start_ms, end_ms),
        )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _get(self, key: Hashable, media_id: str, loader: Callable[[], Any]) -> Any:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self.hits += 1
                return self._entries[key]
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future
                self.misses += 1
                self.decode_calls += 1

        if not owner:
            # Another thread is decoding this key; share its result or error.
            return future.result()

        try:
            value = _freeze(loader())
        except DecodeFailure as e:
            self._finish_failed(key, future, e)
            raise
        except Exception as e:
            failure = DecodeFailure(media_id, str(e))
            failure.__cause__ = e
            self._finish_failed(key, future, failure)
            raise failure from e

        with self._lock:
            self._entries[key] = value
            while len(self._entries) > self._capacity:
                self._entries.popitem(last=False)
            del self._inflight[key]
        future.set_result(value)
        return value

    def _finish_failed(self, key: Hashable, future: Future, error: DecodeFailure) -> None:
        logger.warning(f"Decode failed for {key}: {error}")
        with self._lock:
            self._inflight.pop(key, None)
        future.set_exception(error)


def _freeze(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        value.setflags(write=False)
    elif isinstance(value, AudioChunk):
        value.samples.setflags(write=False)
    return value
