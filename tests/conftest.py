"""Shared fixtures: offscreen Qt, fake media decoder / encoder, sample documents."""

from __future__ import annotations

import os
import threading
import time

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import numpy as np
import pytest

from fastcut.infrastructure.decoder import AudioChunk
from fastcut.models.document import Project, TimelineDocument
from fastcut.models.element import Element, ElementKind
from fastcut.models.errors import DecodeFailure, EncodeFailure, MuxFailure
from fastcut.models.track import Track, TrackKind
from fastcut.services.media_cache import MediaCache
from fastcut.services.timeline_store import TimelineStore


class FakeDecoder:
    """Solid-colour frames and constant-level audio. Counts every decode."""

    def __init__(self, width: int = 8, height: int = 6, sample_rate: int = 48000,
                 channels: int = 2, delay: float = 0.0):
        self.width = width
        self.height = height
        self.sample_rate = sample_rate
        self.channels = channels
        self.delay = delay
        self.colors: dict[str, tuple[int, int, int, int]] = {}
        self.levels: dict[str, float] = {}
        self.failing: set[str] = set()
        self.frame_calls = 0
        self.audio_calls = 0
        self._lock = threading.Lock()

    def decode_frame(self, media_id: str, timestamp_ms: float) -> np.ndarray:
        with self._lock:
            self.frame_calls += 1
        if self.delay:
            time.sleep(self.delay)
        if media_id in self.failing:
            raise DecodeFailure(media_id, "corrupt")
        color = self.colors.get(media_id, (255, 255, 255, 255))
        return np.full((self.height, self.width, 4), color, dtype=np.uint8)

    def decode_audio_chunk(self, media_id: str, start_ms: float, end_ms: float) -> AudioChunk:
        with self._lock:
            self.audio_calls += 1
        if media_id in self.failing:
            raise DecodeFailure(media_id, "corrupt")
        frames = int(round((end_ms - start_ms) * self.sample_rate / 1000))
        level = self.levels.get(media_id, 0.25)
        return AudioChunk(np.full((frames, self.channels), level, dtype=np.float32), self.sample_rate)


class FakeEncoder:
    """Records what it receives; can fail on a given frame or at finalize."""

    def __init__(self, fail_at_frame: int | None = None, fail_on_finalize: bool = False):
        self.fail_at_frame = fail_at_frame
        self.fail_on_finalize = fail_on_finalize
        self.target = None
        self.opened_with: dict = {}
        self.frame_indices: list[int] = []
        self.audio_positions: list[int] = []
        self.sample_count = 0
        self.finalized = False
        self.aborted = False

    def open(self, target, settings, width, height, fps, sample_rate, channels) -> None:
        self.target = target
        self.opened_with = dict(width=width, height=height, fps=fps,
                                sample_rate=sample_rate, channels=channels)
        target.open()

    def write_video(self, index: int, frame: np.ndarray) -> None:
        if index == self.fail_at_frame:
            raise EncodeFailure(f"encoder rejected frame {index}")
        self.frame_indices.append(index)

    def write_audio(self, first_sample: int, samples: np.ndarray) -> None:
        self.audio_positions.append(first_sample)
        self.sample_count += samples.shape[0]

    def finalize(self) -> None:
        if self.fail_on_finalize:
            raise MuxFailure("mux failed")
        self.target.write(b"FAKE" + len(self.frame_indices).to_bytes(4, "little"))
        self.finalized = True

    def abort(self) -> None:
        self.aborted = True


def video(element_id: str, start_ms: int, duration_ms: int, track_id: str = "v1",
          media_id: str = "m1", **kwargs) -> Element:
    return Element(element_id=element_id, track_id=track_id, kind=ElementKind.VIDEO,
                   start_ms=start_ms, duration_ms=duration_ms, media_id=media_id, **kwargs)


def audio(element_id: str, start_ms: int, duration_ms: int, track_id: str = "a1",
          media_id: str = "snd", **kwargs) -> Element:
    return Element(element_id=element_id, track_id=track_id, kind=ElementKind.AUDIO,
                   start_ms=start_ms, duration_ms=duration_ms, media_id=media_id, **kwargs)


@pytest.fixture(autouse=True)
def _qapp(qapp):
    """Every test runs with a (offscreen) QApplication available."""
    return qapp


@pytest.fixture
def make_video():
    return video


@pytest.fixture
def make_audio():
    return audio


@pytest.fixture
def fake_decoder() -> FakeDecoder:
    return FakeDecoder()


@pytest.fixture
def cache(fake_decoder) -> MediaCache:
    return MediaCache(fake_decoder, capacity=64)


@pytest.fixture
def doc_ab() -> TimelineDocument:
    """One video track with A [0, 5000) and B [5000, 10000), plus an empty audio track."""
    v1 = Track("v1", TrackKind.VIDEO, (video("A", 0, 5000), video("B", 5000, 5000)), name="Video 1")
    a1 = Track("a1", TrackKind.AUDIO, name="Audio 1")
    return TimelineDocument(tracks=(v1, a1))


@pytest.fixture
def store(doc_ab) -> TimelineStore:
    return TimelineStore(doc_ab)


@pytest.fixture
def project(doc_ab) -> Project:
    return Project(project_id="p1", width=8, height=6, fps=30.0,
                   sample_rate=8000, channels=2, document=doc_ab)


@pytest.fixture
def fake_encoder() -> FakeEncoder:
    return FakeEncoder()
