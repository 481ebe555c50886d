"""Audio mixdown of a timeline document (pure functions, no Qt dependency).

Sample ``n`` of the mix sits at ``n * 1000 / sample_rate`` ms on the
timeline. Mixing is sample-exact and chunkable, so long exports never
hold the full-length buffer in memory.
"""

from __future__ import annotations

import logging
from typing import Iterator

import numpy as np

from fastcut.infrastructure.decoder import AudioChunk
from fastcut.models.document import TimelineDocument
from fastcut.models.element import Element
from fastcut.models.errors import DecodeFailure
from fastcut.models.track import Track
from fastcut.services.media_cache import MediaCache
from fastcut.utils.config import AUDIO_CHUNK_MS
from fastcut.utils.time_utils import ms_to_sample

logger = logging.getLogger(__name__)


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def audible_elements(document: TimelineDocument, start_ms: float, end_ms: float) -> list[tuple[Track, Element]]:
    """Audio-bearing elements of non-muted tracks intersecting ``[start_ms, end_ms)``."""
    found = []
    for track in document.tracks:
        if track.muted or track.volume == 0:
            continue
        for elem in track.elements_in_range(start_ms, end_ms):
            if elem.is_audible and elem.volume > 0:
                found.append((track, elem))
    return found


def resample(samples: np.ndarray, source_rate: int, target_rate: int, count: int) -> np.ndarray:
    """Linearly resample ``(frames, channels)`` audio to exactly *count* frames."""
    if samples.ndim == 1:
        samples = samples[:, None]
    frames = samples.shape[0]
    if frames == 0 or count == 0:
        return np.zeros((count, samples.shape[1]), dtype=np.float32)
    if source_rate == target_rate and frames >= count:
        return samples[:count].astype(np.float32, copy=False)
    positions = np.arange(count, dtype=np.float64) * (source_rate / target_rate)
    src_index = np.arange(frames, dtype=np.float64)
    out = np.empty((count, samples.shape[1]), dtype=np.float32)
    for ch in range(samples.shape[1]):
        out[:, ch] = np.interp(positions, src_index, samples[:, ch], right=0.0)
    return out


def map_channels(samples: np.ndarray, channels: int) -> np.ndarray:
    """Mono is duplicated to every channel; extra source channels are dropped."""
    src_channels = samples.shape[1]
    if src_channels == channels:
        return samples
    if src_channels == 1:
        return np.repeat(samples, channels, axis=1)
    if src_channels > channels:
        return samples[:, :channels]
    out = np.zeros((samples.shape[0], channels), dtype=np.float32)
    out[:, :src_channels] = samples
    return out


def mix_samples(
    document: TimelineDocument,
    first_sample: int,
    count: int,
    sample_rate: int,
    channels: int,
    cache: MediaCache,
) -> np.ndarray:
    """Mix samples ``[first_sample, first_sample + count)`` into a ``(count, channels)`` buffer."""
    out = np.zeros((max(0, count), channels), dtype=np.float32)
    if count <= 0:
        return out
    last_sample = first_sample + count
    start_ms = first_sample * 1000 / sample_rate
    end_ms = last_sample * 1000 / sample_rate

    for track, elem in audible_elements(document, start_ms, end_ms):
        # Samples whose timestamp falls inside the element's visible span.
        elem_first = _ceil_div(elem.start_ms * sample_rate, 1000)
        elem_last = _ceil_div(elem.end_ms * sample_rate, 1000)
        lo, hi = max(first_sample, elem_first), min(last_sample, elem_last)
        if lo >= hi:
            continue
        src_start = elem.source_time_ms(lo * 1000 / sample_rate)
        src_end = src_start + (hi - lo) * 1000 / sample_rate
        try:
            chunk: AudioChunk = cache.get_audio(elem.media_id, src_start, src_end)
        except DecodeFailure as e:
            logger.warning(f"Silence for element {elem.element_id}: {e}")
            continue
        data = resample(chunk.samples, chunk.sample_rate, sample_rate, hi - lo)
        data = map_channels(data, channels)
        out[lo - first_sample:hi - first_sample] += data * np.float32(elem.volume * track.volume)

    np.clip(out, -1.0, 1.0, out=out)
    return out


def mix_range(
    document: TimelineDocument,
    start_ms: float,
    end_ms: float,
    sample_rate: int,
    channels: int,
    cache: MediaCache,
) -> np.ndarray:
    """Mix the samples covering ``[start_ms, end_ms)`` of the timeline."""
    first = ms_to_sample(start_ms, sample_rate)
    last = ms_to_sample(end_ms, sample_rate)
    return mix_samples(document, first, last - first, sample_rate, channels, cache)


def iter_chunks(
    document: TimelineDocument,
    start_ms: int,
    end_ms: int,
    sample_rate: int,
    channels: int,
    cache: MediaCache,
    chunk_ms: int = AUDIO_CHUNK_MS,
) -> Iterator[tuple[int, np.ndarray]]:
    """Yield ``(first_sample, samples)`` chunks covering ``[start_ms, end_ms)`` contiguously."""
    if chunk_ms <= 0:
        raise ValueError("chunk_ms must be > 0")
    last = ms_to_sample(end_ms, sample_rate)
    t = start_ms
    first = ms_to_sample(start_ms, sample_rate)
    while first < last:
        t = min(t + chunk_ms, end_ms)
        nxt = ms_to_sample(t, sample_rate)
        yield first, mix_samples(document, first, nxt - first, sample_rate, channels, cache)
        first = nxt
