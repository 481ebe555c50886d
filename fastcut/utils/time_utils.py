"""Time conversion utilities.

Timeline positions are integer milliseconds. Frame rates may be
fractional (29.97), so frame arithmetic goes through ``Fraction`` to keep
frame counts exact.
"""

from __future__ import annotations

from fractions import Fraction
from functools import lru_cache


@lru_cache(maxsize=64)
def fps_fraction(fps: float) -> Fraction:
    """Exact rational form of a frame rate (29.97 -> 2997/100)."""
    return Fraction(str(fps)).limit_denominator(1001)


def frame_count(duration_ms: int, fps: float) -> int:
    """Number of frames needed to cover *duration_ms*: ``ceil(duration * fps)``.

    Example:
        >>> frame_count(12300, 30)
        369
    """
    exact = Fraction(duration_ms) * fps_fraction(fps) / 1000
    return -(-exact.numerator // exact.denominator)


def frame_to_ms(frame: int, fps: float) -> float:
    """Timeline position (ms, possibly fractional) of frame *frame*."""
    return float(Fraction(frame * 1000) / fps_fraction(fps))


def ms_to_sample(ms: float, sample_rate: int) -> int:
    """Sample index at *ms*: ``floor(ms * sample_rate / 1000)``."""
    return int(Fraction(ms).limit_denominator(1000) * sample_rate // 1000)
