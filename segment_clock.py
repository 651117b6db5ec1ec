#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Segment Clock – seven-segment sampling and clock decoding
=========================================================
Dependencies (install first):
    pip install numpy

What it does
------------
• Samples a 5×5 neighbourhood around each calibrated segment centre and
  reduces it to lit/unlit by comparing the mean luma against a threshold.
• Classifies each digit's 7 segment states against a fixed truth table
  (0-9 plus an all-dark BLANK pattern).
• Assembles the 4 digits into a single clock value in tenths of a second,
  either as M:SS (digit 0 lit) or SS.T (digit 0 dark).

Segment layout
--------------
Segments are numbered so the operator can click the middle bar first and
then work counter-clockwise around the digit:

     555
    6   4
    6   4
     000
    1   3
    1   3
     222

Digit 0 is the right-most position on the display.

License: MIT
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

N_DIGITS = 4
N_SEGMENTS = 7
BOX_RADIUS = 2            # 5×5 neighbourhood
DEFAULT_THRESHOLD = 64    # mean luma (0-255) above which a segment is lit

BLANK = 10
UNRECOGNIZED = None

# ----------------------------- Data model ---------------------------------

@dataclass(frozen=True)
class Point:
    x: int
    y: int

    def as_tuple(self) -> Tuple[int, int]:
        return (self.x, self.y)


@dataclass(frozen=True)
class DigitSegments:
    """The 7 segment centres of one digit, in canonical order."""
    points: Tuple[Point, ...]

    def __post_init__(self):
        if len(self.points) != N_SEGMENTS:
            raise ValueError(f"a digit needs exactly {N_SEGMENTS} segment points, got {len(self.points)}")

    def __iter__(self):
        return iter(self.points)

    def __getitem__(self, i: int) -> Point:
        return self.points[i]


@dataclass(frozen=True)
class SegmentMap:
    digits: Tuple[DigitSegments, ...]

    def __post_init__(self):
        if len(self.digits) != N_DIGITS:
            raise ValueError(f"a segment map needs exactly {N_DIGITS} digits, got {len(self.digits)}")

    def __iter__(self):
        return iter(self.digits)

    def __getitem__(self, i: int) -> DigitSegments:
        return self.digits[i]

    @classmethod
    def blank(cls) -> "SegmentMap":
        zero = DigitSegments(tuple(Point(0, 0) for _ in range(N_SEGMENTS)))
        return cls(tuple(zero for _ in range(N_DIGITS)))

    def with_point(self, digit: int, segment: int, point: Point) -> "SegmentMap":
        """Return a copy with one segment centre replaced."""
        pts = list(self.digits[digit].points)
        pts[segment] = point
        digits = list(self.digits)
        digits[digit] = DigitSegments(tuple(pts))
        return SegmentMap(tuple(digits))

    def to_list(self) -> List[List[List[int]]]:
        return [[[p.x, p.y] for p in d] for d in self.digits]

    @classmethod
    def from_list(cls, data: Sequence[Sequence[Sequence[int]]]) -> "SegmentMap":
        try:
            digits = tuple(
                DigitSegments(tuple(Point(int(x), int(y)) for x, y in d))
                for d in data
            )
        except (TypeError, ValueError) as ex:
            raise ValueError(f"malformed segment map: {ex}") from ex
        return cls(digits)


class PixelBuffer:
    """Read-only, bounds-aware view of a H×W×3 8-bit frame.

    The luma estimate weights R and B equally, so OpenCV's BGR frames can
    be wrapped directly without a colour conversion.
    """

    def __init__(self, pixels: np.ndarray):
        if pixels.ndim != 3 or pixels.shape[2] < 3:
            raise ValueError(f"expected a H×W×3 frame, got shape {pixels.shape}")
        self.pixels = pixels
        self.height, self.width = pixels.shape[:2]

    @classmethod
    def from_bytes(cls, data: bytes, width: int, height: int, row_stride: Optional[int] = None) -> "PixelBuffer":
        """Wrap a packed row-major RGB buffer. ``row_stride`` defaults to ``width*3``."""
        stride = row_stride if row_stride is not None else width * 3
        if stride < width * 3:
            raise ValueError(f"row stride {stride} shorter than a row of {width} pixels")
        arr = np.frombuffer(data, dtype=np.uint8, count=stride * height)
        arr = arr.reshape(height, stride)[:, :width * 3].reshape(height, width, 3)
        return cls(arr)

    def window(self, point: Point, radius: int = BOX_RADIUS) -> np.ndarray:
        # row 0 and column 0 are never sampled
        x0 = max(point.x - radius, 1); x1 = min(point.x + radius + 1, self.width)
        y0 = max(point.y - radius, 1); y1 = min(point.y + radius + 1, self.height)
        if x1 <= x0 or y1 <= y0:
            return self.pixels[0:0, 0:0, :3]
        return self.pixels[y0:y1, x0:x1, :3]

# ----------------------------- Sampling -----------------------------------

def pixel_luma(r: int, g: int, b: int) -> int:
    """Crude luma estimate: (R + 2G + B) / 4."""
    return (int(r) + 2 * int(g) + int(b)) >> 2


def segment_brightness(buffer: PixelBuffer, point: Point) -> float:
    """Mean luma of the in-bounds pixels of the 5×5 box around ``point``."""
    win = buffer.window(point).astype(np.uint16)
    if win.size == 0:
        return 0.0
    luma = (win[:, :, 0] + 2 * win[:, :, 1] + win[:, :, 2]) >> 2
    return float(luma.sum()) / luma.size


def sample_segment(buffer: PixelBuffer, point: Point, threshold: float = DEFAULT_THRESHOLD) -> bool:
    return segment_brightness(buffer, point) > threshold


def sample_digit(buffer: PixelBuffer, digit: DigitSegments, threshold: float = DEFAULT_THRESHOLD) -> Tuple[bool, ...]:
    return tuple(sample_segment(buffer, p, threshold) for p in digit)

# ----------------------------- Classification -----------------------------

#                 mid    lo-l   bot    lo-r   up-r   top    up-l
TRUTH_TABLE: Tuple[Tuple[bool, ...], ...] = (
    (False, True,  True,  True,  True,  True,  True),   # 0
    (False, False, False, True,  True,  False, False),  # 1
    (True,  True,  True,  False, True,  True,  False),  # 2
    (True,  False, True,  True,  True,  True,  False),  # 3
    (True,  False, False, True,  True,  False, True),   # 4
    (True,  False, True,  True,  False, True,  True),   # 5
    (True,  True,  True,  True,  False, True,  True),   # 6
    (False, False, False, True,  True,  True,  False),  # 7
    (True,  True,  True,  True,  True,  True,  True),   # 8
    (True,  False, True,  True,  True,  True,  True),   # 9
    (False, False, False, False, False, False, False),  # blank
)


def classify_digit(states: Iterable[bool]) -> Optional[int]:
    """Return the index of the first table entry equal to ``states``.

    0-9 are digits, ``BLANK`` is the all-dark pattern, and ``UNRECOGNIZED``
    (None) means no entry matched.
    """
    pattern = tuple(bool(s) for s in states)
    for value, entry in enumerate(TRUTH_TABLE):
        if pattern == entry:
            return value
    return UNRECOGNIZED

# ----------------------------- Assembly -----------------------------------

@dataclass(frozen=True)
class ClockReading:
    value: Optional[int]
    digits: Tuple[Optional[int], ...] = ()
    failed_digit: Optional[int] = None
    as_sst: bool = False
    implausible: bool = False

    @property
    def ok(self) -> bool:
        return self.value is not None

    def wire_value(self) -> int:
        """Value as sent to listeners; -1 signals an undecodable frame."""
        return self.value if self.value is not None else -1

    def text(self) -> str:
        return format_clock(self.value)


def assemble_clock(digits: Sequence[Optional[int]]) -> ClockReading:
    """Combine 4 classified digits (index 0 right-most) into tenths of a second.

    A dark digit 0 switches to seconds.tenths (weights 1/10/100 on digits
    1-3); otherwise the display reads minutes:seconds with weights
    10/100/600/6000. Dark digits elsewhere are suppressed leading zeros.
    """
    digits = tuple(digits)
    if len(digits) != N_DIGITS:
        raise ValueError(f"expected {N_DIGITS} digits, got {len(digits)}")

    for i, d in enumerate(digits):
        if d is UNRECOGNIZED:
            return ClockReading(value=None, digits=digits, failed_digit=i)

    as_sst = digits[0] == BLANK
    v = [0 if d == BLANK else d for d in digits]

    if as_sst:
        clock = v[1] + v[2] * 10 + v[3] * 100
        return ClockReading(value=clock, digits=digits, as_sst=True)

    implausible = v[3] >= 6
    if implausible:
        logger.warning("non-sensical time being decoded: digits %s", list(digits))
    clock = v[3] * 6000 + v[2] * 600 + v[1] * 100 + v[0] * 10
    return ClockReading(value=clock, digits=digits, implausible=implausible)


def decode_clock(buffer: PixelBuffer, segment_map: SegmentMap, threshold: float = DEFAULT_THRESHOLD) -> ClockReading:
    digits = [classify_digit(sample_digit(buffer, d, threshold)) for d in segment_map]
    reading = assemble_clock(digits)
    if not reading.ok:
        logger.warning("could not decode digit %d", reading.failed_digit)
    return reading


def format_clock(value: Optional[int]) -> str:
    """Render tenths of a second as M:SS (one minute and up) or SS.T."""
    if value is None or value < 0:
        return "--:--"
    if value >= 600:
        return f"{value // 600}:{(value // 10) % 60:02d}"
    return f"{value // 10:02d}.{value % 10}"
