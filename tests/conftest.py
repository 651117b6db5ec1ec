"""Shared fixtures: synthetic seven-segment frames and a calibrated segment map."""
import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from segment_clock import TRUTH_TABLE, DigitSegments, Point, SegmentMap  # noqa: E402

FRAME_W, FRAME_H = 320, 160
LIT = 200
DARK = 10

# segment centres relative to a digit's top-left corner, canonical order
DIGIT_LAYOUT = [
    (20, 60),   # middle
    (5, 80),    # lower-left
    (20, 100),  # bottom
    (35, 80),   # lower-right
    (35, 40),   # upper-right
    (20, 20),   # top
    (5, 40),    # upper-left
]


def make_segment_map(left=250, pitch=60, top=20):
    digits = []
    for i in range(4):
        x0 = left - i * pitch  # digit 0 is right-most
        digits.append(DigitSegments(tuple(Point(x0 + dx, top + dy) for dx, dy in DIGIT_LAYOUT)))
    return SegmentMap(tuple(digits))


def render_display(patterns, segment_map, lit=LIT, dark=DARK):
    """Draw 5x5 patches for each lit segment. ``patterns`` holds a table index or a 7-tuple per digit."""
    frame = np.full((FRAME_H, FRAME_W, 3), dark, dtype=np.uint8)
    for digit, pattern in zip(segment_map, patterns):
        states = TRUTH_TABLE[pattern] if isinstance(pattern, int) else pattern
        for p, on in zip(digit, states):
            if on:
                frame[p.y - 2:p.y + 3, p.x - 2:p.x + 3] = lit
    return frame


@pytest.fixture
def segment_map():
    return make_segment_map()


@pytest.fixture
def render(segment_map):
    def _render(patterns, **kw):
        return render_display(patterns, segment_map, **kw)
    return _render
