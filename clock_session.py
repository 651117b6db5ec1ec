#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Calibration/run state shared by the Tk window and the headless loop.

SETUP   – each click assigns the next segment centre of the current digit
          (middle bar first, then counter-clockwise); 'n' moves to the next
          digit. The current digit's points are drawn as coloured boxes.
RUNNING – every frame is decoded and the reading handed to the destination.

Keys: s = setup (restart at digit 0, segment 0), r = run, n = next digit,
Escape = quit.

License: MIT
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import numpy as np

from clock_capture import CaptureSource
from clock_config import ReaderConfig
from clock_output import Destination
from segment_clock import (BOX_RADIUS, N_DIGITS, N_SEGMENTS, ClockReading, PixelBuffer,
                           Point, SegmentMap, decode_clock)

logger = logging.getLogger(__name__)

SETUP = "setup"
RUNNING = "running"

# BGR, one per segment in click order
SEG_COLORS = [
    (51, 51, 102),    # brown
    (0, 0, 255),      # red
    (0, 102, 255),    # orange
    (0, 255, 255),    # yellow
    (0, 255, 0),      # green
    (255, 0, 0),      # blue
    (255, 255, 0),    # violet
]


def draw_box(img: np.ndarray, x0: int, y0: int, color, radius: int = BOX_RADIUS):
    """Fill the (2r+1)² box centred on (x0, y0), clipped to the image."""
    h, w = img.shape[:2]
    xa = max(x0 - radius, 1); xb = min(x0 + radius + 1, w)
    ya = max(y0 - radius, 1); yb = min(y0 + radius + 1, h)
    if xb > xa and yb > ya:
        img[ya:yb, xa:xb] = color


class ReaderSession:
    def __init__(self, cfg: ReaderConfig, segment_map: Optional[SegmentMap] = None,
                 destination: Optional[Destination] = None):
        self.cfg = cfg
        # replaced wholesale on every edit, so a decode always sees one consistent map
        self.segment_map = segment_map or SegmentMap.blank()
        self.destination = destination or Destination()
        self.mode = SETUP
        self.digit = 0
        self.segment = 0
        self.last_reading: Optional[ClockReading] = None

    # ---------- Calibration ----------
    def start_setup(self):
        self.digit = 0
        self.segment = 0
        self.mode = SETUP

    def start_running(self):
        self.mode = RUNNING

    def next_digit(self):
        self.digit = (self.digit + 1) % N_DIGITS

    def click(self, x: int, y: int) -> bool:
        """Assign a frame coordinate to the current segment. Ignored while running."""
        if self.mode != SETUP:
            return False
        self.segment_map = self.segment_map.with_point(self.digit, self.segment, Point(int(x), int(y)))
        logger.debug("digit %d segment %d -> (%d, %d)", self.digit, self.segment, x, y)
        self.segment = (self.segment + 1) % N_SEGMENTS
        return True

    def handle_key(self, key: str) -> bool:
        """Apply a key press; returns False when the reader should quit."""
        key = key.lower()
        if key == "escape":
            return False
        if key == "s":
            self.start_setup()
        elif key == "r":
            self.start_running()
        elif key == "n":
            self.next_digit()
        return True

    def set_threshold(self, value) -> bool:
        """Set the lit threshold from a number or typed text, clamped to 0-255.

        Returns False (threshold unchanged) when the value does not parse.
        """
        try:
            val = int(float(value))
        except (TypeError, ValueError, OverflowError):
            return False
        self.cfg.threshold = max(0, min(255, val))
        return True

    # ---------- Per frame ----------
    def process(self, frame: np.ndarray) -> Optional[ClockReading]:
        if self.mode != RUNNING:
            return None
        reading = decode_clock(PixelBuffer(frame), self.segment_map, self.cfg.threshold)
        self.destination.send(reading)
        self.last_reading = reading
        return reading

    def annotate(self, frame: np.ndarray) -> np.ndarray:
        """Overlay the current digit's segment boxes and the next-click swatch."""
        out = frame.copy()
        if self.mode != SETUP:
            return out
        for i, p in enumerate(self.segment_map[self.digit]):
            draw_box(out, p.x, p.y, SEG_COLORS[i])
        h = out.shape[0]
        draw_box(out, 4, h - 4, SEG_COLORS[self.segment])
        draw_box(out, 9, h - 4, SEG_COLORS[self.segment])
        return out

    def status_text(self) -> str:
        if self.mode == SETUP:
            return f"SETUP: digit {self.digit} segment {self.segment} (click to place, n = next digit, r = run)"
        return "RUNNING (s = setup, Esc = quit)"


def run_headless(session: ReaderSession, source: CaptureSource, stop: threading.Event,
                 max_frames: Optional[int] = None, idle_delay: float = 0.01,
                 frame_delay: float = 0.0) -> int:
    """Decode frames from ``source`` until ``stop`` is set; returns frames decoded.

    ``frame_delay`` paces sources that never block, such as a still image.
    """
    session.start_running()
    n = 0
    while not stop.is_set():
        frame = source.read()
        if frame is None:
            time.sleep(idle_delay)
            continue
        session.process(frame)
        n += 1
        if max_frames is not None and n >= max_frames:
            break
        if frame_delay:
            time.sleep(frame_delay)
    return n
