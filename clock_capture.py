#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Frame sources for the clock reader.

• camera – OpenCV VideoCapture, trying several backends.
• screen – a screen region grabbed with MSS.
• image  – a still image served again on every read (bench testing and
           calibrating against a saved frame).

Every source returns BGR uint8 frames as numpy arrays.

Requirements:
    python -m pip install opencv-python numpy pillow mss

License: MIT
"""
from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np
from PIL import Image

# Optional MSS for screen capture
try:
    import mss
    HAVE_MSS = True
except Exception:
    HAVE_MSS = False

logger = logging.getLogger(__name__)


def load_image(path: str) -> np.ndarray:
    if not os.path.isfile(path):
        raise RuntimeError(f"Test image not found: {path}")
    bgr = cv2.imread(path, cv2.IMREAD_COLOR)
    if bgr is None:
        raise RuntimeError(f"Failed to read test image: {path}")
    return bgr


class CaptureSource:
    def __init__(self, mode="camera", camera_index=0, screen_box=None, test_image=None,
                 desired_size: Tuple[int, int] = (1920, 1080)):
        self.mode = mode
        self.camera_index = camera_index
        self.screen_box: Optional[Dict[str, int]] = screen_box  # dict for mss
        self.test_image = test_image
        self.desired_size = desired_size
        self.cap = None
        self.mss = None
        self._still: Optional[np.ndarray] = None

    def open(self) -> bool:
        self.release()

        if self.mode == "camera":
            # None means let OpenCV choose.
            try_backends = [None]
            for name in ("CAP_DSHOW", "CAP_MSMF", "CAP_V4L2", "CAP_FFMPEG"):
                if hasattr(cv2, name):
                    try_backends.append(getattr(cv2, name))
            for backend in try_backends:
                cap = cv2.VideoCapture(self.camera_index) if backend is None else cv2.VideoCapture(self.camera_index, backend)
                if cap is None or not cap.isOpened():
                    if cap is not None:
                        cap.release()
                    continue
                # may be ignored by some backends
                cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.desired_size[0])
                cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.desired_size[1])
                self.cap = cap
                logger.info("opened camera %d (backend %s)", self.camera_index, backend)
                return True
            logger.warning("could not open camera index %d", self.camera_index)
            return False

        elif self.mode == "screen":
            if not HAVE_MSS:
                raise RuntimeError("mss not installed. pip install mss")
            self.mss = mss.mss()
            if self.screen_box is None:
                # Fullscreen primary
                mon = self.mss.monitors[1]
                self.screen_box = {"top": mon["top"], "left": mon["left"], "width": mon["width"], "height": mon["height"]}
            logger.info("capturing screen region %s", self.screen_box)
            return True

        elif self.mode == "image":
            self._still = load_image(self.test_image)
            logger.info("serving still image %s (%dx%d)", self.test_image,
                        self._still.shape[1], self._still.shape[0])
            return True

        raise ValueError(f"unknown capture mode {self.mode!r}")

    def read(self) -> Optional[np.ndarray]:
        if self.mode == "camera":
            if self.cap is None:
                return None
            ok, frame = self.cap.read()
            if not ok:
                return None
            return frame
        elif self.mode == "screen":
            if self.mss is None:
                return None
            sct_img = self.mss.grab(self.screen_box)
            img = np.array(Image.frombytes("RGB", sct_img.size, sct_img.rgb))
            return cv2.cvtColor(img, cv2.COLOR_RGB2BGR)
        elif self.mode == "image":
            return None if self._still is None else self._still.copy()
        return None

    def release(self):
        if self.cap is not None:
            self.cap.release()
            self.cap = None
        if self.mss is not None:
            self.mss.close()
            self.mss = None
        self._still = None

    def __enter__(self):
        if not self.open():
            raise RuntimeError(f"Failed to open {self.mode} source")
        return self

    def __exit__(self, *exc):
        self.release()


def probe_cameras(max_cams: int = 10) -> List[int]:
    """Return the camera indices from 0 to max_cams-1 that can be opened."""
    found = []
    for idx in range(max_cams):
        cap = cv2.VideoCapture(idx)
        if cap is not None and cap.isOpened():
            found.append(idx)
        # Release every handle, including failed ones
        if cap is not None:
            cap.release()
    return found
