#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Reader configuration and calibration profiles.

A profile is a JSON file holding the reader settings plus the calibrated
segment map, so a tuned setup can be restored without clicking all 28
segment centres again:

    {"config": {"threshold": 64, ...}, "segments": [[[x, y], ...7], ...4]}

License: MIT
"""
from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Tuple

from segment_clock import DEFAULT_THRESHOLD, SegmentMap

logger = logging.getLogger(__name__)

CAPTURE_MODES = ("camera", "screen", "image")
OUT_FORMATS = ("txt", "json", "csv", "none")


@dataclass
class ReaderConfig:
    threshold: int = DEFAULT_THRESHOLD
    capture_mode: str = "camera"   # camera|screen|image
    camera_index: int = 0
    screen_box: Optional[Dict[str, int]] = None  # mss box: left/top/width/height
    test_image: Optional[str] = None
    multicast_enabled: bool = True
    multicast_group: str = "239.160.181.93"
    multicast_port: int = 30004
    multicast_ttl: int = 1
    out_dir: str = "out"
    out_format: str = "none"      # txt|json|csv|none
    write_interval: float = 0.1

    def validate(self) -> "ReaderConfig":
        """Check values and coerce numeric fields; raises ValueError on bad input."""
        try:
            self.threshold = int(self.threshold)
            self.camera_index = int(self.camera_index)
            self.multicast_port = int(self.multicast_port)
            self.multicast_ttl = int(self.multicast_ttl)
            self.write_interval = float(self.write_interval)
        except (TypeError, ValueError) as ex:
            raise ValueError(f"bad numeric setting: {ex}") from ex
        if self.capture_mode not in CAPTURE_MODES:
            raise ValueError(f"unknown capture mode {self.capture_mode!r}")
        if self.out_format not in OUT_FORMATS:
            raise ValueError(f"unknown output format {self.out_format!r}")
        if not 0 <= self.threshold <= 255:
            raise ValueError(f"threshold {self.threshold} outside 0-255")
        if self.capture_mode == "image" and not self.test_image:
            raise ValueError("image capture mode needs a test image path")
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReaderConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.info("ignoring unknown profile keys: %s", ", ".join(sorted(unknown)))
        return cls(**{k: v for k, v in data.items() if k in known}).validate()

# ----------------------------- Profiles -----------------------------------

def save_profile(path: str, cfg: ReaderConfig, segment_map: SegmentMap):
    profile = {
        "config": vars(cfg),
        "segments": segment_map.to_list(),
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(profile, f, ensure_ascii=False, indent=2)
    logger.info("profile saved to %s", path)


def load_profile(path: str) -> Tuple[ReaderConfig, SegmentMap]:
    """Read a profile; raises ValueError if it is not a usable profile."""
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as ex:
            raise ValueError(f"{path}: not valid JSON ({ex})") from ex
    if not isinstance(data, dict):
        raise ValueError(f"{path}: profile must be a JSON object")
    config = data.get("config") or {}
    if not isinstance(config, dict):
        raise ValueError(f"{path}: 'config' must be a JSON object")
    cfg = ReaderConfig.from_dict(config)
    segments = data.get("segments")
    segment_map = SegmentMap.from_list(segments) if segments is not None else SegmentMap.blank()
    logger.info("profile loaded from %s", path)
    return cfg, segment_map

# ----------------------------- Command line -------------------------------

def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Read a seven-segment game clock from video and broadcast it.")
    parser.add_argument("--profile", default=None, help="JSON profile with settings and segment calibration")
    src = parser.add_mutually_exclusive_group()
    src.add_argument("--test-image", default=None, help="Path to a still image to drive the viewer/decoder")
    src.add_argument("--camera", type=int, default=None, help="Camera index to capture from")
    src.add_argument("--screen", default=None, metavar="L,T,W,H", help="Capture a screen region")
    parser.add_argument("--threshold", type=int, default=None, help="Mean luma (0-255) above which a segment is lit")
    parser.add_argument("--group", default=None, help="Multicast group for clock datagrams")
    parser.add_argument("--port", type=int, default=None, help="Multicast UDP port")
    parser.add_argument("--no-multicast", action="store_true", help="Do not send multicast datagrams")
    parser.add_argument("--out-dir", default=None, help="Directory for clock.<fmt> output files")
    parser.add_argument("--format", dest="out_format", choices=OUT_FORMATS, default=None, help="Output file format")
    parser.add_argument("--list-cameras", action="store_true", help="Print camera indices that open, then exit")
    parser.add_argument("--headless", action="store_true", help="Decode without the Tk window (needs a calibrated profile)")
    parser.add_argument("--log-level", default="INFO", choices=("DEBUG", "INFO", "WARNING", "ERROR"))
    return parser


def parse_screen_box(value: str) -> Dict[str, int]:
    try:
        left, top, width, height = (int(part) for part in value.split(","))
    except ValueError as ex:
        raise ValueError(f"screen region must be L,T,W,H, got {value!r}") from ex
    return {"left": left, "top": top, "width": max(1, width), "height": max(1, height)}


def config_from_args(args: argparse.Namespace) -> Tuple[ReaderConfig, SegmentMap]:
    """Load ``--profile`` (if any) and apply command-line overrides on top."""
    if args.profile:
        cfg, segment_map = load_profile(args.profile)
    else:
        cfg, segment_map = ReaderConfig(), SegmentMap.blank()

    if args.test_image:
        cfg.capture_mode = "image"; cfg.test_image = args.test_image
    elif args.camera is not None:
        cfg.capture_mode = "camera"; cfg.camera_index = args.camera
    elif args.screen:
        cfg.capture_mode = "screen"; cfg.screen_box = parse_screen_box(args.screen)
    if args.threshold is not None:
        cfg.threshold = args.threshold
    if args.group:
        cfg.multicast_group = args.group
    if args.port is not None:
        cfg.multicast_port = args.port
    if args.no_multicast:
        cfg.multicast_enabled = False
    if args.out_dir:
        cfg.out_dir = args.out_dir
        if cfg.out_format == "none" and not args.out_format:
            cfg.out_format = "txt"
    if args.out_format:
        cfg.out_format = args.out_format
    return cfg.validate(), segment_map
