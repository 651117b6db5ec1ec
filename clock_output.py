#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Destinations for decoded clock readings.

MulticastDestination sends one UDP datagram per frame: the clock value in
tenths of a second as a signed 32-bit big-endian integer, or -1 when the
frame could not be decoded. FileDestination writes clock.txt/json/csv
atomically so OBS-style "read from file" text sources never see a
half-written file.

License: MIT
"""
from __future__ import annotations

import csv
import json
import logging
import os
import socket
import struct
import time
from typing import Any, Iterable, List, Optional

from segment_clock import ClockReading, format_clock

logger = logging.getLogger(__name__)

WIRE_FORMAT = "!i"

# ----------------------------- Atomic writers ------------------------------

def _copy_over(tmp: str, path: str):
    with open(tmp, "rb") as fr, open(path, "wb") as fw:
        fw.write(fr.read())
    os.remove(tmp)


def _atomic_replace(tmp: str, path: str, retries: int = 3, delay: float = 0.05):
    """Replace path with tmp, retrying while another reader holds the target.

    After the retries, falls back to copying the tmp contents over the target
    (not strictly atomic, but works when os.replace is blocked by a reader).
    """
    for _ in range(retries):
        try:
            os.replace(tmp, path)
            return
        except PermissionError:
            # transient lock; wait and retry
            time.sleep(delay)
    try:
        _copy_over(tmp, path)
    except OSError:
        logger.error("atomic write of %s failed", path)
        raise


def atomic_write_text(path: str, text: str):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8", newline="") as f:
        f.write(text)
    _atomic_replace(tmp, path)


def atomic_write_json(path: str, obj: Any):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False)
    _atomic_replace(tmp, path)


def atomic_write_csv(path: str, rows: List[List[Any]]):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8", newline="") as f:
        w = csv.writer(f)
        w.writerows(rows)
    _atomic_replace(tmp, path)

# ----------------------------- Destinations --------------------------------

class Destination:
    """Accepts one reading per frame. The base class discards them."""

    def send(self, reading: ClockReading):
        pass

    def close(self):
        pass


class MulticastDestination(Destination):
    def __init__(self, group: str = "239.160.181.93", port: int = 30004, ttl: int = 1, sock=None):
        self.dest = (group, int(port))
        if sock is None:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, int(ttl))
        self.sock = sock

    @staticmethod
    def encode(reading: ClockReading) -> bytes:
        return struct.pack(WIRE_FORMAT, reading.wire_value())

    def send(self, reading: ClockReading):
        try:
            self.sock.sendto(self.encode(reading), self.dest)
        except OSError as ex:
            # a lost datagram must not stop the decode loop
            logger.error("multicast send to %s:%d failed: %s", self.dest[0], self.dest[1], ex)

    def close(self):
        self.sock.close()


class FileDestination(Destination):
    def __init__(self, out_dir: str, fmt: str = "txt", interval: float = 0.1, clock=time.time):
        if fmt not in ("txt", "json", "csv"):
            raise ValueError(f"unknown output format {fmt!r}")
        self.path = os.path.join(out_dir, f"clock.{fmt}")
        self.fmt = fmt
        self.interval = interval
        self._clock = clock
        self._last_write: Optional[float] = None

    def send(self, reading: ClockReading):
        now = self._clock()
        if self._last_write is not None and now - self._last_write < self.interval:
            return
        # keep the last good value on screen while a frame fails to decode
        if not reading.ok:
            return
        text = format_clock(reading.value)
        if self.fmt == "txt":
            atomic_write_text(self.path, f"{text}\n")
        elif self.fmt == "json":
            atomic_write_json(self.path, {"value": reading.value, "text": text, "ts": now})
        else:
            atomic_write_csv(self.path, [["value", "text", "ts"], [reading.value, text, f"{now:.3f}"]])
        self._last_write = now


class FanoutDestination(Destination):
    def __init__(self, destinations: Iterable[Destination]):
        self.destinations = list(destinations)

    def send(self, reading: ClockReading):
        for dest in self.destinations:
            try:
                dest.send(reading)
            except OSError:
                logger.exception("%s failed to send clock value", type(dest).__name__)

    def close(self):
        for dest in self.destinations:
            dest.close()


def build_destination(cfg) -> Destination:
    """Create the destinations a ReaderConfig asks for."""
    dests: List[Destination] = []
    if cfg.multicast_enabled:
        dests.append(MulticastDestination(cfg.multicast_group, cfg.multicast_port, cfg.multicast_ttl))
        logger.info("sending clock datagrams to %s:%d", cfg.multicast_group, cfg.multicast_port)
    if cfg.out_format != "none":
        dests.append(FileDestination(cfg.out_dir, cfg.out_format, cfg.write_interval))
        logger.info("writing clock.%s to %s", cfg.out_format, os.path.abspath(cfg.out_dir))
    # always wrapped, so one failing destination is logged instead of raised
    return FanoutDestination(dests)
