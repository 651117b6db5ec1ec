import csv
import json
import logging
import struct

import pytest

from clock_config import ReaderConfig
from clock_output import (Destination, FanoutDestination, FileDestination, MulticastDestination,
                          atomic_write_text, build_destination)
from segment_clock import ClockReading, assemble_clock


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail
        self.closed = False

    def sendto(self, data, dest):
        if self.fail:
            raise OSError("network is unreachable")
        self.sent.append((data, dest))

    def close(self):
        self.closed = True


class Recorder(Destination):
    def __init__(self, fail=False):
        self.readings = []
        self.fail = fail

    def send(self, reading):
        if self.fail:
            raise OSError("disk full")
        self.readings.append(reading)


class FakeClock:
    def __init__(self, t=1000.0):
        self.t = t

    def __call__(self):
        return self.t


GOOD = ClockReading(value=7540, digits=(4, 3, 2, 1))
BAD = ClockReading(value=None, failed_digit=1)


def test_wire_format_is_big_endian_int32():
    assert MulticastDestination.encode(GOOD) == b"\x00\x00\x1d\x74"
    assert MulticastDestination.encode(BAD) == b"\xff\xff\xff\xff"
    assert struct.unpack("!i", MulticastDestination.encode(assemble_clock([10, 7, 5, 0])))[0] == 57


def test_multicast_sends_one_datagram_per_reading():
    sock = FakeSocket()
    dest = MulticastDestination("239.160.181.93", 30004, sock=sock)
    dest.send(GOOD)
    dest.send(BAD)
    assert sock.sent == [
        (b"\x00\x00\x1d\x74", ("239.160.181.93", 30004)),
        (b"\xff\xff\xff\xff", ("239.160.181.93", 30004)),
    ]
    dest.close()
    assert sock.closed


def test_multicast_send_error_is_logged(caplog):
    dest = MulticastDestination(sock=FakeSocket(fail=True))
    with caplog.at_level(logging.ERROR, logger="clock_output"):
        dest.send(GOOD)
    assert "multicast send" in caplog.text


def test_file_destination_txt(tmp_path):
    dest = FileDestination(str(tmp_path), "txt", interval=0)
    dest.send(GOOD)
    assert (tmp_path / "clock.txt").read_text(encoding="utf-8") == "12:34\n"
    assert not (tmp_path / "clock.txt.tmp").exists()


def test_file_destination_json(tmp_path):
    dest = FileDestination(str(tmp_path), "json", interval=0, clock=FakeClock(5.0))
    dest.send(assemble_clock([10, 7, 5, 0]))
    data = json.loads((tmp_path / "clock.json").read_text(encoding="utf-8"))
    assert data == {"value": 57, "text": "05.7", "ts": 5.0}


def test_file_destination_csv(tmp_path):
    dest = FileDestination(str(tmp_path), "csv", interval=0, clock=FakeClock(5.0))
    dest.send(GOOD)
    with open(tmp_path / "clock.csv", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows == [["value", "text", "ts"], ["7540", "12:34", "5.000"]]


def test_file_destination_rate_limited(tmp_path):
    clock = FakeClock()
    dest = FileDestination(str(tmp_path), "txt", interval=0.1, clock=clock)
    dest.send(GOOD)
    clock.t += 0.05
    dest.send(assemble_clock([10, 7, 5, 0]))
    assert (tmp_path / "clock.txt").read_text(encoding="utf-8") == "12:34\n"
    clock.t += 0.1
    dest.send(assemble_clock([10, 7, 5, 0]))
    assert (tmp_path / "clock.txt").read_text(encoding="utf-8") == "05.7\n"


def test_file_destination_keeps_last_good_value(tmp_path):
    dest = FileDestination(str(tmp_path), "txt", interval=0)
    dest.send(GOOD)
    dest.send(BAD)
    assert (tmp_path / "clock.txt").read_text(encoding="utf-8") == "12:34\n"


def test_file_destination_rejects_unknown_format(tmp_path):
    with pytest.raises(ValueError):
        FileDestination(str(tmp_path), "xml")


def test_fanout_continues_past_failures(caplog):
    broken, ok = Recorder(fail=True), Recorder()
    dest = FanoutDestination([broken, ok])
    with caplog.at_level(logging.ERROR, logger="clock_output"):
        dest.send(GOOD)
    assert ok.readings == [GOOD]
    assert "Recorder failed" in caplog.text


def test_atomic_write_creates_directories(tmp_path):
    path = tmp_path / "a" / "b" / "clock.txt"
    atomic_write_text(str(path), "1:00\n")
    assert path.read_text(encoding="utf-8") == "1:00\n"


def test_build_destination_file_only(tmp_path):
    cfg = ReaderConfig(multicast_enabled=False, out_format="txt", out_dir=str(tmp_path))
    dest = build_destination(cfg)
    assert isinstance(dest, FanoutDestination)
    assert [type(d) for d in dest.destinations] == [FileDestination]


def test_build_destination_nothing_enabled():
    dest = build_destination(ReaderConfig(multicast_enabled=False))
    assert isinstance(dest, FanoutDestination)
    assert dest.destinations == []
    dest.send(GOOD)
