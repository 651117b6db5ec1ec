import json

import pytest

from clock_config import (ReaderConfig, build_arg_parser, config_from_args, load_profile,
                          parse_screen_box, save_profile)
from clock_session import ReaderSession
from segment_clock import DEFAULT_THRESHOLD, SegmentMap


def parse(*argv):
    return build_arg_parser().parse_args(list(argv))


def test_defaults():
    cfg = ReaderConfig().validate()
    assert cfg.threshold == DEFAULT_THRESHOLD
    assert cfg.multicast_group == "239.160.181.93"
    assert cfg.multicast_port == 30004
    assert cfg.out_format == "none"


@pytest.mark.parametrize("kwargs", [
    {"capture_mode": "webcam"},
    {"out_format": "xml"},
    {"threshold": 300},
    {"threshold": -1},
    {"capture_mode": "image", "test_image": None},
])
def test_validate_rejects(kwargs):
    with pytest.raises(ValueError):
        ReaderConfig(**kwargs).validate()


def test_profile_round_trip(tmp_path, segment_map):
    path = tmp_path / "rink.json"
    cfg = ReaderConfig(threshold=70, camera_index=2, out_format="json", out_dir=str(tmp_path))
    save_profile(str(path), cfg, segment_map)

    loaded_cfg, loaded_map = load_profile(str(path))
    assert loaded_cfg == cfg
    assert loaded_map == segment_map


def test_profile_is_plain_json(tmp_path, segment_map):
    path = tmp_path / "p.json"
    save_profile(str(path), ReaderConfig(), segment_map)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["config"]["threshold"] == DEFAULT_THRESHOLD
    assert data["segments"] == segment_map.to_list()


def test_profile_unknown_keys_ignored(tmp_path):
    path = tmp_path / "p.json"
    path.write_text(json.dumps({"config": {"threshold": 66, "gamma": 1.2}}), encoding="utf-8")
    cfg, segment_map = load_profile(str(path))
    assert cfg.threshold == 66
    assert segment_map == SegmentMap.blank()


@pytest.mark.parametrize("text", [
    "not json",
    "[1, 2, 3]",
    json.dumps({"segments": [[[0, 0]] * 7] * 2}),
    json.dumps({"config": {"out_format": "xml"}}),
])
def test_bad_profiles_rejected(tmp_path, text):
    path = tmp_path / "bad.json"
    path.write_text(text, encoding="utf-8")
    with pytest.raises(ValueError):
        load_profile(str(path))


def test_missing_profile_raises_oserror(tmp_path):
    with pytest.raises(OSError):
        load_profile(str(tmp_path / "nope.json"))


def test_parse_screen_box():
    assert parse_screen_box("10,20,300,0") == {"left": 10, "top": 20, "width": 300, "height": 1}
    with pytest.raises(ValueError):
        parse_screen_box("10,20")


def test_args_without_profile():
    cfg, segment_map = config_from_args(parse("--test-image", "frame.png", "--threshold", "70", "--no-multicast"))
    assert cfg.capture_mode == "image"
    assert cfg.test_image == "frame.png"
    assert cfg.threshold == 70
    assert cfg.multicast_enabled is False
    assert segment_map == SegmentMap.blank()


def test_args_transport_overrides():
    cfg, _ = config_from_args(parse("--camera", "1", "--group", "239.1.2.3", "--port", "4000"))
    assert (cfg.capture_mode, cfg.camera_index) == ("camera", 1)
    assert (cfg.multicast_group, cfg.multicast_port) == ("239.1.2.3", 4000)


def test_out_dir_defaults_to_text_files(tmp_path):
    cfg, _ = config_from_args(parse("--out-dir", str(tmp_path)))
    assert cfg.out_dir == str(tmp_path)
    assert cfg.out_format == "txt"
    cfg, _ = config_from_args(parse("--out-dir", str(tmp_path), "--format", "csv"))
    assert cfg.out_format == "csv"


def test_screen_arg():
    cfg, _ = config_from_args(parse("--screen", "0,0,640,360"))
    assert cfg.capture_mode == "screen"
    assert cfg.screen_box == {"left": 0, "top": 0, "width": 640, "height": 360}


def test_args_override_profile(tmp_path, segment_map):
    path = tmp_path / "p.json"
    save_profile(str(path), ReaderConfig(threshold=70, multicast_port=5000), segment_map)
    cfg, loaded = config_from_args(parse("--profile", str(path), "--threshold", "80"))
    assert cfg.threshold == 80
    assert cfg.multicast_port == 5000
    assert loaded == segment_map


def test_sources_are_exclusive():
    with pytest.raises(SystemExit):
        parse("--camera", "0", "--test-image", "x.png")


def test_profile_numbers_as_strings_are_coerced(tmp_path, segment_map, render):
    path = tmp_path / "p.json"
    path.write_text(json.dumps({
        "config": {"threshold": "64", "multicast_port": "30005", "write_interval": "0.5"},
        "segments": segment_map.to_list(),
    }), encoding="utf-8")
    cfg, loaded_map = load_profile(str(path))
    assert cfg.threshold == 64 and isinstance(cfg.threshold, int)
    assert cfg.multicast_port == 30005
    assert cfg.write_interval == 0.5

    session = ReaderSession(cfg, loaded_map)
    session.start_running()
    assert session.process(render([4, 3, 2, 1])).value == 7540


@pytest.mark.parametrize("config", [
    {"threshold": None},
    {"threshold": "bright"},
    {"multicast_port": "abc"},
    {"write_interval": [1]},
    [1, 2],
    "threshold=64",
])
def test_badly_typed_profile_raises_valueerror(tmp_path, config):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"config": config}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_profile(str(path))
