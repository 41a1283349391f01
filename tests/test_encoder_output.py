from gallerycore.media.encoder_output import (
    parse_dimensions,
    parse_duration,
    parse_output_height,
    parse_output_width,
    parse_rotation,
    parse_source_height,
    parse_source_width,
)
from gallerycore.models import Rotation

SAMPLE = """Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'in.mov':
  Duration: 00:01:05.50, start: 0.000000, bitrate: 1000 kb/s
    Stream #0:0(und): Video: h264 (High) (avc1 / 0x31637661), yuv420p, 1920x1080, 5000 kb/s, 29.97 fps
    Metadata:
      rotate          : 90
Output #0, mp4, to 'out.mp4':
    Stream #0:0(und): Video: h264 (libx264), yuv420p, 640x360, q=-1--1, 29.97 fps
"""


def test_source_and_output_dimensions() -> None:
    dims = parse_dimensions(SAMPLE)
    assert (dims.source_width, dims.source_height) == (1920, 1080)
    assert (dims.output_width, dims.output_height) == (640, 360)
    assert parse_source_width(SAMPLE) == 1920
    assert parse_source_height(SAMPLE) == 1080
    assert parse_output_width(SAMPLE) == 640
    assert parse_output_height(SAMPLE) == 360


def test_probe_output_has_no_output_dimensions() -> None:
    probe = SAMPLE.split("Output #0")[0]
    assert parse_output_width(probe) is None
    assert parse_source_width(probe) == 1920


def test_no_video_stream() -> None:
    dims = parse_dimensions("Input #0, mp3, from 'song.mp3':\n  Stream #0:0: Audio: mp3, 44100 Hz")
    assert dims.source_width is None
    assert dims.output_height is None
    assert parse_dimensions("").source_width is None


def test_reported_rotation_is_inverted() -> None:
    assert parse_rotation(SAMPLE) == Rotation.ROTATE_270
    assert parse_rotation("rotate: 270") == Rotation.ROTATE_90
    assert parse_rotation("Rotate : 180") == Rotation.ROTATE_180
    assert parse_rotation("rotate : 0") == Rotation.NONE


def test_unknown_rotation() -> None:
    assert parse_rotation("rotate : 45") is None
    assert parse_rotation("no metadata here") is None


def test_duration() -> None:
    assert parse_duration(SAMPLE) == 65.5
    assert parse_duration("Duration: 01:00:00.00") == 3600.0
    assert parse_duration("Duration: N/A") is None
