from __future__ import annotations

from dataclasses import dataclass
import re

from gallerycore.models import Rotation

_DIMENSIONS = re.compile(r"Video:.+\s(\d+)x(\d+)")
_ROTATION = re.compile(r"[Rr]otate\s*:\s*(\d+)")
_DURATION = re.compile(r"Duration:\s*(\d+):(\d+):(\d+(?:\.\d+)?)")

# The tool reports the rotation needed to correct the stream, which is the
# inverse of how the picture is displayed.
_ROTATION_MAP = {
    0: Rotation.NONE,
    90: Rotation.ROTATE_270,
    180: Rotation.ROTATE_180,
    270: Rotation.ROTATE_90,
}


@dataclass(slots=True)
class VideoDimensions:
    source_width: int | None = None
    source_height: int | None = None
    output_width: int | None = None
    output_height: int | None = None


def parse_dimensions(output: str) -> VideoDimensions:
    """The tool prints one ``Video:`` stream line for the input, then one for the output."""
    dims = VideoDimensions()
    matches = _DIMENSIONS.finditer(output or "")
    first = next(matches, None)
    if first is None:
        return dims
    dims.source_width, dims.source_height = int(first.group(1)), int(first.group(2))
    second = next(matches, None)
    if second is not None:
        dims.output_width, dims.output_height = int(second.group(1)), int(second.group(2))
    return dims


def parse_source_width(output: str) -> int | None:
    return parse_dimensions(output).source_width


def parse_source_height(output: str) -> int | None:
    return parse_dimensions(output).source_height


def parse_output_width(output: str) -> int | None:
    return parse_dimensions(output).output_width


def parse_output_height(output: str) -> int | None:
    return parse_dimensions(output).output_height


def parse_rotation(output: str) -> Rotation | None:
    match = _ROTATION.search(output or "")
    if match is None:
        return None
    return _ROTATION_MAP.get(int(match.group(1)))


def parse_duration(output: str) -> float | None:
    match = _DURATION.search(output or "")
    if match is None:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
