from __future__ import annotations

from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from gallerycore.media.resize import calculate_width_and_height, save_jpeg
from gallerycore.models import MimeCategory

PLACEHOLDER_SIZE = (640, 480)

_COLORS = {
    MimeCategory.IMAGE: (70, 110, 150),
    MimeCategory.VIDEO: (40, 40, 40),
    MimeCategory.AUDIO: (90, 60, 120),
    MimeCategory.OTHER: (110, 110, 110),
    MimeCategory.NOT_SET: (110, 110, 110),
}


def placeholder_label(file_name: str, category: MimeCategory) -> str:
    ext = Path(file_name).suffix.lstrip(".").upper()
    if ext:
        return ext
    if category in (MimeCategory.NOT_SET, MimeCategory.OTHER):
        return "FILE"
    return category.value.upper()


def render_placeholder(
    dest: Path,
    label: str,
    category: MimeCategory,
    max_length: int,
    quality: int,
    auto_enlarge: bool = True,
) -> tuple[int, int]:
    """Write a flat placeholder JPEG with *label* centred on it; return its size."""
    width, height = calculate_width_and_height(*PLACEHOLDER_SIZE, max_length, auto_enlarge)
    width, height = max(1, width), max(1, height)
    img = Image.new("RGB", (width, height), _COLORS.get(category, _COLORS[MimeCategory.OTHER]))
    draw = ImageDraw.Draw(img)
    font = ImageFont.load_default()
    left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
    x = (width - (right - left)) / 2
    y = (height - (bottom - top)) / 2
    draw.text((x, y), label, fill=(240, 240, 240), font=font)
    save_jpeg(img, dest, quality)
    return width, height
