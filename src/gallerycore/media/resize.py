from __future__ import annotations

from dataclasses import dataclass
import gc
import logging
from pathlib import Path
from typing import Callable, TypeVar

from PIL import Image, ImageOps

from gallerycore.errors import UnsupportedSourceError
from gallerycore.models import Flip, Rotation

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class ScaledSize:
    width: int
    height: int
    x_scale: float
    y_scale: float


def calculate_width_and_height(width: int, height: int, max_length: int, auto_enlarge: bool) -> tuple[int, int]:
    """Scale (width, height) so the longer side equals *max_length*.

    Without *auto_enlarge*, an image already smaller than *max_length* on both
    sides keeps its size.
    """
    if width <= 0 or height <= 0:
        return width, height
    if not auto_enlarge and max_length > width and max_length > height:
        return width, height
    if width > height:
        return max_length, int(height * max_length / width)
    return int(width * max_length / height), max_length


def scaled_size(src_width: int, src_height: int, new_width: float, new_height: float) -> ScaledSize:
    x_scale = new_width / src_width
    y_scale = new_height / src_height
    width = int(src_width * x_scale)
    height = int(src_height * y_scale)
    # A degenerate axis is clamped to 1px and gets its own scale; the other axis keeps its factor.
    if width <= 0:
        width = 1
        x_scale = width / src_width
    if height <= 0:
        height = 1
        y_scale = height / src_height
    return ScaledSize(width=width, height=height, x_scale=x_scale, y_scale=y_scale)


def _with_memory_retry(path: Path | None, func: Callable[[], T]) -> T:
    try:
        return func()
    except (MemoryError, Image.DecompressionBombError) as exc:
        logger.warning("resource exhaustion processing %s, retrying after gc: %s", path, exc)
    gc.collect()
    try:
        return func()
    except (MemoryError, Image.DecompressionBombError) as exc:
        raise UnsupportedSourceError(path, "out of memory", exc) from exc


def _flatten(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def apply_rotation(img: Image.Image, rotation: Rotation, flip: Flip) -> Image.Image:
    """Rotate clockwise by *rotation*, then apply *flip*."""
    if rotation == Rotation.ROTATE_90:
        img = img.transpose(Image.Transpose.ROTATE_270)
    elif rotation == Rotation.ROTATE_180:
        img = img.transpose(Image.Transpose.ROTATE_180)
    elif rotation == Rotation.ROTATE_270:
        img = img.transpose(Image.Transpose.ROTATE_90)
    if flip == Flip.X:
        img = img.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
    elif flip == Flip.Y:
        img = img.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
    return img


def create_resized_image(img: Image.Image, new_width: float, new_height: float, path: Path | None = None) -> Image.Image:
    def _resize() -> Image.Image:
        size = scaled_size(img.width, img.height, new_width, new_height)
        return _flatten(img).resize((size.width, size.height), Image.Resampling.LANCZOS)

    return _with_memory_retry(path, _resize)


def _open_oriented(source: Path) -> Image.Image:
    try:
        with Image.open(source) as img:
            img.load()
            return ImageOps.exif_transpose(img)
    except (MemoryError, Image.DecompressionBombError):
        raise
    except OSError as exc:
        raise UnsupportedSourceError(source, str(exc), exc) from exc


def open_image(source: Path) -> Image.Image:
    return _with_memory_retry(source, lambda: _open_oriented(source))


def save_jpeg(img: Image.Image, dest: Path, quality: int) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    _flatten(img).save(dest, format="JPEG", quality=quality, optimize=True)


def resize_to_jpeg(source: Path, dest: Path, max_length: int, quality: int, auto_enlarge: bool = False) -> tuple[int, int]:
    """Write a JPEG copy of *source* whose longer side is *max_length*; return its size."""
    img = open_image(source)
    width, height = calculate_width_and_height(img.width, img.height, max_length, auto_enlarge)
    resized = create_resized_image(img, width, height, source)
    save_jpeg(resized, dest, quality)
    return resized.width, resized.height


def rotate_file(path: Path, rotation: Rotation, flip: Flip, quality: int) -> tuple[int, int]:
    """Rotate/flip the image at *path* in place, keeping its format."""
    def _rotate() -> tuple[int, int]:
        with Image.open(path) as img:
            img.load()
            fmt = img.format or "JPEG"
            exif = img.getexif()
            out = apply_rotation(ImageOps.exif_transpose(img), rotation, flip)
        # The pixels are now upright, so the orientation tag must not be applied again.
        if 0x0112 in exif:
            del exif[0x0112]
        params: dict[str, object] = {"format": fmt}
        if fmt == "JPEG":
            out = _flatten(out)
            params["quality"] = quality
            params["exif"] = exif.tobytes()
        out.save(path, **params)
        return out.width, out.height

    try:
        return _with_memory_retry(path, _rotate)
    except OSError as exc:
        raise UnsupportedSourceError(path, str(exc), exc) from exc
