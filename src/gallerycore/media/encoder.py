from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import shlex
import subprocess
import threading

from gallerycore.errors import ExternalToolError
from gallerycore.events import EventRecorder
from gallerycore.models import Flip, Rotation
from gallerycore.util.files import delete_file

logger = logging.getLogger(__name__)

ROTATE_FILTER_TOKEN = "{AutoRotateFilter}"
QUOTES = ('"', "'")
DEFAULT_PROBE_TIMEOUT_MS = 3000

PROBE_ARGS = '-i "{SourceFilePath}"'
THUMBNAIL_ARGS = '-ss {Position} -i "{SourceFilePath}" -an -r 1 -vframes 1 -y "{DestinationFilePath}"'
ROTATE_VIDEO_ARGS = (
    '-i "{SourceFilePath}" -vf "{AutoRotateFilter}" -q:a 0 -q:v 0 -acodec copy '
    '-metadata:s:v:0 rotate=0 "{DestinationFilePath}"'
)

_ROTATION_FILTERS: dict[tuple[Rotation, Flip], str] = {
    (Rotation.NONE, Flip.NONE): "",
    (Rotation.NONE, Flip.X): "vflip",
    (Rotation.NONE, Flip.Y): "hflip",
    (Rotation.ROTATE_90, Flip.NONE): "transpose=clock",
    (Rotation.ROTATE_90, Flip.X): "transpose=clock,vflip",
    (Rotation.ROTATE_90, Flip.Y): "transpose=clock,hflip",
    (Rotation.ROTATE_180, Flip.NONE): "hflip,vflip",
    (Rotation.ROTATE_180, Flip.X): "transpose=clock,transpose=clock,vflip",
    (Rotation.ROTATE_180, Flip.Y): "transpose=clock,transpose=clock,hflip",
    (Rotation.ROTATE_270, Flip.NONE): "transpose=cclock",
    (Rotation.ROTATE_270, Flip.X): "transpose=cclock,vflip",
    (Rotation.ROTATE_270, Flip.Y): "transpose=cclock,hflip",
}


@dataclass(slots=True)
class EncoderInvocation:
    source_path: Path
    dest_path: Path | None
    args_template: str
    timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS
    cancel: threading.Event | None = None
    width: int | None = None
    height: int | None = None
    rotation: Rotation = Rotation.NONE
    flip: Flip = Flip.NONE
    gallery_id: int | None = None
    args: str = ""
    output: str = ""
    extra_tokens: dict[str, str] = field(default_factory=dict)


def rotation_filter(rotation: Rotation, flip: Flip = Flip.NONE) -> str:
    return _ROTATION_FILTERS[(Rotation(rotation), Flip(flip))]


def insert_rotation_filter(template: str, filter_text: str) -> str:
    """Replace every rotation placeholder, comma-joining with adjacent filter text.

    A leading comma is added unless the placeholder follows a quote, a trailing
    comma unless it precedes one. An empty filter adds nothing.
    """
    out = template
    idx = out.find(ROTATE_FILTER_TOKEN)
    while idx >= 0:
        end = idx + len(ROTATE_FILTER_TOKEN)
        replacement = filter_text
        if filter_text:
            before = out[idx - 1] if idx > 0 else ""
            after = out[end] if end < len(out) else ""
            if before not in QUOTES:
                replacement = "," + replacement
            if after not in QUOTES:
                replacement = replacement + ","
        out = out[:idx] + replacement + out[end:]
        idx = out.find(ROTATE_FILTER_TOKEN, idx + len(replacement))
    return out


def _aspect_ratio(width: int | None, height: int | None) -> str:
    if not width or not height:
        return ""
    return str(round(width / height, 2))


def replace_tokens(
    template: str,
    source: Path | str,
    dest: Path | str | None,
    width: int | None = None,
    height: int | None = None,
    rotation: Rotation = Rotation.NONE,
    flip: Flip = Flip.NONE,
    bin_path: str = "",
    resources_path: str = "",
) -> str:
    out = template.replace("{SourceFilePath}", str(source))
    out = out.replace("{Width}", "" if width is None else str(width))
    out = out.replace("{Height}", "" if height is None else str(height))
    out = insert_rotation_filter(out, rotation_filter(rotation, flip))
    out = out.replace("{AspectRatio}", _aspect_ratio(width, height))
    out = out.replace("{DestinationFilePath}", "" if dest is None else str(dest))
    out = out.replace("{BinPath}", bin_path)
    out = out.replace("{GalleryResourcesPath}", resources_path)
    # An empty filter argument makes the tool fail; drop it entirely.
    out = out.replace('-vf ""', "")
    return out.strip()


def format_position(seconds: float) -> str:
    total = max(0, int(seconds))
    return f"{total // 3600:02d}:{(total % 3600) // 60:02d}:{total % 60:02d}"


def _kill(process: subprocess.Popen[str]) -> None:
    try:
        process.kill()
    except OSError:
        # Already exited.
        pass


class ExternalEncoderRunner:
    def __init__(
        self,
        tool_path: str,
        events: EventRecorder,
        resources_path: str = "",
        probe_timeout_ms: int = DEFAULT_PROBE_TIMEOUT_MS,
    ):
        self.tool_path = tool_path or ""
        self.events = events
        self.resources_path = resources_path
        self.probe_timeout_ms = probe_timeout_ms

    @property
    def is_available(self) -> bool:
        return bool(self.tool_path)

    @property
    def bin_path(self) -> str:
        return str(Path(self.tool_path).parent) if self.tool_path else ""

    def build_args(self, inv: EncoderInvocation) -> str:
        template = inv.args_template
        for key, value in inv.extra_tokens.items():
            template = template.replace("{" + key + "}", value)
        return replace_tokens(
            template,
            inv.source_path,
            inv.dest_path,
            width=inv.width,
            height=inv.height,
            rotation=inv.rotation,
            flip=inv.flip,
            bin_path=self.bin_path,
            resources_path=self.resources_path,
        )

    def execute(self, inv: EncoderInvocation) -> str:
        """Run the tool once; return its combined output, or "" when nothing usable was produced."""
        inv.args = self.build_args(inv)
        if not self.is_available:
            self._record(inv, "media encoder is not configured", "")
            return ""

        lines = [f"Argument String:\n{inv.args}"]
        cmd = [self.tool_path, *shlex.split(inv.args)]
        logger.debug("running encoder: %s", cmd)
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            self._record(inv, f"could not start media encoder: {exc}", "\n".join(lines))
            return ""

        timed_out = False

        def _kill_on_timeout() -> None:
            nonlocal timed_out
            timed_out = True
            _kill(process)

        timer = threading.Timer(inv.timeout_ms / 1000.0, _kill_on_timeout)
        timer.daemon = True
        timer.start()

        cancelled = False
        try:
            if process.stdout is not None:
                for line in process.stdout:
                    lines.append(line.rstrip("\r\n"))
                    if inv.cancel is not None and inv.cancel.is_set():
                        cancelled = True
                        _kill(process)
                        break
            process.wait()
        finally:
            timer.cancel()
            if process.stdout is not None:
                process.stdout.close()

        output = "\n".join(lines)
        if timed_out or cancelled:
            delete_file(inv.dest_path)
            if timed_out:
                msg = f"media encoder timed out after {inv.timeout_ms} ms and was terminated"
            else:
                msg = "media encoder was cancelled"
            self._record(inv, msg, output)
            inv.output = ""
            return ""

        if process.returncode != 0:
            logger.debug("encoder exited with %s for %s", process.returncode, inv.source_path)
        inv.output = output
        return output

    def _record(self, inv: EncoderInvocation, message: str, output: str) -> None:
        self.events.record(
            ExternalToolError(message),
            context="media encoder",
            data={"args": inv.args, "output": output, "source": str(inv.source_path)},
            gallery_id=inv.gallery_id,
        )

    def get_output(self, source: Path, gallery_id: int | None = None) -> str:
        inv = EncoderInvocation(
            source_path=source,
            dest_path=None,
            args_template=PROBE_ARGS,
            timeout_ms=self.probe_timeout_ms,
            gallery_id=gallery_id,
        )
        return self.execute(inv)

    def generate_thumbnail(
        self,
        source: Path,
        dest: Path,
        position_seconds: float,
        timeout_ms: int,
        gallery_id: int | None = None,
    ) -> str:
        dest.parent.mkdir(parents=True, exist_ok=True)
        inv = EncoderInvocation(
            source_path=source,
            dest_path=dest,
            args_template=THUMBNAIL_ARGS,
            timeout_ms=timeout_ms,
            gallery_id=gallery_id,
            extra_tokens={"Position": format_position(position_seconds)},
        )
        return self.execute(inv)
