from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
import shutil
import threading
from typing import Any

import yaml

from gallerycore.paths import config_root, default_db_path, default_media_root

DEFAULT_VIDEO_ARGS = (
    '-y -i "{SourceFilePath}" '
    '-vf "scale=trunc(min(iw*min(640/iw\\,480/ih)\\,iw)/2)*2:trunc(min(ih*min(640/iw\\,480/ih)\\,ih)/2)*2{AutoRotateFilter}" '
    '-vcodec libx264 -movflags +faststart -metadata:s:v:0 rotate=0 "{DestinationFilePath}"'
)
DEFAULT_AUDIO_ARGS = '-i "{SourceFilePath}" -y "{DestinationFilePath}"'


@dataclass(slots=True)
class EncoderSetting:
    source_ext: str
    dest_ext: str
    args: str = ""
    sequence: int = 0

    def matches(self, ext: str, major_type: str) -> bool:
        return self.source_ext.lower() == ext.lower() or self.source_ext == f"*{major_type}"


def _default_encoder_settings() -> list[EncoderSetting]:
    return [
        EncoderSetting(".mp3", ".mp3", "", 0),
        EncoderSetting(".m4a", ".m4a", "", 1),
        EncoderSetting("*video", ".mp4", DEFAULT_VIDEO_ARGS, 2),
        EncoderSetting("*audio", ".m4a", DEFAULT_AUDIO_ARGS, 3),
    ]


@dataclass(slots=True)
class GallerySettings:
    gallery_id: int = 1
    media_root: Path = field(default_factory=default_media_root)
    thumbnail_root: Path | None = None
    optimized_root: Path | None = None
    media_read_only: bool = False
    thumbnail_prefix: str = "zThumb_"
    optimized_prefix: str = "zOpt_"
    max_thumbnail_length: int = 115
    thumbnail_jpeg_quality: int = 70
    max_optimized_length: int = 640
    optimized_jpeg_quality: int = 70
    original_jpeg_quality: int = 95
    optimized_trigger_size_kb: int = 50
    album_directory_name_length: int = 25
    extract_metadata: bool = True
    video_thumbnail_position: float = 3.0
    encoder_timeout_ms: int = 900_000
    encoder_settings: list[EncoderSetting] = field(default_factory=_default_encoder_settings)

    def encoder_settings_for(self, ext: str, major_type: str) -> list[EncoderSetting]:
        found = [s for s in self.encoder_settings if s.matches(ext, major_type)]
        return sorted(found, key=lambda s: s.sequence)


@dataclass(slots=True)
class EncoderConfig:
    tool_path: str = field(default_factory=lambda: shutil.which("ffmpeg") or "")
    resources_path: str = ""
    probe_timeout_ms: int = 3000


@dataclass(slots=True)
class CacheConfig:
    enabled: bool = True


@dataclass(slots=True)
class AppConfig:
    db_path: Path = field(default_factory=default_db_path)
    cache: CacheConfig = field(default_factory=CacheConfig)
    encoder: EncoderConfig = field(default_factory=EncoderConfig)
    gallery: GallerySettings = field(default_factory=GallerySettings)
    galleries: dict[int, dict[str, Any]] = field(default_factory=dict)

    def load_settings(self, gallery_id: int) -> GallerySettings:
        base = _settings_to_dict(self.gallery)
        override = self.galleries.get(int(gallery_id)) or {}
        data = _merge(base, override)
        data["gallery_id"] = int(gallery_id)
        return _to_settings(data)


class SettingsStore:
    """Per-gallery memo of effective settings; cleared on a full cache purge."""

    def __init__(self, config: AppConfig):
        self._config = config
        self._lock = threading.Lock()
        self._items: dict[int, GallerySettings] = {}

    def get(self, gallery_id: int) -> GallerySettings:
        with self._lock:
            found = self._items.get(gallery_id)
            if found is None:
                found = self._config.load_settings(gallery_id)
                self._items[gallery_id] = found
            return found

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def _opt_path(value: Any) -> Path | None:
    if value in (None, ""):
        return None
    return Path(str(value)).expanduser()


def _settings_to_dict(settings: GallerySettings) -> dict[str, Any]:
    out = {f.name: getattr(settings, f.name) for f in fields(settings)}
    out["media_root"] = str(settings.media_root)
    out["thumbnail_root"] = str(settings.thumbnail_root) if settings.thumbnail_root else ""
    out["optimized_root"] = str(settings.optimized_root) if settings.optimized_root else ""
    out["encoder_settings"] = [asdict(s) for s in settings.encoder_settings]
    return out


def _to_settings(data: dict[str, Any]) -> GallerySettings:
    known = {f.name for f in fields(GallerySettings)}
    kwargs = {k: v for k, v in data.items() if k in known}
    kwargs["media_root"] = Path(str(data.get("media_root") or default_media_root())).expanduser()
    kwargs["thumbnail_root"] = _opt_path(data.get("thumbnail_root"))
    kwargs["optimized_root"] = _opt_path(data.get("optimized_root"))
    raw_settings = data.get("encoder_settings")
    if raw_settings is None:
        kwargs["encoder_settings"] = _default_encoder_settings()
    else:
        kwargs["encoder_settings"] = [
            s if isinstance(s, EncoderSetting) else EncoderSetting(**s) for s in raw_settings
        ]
    return GallerySettings(**kwargs)


def _to_config(data: dict[str, Any]) -> AppConfig:
    cache = CacheConfig(**data.get("cache", {}))
    encoder = EncoderConfig(**data.get("encoder", {}))
    gallery = _to_settings(data.get("gallery", {}))
    galleries = {int(k): dict(v or {}) for k, v in (data.get("galleries") or {}).items()}
    return AppConfig(
        db_path=Path(data.get("db_path", str(default_db_path()))).expanduser(),
        cache=cache,
        encoder=encoder,
        gallery=gallery,
        galleries=galleries,
    )


def default_config_path() -> Path:
    return config_root() / "config.yaml"


def load_config(config_path: Path | None = None, overrides: dict[str, Any] | None = None) -> AppConfig:
    path = config_path or default_config_path()
    base: dict[str, Any] = {}
    if path.exists():
        loaded = yaml.safe_load(path.read_text())
        if isinstance(loaded, dict):
            base = loaded
    if overrides:
        base = _merge(base, overrides)
    cfg = _to_config(base)
    cfg.db_path.parent.mkdir(parents=True, exist_ok=True)
    return cfg


def write_default_config(path: Path | None = None) -> Path:
    target = path or default_config_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.exists():
        return target
    gallery = _settings_to_dict(GallerySettings())
    gallery.pop("gallery_id")
    target.write_text(
        yaml.safe_dump(
            {
                "db_path": str(default_db_path()),
                "cache": {"enabled": True},
                "encoder": {
                    "tool_path": shutil.which("ffmpeg") or "",
                    "resources_path": "",
                    "probe_timeout_ms": 3000,
                },
                "gallery": gallery,
                "galleries": {},
            },
            sort_keys=False,
        )
    )
    return target
