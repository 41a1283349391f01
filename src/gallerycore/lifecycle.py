from __future__ import annotations

from dataclasses import dataclass, fields
import logging
from pathlib import Path
from typing import Callable

from gallerycore.behaviors import delete_behavior_for, save_behavior_for
from gallerycore.cache import AlbumCacheEntry, MediaCacheEntry
from gallerycore.context import (
    GalleryContext,
    album_path,
    optimized_dir,
    resolve_media_paths,
    thumbnail_dir,
)
from gallerycore.derive.base import has_encoder_args
from gallerycore.derive.registry import generator_for
from gallerycore.errors import BusinessError, GalleryError, InflationError, ValidationError
from gallerycore.media.encoder_output import parse_dimensions, parse_duration
from gallerycore.media.exif import extract_metadata
from gallerycore.media.image_io import kind_for_path, mime_category_for, read_image_size
from gallerycore.models import (
    Album,
    Asset,
    AssetKind,
    ConversionType,
    DerivativeType,
    Flip,
    InflationState,
    MediaAsset,
    MimeCategory,
    Rotation,
)
from gallerycore.util.files import file_size_kb, is_same_path, move_file_safely, validate_file_name
from gallerycore.util.time import utcnow

logger = logging.getLogger(__name__)

ROOT_ALBUM_TITLE = "All albums"
SYSTEM_USER = "system"


@dataclass(slots=True)
class InflationResult:
    ok: bool
    error: InflationError | None = None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


@dataclass(slots=True)
class SaveOutcome:
    asset: Asset
    was_new: bool
    behavior_ran: bool


# -- inflation --------------------------------------------------------------


def uninflated_album(album_id: int, gallery_id: int = 1) -> Album:
    return Album(id=album_id, gallery_id=gallery_id, inflation=InflationState.UNINFLATED)


def uninflated_media(media_id: int, gallery_id: int = 1) -> MediaAsset:
    return MediaAsset(id=media_id, gallery_id=gallery_id, inflation=InflationState.UNINFLATED)


def _copy_state(source: Asset, target: Asset) -> None:
    for f in fields(source):
        if f.name in ("parent", "children"):
            continue
        setattr(target, f.name, getattr(source, f.name))


def inflate(ctx: GalleryContext, asset: Asset) -> None:
    """Load the persisted state of an uninflated asset in place."""
    if asset.inflation != InflationState.UNINFLATED or asset.id is None:
        return
    loaded: Asset | None
    if isinstance(asset, Album):
        loaded = ctx.repo.find_album(asset.id)
    else:
        loaded = ctx.repo.find_media(asset.id)
    if loaded is None:
        raise InflationError(f"{type(asset).__name__} {asset.id} does not exist in the data store")
    _copy_state(loaded, asset)
    if isinstance(asset, MediaAsset):
        resolve_media_paths(ctx, asset)
    elif isinstance(asset, Album):
        asset.path_on_disk = album_path(ctx, asset)
    if not asset.is_inflated or asset.has_changes:
        raise InflationError(f"{type(asset).__name__} {asset.id} was not fully inflated")


def ensure_inflated(ctx: GalleryContext, asset: Asset) -> InflationResult:
    try:
        inflate(ctx, asset)
    except InflationError as exc:
        return InflationResult(ok=False, error=exc)
    return InflationResult(ok=True)


# -- save -------------------------------------------------------------------


def validate_save(ctx: GalleryContext, asset: Asset) -> None:
    if not asset.is_new and not asset.is_inflated:
        raise InflationError("an existing asset must be inflated before it is saved")
    if not asset.is_writable:
        raise BusinessError(f"{asset.kind.value} {asset.id} is not writable")
    if not asset.created_by or not asset.last_modified_by:
        raise ValidationError("created_by and last_modified_by must be set before saving")

    now = utcnow()
    if asset.date_added is None:
        asset.date_added = now
    if asset.is_new or asset.has_changes or asset.date_modified is None:
        asset.date_modified = now

    if asset.sequence is None:
        if asset.parent_id is None:
            asset.sequence = 0
        else:
            asset.sequence = ctx.repo.max_child_sequence(asset.parent_id) + 1

    if isinstance(asset, MediaAsset) and not asset.thumbnail.exists():
        asset.regenerate_thumbnail = True
        asset.has_changes = True


def save_asset(ctx: GalleryContext, asset: Asset) -> SaveOutcome:
    validate_save(ctx, asset)
    was_new = asset.is_new
    ran = False
    if was_new or asset.has_changes:
        save_behavior_for(asset.kind).save(ctx, asset)
        ran = True

    asset.has_changes = False
    asset.gallery_id_changed = False
    asset.regenerate_thumbnail = False
    asset.regenerate_optimized = False
    if isinstance(asset, MediaAsset):
        asset.clear_rotation()
    asset.inflation = InflationState.INFLATED

    outcome = SaveOutcome(asset=asset, was_new=was_new, behavior_ran=ran)
    for step in POST_SAVE_STEPS:
        step(ctx, outcome)
    return outcome


def _parent_of(ctx: GalleryContext, asset: Asset) -> Album | None:
    if asset.parent is not None:
        return asset.parent
    if asset.parent_id is None:
        return None
    return ctx.repo.find_album(asset.parent_id)


def _assign_parent_thumbnail(ctx: GalleryContext, outcome: SaveOutcome) -> None:
    asset = outcome.asset
    if isinstance(asset, MediaAsset):
        candidate = asset.id or 0
    elif isinstance(asset, Album):
        candidate = asset.thumbnail_media_id
    else:
        return
    if not candidate:
        return
    parent = _parent_of(ctx, asset)
    if parent is None or parent.is_root or parent.thumbnail_media_id != 0 or parent.id is None:
        return
    parent.thumbnail_media_id = candidate
    ctx.repo.save_album(parent)
    ctx.cache.remove_album_from_cache(parent.id)


def _invalidate_cache(ctx: GalleryContext, outcome: SaveOutcome) -> None:
    if not outcome.behavior_ran:
        return
    asset = outcome.asset
    ctx.cache.purge_cache(asset)
    if outcome.was_new and asset.id is not None and asset.parent_id is not None:
        if isinstance(asset, Album):
            ctx.cache.add_album_id_to_album_cache_item(asset.id, asset.parent_id)
        else:
            ctx.cache.add_media_asset_id_to_album_cache_item(asset.id, asset.parent_id)


def _enqueue_conversion(ctx: GalleryContext, outcome: SaveOutcome) -> None:
    asset = outcome.asset
    if not outcome.was_new or ctx.queue is None or not isinstance(asset, MediaAsset) or asset.id is None:
        return
    if asset.kind not in (AssetKind.VIDEO, AssetKind.AUDIO):
        return
    if has_encoder_args(ctx.settings(asset.gallery_id), asset):
        ctx.queue.enqueue(asset.id, ConversionType.CREATE_OPTIMIZED)


POST_SAVE_STEPS: list[Callable[[GalleryContext, SaveOutcome], None]] = [
    _assign_parent_thumbnail,
    _invalidate_cache,
    _enqueue_conversion,
]


# -- delete -----------------------------------------------------------------


def _reassign_parent_thumbnail(ctx: GalleryContext, media: MediaAsset) -> None:
    parent = _parent_of(ctx, media)
    if parent is None or parent.is_root or parent.id is None or parent.thumbnail_media_id != media.id:
        return
    remaining = [mid for mid in ctx.repo.child_media_ids(parent.id) if mid != media.id]
    parent.thumbnail_media_id = remaining[0] if remaining else 0
    ctx.repo.save_album(parent)
    ctx.cache.remove_album_from_cache(parent.id)


def delete_asset(ctx: GalleryContext, asset: Asset, delete_from_filesystem: bool = True) -> None:
    ensure_inflated(ctx, asset).raise_for_error()
    if asset.is_new:
        raise ValidationError("cannot delete an asset that has not been saved")
    if not asset.is_writable:
        raise BusinessError(f"{asset.kind.value} {asset.id} is not writable")

    if isinstance(asset, MediaAsset) and ctx.queue is not None and asset.id is not None:
        ctx.queue.remove([asset.id])

    delete_behavior_for(asset.kind).delete(ctx, asset, delete_from_filesystem)

    if asset.parent is not None:
        asset.parent.remove_child(asset)
    if isinstance(asset, MediaAsset):
        _reassign_parent_thumbnail(ctx, asset)


def delete_from_gallery(ctx: GalleryContext, asset: Asset) -> None:
    """Remove the asset from the gallery, leaving original files on disk."""
    delete_asset(ctx, asset, delete_from_filesystem=False)


# -- loading ----------------------------------------------------------------


def load_children(ctx: GalleryContext, album: Album) -> list[Asset]:
    assert album.id is not None
    children: list[Asset] = []
    for child_id in ctx.repo.child_album_ids(album.id):
        child = ctx.repo.find_album(child_id)
        if child is None:
            continue
        child.parent = album
        child.path_on_disk = album_path(ctx, child)
        children.append(child)
    for media_id in ctx.repo.child_media_ids(album.id):
        # Media stay uninflated until something needs their derivatives.
        stub = uninflated_media(media_id, album.gallery_id)
        stub.parent_id = album.id
        stub.parent = album
        children.append(stub)
    album.children = children
    return children


def load_album(ctx: GalleryContext, album_id: int, with_children: bool = False) -> Album:
    album = ctx.cache.get_inflated_album(album_id)
    if album is None:
        album = ctx.repo.find_album(album_id)
        if album is None:
            raise ValidationError(f"album {album_id} does not exist")
        album.path_on_disk = album_path(ctx, album)
        ctx.cache.add_to_inflated_album_cache(album)
    if with_children and album.children is None:
        load_children(ctx, album)
    return album


def load_root_album(ctx: GalleryContext, gallery_id: int, user: str = SYSTEM_USER) -> Album:
    """Return the gallery's root album, creating it (and the media root) on first use."""
    root = ctx.repo.find_root_album(gallery_id)
    if root is not None:
        root.path_on_disk = album_path(ctx, root)
        return root
    root = Album(gallery_id=gallery_id, title=ROOT_ALBUM_TITLE, created_by=user, last_modified_by=user)
    save_asset(ctx, root)
    return root


def load_media(ctx: GalleryContext, media_id: int) -> MediaAsset:
    media = ctx.repo.find_media(media_id)
    if media is None:
        raise ValidationError(f"media asset {media_id} does not exist")
    resolve_media_paths(ctx, media)
    return media


# -- creation and mutation --------------------------------------------------


def create_album(
    ctx: GalleryContext,
    parent: Album,
    title: str,
    user: str,
    directory_name: str | None = None,
) -> Album:
    if parent.id is None:
        raise ValidationError("the parent album must be saved before adding children")
    settings = ctx.settings(parent.gallery_id)
    album = Album(
        gallery_id=parent.gallery_id,
        parent_id=parent.id,
        title=title,
        directory_name=directory_name or title.strip()[: settings.album_directory_name_length],
        created_by=user,
        last_modified_by=user,
    )
    album.parent = parent
    save_asset(ctx, album)
    if parent.children is not None:
        parent.add_child(album)
    return album


def _detach(album: Album, media: MediaAsset) -> None:
    album.remove_child(media)
    media.parent = None


def create_media_asset(
    ctx: GalleryContext,
    album: Album,
    path: Path,
    user: str,
    title: str | None = None,
) -> MediaAsset:
    """Build a new, unsaved media asset for a file already inside *album*'s directory."""
    if album.id is None:
        raise ValidationError("the album must be saved before media can be added")
    settings = ctx.settings(album.gallery_id)
    album_dir = album_path(ctx, album)
    path = Path(path)
    media = MediaAsset(
        gallery_id=album.gallery_id,
        parent_id=album.id,
        media_kind=kind_for_path(path),
        title=title if title is not None else path.name,
        created_by=user,
        last_modified_by=user,
    )
    media.parent = album
    if album.children is not None:
        album.children.append(media)

    try:
        original = media.original
        original.assign_file(path, [album_dir], album.id)
        original.mime_category = mime_category_for(path)
        original.file_size_kb = file_size_kb(path)
        if media.kind == AssetKind.IMAGE:
            original.width, original.height = read_image_size(path)
        elif media.kind in (AssetKind.VIDEO, AssetKind.AUDIO) and ctx.encoder.is_available:
            output = ctx.encoder.get_output(path, album.gallery_id)
            dims = parse_dimensions(output)
            original.width, original.height = dims.source_width, dims.source_height
            media.duration_seconds = parse_duration(output)
        if settings.extract_metadata:
            media.meta_items = extract_metadata(media)
    except GalleryError:
        _detach(album, media)
        raise
    return media


def create_external_asset(
    ctx: GalleryContext,
    album: Album,
    html: str,
    mime_category: MimeCategory,
    user: str,
    title: str = "",
) -> MediaAsset:
    if album.id is None:
        raise ValidationError("the album must be saved before media can be added")
    if not html.strip():
        raise ValidationError("external media requires an HTML snippet")
    media = MediaAsset(
        gallery_id=album.gallery_id,
        parent_id=album.id,
        media_kind=AssetKind.EXTERNAL,
        title=title,
        created_by=user,
        last_modified_by=user,
    )
    media.parent = album
    media.original.external_html_source = html
    media.original.external_type = mime_category
    media.original.mime_category = mime_category
    save_asset(ctx, media)
    if album.children is not None:
        album.add_child(media)
    return media


def rotate(ctx: GalleryContext, media: MediaAsset, rotation: Rotation, flip: Flip, user: str) -> SaveOutcome:
    ensure_inflated(ctx, media).raise_for_error()
    media.request_rotation(rotation, flip)
    media.last_modified_by = user
    return save_asset(ctx, media)


def _is_descendant(ctx: GalleryContext, album_id: int, candidate_id: int) -> bool:
    for child_id in ctx.repo.child_album_ids(album_id):
        if child_id == candidate_id or _is_descendant(ctx, child_id, candidate_id):
            return True
    return False


def _move_media_files(ctx: GalleryContext, media: MediaAsset, dest: Album) -> None:
    settings = ctx.settings(dest.gallery_id)
    dest_dir = album_path(ctx, dest)
    shares_original = is_same_path(media.optimized.physical_path, media.original.physical_path)
    targets = [
        (media.original, dest_dir),
        (media.thumbnail, thumbnail_dir(settings, dest_dir)),
    ]
    if not shares_original:
        targets.append((media.optimized, optimized_dir(settings, dest_dir)))
    for record, target_dir in targets:
        current = record.physical_path
        if current is None or not current.is_file():
            continue
        new_path = target_dir / validate_file_name(target_dir, current.name)
        move_file_safely(current, new_path)
        record.physical_path = new_path
        record.file_name = new_path.name
    if shares_original:
        media.optimized.copy_from(media.original)


def move(ctx: GalleryContext, asset: Asset, dest: Album, user: str) -> SaveOutcome:
    """Re-parent *asset* under *dest*, moving its files and fixing cached memberships."""
    ensure_inflated(ctx, asset).raise_for_error()
    if dest.id is None or asset.id is None:
        raise ValidationError("both the asset and the destination album must be saved")
    if isinstance(asset, Album):
        if asset.is_root:
            raise BusinessError("the root album cannot be moved")
        if dest.id == asset.id or _is_descendant(ctx, asset.id, dest.id):
            raise ValidationError("an album cannot be moved into itself or one of its children")
    old_parent = _parent_of(ctx, asset)
    old_parent_id = asset.parent_id
    if old_parent_id == dest.id:
        raise ValidationError(f"{asset.kind.value} {asset.id} is already in album {dest.id}")

    if isinstance(asset, MediaAsset):
        _move_media_files(ctx, asset, dest)
        _reassign_parent_thumbnail(ctx, asset)

    asset.parent_id = dest.id
    asset.parent = dest
    asset.change_gallery(dest.gallery_id)
    asset.sequence = None
    asset.has_changes = True
    asset.last_modified_by = user
    outcome = save_asset(ctx, asset)

    if old_parent is not None:
        old_parent.remove_child(asset)
    if dest.children is not None:
        dest.add_child(asset)
    if old_parent_id is not None:
        if isinstance(asset, Album):
            ctx.cache.remove_album_id_from_parent_album_cache_item(asset.id, old_parent_id)
            ctx.cache.add_album_id_to_album_cache_item(asset.id, dest.id)
        else:
            ctx.cache.remove_media_asset_id_from_parent_album_cache_item(asset.id, old_parent_id)
            ctx.cache.add_media_asset_id_to_album_cache_item(asset.id, dest.id)
    return outcome


# -- derivatives and projections --------------------------------------------


def resolve_derivative_path(ctx: GalleryContext, media: MediaAsset, dtype: DerivativeType) -> Path | None:
    """Path of the requested derivative, generating it first when the file is absent."""
    ensure_inflated(ctx, media).raise_for_error()
    record = media.record(dtype)
    if record.exists():
        return record.physical_path
    if media.id is None or ctx.settings(media.gallery_id).media_read_only:
        return None
    if dtype == DerivativeType.THUMBNAIL:
        media.regenerate_thumbnail = True
    elif dtype == DerivativeType.OPTIMIZED:
        media.regenerate_optimized = True
    wrote = generator_for(media.kind, dtype).generate_and_save(ctx, media)
    media.regenerate_thumbnail = False
    media.regenerate_optimized = False
    if wrote:
        logger.debug("regenerated %s for media %s", dtype.value, media.id)
        ctx.repo.save_media(media)
        ctx.cache.purge_cache(media)
    return record.physical_path if record.exists() else None


def get_album_entry(ctx: GalleryContext, album_id: int) -> AlbumCacheEntry:
    entry = ctx.cache.get_album_asset(album_id)
    if entry is not None:
        return entry
    album = load_album(ctx, album_id)
    ctx.cache.add_to_album_asset_cache(AlbumCacheEntry.from_album(album, ctx.repo))
    return ctx.cache.get_album_asset(album_id) or AlbumCacheEntry.from_album(album, ctx.repo)


def get_media_entry(ctx: GalleryContext, media_id: int) -> MediaCacheEntry:
    entry = ctx.cache.get_media_asset(media_id)
    if entry is not None:
        return entry
    media = load_media(ctx, media_id)
    built = MediaCacheEntry.from_media(media)
    ctx.cache.add_to_media_asset_cache(built)
    return ctx.cache.get_media_asset(media_id) or built


def get_tags(ctx: GalleryContext, gallery_id: int) -> list[str]:
    tags = ctx.cache.get_tags(gallery_id)
    if tags is not None:
        return tags
    tags = ctx.repo.tags(gallery_id)
    ctx.cache.add_tags(gallery_id, tags)
    return tags
