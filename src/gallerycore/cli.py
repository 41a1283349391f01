from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from gallerycore.config import default_config_path, load_config, write_default_config
from gallerycore.errors import GalleryError
from gallerycore.service import GalleryService
from gallerycore.util.logging import setup_logging, use_color

app = typer.Typer(help="gallery: media gallery engine")
album_app = typer.Typer(help="Manage albums")
media_app = typer.Typer(help="Manage media assets")
queue_app = typer.Typer(help="Media conversion queue")
cache_app = typer.Typer(help="Projection cache")
encoder_app = typer.Typer(help="External media encoder")
app.add_typer(album_app, name="album")
app.add_typer(media_app, name="media")
app.add_typer(queue_app, name="queue")
app.add_typer(cache_app, name="cache")
app.add_typer(encoder_app, name="encoder")


@dataclass(slots=True)
class AppState:
    service: GalleryService
    console: Console
    config_path: Path


def _state(ctx: typer.Context) -> AppState:
    st = ctx.obj
    if not isinstance(st, AppState):
        raise RuntimeError("app state not initialized")
    return st


def _emit_obj(console: Console, obj: dict, json_out: bool) -> None:
    if json_out:
        typer.echo(json.dumps(obj, indent=2))
        return
    for k, v in obj.items():
        console.print(f"[bold]{k}[/bold]: {v}")


def _fail(console: Console, exc: GalleryError) -> None:
    console.print(f"[red]error:[/red] {exc}")
    raise typer.Exit(1) from exc


def _derivative_table(row: dict[str, Any]) -> Table:
    table = Table(title=f"{row['kind']} {row['id']}: {row['title']}")
    table.add_column("type")
    table.add_column("file")
    table.add_column("size")
    table.add_column("kb")
    for d in row.get("derivatives") or []:
        size = f"{d['width']}x{d['height']}" if d.get("width") and d.get("height") else ""
        table.add_row(str(d["type"]), str(d.get("file_name") or ""), size, str(d.get("size_kb") or 0))
    return table


@app.callback()
def main(
    ctx: typer.Context,
    config: Annotated[Path | None, typer.Option("--config", help="Config YAML path")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging")] = False,
) -> None:
    setup_logging(verbose)
    cfg_path = config.expanduser() if config else default_config_path()
    if not cfg_path.exists():
        write_default_config(cfg_path)
    cfg = load_config(cfg_path)
    color_on = use_color()
    console = Console(color_system="auto" if color_on else None, force_terminal=color_on)
    ctx.obj = AppState(service=GalleryService(cfg), console=console, config_path=cfg_path)


@app.command("init-config")
def init_config(
    ctx: typer.Context,
    path: Annotated[Path | None, typer.Option("--path", help="Write config to this path")] = None,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    written = write_default_config(path.expanduser() if path else None)
    _emit_obj(st.console, {"config_path": str(written)}, json_out)


@album_app.command("add")
def album_add_cmd(
    ctx: typer.Context,
    title: Annotated[str, typer.Argument(help="Album title; also the directory name")],
    parent: Annotated[int | None, typer.Option("--parent", help="Parent album id (default: root)")] = None,
    gallery: Annotated[int, typer.Option("--gallery")] = 1,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    try:
        result = st.service.album_add(title, parent_id=parent, gallery_id=gallery)
    except GalleryError as exc:
        _fail(st.console, exc)
    _emit_obj(st.console, result, json_out)


@album_app.command("ls")
def album_ls_cmd(
    ctx: typer.Context,
    album_id: Annotated[int | None, typer.Argument(help="Album id (default: root)")] = None,
    gallery: Annotated[int, typer.Option("--gallery")] = 1,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    try:
        row = st.service.album_list(album_id, gallery_id=gallery)
    except GalleryError as exc:
        _fail(st.console, exc)
    if json_out:
        typer.echo(json.dumps(row, indent=2))
        return
    table = Table(title=f"album {row['id']}: {row['title']}")
    table.add_column("kind")
    table.add_column("id")
    for child_id in row["child_album_ids"]:
        table.add_row("album", str(child_id))
    for child_id in row["child_media_ids"]:
        table.add_row("media", str(child_id))
    st.console.print(table)
    st.console.print(f"[dim]{row['path']}[/dim]")


@album_app.command("rm")
def album_rm_cmd(
    ctx: typer.Context,
    album_id: int,
    keep_files: Annotated[bool, typer.Option("--keep-files", help="Remove from the gallery only")] = False,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    try:
        result = st.service.album_remove(album_id, keep_files=keep_files)
    except GalleryError as exc:
        _fail(st.console, exc)
    _emit_obj(st.console, result, json_out)


@album_app.command("move")
def album_move_cmd(
    ctx: typer.Context,
    album_id: int,
    dest_id: int,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    try:
        result = st.service.album_move(album_id, dest_id)
    except GalleryError as exc:
        _fail(st.console, exc)
    _emit_obj(st.console, result, json_out)


@media_app.command("add")
def media_add_cmd(
    ctx: typer.Context,
    file_path: Annotated[str, typer.Argument(help="File to add; copied into the album directory")],
    album: Annotated[int | None, typer.Option("--album", help="Album id (default: root)")] = None,
    title: Annotated[str | None, typer.Option("--title")] = None,
    gallery: Annotated[int, typer.Option("--gallery")] = 1,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    try:
        row = st.service.media_add(file_path, album_id=album, title=title, gallery_id=gallery)
    except GalleryError as exc:
        _fail(st.console, exc)
    if json_out:
        typer.echo(json.dumps(row, indent=2))
        return
    st.console.print(_derivative_table(row))


@media_app.command("rotate")
def media_rotate_cmd(
    ctx: typer.Context,
    media_id: int,
    degrees: Annotated[int, typer.Argument(help="Clockwise rotation: 0, 90, 180 or 270")],
    flip: Annotated[str, typer.Option("--flip", help="none, x or y")] = "none",
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    try:
        row = st.service.media_rotate(media_id, degrees, flip)
    except GalleryError as exc:
        _fail(st.console, exc)
    if json_out:
        typer.echo(json.dumps(row, indent=2))
        return
    st.console.print(_derivative_table(row))


@media_app.command("rm")
def media_rm_cmd(
    ctx: typer.Context,
    media_id: int,
    keep_original: Annotated[bool, typer.Option("--keep-original", help="Leave the original file on disk")] = False,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    try:
        result = st.service.media_remove(media_id, keep_original=keep_original)
    except GalleryError as exc:
        _fail(st.console, exc)
    _emit_obj(st.console, result, json_out)


@media_app.command("path")
def media_path_cmd(
    ctx: typer.Context,
    media_id: int,
    dtype: Annotated[str, typer.Option("--type", help="thumbnail, optimized or original")] = "optimized",
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    try:
        result = st.service.media_path(media_id, dtype)
    except GalleryError as exc:
        _fail(st.console, exc)
    if json_out:
        typer.echo(json.dumps(result, indent=2))
        return
    typer.echo(result["path"] or "")


@media_app.command("get")
def media_get_cmd(
    ctx: typer.Context,
    media_id: int,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    try:
        row = st.service.media_get(media_id)
    except GalleryError as exc:
        _fail(st.console, exc)
    if json_out:
        typer.echo(json.dumps(row, indent=2))
        return
    st.console.print(_derivative_table(row))
    for m in row.get("meta") or []:
        st.console.print(f"[bold]{m['name']}[/bold]: {m['value']}")


@media_app.command("meta")
def media_meta_cmd(
    ctx: typer.Context,
    media_id: int,
    name: Annotated[str, typer.Argument(help="Metadata name, e.g. Title, Tags or FileName")],
    value: str,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    try:
        row = st.service.media_set_meta(media_id, name, value)
    except GalleryError as exc:
        _fail(st.console, exc)
    if json_out:
        typer.echo(json.dumps(row, indent=2))
        return
    st.console.print(_derivative_table(row))


@app.command("tags")
def tags_cmd(
    ctx: typer.Context,
    gallery: Annotated[int, typer.Option("--gallery")] = 1,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    tags = st.service.tags(gallery)
    if json_out:
        typer.echo(json.dumps(tags, indent=2))
        return
    for tag in tags:
        typer.echo(tag)


@app.command("events")
def events_cmd(
    ctx: typer.Context,
    severity: Annotated[str | None, typer.Option("--severity", help="error or info")] = None,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    rows = st.service.recent_events(severity)
    if json_out:
        typer.echo(json.dumps(rows, indent=2))
        return
    table = Table(title="recent events")
    table.add_column("when")
    table.add_column("severity")
    table.add_column("type")
    table.add_column("message")
    for row in rows:
        table.add_row(str(row["created_at"]), str(row["severity"]), str(row["type"]), str(row["message"]))
    st.console.print(table)


@app.command("sync")
def sync_cmd(
    ctx: typer.Context,
    album: Annotated[int | None, typer.Option("--album", help="Album id (default: root)")] = None,
    gallery: Annotated[int, typer.Option("--gallery")] = 1,
    regenerate_thumbnails: Annotated[bool, typer.Option("--regenerate-thumbnails")] = False,
    regenerate_optimized: Annotated[bool, typer.Option("--regenerate-optimized")] = False,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    try:
        result = st.service.sync(
            album_id=album,
            gallery_id=gallery,
            regenerate_thumbnails=regenerate_thumbnails,
            regenerate_optimized=regenerate_optimized,
        )
    except GalleryError as exc:
        _fail(st.console, exc)
    if json_out:
        typer.echo(json.dumps(result, indent=2))
        return
    skipped = result.pop("skipped")
    _emit_obj(st.console, result, False)
    for item in skipped:
        st.console.print(f"[yellow]skipped[/yellow] {item['path']}: {item['reason']}")


@queue_app.command("run")
def queue_run_cmd(
    ctx: typer.Context,
    max_items: Annotated[int | None, typer.Option("--max", help="Stop after this many items")] = None,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    rows = st.service.queue_run(max_items)
    if json_out:
        typer.echo(json.dumps(rows, indent=2))
        return
    if not rows:
        st.console.print("[dim]queue is empty[/dim]")
        return
    for row in rows:
        color = "green" if row["status"] == "complete" else "red"
        st.console.print(
            f"[{color}]{row['status']}[/{color}] media {row['media_id']} "
            f"{row['conversion_type']}: {row['status_detail']}"
        )


@queue_app.command("ls")
def queue_ls_cmd(
    ctx: typer.Context,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    rows = st.service.queue_list()
    if json_out:
        typer.echo(json.dumps(rows, indent=2))
        return
    table = Table(title="media queue")
    table.add_column("id")
    table.add_column("media")
    table.add_column("conversion")
    table.add_column("status")
    table.add_column("detail")
    for row in rows:
        table.add_row(
            str(row["id"]),
            str(row["media_id"]),
            str(row["conversion_type"]),
            str(row["status"]),
            str(row["status_detail"]),
        )
    st.console.print(table)


@cache_app.command("status")
def cache_status_cmd(
    ctx: typer.Context,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    _emit_obj(st.console, st.service.cache_status(), json_out)


@cache_app.command("purge")
def cache_purge_cmd(
    ctx: typer.Context,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    _emit_obj(st.console, st.service.cache_purge(), json_out)


@encoder_app.command("probe")
def encoder_probe_cmd(
    ctx: typer.Context,
    file_path: str,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    result = st.service.encoder_probe(file_path)
    if not result["available"]:
        st.console.print("[yellow]no media encoder configured; set encoder.tool_path[/yellow]")
    _emit_obj(st.console, result, json_out)


if __name__ == "__main__":
    app()
