from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass
import json
from pathlib import Path
from typing import Annotated, Any, Callable, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from lima import __version__
from lima.config import AppConfig, default_config_path, load_config, write_default_config
from lima.errors import (
    Conflict,
    FilesystemFault,
    InvalidInput,
    LimaError,
    NotFound,
    Precondition,
    StorageFault,
)
from lima.service import LimaService
from lima.util.logging import setup_logging, use_color

app = typer.Typer(help="lima: a library of project folders")
project_app = typer.Typer(help="Manage projects")
tag_app = typer.Typer(help="Manage tags")
bundle_app = typer.Typer(help="Stage uploads for import")
asset_app = typer.Typer(help="Manage project assets")
app.add_typer(project_app, name="project")
app.add_typer(project_app, name="projects")
app.add_typer(tag_app, name="tag")
app.add_typer(tag_app, name="tags")
app.add_typer(bundle_app, name="bundle")
app.add_typer(asset_app, name="asset")

T = TypeVar("T")

EXIT_CODES: list[tuple[type[LimaError], int]] = [
    (InvalidInput, 2),
    (NotFound, 3),
    (Conflict, 4),
    (Precondition, 5),
    (StorageFault, 6),
    (FilesystemFault, 7),
]


@dataclass(slots=True)
class AppState:
    service: LimaService
    console: Console
    config_path: Path


def _state(ctx: typer.Context) -> AppState:
    st = ctx.obj
    if not isinstance(st, AppState):
        raise RuntimeError("app state not initialized")
    return st


def exit_code_for(exc: LimaError) -> int:
    for kind, code in EXIT_CODES:
        if isinstance(exc, kind):
            return code
    return 1


def _run(st: AppState, json_out: bool, fn: Callable[[], T]) -> T:
    try:
        return fn()
    except LimaError as exc:
        if json_out:
            typer.echo(json.dumps({"error": exc.to_dict()}, indent=2))
        else:
            st.console.print(f"[red]{exc.code}:[/red] {exc.message}")
        raise typer.Exit(exit_code_for(exc)) from exc


def _emit_obj(console: Console, obj: dict, json_out: bool) -> None:
    if json_out:
        typer.echo(json.dumps(obj, indent=2))
        return
    for k, v in obj.items():
        console.print(f"[bold]{k}[/bold]: {v}")


def _emit_projects(console: Console, page: dict[str, Any], json_out: bool, title: str) -> None:
    if json_out:
        typer.echo(json.dumps(page, indent=2))
        return
    items = page["items"]
    if not items:
        console.print("[dim]no projects[/dim]")
        return
    table = Table(title=title)
    table.add_column("id")
    table.add_column("name")
    table.add_column("folder")
    table.add_column("updated_at")
    if "rank" in items[0]:
        table.add_column("rank")
    for row in items:
        cells = [str(row["id"]), str(row["name"]), str(row["folder_path"]), str(row["updated_at"])]
        if "rank" in row:
            cells.append(f"{float(row['rank']):.4f}")
        table.add_row(*cells)
    console.print(table)
    if page.get("next_cursor"):
        console.print(f"[dim]next cursor: {page['next_cursor']}[/dim]")


def _emit_assets(console: Console, result: dict[str, Any], json_out: bool) -> None:
    if json_out:
        typer.echo(json.dumps(result, indent=2))
        return
    console.print(f"[green]added {result['added']} asset(s)[/green] to {result['project_id']}")
    for asset in result["assets"]:
        console.print(f"  {asset['id']}  {asset['kind']:<6} {asset['file_path']}")


def _print_banner(console: Console, cfg: AppConfig) -> None:
    if not cfg.ui.show_banner:
        return
    console.print(f"[bold cyan]lima[/bold cyan] [dim]{__version__}[/dim]  library: {cfg.library_root}")


@app.callback()
def main(
    ctx: typer.Context,
    config: Annotated[Path | None, typer.Option("--config", help="Config YAML path")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose logging")] = False,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Only log warnings and errors")] = False,
) -> None:
    setup_logging(verbose, quiet=quiet)
    cfg_path = config.expanduser() if config else default_config_path()
    if not cfg_path.exists():
        write_default_config(cfg_path)
    cfg = load_config(cfg_path)
    color_on = use_color()
    console = Console(color_system="auto" if color_on else None, force_terminal=color_on)
    try:
        svc = LimaService(cfg)
    except LimaError as exc:
        console.print(f"[red]{exc.code}:[/red] {exc.message}")
        raise typer.Exit(exit_code_for(exc)) from exc
    ctx.call_on_close(svc.close)
    _print_banner(Console(stderr=True, color_system="auto" if color_on else None), cfg)
    ctx.obj = AppState(service=svc, console=console, config_path=cfg_path)


@app.command("init-config")
def init_config(
    ctx: typer.Context,
    path: Annotated[Path | None, typer.Option("--path", help="Write config to this path")] = None,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    written = write_default_config(path.expanduser() if path else None)
    _emit_obj(st.console, {"config_path": str(written)}, json_out)


@project_app.command("list")
def project_list_cmd(
    ctx: typer.Context,
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Page size")] = None,
    cursor: Annotated[str | None, typer.Option("--cursor", help="Resume after this cursor")] = None,
    query: Annotated[str | None, typer.Option("--query", "-q", help="Full-text filter")] = None,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    if query and query.strip():
        page = _run(st, json_out, lambda: st.service.search_projects(query, limit=limit, cursor=cursor))
        _emit_projects(st.console, page, json_out, title=f"projects matching {query!r}")
        return
    page = _run(st, json_out, lambda: st.service.list_projects(limit=limit, cursor=cursor))
    _emit_projects(st.console, page, json_out, title="projects")


@project_app.command("search")
def project_search_cmd(
    ctx: typer.Context,
    query: str,
    limit: Annotated[int | None, typer.Option("--limit", "-n")] = None,
    cursor: Annotated[str | None, typer.Option("--cursor")] = None,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    page = _run(st, json_out, lambda: st.service.search_projects(query, limit=limit, cursor=cursor))
    _emit_projects(st.console, page, json_out, title=f"projects matching {query!r}")


@project_app.command("show")
def project_show_cmd(
    ctx: typer.Context,
    project_id: str,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    detail = _run(st, json_out, lambda: st.service.project_get(project_id))
    if json_out:
        typer.echo(json.dumps(detail, indent=2))
        return
    project = detail["project"]
    st.console.print(f"[bold magenta]{project['name']}[/bold magenta]  [dim]{project['id']}[/dim]")
    st.console.print(f"   [bold]folder:[/bold] {project['folder_path']}")
    if project["description"]:
        st.console.print(f"   [bold]description:[/bold] {project['description']}")
    if detail["tags"]:
        st.console.print(f"   [bold]tags:[/bold] {', '.join(t['name'] for t in detail['tags'])}")
    table = Table(title="assets")
    table.add_column("id")
    table.add_column("file")
    table.add_column("kind")
    table.add_column("size", justify="right")
    for asset in detail["assets"]:
        marker = " *" if asset["id"] == project["main_image_id"] else ""
        table.add_row(asset["id"], asset["file_path"] + marker, asset["kind"], str(asset["size_bytes"]))
    st.console.print(table)


@project_app.command("create")
def project_create_cmd(
    ctx: typer.Context,
    name: str,
    description: Annotated[str, typer.Option("--description", "-d")] = "",
    tag: Annotated[list[str] | None, typer.Option("--tag", "-t", help="Tag name (repeatable)")] = None,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    result = _run(st, json_out, lambda: st.service.project_create(name, description, tag or []))
    _emit_obj(st.console, result, json_out)


@project_app.command("update")
def project_update_cmd(
    ctx: typer.Context,
    project_id: str,
    name: Annotated[str | None, typer.Option("--name")] = None,
    description: Annotated[str | None, typer.Option("--description", "-d")] = None,
    main_image: Annotated[str | None, typer.Option("--main-image", help="Asset id")] = None,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    result = _run(st, json_out, lambda: st.service.project_update(project_id, name, description, main_image))
    _emit_obj(st.console, result, json_out)


@project_app.command("tags")
def project_tags_cmd(
    ctx: typer.Context,
    project_id: str,
    names: Annotated[list[str] | None, typer.Argument(help="Full tag set; omit to clear")] = None,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    result = _run(st, json_out, lambda: st.service.project_set_tags(project_id, names or []))
    if json_out:
        typer.echo(json.dumps(result, indent=2))
        return
    labels = ", ".join(t["name"] for t in result["tags"]) or "(none)"
    st.console.print(f"[bold]tags:[/bold] {labels}")


@project_app.command("rm")
def project_rm_cmd(ctx: typer.Context, project_id: str) -> None:
    st = _state(ctx)
    _run(st, False, lambda: st.service.project_delete(project_id))
    typer.echo(f"removed {project_id}")


@project_app.command("import")
def project_import_cmd(
    ctx: typer.Context,
    project_id: str,
    bundle_id: str,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    result = _run(st, json_out, lambda: st.service.project_import(project_id, bundle_id))
    _emit_assets(st.console, result, json_out)


@project_app.command("upload")
def project_upload_cmd(
    ctx: typer.Context,
    project_id: str,
    files: Annotated[list[Path], typer.Argument(exists=True, dir_okay=False, help="Files to upload")],
    main_image: Annotated[str | None, typer.Option("--main-image", help="File name to use as main image")] = None,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    with ExitStack() as stack:
        parts = [(p.name, stack.enter_context(p.open("rb"))) for p in files]
        result = _run(st, json_out, lambda: st.service.project_upload(project_id, parts, main_image))
    _emit_assets(st.console, result, json_out)


@project_app.command("scan")
def project_scan_cmd(
    ctx: typer.Context,
    project_id: str,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    result = _run(st, json_out, lambda: st.service.project_scan(project_id))
    _emit_obj(st.console, result, json_out)


@tag_app.command("list")
def tag_list_cmd(
    ctx: typer.Context,
    limit: Annotated[int | None, typer.Option("--limit", "-n")] = None,
    cursor: Annotated[str | None, typer.Option("--cursor")] = None,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    page = _run(st, json_out, lambda: st.service.list_tags(limit=limit, cursor=cursor))
    if json_out:
        typer.echo(json.dumps(page, indent=2))
        return
    table = Table(title="tags")
    table.add_column("name")
    table.add_column("color")
    table.add_column("id")
    for row in page["items"]:
        table.add_row(str(row["name"]), f"[{row['color']}]{row['color']}[/]", str(row["id"]))
    st.console.print(table)
    if page.get("next_cursor"):
        st.console.print(f"[dim]next cursor: {page['next_cursor']}[/dim]")


@tag_app.command("add")
def tag_add_cmd(
    ctx: typer.Context,
    name: str,
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    result = _run(st, json_out, lambda: st.service.tag_create(name))
    _emit_obj(st.console, result, json_out)


@bundle_app.command("create")
def bundle_create_cmd(
    ctx: typer.Context,
    files: Annotated[list[Path], typer.Argument(exists=True, dir_okay=False, help="Files to stage")],
    json_out: Annotated[bool, typer.Option("--json")] = False,
) -> None:
    st = _state(ctx)
    with ExitStack() as stack:
        parts = [(p.name, stack.enter_context(p.open("rb"))) for p in files]
        result = _run(st, json_out, lambda: st.service.bundle_create(parts))
    _emit_obj(st.console, result, json_out)


@bundle_app.command("rm")
def bundle_rm_cmd(ctx: typer.Context, bundle_id: str) -> None:
    st = _state(ctx)
    _run(st, False, lambda: st.service.bundle_delete(bundle_id))
    typer.echo(f"removed bundle {bundle_id}")


@asset_app.command("rm")
def asset_rm_cmd(ctx: typer.Context, project_id: str, asset_id: str) -> None:
    st = _state(ctx)
    _run(st, False, lambda: st.service.asset_delete(project_id, asset_id))
    typer.echo(f"removed asset {asset_id}")


@asset_app.command("main")
def asset_main_cmd(ctx: typer.Context, project_id: str, asset_id: str) -> None:
    st = _state(ctx)
    _run(st, False, lambda: st.service.asset_set_main(project_id, asset_id))
    typer.echo(f"main image of {project_id} is now {asset_id}")
