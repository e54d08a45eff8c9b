import json
import logging
from pathlib import Path
from typing import Any, NoReturn, Optional

import typer
from pydantic import BaseModel

from pybsn.client import BSNClient
from pybsn.core.config import Config
from pybsn.core.errors import BSNError
from pybsn.core.models import ListQuery

app = typer.Typer(help="Command-line access to BSN.cloud.")


def _client(ctx: typer.Context, *, scoped: bool = True) -> BSNClient:
    if "client" not in ctx.obj:
        config = Config.load(ctx.obj["config"], debug=ctx.obj["verbose"] or None)
        ctx.obj["client"] = BSNClient(config)
        ctx.call_on_close(ctx.obj["client"].close)
    client: BSNClient = ctx.obj["client"]
    if scoped:
        client.ensure_network(ctx.obj["network"])
    return client


def _emit(data: Any, as_json: bool, lines: list[str]) -> None:
    if as_json:
        if isinstance(data, list):
            data = [item.model_dump(mode="json", by_alias=True) for item in data]
        elif isinstance(data, BaseModel):
            data = data.model_dump(mode="json", by_alias=True)
        typer.echo(json.dumps(data, indent=2))
    else:
        for line in lines:
            typer.echo(line)


def _fail(error: BSNError) -> NoReturn:
    typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,
    network: Optional[str] = typer.Option(None, "--network", "-n", help="Network name"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    ctx.ensure_object(dict)
    ctx.obj["network"] = network
    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose


@app.command()
def networks(ctx: typer.Context, as_json: bool = typer.Option(False, "--json")):
    """List the networks available to the credentials."""
    try:
        items = _client(ctx, scoped=False).get_networks()
    except BSNError as e:
        _fail(e)
    _emit(items, as_json, [str(n) for n in items])


@app.command()
def devices(
    ctx: typer.Context,
    filter_: str = typer.Option("", "--filter"),
    limit: Optional[int] = typer.Option(None, "--limit"),
    as_json: bool = typer.Option(False, "--json"),
):
    """List devices in the selected network."""
    try:
        items = _client(ctx).devices.to_list(ListQuery(filter=filter_), limit=limit)
    except BSNError as e:
        _fail(e)
    _emit(items, as_json, [f"{d.serial}\t{d.model}\t(ID: {d.id})" for d in items])


@app.command("content-list")
def content_list(
    ctx: typer.Context,
    filter_: str = typer.Option("", "--filter"),
    limit: Optional[int] = typer.Option(None, "--limit"),
    as_json: bool = typer.Option(False, "--json"),
):
    """List files in the content library."""
    try:
        items = _client(ctx).content.to_list(ListQuery(filter=filter_), limit=limit)
    except BSNError as e:
        _fail(e)
    _emit(
        items,
        as_json,
        [f"{c.virtual_path}{c.name}\t{c.file_size}\t(ID: {c.id})" for c in items],
    )


@app.command("content-upload")
def content_upload(
    ctx: typer.Context,
    path: Path,
    virtual_path: str = typer.Option("/", "--path", help="Destination folder"),
    name: Optional[str] = typer.Option(None, "--name"),
    as_json: bool = typer.Option(False, "--json"),
):
    """Upload a local file to the content library."""
    if not path.is_file():
        typer.echo(f"Error: file not found: {path}", err=True)
        raise typer.Exit(1)
    try:
        result = _client(ctx).upload_file(path, virtual_path, name=name)
    except BSNError as e:
        _fail(e)
    _emit(
        result,
        as_json,
        [f"Uploaded {result.virtual_path}{result.file_name} (ID: {result.content_id})"],
    )


@app.command("content-delete")
def content_delete(
    ctx: typer.Context,
    content_id: int,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    as_json: bool = typer.Option(False, "--json"),
):
    """Delete a file from the content library."""
    # JSON output is for scripts, so there is nobody to answer a prompt
    if as_json and not yes:
        typer.echo("Error: --yes is required with --json for destructive commands", err=True)
        raise typer.Exit(2)
    if not yes:
        typer.confirm(f"Delete content {content_id}?", abort=True)
    try:
        _client(ctx).delete_content(content_id)
    except BSNError as e:
        _fail(e)
    _emit({"deleted": content_id}, as_json, [f"Deleted content {content_id}"])


if __name__ == "__main__":
    app()
