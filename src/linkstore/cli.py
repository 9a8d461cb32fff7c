"""Command line interface for the link store."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer

from linkstore.core.config import LinkStoreSettings, load_settings
from linkstore.core.exceptions import (
    ConfigurationError,
    ContentMissingError,
    LinkNotFoundError,
    LinkStoreError,
)
from linkstore.core.logging_config import setup_logging
from linkstore.core.setup import create_link_storage
from linkstore.services.link_storage import LinkStorage
from linkstore.utils.async_typer import AsyncTyper

logger = logging.getLogger(__name__)

app = AsyncTyper(
    name="linkstore",
    help="Content-addressed short-link store",
    add_completion=False,
    no_args_is_help=True,
)


class GlobalState:
    """Options shared by every command."""

    def __init__(self) -> None:
        self.config_path: Path | None = None
        self._settings: LinkStoreSettings | None = None

    def reset(self, config_path: Path | None) -> None:
        self.config_path = config_path
        self._settings = None

    @property
    def settings(self) -> LinkStoreSettings:
        if self._settings is None:
            try:
                self._settings = load_settings(self.config_path)
            except ConfigurationError as e:
                typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
                raise typer.Exit(code=1) from e
        return self._settings


global_state = GlobalState()


@app.callback()
def main_callback(
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to linkstore.toml (searched for by default)."),
    ] = None,
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="Logging level, overrides LINKSTORE_LOG_LEVEL."),
    ] = None,
) -> None:
    """Content-addressed short-link store."""
    setup_logging(log_level)
    global_state.reset(config)


def _format_link(short_id: str) -> str:
    base_url = global_state.settings.link_base_url
    if base_url:
        return f"{base_url.rstrip('/')}/z/{short_id}"
    return short_id


async def _expand_or_exit(storage: LinkStorage, short_id: str, count_view: bool) -> str:
    try:
        if count_view:
            link = await storage.open_link(short_id)
        else:
            link = await storage.expand(short_id)
    except (LinkNotFoundError, ContentMissingError) as e:
        typer.secho(f"Unknown id: {short_id}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from e
    except LinkStoreError as e:
        typer.secho(f"Error expanding {short_id}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from e
    return link.config


@app.command(name="init-db")
async def cli_init_db() -> None:
    """Create the metadata tables."""
    storage = create_link_storage(global_state.settings)
    try:
        await storage.db_manager.create_db_and_tables()
    finally:
        await storage.db_manager.dispose()
    typer.secho("Metadata tables are ready.", fg=typer.colors.GREEN)


@app.command(name="store")
async def cli_store(
    file: Annotated[Path, typer.Argument(exists=True, dir_okay=False, readable=True, help="File to store.")],
    ip: Annotated[Optional[str], typer.Option("--ip", help="Address of the requester.")] = None,
    forwarded_for: Annotated[
        Optional[str], typer.Option("--forwarded-for", help="X-Forwarded-For value of the request.")
    ] = None,
) -> None:
    """Store a file and print its short link."""
    storage = create_link_storage(global_state.settings)
    try:
        item = await storage.store(file.read_bytes(), remote_addr=ip, forwarded_for=forwarded_for)
    except LinkStoreError as e:
        typer.secho(f"Error storing {file}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from e
    finally:
        await storage.db_manager.dispose()
    typer.echo(_format_link(item.unique_subhash))


@app.command(name="expand")
async def cli_expand(short_id: Annotated[str, typer.Argument(help="Short id to expand.")]) -> None:
    """Print the content stored under a short id."""
    storage = create_link_storage(global_state.settings)
    try:
        config = await _expand_or_exit(storage, short_id, count_view=False)
    finally:
        await storage.db_manager.dispose()
    typer.echo(config, nl=False)


@app.command(name="open")
async def cli_open(short_id: Annotated[str, typer.Argument(help="Short id to open.")]) -> None:
    """Print the content stored under a short id and count a view."""
    storage = create_link_storage(global_state.settings)
    try:
        config = await _expand_or_exit(storage, short_id, count_view=True)
        await storage.wait_for_pending_increments()
    finally:
        await storage.db_manager.dispose()
    typer.echo(config, nl=False)


@app.command(name="stats")
async def cli_stats(short_id: Annotated[str, typer.Argument(help="Short id to inspect.")]) -> None:
    """Print the view count of a short id."""
    storage = create_link_storage(global_state.settings)
    try:
        clicks = await storage.get_view_count(short_id)
    except LinkStoreError as e:
        typer.secho(f"Error reading stats for {short_id}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from e
    finally:
        await storage.db_manager.dispose()
    if clicks is None:
        typer.secho(f"Unknown id: {short_id}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.echo(f"{short_id}: {clicks} clicks")


if __name__ == "__main__":
    app()
