"""CLI entry point for opencode-mirror."""

import asyncio
import logging
import os

import click
import uvicorn

from .backends import create_transport
from .config import load_config
from .flatten import PartItem
from .mirror import SessionMirror
from .session_key import build_session_key
from .sync import SyncResult


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """Mirror an OpenCode server's sessions for a local viewer."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.option("--server-url", default=None, help="OpenCode server URL.")
@click.option("--max-sessions", type=int, default=None, help="Cached session limit.")
@click.option("--project", "projects", multiple=True, help="Foreground project directory (repeatable).")
def serve(port: int, host: str, server_url: str | None, max_sessions: int | None, projects: tuple[str, ...]):
    """Start the web interface."""
    # the server builds its own config from the environment
    if server_url:
        os.environ["OPENCODE_MIRROR_SERVER_URL"] = server_url
    if max_sessions is not None:
        os.environ["OPENCODE_MIRROR_MAX_SESSIONS"] = str(max_sessions)
    if projects:
        os.environ["OPENCODE_MIRROR_FOREGROUND_DIRECTORIES"] = os.pathsep.join(projects)
    click.echo(f"Starting opencode-mirror on http://{host}:{port}")
    uvicorn.run("opencode_mirror.server:app", host=host, port=port, reload=False)


@main.command()
@click.argument("directory")
@click.argument("session_id")
@click.option("--server-url", default=None, help="OpenCode server URL.")
def items(directory: str, session_id: str, server_url: str | None):
    """Print the flattened items of one session."""
    asyncio.run(_print_items(build_session_key(directory, session_id), server_url))


async def _print_items(session_key: str, server_url: str | None) -> None:
    config = load_config(server_url=server_url)
    mirror = SessionMirror(config, create_transport(config))
    try:
        result = await mirror.sync.sync_session(session_key)
        if result == SyncResult.FAILED:
            raise click.ClickException("Could not load session data")
        for item in mirror.get_flat_items(session_key):
            label = item.type
            if isinstance(item, PartItem):
                label = f"{label}:{item.part.type}"
                if item.is_streaming:
                    label += " (streaming)"
            click.echo(f"{item.index:4d}  {label:<28} {item.id}")
    finally:
        await mirror.aclose()
