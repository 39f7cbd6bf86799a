"""CLI entry point for sessiond."""

from pathlib import Path

import click

from sessiond import __version__
from sessiond.config import load_config
from sessiond.formatting import format_time_ago, shorten
from sessiond.logging import setup_logging


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """sessiond - Issue portable session IDs for paired chat accounts."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


@main.group()
def daemon() -> None:
    """Daemon control commands."""
    pass


@daemon.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """Start the daemon."""
    import asyncio

    from sessiond.daemon import Daemon, StartupError

    config = ctx.obj["config"]

    async def _start():
        daemon = Daemon(config=config)

        try:
            await daemon.start()
            click.echo(f"Daemon started on port {config.port}")
            click.echo("Press Ctrl+C to stop")
            await daemon.run_forever()
        except StartupError as e:
            click.echo(f"Startup error: {e}", err=True)
            raise SystemExit(1)
        except KeyboardInterrupt:
            click.echo("\nShutting down...")
        finally:
            await daemon.stop()

    try:
        asyncio.run(_start())
    except KeyboardInterrupt:
        pass


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"sessiond version {__version__}")


async def _post_to_daemon(config, path: str, payload: dict) -> dict:
    """POST JSON to the local daemon and return the decoded reply.

    Exits with status 1 when the daemon is unreachable or replies with an
    error outcome.
    """
    import aiohttp

    base_url = f"http://127.0.0.1:{config.port}"
    timeout = aiohttp.ClientTimeout(total=config.pairing.response_timeout + 30)

    try:
        async with aiohttp.ClientSession(timeout=timeout) as http:
            async with http.post(f"{base_url}{path}", json=payload) as resp:
                data = await resp.json()
    except aiohttp.ClientConnectorError:
        click.echo("Error: Cannot connect to daemon. Is it running?", err=True)
        click.echo("Start the daemon with: sessiond daemon start", err=True)
        raise SystemExit(1)

    if "error" in data:
        details = f": {data['details']}" if data.get("details") else ""
        click.echo(f"Error: {data['error']}{details}", err=True)
        raise SystemExit(1)

    return data


@main.command()
@click.argument("number")
@click.pass_context
def pair(ctx: click.Context, number: str) -> None:
    """Ask the running daemon to pair NUMBER."""
    import asyncio

    async def _pair():
        data = await _post_to_daemon(ctx.obj["config"], "/pair", {"number": number})

        status = data.get("status")
        if status == "pairing_code_sent":
            click.echo(f"Pairing code: {data['code']}")
            click.echo("Enter it on the phone under Linked devices > Link with phone number")
        elif status == "paired":
            click.echo(f"Paired! Reference: {data['reference']}")
        elif status == "already_registered":
            click.echo("Number is already registered; pairing continues in the background")
        else:
            click.echo(f"Still waiting for the handshake; run 'sessiond pair {number}' again to check")

    asyncio.run(_pair())


@main.group()
def sessions() -> None:
    """Issued session commands."""
    pass


@sessions.command("list")
@click.option("--full", is_flag=True, help="Show full references and links")
@click.pass_context
def sessions_list(ctx: click.Context, full: bool) -> None:
    """List issued session references."""
    import asyncio

    from sessiond.registry import JsonSessionRegistry

    async def _list():
        config = ctx.obj["config"]
        registry = JsonSessionRegistry(config.storage.registry_file)
        records = await registry.list()

        if not records:
            click.echo("No sessions issued.")
            return

        click.echo(f"{'Reference':<28} {'Number':<16} {'Created':<16} {'Link'}")
        click.echo("-" * 90)
        for record in records:
            reference = record.reference if full else shorten(record.reference, 28)
            link = record.archive_link if full else shorten(record.archive_link, 40)
            created = format_time_ago(record.created_at)
            click.echo(f"{reference:<28} {record.subject_id:<16} {created:<16} {link}")

    asyncio.run(_list())


@sessions.command("clear")
@click.argument("number")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation")
@click.pass_context
def sessions_clear(ctx: click.Context, number: str, force: bool) -> None:
    """Ask the running daemon to remove stored credentials for NUMBER.

    The daemon refuses while NUMBER is being paired.
    """
    import asyncio

    from sessiond.errors import ValidationError
    from sessiond.validation import normalize_subject_id

    config = ctx.obj["config"]

    try:
        subject_id = normalize_subject_id(number, config.pairing.min_subject_digits)
    except ValidationError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if not force and not click.confirm(f"Remove stored session for {subject_id}?"):
        click.echo("Cancelled.")
        return

    data = asyncio.run(
        _post_to_daemon(config, "/clear-session", {"number": subject_id})
    )

    if data.get("removed"):
        click.echo(f"Cleared session for {subject_id}")
    else:
        click.echo(f"No stored session for {subject_id}")
