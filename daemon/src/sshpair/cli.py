"""CLI entry point for sshpair."""

import asyncio
import json
from pathlib import Path

import click

from sshpair import __version__
from sshpair.config import load_config
from sshpair.errors import ConfigError, SshPairError
from sshpair.logging import setup_logging


def _port_option(func):
    return click.option(
        "--port",
        "-p",
        type=int,
        default=None,
        help="Service port (defaults to the configured port).",
    )(func)


def _credential_options(func):
    func = click.option("--token", default=None, help="Pairing token.")(func)
    func = click.option("--code", default=None, help="8 character relay code.")(func)
    func = click.option("--host", required=True, help="Offerer address.")(func)
    return _port_option(func)


def _run(coro) -> None:
    """Run a coroutine, turning sshpair errors into a clean exit."""
    try:
        asyncio.run(coro)
    except SshPairError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging, including HTTP requests.")
@click.pass_context
def main(ctx: click.Context, config: Path | None, verbose: bool) -> None:
    """sshpair - exchange SSH keys with a machine on your network."""
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config)
    except ConfigError as e:
        click.echo(f"Config error: {e}", err=True)
        raise SystemExit(1)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"], verbose=verbose)


@main.command()
@_port_option
@click.option("--bind", default=None, help="Address to bind to.")
@click.pass_context
def start(ctx: click.Context, port: int | None, bind: str | None) -> None:
    """Run the offerer service."""
    from sshpair.install_script import install_page_url
    from sshpair.qr_generator import QrGenerator
    from sshpair.server import build_server

    config = ctx.obj["config"]
    if port is not None:
        config.port = port
    if bind is not None:
        config.bind_address = bind

    async def _start():
        server = build_server(config)
        runner = await server.start(config.bind_address, config.port)
        try:
            status = await server.pairing.status()
            host = server.ip_provider.primary()
            click.echo(f"sshpair listening on http://localhost:{config.port}")
            for address in server.ip_provider.addresses():
                click.echo(f"  http://{address.address}:{config.port} ({address.iface})")
            click.echo(
                QrGenerator(install_page_url(host, config.port, status.token)).to_terminal()
            )
            click.echo(f"Code: {status.code}")
            click.echo(f"Accept with: sshpair accept --host {host} --code {status.code}")
            click.echo("Press Ctrl+C to stop")
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()

    try:
        asyncio.run(_start())
    except KeyboardInterrupt:
        click.echo("\nShutting down...")


@main.command()
@click.option("--host", default="localhost", help="Offerer address.")
@_port_option
@click.pass_context
def status(ctx: click.Context, host: str, port: int | None) -> None:
    """Show the offerer's pairing status."""
    from sshpair.client import PairingClient

    port = port or ctx.obj["config"].port

    async def _status():
        async with PairingClient(host, port) as client:
            data = await client.status()
        click.echo(json.dumps(data, indent=2))

    _run(_status())


@main.command()
@_credential_options
@click.pass_context
def accept(
    ctx: click.Context, host: str, code: str | None, token: str | None, port: int | None
) -> None:
    """Send this machine's public key to the offerer."""
    import getpass
    import socket

    from sshpair.client import PairingClient
    from sshpair.ssh_keys import ensure_key_pair

    config = ctx.obj["config"]
    port = port or config.port

    async def _accept():
        async with PairingClient(host, port) as client:
            resolved = await client.token_for(code, token)
            pubkey = await ensure_key_pair(config.ssh_path)
            await client.submit_key(
                resolved, pubkey, getpass.getuser(), socket.gethostname()
            )
        click.echo(f"Sent public key to {host}.")

    _run(_accept())


@main.command()
@_credential_options
@click.pass_context
def grant(
    ctx: click.Context, host: str, code: str | None, token: str | None, port: int | None
) -> None:
    """Authorize the offerer's public key on this machine."""
    from sshpair.authorized_keys import AuthorizedKeysStore, attribution_comment
    from sshpair.client import PairingClient
    from sshpair.keys import parse_public_key
    from sshpair.pairing.service import utc_timestamp

    config = ctx.obj["config"]
    port = port or config.port

    async def _grant():
        async with PairingClient(host, port) as client:
            resolved = await client.token_for(code, token)
            text = await client.fetch_public_key(resolved)
        key = parse_public_key(text)
        store = AuthorizedKeysStore.for_ssh_dir(config.ssh_path)
        comment = attribution_comment(utc_timestamp(), "offerer", host)
        if store.append(key, comment):
            click.echo("Added offerer public key to authorized_keys")
        else:
            click.echo("Offerer public key already in authorized_keys")

    _run(_grant())


@main.command("grant-sudo")
@_credential_options
@click.option("--username", "-u", default=None, help="User to grant (defaults to last paired user).")
@click.option("--nopass", is_flag=True, help="Grant passwordless sudo.")
@click.pass_context
def grant_sudo(
    ctx: click.Context,
    host: str,
    code: str | None,
    token: str | None,
    port: int | None,
    username: str | None,
    nopass: bool,
) -> None:
    """Ask the offerer to grant sudo to a user."""
    from sshpair.client import PairingClient

    port = port or ctx.obj["config"].port

    async def _grant_sudo():
        async with PairingClient(host, port) as client:
            resolved = await client.token_for(code, token)
            result = await client.grant_sudo(resolved, username, nopass)
        if result.get("applied"):
            click.echo(f"Sudo applied on offerer: {result.get('file')}")
        else:
            click.echo("Offerer is not running as root. Run this on the offerer:")
            click.echo(result.get("command", ""))

    _run(_grant_sudo())


@main.command("gen-key")
@click.pass_context
def gen_key(ctx: click.Context) -> None:
    """Print this machine's public key, generating one if needed."""
    from sshpair.ssh_keys import ensure_key_pair

    async def _gen_key():
        click.echo(await ensure_key_pair(ctx.obj["config"].ssh_path))

    _run(_gen_key())


@main.command("open")
@click.option("--host", default="localhost", help="Offerer address.")
@_port_option
@click.pass_context
def open_page(ctx: click.Context, host: str, port: int | None) -> None:
    """Open the offerer's page in a browser."""
    import webbrowser

    url = f"http://{host}:{port or ctx.obj['config'].port}"
    webbrowser.open(url)
    click.echo(f"Opened {url}")


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"sshpair version {__version__}")
