"""
sshconsole/cli.py

Command-line interface for sshconsole.

Usage:
    sshconsole keygen
    sshconsole keygen -o ~/.sshconsole/host_key
    sshconsole fingerprint ~/.sshconsole/host_key
    sshconsole serve --port 2222
    sshconsole serve --user admin
"""

import logging
import sys
import time
from pathlib import Path

import click

from .auth import authorized_keys_file, password_table
from .config import SettingsManager, load_or_create_host_key, save_host_key
from .errors import BindFailure, CloseFailure, KeyFormatError
from .keys import HostKey, supported_algorithms
from .listener import SSHConsole
from .session import OutputSink


def echo_handler(command: str, sink: OutputSink, user, environment: dict) -> None:
    """Write the command and its environment back to the caller."""
    sink.write(f"user: {user if isinstance(user, str) else '(unknown)'}\n")
    sink.write(f"command: {command}\n")
    for name in sorted(environment):
        sink.write(f"  {name}={environment[name]}\n")


@click.group()
@click.option("-c", "--config", "config_path", default=None, type=click.Path(dir_okay=False),
              help="Settings file (default ~/.sshconsole/config.yaml)")
@click.pass_context
def cli(ctx, config_path):
    """Single-command SSH console."""
    ctx.ensure_object(dict)
    ctx.obj["settings"] = SettingsManager(Path(config_path) if config_path else None)


@cli.command("keygen")
@click.option("-t", "--type", "algorithm", default="ed25519",
              type=click.Choice(supported_algorithms()), help="Key algorithm")
@click.option("-o", "--output", default=None, type=click.Path(dir_okay=False),
              help="Write the key to this file instead of stdout")
@click.option("-C", "--comment", default=None, help="Comment stored after the key")
def keygen(algorithm, output, comment):
    """Generate a host key."""
    key = HostKey.generate(algorithm)

    if output is None:
        click.echo(key.serialize(comment))
        return

    path = Path(output).expanduser()
    try:
        save_host_key(key, path, comment)
    except FileExistsError:
        click.echo(f"{path} already exists, not overwriting.", err=True)
        sys.exit(1)
    click.echo(f"Wrote host key to {path}")


@cli.command("fingerprint")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def fingerprint(path):
    """Show the public half of a stored host key."""
    try:
        key = HostKey.parse(Path(path).read_text())
    except KeyFormatError as e:
        click.echo(f"Invalid host key: {e}", err=True)
        sys.exit(1)

    click.echo(f"Public key:  {key.public_key.openssh}")
    click.echo(f"Fingerprint: {key.public_key.fingerprint}")


@cli.command("serve")
@click.option("-H", "--host", default=None, help="Address to bind")
@click.option("-p", "--port", default=None, type=int, help="Port to bind")
@click.option("-w", "--workers", default=None, type=int, help="Worker pool size")
@click.option("-u", "--user", default=None, help="Enable password auth for this user (prompts)")
@click.option("--log-level", default=None,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.pass_context
def serve(ctx, host, port, workers, user, log_level):
    """Run an echo console until interrupted."""
    settings = ctx.obj["settings"].settings

    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        host_key = load_or_create_host_key(settings.host_key_path)
    except KeyFormatError as e:
        click.echo(f"Invalid host key at {settings.host_key_path}: {e}", err=True)
        sys.exit(1)

    password_policy = None
    if user:
        password = click.prompt(f"Password for {user}", hide_input=True, confirmation_prompt=True)
        password_policy = password_table({user: password})

    console = SSHConsole(
        host_keys=[host_key],
        host=host or settings.host,
        port=port if port is not None else settings.port,
        password_policy=password_policy,
        public_key_policy=authorized_keys_file(settings.authorized_keys_path),
        workers=workers or settings.workers,
    )

    try:
        console.listen(echo_handler)
    except BindFailure as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    bound = console.address
    click.echo(f"Listening on {bound[0]}:{bound[1]} ({host_key.public_key.fingerprint})")

    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        click.echo("Stopping...")
    finally:
        try:
            console.stop()
        except CloseFailure as e:
            click.echo(str(e), err=True)
            sys.exit(1)


def main():
    """Entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
