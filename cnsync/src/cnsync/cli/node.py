"""
Daemon commands: node-info, peek.
"""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from loguru import logger

from cnsync.backends.base import DaemonError
from cnsync.cli import app
from cnsync.cli.state import DataDirOption, LogLevelOption, StateFileOption
from cnsync.cli_common import create_daemon, resolve_state_path, setup_cli
from cnsync.errors import SyncError
from cnsync.keys import SubWallets
from cnsync.models import Block, DaemonInfo
from cnsync.synchronizer import WalletSynchronizer

HostOption = Annotated[str | None, typer.Option("--host", help="Daemon host")]
PortOption = Annotated[int | None, typer.Option("--port", help="Daemon port")]


@app.command("node-info")
def node_info(
    host: HostOption = None,
    port: PortOption = None,
    data_dir: DataDirOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the daemon's height."""
    settings = setup_cli(log_level or "WARNING", data_dir)

    async def _info() -> DaemonInfo:
        daemon = create_daemon(settings, host=host, port=port)
        try:
            return await daemon.get_info()
        finally:
            await daemon.close()

    try:
        info = asyncio.run(_info())
    except Exception as e:
        logger.error(f"Failed to query daemon: {e}")
        raise typer.Exit(1) from e

    typer.echo(f"Daemon height:  {info.height}")
    typer.echo(f"Network height: {info.network_height}")
    typer.echo(f"Synced:         {'yes' if info.synced else 'no'}")


@app.command()
def peek(
    host: HostOption = None,
    port: PortOption = None,
    data_dir: DataDirOption = None,
    state_file: StateFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Fetch the next batch of blocks for a saved state without saving progress."""
    settings = setup_cli(log_level or "WARNING", data_dir)
    path = resolve_state_path(settings, state_file)

    if not path.exists():
        logger.error(f"No synchronizer state at {path} (run 'cnsync init' first)")
        raise typer.Exit(1)

    async def _peek() -> tuple[int, list[Block]]:
        daemon = create_daemon(settings, host=host, port=port)
        try:
            synchronizer = WalletSynchronizer.load(path, daemon, settings.sync)
            # Nothing is persisted, so an empty key manager is enough to pin a timestamp
            synchronizer.attach(SubWallets())
            return synchronizer.height, await synchronizer.get_blocks()
        finally:
            await daemon.close()

    try:
        wallet_height, blocks = asyncio.run(_peek())
    except SyncError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e
    except (OSError, ValueError, DaemonError) as e:
        logger.error(f"Failed to peek: {e}")
        raise typer.Exit(1) from e

    if not blocks:
        typer.echo("No new blocks (daemon unreachable, behind, or nothing to sync)")
        return

    first, last = blocks[0], blocks[-1]
    typer.echo(f"Wallet height: {wallet_height}")
    typer.echo(f"Next batch:    {len(blocks)} block(s), {first.block_height}-{last.block_height}")
    if wallet_height and first.block_height <= wallet_height:
        typer.echo(f"Fork: chain diverges at or below height {first.block_height}")
