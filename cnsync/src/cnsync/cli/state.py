"""
State file commands: init, status.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger

from cnsync.cli import app
from cnsync.cli_common import resolve_state_path, setup_cli
from cnsync.synchronizer import WalletSynchronizer

DataDirOption = Annotated[
    Path | None,
    typer.Option("--data-dir", help="Data directory (default: ~/.cnsync or $CNSYNC_DATA_DIR)"),
]
StateFileOption = Annotated[
    Path | None,
    typer.Option(
        "--state-file",
        help="Synchronizer state file (default: <data-dir>/sync_state.json)",
    ),
]
LogLevelOption = Annotated[str | None, typer.Option("--log-level", "-l")]


@app.command()
def init(
    view_key: Annotated[
        str,
        typer.Option(
            "--view-key",
            prompt="Private view key",
            hide_input=True,
            help="Wallet private view key (prompted if omitted)",
        ),
    ],
    start_height: Annotated[
        int, typer.Option("--start-height", min=0, help="Block height to start syncing from")
    ] = 0,
    start_timestamp: Annotated[
        int,
        typer.Option("--start-timestamp", min=0, help="Unix time to start syncing from"),
    ] = 0,
    force: Annotated[
        bool, typer.Option("--force", help="Overwrite an existing state file")
    ] = False,
    data_dir: DataDirOption = None,
    state_file: StateFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Create a new synchronizer state file."""
    settings = setup_cli(log_level, data_dir)
    path = resolve_state_path(settings, state_file)

    if start_height and start_timestamp:
        logger.error("Give either --start-height or --start-timestamp, not both")
        raise typer.Exit(1)
    if path.exists() and not force:
        logger.error(f"State file {path} already exists (use --force to overwrite)")
        raise typer.Exit(1)

    synchronizer = WalletSynchronizer(
        daemon=None,
        start_timestamp=start_timestamp,
        start_height=start_height,
        private_view_key=view_key,
        config=settings.sync,
    )
    synchronizer.save(path)
    typer.echo(f"Synchronizer state written to {path}")


@app.command()
def status(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
    data_dir: DataDirOption = None,
    state_file: StateFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show how far a saved synchronizer has synced."""
    settings = setup_cli(log_level or "WARNING", data_dir)
    path = resolve_state_path(settings, state_file)

    if not path.exists():
        logger.error(f"No synchronizer state at {path} (run 'cnsync init' first)")
        raise typer.Exit(1)

    try:
        synchronizer = WalletSynchronizer.load(path, config=settings.sync)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load synchronizer state: {e}")
        raise typer.Exit(1) from e

    recent = synchronizer.tracker.recent_checkpoints()
    summary = {
        "height": synchronizer.height,
        "start_height": synchronizer.start_height,
        "start_timestamp": synchronizer.start_timestamp,
        "top_block_hash": recent[0][1] if recent else None,
        "recent_checkpoints": len(recent),
        "locked_transactions": len(synchronizer.locked_transactions),
    }

    if json_output:
        typer.echo(json.dumps(summary, indent=2))
        return

    typer.echo(f"State file:          {path}")
    typer.echo(f"Synced height:       {summary['height']}")
    if synchronizer.start_timestamp:
        typer.echo(f"Start timestamp:     {summary['start_timestamp']} (not yet pinned)")
    else:
        typer.echo(f"Start height:        {summary['start_height']}")
    typer.echo(f"Top block hash:      {summary['top_block_hash'] or '-'}")
    typer.echo(f"Recent checkpoints:  {summary['recent_checkpoints']}")
    typer.echo(f"Locked transactions: {summary['locked_transactions']}")
