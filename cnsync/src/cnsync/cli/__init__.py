"""
cnsync CLI package.

Commands are organized into submodules and registered via ``@app.command()``
decorators that reference the ``app`` Typer instance defined here.
"""

from __future__ import annotations

import typer

app = typer.Typer(
    name="cnsync",
    help="CryptoNote wallet synchronizer",
    add_completion=False,
)


def main() -> None:
    """Entry point for the ``cnsync`` console script."""
    app()


# Import submodules to register their ``@app.command()`` decorated functions.
# These imports MUST come after ``app`` is defined above.
from cnsync.cli import node, state  # noqa: E402, F401

if __name__ == "__main__":
    main()
