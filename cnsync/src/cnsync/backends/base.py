"""
Base class for daemon backends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from cnsync.models import Block, DaemonInfo


class DaemonError(Exception):
    """The daemon was reachable but returned an error or a malformed response."""


class Daemon(ABC):
    """
    Abstract remote daemon interface.
    Implementations: HttpDaemon (REST API of a CryptoNote daemon).
    """

    @abstractmethod
    async def get_local_height(self) -> int:
        """Number of blocks the daemon itself has, not the network height."""

    @abstractmethod
    async def get_wallet_sync_data(
        self,
        block_hash_checkpoints: Sequence[str],
        start_height: int,
        start_timestamp: int,
    ) -> list[Block]:
        """
        Get the next batch of blocks for wallet syncing.

        The daemon returns the blocks following the most recent checkpoint
        hash it has on its active chain. If it knows none of them, it starts
        from ``start_timestamp`` when non-zero, otherwise from ``start_height``.

        Raises:
            DaemonError: On a protocol error
            httpx.HTTPError: On connection/timeout errors
        """

    @abstractmethod
    async def get_info(self) -> DaemonInfo:
        """Current chain state of the daemon."""

    async def close(self) -> None:
        """Release any connections held by the backend."""
