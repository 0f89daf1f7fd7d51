"""
HTTP backend for CryptoNote daemons.

Talks to the daemon's REST/JSON interface:

- ``GET /info`` for the daemon's own height and network height
- ``POST /getwalletsyncdata`` for batches of blocks, stripped down to what a
  wallet needs (hashes, key inputs, key outputs, public keys)
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from cnsync.backends.base import Daemon, DaemonError
from cnsync.constants import BLOCKS_PER_DAEMON_REQUEST
from cnsync.models import Block, DaemonInfo

# Timeout for regular daemon requests (seconds)
DEFAULT_DAEMON_TIMEOUT = 30.0


class HttpDaemon(Daemon):
    """
    Daemon backend over HTTP(S).

    Usage:
        daemon = HttpDaemon(host="127.0.0.1", port=11898)
        height = await daemon.get_local_height()
        blocks = await daemon.get_wallet_sync_data([], 0, 0)
        await daemon.close()
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 11898,
        ssl: bool = False,
        block_count: int = BLOCKS_PER_DAEMON_REQUEST,
        timeout: float = DEFAULT_DAEMON_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        scheme = "https" if ssl else "http"
        self.base_url = f"{scheme}://{host}:{port}"
        self.block_count = block_count
        self.client = client or httpx.AsyncClient(timeout=timeout)

        # Last values seen from /info
        self.local_height = 0
        self.network_height = 0

    async def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> Any:
        """
        Make a request to the daemon and decode the JSON body.

        Raises:
            DaemonError: On a non-JSON body
            httpx.HTTPError: On connection/timeout/status errors
        """
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.request(method, url, json=body)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning(f"Daemon request timed out: {method} {path} - {e}")
            raise
        except httpx.HTTPError as e:
            logger.warning(f"Daemon request failed: {method} {path} - {e}")
            raise

        try:
            return response.json()
        except ValueError as e:
            raise DaemonError(f"Daemon returned invalid JSON for {path}: {e}") from e

    async def get_info(self) -> DaemonInfo:
        data = await self._request("GET", "/info")
        if not isinstance(data, dict):
            raise DaemonError(f"Unexpected /info response: {data!r}")

        try:
            info = DaemonInfo.model_validate(data)
        except ValidationError as e:
            raise DaemonError(f"Malformed /info response: {e}") from e

        self.local_height = info.height
        self.network_height = info.network_height
        logger.debug(f"Daemon height {info.height}, network height {info.network_height}")
        return info

    async def get_local_height(self) -> int:
        info = await self.get_info()
        return info.height

    async def get_wallet_sync_data(
        self,
        block_hash_checkpoints: Sequence[str],
        start_height: int,
        start_timestamp: int,
    ) -> list[Block]:
        body = {
            "blockHashCheckpoints": list(block_hash_checkpoints),
            "startHeight": start_height,
            "startTimestamp": start_timestamp,
            "blockCount": self.block_count,
        }
        data = await self._request("POST", "/getwalletsyncdata", body)

        if not isinstance(data, dict):
            raise DaemonError(f"Unexpected /getwalletsyncdata response: {data!r}")
        if data.get("status") != "OK":
            raise DaemonError(f"Daemon returned status {data.get('status')!r}")

        items = data.get("items", [])
        if not isinstance(items, list):
            raise DaemonError("/getwalletsyncdata items must be a list")

        try:
            blocks = [Block.model_validate(item) for item in items]
        except ValidationError as e:
            raise DaemonError(f"Malformed block in /getwalletsyncdata response: {e}") from e

        if blocks:
            logger.debug(
                f"Fetched {len(blocks)} block(s) "
                f"{blocks[0].block_height}-{blocks[-1].block_height} from daemon"
            )
        return blocks

    async def close(self) -> None:
        await self.client.aclose()
