"""
Tests for the HTTP daemon backend against a mocked transport.
"""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from cnsync.backends.base import DaemonError
from cnsync.backends.http_daemon import HttpDaemon

WIRE_BLOCK = {
    "blockHash": "ab" * 32,
    "blockHeight": 10,
    "blockTimestamp": 1_600_000_300,
    "transactions": [],
}


def _daemon(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> HttpDaemon:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpDaemon(host="node.test", port=11898, client=client, **kwargs)


class TestGetInfo:
    @pytest.mark.asyncio
    async def test_get_info(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert str(request.url) == "http://node.test:11898/info"
            return httpx.Response(
                200,
                json={"height": 1200, "network_height": 1250, "synced": False, "version": "1"},
            )

        daemon = _daemon(handler)
        info = await daemon.get_info()

        assert info.height == 1200
        assert info.network_height == 1250
        assert info.synced is False
        assert daemon.local_height == 1200
        assert daemon.network_height == 1250
        await daemon.close()

    @pytest.mark.asyncio
    async def test_get_local_height(self):
        daemon = _daemon(lambda request: httpx.Response(200, json={"height": 77}))
        assert await daemon.get_local_height() == 77

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        daemon = _daemon(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(DaemonError):
            await daemon.get_info()

    @pytest.mark.asyncio
    async def test_malformed_info(self):
        daemon = _daemon(lambda request: httpx.Response(200, json={"height": "tall"}))
        with pytest.raises(DaemonError):
            await daemon.get_info()

    @pytest.mark.asyncio
    async def test_http_error_propagates(self):
        daemon = _daemon(lambda request: httpx.Response(503))
        with pytest.raises(httpx.HTTPStatusError):
            await daemon.get_info()

    @pytest.mark.asyncio
    async def test_connection_error_propagates(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        daemon = _daemon(handler)
        with pytest.raises(httpx.ConnectError):
            await daemon.get_local_height()


class TestGetWalletSyncData:
    @pytest.mark.asyncio
    async def test_request_body_and_blocks(self):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path == "/getwalletsyncdata"
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"status": "OK", "items": [WIRE_BLOCK]})

        daemon = _daemon(handler, block_count=50)
        blocks = await daemon.get_wallet_sync_data(["cc" * 32, "dd" * 32], 9, 0)

        assert seen == [
            {
                "blockHashCheckpoints": ["cc" * 32, "dd" * 32],
                "startHeight": 9,
                "startTimestamp": 0,
                "blockCount": 50,
            }
        ]
        assert len(blocks) == 1
        assert blocks[0].block_height == 10
        assert blocks[0].block_hash == "ab" * 32

    @pytest.mark.asyncio
    async def test_empty_items(self):
        daemon = _daemon(lambda request: httpx.Response(200, json={"status": "OK", "items": []}))
        assert await daemon.get_wallet_sync_data([], 0, 0) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"status": "BUSY", "items": []},
            {"items": []},
            {"status": "OK", "items": {"not": "a list"}},
            {"status": "OK", "items": [{"blockHeight": 1}]},
            ["not", "an", "object"],
        ],
    )
    async def test_bad_responses_raise_daemon_error(self, payload):
        daemon = _daemon(lambda request: httpx.Response(200, json=payload))
        with pytest.raises(DaemonError):
            await daemon.get_wallet_sync_data([], 0, 0)


def test_ssl_scheme():
    daemon = HttpDaemon(host="node.test", port=443, ssl=True)
    assert daemon.base_url == "https://node.test:443"
