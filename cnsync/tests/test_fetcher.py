"""
Tests for the fork-safe block fetch protocol.

Tests cover:
- Waiting for a daemon that is behind the wallet
- Transient daemon failures yielding empty batches
- One-time timestamp pin to the first returned height
- First-sync height assertion
- Checkpoint hashes and resume point handed to the daemon
"""

from __future__ import annotations

import httpx
import pytest
from _cnsync_test_helpers import (
    TEST_VIEW_KEY,
    FakeDaemon,
    FakeKeyManager,
    block_hash,
    make_blocks,
)
from pydantic import ValidationError

from cnsync.backends.base import DaemonError
from cnsync.checkpoints import CheckpointTracker
from cnsync.errors import KeyManagerNotAttachedError, UnexpectedBlockHeightError
from cnsync.fetcher import BlockFetcher, ResumePoint
from cnsync.keys import SyncContext
from cnsync.models import KeyInput


def _fetcher(
    daemon: FakeDaemon,
    *,
    start_height: int = 0,
    start_timestamp: int = 0,
    synced_to: int | None = None,
    key_manager: FakeKeyManager | None = None,
) -> BlockFetcher:
    tracker = CheckpointTracker()
    if synced_to is not None:
        for height in range(max(0, synced_to - 9), synced_to + 1):
            tracker.record(height, block_hash(height))
    return BlockFetcher(
        daemon,
        tracker,
        ResumePoint(start_height=start_height, start_timestamp=start_timestamp),
        SyncContext(TEST_VIEW_KEY, key_manager or FakeKeyManager()),
    )


def _validation_error() -> ValidationError:
    try:
        KeyInput(amount=-1, key_image="x")
    except ValidationError as e:
        return e
    raise AssertionError("expected a validation error")


class TestDaemonBehind:
    @pytest.mark.asyncio
    async def test_daemon_behind_returns_empty_without_request(self):
        """Wallet at 600,000 and daemon at 300,000: nothing is requested or changed."""
        daemon = FakeDaemon(height=300_000, batches=[make_blocks(200_000, 3)])
        fetcher = _fetcher(daemon, start_height=200_000, synced_to=600_000)
        before = (fetcher.tracker.to_dict(), fetcher.resume_point.start_height)

        assert await fetcher.fetch_next() == []

        assert daemon.sync_requests == []
        assert (fetcher.tracker.to_dict(), fetcher.resume_point.start_height) == before

    @pytest.mark.asyncio
    async def test_daemon_at_same_height_is_queried(self):
        daemon = FakeDaemon(height=100, batches=[])
        fetcher = _fetcher(daemon, synced_to=100)

        assert await fetcher.fetch_next() == []
        assert len(daemon.sync_requests) == 1

    @pytest.mark.asyncio
    async def test_timestamp_untouched_while_daemon_behind(self):
        daemon = FakeDaemon(height=5, batches=[make_blocks(10, 2)])
        key_manager = FakeKeyManager()
        fetcher = _fetcher(
            daemon, start_timestamp=1_600_000_000, synced_to=50, key_manager=key_manager
        )

        assert await fetcher.fetch_next() == []
        assert fetcher.resume_point.start_timestamp == 1_600_000_000
        assert key_manager.pins == []


class TestTransientFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            httpx.ConnectError("connection refused"),
            httpx.ReadTimeout("timed out"),
            DaemonError("status BUSY"),
            _validation_error(),
        ],
    )
    async def test_sync_request_failure_returns_empty(self, error):
        daemon = FakeDaemon(height=1000)
        daemon.sync_error = error
        key_manager = FakeKeyManager()
        fetcher = _fetcher(daemon, start_timestamp=1_600_000_000, key_manager=key_manager)

        assert await fetcher.fetch_next() == []
        assert fetcher.resume_point.start_timestamp == 1_600_000_000
        assert fetcher.resume_point.start_height == 0
        assert key_manager.pins == []

    @pytest.mark.asyncio
    async def test_height_query_failure_returns_empty(self):
        daemon = FakeDaemon(height=1000, batches=[make_blocks(0, 2)])
        daemon.height_error = httpx.ConnectError("down")
        fetcher = _fetcher(daemon)

        assert await fetcher.fetch_next() == []
        assert daemon.sync_requests == []

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self):
        daemon = FakeDaemon(height=1000)
        daemon.sync_error = RuntimeError("bug")
        with pytest.raises(RuntimeError):
            await _fetcher(daemon).fetch_next()


class TestTimestampPin:
    @pytest.mark.asyncio
    async def test_first_batch_pins_timestamp_to_height(self):
        daemon = FakeDaemon(height=500_000, batches=[make_blocks(312_345, 5)])
        key_manager = FakeKeyManager()
        fetcher = _fetcher(daemon, start_timestamp=1_600_000_000, key_manager=key_manager)

        blocks = await fetcher.fetch_next()

        assert len(blocks) == 5
        assert fetcher.resume_point.start_timestamp == 0
        assert fetcher.resume_point.start_height == 312_345
        assert key_manager.pins == [(1_600_000_000, 312_345)]

    @pytest.mark.asyncio
    async def test_pin_happens_only_once(self):
        daemon = FakeDaemon(height=500_000, batches=[make_blocks(1000, 2), make_blocks(1002, 2)])
        key_manager = FakeKeyManager()
        fetcher = _fetcher(daemon, start_timestamp=1_600_000_000, key_manager=key_manager)

        for block in await fetcher.fetch_next():
            fetcher.tracker.record(block.block_height, block.block_hash)
        await fetcher.fetch_next()

        assert key_manager.pins == [(1_600_000_000, 1000)]
        assert daemon.sync_requests[1][1:] == (1000, 0)

    @pytest.mark.asyncio
    async def test_timestamp_resume_skips_height_assertion(self):
        daemon = FakeDaemon(height=500_000, batches=[make_blocks(42, 1)])
        fetcher = _fetcher(daemon, start_height=7, start_timestamp=1_600_000_000)

        blocks = await fetcher.fetch_next()

        assert blocks[0].block_height == 42
        assert fetcher.resume_point.start_height == 42

    @pytest.mark.asyncio
    async def test_empty_batch_keeps_timestamp(self):
        daemon = FakeDaemon(height=500_000, batches=[[]])
        fetcher = _fetcher(daemon, start_timestamp=1_600_000_000)

        assert await fetcher.fetch_next() == []
        assert fetcher.resume_point.start_timestamp == 1_600_000_000

    @pytest.mark.asyncio
    async def test_pin_without_key_manager_fails_fast(self):
        daemon = FakeDaemon(height=500_000, batches=[make_blocks(10, 1)])
        fetcher = BlockFetcher(
            daemon,
            CheckpointTracker(),
            ResumePoint(start_timestamp=1_600_000_000),
            SyncContext(TEST_VIEW_KEY),
        )

        with pytest.raises(KeyManagerNotAttachedError):
            await fetcher.fetch_next()
        assert fetcher.resume_point.start_timestamp == 1_600_000_000


class TestFirstSyncAssertion:
    @pytest.mark.asyncio
    async def test_first_sync_from_start_height(self):
        """Wallet at 0, daemon at 500,000, start height 200,000."""
        daemon = FakeDaemon(height=500_000, batches=[make_blocks(200_000, 3)])
        fetcher = _fetcher(daemon, start_height=200_000)

        blocks = await fetcher.fetch_next()

        assert [b.block_height for b in blocks] == [200_000, 200_001, 200_002]
        assert daemon.sync_requests == [([], 200_000, 0)]

    @pytest.mark.asyncio
    async def test_first_sync_height_mismatch_is_fatal(self):
        daemon = FakeDaemon(height=500_000, batches=[make_blocks(199_999, 3)])
        fetcher = _fetcher(daemon, start_height=200_000)

        with pytest.raises(UnexpectedBlockHeightError) as exc_info:
            await fetcher.fetch_next()

        assert exc_info.value.expected == 200_000
        assert exc_info.value.actual == 199_999
        assert "Expected 200000, got 199999" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_no_assertion_once_checkpoints_exist(self):
        daemon = FakeDaemon(height=500_000, batches=[make_blocks(95, 3, fork="x")])
        fetcher = _fetcher(daemon, start_height=0, synced_to=100)

        blocks = await fetcher.fetch_next()

        # Fork signal: first returned height is at or below the synced height
        assert blocks[0].block_height <= fetcher.tracker.current_height()


class TestRequest:
    @pytest.mark.asyncio
    async def test_checkpoints_passed_most_recent_first(self):
        daemon = FakeDaemon(height=500, batches=[make_blocks(101, 1)])
        fetcher = _fetcher(daemon, start_height=91, synced_to=100)

        await fetcher.fetch_next()

        checkpoints, start_height, start_timestamp = daemon.sync_requests[0]
        assert checkpoints[0] == block_hash(100)
        assert checkpoints[-1] == block_hash(91)
        assert (start_height, start_timestamp) == (91, 0)

    @pytest.mark.asyncio
    async def test_fetch_does_not_record_checkpoints(self):
        daemon = FakeDaemon(height=500, batches=[make_blocks(0, 5)])
        fetcher = _fetcher(daemon)

        await fetcher.fetch_next()

        assert fetcher.tracker.is_empty
