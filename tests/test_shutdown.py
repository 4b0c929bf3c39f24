"""
Tests for shutdown coordination and the workflow lock.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from domain import WorkflowLockedError
from rebalancer.locking import WorkflowLock
from rebalancer.shutdown import ShutdownCoordinator


@pytest.mark.asyncio
async def test_releases_in_reverse_order_exactly_once():
    released = []
    shutdown = ShutdownCoordinator()
    shutdown.register("db", lambda: released.append("db"))
    shutdown.register("client", lambda: released.append("client"))

    await shutdown.close()
    await shutdown.close()

    assert released == ["client", "db"]


@pytest.mark.asyncio
async def test_async_release_awaited():
    release = AsyncMock()
    async with ShutdownCoordinator() as shutdown:
        shutdown.register("ledger", release)

    release.assert_awaited_once()


@pytest.mark.asyncio
async def test_failing_release_does_not_block_others():
    later = MagicMock()
    shutdown = ShutdownCoordinator()
    shutdown.register("later", later)
    shutdown.register("broken", MagicMock(side_effect=RuntimeError("boom")))

    await shutdown.close()

    later.assert_called_once()


@pytest.mark.asyncio
async def test_register_after_close_rejected():
    shutdown = ShutdownCoordinator()
    await shutdown.close()

    with pytest.raises(RuntimeError):
        shutdown.register("late", MagicMock())


@pytest.mark.asyncio
async def test_wait_times_out_without_request():
    shutdown = ShutdownCoordinator()

    assert await shutdown.wait(0.01) is False
    assert not shutdown.is_shutdown_requested


@pytest.mark.asyncio
async def test_wait_returns_early_on_request():
    shutdown = ShutdownCoordinator()
    shutdown.request_shutdown("SIGTERM")

    assert await shutdown.wait(10) is True
    assert shutdown.reason == "SIGTERM"


@pytest.mark.asyncio
async def test_signal_handlers_installed_and_removed():
    shutdown = ShutdownCoordinator()
    shutdown.install_signal_handlers()

    await shutdown.close()

    assert shutdown._loop is None


@pytest.mark.asyncio
async def test_lock_second_instance_rejected(tmp_path):
    path = tmp_path / "config.json.lock"
    first = WorkflowLock(path)
    second = WorkflowLock(path)

    async with first:
        assert first.locked
        with pytest.raises(WorkflowLockedError):
            await second.acquire()
        assert not second.locked

    async with second:
        assert second.locked


@pytest.mark.asyncio
async def test_lock_reentry_in_process_rejected(tmp_path):
    lock = WorkflowLock(tmp_path / "config.json.lock")

    await lock.acquire()
    with pytest.raises(WorkflowLockedError):
        await lock.acquire()
    lock.release()

    assert not lock.locked


def test_lock_path_for_config(tmp_path):
    lock = WorkflowLock.for_config(tmp_path / "config.json")
    assert lock.path == tmp_path / "config.json.lock"
