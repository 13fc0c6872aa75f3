import asyncio

import pytest

from splitjob.runtime.registries import CancellationRegistry, PageFetchTracker


def test_page_claims_are_exclusive_until_released() -> None:
    tracker = PageFetchTracker()
    tracker.register("doc-1")

    assert tracker.try_claim("doc-1", 1) is True
    assert tracker.try_claim("doc-1", 1) is False
    assert tracker.try_claim("doc-2", 1) is True
    assert tracker.claimed("doc-1") == frozenset({1})

    tracker.release("doc-1", 1)
    assert tracker.is_claimed("doc-1", 1) is False

    tracker.try_claim("doc-1", 2)
    tracker.clear("doc-1")
    assert tracker.claimed("doc-1") == frozenset()
    assert tracker.is_claimed("doc-2", 1) is True


def test_cancellation_is_level_triggered() -> None:
    registry = CancellationRegistry()

    registry.request_cancel("doc-1")
    registry.request_cancel("doc-1")
    registry.register("doc-1")

    assert registry.is_cancelled("doc-1") is True
    assert registry.is_cancelled("doc-2") is False

    registry.reset("doc-1")
    assert registry.is_cancelled("doc-1") is False


@pytest.mark.asyncio
async def test_wait_returns_early_on_cancel() -> None:
    registry = CancellationRegistry()
    registry.register("doc-1")

    assert await registry.wait("doc-1", 0.01) is False

    waiter = asyncio.create_task(registry.wait("doc-1", 30))
    await asyncio.sleep(0)
    registry.request_cancel("doc-1")

    assert await asyncio.wait_for(waiter, timeout=1) is True


@pytest.mark.asyncio
async def test_cancel_all_sets_every_flag() -> None:
    registry = CancellationRegistry()
    registry.register("doc-1")
    registry.register("doc-2")

    registry.cancel_all()

    assert registry.is_cancelled("doc-1") and registry.is_cancelled("doc-2")
    assert await registry.wait("doc-2", 30) is True
    registry.clear("doc-2")
    assert registry.is_cancelled("doc-2") is False
