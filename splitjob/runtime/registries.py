from __future__ import annotations

import asyncio


class PageFetchTracker:
    """Pages already dispatched for artifact fetch, per job. Claims are taken before the fetch starts."""

    def __init__(self) -> None:
        self._claims: dict[str, set[int]] = {}

    def register(self, job_id: str) -> None:
        self._claims.setdefault(job_id, set())

    def try_claim(self, job_id: str, page_number: int) -> bool:
        claimed = self._claims.setdefault(job_id, set())
        if page_number in claimed:
            return False
        claimed.add(page_number)
        return True

    def is_claimed(self, job_id: str, page_number: int) -> bool:
        return page_number in self._claims.get(job_id, ())

    def release(self, job_id: str, page_number: int) -> None:
        self._claims.get(job_id, set()).discard(page_number)

    def claimed(self, job_id: str) -> frozenset[int]:
        return frozenset(self._claims.get(job_id, ()))

    def clear(self, job_id: str) -> None:
        self._claims.pop(job_id, None)


class CancellationRegistry:
    """Level-triggered, cooperative cancellation flags keyed by job id."""

    def __init__(self) -> None:
        self._events: dict[str, asyncio.Event] = {}

    def _event(self, job_id: str) -> asyncio.Event:
        event = self._events.get(job_id)
        if event is None:
            event = asyncio.Event()
            self._events[job_id] = event
        return event

    def register(self, job_id: str) -> None:
        self._event(job_id)

    def request_cancel(self, job_id: str) -> None:
        self._event(job_id).set()

    def is_cancelled(self, job_id: str) -> bool:
        event = self._events.get(job_id)
        return bool(event and event.is_set())

    def reset(self, job_id: str) -> None:
        self._event(job_id).clear()

    def clear(self, job_id: str) -> None:
        self._events.pop(job_id, None)

    async def wait(self, job_id: str, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; returns True as soon as cancellation is requested."""
        event = self._event(job_id)
        if event.is_set():
            return True
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    def cancel_all(self) -> None:
        for event in self._events.values():
            event.set()
