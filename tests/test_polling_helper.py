import asyncio
from unittest.mock import AsyncMock

import pytest

from exceptions import JobCancelledError, PollingTimeoutError, RemoteStrategyError
from polling_helper import CompletionWaiter
from schemas import ResourceKind, ResourceStatus


class ScriptedSource:
    """Returns the scripted statuses in order, repeating the last one."""

    def __init__(self, *statuses):
        self.statuses = list(statuses)
        self.calls = 0

    async def check_status(self, asset_id, kind):
        status = self.statuses[min(self.calls, len(self.statuses) - 1)]
        self.calls += 1
        if isinstance(status, Exception):
            raise status
        return status


PENDING = ResourceStatus(state="pending")
READY = ResourceStatus(state="ready", url="https://media.test/x.mp4", duration=2.5)


def test_returns_as_soon_as_the_asset_is_ready():
    source = ScriptedSource(PENDING, PENDING, READY)
    sleep = AsyncMock()

    status = asyncio.run(
        CompletionWaiter(source, sleep=sleep).await_result("a", ResourceKind.VIDEO, max_attempts=5, interval_ms=10)
    )

    assert status.url == "https://media.test/x.mp4"
    assert source.calls == 3
    assert sleep.await_count == 2


def test_never_ready_times_out_after_exactly_max_attempts():
    source = ScriptedSource(PENDING)
    sleep = AsyncMock()
    waiter = CompletionWaiter(source, sleep=sleep)

    with pytest.raises(PollingTimeoutError) as exc_info:
        asyncio.run(waiter.await_ready("never", ResourceKind.VIDEO, max_attempts=3, interval_ms=10))

    assert isinstance(exc_info.value, TimeoutError)
    assert exc_info.value.attempts == 3
    assert source.calls == 3
    total_waited = sum(call.args[0] for call in sleep.await_args_list)
    assert total_waited <= 0.03


def test_status_check_errors_count_as_pending():
    source = ScriptedSource(ConnectionError("boom"), READY)

    assert asyncio.run(
        CompletionWaiter(source, sleep=AsyncMock()).await_ready("a", ResourceKind.RAW, max_attempts=2, interval_ms=1)
    )


def test_failed_resource_is_a_strategy_error():
    source = ScriptedSource(ResourceStatus(state="failed", error="codec not supported"))

    with pytest.raises(RemoteStrategyError, match="codec not supported"):
        asyncio.run(CompletionWaiter(source, sleep=AsyncMock()).await_ready("a", ResourceKind.RENDER))

    assert source.calls == 1


def test_backoff_is_capped():
    sleep = AsyncMock()
    waiter = CompletionWaiter(ScriptedSource(PENDING), sleep=sleep)

    with pytest.raises(PollingTimeoutError):
        asyncio.run(waiter.await_result(
            "a", ResourceKind.VIDEO, max_attempts=5, interval_ms=100, backoff=2.0, max_interval_ms=300,
        ))

    assert [call.args[0] for call in sleep.await_args_list] == [0.1, 0.2, 0.3, 0.3]


def test_cancellation_between_polls():
    cancel_event = asyncio.Event()

    async def sleep_and_cancel(seconds):
        cancel_event.set()

    source = ScriptedSource(PENDING)
    waiter = CompletionWaiter(source, cancel_event=cancel_event, sleep=sleep_and_cancel)

    with pytest.raises(JobCancelledError):
        asyncio.run(waiter.await_ready("a", ResourceKind.VIDEO, max_attempts=10, interval_ms=1000))

    assert source.calls == 1


def test_cancellation_interrupts_a_long_wait_immediately():
    async def scenario():
        cancel_event = asyncio.Event()
        waiter = CompletionWaiter(ScriptedSource(PENDING), cancel_event=cancel_event)
        task = asyncio.create_task(
            waiter.await_ready("slow", ResourceKind.VIDEO, max_attempts=3, interval_ms=60_000)
        )
        await asyncio.sleep(0.01)
        cancel_event.set()
        await asyncio.wait_for(task, timeout=1.0)

    with pytest.raises(JobCancelledError):
        asyncio.run(scenario())


def test_already_cancelled_job_does_not_poll():
    cancel_event = asyncio.Event()
    cancel_event.set()
    source = ScriptedSource(READY)

    with pytest.raises(JobCancelledError):
        asyncio.run(CompletionWaiter(source, cancel_event=cancel_event).await_ready("a", ResourceKind.VIDEO))

    assert source.calls == 0


def test_on_attempt_is_reported_for_each_pending_check():
    on_attempt = AsyncMock()
    waiter = CompletionWaiter(ScriptedSource(PENDING, PENDING, READY), sleep=AsyncMock())

    asyncio.run(waiter.await_result("r", ResourceKind.RENDER, max_attempts=5, interval_ms=1, on_attempt=on_attempt))

    assert [call.args for call in on_attempt.await_args_list] == [(1, 5), (2, 5)]
