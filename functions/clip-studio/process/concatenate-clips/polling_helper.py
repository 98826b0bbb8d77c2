import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

import constants
from exceptions import JobCancelledError, PollingTimeoutError, RemoteStrategyError
from schemas import ResourceKind, ResourceStatus

logger = logging.getLogger(__name__)


class StatusSource(Protocol):
    async def check_status(self, asset_id: str, kind: ResourceKind) -> ResourceStatus:
        ...


class CompletionWaiter:
    """
    Polls a status source until a remote resource is ready.

    One status check per interval, at most `max_attempts` checks. The
    optional `cancel_event` interrupts the wait between checks immediately;
    nothing else is scheduled, so no timer outlives the call.
    """

    def __init__(
        self,
        source: StatusSource,
        cancel_event: Optional[asyncio.Event] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.source = source
        self.cancel_event = cancel_event
        self._sleep = sleep

    def _raise_if_cancelled(self, asset_id: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise JobCancelledError(f"Cancelled while waiting for {asset_id}")

    async def _pause(self, seconds: float, asset_id: str) -> None:
        if self._sleep is not None or self.cancel_event is None:
            await (self._sleep or asyncio.sleep)(seconds)
        else:
            try:
                await asyncio.wait_for(self.cancel_event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass
        self._raise_if_cancelled(asset_id)

    async def await_result(
        self,
        asset_id: str,
        kind: ResourceKind,
        max_attempts: int = constants.DEFAULT_ASSET_POLL_MAX_ATTEMPTS,
        interval_ms: int = constants.DEFAULT_ASSET_POLL_INTERVAL_MS,
        backoff: float = 1.0,
        max_interval_ms: Optional[int] = None,
        on_attempt: Optional[Callable[[int, int], Awaitable[None]]] = None,
    ) -> ResourceStatus:
        """Like await_ready, but hands back the final ready status (URL, duration)."""
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self._raise_if_cancelled(asset_id)
        delay_ms = float(interval_ms)
        last_error = None

        for attempt in range(1, max_attempts + 1):
            try:
                status = await self.source.check_status(asset_id, kind)
            except Exception as e:
                last_error = e
                logger.warning(f"Status check for {asset_id} failed (attempt {attempt}/{max_attempts}): {e}")
                status = ResourceStatus(state="pending")

            if status.state == "ready":
                logger.info(f"{kind.value} {asset_id} is ready after {attempt} attempt(s)")
                return status
            if status.state == "failed":
                raise RemoteStrategyError("await_ready", f"{asset_id} failed: {status.error or 'unknown error'}")

            if on_attempt is not None:
                await on_attempt(attempt, max_attempts)

            if attempt < max_attempts:
                logger.info(f"{kind.value} {asset_id} not ready ({attempt}/{max_attempts}). Waiting {delay_ms:.0f}ms")
                await self._pause(delay_ms / 1000.0, asset_id)
                delay_ms = delay_ms * backoff
                if max_interval_ms is not None:
                    delay_ms = min(delay_ms, float(max_interval_ms))

        if last_error is not None:
            logger.error(f"Giving up on {asset_id}; last status error: {last_error}")
        raise PollingTimeoutError(asset_id, max_attempts)

    async def await_ready(
        self,
        asset_id: str,
        kind: ResourceKind,
        max_attempts: int = constants.DEFAULT_ASSET_POLL_MAX_ATTEMPTS,
        interval_ms: int = constants.DEFAULT_ASSET_POLL_INTERVAL_MS,
    ) -> bool:
        await self.await_result(asset_id, kind, max_attempts=max_attempts, interval_ms=interval_ms)
        return True
