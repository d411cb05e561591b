import asyncio
from typing import Any, Awaitable, Callable, List, Optional

from loguru import logger
from cluster_manager_client.models import (
    FibonacciPollingConfig,
    OperationSnapshot,
    OperationStatus,
    PollingOutcome,
    PollResult,
)

StatusQuery = Callable[[str], Awaitable[Any]]
SnapshotCallback = Callable[[OperationSnapshot], Awaitable[Any]]


class FibonacciBackoff:
    """Delay sequence D, D, 2D, 3D, 5D, ... for a single polling session"""

    def __init__(self, initial_delay_ms: int, max_delay_ms: Optional[int] = None):
        self.previous = 0
        self.current = initial_delay_ms
        self.max_delay_ms = max_delay_ms

    def peek(self) -> int:
        if self.max_delay_ms is not None:
            return min(self.current, self.max_delay_ms)
        return self.current

    def advance(self) -> None:
        self.previous, self.current = self.current, self.previous + self.current


def _status_of(result: Any) -> OperationStatus:
    status = getattr(result, "status", result)
    return OperationStatus(status)


class OperationPoller:
    def __init__(
        self,
        config: Optional[FibonacciPollingConfig] = None,
        on_attempt: Optional[SnapshotCallback] = None,
        on_status_change: Optional[SnapshotCallback] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or FibonacciPollingConfig()
        self.on_attempt = on_attempt
        self.on_status_change = on_status_change
        self.logger = logger
        self._sleep = sleep

    async def _handle_snapshot(
        self, snapshot: OperationSnapshot, last_status: Optional[OperationStatus]
    ) -> None:
        """Report the attempt, and the status change if there was one"""
        if self.on_attempt is not None:
            await self.on_attempt(snapshot)
        if last_status != snapshot.status and self.on_status_change is not None:
            self.logger.debug(
                f"Operation {snapshot.handle} status changed to {snapshot.status.value}"
            )
            await self.on_status_change(snapshot)

    async def _wait_before_retry(
        self, delay_ms: int, cancel_event: Optional[asyncio.Event]
    ) -> bool:
        """Waits for delay_ms, returns True if cancel_event was set meanwhile"""
        if cancel_event is None:
            await self._sleep(delay_ms / 1000)
            return False

        sleeper = asyncio.ensure_future(self._sleep(delay_ms / 1000))
        canceller = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait(
                {sleeper, canceller}, return_when=asyncio.FIRST_COMPLETED
            )
            if sleeper.done() and not sleeper.cancelled():
                sleeper.result()
        finally:
            sleeper.cancel()
            canceller.cancel()
            await asyncio.gather(sleeper, canceller, return_exceptions=True)
        return cancel_event.is_set()

    async def poll_until_done(
        self,
        handle: str,
        status_query: StatusQuery,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollResult:
        """Poll status_query until the operation is DONE, the attempt budget is
        spent or cancel_event is set, waiting a Fibonacci delay between queries.

        Errors raised by status_query are not retried; they propagate as is.
        """
        if not handle:
            raise ValueError("Operation handle must not be empty")

        loop = asyncio.get_event_loop()
        start_time = loop.time()
        backoff = FibonacciBackoff(self.config.initial_delay_ms, self.config.max_delay_ms)
        delays: List[int] = []
        attempt = 0
        last_status = None

        def result(outcome: PollingOutcome) -> PollResult:
            return PollResult(
                handle=handle,
                outcome=outcome,
                attempts=attempt,
                last_status=last_status,
                delays_ms=delays,
                elapsed_time=loop.time() - start_time,
            )

        if cancel_event is not None and cancel_event.is_set():
            self.logger.info(f"Polling of {handle} cancelled before the first attempt")
            return result(PollingOutcome.cancelled)

        while True:
            status = _status_of(await status_query(handle))
            attempt += 1

            done = status is OperationStatus.DONE
            exhausted = attempt >= self.config.max_attempts
            delay = None if done or exhausted else backoff.peek()

            snapshot = OperationSnapshot(
                handle=handle,
                attempt=attempt,
                status=status,
                next_delay_ms=delay,
                elapsed_time=loop.time() - start_time,
            )
            await self._handle_snapshot(snapshot, last_status)
            last_status = status

            if done:
                self.logger.info(f"Operation {handle} completed after {attempt} attempts")
                return result(PollingOutcome.success)

            if exhausted:
                self.logger.info(
                    f"Operation {handle} still {status.value} after {attempt} attempts, giving up"
                )
                return result(PollingOutcome.given_up)

            self.logger.debug(
                f"Operation {handle} is {status.value}, will try after {delay / 1000}s delay"
            )
            if await self._wait_before_retry(delay, cancel_event):
                self.logger.info(f"Polling of {handle} cancelled after {attempt} attempts")
                return result(PollingOutcome.cancelled)
            delays.append(delay)
            backoff.advance()
