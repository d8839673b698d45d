"""
Progress Observer
Client-side view of a job's progress channel.

Usage:
    async with ProgressObserver(job_id, broadcaster, on_complete=open_report) as observer:
        state = await observer.wait_until_terminal()
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional

from services.progress_broadcaster import ProgressBroadcaster, ProgressEvent, Subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressState:
    percent: int = 0
    stage: str = "pending"
    is_error: bool = False
    is_complete: bool = False
    is_timed_out: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.is_error or self.is_complete


class ProgressObserver:
    """
    Folds progress events into a ProgressState.

    - percent never goes down
    - ``error`` and ``complete`` are terminal; later events are ignored
    - ``on_complete`` fires ``completion_delay`` seconds after ``complete``
    - no event for ``timeout`` seconds before a terminal state sets
      ``is_timed_out`` (advisory; events still apply afterwards)
    - any later event clears ``is_timed_out`` and re-arms the timer
    """

    def __init__(
        self,
        job_id: str,
        source: ProgressBroadcaster,
        timeout: float = 30.0,
        completion_delay: float = 0.8,
        on_complete: Optional[Callable[[str], None]] = None,
        on_change: Optional[Callable[[ProgressState], None]] = None,
    ):
        self.job_id = job_id
        self.source = source
        self.timeout = timeout
        self.completion_delay = completion_delay
        self.on_complete = on_complete
        self.on_change = on_change

        self.state = ProgressState()
        self._subscription: Optional[Subscription] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._completion: Optional[asyncio.TimerHandle] = None
        self._terminal = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def __aenter__(self) -> "ProgressObserver":
        self._loop = asyncio.get_running_loop()
        self._subscription = await self.source.subscribe(self.job_id, self.handle_event)
        self._arm_timer()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Cancel timers and release the subscription"""
        self._cancel_timer()
        if self._completion is not None:
            self._completion.cancel()
            self._completion = None
        if self._subscription is not None:
            subscription, self._subscription = self._subscription, None
            await subscription.close()

    def handle_event(self, event: ProgressEvent) -> None:
        if self.state.is_terminal:
            return

        is_error = event.stage == "error"
        is_complete = event.stage == "complete"
        self.state = replace(
            self.state,
            percent=max(self.state.percent, event.percent),
            stage=event.stage,
            is_error=is_error,
            is_complete=is_complete,
            is_timed_out=False,
        )

        if self.state.is_terminal:
            self._cancel_timer()
            self._terminal.set()
            if is_complete and self.on_complete is not None and self._loop is not None:
                self._completion = self._loop.call_later(self.completion_delay, self._fire_completion)
        else:
            self._arm_timer()

        if self.on_change is not None:
            self.on_change(self.state)

    async def wait_until_terminal(self, timeout: Optional[float] = None) -> ProgressState:
        """Wait for complete/error; returns the current state if ``timeout`` elapses first"""
        try:
            await asyncio.wait_for(self._terminal.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        return self.state

    def _arm_timer(self) -> None:
        self._cancel_timer()
        if self._loop is not None:
            self._timer = self._loop.call_later(self.timeout, self._on_timeout)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self) -> None:
        self._timer = None
        if self.state.is_terminal:
            return
        logger.warning(f"No progress for analysis {self.job_id} in {self.timeout}s")
        self.state = replace(self.state, is_timed_out=True)
        if self.on_change is not None:
            self.on_change(self.state)

    def _fire_completion(self) -> None:
        self._completion = None
        self.on_complete(self.job_id)
