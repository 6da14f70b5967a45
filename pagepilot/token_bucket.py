# pagepilot/token_bucket.py
import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

from pagepilot.errors import SchedulerExhaustedError, SchedulerTimeoutError

T = TypeVar("T")

logger = logging.getLogger("pagepilot")

_UNSET: Any = object()


@dataclass(eq=False)
class ScheduledCall:
    """
    One queued unit of work. The scheduler owns it from submit() until the
    caller's work finishes; `admitted` resolves when the call may start.
    """

    weight: int
    admitted: asyncio.Future
    enqueued_at: float
    charged: int = 0


class TokenBucketScheduler:
    """
    Admits outbound model calls under three limits at once:
    - a token reservoir of `reservoir` tokens, reset to full every
      `refill_interval` seconds (never above full)
    - at most `max_concurrent` calls in flight
    - at least `min_time` seconds between two call starts

    Calls are admitted strictly in arrival order: a heavy call at the head
    blocks lighter calls behind it. A call heavier than the whole reservoir
    runs alone once the reservoir is full.

    All counters are mutated only by the synchronous helpers below, which
    run on the event loop thread and never await.
    """

    def __init__(
        self,
        *,
        reservoir: int,
        refill_interval: float = 60.0,
        max_concurrent: int = 2,
        min_time: float = 0.2,
        call_timeout: Optional[float] = None,
        admission_timeout: Optional[float] = None,
    ):
        if reservoir <= 0:
            raise ValueError("reservoir must be positive")
        if refill_interval <= 0:
            raise ValueError("refill_interval must be positive")
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if min_time < 0:
            raise ValueError("min_time must not be negative")

        self._capacity = int(reservoir)
        self._reservoir = self._capacity
        self._refill_interval = float(refill_interval)
        self._max_concurrent = int(max_concurrent)
        self._min_time = float(min_time)
        self._call_timeout = call_timeout
        self._admission_timeout = admission_timeout

        self._next_refill_at = time.monotonic() + self._refill_interval
        self._last_start: Optional[float] = None
        self._in_flight = 0
        self._queue: Deque[ScheduledCall] = deque()
        self._timer: Optional[asyncio.TimerHandle] = None

        self._submitted = 0
        self._peak_in_flight = 0
        self._lowest_reservoir = self._capacity

    @classmethod
    def from_settings(cls, settings) -> "TokenBucketScheduler":
        return cls(
            reservoir=settings.reservoir_tokens,
            refill_interval=settings.refill_interval_seconds,
            max_concurrent=settings.max_concurrent_calls,
            min_time=settings.min_call_spacing_seconds,
            call_timeout=settings.call_timeout_seconds,
            admission_timeout=settings.admission_timeout_seconds,
        )

    # -----------------------
    # Public API
    # -----------------------

    async def submit(
        self,
        weight: int,
        work: Callable[[], Awaitable[T]],
        *,
        timeout: Optional[float] = _UNSET,
        admission_timeout: Optional[float] = _UNSET,
    ) -> T:
        """
        Queue `work` with an estimated token cost, wait for admission, run it.

        Raises SchedulerExhaustedError if admission takes longer than the
        admission timeout, SchedulerTimeoutError if the admitted call runs
        past its execution timeout. Errors raised by `work` propagate as-is.
        """
        if weight is None or weight < 0:
            raise ValueError(f"weight must be a non-negative number, got {weight!r}")

        loop = asyncio.get_running_loop()
        call = ScheduledCall(
            weight=int(weight),
            admitted=loop.create_future(),
            enqueued_at=time.monotonic(),
        )
        self._submitted += 1
        self._queue.append(call)
        self._pump()

        patience = self._admission_timeout if admission_timeout is _UNSET else admission_timeout
        await self._wait_for_admission(call, patience)

        logger.debug(
            "Scheduler admitted call weight=%s after %.3fs (reservoir=%s in_flight=%s queued=%s)",
            call.weight,
            time.monotonic() - call.enqueued_at,
            self._reservoir,
            self._in_flight,
            len(self._queue),
        )

        try:
            return await self._execute(work, self._call_timeout if timeout is _UNSET else timeout)
        finally:
            self._release()

    def snapshot(self) -> Dict[str, Any]:
        self._refill(time.monotonic())
        return {
            "reservoir": self._reservoir,
            "capacity": self._capacity,
            "in_flight": self._in_flight,
            "max_concurrent": self._max_concurrent,
            "queued": sum(1 for c in self._queue if not c.admitted.done()),
            "submitted": self._submitted,
            "peak_in_flight": self._peak_in_flight,
            "lowest_reservoir": self._lowest_reservoir,
        }

    @property
    def submitted(self) -> int:
        return self._submitted

    # -----------------------
    # Admission
    # -----------------------

    async def _wait_for_admission(self, call: ScheduledCall, patience: Optional[float]) -> None:
        # asyncio.wait leaves the future alone on timeout/cancel; _abandon decides.
        try:
            done, _ = await asyncio.wait({call.admitted}, timeout=patience)
        except asyncio.CancelledError:
            self._abandon(call)
            raise

        if not done:
            self._abandon(call)
            raise SchedulerExhaustedError(float(patience or 0.0), call.weight)

    def _refill(self, now: float) -> None:
        if now < self._next_refill_at:
            return
        self._reservoir = self._capacity
        missed = int((now - self._next_refill_at) // self._refill_interval) + 1
        self._next_refill_at += missed * self._refill_interval

    def _admission_delay(self, call: ScheduledCall, now: float) -> Optional[float]:
        """
        0.0 when `call` may start now, seconds to wait when only time stands
        in the way, None when it must wait for an in-flight call to finish.
        """
        oversized = call.weight > self._capacity
        if self._in_flight >= self._max_concurrent:
            return None
        if oversized and self._in_flight > 0:
            return None

        delay = 0.0
        if self._last_start is not None:
            delay = max(delay, self._last_start + self._min_time - now)

        needed = self._capacity if oversized else call.weight
        if self._reservoir < needed:
            delay = max(delay, self._next_refill_at - now, 0.001)
        return delay

    def _pump(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        now = time.monotonic()
        self._refill(now)

        while self._queue:
            call = self._queue[0]
            if call.admitted.done():
                self._queue.popleft()
                continue

            delay = self._admission_delay(call, now)
            if delay is None:
                return
            if delay > 0:
                self._timer = asyncio.get_running_loop().call_later(delay, self._pump)
                return

            self._queue.popleft()
            self._admit(call, now)

    def _admit(self, call: ScheduledCall, now: float) -> None:
        charge = min(call.weight, self._reservoir)
        self._reservoir -= charge
        call.charged = charge
        self._in_flight += 1
        self._last_start = now

        self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
        self._lowest_reservoir = min(self._lowest_reservoir, self._reservoir)
        call.admitted.set_result(None)

    def _abandon(self, call: ScheduledCall) -> None:
        if call.admitted.done() and not call.admitted.cancelled():
            # admitted, but the caller left before the work started
            self._reservoir = min(self._capacity, self._reservoir + call.charged)
            self._in_flight -= 1
            logger.debug("Scheduler refunded %s tokens for an abandoned call", call.charged)
        else:
            call.admitted.cancel()
            try:
                self._queue.remove(call)
            except ValueError:
                pass
            logger.debug("Scheduler dropped a queued call of weight %s", call.weight)
        self._pump()

    def _release(self) -> None:
        self._in_flight -= 1
        self._pump()

    # -----------------------
    # Execution
    # -----------------------

    async def _execute(self, work: Callable[[], Awaitable[T]], timeout: Optional[float]) -> T:
        if timeout is None:
            return await work()
        try:
            return await asyncio.wait_for(work(), timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Scheduler call timed out after %.1fs", timeout)
            raise SchedulerTimeoutError(timeout) from e
