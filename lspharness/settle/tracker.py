"""Notification-driven settle detection.

``SettleWindow`` is a pure state machine fed explicit timestamps, so the race
between the quiet timer and the hard deadline can be tested on a virtual
clock. ``SettleMonitor`` drives one window at a time from a live session.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from loguru import logger

from lspharness.rpc.session import NotificationHandler, RpcSession
from lspharness.utils.exceptions import SettleBusyError


class SettleState(str, Enum):
    ARMED = "armed"
    WAITING = "waiting"
    SETTLED = "settled"


@dataclass(slots=True)
class SettleSummary:
    label: str
    time_to_first_event: float | None
    time_to_settle: float
    event_count: int
    last_payload: Any
    reason: str

    @property
    def first_event_ms(self) -> int | None:
        if self.time_to_first_event is None:
            return None
        return round(self.time_to_first_event * 1000)

    @property
    def settle_ms(self) -> int:
        return round(self.time_to_settle * 1000)


class SettleWindow:
    """Armed -> Waiting -> Settled, settled by whichever timer is due first.

    Each observed event pushes the quiet timer to ``now + quiet_period``; the
    hard deadline is fixed at trigger time and guarantees termination when the
    peer stays silent. With ``first_event_timeout`` set, the quiet timer also
    runs before the first event.
    """

    def __init__(
        self,
        quiet_period: float,
        hard_deadline: float,
        *,
        first_event_timeout: float | None = None,
        label: str = "",
    ):
        if quiet_period <= 0 or hard_deadline <= 0:
            raise ValueError("quiet_period and hard_deadline must be positive")
        self.quiet_period = quiet_period
        self.hard_deadline = hard_deadline
        self.first_event_timeout = first_event_timeout
        self.label = label
        self.state = SettleState.ARMED
        self.started_at: float | None = None
        self.first_event_at: float | None = None
        self.event_count = 0
        self.last_payload: Any = None
        self.quiet_at: float | None = None
        self.hard_at: float | None = None
        self.summary: SettleSummary | None = None

    def trigger(self, now: float) -> None:
        if self.state is not SettleState.ARMED:
            raise RuntimeError(f"settle window already {self.state.value}")
        self.state = SettleState.WAITING
        self.started_at = now
        self.hard_at = now + self.hard_deadline
        if self.first_event_timeout is not None:
            self.quiet_at = now + self.first_event_timeout

    def next_deadline(self) -> float | None:
        if self.state is not SettleState.WAITING:
            return None
        if self.hard_at is None:
            raise RuntimeError("waiting settle window has no hard deadline")
        if self.quiet_at is None:
            return self.hard_at
        return min(self.quiet_at, self.hard_at)

    def observe(self, payload: Any, now: float) -> bool:
        """Record one matching event; False if the window was no longer waiting."""
        if self.state is not SettleState.WAITING:
            return False
        if self.poll(now) is not None:
            return False
        self.event_count += 1
        if self.first_event_at is None:
            self.first_event_at = now
        self.last_payload = payload
        self.quiet_at = now + self.quiet_period
        return True

    def poll(self, now: float) -> SettleSummary | None:
        """Settle if a timer is due at ``now``; returns the summary once settled."""
        if self.state is SettleState.SETTLED:
            return self.summary
        if self.state is SettleState.ARMED:
            return None
        if self.started_at is None or self.hard_at is None:
            raise RuntimeError("waiting settle window was never started")
        if self.quiet_at is not None and self.quiet_at <= self.hard_at:
            due, reason = self.quiet_at, "quiet"
        else:
            due, reason = self.hard_at, "hard_deadline"
        if now < due:
            return None
        self.state = SettleState.SETTLED
        self.summary = SettleSummary(
            label=self.label,
            time_to_first_event=None if self.first_event_at is None else self.first_event_at - self.started_at,
            time_to_settle=due - self.started_at,
            event_count=self.event_count,
            last_payload=self.last_payload,
            reason=reason,
        )
        return self.summary


class SettleMonitor:
    """Feeds a session's notifications into one SettleWindow at a time.

    The monitor takes the session's notification slot; every notification is
    still passed on to ``forward``. Calling measure() while a window is
    waiting raises SettleBusyError.
    """

    def __init__(
        self,
        session: RpcSession,
        *,
        method: str,
        quiet_period: float = 0.4,
        hard_deadline: float = 15.0,
        first_event_timeout: float | None = None,
        subject: Callable[[Any], bool] | None = None,
        snapshot: Callable[[Any], Any] | None = None,
        forward: NotificationHandler | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.method = method
        self.quiet_period = quiet_period
        self.hard_deadline = hard_deadline
        self.first_event_timeout = first_event_timeout
        self.subject = subject
        self.snapshot = snapshot
        self.forward = forward
        self.clock = clock
        self._window: SettleWindow | None = None
        self._wakeup = asyncio.Event()
        session.on_notification(self._handle)

    @property
    def active(self) -> bool:
        return self._window is not None

    def detach(self) -> None:
        """Give the notification slot back to ``forward``."""
        self.session.on_notification(self.forward)

    def _handle(self, method: str, params: Any) -> None:
        window = self._window
        if window is not None and method == self.method and (self.subject is None or self.subject(params)):
            payload = self.snapshot(params) if self.snapshot else params
            if window.observe(payload, self.clock()):
                self._wakeup.set()
        if self.forward is not None:
            self.forward(method, params)

    async def measure(
        self,
        trigger: Callable[[], Awaitable[Any] | Any],
        label: str = "",
    ) -> SettleSummary:
        """Arm a window, run ``trigger``, and wait until the window settles."""
        if self._window is not None:
            raise SettleBusyError(self._window.label)
        window = SettleWindow(
            self.quiet_period,
            self.hard_deadline,
            first_event_timeout=self.first_event_timeout,
            label=label,
        )
        self._window = window
        self._wakeup.clear()
        try:
            window.trigger(self.clock())
            result = trigger()
            if inspect.isawaitable(result):
                await result
            while True:
                now = self.clock()
                summary = window.poll(now)
                if summary is not None:
                    logger.debug(
                        "Settled '{}' after {}ms ({} events, {})",
                        label, summary.settle_ms, summary.event_count, summary.reason,
                    )
                    return summary
                deadline = window.next_deadline()
                if deadline is None:
                    raise RuntimeError(f"settle window for '{label}' stopped waiting without a summary")
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=max(0.0, deadline - now))
                except asyncio.TimeoutError:
                    pass
                self._wakeup.clear()
        finally:
            self._window = None
