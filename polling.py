"""Polling state machine driving repeated ``fetch_list`` calls.

The driver owns backoff, the circuit breaker, visibility pausing and the
fatal-error stop. It knows nothing about backends: it calls ``fetch()`` and
classifies whatever that raises.

Timing goes through a scheduler with one method, ``schedule(delay, callback)``,
returning a handle with ``cancel()``. ``ThreadingScheduler`` runs callbacks on
``threading.Timer`` threads; tests drive the machine with a manual scheduler.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from backend_errors import is_fatal_error

DEFAULT_BASE_INTERVAL = 2.0
DEFAULT_MAX_INTERVAL = 30.0
DEFAULT_CIRCUIT_BREAKER_THRESHOLD = 5
DEFAULT_CIRCUIT_BREAKER_DELAY = 60.0

# "polling" section of the config file
DEFAULT_POLLING = {
    "base_interval": DEFAULT_BASE_INTERVAL,
    "max_interval": DEFAULT_MAX_INTERVAL,
    "circuit_breaker_threshold": DEFAULT_CIRCUIT_BREAKER_THRESHOLD,
    "circuit_breaker_delay": DEFAULT_CIRCUIT_BREAKER_DELAY,
    "pause_when_hidden": True,
    "request_timeout": 10.0,
    "preserve_missing_sections": True,
}


class PollState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    BACKOFF = "backoff"
    CIRCUIT_OPEN = "circuit_open"
    PAUSED = "paused"
    STOPPED = "stopped"


class ThreadingScheduler:
    def schedule(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(max(0.0, delay), callback)
        timer.daemon = True
        timer.start()
        return timer


class PollingDriver:
    def __init__(
        self,
        fetch: Callable[[], Any],
        on_update: Optional[Callable[[Any], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
        on_fatal_error: Optional[Callable[[BaseException], None]] = None,
        should_skip: Optional[Callable[[], bool]] = None,
        is_fatal: Callable[[BaseException], bool] = is_fatal_error,
        base_interval: float = DEFAULT_BASE_INTERVAL,
        max_interval: float = DEFAULT_MAX_INTERVAL,
        circuit_breaker_threshold: int = DEFAULT_CIRCUIT_BREAKER_THRESHOLD,
        circuit_breaker_delay: float = DEFAULT_CIRCUIT_BREAKER_DELAY,
        scheduler: Any = None,
    ) -> None:
        if base_interval <= 0 or max_interval < base_interval:
            raise ValueError("intervals must satisfy 0 < base_interval <= max_interval")
        if circuit_breaker_threshold < 1:
            raise ValueError("circuit_breaker_threshold must be >= 1")
        self.fetch = fetch
        self.on_update = on_update
        self.on_error = on_error
        self.on_fatal_error = on_fatal_error
        self.should_skip = should_skip
        self.is_fatal = is_fatal
        self.base_interval = base_interval
        self.max_interval = max_interval
        self.circuit_breaker_threshold = circuit_breaker_threshold
        self.circuit_breaker_delay = circuit_breaker_delay
        self.scheduler = scheduler or ThreadingScheduler()

        self.state = PollState.IDLE
        self.interval = base_interval
        self.failures = 0
        self.visible = True
        self.last_error: Optional[BaseException] = None

        self._lock = threading.RLock()
        self._timer = None
        self._circuit_timer = None
        self._in_flight = False
        # A tick that arrived while a fetch was outstanding; runs once it returns.
        self._tick_pending = False
        # Bumped on stop/start; callbacks carrying an older value are ignored.
        self._generation = 0

    # ---------------------------------------------------------------- control

    @property
    def circuit_open(self) -> bool:
        return self.state == PollState.CIRCUIT_OPEN

    @property
    def running(self) -> bool:
        return self.state not in (PollState.IDLE, PollState.STOPPED)

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._generation += 1
            self._reset_backoff()
            self.last_error = None
            if not self.visible:
                self.state = PollState.PAUSED
                return
            self.state = PollState.POLLING
            generation = self._generation
        self._tick(generation)

    def stop(self) -> None:
        with self._lock:
            self._cancel_timers()
            self._generation += 1
            self._tick_pending = False
            if self.state != PollState.IDLE:
                logger.debug("Polling stopped (was {})", self.state.value)
            self.state = PollState.IDLE

    def set_visible(self, visible: bool) -> None:
        fire = None
        with self._lock:
            visible = bool(visible)
            if visible == self.visible:
                return
            self.visible = visible
            if not visible:
                if self.state in (PollState.POLLING, PollState.BACKOFF):
                    # Circuit cooldown keeps running; only the tick timer is cancelled.
                    self._cancel(self._timer)
                    self._timer = None
                    self.state = PollState.PAUSED
                return
            if self.state == PollState.PAUSED:
                self.state = PollState.BACKOFF if self.failures else PollState.POLLING
                fire = self._generation
        if fire is not None:
            self._tick(fire)

    def poll_now(self) -> None:
        """Fire one tick right away unless paused, stopped or cooling down."""
        with self._lock:
            if self.state not in (PollState.POLLING, PollState.BACKOFF):
                return
            self._cancel(self._timer)
            self._timer = None
            generation = self._generation
        self._tick(generation)

    # ------------------------------------------------------------------- tick

    def _tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self.state not in (PollState.POLLING, PollState.BACKOFF):
                return
            self._timer = None
            if self._in_flight:
                self._tick_pending = True
                return
            if self.should_skip is not None and self.should_skip():
                self._schedule_next(self.interval)
                return
            self._in_flight = True

        try:
            result = self.fetch()
        except Exception as e:
            self._handle_failure(generation, e)
        else:
            self._handle_success(generation, result)

    def _handle_success(self, generation: int, result: Any) -> None:
        with self._lock:
            self._in_flight = False
            if generation != self._generation:
                self._run_pending_tick()
                return
            self._tick_pending = False
            if self.failures:
                logger.info("Polling recovered after {} failure(s)", self.failures)
            self._reset_backoff()
            self.last_error = None
            if self.state == PollState.BACKOFF:
                self.state = PollState.POLLING
            self._schedule_next(self.interval)
        if self.on_update is not None:
            self.on_update(result)

    def _handle_failure(self, generation: int, exc: BaseException) -> None:
        notify = None
        with self._lock:
            self._in_flight = False
            if generation != self._generation:
                self._run_pending_tick()
                return
            self._tick_pending = False
            self.last_error = exc
            if self.is_fatal(exc):
                logger.error("Polling stopped on fatal error: {}", exc)
                self._cancel_timers()
                self._generation += 1
                self.state = PollState.STOPPED
                notify = self.on_fatal_error
            else:
                self.failures += 1
                self.interval = min(self.base_interval * (2 ** self.failures), self.max_interval)
                if self.failures >= self.circuit_breaker_threshold:
                    logger.warning(
                        "Circuit open after {} failures, pausing for {}s: {}",
                        self.failures, self.circuit_breaker_delay, exc,
                    )
                    self._cancel(self._timer)
                    self._timer = None
                    self.state = PollState.CIRCUIT_OPEN
                    self._circuit_timer = self.scheduler.schedule(
                        self.circuit_breaker_delay, lambda g=self._generation: self._close_circuit(g)
                    )
                else:
                    logger.warning("Poll failed ({}), retrying in {}s: {}", self.failures, self.interval, exc)
                    if self.state == PollState.POLLING:
                        self.state = PollState.BACKOFF
                    self._schedule_next(self.interval)
                notify = self.on_error
        if notify is not None:
            notify(exc)

    def _close_circuit(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self.state != PollState.CIRCUIT_OPEN:
                return
            self._circuit_timer = None
            self._reset_backoff()
            logger.info("Circuit closed, resuming polling")
            if not self.visible:
                self.state = PollState.PAUSED
                return
            self.state = PollState.POLLING
        self._tick(generation)

    # ---------------------------------------------------------------- helpers

    def _run_pending_tick(self) -> None:
        if self._tick_pending:
            self._tick_pending = False
            self._schedule_next(0.0)

    def _reset_backoff(self) -> None:
        self.failures = 0
        self.interval = self.base_interval

    def _schedule_next(self, delay: float) -> None:
        if self.state not in (PollState.POLLING, PollState.BACKOFF):
            return
        self._cancel(self._timer)
        generation = self._generation
        self._timer = self.scheduler.schedule(delay, lambda: self._tick(generation))

    def _cancel_timers(self) -> None:
        self._cancel(self._timer)
        self._cancel(self._circuit_timer)
        self._timer = None
        self._circuit_timer = None

    @staticmethod
    def _cancel(handle: Any) -> None:
        if handle is not None:
            handle.cancel()
