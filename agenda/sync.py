"""Sync poller.

State machine:

    DISCONNECTED --connect()--> CONNECTING --ok--> CONNECTED --stop()--> DISCONNECTED
                                CONNECTING --fail--> DISCONNECTED

While CONNECTED a background thread refreshes the store every `interval`
seconds, replacing its cache wholesale and calling on_render. Each connection
owns a cancellation token (threading.Event); stop() sets it, so no tick runs
afterwards and a refresh still in flight has its result discarded. Writes the
store confirmed while a fetch was in flight are kept (see write_generation).
"""
import threading
import time
from enum import Enum
from typing import Callable, List, Optional

from agenda import config
from agenda.errors import BackendUnavailableError, ErrorKind, StoreResult, SyncFailure
from agenda.logging_config import get_logger
from agenda.models import Appointment
from agenda.stores.base import AppointmentStore

logger = get_logger(__name__)

# Upper bound on how long stop() waits for the timer thread
STOP_JOIN_SECONDS = 1.0


class PollerState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SyncPoller:
    """Keeps one store's cache fresh by polling."""

    def __init__(
        self,
        store: AppointmentStore,
        interval: float = config.SYNC_INTERVAL_SECONDS,
        on_render: Optional[Callable[[List[Appointment]], None]] = None,
        on_failure: Optional[Callable[[SyncFailure], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        run_in_background: bool = True
    ):
        """
        Args:
            store: Store whose cache is refreshed
            interval: Seconds between ticks
            on_render: Called with the refreshed cache after every successful refresh
            on_failure: Called when a refresh fails (cache kept)
            clock: Monotonic time source
            run_in_background: Start the timer thread on connect (tests drive tick() instead)
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.store = store
        self.interval = interval
        self.on_render = on_render
        self.on_failure = on_failure
        self.run_in_background = run_in_background
        self._clock = clock

        self.state = PollerState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._refreshing = threading.Lock()
        self._token: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._next_due = 0.0

    @property
    def connected(self) -> bool:
        return self.state == PollerState.CONNECTED

    # -------- Lifecycle --------

    def connect(self) -> StoreResult:
        """
        Load the store once and start polling.

        Returns:
            success(count) and CONNECTED, or the refresh failure and DISCONNECTED
        """
        self.stop()

        token = threading.Event()
        with self._state_lock:
            self._token = token
            self.state = PollerState.CONNECTING
        logger.info("poller_connecting", backend=self.store.kind.value)

        result = self._refresh(token, blocking=True)
        if result is None or not result.ok:
            with self._state_lock:
                if self._token is token:
                    self._token = None
                    self.state = PollerState.DISCONNECTED
            token.set()
            return result or StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, "Connection cancelled")

        with self._state_lock:
            if token.is_set():
                return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, "Connection cancelled")
            self.state = PollerState.CONNECTED

        if self.run_in_background:
            self._thread = threading.Thread(
                target=self._run,
                args=(token,),
                name=f"sync-poller-{self.store.kind.value}",
                daemon=True,
            )
            self._thread.start()
        logger.info("poller_connected", backend=self.store.kind.value, interval=self.interval)
        return result

    def stop(self) -> None:
        """Cancel the timer and clear the cache. No tick runs after this returns."""
        with self._state_lock:
            token, self._token = self._token, None
            was = self.state
            self.state = PollerState.DISCONNECTED
            if token is not None:
                token.set()
        self.store.reset_cache()

        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=STOP_JOIN_SECONDS)
        if was != PollerState.DISCONNECTED:
            logger.info("poller_stopped", backend=self.store.kind.value)

    disconnect = stop

    # -------- Refresh --------

    def refresh_now(self) -> StoreResult:
        """
        Manual refresh outside the timer cadence.

        Waits for a tick already in flight instead of running alongside it,
        and pushes the next tick a full interval away.
        """
        token = self._token
        if token is None or self.state != PollerState.CONNECTED:
            return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, "Not connected")
        result = self._refresh(token, blocking=True)
        return result or StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, "Disconnected during refresh")

    def tick(self) -> Optional[StoreResult]:
        """
        One timer tick.

        Returns:
            The refresh result, or None when skipped (not connected, or a
            refresh is already in flight)
        """
        token = self._token
        if token is None or token.is_set() or self.state != PollerState.CONNECTED:
            return None
        return self._refresh(token, blocking=False)

    def _refresh(self, token: threading.Event, blocking: bool) -> Optional[StoreResult]:
        if not self._refreshing.acquire(blocking=blocking):
            logger.debug("tick_skipped", backend=self.store.kind.value)
            return None
        started = self._clock()
        try:
            generation = self.store.write_generation
            try:
                snapshot = self.store.fetch_snapshot()
            except BackendUnavailableError as exc:
                if token.is_set():
                    return None
                failure = self.store.record_failure(exc)
                self._next_due = self._clock() + self.interval
                if self.on_failure is not None:
                    self.on_failure(failure)
                return StoreResult.failure(ErrorKind.BACKEND_UNAVAILABLE, str(exc))

            with self._state_lock:
                if token.is_set() or token is not self._token:
                    logger.info("refresh_discarded", backend=self.store.kind.value)
                    return None
                self.store.apply_snapshot(snapshot, generation=generation)
                now = self._clock()
                self._next_due = now + self.interval

            logger.info(
                "sync_tick",
                backend=self.store.kind.value,
                count=len(snapshot),
                duration_ms=round((now - started) * 1000),
            )
            if self.on_render is not None:
                self.on_render(self.store.cached())
            return StoreResult.success(len(snapshot))
        finally:
            self._refreshing.release()

    def _run(self, token: threading.Event) -> None:
        while not token.is_set():
            remaining = self._next_due - self._clock()
            if remaining > 0:
                token.wait(min(remaining, self.interval))
                continue
            try:
                result = self.tick()
            except Exception:
                # Render callback errors are logged; the timer keeps running
                logger.exception("tick_failed", backend=self.store.kind.value)
                result = None
            if result is None:
                self._next_due = max(self._next_due, self._clock() + self.interval)
