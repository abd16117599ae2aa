import logging
import threading
from enum import Enum

from store import NotFound
from timers import TIME_LIMIT, clamp_time_left

logger = logging.getLogger(__name__)

TICK_SECONDS = 1.0


def split_seconds(seconds):
    """Return (hours, minutes, seconds) for a countdown value."""
    seconds = int(seconds)
    return seconds // 3600, (seconds % 3600) // 60, seconds % 60


def format_time(seconds) -> str:
    """Short text form used on timer cards, e.g. ``19h 58m``."""
    h, m, _ = split_seconds(seconds)
    return f"{h}h {m}m"


# ── Schedulers ────────────────────────────────────────────────────────────────

class ManualScheduler:
    """Virtual clock; callbacks only fire when :meth:`advance` is called."""

    def __init__(self):
        self.now = 0.0
        self._handles = []

    def every(self, interval, callback):
        handle = _ManualHandle(self, interval, callback)
        self._handles.append(handle)
        return handle

    @property
    def active(self) -> int:
        return sum(1 for h in self._handles if h.active)

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [h for h in self._handles if h.active and h.next_due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.next_due)
            self.now = handle.next_due
            handle.next_due += handle.interval
            handle.callback()
        self.now = target
        self._handles = [h for h in self._handles if h.active]


class _ManualHandle:
    def __init__(self, scheduler, interval, callback):
        self.interval = interval
        self.callback = callback
        self.next_due = scheduler.now + interval
        self.active = True

    def cancel(self):
        self.active = False


class ThreadingScheduler:
    """Real-time ticks on daemon threads, serialized by ``lock``.

    Every callback runs while holding the lock its owner also takes around
    request handling, so a tick never interleaves with other mutations.
    """

    def __init__(self, lock=None):
        self.lock = lock or threading.RLock()

    def every(self, interval, callback):
        handle = _ThreadHandle(interval, callback, self.lock)
        handle.start()
        return handle


class _ThreadHandle:
    def __init__(self, interval, callback, lock):
        self.interval = interval
        self.callback = callback
        self._lock = lock
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)

    @property
    def active(self) -> bool:
        return not self._stopped.is_set()

    def start(self):
        self._thread.start()

    def cancel(self):
        self._stopped.set()

    def _run(self):
        while not self._stopped.wait(self.interval):
            with self._lock:
                if self._stopped.is_set():
                    break
                try:
                    self.callback()
                except Exception:
                    logger.exception("Tick callback failed; stopping schedule")
                    self._stopped.set()


# ── Countdown state machine ───────────────────────────────────────────────────

class CountdownState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class Countdown:
    """Start/pause/reset countdown for one timer card.

    The value is only written back through the collection when the countdown
    leaves the running state (pause, reset, or reaching zero).
    """

    def __init__(self, timer, collection, scheduler):
        self.timer_id = timer.id
        self.time_left = clamp_time_left(timer.time_left)
        self.state = CountdownState.IDLE
        self.last_error = None
        self._collection = collection
        self._scheduler = scheduler
        self._handle = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self.state is CountdownState.RUNNING

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self):
        if self._closed or self.running or self.time_left <= 0:
            return
        self.state = CountdownState.RUNNING
        self._handle = self._scheduler.every(TICK_SECONDS, self._tick)
        logger.debug("Countdown %s started at %ds", self.timer_id, self.time_left)

    def pause(self) -> bool:
        if not self.running:
            return True
        self._stop()
        logger.debug("Countdown %s paused at %ds", self.timer_id, self.time_left)
        return self._checkpoint()

    def reset(self) -> bool:
        self._stop()
        self.time_left = TIME_LIMIT
        return self._checkpoint()

    def close(self):
        """Tear down: cancel the schedule without writing anything."""
        self._stop()
        self._closed = True

    def sync(self, timer):
        """Adopt the stored value while idle (another client may have changed it)."""
        if not self.running and timer.id == self.timer_id:
            self.time_left = clamp_time_left(timer.time_left)

    def display(self) -> dict:
        hours, minutes, seconds = split_seconds(self.time_left)
        return {"hours": hours, "minutes": minutes, "seconds": seconds}

    def status(self) -> dict:
        return {
            "id": self.timer_id,
            "state": self.state.value,
            "timeLeft": self.time_left,
            "display": self.display(),
            "formatted": format_time(self.time_left),
            "error": self.last_error,
        }

    def _stop(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.state = CountdownState.IDLE

    def _tick(self):
        if self._closed or not self.running:
            return
        self.time_left = max(0, self.time_left - 1)
        if self.time_left == 0:
            self._stop()
            logger.info("Countdown %s finished", self.timer_id)
            self._checkpoint()

    def _checkpoint(self) -> bool:
        self.last_error = None
        try:
            stored = self._collection.get(self.timer_id)
        except NotFound:
            logger.warning("Countdown %s has no stored timer; checkpoint skipped", self.timer_id)
            self.last_error = "Timer not found"
            return False
        if self._collection.update(stored.with_time_left(self.time_left)):
            return True
        # Write failed: fall back to what the store last confirmed
        self.last_error = self._collection.last_error
        self.time_left = stored.time_left
        return False
