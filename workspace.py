import logging
import threading

from auth import SIGNED_IN, SIGNED_OUT, AuthSession
from collection import TimerCollection
from countdown import Countdown
from store import AuthError

logger = logging.getLogger(__name__)


class Workspace:
    """Everything one signed-in client works with.

    Owns the auth session, the timer collection and a countdown per opened
    timer card. ``lock`` serializes request handling with scheduler ticks.
    """

    def __init__(self, store, scheduler, lock=None):
        self.lock = lock or getattr(scheduler, "lock", None) or threading.RLock()
        self.auth = AuthSession(store)
        self.timers = TimerCollection(store)
        self.scheduler = scheduler
        self._countdowns = {}
        self.auth.on_auth_change.add_listener(self._on_auth_change)
        self.timers.on_change.add_listener(self._on_timers_changed)

    def countdown(self, timer_id) -> Countdown:
        """Countdown for a loaded timer, created on first use; raises NotFound."""
        countdown = self._countdowns.get(timer_id)
        if countdown is None:
            countdown = Countdown(self.timers.get(timer_id), self.timers, self.scheduler)
            self._countdowns[timer_id] = countdown
        return countdown

    @property
    def countdowns(self):
        return dict(self._countdowns)

    def discard_countdown(self, timer_id):
        countdown = self._countdowns.pop(timer_id, None)
        if countdown is not None:
            countdown.close()

    def sync(self) -> int:
        """Apply pending change notifications."""
        return self.timers.poll()

    def close(self):
        self._close_countdowns()
        self.timers.unbind()

    def _close_countdowns(self):
        for timer_id in list(self._countdowns):
            self.discard_countdown(timer_id)

    def _on_auth_change(self, kind, session):
        if kind == SIGNED_IN:
            if self.timers.user_id not in (None, session.user_id):
                self._close_countdowns()
            self.timers.bind(session.user_id)
        elif kind == SIGNED_OUT:
            self.close()

    def _on_timers_changed(self, timers):
        current = {t.id: t for t in timers}
        for timer_id in list(self._countdowns):
            timer = current.get(timer_id)
            if timer is None:
                logger.debug("Closing countdown for removed timer %s", timer_id)
                self.discard_countdown(timer_id)
            else:
                self._countdowns[timer_id].sync(timer)


class Workspaces:
    """Registry of live workspaces keyed by access token."""

    def __init__(self, store, scheduler_factory):
        self._store = store
        self._scheduler_factory = scheduler_factory
        self._by_token = {}
        self._lock = threading.Lock()

    def open(self) -> Workspace:
        return Workspace(self._store, self._scheduler_factory())

    def attach(self, token, workspace):
        self.prune()
        with self._lock:
            previous = self._by_token.get(token)
            self._by_token[token] = workspace
        if previous is not None and previous is not workspace:
            with previous.lock:
                previous.close()

    def get(self, token):
        with self._lock:
            return self._by_token.get(token)

    def discard(self, token):
        with self._lock:
            workspace = self._by_token.pop(token, None)
        if workspace is not None:
            with workspace.lock:
                workspace.close()
        return workspace

    def prune(self) -> int:
        """Close workspaces whose token was revoked or has expired."""
        with self._lock:
            tokens = list(self._by_token)
        dropped = 0
        for token in tokens:
            try:
                self._store.get_session(token)
            except AuthError as exc:
                logger.debug("Evicting workspace: %s", exc)
                if self.discard(token) is not None:
                    dropped += 1
        return dropped

    def __len__(self):
        with self._lock:
            return len(self._by_token)
