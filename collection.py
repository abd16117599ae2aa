import logging

from events import Event
from store import NotFound, RemoteStore, StoreError
from timers import newest_first, timer_to_record

logger = logging.getLogger(__name__)

NOT_SIGNED_IN = "Not signed in"


class TimerCollection:
    """In-memory timers of the signed-in user, kept in step with the store.

    Local writes are applied optimistically and confirmed (or undone) by the
    store call. Push notifications never patch the list; they trigger a full
    re-fetch, which replaces local state wholesale.

    Mutations report success as a bool. Failures land in ``last_error`` and
    the collection stays usable.
    """

    def __init__(self, store: RemoteStore):
        self._store = store
        self._timers = []
        self._user_id = None
        self._subscription = None
        # Bumped on every bind/unbind so late fetch results can be recognised
        self._generation = 0
        self.loading = False
        self.last_error = None
        self.on_change = Event()

    @property
    def user_id(self):
        return self._user_id

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def bind(self, user_id):
        """Load and follow ``user_id``'s timers, dropping any previous user first."""
        if user_id == self._user_id and self._subscription is not None:
            return
        self.unbind()
        self._user_id = user_id
        self._subscription = self._store.subscribe_timer_changes(user_id, self._on_remote_change)
        self.refresh()

    def unbind(self):
        if self._subscription is not None:
            self._store.unsubscribe(self._subscription)
            self._subscription = None
        self._generation += 1
        self._user_id = None
        self._timers = []
        self.loading = False
        self.last_error = None
        self.on_change.emit(self.list())

    def refresh(self) -> bool:
        """Replace local state with a fresh fetch from the store."""
        if self._user_id is None:
            return False
        generation = self._generation
        user_id = self._user_id
        self.loading = True
        self.last_error = None
        try:
            timers = self._store.list_timers(user_id)
        except StoreError as exc:
            if generation != self._generation:
                return False
            logger.error("Error loading timers for %s: %s", user_id, exc)
            self.last_error = str(exc)
            self._timers = []
            self.loading = False
            self.on_change.emit(self.list())
            return False
        if generation != self._generation:
            logger.debug("Discarding stale timer fetch for %s", user_id)
            return False
        self._timers = newest_first(timers)
        self.loading = False
        self.on_change.emit(self.list())
        return True

    def poll(self) -> int:
        """Deliver pending push notifications; returns how many were handled."""
        if self._subscription is None:
            return 0
        return self._subscription.dispatch()

    def _on_remote_change(self, events):
        logger.debug("Received %d change notification(s) for %s", len(events), self._user_id)
        self.refresh()

    # ── Reads ─────────────────────────────────────────────────────────────────

    def list(self):
        return list(self._timers)

    def get(self, timer_id):
        for timer in self._timers:
            if timer.id == timer_id:
                return timer
        raise NotFound(f"Timer {timer_id} not found")

    def __len__(self):
        return len(self._timers)

    def __contains__(self, timer_id):
        return any(t.id == timer_id for t in self._timers)

    # ── Writes ────────────────────────────────────────────────────────────────

    def _begin(self) -> bool:
        self.last_error = None
        if self._user_id is None:
            self.last_error = NOT_SIGNED_IN
            return False
        return True

    def add(self, timer) -> bool:
        if not self._begin():
            return False
        try:
            self._store.insert_timer(timer, self._user_id)
        except StoreError as exc:
            logger.error("Error adding timer %s: %s", timer.id, exc)
            self.last_error = str(exc)
            return False
        self._timers = [timer] + [t for t in self._timers if t.id != timer.id]
        self.on_change.emit(self.list())
        return True

    def update(self, timer) -> bool:
        if not self._begin():
            return False
        previous = list(self._timers)
        self._timers = [timer if t.id == timer.id else t for t in self._timers]
        fields = timer_to_record(timer)
        for immutable in ("id", "created_at"):
            fields.pop(immutable)
        try:
            self._store.update_timer(timer.id, self._user_id, fields)
        except StoreError as exc:
            logger.error("Error updating timer %s: %s", timer.id, exc)
            self.last_error = str(exc)
            self._timers = previous
            return False
        self.on_change.emit(self.list())
        return True

    def remove(self, timer_id) -> bool:
        if not self._begin():
            return False
        try:
            self._store.delete_timer(timer_id, self._user_id)
        except StoreError as exc:
            logger.error("Error deleting timer %s: %s", timer_id, exc)
            self.last_error = str(exc)
            return False
        self._timers = [t for t in self._timers if t.id != timer_id]
        self.on_change.emit(self.list())
        return True
