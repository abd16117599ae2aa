"""Remote store contract and its SQL implementation.

Everything the tracker persists goes through a :class:`RemoteStore`: credential
sessions, profile rows, timer rows and the per-user change feed. The rest of
the application never touches the database directly.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from uuid import uuid4

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.exc import SQLAlchemyError

from events import DELETE, INSERT, UPDATE, ChangeEvent, ChangeFeed
from models import Profile as ProfileRow
from models import TimerRow, User as UserRow
from timers import Timer, timer_from_record

logger = logging.getLogger(__name__)

DEFAULT_SESSION_MAX_AGE = 7 * 24 * 60 * 60


# ── Errors ────────────────────────────────────────────────────────────────────

class TrackerError(Exception):
    """Base class for recoverable tracker failures."""


class AuthError(TrackerError):
    """Bad credentials, duplicate account, or an invalid/expired session."""


class ProfileMissing(TrackerError):
    """Signed in, but no profile row exists for the user."""


class StoreError(TrackerError):
    """A read or write against the store failed."""


class NotFound(TrackerError):
    """A timer id is not present in the loaded collection."""


# ── Records exchanged with the store ──────────────────────────────────────────

@dataclass(frozen=True)
class Session:
    user_id: str
    email: str
    access_token: str
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    emoji: str


class RemoteStore(ABC):
    """Operations the tracker needs from its backing service."""

    @abstractmethod
    def sign_up(self, email: str, password: str, metadata: dict) -> Session: ...

    @abstractmethod
    def authenticate(self, email: str, password: str) -> Session: ...

    @abstractmethod
    def get_session(self, access_token: str) -> Session: ...

    @abstractmethod
    def sign_out(self, session: Session) -> None: ...

    @abstractmethod
    def fetch_profile(self, user_id: str) -> Profile | None: ...

    @abstractmethod
    def insert_profile(self, profile: Profile) -> None: ...

    @abstractmethod
    def update_profile(self, profile: Profile) -> None: ...

    @abstractmethod
    def list_timers(self, user_id: str) -> list[Timer]: ...

    @abstractmethod
    def insert_timer(self, timer: Timer, user_id: str) -> None: ...

    @abstractmethod
    def update_timer(self, timer_id: str, user_id: str, fields: dict) -> None: ...

    @abstractmethod
    def delete_timer(self, timer_id: str, user_id: str) -> None: ...

    @abstractmethod
    def subscribe_timer_changes(self, user_id: str, on_change): ...

    @abstractmethod
    def unsubscribe(self, subscription) -> None: ...


# ── SQL implementation ────────────────────────────────────────────────────────

UPDATABLE_COLUMNS = ("title", "goal", "skill_breakdown", "resources", "time_left")


class SqlStore(RemoteStore):
    """Store backed by the Flask-SQLAlchemy models.

    Each call runs in its own application context so that it gets a fresh DB
    session and can be used from request handlers and tick threads alike.
    """

    def __init__(self, app, db, feed: ChangeFeed | None = None):
        self._app = app
        self._db = db
        self.feed = feed or ChangeFeed()
        self._serializer = URLSafeTimedSerializer(app.config["SECRET_KEY"], salt="first20-session")
        self._max_age = int(app.config.get("SESSION_MAX_AGE", DEFAULT_SESSION_MAX_AGE))
        self._revoked = set()

    @contextmanager
    def _scope(self, action: str):
        with self._app.app_context():
            try:
                yield self._db.session
            except SQLAlchemyError as exc:
                self._db.session.rollback()
                logger.error("Could not %s: %s", action, exc)
                raise StoreError(f"Could not {action}") from exc

    def _session_for(self, user: UserRow) -> Session:
        # Per-login nonce: two sign-ins never share a token
        token = self._serializer.dumps({"uid": user.id, "sid": uuid4().hex})
        return Session(user_id=user.id, email=user.email, access_token=token,
                       metadata=dict(user.user_metadata or {}))

    # Auth

    def sign_up(self, email, password, metadata):
        email = email.strip().lower()
        if not email or not password:
            raise AuthError("Email and password are required.")
        with self._scope("create account") as s:
            if UserRow.query.filter_by(email=email).first():
                raise AuthError("User already registered")
            user = UserRow(email=email, user_metadata=dict(metadata or {}))
            user.set_password(password)
            s.add(user)
            s.commit()
            logger.info("Registered user %s", user.id)
            return self._session_for(user)

    def authenticate(self, email, password):
        with self._scope("sign in"):
            user = UserRow.query.filter_by(email=email.strip().lower()).first()
            if user is None or not user.check_password(password):
                raise AuthError("Invalid login credentials")
            return self._session_for(user)

    def get_session(self, access_token):
        if not access_token or access_token in self._revoked:
            raise AuthError("Not signed in")
        try:
            payload = self._serializer.loads(access_token, max_age=self._max_age)
        except SignatureExpired as exc:
            raise AuthError("Session expired") from exc
        except BadSignature as exc:
            raise AuthError("Invalid session") from exc
        with self._scope("load session") as s:
            user = s.get(UserRow, payload.get("uid"))
            if user is None:
                raise AuthError("Invalid session")
            return Session(user_id=user.id, email=user.email, access_token=access_token,
                           metadata=dict(user.user_metadata or {}))

    def sign_out(self, session):
        self._revoked.add(session.access_token)
        logger.info("Signed out user %s", session.user_id)

    # Profiles

    def fetch_profile(self, user_id):
        with self._scope("load profile") as s:
            row = s.get(ProfileRow, user_id)
            if row is None:
                return None
            return Profile(id=row.id, name=row.name, emoji=row.emoji)

    def insert_profile(self, profile):
        with self._scope("create profile") as s:
            s.add(ProfileRow(id=profile.id, name=profile.name, emoji=profile.emoji))
            s.commit()

    def update_profile(self, profile):
        with self._scope("update profile") as s:
            row = s.get(ProfileRow, profile.id)
            if row is None:
                raise StoreError("Profile not found")
            row.name = profile.name
            row.emoji = profile.emoji
            s.commit()

    # Timers

    def list_timers(self, user_id):
        with self._scope("load timers"):
            rows = (TimerRow.query
                    .filter_by(user_id=user_id)
                    .order_by(TimerRow.created_at.desc())
                    .all())
            return [timer_from_record(row.to_record()) for row in rows]

    def insert_timer(self, timer, user_id):
        with self._scope("add timer") as s:
            s.add(TimerRow(
                id=timer.id,
                user_id=user_id,
                title=timer.title,
                goal=timer.goal,
                skill_breakdown=list(timer.skill_breakdown),
                resources=timer.resources,
                time_left=timer.time_left,
                created_at=timer.created_at,
            ))
            s.commit()
        self.feed.publish(ChangeEvent(INSERT, user_id, timer.id))

    def update_timer(self, timer_id, user_id, fields):
        with self._scope("update timer") as s:
            row = TimerRow.query.filter_by(id=timer_id, user_id=user_id).first()
            if row is None:
                raise StoreError("Timer not found")
            for column in UPDATABLE_COLUMNS:
                if column in fields:
                    setattr(row, column, fields[column])
            s.commit()
        self.feed.publish(ChangeEvent(UPDATE, user_id, timer_id))

    def delete_timer(self, timer_id, user_id):
        with self._scope("delete timer") as s:
            deleted = TimerRow.query.filter_by(id=timer_id, user_id=user_id).delete()
            s.commit()
        if deleted:
            self.feed.publish(ChangeEvent(DELETE, user_id, timer_id))
        else:
            logger.warning("Timer %s was already gone", timer_id)

    def subscribe_timer_changes(self, user_id, on_change):
        return self.feed.subscribe(lambda event: event.user_id == user_id, on_change)

    def unsubscribe(self, subscription):
        self.feed.unsubscribe(subscription)
