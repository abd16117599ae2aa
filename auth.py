import logging
from dataclasses import dataclass

from events import Event
from store import AuthError, Profile, ProfileMissing, RemoteStore, StoreError

logger = logging.getLogger(__name__)

DEFAULT_EMOJI = "😊"

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"


@dataclass(frozen=True)
class User:
    id: str
    name: str
    email: str
    emoji: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email, "emoji": self.emoji}


class AuthSession:
    """Credential session plus the profile shown for it.

    Listeners on ``on_auth_change`` receive ``(kind, session)`` where kind is
    ``SIGNED_IN`` or ``SIGNED_OUT``.
    """

    def __init__(self, store: RemoteStore):
        self._store = store
        self._session = None
        self.profile = None
        self.last_error = None
        self.on_auth_change = Event()

    def current_session(self):
        return self._session

    @property
    def user(self):
        if self._session is None or self.profile is None:
            return None
        return User(id=self._session.user_id, name=self.profile.name,
                    email=self._session.email, emoji=self.profile.emoji)

    @property
    def user_id(self):
        return self._session.user_id if self._session else None

    def sign_in(self, email, password):
        """Raises AuthError on bad credentials."""
        session = self._store.authenticate(email, password)
        logger.info("Login successful for %s", session.user_id)
        self._establish(session)
        return self.user

    def restore(self, access_token):
        """Resume a session from its token; raises AuthError when invalid or expired."""
        session = self._store.get_session(access_token)
        self._establish(session)
        return self.user

    def register(self, name, email, password, emoji=DEFAULT_EMOJI):
        name = (name or "").strip()
        if not name:
            raise AuthError("Name is required.")
        emoji = emoji or DEFAULT_EMOJI
        session = self._store.sign_up(email, password, {"name": name, "emoji": emoji})
        try:
            self._store.insert_profile(Profile(id=session.user_id, name=name, emoji=emoji))
        except StoreError as exc:
            # Sign-in repairs the profile later from the cached metadata
            logger.error("Profile creation failed for %s: %s", session.user_id, exc)
        self._establish(session)
        return self.user

    def sign_out(self):
        session = self._session
        if session is None:
            return
        self._session = None
        self.profile = None
        self.last_error = None
        self._store.sign_out(session)
        self.on_auth_change.emit(SIGNED_OUT, None)

    def update_profile(self, name=None, emoji=None):
        """Raises AuthError when signed out and StoreError when the write fails."""
        if self._session is None:
            raise AuthError("Not signed in")
        current = self.profile or Profile(id=self._session.user_id, name="", emoji=DEFAULT_EMOJI)
        updated = Profile(
            id=current.id,
            name=current.name if name is None else name.strip(),
            emoji=current.emoji if emoji is None else emoji,
        )
        if self.profile is None:
            self._store.insert_profile(updated)
        else:
            self._store.update_profile(updated)
        self.profile = updated
        return self.user

    def _establish(self, session):
        self._session = session
        self.last_error = None
        try:
            self.profile = self._load_profile(session)
        except ProfileMissing:
            self.profile = self._repair_profile(session)
        except StoreError as exc:
            logger.error("Error fetching profile for %s: %s", session.user_id, exc)
            self.last_error = str(exc)
            self.profile = None
        self.on_auth_change.emit(SIGNED_IN, session)

    def _load_profile(self, session):
        profile = self._store.fetch_profile(session.user_id)
        if profile is None:
            raise ProfileMissing(f"No profile for {session.user_id}")
        return profile

    def _repair_profile(self, session):
        """One best-effort attempt to rebuild the profile from sign-up metadata."""
        name = session.metadata.get("name")
        if not name:
            logger.warning("No profile and no sign-up metadata for %s", session.user_id)
            return None
        profile = Profile(id=session.user_id, name=name, emoji=session.metadata.get("emoji") or DEFAULT_EMOJI)
        try:
            self._store.insert_profile(profile)
        except StoreError as exc:
            logger.error("Error creating profile from metadata for %s: %s", session.user_id, exc)
            self.last_error = str(exc)
            return None
        logger.info("Recreated missing profile for %s", session.user_id)
        return profile
