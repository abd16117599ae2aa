import pytest

from auth import DEFAULT_EMOJI, SIGNED_IN, SIGNED_OUT, AuthSession
from store import AuthError, Profile, StoreError


@pytest.fixture
def auth(store):
    return AuthSession(store)


def test_register_creates_profile(auth, store):
    events = []
    auth.on_auth_change.add_listener(lambda kind, session: events.append(kind))
    user = auth.register("Grace", "grace@example.com", "cobol", "🐝")
    assert user.name == "Grace"
    assert user.email == "grace@example.com"
    assert user.emoji == "🐝"
    assert store.fetch_profile(user.id) == Profile(id=user.id, name="Grace", emoji="🐝")
    assert events == [SIGNED_IN]
    assert auth.current_session().user_id == user.id


def test_register_requires_name(auth):
    with pytest.raises(AuthError):
        auth.register("  ", "x@example.com", "pw")


def test_register_defaults_emoji(auth):
    assert auth.register("Linus", "linus@example.com", "git", None).emoji == DEFAULT_EMOJI


def test_sign_in_with_bad_credentials(auth, user):
    with pytest.raises(AuthError):
        auth.sign_in("ada@example.com", "nope")
    assert auth.current_session() is None
    assert auth.user is None


def test_missing_profile_is_repaired_from_metadata(auth, store, user):
    assert store.fetch_profile(user.user_id) is None
    signed_in = auth.sign_in("ada@example.com", "lovelace")
    assert signed_in.name == "Ada"
    assert signed_in.emoji == "🦉"
    assert store.fetch_profile(user.user_id).name == "Ada"


def test_failed_repair_leaves_user_signed_in(auth, store, user, monkeypatch):
    def fail(profile):
        raise StoreError("row-level security")

    monkeypatch.setattr(store, "insert_profile", fail)
    assert auth.sign_in("ada@example.com", "lovelace") is None
    assert auth.current_session().user_id == user.user_id
    assert auth.user_id == user.user_id
    assert auth.last_error == "row-level security"


def test_no_metadata_means_no_profile(auth, store):
    store.sign_up("bare@example.com", "pw", {})
    assert auth.sign_in("bare@example.com", "pw") is None
    assert auth.user_id is not None


def test_restore_from_token(auth, store, user):
    store.insert_profile(Profile(id=user.user_id, name="Ada", emoji="🦉"))
    assert auth.restore(user.access_token).email == "ada@example.com"


def test_restore_with_expired_token(auth, store, user, monkeypatch):
    monkeypatch.setattr(store, "_max_age", -1)
    with pytest.raises(AuthError):
        auth.restore(user.access_token)


def test_sign_out(auth, user):
    events = []
    auth.sign_in("ada@example.com", "lovelace")
    auth.on_auth_change.add_listener(lambda kind, session: events.append((kind, session)))
    auth.sign_out()
    assert events == [(SIGNED_OUT, None)]
    assert auth.current_session() is None
    assert auth.user is None
    auth.sign_out()
    assert len(events) == 1


def test_update_profile(auth, store, user):
    auth.sign_in("ada@example.com", "lovelace")
    updated = auth.update_profile(name=" Countess ", emoji="😎")
    assert (updated.name, updated.emoji) == ("Countess", "😎")
    assert store.fetch_profile(user.user_id).emoji == "😎"
    assert auth.update_profile(emoji="🥳").name == "Countess"


def test_update_profile_requires_session(auth):
    with pytest.raises(AuthError):
        auth.update_profile(name="x")


def test_listener_errors_do_not_break_sign_in(auth, user):
    def broken(kind, session):
        raise RuntimeError("boom")

    auth.on_auth_change.add_listener(broken)
    assert auth.sign_in("ada@example.com", "lovelace").name == "Ada"
