from datetime import datetime, timezone

import pytest

from events import DELETE, INSERT, UPDATE
from store import AuthError, Profile, StoreError
from timers import Timer


def _timer(timer_id="t1", created=1):
    return Timer(
        id=timer_id,
        title=f"Timer {timer_id}",
        goal="goal",
        skill_breakdown=["a", "b"],
        resources="book",
        time_left=3600,
        created_at=datetime(2025, 1, created, 9, 30, 15, 123456, tzinfo=timezone.utc),
    )


def test_sign_up_and_authenticate(store, user):
    assert user.email == "ada@example.com"
    assert user.metadata == {"name": "Ada", "emoji": "🦉"}
    session = store.authenticate("ADA@example.com ", "lovelace")
    assert session.user_id == user.user_id


def test_duplicate_sign_up_rejected(store, user):
    with pytest.raises(AuthError):
        store.sign_up("ada@example.com", "other", {})


def test_bad_password_rejected(store, user):
    with pytest.raises(AuthError):
        store.authenticate("ada@example.com", "wrong")


def test_get_session_and_sign_out(store, user):
    assert store.get_session(user.access_token).user_id == user.user_id
    store.sign_out(user)
    with pytest.raises(AuthError):
        store.get_session(user.access_token)


def test_invalid_and_expired_tokens(store, user, monkeypatch):
    with pytest.raises(AuthError, match="Invalid session"):
        store.get_session(user.access_token + "x")
    monkeypatch.setattr(store, "_max_age", -1)
    with pytest.raises(AuthError, match="expired"):
        store.get_session(user.access_token)


def test_each_login_gets_its_own_token(store, user):
    phone = store.authenticate("ada@example.com", "lovelace")
    laptop = store.authenticate("ada@example.com", "lovelace")
    assert phone.access_token != laptop.access_token

    store.sign_out(laptop)
    assert store.get_session(phone.access_token).user_id == user.user_id
    with pytest.raises(AuthError):
        store.get_session(laptop.access_token)


def test_profile_crud(store, user):
    assert store.fetch_profile(user.user_id) is None
    store.insert_profile(Profile(id=user.user_id, name="Ada", emoji="🦉"))
    store.update_profile(Profile(id=user.user_id, name="Countess", emoji="😎"))
    assert store.fetch_profile(user.user_id) == Profile(id=user.user_id, name="Countess", emoji="😎")


def test_timer_round_trip(store, user):
    timer = _timer()
    store.insert_timer(timer, user.user_id)
    assert store.list_timers(user.user_id) == [timer]


def test_list_is_newest_first_and_scoped_to_owner(store, user, other_user):
    store.insert_timer(_timer("a", created=1), user.user_id)
    store.insert_timer(_timer("b", created=3), user.user_id)
    store.insert_timer(_timer("c", created=2), other_user.user_id)
    assert [t.id for t in store.list_timers(user.user_id)] == ["b", "a"]
    assert [t.id for t in store.list_timers(other_user.user_id)] == ["c"]


def test_update_filters_by_owner(store, user, other_user):
    store.insert_timer(_timer(), user.user_id)
    with pytest.raises(StoreError):
        store.update_timer("t1", other_user.user_id, {"time_left": 1})
    store.update_timer("t1", user.user_id, {"time_left": 1800, "user_id": other_user.user_id})
    [timer] = store.list_timers(user.user_id)
    assert timer.time_left == 1800


def test_update_rejects_out_of_range_time(store, user):
    store.insert_timer(_timer(), user.user_id)
    with pytest.raises(StoreError):
        store.update_timer("t1", user.user_id, {"time_left": 80000})
    assert store.list_timers(user.user_id)[0].time_left == 3600


def test_duplicate_insert_is_store_error(store, user):
    store.insert_timer(_timer(), user.user_id)
    with pytest.raises(StoreError):
        store.insert_timer(_timer(), user.user_id)


def test_delete_filters_by_owner(store, user, other_user):
    store.insert_timer(_timer(), user.user_id)
    store.delete_timer("t1", other_user.user_id)
    assert len(store.list_timers(user.user_id)) == 1
    store.delete_timer("t1", user.user_id)
    assert store.list_timers(user.user_id) == []


def test_change_feed_is_per_user(store, user, other_user):
    seen = []
    subscription = store.subscribe_timer_changes(user.user_id, seen.extend)
    store.insert_timer(_timer("mine"), user.user_id)
    store.insert_timer(_timer("theirs"), other_user.user_id)
    store.update_timer("mine", user.user_id, {"title": "renamed"})
    store.delete_timer("mine", user.user_id)
    assert subscription.dispatch() == 3
    assert [(e.kind, e.timer_id) for e in seen] == [(INSERT, "mine"), (UPDATE, "mine"), (DELETE, "mine")]


def test_unsubscribe_stops_delivery(store, user):
    seen = []
    subscription = store.subscribe_timer_changes(user.user_id, seen.extend)
    store.unsubscribe(subscription)
    store.insert_timer(_timer(), user.user_id)
    assert subscription.dispatch() == 0
    assert seen == []
    assert len(store.feed) == 0
