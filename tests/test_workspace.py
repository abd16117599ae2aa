from countdown import ManualScheduler
from timers import TIME_LIMIT, Timer
from workspace import Workspace, Workspaces


def _workspace(store):
    return Workspace(store, ManualScheduler())


def test_sign_in_binds_and_sign_out_tears_down(store, user):
    ws = _workspace(store)
    ws.auth.sign_in("ada@example.com", "lovelace")
    assert ws.timers.user_id == user.user_id

    ws.timers.add(Timer.new("Drawing"))
    countdown = ws.countdown(ws.timers.list()[0].id)
    countdown.start()
    assert ws.scheduler.active == 1

    ws.auth.sign_out()
    assert ws.timers.user_id is None
    assert ws.timers.list() == []
    assert countdown.closed
    assert ws.scheduler.active == 0
    assert ws.countdowns == {}


def test_countdown_is_reused_per_timer(store, user):
    ws = _workspace(store)
    ws.auth.sign_in("ada@example.com", "lovelace")
    timer = Timer.new("Piano")
    ws.timers.add(timer)
    assert ws.countdown(timer.id) is ws.countdown(timer.id)


def test_remote_delete_closes_countdown(store, user):
    phone = _workspace(store)
    laptop = _workspace(store)
    phone.auth.sign_in("ada@example.com", "lovelace")
    laptop.auth.sign_in("ada@example.com", "lovelace")

    timer = Timer.new("Knitting")
    phone.timers.add(timer)
    laptop.sync()
    countdown = laptop.countdown(timer.id)
    countdown.start()

    phone.timers.remove(timer.id)
    laptop.sync()
    assert countdown.closed
    assert timer.id not in laptop.countdowns
    assert laptop.scheduler.active == 0


def test_idle_countdown_adopts_remote_reset(store, user):
    phone = _workspace(store)
    laptop = _workspace(store)
    phone.auth.sign_in("ada@example.com", "lovelace")
    laptop.auth.sign_in("ada@example.com", "lovelace")

    timer = Timer.new("Welding").with_time_left(100)
    phone.timers.add(timer)
    laptop.sync()
    on_laptop = laptop.countdown(timer.id)

    phone.countdown(timer.id).reset()
    laptop.sync()
    assert on_laptop.time_left == TIME_LIMIT


def test_switching_user_closes_countdowns(store, user, other_user):
    ws = _workspace(store)
    ws.auth.sign_in("ada@example.com", "lovelace")
    timer = Timer.new("Chess")
    ws.timers.add(timer)
    countdown = ws.countdown(timer.id)

    ws.auth.sign_in("alan@example.com", "turing")
    assert countdown.closed
    assert ws.timers.user_id == other_user.user_id
    assert ws.timers.list() == []


def test_registry_attach_and_discard(store, user):
    registry = Workspaces(store, ManualScheduler)
    ws = registry.open()
    ws.auth.sign_in("ada@example.com", "lovelace")
    registry.attach("token", ws)
    assert registry.get("token") is ws
    assert len(registry) == 1

    assert registry.discard("token") is ws
    assert registry.get("token") is None
    assert ws.timers.user_id is None
    assert len(store.feed) == 0


def test_registry_prunes_revoked_and_expired_tokens(store, user, monkeypatch):
    registry = Workspaces(store, ManualScheduler)
    kept = registry.open()
    kept.auth.sign_in("ada@example.com", "lovelace")
    registry.attach(kept.auth.current_session().access_token, kept)

    revoked = registry.open()
    revoked.auth.sign_in("ada@example.com", "lovelace")
    revoked_token = revoked.auth.current_session().access_token
    registry.attach(revoked_token, revoked)
    store.sign_out(revoked.auth.current_session())

    assert registry.prune() == 1
    assert registry.get(revoked_token) is None
    assert revoked.timers.user_id is None
    assert len(registry) == 1

    monkeypatch.setattr(store, "_max_age", -1)
    assert registry.prune() == 1
    assert len(registry) == 0
    assert kept.timers.user_id is None
