import logging
import os
from functools import wraps

from flask import Blueprint, Flask, current_app, g, jsonify, request, session

from auth import DEFAULT_EMOJI
from countdown import ManualScheduler, ThreadingScheduler
from models import db
from store import DEFAULT_SESSION_MAX_AGE, AuthError, NotFound, SqlStore, StoreError
from timers import Timer
from workspace import Workspaces

basedir = os.path.abspath(os.path.dirname(__file__))

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

bp = Blueprint("tracker", __name__)

COUNTDOWN_ACTIONS = ("start", "pause", "reset")

# ── Avatar emoji choices (picker order) ───────────────────────────────────────

EMOJI_CATEGORIES = [
    ("Smileys",    ["😀", "😃", "😄", "😁", "😆", "😅", "😂", "🤣", "😊", "😇", "🙂", "🙃",
                    "😉", "😌", "😍", "🥰", "😋", "😛", "😜", "🤪", "🧐", "🤓", "😎", "🤩", "🥳"]),
    ("Animals",    ["🐶", "🐱", "🐭", "🐹", "🐰", "🦊", "🐻", "🐼", "🐨", "🐯", "🦁", "🐮",
                    "🐷", "🐸", "🐵", "🐔", "🐧", "🦉", "🐺", "🦄", "🐝", "🦋", "🐌"]),
    ("Food",       ["🍎", "🍐", "🍊", "🍋", "🍌", "🍉", "🍇", "🍓", "🍒", "🍑", "🥭", "🍍",
                    "🥥", "🥝", "🍅", "🥑", "🥦", "🌽", "🥕", "🥔", "🥐", "🥯", "🍞"]),
    ("Activities", ["⚽", "🏀", "🏈", "⚾", "🎾", "🏐", "🏉", "🎱", "🏓", "🏸", "🏒", "🏏",
                    "⛳", "🏹", "🎣", "🤿", "🥊", "🥋", "🛹", "🛼", "⛸️"]),
    ("Objects",    ["⌚", "📱", "💻", "⌨️", "🖥️", "🖨️", "🕹️", "💾", "💿", "📷", "🎥", "📞",
                    "📺", "📻", "🎙️", "🧭"]),
]


def configure_logging(level="INFO", log_file=None) -> logging.Logger:
    """Attach console (and optional file) handlers to the root logger once."""
    logger = logging.getLogger()
    logger.setLevel(level)
    if any(h.get_name() == "first20" for h in logger.handlers):
        return logger
    formatter = logging.Formatter(LOG_FORMAT)
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.set_name("first20")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def create_app(config=None):
    app = Flask(__name__)
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(basedir, "first20.db"),
    )
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SESSION_MAX_AGE"] = int(os.environ.get("SESSION_MAX_AGE", DEFAULT_SESSION_MAX_AGE))
    app.config["LOG_LEVEL"] = os.environ.get("LOG_LEVEL", "INFO")
    app.config["LOG_FILE"] = os.environ.get("LOG_FILE")
    # "thread" ticks in real time; "manual" only when a caller advances the clock
    app.config["SCHEDULER"] = os.environ.get("SCHEDULER", "thread")
    if config:
        app.config.update(config)

    configure_logging(app.config["LOG_LEVEL"], app.config["LOG_FILE"])

    db.init_app(app)
    with app.app_context():
        db.create_all()

    store = SqlStore(app, db)
    if app.config["SCHEDULER"] == "manual":
        scheduler_factory = ManualScheduler
    else:
        scheduler_factory = ThreadingScheduler
    app.extensions["first20.store"] = store
    app.extensions["first20.workspaces"] = Workspaces(store, scheduler_factory)

    app.register_blueprint(bp)
    app.register_error_handler(NotFound, _not_found)
    app.register_error_handler(StoreError, _store_failed)
    return app


# ── Helpers ───────────────────────────────────────────────────────────────────

def workspaces() -> Workspaces:
    return current_app.extensions["first20.workspaces"]


def payload():
    """JSON body if there is one, otherwise the submitted form."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form


def _skills(data):
    if hasattr(data, "getlist") and "skillBreakdown" in data:
        return data.getlist("skillBreakdown")
    return data.get("skillBreakdown")


def _field_error(data, fields, skills=False):
    """Message for the first field of the wrong type, else None."""
    for key in fields:
        value = data.get(key)
        if value is not None and not isinstance(value, str):
            return f"'{key}' must be a string."
    if skills:
        value = _skills(data)
        if value is not None and (not isinstance(value, (list, tuple))
                                  or not all(isinstance(s, str) for s in value)):
            return "'skillBreakdown' must be a list of strings."
    return None


def _drop_session(token, exc):
    current_app.logger.info("Dropping stale session: %s", exc)
    session.pop("token", None)
    workspaces().discard(token)
    g.auth_error = str(exc)


def current_workspace():
    """Return the caller's Workspace, or None when not signed in.

    The token is checked against the store on every request, so an expired
    or revoked session is refused even when its workspace is still cached.
    """
    if "workspace" in g:
        return g.workspace
    token = session.get("token")
    ws = None
    if token:
        try:
            current_app.extensions["first20.store"].get_session(token)
        except AuthError as exc:
            _drop_session(token, exc)
        else:
            ws = workspaces().get(token)
            if ws is None:
                ws = workspaces().open()
                try:
                    with ws.lock:
                        ws.auth.restore(token)
                except AuthError as exc:
                    _drop_session(token, exc)
                    ws = None
                else:
                    workspaces().attach(token, ws)
    g.workspace = ws
    return ws


def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        ws = current_workspace()
        if ws is None:
            message = g.get("auth_error") or "Please log in to continue."
            return jsonify({"error": message}), 401
        with ws.lock:
            ws.sync()
            return f(ws, *args, **kwargs)
    return decorated


def _not_found(exc):
    return jsonify({"error": "Timer not found"}), 404


def _store_failed(exc):
    current_app.logger.error("Store failure: %s", exc)
    return jsonify({"error": str(exc)}), 502


def _user_response(ws, status=200):
    user = ws.auth.user
    return jsonify({
        "user": user.to_dict() if user else None,
        "userId": ws.auth.user_id,
        "error": ws.auth.last_error,
    }), status


# ── Auth routes ───────────────────────────────────────────────────────────────

@bp.route("/login", methods=["POST"])
def login():
    ws = current_workspace()
    if ws is not None:
        with ws.lock:
            return _user_response(ws)
    data = payload()
    error = _field_error(data, ("email", "password"))
    if error:
        return jsonify({"error": error}), 400
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""
    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400
    ws = workspaces().open()
    try:
        with ws.lock:
            ws.auth.sign_in(email, password)
    except AuthError as exc:
        return jsonify({"error": str(exc)}), 401
    token = ws.auth.current_session().access_token
    session["token"] = token
    workspaces().attach(token, ws)
    with ws.lock:
        return _user_response(ws)


@bp.route("/register", methods=["POST"])
def register():
    ws = current_workspace()
    if ws is not None:
        with ws.lock:
            return _user_response(ws)
    data = payload()
    error = _field_error(data, ("name", "email", "password", "emoji"))
    if error:
        return jsonify({"error": error}), 400
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""
    emoji = data.get("emoji") or DEFAULT_EMOJI
    if not name or not email or not password:
        return jsonify({"error": "Name, email and password are required."}), 400
    ws = workspaces().open()
    try:
        with ws.lock:
            ws.auth.register(name, email, password, emoji)
    except AuthError as exc:
        return jsonify({"error": str(exc)}), 400
    token = ws.auth.current_session().access_token
    session["token"] = token
    workspaces().attach(token, ws)
    with ws.lock:
        return _user_response(ws, 201)


@bp.route("/logout", methods=["POST"])
def logout():
    ws = current_workspace()
    token = session.pop("token", None)
    if ws is not None:
        with ws.lock:
            ws.auth.sign_out()
        workspaces().discard(token)
    return jsonify({"ok": True})


@bp.route("/profile", methods=["GET", "POST"])
@login_required
def profile(ws):
    if request.method == "POST":
        data = payload()
        error = _field_error(data, ("name", "emoji"))
        if error:
            return jsonify({"error": error}), 400
        name = data.get("name")
        emoji = data.get("emoji")
        if name is not None and not name.strip():
            return jsonify({"error": "Name cannot be empty."}), 400
        if emoji is not None and not emoji.strip():
            return jsonify({"error": "Pick an emoji."}), 400
        ws.auth.update_profile(name=name, emoji=emoji)
    return _user_response(ws)


@bp.route("/api/emojis")
def emojis():
    return jsonify({"categories": [{"name": n, "emojis": e} for n, e in EMOJI_CATEGORIES]})


# ── Timer routes ──────────────────────────────────────────────────────────────

@bp.route("/api/timers", methods=["GET"])
@login_required
def list_timers(ws):
    return jsonify({
        "timers": [t.to_dict() for t in ws.timers.list()],
        "loading": ws.timers.loading,
        "error": ws.timers.last_error,
    })


@bp.route("/api/timers", methods=["POST"])
@login_required
def create_timer(ws):
    data = payload()
    error = _field_error(data, ("title", "goal", "resources"), skills=True)
    if error:
        return jsonify({"error": error}), 400
    title = (data.get("title") or "").strip()
    if not title:
        return jsonify({"error": "Title is required."}), 400
    timer = Timer.new(
        title,
        goal=data.get("goal") or "",
        skill_breakdown=_skills(data),
        resources=data.get("resources") or "",
    )
    if not ws.timers.add(timer):
        return jsonify({"error": ws.timers.last_error}), 502
    return jsonify({"timer": timer.to_dict()}), 201


@bp.route("/api/timers/<timer_id>", methods=["GET"])
@login_required
def get_timer(ws, timer_id):
    return jsonify({"timer": ws.timers.get(timer_id).to_dict()})


@bp.route("/api/timers/<timer_id>", methods=["POST", "PUT"])
@login_required
def edit_timer(ws, timer_id):
    timer = ws.timers.get(timer_id)
    data = payload()
    error = _field_error(data, ("title", "goal", "resources"), skills=True)
    if error:
        return jsonify({"error": error}), 400
    title = data.get("title")
    if title is not None and not title.strip():
        return jsonify({"error": "Title is required."}), 400
    updated = timer.edited(
        title=title,
        goal=data.get("goal"),
        skill_breakdown=_skills(data),
        resources=data.get("resources"),
    )
    if not ws.timers.update(updated):
        return jsonify({"error": ws.timers.last_error}), 502
    return jsonify({"timer": updated.to_dict()})


@bp.route("/api/timers/<timer_id>", methods=["DELETE"])
@login_required
def delete_timer(ws, timer_id):
    ws.timers.get(timer_id)
    if not ws.timers.remove(timer_id):
        return jsonify({"error": ws.timers.last_error}), 502
    return jsonify({"ok": True})


# ── Countdown controls ────────────────────────────────────────────────────────

@bp.route("/api/timers/<timer_id>/countdown")
@login_required
def countdown_status(ws, timer_id):
    return jsonify(ws.countdown(timer_id).status())


@bp.route("/api/timers/<timer_id>/<action>", methods=["POST"])
@login_required
def countdown_action(ws, timer_id, action):
    if action not in COUNTDOWN_ACTIONS:
        return jsonify({"error": f"Unknown action '{action}'"}), 404
    countdown = ws.countdown(timer_id)
    if action == "start":
        countdown.start()
        ok = True
    elif action == "pause":
        ok = countdown.pause()
    else:
        ok = countdown.reset()
    return jsonify(countdown.status()), (200 if ok else 502)


if __name__ == "__main__":
    create_app().run(debug=True)
