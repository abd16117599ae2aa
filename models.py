from datetime import datetime, timezone
from uuid import uuid4

from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import check_password_hash, generate_password_hash

from timers import TIME_LIMIT

db = SQLAlchemy()


def _uuid() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(32), primary_key=True, default=_uuid)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    # Sign-up form values (name, emoji), kept so a lost profile row can be rebuilt
    user_metadata = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    profile = db.relationship("Profile", backref="user", uselist=False, cascade="all, delete-orphan")
    timers = db.relationship("TimerRow", backref="user", lazy=True, cascade="all, delete-orphan")

    def set_password(self, plaintext: str):
        self.password_hash = generate_password_hash(plaintext)

    def check_password(self, plaintext: str) -> bool:
        return check_password_hash(self.password_hash, plaintext)

    def __repr__(self):
        return f"<User {self.email}>"


class Profile(db.Model):
    __tablename__ = "profiles"

    id = db.Column(db.String(32), db.ForeignKey("users.id"), primary_key=True)
    name = db.Column(db.String(120), nullable=False, default="")
    emoji = db.Column(db.String(16), nullable=False, default="😊")

    def __repr__(self):
        return f"<Profile {self.name} {self.emoji}>"


class TimerRow(db.Model):
    __tablename__ = "timers"

    id = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.String(32), db.ForeignKey("users.id"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    goal = db.Column(db.Text, nullable=False, default="")
    skill_breakdown = db.Column(db.JSON, nullable=False, default=list)
    resources = db.Column(db.Text, nullable=False, default="")
    time_left = db.Column(db.Integer, nullable=False, default=TIME_LIMIT)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        db.CheckConstraint(f"time_left >= 0 AND time_left <= {TIME_LIMIT}", name="time_left_range"),
    )

    def to_record(self) -> dict:
        """Row as a remote record (snake_case keys)."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "goal": self.goal,
            "skill_breakdown": self.skill_breakdown,
            "resources": self.resources,
            "time_left": self.time_left,
            "created_at": self.created_at,
        }

    def __repr__(self):
        return f"<TimerRow {self.title} {self.time_left}s>"
