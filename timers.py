from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from uuid import uuid4

# 20 hours of deliberate practice, in seconds
TIME_LIMIT = 20 * 60 * 60

# ── Key translation: client camelCase <-> remote snake_case ───────────────────
# Keys outside the table pass through untouched in both directions.

CLIENT_TO_REMOTE = {
    "id":             "id",
    "title":          "title",
    "goal":           "goal",
    "skillBreakdown": "skill_breakdown",
    "resources":      "resources",
    "timeLeft":       "time_left",
    "createdAt":      "created_at",
}
REMOTE_TO_CLIENT = {v: k for k, v in CLIENT_TO_REMOTE.items()}


def to_remote(fields: dict) -> dict:
    """Rename client keys to their remote column names."""
    return {CLIENT_TO_REMOTE.get(k, k): v for k, v in fields.items()}


def to_client(record: dict) -> dict:
    """Rename remote column names to client keys."""
    return {REMOTE_TO_CLIENT.get(k, k): v for k, v in record.items()}


def clamp_time_left(seconds) -> int:
    return max(0, min(TIME_LIMIT, int(seconds)))


def clean_skills(skills) -> list:
    """Drop blank sub-skill entries, keeping order."""
    return [s for s in (skills or []) if isinstance(s, str) and s.strip()]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Timer:
    """One learning goal and its remaining practice time."""

    id: str
    title: str
    goal: str = ""
    skill_breakdown: list = field(default_factory=list)
    resources: str = ""
    time_left: int = TIME_LIMIT
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(cls, title, goal="", skill_breakdown=None, resources=""):
        """Build a fresh timer with a full 20-hour countdown."""
        return cls(
            id=uuid4().hex,
            title=title.strip(),
            goal=goal or "",
            skill_breakdown=clean_skills(skill_breakdown),
            resources=resources or "",
        )

    def with_time_left(self, seconds) -> "Timer":
        return replace(self, time_left=clamp_time_left(seconds))

    def edited(self, title=None, goal=None, skill_breakdown=None, resources=None) -> "Timer":
        """Apply form edits; identity, creation time and remaining time are kept."""
        return replace(
            self,
            title=self.title if title is None else title.strip(),
            goal=self.goal if goal is None else goal,
            skill_breakdown=self.skill_breakdown if skill_breakdown is None else clean_skills(skill_breakdown),
            resources=self.resources if resources is None else resources,
        )

    def to_dict(self) -> dict:
        """Client-facing (camelCase) representation."""
        return to_client(timer_to_record(self))


def timer_to_record(timer: Timer, user_id=None) -> dict:
    """Remote row for a timer; ``user_id`` is only added when given."""
    record = {
        "id": timer.id,
        "title": timer.title,
        "goal": timer.goal,
        "skill_breakdown": list(timer.skill_breakdown),
        "resources": timer.resources,
        "time_left": timer.time_left,
        "created_at": timer.created_at.isoformat(),
    }
    if user_id is not None:
        record["user_id"] = user_id
    return record


def timer_from_record(record: dict) -> Timer:
    """Inverse of :func:`timer_to_record`; tolerates null optional columns."""
    created_at = record.get("created_at")
    if isinstance(created_at, str):
        created_at = datetime.fromisoformat(created_at)
    if created_at is None:
        created_at = _utcnow()
    elif created_at.tzinfo is None:
        # SQLite hands back naive datetimes; everything is stored as UTC
        created_at = created_at.replace(tzinfo=timezone.utc)
    return Timer(
        id=str(record["id"]),
        title=record.get("title") or "",
        goal=record.get("goal") or "",
        skill_breakdown=list(record.get("skill_breakdown") or []),
        resources=record.get("resources") or "",
        time_left=clamp_time_left(record.get("time_left", TIME_LIMIT)),
        created_at=created_at,
    )


def newest_first(timers) -> list:
    return sorted(timers, key=lambda t: t.created_at, reverse=True)
