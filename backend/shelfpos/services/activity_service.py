# Overview: Service-layer operations for the recent activity feed.

from __future__ import annotations

from ..extensions import db
from ..models import RecentActivity, User
from ..models.activity import VALID_ACTIONS
from ..time_utils import utcnow

"""
Recent activity invariants:

- Append-only: no updates/deletes of existing rows.
- Written inside the same DB transaction as the change it records; the caller commits.
"""


def actor_name(user: User) -> str:
    return user.username or user.email or "unknown"


def append_activity(*, action: str, actor: User, entity_id: str | None = None) -> RecentActivity:
    if action not in VALID_ACTIONS:
        raise ValueError(f"Unknown activity action: {action}")

    activity = RecentActivity(
        action=action,
        username=actor_name(actor),
        user_id=actor.id,
        entity_id=entity_id,
        created_at=utcnow(),
    )
    db.session.add(activity)
    db.session.flush()
    return activity


def list_activities(limit: int) -> list[dict]:
    rows = (
        db.session.query(RecentActivity)
        .order_by(RecentActivity.created_at.desc(), RecentActivity.id.desc())
        .limit(limit)
        .all()
    )
    return [row.to_dict() for row in rows]
