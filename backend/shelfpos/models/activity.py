from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ACTION_CHECKOUT = "Checkout"
ACTION_ADD_PRODUCT = "Add Product"
ACTION_EDIT_PRODUCT = "Edit Product"
ACTION_ARCHIVE_PRODUCT = "Archive Product"
ACTION_UNARCHIVE_PRODUCT = "Unarchive Product"

VALID_ACTIONS = [
    ACTION_CHECKOUT,
    ACTION_ADD_PRODUCT,
    ACTION_EDIT_PRODUCT,
    ACTION_ARCHIVE_PRODUCT,
    ACTION_UNARCHIVE_PRODUCT,
]


class RecentActivity(db.Model):
    """
    Append-only activity feed for the admin view.

    Rows are written in the same DB transaction as the change they describe.
    """
    __tablename__ = "recent_activities"
    __table_args__ = (
        db.Index("ix_recent_activities_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(32), nullable=False, index=True)
    username = db.Column(db.String(64), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Product or receipt the action touched
    entity_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "username": self.username,
            "entityId": self.entity_id,
            "createdAt": to_utc_z(self.created_at),
        }
