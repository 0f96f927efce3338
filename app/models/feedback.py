import uuid
from datetime import datetime, timezone

from app.extensions import db

STATUS_PENDING = "Pending"
STATUS_PROCESSED = "Processed"

TITLE_MAX_LEN = 200


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class Feedback(db.Model):
    __tablename__ = "feedback"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    # Owner never changes after insert; every read is scoped by it
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(TITLE_MAX_LEN), nullable=False)
    description = db.Column(db.Text, nullable=False)
    # Assigned by the external classifier only
    category = db.Column(db.String(80), nullable=True)
    priority = db.Column(db.String(40), nullable=True)
    status = db.Column(db.String(40), nullable=False, default=STATUS_PENDING, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        db.Index("ix_feedback_user_created_at", "user_id", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Feedback id={self.id} user_id={self.user_id} status={self.status}>"
