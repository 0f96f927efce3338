from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models.feedback import Feedback, STATUS_PENDING


class RecordStoreError(Exception):
    """Create/query against the feedback table failed."""


class RecordNotFound(RecordStoreError):
    pass


class FeedbackStore:
    """
    Authoritative persistence for feedback records.

    Rows cross this boundary as plain dicts (``Feedback.to_dict()``), so callers
    running off the request thread never hold ORM instances.
    """

    table = Feedback.__tablename__

    def create(self, owner_id: int, title: str, description: str) -> dict:
        row = Feedback(user_id=owner_id, title=title, description=description, status=STATUS_PENDING)
        try:
            db.session.add(row)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise RecordStoreError(str(exc)) from exc
        return row.to_dict()

    def list_for_owner(self, owner_id: int) -> List[dict]:
        try:
            rows = (
                db.session.query(Feedback)
                .filter(Feedback.user_id == owner_id)
                .order_by(Feedback.created_at.desc())
                .all()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise RecordStoreError(str(exc)) from exc
        return [r.to_dict() for r in rows]

    def get(self, record_id: str) -> dict:
        try:
            # populate_existing: a poll must see the classifier's latest write
            row = db.session.get(Feedback, record_id, populate_existing=True)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise RecordStoreError(str(exc)) from exc
        if row is None:
            raise RecordNotFound(f"feedback {record_id} not found")
        return row.to_dict()

    def apply_classification(
        self,
        record_id: str,
        *,
        status: str,
        category: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> dict:
        """Classifier write-back: the only path that mutates category/priority/status."""
        row = db.session.get(Feedback, record_id)
        if row is None:
            raise RecordNotFound(f"feedback {record_id} not found")
        row.status = status
        if category is not None:
            row.category = category
        if priority is not None:
            row.priority = priority
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise RecordStoreError(str(exc)) from exc
        return row.to_dict()
