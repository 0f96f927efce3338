import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from app.models.feedback import TITLE_MAX_LEN
from app.services.background import run_in_background
from app.services.classifier import ClassifierTrigger, ClassifierTriggerError
from app.services.reconciliation import (
    TOAST_ERROR,
    TOAST_INFO,
    TOAST_SUCCESS,
    FeedbackRecord,
    StatusReconciler,
)
from app.services.records import RecordNotFound, RecordStoreError

logger = logging.getLogger(__name__)


class FeedbackValidationError(ValueError):
    def __init__(self, errors: Dict[str, str]):
        super().__init__("; ".join(errors.values()))
        self.errors = errors


@dataclass
class SubmissionResult:
    ok: bool
    record: Optional[FeedbackRecord] = None
    error: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)


def validate_submission(title: Optional[str], description: Optional[str]):
    """Both fields are required and the title must fit its column; returns the stripped pair."""
    title = (title or "").strip()
    description = (description or "").strip()
    errors = {}
    if not title:
        errors["title"] = "Title is required."
    elif len(title) > TITLE_MAX_LEN:
        errors["title"] = f"Title must be {TITLE_MAX_LEN} characters or fewer."
    if not description:
        errors["description"] = "Description is required."
    if errors:
        raise FeedbackValidationError(errors)
    return title, description


def request_classification(reconciler: StatusReconciler, trigger: ClassifierTrigger, record: FeedbackRecord) -> bool:
    """
    Ask the workflow to classify ``record`` and start the poll fallback.

    A failed call is downgraded to an advisory toast; polling starts either way.
    Nothing is polled when no webhook URL is configured (nothing was requested).
    """
    if not trigger.configured:
        trigger.trigger(record)  # logs the skip
        return False

    # a fresh classification gets its own "Feedback Processed!" toast
    reconciler.rearm(record.id)
    ok = True
    try:
        trigger.trigger(record)
    except ClassifierTriggerError as exc:
        ok = False
        logger.warning("classification request failed for %s: %s", record.id, exc)
        reconciler.board.notify(TOAST_ERROR, "Processing delayed", "Will retry automatically")

    reconciler.poll_for_update(record.id)
    return ok


def submit_feedback(
    reconciler: StatusReconciler,
    trigger: ClassifierTrigger,
    title: Optional[str],
    description: Optional[str],
    dispatch: Optional[Callable] = None,
) -> SubmissionResult:
    """
    Persist a new Pending record for the reconciler's owner and put it at the
    head of the board, then hand the classification request to ``dispatch``
    (fire-and-forget). Raises FeedbackValidationError before touching the store.
    """
    title, description = validate_submission(title, description)

    try:
        row = reconciler.store.create(reconciler.owner_id, title, description)
    except RecordStoreError as exc:
        logger.error("feedback insert failed for user %s: %s", reconciler.owner_id, exc)
        reconciler.board.notify(TOAST_ERROR, "Submission Failed", str(exc))
        return SubmissionResult(ok=False, error=str(exc))

    record = FeedbackRecord.from_mapping(row)
    reconciler.board.prepend(record)
    reconciler.board.notify(TOAST_SUCCESS, "Feedback Submitted!", "Processing your feedback...")

    # No feedback text in logs; ids and sizes only
    logger.info(json.dumps({
        "event": "feedback_submitted",
        "feedback_id": record.id,
        "user_id": reconciler.owner_id,
        "title_len": len(title),
        "description_len": len(description),
    }))

    (dispatch or run_in_background)(request_classification, reconciler, trigger, record)
    return SubmissionResult(ok=True, record=record)


def retrigger(reconciler: StatusReconciler, trigger: ClassifierTrigger, record_id: str) -> FeedbackRecord:
    """Re-send the classification request for one of the owner's records."""
    record = reconciler.board.get(record_id)
    if record is None:
        raise RecordNotFound(f"feedback {record_id} not found")
    logger.info(json.dumps({"event": "feedback_retrigger", "feedback_id": record_id, "user_id": reconciler.owner_id}))
    request_classification(reconciler, trigger, record)
    reconciler.board.notify(TOAST_INFO, "Processing manually triggered", "Check the server logs for details")
    return record
