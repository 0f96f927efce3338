import pytest

from app.services.classifier import ClassifierTriggerError
from app.services.notifier import EVENT_UPDATE, ChangeEvent, ChangeNotifier
from app.services.reconciliation import TOAST_ERROR, TOAST_INFO, TOAST_SUCCESS, StatusReconciler
from app.services.records import RecordNotFound, RecordStoreError
from app.services.submission import (
    FeedbackValidationError,
    request_classification,
    retrigger,
    submit_feedback,
    validate_submission,
)


class MemoryStore:
    table = "feedback"

    def __init__(self):
        self.rows = {}
        self.created = []
        self.get_calls = 0
        self.fail_create = False

    def list_for_owner(self, owner_id):
        return [dict(r) for r in self.rows.values() if r["user_id"] == owner_id]

    def get(self, record_id):
        self.get_calls += 1
        if record_id not in self.rows:
            raise RecordNotFound(record_id)
        return dict(self.rows[record_id])

    def create(self, owner_id, title, description):
        if self.fail_create:
            raise RecordStoreError("insert rejected")
        rid = f"rec-{len(self.rows) + 1}"
        self.rows[rid] = {
            "id": rid, "user_id": owner_id, "title": title, "description": description,
            "status": "Pending", "category": None, "priority": None,
            "created_at": f"2026-10-0{len(self.rows) + 1}T00:00:00",
        }
        self.created.append(rid)
        return dict(self.rows[rid])


class StubTrigger:
    def __init__(self, configured=True, error=None, on_trigger=None):
        self.configured = configured
        self.error = error
        self.on_trigger = on_trigger
        self.sent = []

    def trigger(self, record):
        self.sent.append(record.id)
        if not self.configured:
            return None
        if self.error:
            raise self.error
        if self.on_trigger:
            self.on_trigger(record)
        return {"ok": True}


def inline(fn, *args, **kwargs):
    fn(*args, **kwargs)


@pytest.fixture()
def store():
    return MemoryStore()


@pytest.fixture()
def hub():
    return ChangeNotifier()


@pytest.fixture()
def rec(store, hub):
    return StatusReconciler(1, store, hub, initial_delay=0, interval=0, max_attempts=3, background=False).start()


def _levels(toasts):
    return [(t.level, t.title) for t in toasts]


def test_validate_strips_whitespace():
    title, description = validate_submission("  " + "x" * 200 + "  ", "  body  ")
    assert title == "x" * 200
    assert description == "body"


def test_overlong_title_is_rejected_not_cut(rec, store):
    with pytest.raises(FeedbackValidationError) as exc:
        submit_feedback(rec, StubTrigger(), "x" * 201, "body", dispatch=inline)

    assert exc.value.errors == {"title": "Title must be 200 characters or fewer."}
    assert store.created == []


@pytest.mark.parametrize("title, description, missing", [
    ("", "body", {"title"}),
    ("   ", "body", {"title"}),
    ("title", None, {"description"}),
    (None, "\n\t", {"title", "description"}),
])
def test_empty_fields_never_reach_the_store(rec, store, title, description, missing):
    trigger = StubTrigger()
    with pytest.raises(FeedbackValidationError) as exc:
        submit_feedback(rec, trigger, title, description, dispatch=inline)

    assert set(exc.value.errors) == missing
    assert store.created == []
    assert trigger.sent == []
    assert len(rec.board) == 0


def test_successful_submit_prepends_pending_record(rec, store):
    store.rows["older"] = {"id": "older", "user_id": 1, "title": "t", "description": "d",
                           "status": "Processed", "created_at": "2026-01-01T00:00:00"}
    rec.load()
    deferred = []

    result = submit_feedback(rec, StubTrigger(), " Broken link ", " The help link 404s ",
                             dispatch=lambda fn, *a: deferred.append((fn, a)))

    assert result.ok
    assert result.record.status == "Pending"
    assert result.record.title == "Broken link"
    assert [r.id for r in rec.board.snapshot()] == [result.record.id, "older"]
    assert _levels(rec.board.drain_toasts()) == [(TOAST_SUCCESS, "Feedback Submitted!")]
    # classification is handed off, not awaited
    assert [fn for fn, _ in deferred] == [request_classification]


def test_store_failure_reports_and_skips_trigger(rec, store):
    store.fail_create = True
    trigger = StubTrigger()

    result = submit_feedback(rec, trigger, "title", "body", dispatch=inline)

    assert not result.ok
    assert result.error == "insert rejected"
    assert trigger.sent == []
    toasts = rec.board.drain_toasts()
    assert _levels(toasts) == [(TOAST_ERROR, "Submission Failed")]
    assert toasts[0].description == "insert rejected"


def test_trigger_failure_keeps_record_pending_with_advisory(rec, store):
    trigger = StubTrigger(error=ClassifierTriggerError("HTTP 500: Internal Server Error"))

    result = submit_feedback(rec, trigger, "title", "body", dispatch=inline)

    assert result.ok
    assert rec.board.get(result.record.id).status == "Pending"
    titles = [t.title for t in rec.board.drain_toasts()]
    assert titles[:2] == ["Feedback Submitted!", "Processing delayed"]
    assert "Feedback Processed!" not in titles
    # the poll fallback still ran its full budget
    assert store.get_calls == 3
    assert titles[-1] == "Processing taking longer than expected"


def test_unconfigured_trigger_does_not_poll(rec, store):
    trigger = StubTrigger(configured=False)

    result = submit_feedback(rec, trigger, "title", "body", dispatch=inline)

    assert result.ok
    assert trigger.sent == [result.record.id]
    assert store.get_calls == 0
    assert [t.title for t in rec.board.drain_toasts()] == ["Feedback Submitted!"]


def test_trigger_success_then_push_announces_once(rec, store, hub):
    def classify(record):
        # the workflow writes back and the change feed fires before polling starts
        store.rows[record.id].update(status="Processed", category="Bug", priority="High")
        hub.publish(ChangeEvent(table="feedback", event=EVENT_UPDATE, new=dict(store.rows[record.id])))

    result = submit_feedback(rec, StubTrigger(on_trigger=classify), "title", "body", dispatch=inline)

    entry = rec.board.get(result.record.id)
    assert (entry.status, entry.category, entry.priority) == ("Processed", "Bug", "High")
    toasts = rec.board.drain_toasts()
    assert [t.title for t in toasts].count("Feedback Processed!") == 1
    assert toasts[-1].description == "Category: Bug | Priority: High"
    assert store.get_calls == 1


def test_request_classification_reports_outcome(rec, store):
    row = store.create(1, "t", "d")
    rec.load()
    record = rec.board.get(row["id"])

    assert request_classification(rec, StubTrigger(), record) is True
    assert request_classification(rec, StubTrigger(error=ClassifierTriggerError("down")), record) is False
    assert request_classification(rec, StubTrigger(configured=False), record) is False


def test_retrigger_resends_and_notifies(rec, store):
    row = store.create(1, "t", "d")
    rec.load()
    trigger = StubTrigger()

    record = retrigger(rec, trigger, row["id"])

    assert record.id == row["id"]
    assert trigger.sent == [row["id"]]
    toasts = rec.board.drain_toasts()
    assert (toasts[-1].level, toasts[-1].title) == (TOAST_INFO, "Processing manually triggered")
    assert toasts[-1].description == "Check the server logs for details"


def test_retrigger_unknown_record(rec):
    trigger = StubTrigger()
    with pytest.raises(RecordNotFound):
        retrigger(rec, trigger, "missing")
    assert trigger.sent == []


def test_rerun_of_processed_record_announces_new_result(rec, store, hub):
    row = store.create(1, "t", "d")
    rec.load()
    store.rows[row["id"]].update(status="Processed", category="Bug", priority="Low")
    hub.publish(ChangeEvent(table="feedback", event=EVENT_UPDATE, new=dict(store.rows[row["id"]])))
    assert [t.title for t in rec.board.drain_toasts()] == ["Feedback Processed!"]

    def reclassify(record):
        store.rows[record.id].update(category="Feature", priority="High")
        hub.publish(ChangeEvent(table="feedback", event=EVENT_UPDATE, new=dict(store.rows[record.id])))

    retrigger(rec, StubTrigger(on_trigger=reclassify), row["id"])

    entry = rec.board.get(row["id"])
    assert (entry.category, entry.priority) == ("Feature", "High")
    processed = [t for t in rec.board.drain_toasts() if t.title == "Feedback Processed!"]
    assert [t.description for t in processed] == ["Category: Feature | Priority: High"]


def test_failed_rerun_still_rearms_poll_announcement(rec, store):
    row = store.create(1, "t", "d")
    rec.load()
    store.rows[row["id"]].update(status="Processed", category="Bug", priority="Low")
    rec.poll(row["id"])
    rec.board.drain_toasts()

    retrigger(rec, StubTrigger(error=ClassifierTriggerError("down")), row["id"])

    titles = [t.title for t in rec.board.drain_toasts()]
    assert titles == ["Processing delayed", "Feedback Processed!", "Processing manually triggered"]
