from app.extensions import db
from app.models import Feedback, User
from app.services.records import FeedbackStore


def test_users_create(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["users", "create", "--email", "Ops@Example.com", "--password", "secret1"])
    assert result.exit_code == 0, result.output
    assert "email=ops@example.com" in result.output

    again = runner.invoke(args=["users", "create", "--email", "ops@example.com", "--password", "secret1"])
    assert again.exit_code != 0
    assert "User already exists" in again.output

    with app.app_context():
        assert db.session.query(User).count() == 1


def test_feedback_classify_and_list(app, make_user):
    uid = make_user(email="owner@example.com")
    with app.app_context():
        row = FeedbackStore().create(uid, "Search is slow", "Takes forever")

    runner = app.test_cli_runner()
    result = runner.invoke(args=["feedback", "classify", row["id"], "--category", "Performance", "--priority", "High"])
    assert result.exit_code == 0, result.output
    assert "status=Processed" in result.output

    listing = runner.invoke(args=["feedback", "list", "--email", "owner@example.com"])
    assert listing.exit_code == 0
    assert "Processed" in listing.output
    assert "Search is slow" in listing.output

    with app.app_context():
        assert db.session.get(Feedback, row["id"]).category == "Performance"


def test_feedback_classify_unknown(app):
    result = app.test_cli_runner().invoke(args=["feedback", "classify", "missing"])
    assert result.exit_code != 0
    assert "not found" in result.output


def test_feedback_trigger_posts_record(app, make_user, classifier_calls):
    captured, _ = classifier_calls
    uid = make_user()
    with app.app_context():
        row = FeedbackStore().create(uid, "Retry me", "Body")

    result = app.test_cli_runner().invoke(args=["feedback", "trigger", row["id"]])

    assert result.exit_code == 0, result.output
    assert [kwargs["json"]["id"] for _, kwargs in captured] == [row["id"]]
