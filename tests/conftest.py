import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import pytest
from app import create_app
from app.extensions import db
from app.models import User
from app.services.reconciliation import reconcilers

WEBHOOK_URL = "http://classifier.test/webhook/feedback"
CALLBACK_SECRET = "testsecret"


@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
        WTF_CSRF_ENABLED=False,
        N8N_WEBHOOK_URL=WEBHOOK_URL,
        N8N_WEBHOOK_USER="n8n",
        N8N_WEBHOOK_PASSWORD="secret",
        CLASSIFIER_CALLBACK_SECRET=CALLBACK_SECRET,
        BACKGROUND_SYNC=True,
        POLL_INITIAL_DELAY=0.0,
        POLL_INTERVAL=0.0,
        POLL_MAX_ATTEMPTS=5,
        RECONCILE_DEDUPE_NOTIFICATIONS=True,
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


def _wipe(app):
    reconcilers.release_all()
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()


@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE and AFTER each test (boards live in a process-wide registry)
    _wipe(app)
    yield
    _wipe(app)


@pytest.fixture()
def make_user(app):
    def _make(email="owner@example.com", password="hunter22"):
        with app.app_context():
            u = User(email=email)
            u.set_password(password)
            db.session.add(u)
            db.session.commit()
            return u.id
    return _make


@pytest.fixture()
def login(client):
    def _login(user_id: int):
        # Simulate Flask-Login session
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user_id)
            sess["_fresh"] = True
    return _login


class FakeResponse:
    def __init__(self, status_code=200, body=None, reason="OK"):
        self.status_code = status_code
        self.reason = reason
        self._body = body

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("no JSON body")
        return self._body


@pytest.fixture()
def classifier_calls(monkeypatch):
    """Record requests.post calls made by the classifier; reply via replies["response"]."""
    from app.services import classifier as classifier_mod

    captured = []
    replies = {"response": FakeResponse(200, {"ok": True})}

    def fake_post(url, **kwargs):
        captured.append((url, kwargs))
        reply = replies["response"]
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(classifier_mod.requests, "post", fake_post)
    return captured, replies


@pytest.fixture()
def fake_response():
    return FakeResponse
