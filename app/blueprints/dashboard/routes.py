from flask import render_template, request, redirect, url_for, jsonify, abort
from flask_login import current_user

from app.extensions import limiter
from app.services.classifier import get_trigger
from app.services.reconciliation import reconcilers
from app.services.records import RecordNotFound
from app.services.submission import FeedbackValidationError, retrigger, submit_feedback
from . import bp


def _wants_json() -> bool:
    accept = (request.headers.get("Accept") or "").lower()
    return "application/json" in accept or request.is_json or request.path.endswith(".json")


@bp.before_request
def _require_login_dashboard():
    if current_user.is_authenticated:
        return None
    if _wants_json():
        return jsonify({"error": "unauthorized", "code": 401}), 401
    return redirect(url_for("auth.login_get", next=request.path))


def _reconciler():
    return reconcilers.for_owner(current_user.id)


def _render_index(rec, status=200, **ctx):
    trigger = get_trigger()
    return render_template(
        "dashboard/index.html",
        records=rec.board.snapshot(),
        toasts=rec.board.drain_toasts(),
        trigger_configured=trigger.configured,
        **ctx,
    ), status


@bp.get("/")
def index():
    rec = _reconciler()
    # A full page load re-reads the owner's list (manual refresh is the recovery path)
    rec.load()
    return _render_index(rec)


@bp.post("/feedback")
@limiter.limit("30 per minute")
def submit():
    data = (request.get_json(silent=True) or {}) if request.is_json else request.form
    title = data.get("title")
    description = data.get("description")
    rec = _reconciler()

    try:
        result = submit_feedback(rec, get_trigger(), title, description)
    except FeedbackValidationError as exc:
        if _wants_json():
            return jsonify({"ok": False, "errors": exc.errors}), 400
        return _render_index(rec, 400, errors=exc.errors, title=title or "", description=description or "")

    if not result.ok:
        if _wants_json():
            return jsonify({"ok": False, "error": result.error, "toasts": [t.to_dict() for t in rec.board.drain_toasts()]}), 502
        # keep the inputs so nothing typed is lost
        return _render_index(rec, 502, title=title or "", description=description or "")

    if _wants_json():
        return jsonify({"ok": True, "record": result.record.to_dict()}), 201
    return redirect(url_for("dashboard.index"))


@bp.get("/feed.json")
def feed():
    rec = _reconciler()
    return jsonify({
        "ok": True,
        "records": [r.to_dict() for r in rec.board.snapshot()],
        "toasts": [t.to_dict() for t in rec.board.drain_toasts()],
    })


@bp.get("/feedback/<record_id>/trigger.json")
def trigger_preview(record_id: str):
    record = _reconciler().board.get(record_id)
    if record is None:
        abort(404)
    return jsonify({"ok": True, **get_trigger().preview(record)})


@bp.post("/feedback/<record_id>/trigger")
@limiter.limit("10 per minute")
def manual_trigger(record_id: str):
    rec = _reconciler()
    try:
        record = retrigger(rec, get_trigger(), record_id)
    except RecordNotFound:
        abort(404)
    if _wants_json():
        return jsonify({"ok": True, "record": record.to_dict()})
    return redirect(url_for("dashboard.index"))
