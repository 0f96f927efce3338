import hmac
import hashlib
import json
from flask import request, jsonify, abort, current_app
from . import bp
from app.extensions import csrf
from app.services.records import FeedbackStore, RecordNotFound, RecordStoreError

_MAX_FIELD_LEN = 80


def _valid_signature(raw_body: bytes, timestamp: str, sig: str) -> bool:
    secret = current_app.config.get("CLASSIFIER_CALLBACK_SECRET")
    if not secret or not timestamp or not sig:
        return False
    mac = hmac.new(secret.encode("utf-8"), (timestamp + ".").encode("utf-8") + raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(mac, sig)


def _opt_str(val):
    if val is None:
        return None
    val = str(val).strip()
    return val[:_MAX_FIELD_LEN] or None


@csrf.exempt
@bp.post("/classification")
def classification_result():
    """
    Workflow → /webhooks/classification
    Signed write-back of {id, category, priority, status}. The committed update
    reaches open dashboards through the change notifier.
    """
    # Generic HMAC: X-Timestamp, X-Signature
    timestamp = request.headers.get("X-Timestamp", "")
    signature = request.headers.get("X-Signature", "")
    raw = request.get_data() or b""

    if not _valid_signature(raw, timestamp, signature):
        abort(401)

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"ok": False, "error": "malformed_payload"}), 400

    record_id = str(payload.get("id") or "").strip()
    status = _opt_str(payload.get("status"))
    if not record_id or not status:
        return jsonify({"ok": False, "error": "id and status are required"}), 400

    try:
        row = FeedbackStore().apply_classification(
            record_id,
            status=status,
            category=_opt_str(payload.get("category")),
            priority=_opt_str(payload.get("priority")),
        )
    except RecordNotFound:
        return jsonify({"ok": False, "error": "not_found"}), 404
    except RecordStoreError:
        current_app.logger.exception("classification_webhook_store_error")
        return jsonify({"ok": False, "error": "store_error"}), 500

    current_app.logger.info(json.dumps({
        "event": "classification_webhook",
        "feedback_id": row["id"],
        "status": row["status"],
        "category": row["category"],
        "priority": row["priority"],
    }))
    return jsonify({"ok": True, "record": row}), 200
