import json
import logging
import time
from typing import Any, Dict, Mapping, Optional

import requests
from requests.auth import HTTPBasicAuth
from flask import current_app

logger = logging.getLogger(__name__)

PAYLOAD_FIELDS = ("id", "user_id", "title", "description", "status", "created_at")


class ClassifierTriggerError(Exception):
    """The workflow webhook could not be reached or did not answer 2xx JSON."""


def _log_structured(level: int, event: str, **fields) -> None:
    logger.log(level, json.dumps({"event": event, **fields}, default=str))


class ClassifierTrigger:
    """Fire-and-forget call into the external classification workflow."""

    def __init__(self, url: Optional[str], username: Optional[str] = None,
                 password: Optional[str] = None, timeout: float = 10.0):
        self.url = (url or "").strip() or None
        self.username = username
        self.password = password
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ClassifierTrigger":
        return cls(
            url=config.get("N8N_WEBHOOK_URL"),
            username=config.get("N8N_WEBHOOK_USER"),
            password=config.get("N8N_WEBHOOK_PASSWORD"),
            timeout=float(config.get("CLASSIFIER_TIMEOUT") or 10.0),
        )

    @property
    def configured(self) -> bool:
        return bool(self.url)

    @staticmethod
    def payload_for(record) -> Dict[str, Any]:
        data = record.to_dict() if hasattr(record, "to_dict") else dict(record)
        return {k: data.get(k) for k in PAYLOAD_FIELDS}

    def preview(self, record) -> Dict[str, Any]:
        """What trigger() would send, without the credentials."""
        return {
            "endpoint": self.url,
            "method": "POST",
            "content_type": "application/json",
            "payload": self.payload_for(record),
        }

    def trigger(self, record) -> Optional[Dict[str, Any]]:
        """
        POST the record to the workflow webhook and return its JSON reply.

        Returns None (after a warning) when no URL is configured; raises
        ClassifierTriggerError on network failure, non-2xx, or a non-JSON body.
        """
        payload = self.payload_for(record)
        if not self.configured:
            logger.warning("Classifier webhook URL not configured; skipping trigger for %s", payload["id"])
            return None

        # Same header as btoa(`${user}:${pass}`); missing parts become "None"
        auth = HTTPBasicAuth(str(self.username), str(self.password))
        _log_structured(logging.INFO, "classifier_trigger", feedback_id=payload["id"],
                        title_len=len(payload.get("title") or ""),
                        description_len=len(payload.get("description") or ""))

        start = time.perf_counter()
        try:
            resp = requests.post(
                self.url,
                json=payload,
                auth=auth,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        except requests.RequestException as exc:
            _log_structured(logging.ERROR, "classifier_trigger_error", feedback_id=payload["id"], error=str(exc))
            raise ClassifierTriggerError(str(exc)) from exc
        latency_ms = int((time.perf_counter() - start) * 1000)

        if not resp.ok:
            _log_structured(logging.ERROR, "classifier_trigger_error", feedback_id=payload["id"],
                            http_status=resp.status_code, latency_ms=latency_ms)
            raise ClassifierTriggerError(f"HTTP {resp.status_code}: {resp.reason}")

        try:
            result = resp.json()
        except ValueError as exc:
            _log_structured(logging.ERROR, "classifier_trigger_error", feedback_id=payload["id"],
                            http_status=resp.status_code, error="invalid_json")
            raise ClassifierTriggerError(f"HTTP {resp.status_code}: response is not JSON") from exc

        _log_structured(logging.INFO, "classifier_trigger_ok", feedback_id=payload["id"],
                        http_status=resp.status_code, latency_ms=latency_ms)
        return result


def get_trigger() -> ClassifierTrigger:
    return ClassifierTrigger.from_config(current_app.config)
