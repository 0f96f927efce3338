"""
In-process change feed for the feedback table.

Listeners subscribe to a (table, event) pair and receive a ChangeEvent whose
``new``/``old`` payloads are plain dicts. Updates made through a watched
SQLAlchemy session are collected at flush time and only published once the
transaction commits; a rollback drops them.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import event as sa_event
from sqlalchemy import inspect as sa_inspect

logger = logging.getLogger(__name__)

EVENT_UPDATE = "update"

_PENDING_KEY = "feedback_portal.pending_changes"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str
    new: Dict[str, Any]
    old: Optional[Dict[str, Any]] = None


@dataclass(eq=False)
class Subscription:
    table: str
    event: str
    callback: Callable[[ChangeEvent], None]
    _notifier: Optional["ChangeNotifier"] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._notifier is not None

    def unsubscribe(self) -> None:
        notifier, self._notifier = self._notifier, None
        if notifier is not None:
            notifier._remove(self)


class ChangeNotifier:
    """Thread-safe publish/subscribe hub keyed by table and event name."""

    def __init__(self):
        self._subs: List[Subscription] = []
        self._lock = threading.Lock()
        self._watched: set = set()

    def subscribe(self, table: str, event: str, callback: Callable[[ChangeEvent], None]) -> Subscription:
        sub = Subscription(table=table, event=event, callback=callback, _notifier=self)
        with self._lock:
            self._subs.append(sub)
        logger.debug("subscribed to %s:%s (%d listeners)", table, event, len(self._subs))
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            try:
                self._subs.remove(sub)
            except ValueError:
                pass

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def publish(self, change: ChangeEvent) -> int:
        """Deliver to every matching listener; returns how many were called."""
        with self._lock:
            targets = [s for s in self._subs if s.table == change.table and s.event == change.event]
        delivered = 0
        for sub in targets:
            try:
                sub.callback(change)
                delivered += 1
            except Exception:
                # one broken listener must not starve the others
                logger.exception("change listener failed for %s:%s", change.table, change.event)
        return delivered

    # ---- SQLAlchemy integration ---------------------------------------------

    def watch_session(self, session, model, table: Optional[str] = None) -> None:
        """
        Publish committed UPDATEs of ``model`` rows made through ``session``.

        ``model`` must expose ``to_dict()``; the ``old`` payload is the same dict
        with changed columns swapped back to their pre-update values.
        """
        table = table or model.__tablename__
        key = (id(session), model, table)
        if key in self._watched:
            return
        self._watched.add(key)

        @sa_event.listens_for(session, "after_flush")
        def _collect(sess, flush_context):
            pending = sess.info.setdefault(_PENDING_KEY, [])
            for obj in sess.dirty:
                if not isinstance(obj, model) or not sess.is_modified(obj, include_collections=False):
                    continue
                new = obj.to_dict()
                old = dict(new)
                for attr in sa_inspect(obj).attrs:
                    hist = attr.history
                    if attr.key not in old or not hist.has_changes():
                        continue
                    # a previously-None column reports no deleted value
                    prev = hist.deleted[0] if hist.deleted else None
                    old[attr.key] = prev.isoformat() if hasattr(prev, "isoformat") else prev
                pending.append(ChangeEvent(table=table, event=EVENT_UPDATE, new=new, old=old))

        @sa_event.listens_for(session, "after_commit")
        def _flush_out(sess):
            pending = sess.info.pop(_PENDING_KEY, None) or []
            for change in pending:
                self.publish(change)

        @sa_event.listens_for(session, "after_rollback")
        def _discard(sess):
            sess.info.pop(_PENDING_KEY, None)


# Process-wide change feed; wired to the SQLAlchemy session in create_app()
notifier = ChangeNotifier()
