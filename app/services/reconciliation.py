"""
Status reconciliation for a user's feedback list.

Classification happens out-of-band: the external workflow writes category,
priority and status back to the record some time after submission. Two
independent paths bring those writes into the user's board:

* push  - ``handle_change`` receives UPDATE events from the change notifier;
* poll  - ``poll`` re-fetches one record on a fixed schedule after its
  classification was requested.

Both paths replace the board entry with the same id, so whichever runs first
wins and the other only rewrites identical data. The "Feedback Processed!"
toast is emitted at most once per record unless ``dedupe`` is turned off, in
which case both paths may announce the same transition.
"""
from __future__ import annotations

import contextlib
import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from app.models.feedback import STATUS_PROCESSED
from app.services.notifier import EVENT_UPDATE, ChangeEvent
from app.services.records import RecordStoreError

logger = logging.getLogger(__name__)

TOAST_SUCCESS = "success"
TOAST_ERROR = "error"
TOAST_INFO = "info"


@dataclass(frozen=True)
class FeedbackRecord:
    id: str
    user_id: Any
    title: str
    description: str
    status: str
    category: Optional[str] = None
    priority: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "FeedbackRecord":
        created = data.get("created_at")
        if created is not None and hasattr(created, "isoformat"):
            created = created.isoformat()
        return cls(
            id=str(data["id"]),
            user_id=data.get("user_id"),
            title=data.get("title") or "",
            description=data.get("description") or "",
            status=data.get("status") or "",
            category=data.get("category"),
            priority=data.get("priority"),
            created_at=created,
        )

    @property
    def is_processed(self) -> bool:
        return self.status == STATUS_PROCESSED

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Toast:
    level: str
    title: str
    description: str = ""

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class FeedbackBoard:
    """
    Ordered projection of one owner's records plus their pending toasts.

    Every mutation swaps in a new list under the lock: at most one entry is
    replaced (or one prepended) and unrelated entries keep their order.
    """

    def __init__(self, records: Iterable[FeedbackRecord] = ()):
        self._records: List[FeedbackRecord] = list(records)
        self._toasts: List[Toast] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def reset(self, records: Iterable[FeedbackRecord]) -> None:
        with self._lock:
            self._records = list(records)

    def prepend(self, record: FeedbackRecord) -> None:
        with self._lock:
            self._records = [record] + [r for r in self._records if r.id != record.id]

    def replace(self, record: FeedbackRecord) -> bool:
        """Swap the entry with ``record.id`` in place; unknown ids are ignored."""
        with self._lock:
            matched = False
            updated = []
            for current in self._records:
                if current.id == record.id:
                    updated.append(record)
                    matched = True
                else:
                    updated.append(current)
            if matched:
                self._records = updated
            return matched

    def get(self, record_id: str) -> Optional[FeedbackRecord]:
        with self._lock:
            for r in self._records:
                if r.id == record_id:
                    return r
        return None

    def snapshot(self) -> List[FeedbackRecord]:
        with self._lock:
            return list(self._records)

    def notify(self, level: str, title: str, description: str = "") -> Toast:
        toast = Toast(level=level, title=title, description=description)
        with self._lock:
            self._toasts.append(toast)
        return toast

    def pending_toasts(self) -> List[Toast]:
        with self._lock:
            return list(self._toasts)

    def drain_toasts(self) -> List[Toast]:
        with self._lock:
            toasts, self._toasts = self._toasts, []
        return toasts


class StatusReconciler:
    """Keeps one owner's board in step with out-of-band classification."""

    def __init__(
        self,
        owner_id,
        store,
        notifier,
        *,
        initial_delay: float = 1.5,
        interval: float = 2.0,
        max_attempts: int = 5,
        dedupe: bool = True,
        background: bool = True,
        app=None,
    ):
        if owner_id is None:
            raise ValueError("owner_id is required")
        self.owner_id = owner_id
        self.store = store
        self.notifier = notifier
        self.initial_delay = initial_delay
        self.interval = interval
        self.max_attempts = max_attempts
        self.dedupe = dedupe
        self.background = background
        self.app = app
        self.board = FeedbackBoard()

        self._subscription = None
        self._stopped = threading.Event()
        self._notified: set = set()
        self._notified_lock = threading.Lock()

    @classmethod
    def from_config(cls, owner_id, config: Mapping[str, Any], store, notifier, app=None) -> "StatusReconciler":
        return cls(
            owner_id,
            store,
            notifier,
            initial_delay=float(config.get("POLL_INITIAL_DELAY", 1.5)),
            interval=float(config.get("POLL_INTERVAL", 2.0)),
            max_attempts=int(config.get("POLL_MAX_ATTEMPTS", 5)),
            dedupe=bool(config.get("RECONCILE_DEDUPE_NOTIFICATIONS", True)),
            background=not config.get("BACKGROUND_SYNC", False),
            app=app,
        )

    # ---- lifecycle ----------------------------------------------------------

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def start(self) -> "StatusReconciler":
        """Initial owner-scoped fetch, then listen for UPDATEs on the table."""
        if self.stopped:
            raise RuntimeError("reconciler was stopped; create a new one")
        self.load()
        if self._subscription is None:
            self._subscription = self.notifier.subscribe(self.store.table, EVENT_UPDATE, self.handle_change)
            logger.info("reconciler subscribed for user %s", self.owner_id)
        return self

    def load(self) -> bool:
        try:
            rows = self.store.list_for_owner(self.owner_id)
        except RecordStoreError as exc:
            logger.error("initial fetch failed for user %s: %s", self.owner_id, exc)
            self.board.notify(TOAST_ERROR, "Failed to load feedback", str(exc))
            return False
        self.board.reset(FeedbackRecord.from_mapping(r) for r in rows)
        return True

    def stop(self) -> None:
        """Tear down the subscription and cancel every outstanding poll loop."""
        self._stopped.set()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
            logger.info("reconciler stopped for user %s", self.owner_id)

    # ---- push path ----------------------------------------------------------

    def _owns(self, data: Mapping[str, Any]) -> bool:
        return str(data.get("user_id")) == str(self.owner_id)

    def handle_change(self, change: ChangeEvent) -> None:
        new = change.new or {}
        # The feed is table-wide; other owners' rows must never touch this board.
        if not self._owns(new):
            logger.debug("push: ignoring update for another owner (record %s)", new.get("id"))
            return
        if self.stopped:
            return

        record = FeedbackRecord.from_mapping(new)
        matched = self.board.replace(record)
        logger.debug("push: record %s status=%s matched=%s", record.id, record.status, matched)
        if record.is_processed:
            self._notify_processed(record, source="push")

    # ---- poll path ----------------------------------------------------------

    def _context(self):
        return self.app.app_context() if self.app is not None else contextlib.nullcontext()

    def _wait(self, seconds: float) -> bool:
        """Sleep for ``seconds`` unless stopped first; True means cancelled."""
        if self._stopped.is_set():
            return True
        if seconds > 0:
            return self._stopped.wait(seconds)
        return False

    def poll_for_update(self, record_id: str) -> Optional[threading.Thread]:
        """Run ``poll`` for one record, on a daemon thread unless background is off."""
        if self.stopped:
            return None
        if not self.background:
            self._run_poll(record_id)
            return None
        thread = threading.Thread(
            target=self._run_poll,
            args=(record_id,),
            name=f"poll-{str(record_id)[:8]}",
            daemon=True,
        )
        thread.start()
        return thread

    def _run_poll(self, record_id: str) -> None:
        with self._context():
            try:
                self.poll(record_id)
            except Exception:
                logger.exception("poll loop crashed for record %s", record_id)

    def poll(self, record_id: str) -> Optional[FeedbackRecord]:
        """
        Fixed-schedule fallback for one record.

        Returns the processed record, or None when the loop was cancelled, a
        fetch failed, or ``max_attempts`` ran out (the latter queues one
        "taking longer" advisory).
        """
        if self._wait(self.initial_delay):
            return None

        for attempt in range(1, self.max_attempts + 1):
            logger.debug("poll: attempt %d/%d for record %s", attempt, self.max_attempts, record_id)
            try:
                row = self.store.get(record_id)
            except RecordStoreError as exc:
                logger.error("poll: fetch failed for record %s: %s", record_id, exc)
                return None

            if not self._owns(row):
                logger.warning("poll: record %s does not belong to user %s", record_id, self.owner_id)
                return None

            record = FeedbackRecord.from_mapping(row)
            self.board.replace(record)
            if record.is_processed:
                self._notify_processed(record, source="poll")
                return record

            if attempt < self.max_attempts and self._wait(self.interval):
                return None

        if self.stopped:
            return None
        logger.info(json.dumps({"event": "poll_exhausted", "feedback_id": record_id, "attempts": self.max_attempts}))
        self.board.notify(TOAST_INFO, "Processing taking longer than expected", "Refresh the page to see updates")
        return None

    # ---- notifications ------------------------------------------------------

    def rearm(self, record_id: str) -> None:
        """Allow one more processed toast for ``record_id`` (a new classification was requested)."""
        with self._notified_lock:
            self._notified.discard(str(record_id))

    def _notify_processed(self, record: FeedbackRecord, source: str) -> bool:
        with self._notified_lock:
            if self.dedupe and record.id in self._notified:
                logger.debug("%s: record %s already announced", source, record.id)
                return False
            self._notified.add(record.id)
        logger.info(json.dumps({"event": "feedback_processed", "feedback_id": record.id, "source": source}))
        self.board.notify(
            TOAST_SUCCESS,
            "Feedback Processed!",
            f"Category: {record.category or 'n/a'} | Priority: {record.priority or 'n/a'}",
        )
        return True


class ReconcilerRegistry:
    """
    One running reconciler per owner identity in this process.

    The browser polls ``feed.json`` while a dashboard is open, so every call to
    ``for_owner`` marks the owner as seen. Reconcilers not seen for
    ``idle_ttl`` seconds (closed tab, expired session) are stopped on the next
    ``for_owner`` call. ``idle_ttl`` of None or 0 keeps them until release.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._by_owner: Dict[str, StatusReconciler] = {}
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._factory: Optional[Callable[[Any], StatusReconciler]] = None
        self._clock = clock
        self.idle_ttl: Optional[float] = None

    def init_app(self, app, store, notifier) -> None:
        def factory(owner_id):
            return StatusReconciler.from_config(owner_id, app.config, store, notifier, app=app)

        self._factory = factory
        ttl = app.config.get("RECONCILER_IDLE_TTL")
        self.idle_ttl = float(ttl) if ttl else None
        app.extensions["reconcilers"] = self

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_owner)

    def get(self, owner_id) -> Optional[StatusReconciler]:
        with self._lock:
            return self._by_owner.get(str(owner_id))

    def for_owner(self, owner_id) -> StatusReconciler:
        if self._factory is None:
            raise RuntimeError("ReconcilerRegistry.init_app() was not called")
        key = str(owner_id)
        self.evict_idle(keep=key)
        with self._lock:
            rec = self._by_owner.get(key)
            if rec is not None:
                self._last_seen[key] = self._clock()
                return rec

        # Load and subscribe before the reconciler becomes visible to other requests
        fresh = self._factory(owner_id).start()
        with self._lock:
            rec = self._by_owner.get(key)
            if rec is None:
                rec = self._by_owner[key] = fresh
                fresh = None
            self._last_seen[key] = self._clock()
        if fresh is not None:
            # a concurrent request for the same owner registered first
            fresh.stop()
        return rec

    def evict_idle(self, keep: Optional[str] = None) -> int:
        """Stop reconcilers idle for longer than ``idle_ttl``; returns how many."""
        if not self.idle_ttl:
            return 0
        cutoff = self._clock() - self.idle_ttl
        with self._lock:
            stale = [k for k, seen in self._last_seen.items() if seen < cutoff and k != keep]
            for k in stale:
                self._last_seen.pop(k, None)
            recs = [self._by_owner.pop(k) for k in stale if k in self._by_owner]
        for rec in recs:
            rec.stop()
        if recs:
            logger.info(json.dumps({"event": "reconcilers_evicted", "count": len(recs)}))
        return len(recs)

    def release(self, owner_id) -> bool:
        key = str(owner_id)
        with self._lock:
            rec = self._by_owner.pop(key, None)
            self._last_seen.pop(key, None)
        if rec is None:
            return False
        rec.stop()
        return True

    def release_all(self) -> None:
        with self._lock:
            recs, self._by_owner = list(self._by_owner.values()), {}
            self._last_seen = {}
        for rec in recs:
            rec.stop()



reconcilers = ReconcilerRegistry()
