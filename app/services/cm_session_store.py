"""
Collection Manager session store - node-local, TTL-bound, lock-guarded.

A CM session lives inside an agency's login: the CM authenticates once and
can then sign off rows for up to ``timeout`` after the last approval.

    create() ──▶ ACTIVE ──(touch on each approval: sliding window)──▶ ...
                   │
                   ├── delete()          → LOGGED_OUT
                   └── now - login_time ≥ timeout → EXPIRED (removed)

Expiry is enforced twice: lazily by every reader (``is_expired``) and
best-effort by a daemon ``threading.Timer`` per session that re-checks the
window when it fires and reschedules itself if the session was extended.

The store is ephemeral and process-local.  It is registered on
``app.extensions["cm_sessions"]`` by the app factory.
"""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

SESSION_PREFIX = "cm_"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CMSessionRecord:
    session_id: str
    cm_user_id: int
    cm_name: str
    cm_email: str
    cm_designation: str
    product_tag: str
    agency_user_id: int
    agency_name: str
    login_time: datetime
    ip_address: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["login_time"] = self.login_time.isoformat()
        return data


class CMSessionStore:
    """Keyed session map with a sliding TTL.

    Records are immutable; ``touch`` swaps in a copy with a new
    ``login_time``.  All access to the map goes through ``self._lock``.
    """

    def __init__(self, timeout_minutes: int = 15, clock=None, use_timers: bool = True):
        self.timeout = timedelta(minutes=timeout_minutes)
        self._clock = clock or _utcnow
        self._use_timers = use_timers
        self._lock = threading.Lock()
        self._sessions: dict[str, CMSessionRecord] = {}
        self._timers: dict[str, threading.Timer] = {}

    def now(self) -> datetime:
        return self._clock()

    # ── Expiry ───────────────────────────────────────────────────────────

    def is_expired(self, record: CMSessionRecord, now: datetime | None = None) -> bool:
        return (now or self.now()) - record.login_time >= self.timeout

    def remaining_minutes(self, record: CMSessionRecord, now: datetime | None = None) -> int:
        remaining = self.timeout - ((now or self.now()) - record.login_time)
        return max(0, int(remaining.total_seconds() // 60))

    # ── Mutations ────────────────────────────────────────────────────────

    def create(self, **fields) -> CMSessionRecord:
        """Mint a new session id and store the record with ``login_time = now``."""
        session_id = f"{SESSION_PREFIX}{secrets.token_urlsafe(24)}"
        record = CMSessionRecord(session_id=session_id, login_time=self.now(), **fields)
        with self._lock:
            self._sessions[session_id] = record
            self._schedule(session_id, self.timeout.total_seconds())
        logger.info(
            "CM session created", extra={
                "cm_session_id": session_id,
                "user_id": record.agency_user_id,
                "event_type": "cm_session_created",
            },
        )
        return record

    def get(self, session_id: str) -> CMSessionRecord | None:
        """Return the raw record without checking expiry."""
        with self._lock:
            return self._sessions.get(session_id)

    def touch(self, session_id: str) -> CMSessionRecord | None:
        """Slide the window: ``login_time`` becomes now.  ``None`` if gone."""
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return None
            record = replace(record, login_time=self.now())
            self._sessions[session_id] = record
            return record

    def delete(self, session_id: str) -> CMSessionRecord | None:
        with self._lock:
            timer = self._timers.pop(session_id, None)
            if timer is not None:
                timer.cancel()
            return self._sessions.pop(session_id, None)

    def purge_expired(self) -> int:
        """Remove every expired record; returns how many were dropped."""
        now = self.now()
        with self._lock:
            expired = [sid for sid, rec in self._sessions.items() if self.is_expired(rec, now)]
            for sid in expired:
                self._sessions.pop(sid, None)
                timer = self._timers.pop(sid, None)
                if timer is not None:
                    timer.cancel()
        if expired:
            logger.info("Purged %d expired CM session(s)", len(expired))
        return len(expired)

    # ── Queries ──────────────────────────────────────────────────────────

    def for_agency(self, agency_user_id: int) -> list[CMSessionRecord]:
        """Live sessions hosted by one agency.  Expired ones are pruned."""
        now = self.now()
        live = []
        with self._lock:
            for sid, record in list(self._sessions.items()):
                if record.agency_user_id != agency_user_id:
                    continue
                if self.is_expired(record, now):
                    self._sessions.pop(sid, None)
                    timer = self._timers.pop(sid, None)
                    if timer is not None:
                        timer.cancel()
                    continue
                live.append(record)
        return sorted(live, key=lambda r: r.login_time)

    def stats(self) -> dict:
        now = self.now()
        with self._lock:
            records = list(self._sessions.values())
        expired = sum(1 for r in records if self.is_expired(r, now))
        return {
            "total": len(records),
            "active": len(records) - expired,
            "expired": expired,
            "timeout_minutes": int(self.timeout.total_seconds() // 60),
        }

    def __len__(self):
        with self._lock:
            return len(self._sessions)

    # ── Deferred cleanup ─────────────────────────────────────────────────

    def _schedule(self, session_id: str, delay_seconds: float) -> None:
        # Caller holds self._lock.
        if not self._use_timers:
            return
        previous = self._timers.pop(session_id, None)
        if previous is not None:
            previous.cancel()
        timer = threading.Timer(max(delay_seconds, 0.0), self._on_timer, args=(session_id,))
        timer.daemon = True
        self._timers[session_id] = timer
        timer.start()

    def _on_timer(self, session_id: str) -> None:
        now = self.now()
        with self._lock:
            self._timers.pop(session_id, None)
            record = self._sessions.get(session_id)
            if record is None:
                return
            if self.is_expired(record, now):
                self._sessions.pop(session_id, None)
                logger.info(
                    "CM session expired", extra={
                        "cm_session_id": session_id,
                        "event_type": "cm_session_expired",
                    },
                )
                return
            # Extended by an approval since scheduling
            remaining = self.timeout - (now - record.login_time)
            self._schedule(session_id, remaining.total_seconds())

    def shutdown(self) -> None:
        """Cancel all pending timers and forget every session."""
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            self._sessions.clear()
