"""Playback event log with live SSE fan-out.

Each supervisor event is stored with the session it belongs to and the
session state at that moment. SSE clients also get the full status
snapshot, so a dashboard can redraw from the stream without polling
/api/status.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field

from tubeloop.server.database import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlaybackEvent:
    """One supervisor event. status is the SupervisorStatus dict when known."""

    event_type: str
    title: str = ""
    detail: str = ""
    content_id: str | None = None
    session_id: int | None = None
    status: dict | None = None
    created_at: float = field(default_factory=time.time)

    @property
    def state(self) -> str | None:
        return self.status.get("state") if self.status else None

    def to_payload(self) -> dict:
        return {
            "type": self.event_type,
            "title": self.title,
            "detail": self.detail,
            "video_id": self.content_id,
            "session_id": self.session_id,
            "state": self.state,
            "status": self.status,
            "timestamp": self.created_at,
        }


class EventBus:
    """Stores playback events and pushes them to SSE subscriber queues.

    emit() is called from the supervisor loop thread, subscribe() and
    unsubscribe() from Flask request threads.
    """

    def __init__(self, db: Database, queue_size: int = 50):
        self._db = db
        self._queue_size = queue_size
        self._subscribers: list[queue.Queue] = []
        self._lock = threading.Lock()

    def emit(
        self,
        event_type: str,
        title: str = "",
        detail: str = "",
        content_id: str | None = None,
        session_id: int | None = None,
        status: dict | None = None,
    ) -> PlaybackEvent:
        event = PlaybackEvent(
            event_type=event_type,
            title=title,
            detail=detail,
            content_id=content_id,
            session_id=session_id,
            status=status,
        )
        self.publish(event)
        return event

    def publish(self, event: PlaybackEvent):
        """Persist event, then push it. A failed write still reaches clients."""
        try:
            self._db.execute(
                "INSERT INTO events (event_type, content_id, session_id, state, title, detail, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (event.event_type, event.content_id, event.session_id, event.state,
                 event.title, event.detail, event.created_at),
            )
            self._db.commit()
        except Exception as e:
            logger.warning("Failed to persist event: %s", e)

        payload = event.to_payload()
        with self._lock:
            # A full queue means the client stopped reading
            stalled = [q for q in self._subscribers if not self._offer(q, payload)]
            for q in stalled:
                self._subscribers.remove(q)
        if stalled:
            logger.debug("Dropped %d stalled SSE subscriber(s)", len(stalled))
        logger.debug("Event %s [session %s]: %s", event.event_type, event.session_id, event.title)

    @staticmethod
    def _offer(q: queue.Queue, payload: dict) -> bool:
        try:
            q.put_nowait(payload)
        except queue.Full:
            return False
        return True

    def subscribe(self) -> queue.Queue:
        q = queue.Queue(maxsize=self._queue_size)
        with self._lock:
            self._subscribers.append(q)
            count = len(self._subscribers)
        logger.debug("New SSE subscriber (total: %d)", count)
        return q

    def unsubscribe(self, q: queue.Queue):
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def recent(
        self,
        limit: int = 20,
        session_id: int | None = None,
        event_type: str | None = None,
    ) -> list[dict]:
        """Stored events, newest first, optionally for one session or type."""
        clauses, params = [], []
        if session_id is not None:
            clauses.append("session_id = ?")
            params.append(session_id)
        if event_type:
            clauses.append("event_type = ?")
            params.append(event_type)
        where = f"WHERE {' AND '.join(clauses)} " if clauses else ""
        params.append(limit)
        return self._db.fetchall(
            f"SELECT * FROM events {where}ORDER BY created_at DESC, id DESC LIMIT ?",
            tuple(params),
        )

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
