from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional

from bfvm.visualizer import VisualizerSession


@dataclass
class SessionRecord:
    session_id: str
    session: VisualizerSession
    # Steps the program needs to halt, measured once at creation with a cap.
    total_steps: int = 0
    total_steps_capped: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class SessionStore:
    """Debugger sessions keyed by an opaque hex id.

    The registry itself is guarded by one lock; each record carries its own
    lock so that concurrent requests against one session are serialized.
    """

    def __init__(self) -> None:
        self._records: Dict[str, SessionRecord] = {}
        self._guard = threading.RLock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._records)

    def __contains__(self, session_id: object) -> bool:
        with self._guard:
            return session_id in self._records

    def add(
        self,
        session: VisualizerSession,
        *,
        total_steps: int = 0,
        total_steps_capped: bool = False,
    ) -> SessionRecord:
        record = SessionRecord(
            session_id=uuid.uuid4().hex,
            session=session,
            total_steps=total_steps,
            total_steps_capped=total_steps_capped,
        )
        with self._guard:
            self._records[record.session_id] = record
        return record

    def lookup(self, session_id: str) -> Optional[SessionRecord]:
        with self._guard:
            return self._records.get(session_id)

    def get(self, session_id: str) -> SessionRecord:
        record = self.lookup(session_id)
        if record is None:
            raise KeyError(f"Unknown session id: {session_id}")
        return record

    def rewind(self, session_id: str) -> SessionRecord:
        """Put a session back on its first instruction with no breakpoints."""
        record = self.get(session_id)
        with record.lock:
            session = record.session
            session.history.clear()
            session.clear_breakpoints()
            session.hit_breakpoint = None
            session.restart()
        return record

    def discard(self, session_id: str) -> bool:
        with self._guard:
            return self._records.pop(session_id, None) is not None


__all__ = ["SessionRecord", "SessionStore"]
