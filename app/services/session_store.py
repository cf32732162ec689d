import copy
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from app.core.errors import NotFoundError, ValidationError
from app.services.session_state import Session

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("session", "lock", "evicted")

    def __init__(self, session: Session) -> None:
        self.session = session
        self.lock = threading.Lock()
        self.evicted = False


class SessionStore:
    """
    Stockage des sessions en mémoire (V1, pas de persistance).

    - un verrou par session : update() est atomique pour un même sessionId,
      deux sessions différentes ne se bloquent jamais ;
    - le verrou du registre ne protège que le dict, jamais une mutation ;
    - get()/update() renvoient une copie, l'objet stocké ne sort jamais.

    Éviction : TTL d'inactivité + capacité max (LRU).
    """

    def __init__(
        self,
        ttl_seconds: int = 60 * 60,
        max_sessions: int = 10000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._registry_lock = threading.Lock()
        self._ttl_seconds = ttl_seconds
        self._max_sessions = max_sessions
        self._clock = clock

    # ---------- public API ----------

    def create(self, session: Session) -> str:
        now = self._clock()
        session.last_activity_at = now
        self.purge_expired()

        with self._registry_lock:
            if session.session_id in self._entries:
                raise ValidationError("Session already exists", field="sessionId")
            while len(self._entries) >= self._max_sessions:
                old_id, old = self._entries.popitem(last=False)
                old.evicted = True
                logger.info("Session %s evicted (capacity %d reached)", old_id, self._max_sessions)
            self._entries[session.session_id] = _Entry(session)

        return session.session_id

    def get(self, session_id: str) -> Session:
        entry = self._acquire_entry(session_id)
        with entry.lock:
            self._ensure_alive(entry, session_id)
            return copy.deepcopy(entry.session)

    def update(self, session_id: str, mutator: Callable[[Session], None]) -> Session:
        """
        Lecture-modification-écriture atomique pour ce sessionId.
        Le mutator reçoit l'objet stocké ; s'il lève une exception elle est
        propagée telle quelle (il doit valider avant de modifier).
        """
        entry = self._acquire_entry(session_id)
        with entry.lock:
            self._ensure_alive(entry, session_id)
            mutator(entry.session)
            entry.session.last_activity_at = self._clock()
            return copy.deepcopy(entry.session)

    def delete(self, session_id: str) -> bool:
        with self._registry_lock:
            entry = self._entries.pop(session_id, None)
        if entry is None:
            return False
        entry.evicted = True
        return True

    def purge_expired(self) -> int:
        now = self._clock()
        with self._registry_lock:
            expired = [sid for sid, e in self._entries.items() if self._is_expired(e, now)]
            for sid in expired:
                self._entries.pop(sid).evicted = True
        if expired:
            logger.info("Purged %d expired sessions", len(expired))
        return len(expired)

    def active_count(self) -> int:
        with self._registry_lock:
            return sum(1 for e in self._entries.values() if not e.session.is_completed)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._entries)

    def __contains__(self, session_id: str) -> bool:
        with self._registry_lock:
            return session_id in self._entries

    # ---------- internals ----------

    def _is_expired(self, entry: _Entry, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        return now - entry.session.last_activity_at > self._ttl_seconds

    def _acquire_entry(self, session_id: str) -> _Entry:
        with self._registry_lock:
            entry = self._entries.get(session_id)
            if entry is None:
                raise NotFoundError("Session not found or expired")
            if self._is_expired(entry):
                del self._entries[session_id]
                entry.evicted = True
                logger.info("Session %s expired", session_id)
                raise NotFoundError("Session not found or expired")
            self._entries.move_to_end(session_id)
            return entry

    def _ensure_alive(self, entry: _Entry, session_id: str) -> None:
        # évincée entre la lecture du registre et la prise du verrou
        if entry.evicted:
            raise NotFoundError("Session not found or expired")
