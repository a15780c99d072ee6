"""
In-process registries for play sessions.

SessionRegistry holds live placement controllers, keyed by session id.
There is at most one live assessment per (user, operation): registering a
new one cancels the previous controller, so a fetch that was still in
flight for the old session is discarded instead of applied. Finished
sessions stay readable for a while (so a client can fetch the verdict or
retry the completion record) and are dropped oldest-first once more than
max_finished of them are held.

PracticeSessionRegistry holds one DeduplicationGate per practice session,
so the session seen-set, retry budget and served count carry over from
one batch request to the next.
"""
import logging
import uuid
from collections import OrderedDict
from threading import Lock
from typing import Callable, Optional

from mathquest.services.dedup_gate import DeduplicationGate
from mathquest.services.placement_controller import GradePlacementController

logger = logging.getLogger(__name__)

DEFAULT_MAX_FINISHED = 200
DEFAULT_MAX_PRACTICE_SESSIONS = 1000


class SessionRegistry:
    def __init__(self, max_finished: int = DEFAULT_MAX_FINISHED):
        self.max_finished = max_finished
        self._by_id: dict[str, GradePlacementController] = {}
        self._live: dict[tuple[str, str], str] = {}
        self._lock = Lock()

    def register(self, controller: GradePlacementController) -> None:
        session = controller.session
        if session is None:
            raise ValueError("controller has no session; call start() first")
        key = (session.user_id, session.operation)
        with self._lock:
            previous_id = self._live.get(key)
            previous = self._by_id.get(previous_id) if previous_id else None
            self._by_id[session.session_id] = controller
            self._live[key] = session.session_id
        if previous is not None and previous is not controller:
            logger.info(
                "[session_registry] Superseding session=%s for user=%s %s",
                previous_id, session.user_id, session.operation,
            )
            previous.cancel()
        self.prune()

    def get(self, session_id: str) -> Optional[GradePlacementController]:
        with self._lock:
            return self._by_id.get(session_id)

    def _drop(self, session_id: str) -> None:
        controller = self._by_id.pop(session_id, None)
        if controller is None or controller.session is None:
            return
        key = (controller.session.user_id, controller.session.operation)
        if self._live.get(key) == session_id:
            del self._live[key]

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._drop(session_id)

    def prune(self) -> int:
        """Drop the oldest finished sessions beyond max_finished. Returns how many were dropped."""
        with self._lock:
            finished = [
                sid for sid, c in self._by_id.items()
                if c.session is None or c.session.is_terminal
            ]
            excess = finished[:max(0, len(finished) - self.max_finished)]
            for sid in excess:
                self._drop(sid)
        if excess:
            logger.debug("[session_registry] Dropped %d finished session(s)", len(excess))
        return len(excess)

    def __len__(self) -> int:
        return len(self._by_id)


class PracticeSessionRegistry:
    """LRU of practice gates keyed by session id. Each gate belongs to one user."""

    def __init__(self, max_sessions: int = DEFAULT_MAX_PRACTICE_SESSIONS):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.max_sessions = max_sessions
        self._gates: OrderedDict[str, tuple[str, DeduplicationGate]] = OrderedDict()
        self._lock = Lock()

    def get_or_create(
        self,
        user_id: str,
        session_id: Optional[str],
        factory: Callable[[], DeduplicationGate],
    ) -> tuple[str, DeduplicationGate]:
        """
        Gate for (*user_id*, *session_id*). A missing or unknown session id
        starts a new session; an id owned by another user is never reused.
        """
        user_id = str(user_id)
        with self._lock:
            entry = self._gates.get(session_id) if session_id else None
            if entry is not None and entry[0] == user_id:
                self._gates.move_to_end(session_id)
                return session_id, entry[1]
            if entry is not None:
                logger.warning(
                    "[session_registry] Practice session=%s belongs to another user; starting a new one",
                    session_id,
                )
                session_id = None

        gate = factory()
        session_id = session_id or uuid.uuid4().hex
        with self._lock:
            self._gates[session_id] = (user_id, gate)
            while len(self._gates) > self.max_sessions:
                self._gates.popitem(last=False)
        return session_id, gate

    def discard_user(self, user_id: str) -> None:
        user_id = str(user_id)
        with self._lock:
            for sid in [sid for sid, (owner, _) in self._gates.items() if owner == user_id]:
                del self._gates[sid]

    def __len__(self) -> int:
        return len(self._gates)


_REGISTRY: Optional[SessionRegistry] = None
_PRACTICE_REGISTRY: Optional[PracticeSessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    """Return the module-level singleton."""
    global _REGISTRY
    if _REGISTRY is None:
        from mathquest.core.config import get_settings
        _REGISTRY = SessionRegistry(max_finished=get_settings().max_finished_sessions)
    return _REGISTRY


def get_practice_registry() -> PracticeSessionRegistry:
    """Return the module-level singleton."""
    global _PRACTICE_REGISTRY
    if _PRACTICE_REGISTRY is None:
        from mathquest.core.config import get_settings
        _PRACTICE_REGISTRY = PracticeSessionRegistry(max_sessions=get_settings().max_practice_sessions)
    return _PRACTICE_REGISTRY
