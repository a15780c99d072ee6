"""
Where finished placements are recorded.

record_complete must be idempotent: the controller retries it after a
failure, and a retry that lands twice must not double-count progress.
Both sinks key the record on session_id.
"""
from dataclasses import dataclass, asdict
from threading import Lock
from typing import Optional
import logging
import time

logger = logging.getLogger("mathquest.completion_sink")


@dataclass
class CompletionRecord:
    session_id: str
    user_id: str
    operation: str
    final_grade: str
    questions_answered: int
    recorded_at: float = 0.0

    def to_dict(self):
        return asdict(self)


class CompletionSink:
    def record_complete(
        self,
        user_id: str,
        operation: str,
        final_grade: str,
        questions_answered: int,
        *,
        session_id: str,
    ) -> CompletionRecord:
        raise NotImplementedError


class InMemoryCompletionSink(CompletionSink):
    def __init__(self):
        self._data: dict[str, CompletionRecord] = {}
        self._lock = Lock()

    def record_complete(self, user_id, operation, final_grade, questions_answered, *, session_id):
        with self._lock:
            existing = self._data.get(session_id)
            if existing is not None:
                return existing
            record = CompletionRecord(
                session_id=session_id,
                user_id=str(user_id),
                operation=operation,
                final_grade=final_grade,
                questions_answered=questions_answered,
                recorded_at=time.time(),
            )
            self._data[session_id] = record
            return record

    def get(self, session_id: str) -> Optional[CompletionRecord]:
        return self._data.get(session_id)


class SupabaseCompletionSink(CompletionSink):
    def __init__(self, supabase_client, table: str = "placement_results"):
        self.sb = supabase_client
        self.table = table

    def record_complete(self, user_id, operation, final_grade, questions_answered, *, session_id):
        record = CompletionRecord(
            session_id=session_id,
            user_id=str(user_id),
            operation=operation,
            final_grade=final_grade,
            questions_answered=questions_answered,
            recorded_at=time.time(),
        )
        (
            self.sb.table(self.table)
            .upsert(record.to_dict(), on_conflict="session_id")
            .execute()
        )
        return record


COMPLETION_SINK = InMemoryCompletionSink()


def get_completion_sink(settings=None) -> CompletionSink:
    if settings is None:
        from mathquest.core.config import get_settings
        settings = get_settings()

    if (settings.completion_sink or "memory").lower() != "supabase":
        return COMPLETION_SINK

    try:
        from mathquest.core.deps import get_supabase_client
        return SupabaseCompletionSink(get_supabase_client())
    except Exception as exc:
        logger.warning("Supabase completion sink unavailable, using memory: %s", exc)
        return COMPLETION_SINK
