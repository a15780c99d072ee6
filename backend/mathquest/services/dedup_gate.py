"""
Deduplication gate in front of a ContentFetcher.

Two layers keep a learner from seeing the same fact twice:

  1. The long-lived QuestionHistoryStore, whose newest ids are sent to the
     content source as an exclusion list.
  2. A short-lived SessionSeenSet for one play session. The exclusion list
     is capped, so the content source may still hand back something the
     learner saw a minute ago; the seen-set catches that locally.

A duplicate that slips through is rejected and the request re-issued, up
to max_retries times in a row. When the budget is spent the duplicate is
accepted: an exhausted pool must never block a session.
"""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, Optional

from mathquest.models.placement import Question
from mathquest.services.content_source import ContentFetcher
from mathquest.services.errors import ContentUnavailable, StaleSessionWrite
from mathquest.services.history_store import QuestionHistoryStore
from mathquest.services.telemetry import emit_event
from mathquest.utils.question_signature import operation_fingerprints, question_signature

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_FORCE_DYNAMIC_THRESHOLD = 15
DEFAULT_SESSION_SEEN_SIZE = 20


@dataclass
class FetchRequest:
    operation: str
    grade: str
    batch_size: int = 1
    force_dynamic: bool = False


class SessionSeenSet:
    """
    Bounded FIFO of questions served in one play session.

    Each entry keeps the question's signature and operation fingerprints,
    so a question that comes back under a new id ("What is 4 + 3?" after
    "3 + 4 = ?") still counts as seen.
    """

    def __init__(self, max_size: int = DEFAULT_SESSION_SEEN_SIZE):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._entries: OrderedDict[str, tuple[str, frozenset[str]]] = OrderedDict()

    def add(self, question: Question) -> None:
        text = question.question_text
        self._entries.pop(question.id, None)
        self._entries[question.id] = (question_signature(text), frozenset(operation_fingerprints(text)))
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def contains(self, question: Question) -> bool:
        if question.id in self._entries:
            return True
        signature = question_signature(question.question_text)
        fingerprints = set(operation_fingerprints(question.question_text))
        for seen_signature, seen_fingerprints in self._entries.values():
            if seen_signature == signature or fingerprints & seen_fingerprints:
                return True
        return False

    def ids(self) -> list[str]:
        """Newest first."""
        return list(reversed(self._entries))

    def __contains__(self, question_id: str) -> bool:
        return question_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class DeduplicationGate:
    def __init__(
        self,
        fetcher: ContentFetcher,
        history: QuestionHistoryStore,
        max_retries: int = DEFAULT_MAX_RETRIES,
        force_dynamic_threshold: int = DEFAULT_FORCE_DYNAMIC_THRESHOLD,
        session_seen_size: int = DEFAULT_SESSION_SEEN_SIZE,
        exclusion_list_cap: Optional[int] = None,
    ):
        self.fetcher = fetcher
        self.history = history
        self.max_retries = max_retries
        self.force_dynamic_threshold = force_dynamic_threshold
        self.exclusion_list_cap = exclusion_list_cap
        self.seen = SessionSeenSet(session_seen_size)
        self.retry_count = 0
        self.served_count = 0

    def exclusion_list(self, extra: Iterable[str] = ()) -> list[str]:
        """Batch-local ids, then session ids, then persisted history; no repeats."""
        out: list[str] = []
        included: set[str] = set()
        for qid in (*extra, *self.seen.ids(), *self.history.build_exclusion_list(self.exclusion_list_cap)):
            if qid not in included:
                included.add(qid)
                out.append(qid)
        return out

    def _is_duplicate(self, question: Question, accepted: list[Question]) -> bool:
        if self.seen.contains(question):
            return True
        return any(q.id == question.id for q in accepted)

    def _accept(self, question: Question) -> None:
        self.retry_count = 0
        self.served_count += 1
        self.seen.add(question)
        self.history.record_seen(question)

    async def _call_fetcher(
        self,
        request: FetchRequest,
        exclude: list[str],
        force_dynamic: bool,
        count: int,
        cancel_event: Optional[asyncio.Event],
    ) -> list[Question]:
        coro = self.fetcher.fetch(request.operation, request.grade, exclude, force_dynamic, count)
        if cancel_event is None:
            return await coro

        fetch_task = asyncio.ensure_future(coro)
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({fetch_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            fetch_task.cancel()
            raise
        finally:
            cancel_task.cancel()

        if fetch_task in done and not cancel_event.is_set():
            return fetch_task.result()
        if fetch_task.done():
            if not fetch_task.cancelled() and fetch_task.exception() is not None:
                logger.debug("[dedup_gate] Dropping error from stale fetch: %r", fetch_task.exception())
        else:
            fetch_task.cancel()
        raise StaleSessionWrite(f"fetch for {request.operation} grade={request.grade} cancelled")

    async def fetch(self, request: FetchRequest, cancel_event: Optional[asyncio.Event] = None) -> list[Question]:
        """
        Fetch *request.batch_size* questions, filtering session duplicates.

        Raises ContentUnavailable when the source returns nothing, and
        StaleSessionWrite when *cancel_event* fires before a response lands
        (nothing from that response is recorded).
        """
        accepted: list[Question] = []

        while len(accepted) < request.batch_size:
            if cancel_event is not None and cancel_event.is_set():
                raise StaleSessionWrite(f"fetch for {request.operation} grade={request.grade} cancelled")

            force_dynamic = (
                request.force_dynamic
                or self.served_count > self.force_dynamic_threshold
            )
            exclude = self.exclusion_list(extra=[q.id for q in accepted])
            questions = await self._call_fetcher(
                request, exclude, force_dynamic, request.batch_size - len(accepted), cancel_event,
            )
            if not questions:
                raise ContentUnavailable(request.operation, request.grade)

            for question in questions:
                if len(accepted) >= request.batch_size:
                    break
                if self._is_duplicate(question, accepted):
                    if self.retry_count < self.max_retries:
                        self.retry_count += 1
                        logger.debug(
                            "[dedup_gate] Duplicate %s (retry %d/%d)",
                            question.id, self.retry_count, self.max_retries,
                        )
                        continue
                    logger.info(
                        "[dedup_gate] Retry budget spent for %s grade=%s; accepting duplicate %s",
                        request.operation, request.grade, question.id,
                    )
                    emit_event("duplicate_accepted", route="dedup_gate", version="v1",
                               topic=request.operation, error_type="DuplicateExhausted")
                self._accept(question)
                accepted.append(question)

        return accepted
