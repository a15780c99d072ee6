"""
Persistent per-user question history.

Tracks the last MAX_HISTORY questions a learner has been shown so the
content source can be told which ids to avoid, across play sessions and
across tabs.

Storage: one JSON blob per user behind a KeyValueStore
(key "question_history:<user_id>"):

    {
      "userId": "42",
      "seenQuestionIds": ["addition:3+4", ...],      # most recent first
      "lastSeen": {"addition:3+4": 1718000000.0},
      "questionData": {"addition:3+4": {"id": ..., "signature": ...,
                                        "operationFingerprints": [...],
                                        "lastSeenAt": ...}}
    }

Reads never raise: a missing, corrupt, or foreign (other user's) blob is
treated as an empty history.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from mathquest.services.errors import CorruptPersistedState
from mathquest.services.kv_store import KeyValueStore
from mathquest.utils.question_signature import operation_fingerprints, question_signature

logger = logging.getLogger("mathquest.history_store")

MAX_HISTORY = 500
EXCLUSION_LIST_CAP = 100


@dataclass
class QuestionRecord:
    id: str
    signature: str
    operation_fingerprints: list[str] = field(default_factory=list)
    last_seen_at: float = 0.0

    def to_blob(self) -> dict:
        return {
            "id": self.id,
            "signature": self.signature,
            "operationFingerprints": list(self.operation_fingerprints),
            "lastSeenAt": self.last_seen_at,
        }

    @classmethod
    def from_blob(cls, data) -> "QuestionRecord":
        if not isinstance(data, dict) or "id" not in data:
            raise CorruptPersistedState(f"bad question record: {data!r}")
        fingerprints = data.get("operationFingerprints") or []
        if not isinstance(fingerprints, list):
            raise CorruptPersistedState(f"bad fingerprints for {data.get('id')!r}")
        try:
            last_seen_at = float(data.get("lastSeenAt") or 0.0)
        except (TypeError, ValueError) as exc:
            raise CorruptPersistedState(f"bad lastSeenAt for {data.get('id')!r}") from exc
        return cls(
            id=str(data["id"]),
            signature=str(data.get("signature") or ""),
            operation_fingerprints=[str(f) for f in fingerprints],
            last_seen_at=last_seen_at,
        )


@dataclass
class QuestionHistory:
    user_id: Optional[str]
    seen_question_ids: list[str] = field(default_factory=list)
    last_seen: dict[str, float] = field(default_factory=dict)
    question_data: dict[str, QuestionRecord] = field(default_factory=dict)

    @classmethod
    def empty(cls, user_id: Optional[str]) -> "QuestionHistory":
        return cls(user_id=user_id)

    def __len__(self) -> int:
        return len(self.seen_question_ids)

    def touch(self, record: QuestionRecord, max_history: int) -> list[str]:
        """Upsert *record* at the most-recent slot. Returns evicted ids."""
        if record.id in self.last_seen:
            self.seen_question_ids.remove(record.id)
        self.seen_question_ids.insert(0, record.id)
        self.last_seen[record.id] = record.last_seen_at
        self.question_data[record.id] = record
        return self.trim(max_history)

    def trim(self, max_history: int) -> list[str]:
        evicted: list[str] = []
        while len(self.seen_question_ids) > max_history:
            qid = self.seen_question_ids.pop()
            self.last_seen.pop(qid, None)
            self.question_data.pop(qid, None)
            evicted.append(qid)
        return evicted

    def to_blob(self) -> dict:
        return {
            "userId": self.user_id,
            "seenQuestionIds": list(self.seen_question_ids),
            "lastSeen": dict(self.last_seen),
            "questionData": {qid: rec.to_blob() for qid, rec in self.question_data.items()},
        }

    @classmethod
    def from_blob(cls, data) -> "QuestionHistory":
        if not isinstance(data, dict):
            raise CorruptPersistedState(f"history blob is {type(data).__name__}, not an object")
        ids = data.get("seenQuestionIds", [])
        last_seen = data.get("lastSeen", {})
        question_data = data.get("questionData", {})
        if not isinstance(ids, list) or not isinstance(last_seen, dict) or not isinstance(question_data, dict):
            raise CorruptPersistedState("history blob has wrong field types")

        user_id = data.get("userId")
        history = cls(user_id=str(user_id) if user_id is not None else None)
        for raw_id in ids:
            qid = str(raw_id)
            if qid in history.last_seen:
                continue
            raw_ts = last_seen.get(qid, 0.0)
            try:
                ts = float(raw_ts or 0.0)
            except (TypeError, ValueError) as exc:
                raise CorruptPersistedState(f"bad lastSeen for {qid!r}") from exc
            history.seen_question_ids.append(qid)
            history.last_seen[qid] = ts
            if qid in question_data:
                history.question_data[qid] = QuestionRecord.from_blob(question_data[qid])
        return history


class QuestionHistoryStore:
    """
    Size-bounded, most-recent-first record of questions one user has seen.

    Call load(user_id) before recording. Every record_seen() re-reads the
    persisted blob before writing it back, so several sessions for the same
    user (e.g. two open tabs) interleave with last-write-wins semantics and
    no session can lose more than the other's latest write.

    A store that cannot reach its backend keeps working from memory and
    never writes back a history it could not read.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        max_history: int = MAX_HISTORY,
        exclusion_list_cap: int = EXCLUSION_LIST_CAP,
        clock: Callable[[], float] = time.time,
    ):
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self.kv = kv
        self.max_history = max_history
        self.exclusion_list_cap = exclusion_list_cap
        self._clock = clock
        self._user_id: Optional[str] = None
        self._history = QuestionHistory.empty(None)
        # False while self._history was not built from a successful read
        self._synced = False

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def history(self) -> QuestionHistory:
        return self._history

    @staticmethod
    def _key(user_id: str) -> str:
        return f"question_history:{user_id}"

    def _read(self, user_id: str) -> QuestionHistory:
        """Persisted history for *user_id*. Backend errors propagate; bad data reads as empty."""
        blob = self.kv.get(self._key(user_id))
        if blob is None:
            return QuestionHistory.empty(user_id)

        try:
            history = QuestionHistory.from_blob(blob)
        except CorruptPersistedState as exc:
            logger.warning("[history_store] Corrupt history for user=%s, starting fresh: %s", user_id, exc)
            return QuestionHistory.empty(user_id)

        if history.user_id != user_id:
            logger.warning(
                "[history_store] Discarding history owned by user=%s while loading user=%s",
                history.user_id, user_id,
            )
            return QuestionHistory.empty(user_id)

        history.trim(self.max_history)
        return history

    def load(self, user_id) -> QuestionHistory:
        self._user_id = str(user_id)
        try:
            self._history = self._read(self._user_id)
            self._synced = True
        except Exception as exc:
            logger.warning("[history_store] Failed to read history for user=%s: %s", self._user_id, exc)
            self._history = QuestionHistory.empty(self._user_id)
            self._synced = False
        logger.debug("[history_store] Loaded %d seen question(s) for user=%s", len(self._history), self._user_id)
        return self._history

    def save(self, user_id, history: QuestionHistory) -> None:
        user_id = str(user_id)
        if history.user_id != user_id:
            raise ValueError(f"history belongs to user {history.user_id!r}, not {user_id!r}")
        history.trim(self.max_history)
        self.kv.set(self._key(user_id), history.to_blob())
        if user_id == self._user_id:
            self._history = history
            self._synced = True

    def _require_user(self) -> str:
        if self._user_id is None:
            raise RuntimeError("QuestionHistoryStore.load(user_id) must be called first")
        return self._user_id

    def _persist(self, history: QuestionHistory) -> None:
        self._history = history
        try:
            self.kv.set(self._key(history.user_id), history.to_blob())
        except Exception as exc:
            logger.warning("[history_store] Failed to persist history for user=%s: %s", history.user_id, exc)
            return
        self._synced = True

    def record_seen(self, question) -> QuestionRecord:
        """Upsert *question* at the most-recent position. Safe to repeat."""
        user_id = self._require_user()
        text = question.question_text
        record = QuestionRecord(
            id=str(question.id),
            signature=question_signature(text),
            operation_fingerprints=operation_fingerprints(text),
            last_seen_at=self._clock(),
        )
        try:
            history = self._read(user_id)
        except Exception as exc:
            logger.warning(
                "[history_store] Failed to re-read history for user=%s, using in-memory copy: %s",
                user_id, exc,
            )
            history = self._history
            if not self._synced:
                # never read successfully: writing now would replace the stored history
                history.touch(record, self.max_history)
                return record

        evicted = history.touch(record, self.max_history)
        if evicted:
            logger.debug("[history_store] Evicted %d old question(s) for user=%s", len(evicted), user_id)
        self._persist(history)
        return record

    def is_recently_seen(self, id_or_signature: str) -> bool:
        """True for a seen id, a seen signature, or text sharing an operation with a seen question."""
        key = str(id_or_signature)
        if key in self._history.last_seen:
            return True
        signature = question_signature(key)
        fingerprints = set(operation_fingerprints(key))
        for rec in self._history.question_data.values():
            if rec.signature == signature or fingerprints.intersection(rec.operation_fingerprints):
                return True
        return False

    def build_exclusion_list(self, limit: Optional[int] = None) -> list[str]:
        """Newest *limit* ids, newest first. Truncation always drops the oldest."""
        if limit is None:
            limit = self.exclusion_list_cap
        if limit <= 0:
            return []
        return list(self._history.seen_question_ids[:limit])

    def clear(self) -> None:
        user_id = self._require_user()
        logger.info("[history_store] Clearing question history for user=%s", user_id)
        self._persist(QuestionHistory.empty(user_id))
