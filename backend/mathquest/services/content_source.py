"""
Content sources for placement and practice.

A ContentFetcher is the only place questions come from. The engine treats
it as opaque: it is told which grade and operation to serve, which ids to
avoid, and whether fresh (dynamically generated) content is preferred.

MathFactsContentFetcher is the built-in source. It generates facts
deterministically from the skill registry, so ids are stable per fact
("addition:3+4") and repeat naturally once a grade's pool is small.
"""
from __future__ import annotations

import logging
import random
from typing import Optional

from mathquest.models.placement import Question
from mathquest.services.errors import ContentUnavailable
from mathquest.skills.registry import SKILL_REGISTRY

logger = logging.getLogger(__name__)

# Draws allowed per requested question before falling back to excluded facts.
_MAX_DRAWS_PER_QUESTION = 25


class ContentFetcher:
    async def fetch(
        self,
        operation: str,
        grade: str,
        exclude_ids: list[str],
        force_dynamic: bool = False,
        batch_size: int = 1,
    ) -> list[Question]:
        """
        Return up to *batch_size* questions. May return fewer; never returns
        the same id twice in one response.
        """
        raise NotImplementedError


class MathFactsContentFetcher(ContentFetcher):
    def __init__(self, rng: Optional[random.Random] = None, registry: Optional[dict] = None):
        self.rng = rng or random.Random()
        self.registry = registry if registry is not None else SKILL_REGISTRY

    async def fetch(
        self,
        operation: str,
        grade: str,
        exclude_ids: list[str],
        force_dynamic: bool = False,
        batch_size: int = 1,
    ) -> list[Question]:
        contract = self.registry.get(operation)
        if contract is None:
            raise ContentUnavailable(operation, grade, "unknown operation")

        source = "dynamic" if force_dynamic else "static"
        excluded = set(exclude_ids or [])
        picked: list[Question] = []
        picked_ids: set[str] = set()
        fallback: list[Question] = []

        budget = max(1, batch_size) * _MAX_DRAWS_PER_QUESTION
        for _ in range(budget):
            if len(picked) >= batch_size:
                break
            q = contract.build_question(self.rng, grade, source=source)
            if q.id in picked_ids:
                continue
            if q.id in excluded:
                if all(f.id != q.id for f in fallback):
                    fallback.append(q)
                continue
            picked.append(q)
            picked_ids.add(q.id)

        # Small pools (e.g. kindergarten facts) run out of unseen ids; serve
        # repeats rather than nothing and let the caller decide.
        while len(picked) < batch_size and fallback:
            q = fallback.pop(0)
            picked.append(q)
            picked_ids.add(q.id)

        if len(picked) < batch_size:
            logger.info(
                "[content_source] Short response for %s grade=%s: %d/%d",
                operation, grade, len(picked), batch_size,
            )
        logger.debug(
            "[content_source] Served %d %s question(s) for %s grade=%s (excluded=%d)",
            len(picked), source, operation, grade, len(excluded),
        )
        return picked
