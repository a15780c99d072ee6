import logging
from functools import lru_cache
from typing import Optional
from supabase import create_client, Client
from mathquest.core.config import Settings, get_settings
from mathquest.services.completion_sink import get_completion_sink
from mathquest.services.content_source import ContentFetcher, MathFactsContentFetcher
from mathquest.services.dedup_gate import DeduplicationGate
from mathquest.services.history_store import QuestionHistoryStore
from mathquest.services.kv_store import get_key_value_store
from mathquest.services.placement_controller import GradePlacementController

logger = logging.getLogger("mathquest.deps")


@lru_cache
def get_supabase_client() -> Client:
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_service_key:
        raise RuntimeError("Supabase env vars missing")
    return create_client(settings.supabase_url, settings.supabase_service_key)


@lru_cache
def get_content_fetcher() -> ContentFetcher:
    return MathFactsContentFetcher()


def build_history_store(user_id, settings: Optional[Settings] = None) -> QuestionHistoryStore:
    """QuestionHistoryStore already loaded for *user_id*."""
    if settings is None:
        settings = get_settings()
    store = QuestionHistoryStore(
        get_key_value_store(settings),
        max_history=settings.max_history,
        exclusion_list_cap=settings.exclusion_list_cap,
    )
    store.load(user_id)
    return store


def build_dedup_gate(
    user_id,
    settings: Optional[Settings] = None,
    fetcher: Optional[ContentFetcher] = None,
) -> DeduplicationGate:
    """One gate per play session: its seen-set and retry counter are session-scoped."""
    if settings is None:
        settings = get_settings()
    return DeduplicationGate(
        fetcher or get_content_fetcher(),
        build_history_store(user_id, settings),
        max_retries=settings.max_retries,
        force_dynamic_threshold=settings.force_dynamic_threshold,
        session_seen_size=settings.session_seen_size,
        exclusion_list_cap=settings.exclusion_list_cap,
    )


def build_placement_controller(
    user_id,
    settings: Optional[Settings] = None,
    fetcher: Optional[ContentFetcher] = None,
) -> GradePlacementController:
    if settings is None:
        settings = get_settings()
    return GradePlacementController(
        build_dedup_gate(user_id, settings, fetcher),
        completion_sink=get_completion_sink(settings),
        batch_size=settings.assessment_batch_size,
        min_grade=settings.min_grade,
        max_grade=settings.max_grade,
    )
