from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_name: str = "MathQuest Placement"
    debug: bool = False

    # Supabase (only needed when a supabase-backed store is selected)
    supabase_url: str = ""
    supabase_service_key: str = ""

    # Question history persistence: memory | file | supabase
    history_store: str = "memory"
    history_file: str = ".mathquest_history.json"

    # Deduplication
    max_history: int = 500
    exclusion_list_cap: int = 100
    max_retries: int = 3
    force_dynamic_threshold: int = 15
    session_seen_size: int = 20

    # Placement
    assessment_batch_size: int = 2
    practice_batch_size: int = 10
    min_grade: str = "K"
    max_grade: str = "6"

    # In-process session registries
    max_finished_sessions: int = 200
    max_practice_sessions: int = 1000

    # Completion records: memory | supabase
    completion_sink: str = "memory"

    # Telemetry
    enable_telemetry_db: bool = False

    # CORS
    frontend_url: str = "http://localhost:5173"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
