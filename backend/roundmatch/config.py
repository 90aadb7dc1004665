# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Application Configuration
All settings are loaded from environment variables with defaults that
mirror the production system parameters. Override via backend/.env or
environment.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ─── Store ───────────────────────────────────────────────────────────────
    store_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "roundmatch:"

    # ─── Matching Engine ─────────────────────────────────────────────────────
    default_group_size: int = 2
    default_matching_type: Literal["across-teams", "within-teams"] = "across-teams"
    # Pair scoring policy: additive, novelty dominates
    score_not_met_before: int = 30
    score_team_rule: int = 20
    score_shared_topic: int = 10
    # Groups scoring below this are not formed; 0 accepts every group
    min_group_score: int = 0
    # A running claim older than this may be taken over by a retry
    matching_claim_ttl_seconds: int = 300

    # ─── Round Timing ────────────────────────────────────────────────────────
    # Round dates/times are organiser wall-clock values at a fixed offset
    round_utc_offset_hours: float = 1.0
    default_round_duration_minutes: int = 10
    default_confirmation_window_minutes: int = 5
    round_grace_minutes: int = 5
    matching_trigger_window_seconds: int = 120
    # Honour ?now= / X-Test-Time overrides on read paths
    enable_time_override: bool = True

    # ─── Logging ─────────────────────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ─── Server ──────────────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8000
    # Organiser and participant frontends
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached singleton Settings instance."""
    return Settings()
