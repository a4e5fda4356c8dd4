"""Core configuration for the V4 compatibility engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="V4COMPAT_",
        case_sensitive=False,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "V4 Compatibility Engine"
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # ── Target network ───────────────────────────────────────────────────
    rpc_url: str = "http://127.0.0.1:8545"
    tester_address: str = ""  # REQUIRED for RPC runs — set V4COMPAT_TESTER_ADDRESS
    sender_address: str = ""  # defaults to the node's first account
    private_key: str = ""  # optional; signs locally instead of eth_sendTransaction

    # ── Phase deadlines (seconds) ────────────────────────────────────────
    dry_run_timeout_seconds: float = 15.0
    estimate_timeout_seconds: float = 10.0
    commit_timeout_seconds: float = 45.0
    extended_commit_timeout_seconds: float = 60.0
    soft_warning_seconds: float = 30.0

    # ── Report ───────────────────────────────────────────────────────────
    results_path: str = "v4-compatibility-results.json"


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
