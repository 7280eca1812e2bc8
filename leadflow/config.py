"""Leadflow configuration via pydantic-settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class LeadflowSettings(BaseSettings):
    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///leadflow.db"
    echo_sql: bool = False
    app_title: str = "Leadflow"
    security_fail_closed: bool = False

    # Periodic invoker
    scheduler_enabled: bool = True
    scheduler_interval_seconds: float = 60.0
    scheduler_batch_size: int = 10
    scheduler_time_budget_seconds: float = 50.0
    cron_secret: str = ""

    # Trigger source (pipeline / appointment subsystems)
    event_api_key: str = ""
    event_signing_secret: str = ""
    event_signature_ttl_seconds: int = 300

    # Reply generation and rule judgment
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    judgment_timeout_seconds: float = 15.0
    generation_timeout_seconds: float = 20.0
    conversation_context_turns: int = 10

    # Messenger delivery
    messenger_page_access_token: str = ""
    messenger_api_base: str = "https://graph.facebook.com/v21.0"
    messenger_timeout_seconds: float = 30.0
    messenger_tag: str = "ACCOUNT_UPDATE"

    model_config = {"env_prefix": "LF_", "env_file": ".env", "extra": "ignore"}

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}


settings = LeadflowSettings()
