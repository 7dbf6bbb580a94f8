from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./nexus_crm.db"
    debug: bool = False
    log_level: str = "INFO"
    cors_allow_origins: str = "*"

    evolution_webhook_token: Optional[str] = None
    evolution_base_url: Optional[str] = None
    evolution_api_key: Optional[str] = None
    evolution_instance: Optional[str] = None
    gateway_timeout_seconds: float = 15.0

    event_log_capacity: int = 500
    poll_interval_seconds: float = 2.0
    events_source_url: Optional[str] = None

    auto_create_lead: bool = True
    auto_create_task: bool = True
    auto_create_deal: bool = True
    trigger_marketing_automations: bool = True
    automations_seed_path: Optional[str] = None

    redis_url: Optional[str] = None
    dedup_ttl_seconds: int = 86400

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
