"""Application configuration management."""

import json
from typing import Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.debug and self.log_level.upper() != "TRACE":
            self.log_level = "DEBUG"

    # Storage
    database_url: str = "sqlite:///./boardsync.db"
    storage_backend: str = "sql"  # 'sql' or 'memory'
    storage_file: Optional[str] = None  # JSON persistence for the memory backend

    # CORS
    cors_origins: str = "http://localhost:5173"

    # Application
    debug: bool = False
    log_level: str = "INFO"
    api_v1_str: str = "/api/v1"

    # Task board (Asana)
    asana_base_url: str = "https://app.asana.com/api/1.0"
    asana_token: str = ""
    asana_project_id: str = ""

    # Issue tracker (YouTrack)
    youtrack_base_url: str = ""
    youtrack_token: str = ""
    youtrack_project_id: str = ""

    # Single-tenant scope used by the HTTP layer and the schedulers
    sync_user_id: int = 1
    sync_actor: str = "system"

    # Sync
    auto_sync_interval_seconds: int = 15
    auto_create_interval_seconds: int = 15
    sync_max_concurrency: int = 5
    http_timeout_seconds: float = 30.0

    # Rollback
    snapshot_retention_days: int = 30
    snapshot_cleanup_hours: int = 24

    # Mapping overrides (JSON objects); empty means built-in defaults
    column_mappings_json: str = ""
    tag_mappings_json: str = ""
    findings_columns: str = "findings"
    alert_states: str = ""

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def findings_columns_list(self) -> List[str]:
        return [c.strip().lower() for c in self.findings_columns.split(",") if c.strip()]

    @property
    def alert_states_list(self) -> List[str]:
        return [s.strip() for s in self.alert_states.split(",") if s.strip()]

    @property
    def column_mappings(self) -> Optional[Dict[str, str]]:
        """Column -> state overrides. A value of "DISPLAY_ONLY" marks a display-only column."""
        if not self.column_mappings_json:
            return None
        return json.loads(self.column_mappings_json)

    @property
    def tag_mappings(self) -> Optional[Dict[str, str]]:
        if not self.tag_mappings_json:
            return None
        return json.loads(self.tag_mappings_json)


# Global settings instance
settings = Settings()
