from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from helpdesk.tickets.service import TicketPolicy


class Settings(BaseSettings):
    """Application configuration read from environment variables."""

    model_config = SettingsConfigDict(env_prefix="HELPDESK_", env_file=".env", case_sensitive=False)

    app_name: str = Field(default="Tiered Helpdesk API")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="%(asctime)s %(levelname)s %(name)s [trace_id=%(trace_id)s] %(message)s")

    # Database configuration; an empty URL selects the in-memory store
    database_url: str = Field(default="")

    # Ticket workflow policy
    resolved_is_terminal: bool = Field(default=True)
    strict_criticality_updates: bool = Field(default=False)
    reserve_workflow_statuses: bool = Field(default=True)

    # Observability configuration
    otel_enabled: bool = Field(default=False)
    otel_service_name: str = Field(default="helpdesk-api")
    otel_exporter_otlp_endpoint: str | None = Field(default=None)
    otel_exporter_otlp_headers: str | None = Field(default=None)

    def ticket_policy(self) -> TicketPolicy:
        return TicketPolicy(
            resolved_is_terminal=self.resolved_is_terminal,
            strict_criticality_updates=self.strict_criticality_updates,
            reserve_workflow_statuses=self.reserve_workflow_statuses,
        )


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""

    return Settings()
