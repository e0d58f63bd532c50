from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EVENT_SOURCE_URLS = [
    "https://www.visitloudoun.org/events/",
    "https://www.fxva.com/events/",
    "https://www.virginia.org/events/",
    "https://www.visitpwc.com/events/",
    "https://www.visitfauquier.com/all-events/",
    "https://northernvirginiamag.com/events/",
    "https://www.discoverclarkecounty.com/events/",
]


class ConfigurationError(RuntimeError):
    """Raised when a required deployment setting is missing."""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = "cellar"
    environment: str = Field(default="local", validation_alias=AliasChoices("ENVIRONMENT", "CELLAR_ENVIRONMENT"))
    database_url: str | None = Field(default=None, validation_alias=AliasChoices("DATABASE_URL", "CELLAR_DATABASE_URL"))
    openai_api_key: str | None = Field(default=None, validation_alias=AliasChoices("OPENAI_API_KEY", "CELLAR_OPENAI_API_KEY"))
    openai_model: str = Field(default="gpt-4", validation_alias=AliasChoices("OPENAI_MODEL", "CELLAR_OPENAI_MODEL"))
    apify_token: str | None = Field(default=None, validation_alias=AliasChoices("APIFY_TOKEN", "CELLAR_APIFY_TOKEN"))
    apify_actor: str = Field(default="apify/web-scraper", validation_alias=AliasChoices("APIFY_ACTOR", "CELLAR_APIFY_ACTOR"))
    apify_timeout_sec: int = Field(default=300, validation_alias=AliasChoices("APIFY_TIMEOUT_SEC", "CELLAR_APIFY_TIMEOUT_SEC"))
    discovery_mode: str = Field(default="direct", validation_alias=AliasChoices("DISCOVERY_MODE", "CELLAR_DISCOVERY_MODE"))
    event_source_urls: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EVENT_SOURCE_URLS),
        validation_alias=AliasChoices("EVENT_SOURCE_URLS", "CELLAR_EVENT_SOURCE_URLS"),
    )
    fetch_timeout_sec: float = Field(default=15.0, validation_alias=AliasChoices("FETCH_TIMEOUT_SEC", "CELLAR_FETCH_TIMEOUT_SEC"))
    max_source_chars: int = Field(default=8000, validation_alias=AliasChoices("MAX_SOURCE_CHARS", "CELLAR_MAX_SOURCE_CHARS"))
    push_batch_limit: int = Field(default=50, validation_alias=AliasChoices("PUSH_BATCH_LIMIT", "CELLAR_PUSH_BATCH_LIMIT"))
    relevance_threshold: int = Field(default=6, validation_alias=AliasChoices("RELEVANCE_THRESHOLD", "CELLAR_RELEVANCE_THRESHOLD"))
    location_filter_enabled: bool = Field(default=True, validation_alias=AliasChoices("LOCATION_FILTER_ENABLED", "CELLAR_LOCATION_FILTER_ENABLED"))
    demo_fallback_on_llm_error: bool = Field(default=False, validation_alias=AliasChoices("DEMO_FALLBACK_ON_LLM_ERROR", "CELLAR_DEMO_FALLBACK_ON_LLM_ERROR"))
    pipeline_iteration_delay_ms: int = Field(default=100, validation_alias=AliasChoices("PIPELINE_ITERATION_DELAY_MS", "CELLAR_PIPELINE_ITERATION_DELAY_MS"))
    llm_timeout_sec: float = Field(default=120.0, validation_alias=AliasChoices("LLM_TIMEOUT_SEC", "CELLAR_LLM_TIMEOUT_SEC"))
    wordpress_timeout_sec: float = Field(default=20.0, validation_alias=AliasChoices("WORDPRESS_TIMEOUT_SEC", "CELLAR_WORDPRESS_TIMEOUT_SEC"))
    scheduler_enabled: bool = Field(default=False, validation_alias=AliasChoices("SCHEDULER_ENABLED", "CELLAR_SCHEDULER_ENABLED"))
    scan_schedule_day_of_week: str = Field(default="mon", validation_alias=AliasChoices("SCAN_SCHEDULE_DAY_OF_WEEK", "CELLAR_SCAN_SCHEDULE_DAY_OF_WEEK"))
    scan_schedule_hour: int = Field(default=9, validation_alias=AliasChoices("SCAN_SCHEDULE_HOUR", "CELLAR_SCAN_SCHEDULE_HOUR"))
    scan_schedule_timezone: str = Field(default="America/New_York", validation_alias=AliasChoices("SCAN_SCHEDULE_TIMEZONE", "CELLAR_SCAN_SCHEDULE_TIMEZONE"))

    @property
    def async_database_url(self) -> str:
        if not self.database_url:
            raise ConfigurationError("DATABASE_URL is not set; the content store cannot be reached")
        if self.database_url.startswith("postgresql+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if self.database_url.startswith("postgres://"):
            return self.database_url.replace("postgres://", "postgresql+asyncpg://", 1)
        return self.database_url

    @property
    def llm_enabled(self) -> bool:
        return bool(self.openai_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
