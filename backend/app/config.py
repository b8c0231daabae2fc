import logging

from pydantic_settings import BaseSettings
from typing import List

_logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # App
    APP_NAME: str = "ProductShots"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Redis (page cache backend)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 20

    # Cache
    CACHE_ENABLED: bool = True
    PAGE_CACHE_TTL_SECONDS: int = 86400  # 24 hours

    # Firecrawl page fetch
    FIRECRAWL_API_URL: str = "https://api.firecrawl.dev"
    FIRECRAWL_API_KEY: str = ""
    FIRECRAWL_TIMEOUT: float = 30.0  # seconds

    # LLM (LiteLLM model strings)
    LLM_API_KEY: str = ""
    LINK_FILTER_MODEL: str = "gpt-4.1"
    FALLBACK_EXTRACT_MODEL: str = "gpt-4o-mini"
    DESCRIBE_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT: float = 60.0  # seconds

    # Harvesting
    MAX_SUBPAGES: int = 4
    HARVEST_FORMAT_MODE: str = "permissive"  # "permissive" or "strict"
    FALLBACK_MAX_IMAGES: int = 50
    FALLBACK_MAX_HTML_CHARS: int = 120_000

    # Dedup / quality
    DEDUP_LIMIT: int = 50
    DEDUP_MIN_BYTES: int = 20_000
    DEDUP_HAMMING_THRESHOLD: int = 8
    DEDUP_CONCURRENCY: int = 8
    DEDUP_MAX_BYTES: int = 10 * 1024 * 1024  # larger bodies fall back to a URL fingerprint
    IMAGE_FETCH_TIMEOUT: float = 8.0  # seconds
    MIN_IMAGE_DIMENSION: int = 300  # px
    PROBE_FAILURE_POLICY: str = "keep"  # "keep" or "drop"

    # Enrichment
    ENRICH_MAX_IMAGES: int = 5
    ENRICH_BATCH_SIZE: int = 5

    # Webhooks
    WEBHOOK_MAX_RETRIES: int = 3
    WEBHOOK_TIMEOUT: float = 10.0  # seconds

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2
    SENTRY_ENVIRONMENT: str = "development"

    # Logging
    LOG_FORMAT: str = "json"  # "json" for production, "text" for development
    LOG_LEVEL: str = "INFO"

    # Metrics
    METRICS_ENABLED: bool = True

    def model_post_init(self, __context) -> None:
        if not self.FIRECRAWL_API_KEY:
            _logger.warning(
                "FIRECRAWL_API_KEY not set, page fetches will fail. "
                "Set FIRECRAWL_API_KEY in your .env or environment."
            )
        if self.HARVEST_FORMAT_MODE not in ("permissive", "strict"):
            raise ValueError(
                f"HARVEST_FORMAT_MODE must be 'permissive' or 'strict', "
                f"got {self.HARVEST_FORMAT_MODE!r}"
            )
        if self.PROBE_FAILURE_POLICY not in ("keep", "drop"):
            raise ValueError(
                f"PROBE_FAILURE_POLICY must be 'keep' or 'drop', "
                f"got {self.PROBE_FAILURE_POLICY!r}"
            )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
