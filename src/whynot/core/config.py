"""
whynot Configuration

Environment-driven settings shared by the spider and the web server.
Runtime parameters coming from the command line (data directory, proxy,
listening address) are passed explicitly and are not read from here.
"""

import os
from enum import Enum


class Environment(str, Enum):
    """Application environment"""

    PRODUCTION = "production"
    DEVELOPMENT = "development"
    TEST = "test"


def _get_environment() -> Environment:
    """Get and validate ENVIRONMENT variable."""
    env_value = os.getenv("ENVIRONMENT", Environment.PRODUCTION.value)
    try:
        return Environment(env_value.lower())
    except ValueError:
        raise RuntimeError(
            f"Invalid ENVIRONMENT value: '{env_value}'. "
            "Must be 'production', 'development', or 'test'."
        )


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _get_list(name: str, default: str) -> list[str]:
    return [s.strip() for s in os.getenv(name, default).split() if s.strip()]


class Settings:
    """whynot configuration"""

    # Application
    APP_NAME: str = "whynot"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Environment = _get_environment()

    # Paths
    DATA_DIR: str = os.getenv("WHYNOT_DATA_DIR", "whynot_data")

    # Logging
    LOG_LEVEL: str = os.getenv("WHYNOT_LOG_LEVEL", "INFO")

    # Target site
    SITE_URL: str = os.getenv("WHYNOT_SITE_URL", "https://www.wainao.me")
    SEEDS: list[str] = _get_list(
        "WHYNOT_SEEDS", "/wainao-reads /english /wainao-watches"
    )
    ASSET_HOSTS: list[str] = _get_list(
        "WHYNOT_ASSET_HOSTS", "cloudfront-us-east-1.images.arcpublishing.com"
    )
    RULES_FILE: str | None = os.getenv("WHYNOT_RULES_FILE")

    # Crawler Behavior
    CRAWL_USER_AGENT: str = os.getenv("CRAWL_USER_AGENT", "whynot-spider/0.1")
    CRAWL_TIMEOUT_SEC: int = int(os.getenv("CRAWL_TIMEOUT_SEC", "30"))
    CRAWL_MAX_ATTEMPTS: int = int(os.getenv("CRAWL_MAX_ATTEMPTS", "3"))
    CRAWL_BACKOFF_BASE_SEC: float = float(os.getenv("CRAWL_BACKOFF_BASE_SEC", "1.0"))
    CRAWL_BACKOFF_MAX_SEC: float = float(os.getenv("CRAWL_BACKOFF_MAX_SEC", "30.0"))
    CRAWL_WORKERS: int = int(os.getenv("CRAWL_WORKERS", "4"))
    CRAWL_DOMAIN_MIN_INTERVAL: float = float(
        os.getenv("CRAWL_DOMAIN_MIN_INTERVAL", "1.0")
    )
    CRAWL_DOMAIN_MAX_CONCURRENT: int = int(
        os.getenv("CRAWL_DOMAIN_MAX_CONCURRENT", "1")
    )
    CRAWL_MAX_RESPONSE_BYTES: int = int(
        os.getenv("CRAWL_MAX_RESPONSE_BYTES", str(10 * 1024 * 1024))
    )
    # false accepts invalid certificates
    CRAWL_VERIFY_TLS: bool = _get_bool("CRAWL_VERIFY_TLS", True)

    # Web Server
    WEB_ADDR: str = os.getenv("WEB_ADDR", "127.0.0.1:3334")
    WEB_PAGE_SIZE: int = int(os.getenv("WEB_PAGE_SIZE", "20"))
    WEB_BLOB_CACHE_SIZE: int = int(os.getenv("WEB_BLOB_CACHE_SIZE", "1024"))


settings = Settings()
