"""Configuration management with environment variable validation."""
import os
import sys
import logging
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Config:
    """Centralized configuration with validation."""

    # Database connection explored by the CLI
    DATABASE_URL = os.getenv("DATABASE_URL", "")
    CONNECTION_ID = os.getenv("CONNECTION_ID", "default").strip() or "default"

    # Schema cache (seconds)
    # SCHEMA_CACHE_TTL=0 disables caching (every lookup refetches)
    SCHEMA_CACHE_TTL = float(os.getenv("SCHEMA_CACHE_TTL", "60"))
    # 0 disables the background sweep; expiry is still checked on every lookup
    SCHEMA_CACHE_SWEEP_INTERVAL = float(os.getenv("SCHEMA_CACHE_SWEEP_INTERVAL", "0"))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

    @classmethod
    def validate(cls):
        """Validate all required environment variables are present and correct format."""
        errors = []

        if not cls.DATABASE_URL:
            errors.append("DATABASE_URL is required")
        elif not cls.DATABASE_URL.strip():
            errors.append("DATABASE_URL cannot be empty")

        if ":" in cls.CONNECTION_ID:
            # ":" is the cache key delimiter
            errors.append("CONNECTION_ID must not contain ':'")

        if cls.SCHEMA_CACHE_TTL < 0:
            errors.append("SCHEMA_CACHE_TTL must not be negative")

        if cls.SCHEMA_CACHE_SWEEP_INTERVAL < 0:
            errors.append("SCHEMA_CACHE_SWEEP_INTERVAL must not be negative")

        if cls.LOG_LEVEL not in VALID_LOG_LEVELS:
            errors.append(
                f"LOG_LEVEL must be one of: {', '.join(VALID_LOG_LEVELS)} (got: {cls.LOG_LEVEL})"
            )

        if cls.SCHEMA_CACHE_TTL == 0:
            logger.warning("SCHEMA_CACHE_TTL is 0, metadata will be refetched on every lookup")

        # Report all errors
        if errors:
            logger.error("Configuration validation failed:")
            for error in errors:
                logger.error(f"  - {error}")
            sys.exit(1)

        logger.info("Configuration validated successfully")


# Create singleton instance
config = Config()
