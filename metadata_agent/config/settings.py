"""Environment settings and validation."""

import os
from typing import Optional


class Settings:
    """Application settings from environment variables."""

    API_KEY = "METADATA_AGENT_API_KEY"
    ENDPOINT = "METADATA_AGENT_ENDPOINT"
    DATABASE_URL = "DATABASE_URL"
    DATABASE_PROVIDER = "DATABASE_PROVIDER"
    COLLECTION_INTERVAL = "COLLECTION_INTERVAL"
    COLLECTION_METRICS = "COLLECTION_METRICS"
    LOG_LEVEL = "LOG_LEVEL"
    LOG_FORMAT = "LOG_FORMAT"

    @staticmethod
    def get(key: str, default: Optional[str] = None) -> str:
        """
        Get environment variable value.

        Args:
            key: Environment variable name
            default: Default value if not set

        Returns:
            str: Environment variable value, empty when unset
        """
        return os.getenv(key, default) or ""

    @staticmethod
    def validate_required() -> None:
        """
        Validate that all required environment variables are set.

        Raises:
            ValueError: If any required variable is missing
        """
        required_vars = [Settings.API_KEY, Settings.DATABASE_URL]

        missing = [var for var in required_vars if not os.getenv(var)]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")
