"""
Configuration management for patch-health-hub
"""
import os
from typing import Optional
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class NCentralConfig:
    """N-central API configuration"""
    base_url: str
    access_token: str
    timeout: int = 30
    max_retries: int = 5
    page_size: int = 100
    max_pages: int = 500


@dataclass
class AppConfig:
    """Application configuration"""
    debug: bool = False
    log_level: str = "INFO"


class Config:
    """Main configuration class"""

    def __init__(self, ncentral: NCentralConfig, app: Optional[AppConfig] = None):
        self.ncentral = ncentral
        self.app = app or AppConfig()

    @classmethod
    def from_env(cls) -> "Config":
        """Build configuration from environment variables"""
        ncentral = NCentralConfig(
            base_url=os.getenv("NCENTRAL_BASE_URL", "").rstrip("/"),
            access_token=os.getenv("NCENTRAL_ACCESS_TOKEN", ""),
            timeout=int(os.getenv("NCENTRAL_TIMEOUT", "30")),
            max_retries=int(os.getenv("NCENTRAL_MAX_RETRIES", "5")),
            page_size=int(os.getenv("NCENTRAL_PAGE_SIZE", "100")),
            max_pages=int(os.getenv("NCENTRAL_MAX_PAGES", "500")),
        )

        app = AppConfig(
            debug=os.getenv("DEBUG", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
        return cls(ncentral=ncentral, app=app)

    def validate(self) -> None:
        """Validate required configuration"""
        if not self.ncentral.base_url:
            raise ValueError("NCENTRAL_BASE_URL is required")

        if not self.ncentral.access_token:
            raise ValueError("NCENTRAL_ACCESS_TOKEN is required")

        if self.ncentral.max_retries < 1:
            raise ValueError("NCENTRAL_MAX_RETRIES must be at least 1")

        if self.ncentral.page_size < 1:
            raise ValueError("NCENTRAL_PAGE_SIZE must be at least 1")


def load_config(env_file: Optional[str] = None) -> Config:
    """
    Load configuration once at startup.

    Values from the optional .env file never override variables that are
    already set in the process environment.
    """
    load_dotenv(env_file)
    return Config.from_env()
