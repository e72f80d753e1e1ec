"""Configuration management for the Welloh simulator."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # OpenAI-compatible market/analysis service
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_analysis_model: str = "gpt-4o"
    openai_base_url: str = "https://api.openai.com/v1"

    # Storage
    db_path: str = "welloh.db"
    settings_path: str = "chart_settings.json"

    # Simulation
    starting_cash: str = "100000"
    levels: Optional[str] = None  # "Novice:0,Apprentice:110000,..."

    # Bootstrap admin account (optional)
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

    # Cache TTLs (seconds)
    market_data_cache_ttl: int = 600  # 10 minutes
    quote_cache_ttl: int = 15
    cache_cleanup_interval: int = 300

    # Network settings
    http_timeout: int = 30
    max_concurrent_requests: int = 5
    max_retries: int = 3
    retry_backoff_factor: float = 0.5

    # Web API
    web_api_token: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8000
    session_ttl: int = 3600  # idle seconds before a bearer token expires

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY", "").strip() or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini",
            openai_analysis_model=os.getenv("OPENAI_ANALYSIS_MODEL", "gpt-4o").strip() or "gpt-4o",
            openai_base_url=(
                os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").strip().rstrip("/")
                or "https://api.openai.com/v1"
            ),
            db_path=os.getenv("WELLOH_DB_PATH", "welloh.db"),
            settings_path=os.getenv("WELLOH_SETTINGS_PATH", "chart_settings.json"),
            starting_cash=os.getenv("STARTING_CASH", "100000").strip() or "100000",
            levels=os.getenv("WELLOH_LEVELS", "").strip() or None,
            admin_email=os.getenv("WELLOH_ADMIN_EMAIL", "").strip() or None,
            admin_password=os.getenv("WELLOH_ADMIN_PASSWORD", "").strip() or None,
            market_data_cache_ttl=int(os.getenv("MARKET_DATA_CACHE_TTL", "600")),
            quote_cache_ttl=int(os.getenv("QUOTE_CACHE_TTL", "15")),
            cache_cleanup_interval=int(os.getenv("CACHE_CLEANUP_INTERVAL", "300")),
            http_timeout=int(os.getenv("HTTP_TIMEOUT", "30")),
            max_concurrent_requests=int(os.getenv("MAX_CONCURRENT_REQUESTS", "5")),
            max_retries=int(os.getenv("MAX_RETRIES", "3")),
            retry_backoff_factor=float(os.getenv("RETRY_BACKOFF_FACTOR", "0.5")),
            web_api_token=os.getenv("WEB_API_TOKEN", "").strip() or None,
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            session_ttl=int(os.getenv("SESSION_TTL", "3600")),
        )


# Page identifiers carried in the URL fragment
PAGE_LANDING = "landing"
PAGE_LOGIN = "login"
PAGE_SIGNUP = "signup"
PAGE_SIMULATION = "simulation"
PAGE_ANALYSIS = "analysis"
PAGE_STRATEGY = "strategy"
PAGE_EDUCATION = "education"
PAGE_TENDERS = "tenders"
PAGE_LEADERBOARD = "leaderboard"
PAGE_ADMIN = "admin"
PAGE_PROFILE = "profile"

# Analysis history retention per user
HISTORY_LIMIT = 20
