from dataclasses import dataclass
import os
import logging
from typing import Optional
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppConfig:
    """
    Main application settings.

    Critical parameters live in one place so they are easy to review,
    override in tests and change later.
    """
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    database_url: str = "sqlite:///./menoguide.db"
    redis_url: Optional[str] = None
    env: str = "dev"  # "dev" or "prod"
    coaching_enabled: bool = True
    signup_progress_key: str = "signupProgress"
    signup_progress_max_age_hours: int = 24
    openai_timeout_ms: int = 20000
    openai_max_retries: int = 3
    openai_retry_base_delay_ms: int = 400  # exponential backoff base
    max_chat_history_chars: int = 8000
    max_live_signup_sessions: int = 1000  # wizards kept in memory, older ones are rebuilt from progress

    @property
    def coaching_available(self) -> bool:
        return self.coaching_enabled and bool(self.openai_api_key and self.openai_api_key.strip())

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Loads the configuration from environment variables.
        The .env file is read first, then the process environment.
        Raises an explicit error when something critical is missing.
        """
        load_dotenv()

        api_key = os.getenv("OPENAI_API_KEY") or None
        model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        database_url = os.getenv("DATABASE_URL", "sqlite:///./menoguide.db")
        redis_url = os.getenv("REDIS_URL") or None

        env = os.getenv("ENV", "dev").lower()
        if env not in ("dev", "prod"):
            logger.warning(f"Invalid ENV '{env}', falling back to 'dev'")
            env = "dev"

        coaching_raw = os.getenv("COACHING_ENABLED", "1").lower()
        coaching_enabled = coaching_raw in ("1", "true", "yes", "y")

        if coaching_enabled and not api_key:
            if env == "prod":
                raise RuntimeError(
                    "ENV=prod with COACHING_ENABLED requires OPENAI_API_KEY. "
                    "Set OPENAI_API_KEY or disable coaching with COACHING_ENABLED=0."
                )
            logger.warning(
                "DEV MODE: OPENAI_API_KEY not set. "
                "Coaching endpoints will answer 503 until a key is configured."
            )

        signup_progress_key = os.getenv("SIGNUP_PROGRESS_KEY", "signupProgress")
        signup_progress_max_age_hours = int(os.getenv("SIGNUP_PROGRESS_MAX_AGE_HOURS", "24"))
        openai_timeout_ms = int(os.getenv("OPENAI_TIMEOUT_MS", "20000"))
        openai_max_retries = int(os.getenv("OPENAI_MAX_RETRIES", "3"))
        openai_retry_base_delay_ms = int(os.getenv("OPENAI_RETRY_BASE_DELAY_MS", "400"))
        max_chat_history_chars = int(os.getenv("MAX_CHAT_HISTORY_CHARS", "8000"))
        max_live_signup_sessions = int(os.getenv("MAX_LIVE_SIGNUP_SESSIONS", "1000"))

        return cls(
            openai_api_key=api_key,
            openai_model=model,
            database_url=database_url,
            redis_url=redis_url,
            env=env,
            coaching_enabled=coaching_enabled,
            signup_progress_key=signup_progress_key,
            signup_progress_max_age_hours=signup_progress_max_age_hours,
            openai_timeout_ms=openai_timeout_ms,
            openai_max_retries=openai_max_retries,
            openai_retry_base_delay_ms=openai_retry_base_delay_ms,
            max_chat_history_chars=max_chat_history_chars,
            max_live_signup_sessions=max_live_signup_sessions,
        )
