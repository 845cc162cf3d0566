from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.catalog import DEFAULT_CAREERS_FILE, DEFAULT_NORMS_FILE, DEFAULT_QUESTIONS_FILE
from .core.engine import EnginePolicy


class Settings(BaseSettings):
    """Application configuration with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Server settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    RELOAD: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Data paths (packaged JSON by default)
    QUESTIONS_FILE: str = str(DEFAULT_QUESTIONS_FILE)
    NORMS_FILE: str = str(DEFAULT_NORMS_FILE)
    CAREERS_FILE: str = str(DEFAULT_CAREERS_FILE)

    # Session lifecycle
    INACTIVITY_TIMEOUT_HOURS: float = 24.0
    ABANDONED_RETENTION_HOURS: float = 168.0
    SWEEP_INTERVAL_SECONDS: float = 300.0
    ALLOW_SESSION_REPLACE: bool = True
    RETAKE_COOLDOWN_DAYS: float = 7.0
    MAX_COMPLETED_ASSESSMENTS: int = 3

    # Mirror question
    MIRROR_MIN_ANSWERS: int = 20
    MIRROR_OPTION_COUNT: int = 5

    # Scoring and matching
    CODE_LENGTH: int = 3
    Z_SCORE_CAP: float = 3.5
    MATCH_LIMIT: int = 10
    STORED_MATCH_LIMIT: int = 5
    TIER_BEST_FIT: int = 85
    TIER_GREAT_FIT: int = 70
    TIER_GOOD_FIT: int = 50

    # Participant rate limiting
    RATE_LIMIT_MAX_REQUESTS: int = 30
    RATE_LIMIT_WINDOW_SECONDS: float = 60.0

    # CORS settings
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "*"
    ]

    def engine_policy(self) -> EnginePolicy:
        return EnginePolicy(
            inactivity_timeout_hours=self.INACTIVITY_TIMEOUT_HOURS,
            abandoned_retention_hours=self.ABANDONED_RETENTION_HOURS,
            allow_session_replace=self.ALLOW_SESSION_REPLACE,
            retake_cooldown_days=self.RETAKE_COOLDOWN_DAYS,
            max_completed_assessments=self.MAX_COMPLETED_ASSESSMENTS,
            mirror_min_answers=self.MIRROR_MIN_ANSWERS,
            mirror_option_count=self.MIRROR_OPTION_COUNT,
            code_length=self.CODE_LENGTH,
            match_limit=self.MATCH_LIMIT,
            stored_match_limit=self.STORED_MATCH_LIMIT,
            tier_best_fit=self.TIER_BEST_FIT,
            tier_great_fit=self.TIER_GREAT_FIT,
            tier_good_fit=self.TIER_GOOD_FIT,
            z_score_cap=self.Z_SCORE_CAP,
        )


settings = Settings()
