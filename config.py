import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        smtp_host: Optional[str],
        smtp_port: int,
        smtp_username: Optional[str],
        smtp_password: Optional[str],
        smtp_starttls: bool,
        mail_from: str,
        gemini_api_key: Optional[str],
        gemini_model: str,
        llm_timeout_secs: float,
        event_secret: str,
        event_max_age_secs: int,
        settlement_limit: int,
        settlement_window_secs: float,
        job_max_attempts: int,
        job_backoff_base_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username
        self.smtp_password = smtp_password
        self.smtp_starttls = smtp_starttls
        self.mail_from = mail_from
        self.gemini_api_key = gemini_api_key
        self.gemini_model = gemini_model
        self.llm_timeout_secs = llm_timeout_secs
        self.event_secret = event_secret
        self.event_max_age_secs = event_max_age_secs
        self.settlement_limit = settlement_limit
        self.settlement_window_secs = settlement_window_secs
        self.job_max_attempts = job_max_attempts
        self.job_backoff_base_secs = job_backoff_base_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    return Settings(
        database_url=os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}"),
        timezone=os.getenv("FINANCE_TIMEZONE", "Asia/Kolkata"),
        smtp_host=os.getenv("FINANCE_SMTP_HOST") or None,
        smtp_port=int(os.getenv("FINANCE_SMTP_PORT", "587")),
        smtp_username=os.getenv("FINANCE_SMTP_USERNAME") or None,
        smtp_password=os.getenv("FINANCE_SMTP_PASSWORD") or None,
        smtp_starttls=_env_flag("FINANCE_SMTP_STARTTLS", "true"),
        mail_from=os.getenv(
            "FINANCE_MAIL_FROM", "Chingu Finance <onboarding@chingu.local>"
        ),
        gemini_api_key=os.getenv("FINANCE_GEMINI_API_KEY") or None,
        gemini_model=os.getenv("FINANCE_GEMINI_MODEL", "gemini-1.5-flash"),
        llm_timeout_secs=float(os.getenv("FINANCE_LLM_TIMEOUT_SECS", "20")),
        event_secret=os.getenv(
            "FINANCE_EVENT_SECRET",
            "5d0c3f1e8a7b4c2d9e6f0a1b3c5d7e9f2a4b6c8d0e1f3a5b7c9d1e3f5a7b9c1d",
        ),
        event_max_age_secs=int(os.getenv("FINANCE_EVENT_MAX_AGE_SECS", "3600")),
        settlement_limit=int(os.getenv("FINANCE_SETTLEMENT_LIMIT", "10")),
        settlement_window_secs=float(
            os.getenv("FINANCE_SETTLEMENT_WINDOW_SECS", "60")
        ),
        job_max_attempts=int(os.getenv("FINANCE_JOB_MAX_ATTEMPTS", "5")),
        job_backoff_base_secs=float(os.getenv("FINANCE_JOB_BACKOFF_BASE_SECS", "1")),
    )
