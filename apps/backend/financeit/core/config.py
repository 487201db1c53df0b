from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "FinanceIt Backend"
    ENV: str = "dev"

    # 기본 SQLite 파일 DB
    # apps/backend/db.sqlite3를 절대경로로 지정하여 CWD에 따른 경로 문제 방지
    _default_db_path = Path(__file__).resolve().parents[2] / "db.sqlite3"
    DATABASE_URL: str = f"sqlite:///{_default_db_path}"

    CORS_ORIGINS: list[str] = ["*"]
    TIMEZONE: str = "Asia/Jerusalem"
    LOG_LEVEL: str = "INFO"

    # Background wake alarm; tests and one-shot tools turn this off.
    SCHEDULER_ENABLED: bool = True
    # "fixed": 30/365-day approximations when counting missed occurrences.
    # "calendar": step with calendar-aware month/year addition.
    CATCHUP_ARITHMETIC: Literal["fixed", "calendar"] = "fixed"
    PROCESSED_MESSAGE: str = "Your scheduled subscription transaction has been processed!"

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="FINANCEIT_", case_sensitive=False)


settings = Settings()
