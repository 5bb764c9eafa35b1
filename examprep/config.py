import os
from pathlib import Path

from sqlalchemy.engine import URL


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() not in {"0", "false", "no", ""}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    default_db_path = Path(__file__).resolve().parent.parent / "instance" / "app.db"
    default_db_uri = URL.create(
        drivername="sqlite",
        database=str(default_db_path),
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", str(default_db_uri))
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTH_TOKEN_TTL_DAYS = int(os.environ.get("AUTH_TOKEN_TTL_DAYS", "7"))
    DEFAULT_PAPER_DURATION_MINUTES = int(os.environ.get("DEFAULT_PAPER_DURATION_MINUTES", "180"))
    SESSION_RECORD_NAME = os.environ.get("SESSION_RECORD_NAME", "exam-session-storage")
    BROWSE_PAGE_SIZE = int(os.environ.get("BROWSE_PAGE_SIZE", "5"))
    INSTANT_DEFAULT_QUESTION_COUNT = int(os.environ.get("INSTANT_DEFAULT_QUESTION_COUNT", "50"))
    INSTANT_DEFAULT_DURATION_MINUTES = int(
        os.environ.get("INSTANT_DEFAULT_DURATION_MINUTES", "60")
    )
    STRICT_QUESTION_IMPORT = _env_flag("STRICT_QUESTION_IMPORT", "0")


class TestConfig(Config):
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    TESTING = True
