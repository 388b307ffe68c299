import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


class Config:
    # "memory" keeps everything in-process; "sql" uses SQLALCHEMY_DATABASE_URI
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///healthportal.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_CREATE_TABLES = _flag("AUTO_CREATE_TABLES", "true")

    # Caller identity, trusted as-is
    USER_ID_HEADER = "user-id"

    MAX_DOSE_GENERATION_DAYS = int(os.getenv("MAX_DOSE_GENERATION_DAYS", "366"))
    DOSE_DUE_WINDOW_MINUTES = int(os.getenv("DOSE_DUE_WINDOW_MINUTES", "30"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-prod")
    JSON_SORT_KEYS = False
    PREFERRED_URL_SCHEME = "https"
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
