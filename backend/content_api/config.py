"""Application settings and validation."""

import os
from functools import lru_cache
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent
DEFAULT_JWT_SECRET = "change_me_for_prod"


class Settings:
    ENV: str
    LOG_LEVEL: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    CACHE_EXPIRATION_MINUTES: int
    MAX_UPLOAD_BYTES: int
    CDN_ENDPOINT_URL: str
    CDN_REGION: str
    CDN_ACCESS_KEY: str
    CDN_SECRET_KEY: str
    CDN_BUCKET_NAME: str
    CDN_UPLOADS_FOLDER: str
    CDN_PUBLIC_URL: str
    POSTMARK_BASICAUTH_USER: str
    POSTMARK_BASICAUTH_PASSWORD: str
    POSTMARK_USER_AGENT: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        # 0 disables the response cache entirely
        self.CACHE_EXPIRATION_MINUTES = int(os.getenv("CACHE_EXPIRATION_MINUTES", "1"))
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))  # 10 MB default
        self.CDN_ENDPOINT_URL = os.getenv("CDN_ENDPOINT_URL", "")
        self.CDN_REGION = os.getenv("CDN_REGION", "us-east-1")
        self.CDN_ACCESS_KEY = os.getenv("CDN_ACCESS_KEY", "")
        self.CDN_SECRET_KEY = os.getenv("CDN_SECRET_KEY", "")
        self.CDN_BUCKET_NAME = os.getenv("CDN_BUCKET_NAME", "uploads")
        self.CDN_UPLOADS_FOLDER = os.getenv("CDN_UPLOADS_FOLDER", "uploads").strip("/")
        self.CDN_PUBLIC_URL = os.getenv("CDN_PUBLIC_URL", "").rstrip("/")
        self.POSTMARK_BASICAUTH_USER = os.getenv("POSTMARK_BASICAUTH_USER", "")
        self.POSTMARK_BASICAUTH_PASSWORD = os.getenv("POSTMARK_BASICAUTH_PASSWORD", "")
        self.POSTMARK_USER_AGENT = os.getenv("POSTMARK_USER_AGENT", "")
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == DEFAULT_JWT_SECRET:
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.CACHE_EXPIRATION_MINUTES < 0:
            raise RuntimeError("CACHE_EXPIRATION_MINUTES must be >= 0")
        if self.ENV != "dev" and not (self.POSTMARK_BASICAUTH_USER and self.POSTMARK_BASICAUTH_PASSWORD):
            raise RuntimeError("POSTMARK_BASICAUTH_USER and POSTMARK_BASICAUTH_PASSWORD are required outside dev")


@lru_cache
def get_settings() -> Settings:
    """Return the process settings; used as a FastAPI dependency."""
    return Settings()
