"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    DATABASE_URL: str
    LOG_LEVEL: str
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    COURSE_LOCK_TIMEOUT_SECONDS: float
    MAX_PROMOTIONS_PER_TRIGGER: int
    VERIFY_INVARIANTS: bool

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'registrar.db'}")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        # seat-affecting requests wait at most this long for their course
        self.COURSE_LOCK_TIMEOUT_SECONDS = float(os.getenv("COURSE_LOCK_TIMEOUT_SECONDS", "10"))
        self.MAX_PROMOTIONS_PER_TRIGGER = int(os.getenv("MAX_PROMOTIONS_PER_TRIGGER", "500"))
        self.VERIFY_INVARIANTS = os.getenv("VERIFY_INVARIANTS", "true").lower() == "true"
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.COURSE_LOCK_TIMEOUT_SECONDS <= 0:
            raise RuntimeError("COURSE_LOCK_TIMEOUT_SECONDS must be positive")
        if self.MAX_PROMOTIONS_PER_TRIGGER < 1:
            raise RuntimeError("MAX_PROMOTIONS_PER_TRIGGER must be at least 1")


settings = Settings()
