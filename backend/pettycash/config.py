"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    SESSION_SECRET: str
    SESSION_ALGORITHM: str
    SESSION_EXPIRE_HOURS: int
    SESSION_COOKIE_NAME: str
    COOKIE_SECURE: bool
    DEMO_PASSWORD: str
    MAX_UPLOAD_BYTES: int
    UPLOAD_DIR: Path
    GST_RATE: str
    ALLOW_DEV_CORS: bool
    SEED_DEMO_DATA: bool

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'pettycash.db'}")
        self.SESSION_SECRET = os.getenv("SESSION_SECRET", "change_me_for_prod")
        self.SESSION_ALGORITHM = os.getenv("SESSION_ALGORITHM", "HS256")
        self.SESSION_EXPIRE_HOURS = int(os.getenv("SESSION_EXPIRE_HOURS", "24"))
        self.SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "pettycash_session")
        self.COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() == "true"
        self.DEMO_PASSWORD = os.getenv("DEMO_PASSWORD", "pettycash-demo")
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))  # 10 MB default
        self.UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE / "uploads"))).expanduser().resolve()
        # kept as a string so services can build an exact Decimal from it
        self.GST_RATE = os.getenv("GST_RATE", "0.09")
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.SEED_DEMO_DATA = os.getenv("SEED_DEMO_DATA", "true").lower() == "true"
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and self.SESSION_SECRET == "change_me_for_prod":
            raise RuntimeError("SESSION_SECRET must be set to a non-default value in non-dev environments")
        if self.MAX_UPLOAD_BYTES <= 0:
            raise RuntimeError("MAX_UPLOAD_BYTES must be positive")
        if self.SESSION_EXPIRE_HOURS <= 0:
            raise RuntimeError("SESSION_EXPIRE_HOURS must be positive")


settings = Settings()
