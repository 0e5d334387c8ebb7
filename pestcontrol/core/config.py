# pestcontrol/core/config.py

import os
import re
from datetime import timedelta
from functools import lru_cache

from dotenv import load_dotenv

# .env next to the project root; real environment variables win.
load_dotenv()


_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str) -> timedelta:
    """Parses durations such as '7d', '12h', '30m', '45s' or '3600'."""
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _DURATION_UNITS[unit])


class Settings:
    """Application settings read from the environment."""

    def __init__(self):
        # ***************************************************************
        # 1. Environment
        # ***************************************************************
        self.APP_ENV = (os.getenv("APP_ENV") or os.getenv("NODE_ENV") or "development").lower()
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

        # ***************************************************************
        # 2. Database
        # ***************************************************************
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./pestcontrol.db")

        # ***************************************************************
        # 3. Tokens and cookies
        # ***************************************************************
        self.JWT_SECRET = os.getenv("JWT_SECRET")
        self.JWT_SECRET_IS_DEFAULT = self.JWT_SECRET is None
        if self.JWT_SECRET is None:
            self.JWT_SECRET = "dev-only-secret-change-me"
        self.JWT_ALGORITHM = "HS256"
        self.JWT_EXPIRES_IN = parse_duration(os.getenv("JWT_EXPIRES_IN", "7d"))
        self.JWT_COOKIE_EXPIRES_IN_DAYS = int(os.getenv("JWT_COOKIE_EXPIRES_IN", "7"))
        self.JWT_ISSUER = os.getenv("JWT_ISSUER", "pest-control-management")
        self.JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "pest-control-users")
        self.COOKIE_NAME = "jwt"

        # ***************************************************************
        # 4. Signup / OTP
        # ***************************************************************
        self.SUPERADMIN_SETUP_KEY = os.getenv("SUPERADMIN_SETUP_KEY")
        self.SIGNUP_SESSION_MINUTES = int(os.getenv("SIGNUP_SESSION_MINUTES", "30"))
        self.OTP_EXPIRY_MINUTES = int(os.getenv("OTP_EXPIRY_MINUTES", "10"))
        self.OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "3"))
        self.OTP_RESEND_COOLDOWN_MINUTES = int(os.getenv("OTP_RESEND_COOLDOWN_MINUTES", "2"))

        # ***************************************************************
        # 5. Email
        # ***************************************************************
        self.SMTP_HOST = os.getenv("SMTP_HOST")
        self.SMTP_PORT = int(os.getenv("SMTP_PORT", "465"))
        self.SMTP_USER = os.getenv("SMTP_USER")
        self.SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
        self.EMAIL_FROM = os.getenv("EMAIL_FROM", "no-reply@pestcontrol.local")

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
