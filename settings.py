"""
Server configuration loaded from the environment (and an optional .env file).
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "power-control-dev-secret"
TRUE_VALUES = ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[CONFIG] %s=%r is not an integer, using %d", name, raw, default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in TRUE_VALUES


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    login_id: Optional[str] = None
    login_pw: Optional[str] = None
    jwt_secret: str = DEFAULT_JWT_SECRET
    token_expires_seconds: int = 30
    auth_enabled: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """Build settings from environment variables.

        A .env file is loaded first; variables already present in the
        environment take precedence over it.
        """
        load_dotenv(dotenv_path)

        jwt_secret = os.getenv("JWT_SECRET") or DEFAULT_JWT_SECRET
        if jwt_secret == DEFAULT_JWT_SECRET:
            logger.warning("[CONFIG] JWT_SECRET not set, using the built-in development secret")

        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=_env_int("PORT", 3000),
            login_id=os.getenv("LOGIN_ID") or None,
            login_pw=os.getenv("LOGIN_PW") or None,
            jwt_secret=jwt_secret,
            token_expires_seconds=max(1, _env_int("TOKEN_EXPIRES_SECONDS", 30)),
            auth_enabled=_env_bool("AUTH_ENABLED", True),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
