"""
Settings — read once from the environment (and .env when present).
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from paysettle.retry import RetryPolicy

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _int(env: Mapping[str, str], name: str, default: int, *, minimum: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


@dataclass(frozen=True, slots=True)
class Settings:
    """
    Process configuration.

    Example:
        settings = Settings.from_env()
        app = create_app(await build_services(settings))
    """

    database_url: str = "sqlite+aiosqlite:///./paysettle.db"
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    public_base_url: str = "http://localhost:5173"
    order_confirmation_url: str = ""
    order_confirmation_token: str = ""
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_exponential: bool = True
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        *,
        dotenv_path: str | Path | None = None,
    ) -> Settings:
        """
        Build from env (defaults to os.environ after loading .env).

        Raises ValueError on malformed values.
        """
        if env is None:
            load_dotenv(dotenv_path=dotenv_path)
            env = os.environ

        defaults = cls()
        log_level = env.get("LOG_LEVEL", defaults.log_level).strip().upper()
        if log_level not in logging.getLevelNamesMapping():
            raise ValueError(f"LOG_LEVEL must be a logging level name, got {log_level!r}")

        return cls(
            database_url=env.get("DATABASE_URL", defaults.database_url),
            stripe_secret_key=env.get("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=env.get("STRIPE_WEBHOOK_SECRET", ""),
            public_base_url=env.get("PUBLIC_BASE_URL", defaults.public_base_url),
            order_confirmation_url=env.get("ORDER_CONFIRMATION_URL", ""),
            order_confirmation_token=env.get("ORDER_CONFIRMATION_TOKEN", ""),
            retry_max_attempts=_int(env, "RETRY_MAX_ATTEMPTS", 3, minimum=1),
            retry_base_delay_seconds=_float(env, "RETRY_BASE_DELAY_SECONDS", 1.0),
            retry_exponential=_flag(env, "RETRY_EXPONENTIAL", True),
            log_level=log_level,
            log_json=_flag(env, "LOG_JSON", False),
        )

    def retry_policy(self) -> RetryPolicy:
        return (
            RetryPolicy()
            .with_max_retries(self.retry_max_attempts)
            .with_base_delay(seconds=self.retry_base_delay_seconds)
            .with_exponential(self.retry_exponential)
        )


__all__ = ("Settings",)
