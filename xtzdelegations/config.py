"""Service configuration loaded from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from dotenv import load_dotenv

REQUIRED_VARS = (
    "POSTGRES_HOST",
    "POSTGRES_PORT",
    "POSTGRES_USER",
    "POSTGRES_PASSWORD",
    "POSTGRES_DB",
)

DEFAULT_SERVER_PORT = "3000"
DEFAULT_ENV = "development"


class ConfigError(Exception):
    """Raised when the configuration cannot be built."""


@dataclass(frozen=True)
class Config:
    """Runtime settings for the service."""

    db_url: str
    server_port: str = DEFAULT_SERVER_PORT
    env: str = DEFAULT_ENV
    ssl_mode: str = "disable"

    def masked_db_url(self) -> str:
        """Return the connection string with the password hidden."""
        if not self.db_url:
            return ""
        parts = self.db_url.split(" ")
        for index, part in enumerate(parts):
            if part.startswith("password="):
                parts[index] = "password=***"
                break
        return " ".join(parts)


def load_config(env: Mapping[str, str] | None = None) -> Config:
    """Build a Config from ``env``, or from a .env file and the process environment.

    Raises ConfigError when a required variable is missing or empty.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    values = {name: env.get(name, "") for name in REQUIRED_VARS}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigError(
            f"missing required environment variables: [{' '.join(missing)}]"
        )

    app_env = env.get("APP_ENV", "")
    ssl_mode = env.get("POSTGRES_SSLMODE", "")
    if not ssl_mode:
        ssl_mode = "require" if app_env == "production" else "disable"

    dsn = (
        f"host={values['POSTGRES_HOST']} "
        f"port={values['POSTGRES_PORT']} "
        f"user={values['POSTGRES_USER']} "
        f"password={values['POSTGRES_PASSWORD']} "
        f"dbname={values['POSTGRES_DB']} "
        f"sslmode={ssl_mode}"
    )

    return Config(
        db_url=dsn,
        server_port=env.get("SERVER_PORT", "") or DEFAULT_SERVER_PORT,
        env=app_env or DEFAULT_ENV,
        ssl_mode=ssl_mode,
    )