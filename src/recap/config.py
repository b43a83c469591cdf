"""
Configuration loading for Recap.

All settings come from environment variables (optionally via a .env file).
Missing required settings are fatal: callers get a ConfigError naming every
missing variable, and the server refuses to start.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List

from platformdirs import user_config_dir
from dotenv import load_dotenv
import os
import logging
from logging.handlers import RotatingFileHandler


APP_NAME = "recap"
APP_AUTHOR = "Recap"

REQUIRED_ENV_VARS = (
    "SPOTIFY_CLIENT_ID",
    "SPOTIFY_CLIENT_SECRET",
    "SPOTIFY_CALLBACK_URL",
    "GROQ_API_KEY",
    "MONGODB_URI",
    "SESSION_SECRET",
    "ALLOWED_ORIGIN",
)


class ConfigError(Exception):
    """Required configuration is missing or invalid."""

    def __init__(self, missing: List[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing required environment variables: {', '.join(missing)}")


@dataclass
class SpotifyConfig:
    client_id: str
    client_secret: str
    callback_url: str


@dataclass
class AIConfig:
    api_key: str
    model: str = "llama-3.1-8b-instant"


@dataclass
class MongoConfig:
    uri: str
    database: str = "recap"


@dataclass
class AuthConfig:
    session_secret: str


@dataclass
class AppConfig:
    spotify: SpotifyConfig
    ai: AIConfig
    mongo: MongoConfig
    auth: AuthConfig
    allowed_origin: str
    frontend_url: str


def get_default_config_dir() -> Path:
    """
    Returns the platform-appropriate directory for persistent Recap data (logs).
    """
    return Path(user_config_dir(APP_NAME, APP_AUTHOR))


def load_config() -> AppConfig:
    """
    Load configuration from environment variables / .env file.

    Raises ConfigError if any of REQUIRED_ENV_VARS is unset or empty.
    """
    load_dotenv()

    missing = [name for name in REQUIRED_ENV_VARS if not os.getenv(name)]
    if missing:
        raise ConfigError(missing)

    allowed_origin = os.environ["ALLOWED_ORIGIN"].rstrip("/")
    frontend_url = os.getenv("FRONTEND_URL", allowed_origin).rstrip("/")

    return AppConfig(
        spotify=SpotifyConfig(
            client_id=os.environ["SPOTIFY_CLIENT_ID"],
            client_secret=os.environ["SPOTIFY_CLIENT_SECRET"],
            callback_url=os.environ["SPOTIFY_CALLBACK_URL"],
        ),
        ai=AIConfig(
            api_key=os.environ["GROQ_API_KEY"],
            model=os.getenv("RECAP_GROQ_MODEL", "llama-3.1-8b-instant"),
        ),
        mongo=MongoConfig(
            uri=os.environ["MONGODB_URI"],
            database=os.getenv("MONGODB_DB", "recap"),
        ),
        auth=AuthConfig(session_secret=os.environ["SESSION_SECRET"]),
        allowed_origin=allowed_origin,
        frontend_url=frontend_url,
    )


def setup_logging() -> None:
    """
    Configure centralized logging for Recap using Python's built-in logging module.

    - Logs to <user config dir>/recap/logs/recap.log
    - Uses RotatingFileHandler with 10MB max size and 5 backup files
    - Logs to both file and console
    - Default level: INFO (can be overridden via RECAP_LOG_LEVEL env var)
    """
    log_level_str = os.getenv("RECAP_LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    log_dir = get_default_config_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    log_format = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    file_handler = RotatingFileHandler(
        str(log_dir / "recap.log"),
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(logging.Formatter(log_format, date_format))
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(log_format, date_format))
    root_logger.addHandler(console_handler)


setup_logging()

__all__ = [
    "AIConfig",
    "AppConfig",
    "AuthConfig",
    "ConfigError",
    "MongoConfig",
    "SpotifyConfig",
    "get_default_config_dir",
    "load_config",
]
