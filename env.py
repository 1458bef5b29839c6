"""Load environment variables from a .env file and parse typed settings."""

from __future__ import annotations

import os

from dotenv import load_dotenv

# Load default .env (located at project root)
load_dotenv()


def parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def parse_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def is_development() -> bool:
    return os.getenv("APP_ENV", "production").strip().lower() in {"dev", "development", "local"}
