"""
Runtime configuration for the template layout service and CLI.

Values come from the process environment; a `.env` file next to the working
directory is loaded first so local development does not need exported vars.

Recognised environment variables:
    CERT_REFERENCE_WIDTH    –  fallback reference canvas width (pixels)
    CERT_REFERENCE_HEIGHT   –  fallback reference canvas height (pixels)
    CERT_PUBLIC_BASE_URL    –  base URL substituted into QR placeholders
    CERT_CORS_ORIGINS       –  comma separated origins allowed by the API
    CERT_LOG_LEVEL          –  logging level name (INFO, DEBUG, ...)
    CERT_CACHE_TTL_SECONDS  –  lifetime of cached text measurements
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}.") from None


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

# Legacy "standard" canvas used before any template image has loaded.
REFERENCE_WIDTH: int = _env_int("CERT_REFERENCE_WIDTH", 1500)
REFERENCE_HEIGHT: int = _env_int("CERT_REFERENCE_HEIGHT", 2121)

PUBLIC_BASE_URL: str = os.environ.get("CERT_PUBLIC_BASE_URL", "https://your-domain.com").rstrip("/")

CORS_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.environ.get(
        "CERT_CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
    ).split(",")
    if origin.strip()
]

LOG_LEVEL: str = os.environ.get("CERT_LOG_LEVEL", "INFO").upper()

CACHE_TTL_SECONDS: float = _env_float("CERT_CACHE_TTL_SECONDS", 30 * 60)
