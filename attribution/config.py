"""Core application configuration & tunable attribution rules.

Business rules that may evolve (cookie window, clock skew tolerance, link code
shape, secrets) are centralized here so they can be adjusted without diving
into service logic. Values are module constants overridable via environment
variables; tests monkeypatch the dicts directly when needed.
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in {"1", "true", "yes", "on"}


# Public origin used to build affiliate link URLs (/ref/{code}).
PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")

# ------------------------------ Attribution ------------------------------- #
ATTRIBUTION_SETTINGS: dict[str, int | float] = {
	# Offers without an explicit duration fall back to this window (days).
	"default_cookie_duration_days": int(os.getenv("DEFAULT_COOKIE_DURATION_DAYS", "90")),
	# Events stamped further in the future than this are rejected as implausible.
	"max_future_skew_seconds": int(os.getenv("MAX_FUTURE_SKEW_SECONDS", "300")),
	# Epoch values above this are interpreted as milliseconds.
	"epoch_millis_threshold": 10_000_000_000,
}

# ---------------------------- Tracking Cookie ----------------------------- #
TRACKING_COOKIE: dict[str, str | bool] = {
	"name": os.getenv("TRACKING_COOKIE_NAME", "affiliate_tracking"),
	"httponly": True,
	"secure": _env_bool("TRACKING_COOKIE_SECURE", False),
	"samesite": "lax",
}

# --------------------------------- Links ---------------------------------- #
LINK_SETTINGS: dict[str, int] = {
	"link_code_length": 10,
	"postback_token_bytes": 24,
	# Attempts to find a free link code before giving up.
	"max_code_attempts": 5,
}

# -------------------------------- Security -------------------------------- #
SECURITY_SETTINGS: dict[str, str] = {
	"secret_key": os.getenv("ATTRIBUTION_SECRET_KEY", "change-me-attribution-secret"),
	"algorithm": os.getenv("ATTRIBUTION_JWT_ALGORITHM", "HS256"),
}

__all__ = [
	"PUBLIC_BASE_URL",
	"ATTRIBUTION_SETTINGS",
	"TRACKING_COOKIE",
	"LINK_SETTINGS",
	"SECURITY_SETTINGS",
]
