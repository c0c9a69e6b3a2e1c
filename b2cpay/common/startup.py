"""Startup-time helpers for safe config logging."""

import os
from urllib.parse import urlsplit, urlunsplit

from b2cpay.common.logging import logger


def _mask_url_password(value: str) -> str:
    parts = urlsplit(value)
    if not parts.password:
        return value
    netloc = parts.netloc.replace(f":{parts.password}@", ":<redacted>@", 1)
    return urlunsplit(parts._replace(netloc=netloc))


def _safe_env(name: str) -> str:
    """Return env value with simple redaction for secret-like variable names and DSNs."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(secret in name for secret in ["KEY", "SECRET", "PASSWORD", "TOKEN"]):
        return "<redacted>"
    if name.endswith("_URL"):
        return _mask_url_password(value)
    return value


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    config = {"service": service_name}
    for key in keys:
        config[key] = _safe_env(key)
    logger.info("startup_config=%s", config)
