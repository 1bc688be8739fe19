"""Startup-time helpers for safe config logging."""

from stkpay.common.config import Settings
from stkpay.common.logging import logger


def _safe_value(name: str, value) -> str:
    """Return a config value with simple redaction for secret-like names."""

    if value is None or value == "":
        return "<unset>"
    if any(secret in name.upper() for secret in ["KEY", "SECRET", "PASSKEY", "TOKEN"]):
        return "<redacted>"
    return str(value)


def log_startup_config(config: Settings, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    snapshot = {"service": config.service_name}
    for key in keys:
        snapshot[key.upper()] = _safe_value(key, getattr(config, key, None))
    logger.info("startup_config=%s", snapshot)
    missing = config.missing_gateway_settings()
    if missing:
        logger.warning("gateway settings missing: %s", ", ".join(missing))
