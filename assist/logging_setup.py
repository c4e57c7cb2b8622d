"""Logging: apply LOG_LEVEL / LOG_FILE from settings once at startup."""
from __future__ import annotations

import logging
import os

from assist.config import Settings, get_settings

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(settings: Settings | None = None) -> None:
    """Configure root logger. Idempotent; later calls only adjust the level."""
    global _configured
    settings = settings or get_settings()
    level = getattr(logging, (settings.LOG_LEVEL or "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    if _configured:
        return
    _configured = True

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(console)

    log_file = (settings.LOG_FILE or "").strip()
    if log_file:
        try:
            os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(logging.Formatter(_FORMAT))
            root.addHandler(file_handler)
        except OSError as e:
            logging.getLogger(__name__).warning("Could not open log file %s: %s", log_file, e)


def warn_missing_credentials(settings: Settings | None = None) -> list[str]:
    """Log a warning for each missing LLM credential. Returns the missing keys."""
    settings = settings or get_settings()
    if settings.LLM_BACKEND == "azure":
        required = ["AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_KEY", "AZURE_OPENAI_LLM_DEPLOYMENT"]
    else:
        required = ["CLOUDFLARE_ACCOUNT_ID", "CLOUDFLARE_API_TOKEN"]
    missing = [key for key in required if not (getattr(settings, key, "") or "").strip()]
    log = logging.getLogger(__name__)
    for key in missing:
        log.warning("%s is not set; analysis calls will fall back to neutral defaults", key)
    return missing
