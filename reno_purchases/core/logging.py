"""
Loguru configuration for the API process.

Structured fields passed as keyword arguments (``logger.info("msg", invoice_id=...)``)
land in ``record["extra"]`` and are rendered at the end of each line.
"""

import sys
from pathlib import Path

from loguru import logger

from .config import Settings, settings as default_settings

INVOICE_EXTRACTOR_CHANNEL = "invoice-extractor"

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
    "<level>{message}</level> | {extra}"
)


def _is_extractor_record(record) -> bool:
    return record["extra"].get("channel") == INVOICE_EXTRACTOR_CHANNEL


def setup_logging(settings: Settings | None = None):
    """
    Configure loguru sinks and return the shared logger.

    - stderr sink at LOG_LEVEL (DEBUG when invoice debugging is on)
    - when RENO_INVOICE_DEBUG is set, extractor audit records are also appended
      to RENO_INVOICE_DEBUG_LOG; ``catch=True`` keeps write errors away from callers
    """
    settings = settings or default_settings

    logger.remove()
    level = "DEBUG" if settings.invoice_debug else settings.log_level.upper()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    if settings.invoice_debug:
        log_path = Path(settings.invoice_debug_log)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Invoice debug log directory unavailable: {e}")
        else:
            logger.add(
                str(log_path),
                level="DEBUG",
                filter=_is_extractor_record,
                format="[{time:YYYY-MM-DDTHH:mm:ss.SSSZ}] {message}",
                catch=True,
                enqueue=False,
            )

    return logger
