"""Structured JSON logging and security-event helpers."""

import json
import logging
import sys
from datetime import datetime, timezone

SECURITY_LOGGER = "adsync.security"
SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.INFO,
    "high": logging.WARNING,
    "critical": logging.ERROR,
}

_EXTRA_FIELDS = (
    "endpoint",
    "account_id",
    "entity_id",
    "job",
    "duration_ms",
    "status_code",
    "severity",
    "security_event",
    "details",
)


class JSONFormatter(logging.Formatter):
    """Produces structured JSON log lines for production observability."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        # Attach extra fields if present
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True) -> None:
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_adsync", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler._adsync = True
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def log_security_event(event: str, severity: str = "medium", **details) -> None:
    """Record a security event with a severity tier (low/medium/high/critical)."""
    if severity not in SEVERITY_LEVELS:
        severity = "medium"
    logging.getLogger(SECURITY_LOGGER).log(
        SEVERITY_LEVELS[severity],
        "Security event: %s",
        event,
        extra={"security_event": event, "severity": severity, "details": details},
    )


def log_sync_metric(job: str, duration_ms: int, **details) -> None:
    logging.getLogger("adsync.metrics").info(
        "Sync job %s finished in %dms",
        job,
        duration_ms,
        extra={"job": job, "duration_ms": duration_ms, "details": details},
    )
