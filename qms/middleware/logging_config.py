"""
Logging setup for the QMS app.

Two renderings of the same records:

    json   one object per line for the log shipper; request, workflow,
           backup and evidence-pack context passed through ``extra=``
           becomes top-level keys
    text   one line per record for a terminal, suffixed with the request
           id and the workflow entity when present

``LOG_FORMAT`` picks one explicitly; otherwise production logs JSON and
development/testing logs text. ``LOG_LEVEL`` defaults to INFO in
production and DEBUG elsewhere.
"""

import json
import logging
import sys
from datetime import datetime, timezone

# Context keys emitted by qms.middleware.timing, qms.services.workflow,
# qms.services.backup_service and qms.services.evidence_pack_service
CONTEXT_KEYS = (
    "request_id", "method", "path", "status", "duration_ms", "remote_addr", "user_id",
    "entity_type", "entity_id", "action",
    "argv", "returnCode", "stdout", "stderr",
    "sections", "records", "pages",
)

_NOISY_LOGGERS = ("werkzeug", "sqlalchemy.engine", "reportlab", "openpyxl")


def record_context(record: logging.LogRecord) -> dict:
    """The non-empty ``CONTEXT_KEYS`` attributes attached to ``record``."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_KEYS
        if getattr(record, key, None) not in (None, "")
    }


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message [rid=..] [entity#id]``"""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} {record.levelname:<7} {record.name}: {record.getMessage()}"
        rid = getattr(record, "request_id", None)
        if rid:
            line += f" [rid={rid}]"
        entity = getattr(record, "entity_type", None)
        if entity:
            line += f" [{entity}#{getattr(record, 'entity_id', '?')}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for ``app``'s environment."""
    dev_like = app.config.get("DEBUG", False) or app.config.get("TESTING", False)

    level_name = (app.config.get("LOG_LEVEL") or ("DEBUG" if dev_like else "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    fmt = (app.config.get("LOG_FORMAT") or ("text" if dev_like else "json")).lower()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())

    # create_app runs once per test session and per worker; replace, never stack
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
