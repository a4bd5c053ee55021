"""
Structured Logging Module
Provides JSON-formatted logging for log aggregation tools
"""

import json
import logging
from typing import Any


class JSONFormatter(logging.Formatter):
    """
    Formatter that renders each log record as a single JSON object.

    Extra context is attached with
    ``logger.info("msg", extra={"extra_fields": {"email_id": ...}})``
    and merged into the top-level object.

    SECURITY STORY: Connection strings and webhook URLs carry credentials.
    Any extra field whose name looks sensitive is logged as "[REDACTED]".
    """

    SENSITIVE_FIELDS = {
        'password', 'token', 'api_key', 'secret', 'credential',
        'dsn', 'database_url', 'webhook_url'
    }

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_data.update({
                k: self._sanitize_value(k, v)
                for k, v in extra_fields.items()
            })

        return json.dumps(log_data, default=str)

    def _sanitize_value(self, key: str, value: Any) -> Any:
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in self.SENSITIVE_FIELDS):
            return "[REDACTED]"
        return value
