"""Structured logging configuration"""

import logging
import json
import os
from datetime import datetime
from typing import Any, Dict, Optional


class StructuredLogger:
    """
    JSON logger whose keyword arguments become fields of the log record.

    `bind()` returns a logger that stamps fixed fields (validation id, file
    name) on every record, so all lines of one validation run can be joined.
    """

    def __init__(self, name: str, level: str = "INFO", fields: Optional[Dict[str, Any]] = None):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self.fields = dict(fields or {})

        if not any(isinstance(h.formatter, JSONFormatter) for h in self.logger.handlers):
            handler = logging.StreamHandler()
            handler.setFormatter(JSONFormatter())
            self.logger.addHandler(handler)

    def bind(self, **fields) -> "StructuredLogger":
        bound = StructuredLogger.__new__(StructuredLogger)
        bound.logger = self.logger
        bound.fields = {**self.fields, **fields}
        return bound

    def log(self, level: str, message: str, exc_info: bool = False, **kwargs):
        """Log structured message"""
        log_data = {
            "timestamp": datetime.now().isoformat(),
            "level": level.upper(),
            "message": message,
            **self.fields,
            **kwargs
        }

        getattr(self.logger, level.lower())(json.dumps(log_data, default=str), exc_info=exc_info)

    def info(self, message: str, **kwargs):
        self.log("info", message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.log("warning", message, **kwargs)

    def error(self, message: str, **kwargs):
        self.log("error", message, **kwargs)

    def debug(self, message: str, **kwargs):
        self.log("debug", message, **kwargs)


class JSONFormatter(logging.Formatter):
    """Wraps the structured payload with logger and thread names"""

    def format(self, record):
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def get_logger(name: str) -> StructuredLogger:
    """Get or create structured logger; level from LOG_LEVEL"""
    return StructuredLogger(name, os.getenv("LOG_LEVEL", "INFO"))
