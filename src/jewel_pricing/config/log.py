"""
Logging setup.

Console output looks like ``2026-01-01 10:00:00 [INFO] [Job: refresh-1]: message``;
``LOG_FORMAT=json`` switches to one JSON object per line for log shipping.
"""
import json
import logging
from typing import Optional

from .settings import Settings, get_settings


SERVICE_NAME = 'jewel-pricing'


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter that surfaces the job id when present."""

    def __init__(self):
        super().__init__(datefmt='%Y-%m-%d %H:%M:%S')

    def format(self, record: logging.LogRecord) -> str:
        line = f"{self.formatTime(record, self.datefmt)} [{record.levelname}]"
        job_id = getattr(record, 'job_id', None)
        if job_id:
            line += f" [Job: {job_id}]"
        line += f": {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class JsonFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'timestamp': self.formatTime(record, '%Y-%m-%dT%H:%M:%S'),
            'level': record.levelname.lower(),
            'service': SERVICE_NAME,
            'logger': record.name,
            'message': record.getMessage(),
        }
        job_id = getattr(record, 'job_id', None)
        if job_id:
            payload['jobId'] = job_id
        if record.exc_info:
            payload['stack'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Install the package handler on the ``jewel_pricing`` logger."""
    settings = settings or get_settings()

    handler = logging.StreamHandler()
    if settings.log_format == 'json':
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(ConsoleFormatter())

    root = logging.getLogger('jewel_pricing')
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.propagate = False


def job_logger(logger: logging.Logger, job_id: str) -> logging.LoggerAdapter:
    """Wrap a module logger so every record carries the job id."""
    return logging.LoggerAdapter(logger, {'job_id': job_id})
