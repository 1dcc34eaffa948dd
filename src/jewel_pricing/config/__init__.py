"""Configuration subpackage - settings and logging setup."""
from .settings import Settings, get_settings
from .log import configure_logging, job_logger

__all__ = ['Settings', 'get_settings', 'configure_logging', 'job_logger']
