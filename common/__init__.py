"""
Common utilities for patch-health-hub
"""

from .config import Config, NCentralConfig, AppConfig, load_config
from .logging import setup_logging, get_logger, log_context
from .util import utcnow, parse_timestamp

__all__ = [
    'Config',
    'NCentralConfig',
    'AppConfig',
    'load_config',
    'setup_logging',
    'get_logger',
    'log_context',
    'utcnow',
    'parse_timestamp',
]
