"""
MOTORCHECK+ Shared Module

Common utilities used across the service.
"""

from .utils import (
    setup_logger,
    log_execution_time,
    handle_exceptions,
)

__all__ = [
    'setup_logger',
    'log_execution_time',
    'handle_exceptions',
]
