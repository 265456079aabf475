"""Utility modules for finvault"""

from .files import read_bytes, write_atomic
from .logger import (
    get_logger,
    log_operation,
    redact_url,
    sanitize_log_content,
    setup_logging,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_operation",
    "redact_url",
    "sanitize_log_content",
    "read_bytes",
    "write_atomic",
]
