from typing import Any, cast

import structlog


class LoggerMixin:
    """Mixin class to add logging capabilities to any class"""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        """Get logger instance for this class, bound to its log context"""
        logger = structlog.get_logger(self.__class__.__name__)
        context = self._log_context()
        if context:
            logger = logger.bind(**context)
        return cast("structlog.stdlib.BoundLogger", logger)

    def _log_context(self) -> dict[str, Any]:
        """Key/value pairs attached to every log line of this instance"""
        return {}
