"""
Logging configuration for finvault
"""

import logging
import re
from pathlib import Path
from typing import Any, cast
from urllib.parse import urlsplit, urlunsplit

import structlog
from rich.console import Console
from rich.logging import RichHandler

from finvault.config import Settings, get_settings


def setup_logging(settings: Settings | None = None) -> None:
    """Set up structured logging with rich formatting"""

    settings = settings or get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logs_dir = Path(settings.log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                show_time=True,
                show_path=True,
                markup=False,
                rich_tracebacks=True,
            ),
            logging.FileHandler(logs_dir / "finvault.log", encoding="utf-8"),
        ],
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            (
                structlog.processors.JSONRenderer()
                if settings.log_format == "json"
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance"""
    logger = structlog.get_logger(name)
    return cast("structlog.stdlib.BoundLogger", logger)


def log_operation(operation: str, **kwargs: Any) -> None:
    """Log an engine operation with its parameters"""
    logger = get_logger("operation")
    logger.info(f"Running {operation}", **kwargs)


def sanitize_log_content(content: str, max_length: int = 80) -> str:
    """機密情報を含む可能性のあるコンテンツをサニタイズ"""
    sensitive_patterns = [
        r'password[=:\s]*["\']?[^\s"\']{4,}["\']?',  # パスワード
        r'passphrase[=:\s]*["\']?[^\s"\']{4,}["\']?',  # パスフレーズ
        r'token[=:\s]*["\']?[\w\-\.]{20,}["\']?',  # トークン
        r'secret[=:\s]*["\']?[\w\-\.]{20,}["\']?',  # シークレット
        r"(?:https?://)[^\s/@]+:[^\s/@]+@",  # 認証情報を含む URL
        r"\b[A-Za-z0-9_\-]{32,}\b",  # 長い英数字文字列（キーの可能性）
    ]

    sanitized = content
    for pattern in sensitive_patterns:
        sanitized = re.sub(pattern, "[REDACTED]", sanitized, flags=re.IGNORECASE)

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."

    return sanitized


def redact_url(url: str) -> str:
    """URL からユーザー情報（ユーザー名・パスワード）を除去"""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "[REDACTED]"

    if parts.username is None and parts.password is None:
        return url

    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))


def validate_safe_path(path: str | Path, base_path: str | Path) -> Path:
    """パスが安全であることを検証（ Path Traversal 攻撃を防止）"""
    try:
        if isinstance(path, str):
            path = Path(path)
        if isinstance(base_path, str):
            base_path = Path(base_path)

        normalized_path = path.resolve()
        normalized_base = base_path.resolve()

        try:
            normalized_path.relative_to(normalized_base)
        except ValueError as e:
            raise ValueError(
                f"Path '{path}' is outside base directory '{base_path}'"
            ) from e

        # 危険な文字列をチェック
        dangerous_patterns = ["..", "~", "$", "`", "|", ";", "&", ">", "<"]
        relative = str(path.relative_to(base_path)) if path.is_relative_to(base_path) else str(path)
        for pattern in dangerous_patterns:
            if pattern in relative:
                raise ValueError(f"Path contains dangerous pattern: {pattern}")

        return normalized_path

    except Exception as e:
        raise ValueError(f"Invalid path: {e}") from e
