"""共通エラーハンドリングユーティリティ

エンジンの公開操作で発生した例外を :class:`OperationResult` に変換します。
例外はすべてログに記録され、呼び出し側には必ず成功かエラーのどちらかが返ります。
"""

import functools
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec

import structlog

from finvault.backup.errors import BackupError, ErrorKind
from finvault.backup.results import Failure, OperationResult
from finvault.utils.logger import sanitize_log_content

logger = structlog.get_logger()

P = ParamSpec("P")


class ErrorHandler:
    """共通エラーハンドリング機能を提供するクラス"""

    @staticmethod
    def to_failure(
        operation_name: str, exception: Exception, **kwargs: Any
    ) -> Failure:
        """例外をログに記録し、 Failure に変換する標準パターン"""
        if isinstance(exception, BackupError):
            logger.warning(
                f"Failed to {operation_name}",
                error=sanitize_log_content(str(exception), max_length=300),
                kind=exception.kind.value,
                **kwargs,
            )
            return Failure.from_error(exception)

        logger.error(
            f"Failed to {operation_name}",
            error=sanitize_log_content(str(exception), max_length=300),
            exc_info=exception,
            **kwargs,
        )
        return Failure.of(ErrorKind.UNKNOWN, detail=str(exception))


def reports_operation(
    operation_name: str, **log_kwargs: Any
) -> Callable[
    [Callable[P, Awaitable[OperationResult]]],
    Callable[P, Awaitable[OperationResult]],
]:
    """
    非同期の公開操作を OperationResult を返す形に統一するデコレータ

    Args:
        operation_name: 操作の名前（ログ記録用）
        **log_kwargs: ログに追加する情報

    ``asyncio.CancelledError`` は ``Exception`` ではないためそのまま伝播します。
    """

    def decorator(
        func: Callable[P, Awaitable[OperationResult]],
    ) -> Callable[P, Awaitable[OperationResult]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> OperationResult:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                return ErrorHandler.to_failure(operation_name, e, **log_kwargs)

        return wrapper

    return decorator
