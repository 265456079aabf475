"""ファイル操作ユーティリティ"""

from __future__ import annotations

import contextlib
import os
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os


async def write_atomic(path: Path, data: bytes, *, mode: int | None = None) -> None:
    """一時ファイルに書き込んでから置き換える

    失敗・キャンセル時は元のファイルがそのまま残る。
    ``OSError`` はそのまま送出する。
    """
    path = Path(path)
    await aiofiles.os.makedirs(path.parent, exist_ok=True)
    temp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.part")
    try:
        async with aiofiles.open(temp, "wb") as f:
            await f.write(data)
            await f.flush()
        if mode is not None and hasattr(os, "chmod"):
            os.chmod(temp, mode)
        await aiofiles.os.replace(temp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.remove(temp)
        raise


async def read_bytes(path: Path) -> bytes:
    async with aiofiles.open(path, "rb") as f:
        return await f.read()
