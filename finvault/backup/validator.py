"""
バックアップペイロードの検証

データを適用せずに構造とエンティティ間の参照を確認する。
参照の不整合は警告として報告し、検証失敗にはしない。

実施する整合性チェック:
1. 取引の categoryId がカテゴリ一覧に存在する (指定がある場合のみ)
2. 取引の accountId がアカウント一覧に存在する
3. 予算の categoryIds がカテゴリ一覧に存在する
4. 同一コレクション内で id が重複していない
"""

from __future__ import annotations

import asyncio
import json
from collections import Counter
from datetime import UTC, datetime
from typing import Any

from finvault.backup.models import EntityCounts, ValidationResult
from finvault.utils.mixins import LoggerMixin

COLLECTIONS = ("categories", "accounts", "transactions", "budgets")
SUPPORTED_FORMAT_VERSION = 1


def _first(mapping: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in mapping and mapping[key] is not None:
            return mapping[key]
    return None


def _parse_version(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        # "1.0" のような旧形式のバージョン文字列
        return int(number) if number.is_integer() else None
    return None


def _format_exported_at(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC).isoformat()
        except (OverflowError, OSError, ValueError):
            return None
    return str(value)


class BackupValidator(LoggerMixin):
    """Inspects snapshot payloads without applying them."""

    # これより大きいペイロードはスレッドで検証する
    LARGE_PAYLOAD_BYTES = 256 * 1024

    def validate(self, payload: bytes | str) -> ValidationResult:
        """Validate a payload. Never raises; problems become ``is_valid=False``."""
        try:
            text = payload.decode("utf-8-sig") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as e:
            return self._invalid(f"payload is not UTF-8 text ({e.reason})")

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            return self._invalid(f"malformed JSON at line {e.lineno}: {e.msg}")
        except RecursionError:
            return self._invalid("payload is nested too deeply")

        if not isinstance(data, dict):
            return self._invalid("payload is not a JSON object")

        collections: dict[str, list[Any]] = {}
        for name in COLLECTIONS:
            if name not in data:
                continue
            value = data[name]
            if not isinstance(value, list):
                return self._invalid(f"'{name}' is not a list")
            collections[name] = value

        if not collections:
            return self._invalid("none of the recognized collections are present")

        metadata = data.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}

        raw_version = _first(data, "formatVersion", "format_version")
        if raw_version is None:
            raw_version = metadata.get("version", SUPPORTED_FORMAT_VERSION)
        format_version = _parse_version(raw_version)
        if format_version is None or format_version < 1:
            return self._invalid(f"unrecognized format version {raw_version!r}")
        if format_version > SUPPORTED_FORMAT_VERSION:
            return self._invalid(
                f"format version {format_version} is newer than supported"
            )

        exported_at = _format_exported_at(
            _first(data, "exportedAt", "exported_at")
            or _first(metadata, "exportTime", "exportedAt")
        )

        counts = EntityCounts(
            **{name: len(collections.get(name, [])) for name in COLLECTIONS}
        )
        try:
            issues = self._consistency_issues(collections)
        except TypeError:
            # id にオブジェクトや配列が入っている
            issues = ["records use non-scalar ids"]
        if issues:
            self.logger.info(
                "Backup payload has consistency issues", issues=len(issues)
            )

        return ValidationResult(
            is_valid=True,
            entity_counts=counts,
            exported_at=exported_at,
            format_version=format_version,
            has_consistency_issues=bool(issues),
            issues=tuple(issues),
        )

    async def validate_async(self, payload: bytes | str) -> ValidationResult:
        if len(payload) > self.LARGE_PAYLOAD_BYTES:
            return await asyncio.to_thread(self.validate, payload)
        return self.validate(payload)

    def _invalid(self, reason: str) -> ValidationResult:
        self.logger.warning("Backup payload rejected", reason=reason)
        return ValidationResult(is_valid=False, error=reason)

    @staticmethod
    def _consistency_issues(collections: dict[str, list[Any]]) -> list[str]:
        issues: list[str] = []
        ids: dict[str, set[Any]] = {}

        for name in COLLECTIONS:
            items = [item for item in collections.get(name, []) if isinstance(item, dict)]
            item_ids = [item.get("id") for item in items if item.get("id") is not None]
            ids[name] = set(item_ids)
            duplicates = sorted(
                str(item_id) for item_id, n in Counter(item_ids).items() if n > 1
            )
            if duplicates:
                issues.append(f"duplicate {name} ids: {', '.join(duplicates)}")

        for item in collections.get("transactions", []):
            if not isinstance(item, dict):
                continue
            category_id = _first(item, "categoryId", "category_id")
            if category_id is not None and category_id not in ids["categories"]:
                issues.append(
                    f"transaction {item.get('id')} references missing category {category_id}"
                )
            account_id = _first(item, "accountId", "account_id")
            if account_id is not None and account_id not in ids["accounts"]:
                issues.append(
                    f"transaction {item.get('id')} references missing account {account_id}"
                )

        for item in collections.get("budgets", []):
            if not isinstance(item, dict):
                continue
            category_ids = _first(item, "categoryIds", "category_ids") or []
            if not isinstance(category_ids, list):
                category_ids = [category_ids]
            for category_id in category_ids:
                if category_id not in ids["categories"]:
                    issues.append(
                        f"budget {item.get('id')} references missing category {category_id}"
                    )

        return issues


__all__ = ["BackupValidator", "COLLECTIONS", "SUPPORTED_FORMAT_VERSION"]
