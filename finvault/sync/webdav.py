"""
WebDAV トランスポート

MKCOL / PUT / GET / PROPFIND / DELETE を aiohttp で実行し、
一時的なネットワーク障害のみ指数バックオフで再試行する。
認証エラー (401/403) と Not Found (404) は再試行しない。
"""

from __future__ import annotations

from collections.abc import Container
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import quote, unquote, urlsplit
from xml.etree import ElementTree

import aiohttp
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finvault.backup.errors import (
    AuthError,
    NetworkError,
    RecordNotFoundError,
    TransientNetworkError,
)
from finvault.backup.models import SyncConfig
from finvault.config import Settings, get_settings
from finvault.utils.logger import redact_url
from finvault.utils.mixins import LoggerMixin

DAV_NS = {"d": "DAV:"}

PROPFIND_BODY = (
    b'<?xml version="1.0" encoding="utf-8"?>'
    b'<d:propfind xmlns:d="DAV:"><d:prop>'
    b"<d:resourcetype/><d:getcontentlength/><d:getlastmodified/>"
    b"</d:prop></d:propfind>"
)

RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class DavResource:
    href: str
    name: str
    size_bytes: int = 0
    modified_at: datetime | None = None
    is_collection: bool = False


def _normalized_path(href: str) -> str:
    return unquote(urlsplit(href).path).rstrip("/")


def _parse_modified(text: str | None) -> datetime | None:
    if not text:
        return None
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def parse_multistatus(body: bytes) -> list[DavResource]:
    """PROPFIND の 207 Multi-Status レスポンスを解析"""
    try:
        root = ElementTree.fromstring(body)
    except ElementTree.ParseError as e:
        raise NetworkError(f"Malformed PROPFIND response: {e}") from e

    resources = []
    for response in root.findall("d:response", DAV_NS):
        href = response.findtext("d:href", default="", namespaces=DAV_NS).strip()
        if not href:
            continue

        prop = None
        for propstat in response.findall("d:propstat", DAV_NS):
            status = propstat.findtext("d:status", default="", namespaces=DAV_NS)
            if " 200 " in f"{status} ":
                prop = propstat.find("d:prop", DAV_NS)
                break

        is_collection = False
        size = 0
        modified = None
        if prop is not None:
            is_collection = prop.find("d:resourcetype/d:collection", DAV_NS) is not None
            length = prop.findtext("d:getcontentlength", default="", namespaces=DAV_NS)
            size = int(length) if length.strip().isdigit() else 0
            modified = _parse_modified(
                prop.findtext("d:getlastmodified", default=None, namespaces=DAV_NS)
            )

        path = _normalized_path(href)
        resources.append(
            DavResource(
                href=href,
                name=path.rsplit("/", 1)[-1],
                size_bytes=size,
                modified_at=modified,
                is_collection=is_collection,
            )
        )
    return resources


class WebDavClient(LoggerMixin):
    """WebDAV サーバーへの低レベルクライアント"""

    def __init__(
        self,
        config: SyncConfig,
        *,
        settings: Settings | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.config = config
        self.attempts = settings.remote_retry_attempts
        self.backoff_base = settings.remote_retry_base_seconds
        self.backoff_max = settings.remote_retry_max_seconds
        self.timeout = aiohttp.ClientTimeout(
            total=settings.http_timeout_seconds,
            connect=settings.http_connect_timeout_seconds,
        )
        self._auth = aiohttp.BasicAuth(
            config.username, config.password.get_secret_value()
        )
        self._session = session
        self._owns_session = session is None

    def _log_context(self) -> dict[str, Any]:
        return {"server": redact_url(self.config.server_url)}

    async def __aenter__(self) -> WebDavClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    # ------------------------------------------------------------------
    # URL helpers
    # ------------------------------------------------------------------

    @property
    def root_url(self) -> str:
        return f"{self.config.server_url}/"

    @property
    def folder_url(self) -> str:
        return self.config.folder_url

    def file_url(self, name: str) -> str:
        return f"{self.folder_url}{quote(name)}"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        ok: Container[int],
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[int, bytes]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
            retry=retry_if_exception_type(TransientNetworkError),
            before_sleep=self._log_retry,
            reraise=True,
        )
        result: tuple[int, bytes] = (0, b"")
        async for attempt in retrying:
            with attempt:
                result = await self._send(
                    method, url, ok=ok, data=data, headers=headers
                )
        return result

    async def _send(
        self,
        method: str,
        url: str,
        *,
        ok: Container[int],
        data: bytes | None,
        headers: dict[str, str] | None,
    ) -> tuple[int, bytes]:
        session = self._get_session()
        try:
            async with session.request(
                method, url, data=data, headers=headers, auth=self._auth
            ) as response:
                status = response.status
                body = await response.read()
        except TimeoutError as e:
            raise TransientNetworkError(
                f"{method} {redact_url(url)} timed out"
            ) from e
        except aiohttp.ClientError as e:
            raise TransientNetworkError(
                f"{method} {redact_url(url)} failed: {e}"
            ) from e

        if status in ok:
            return status, body
        raise self._status_error(method, url, status)

    @staticmethod
    def _status_error(method: str, url: str, status: int) -> Exception:
        target = f"{method} {redact_url(url)}"
        if status in (401, 403):
            return AuthError(f"{target} was rejected ({status})", status=status)
        if status == 404:
            return RecordNotFoundError(f"{target} returned 404")
        if status in RETRYABLE_STATUSES:
            return TransientNetworkError(f"{target} returned {status}", status=status)
        return NetworkError(f"{target} returned {status}", status=status)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self.logger.warning(
            "Transient WebDAV failure - will retry",
            attempt=retry_state.attempt_number,
            max_attempts=self.attempts,
            error=str(error),
        )

    # ------------------------------------------------------------------
    # WebDAV verbs
    # ------------------------------------------------------------------

    async def propfind(self, url: str, depth: int = 1) -> list[DavResource]:
        _, body = await self._request(
            "PROPFIND",
            url,
            ok={207, 200},
            data=PROPFIND_BODY,
            headers={"Depth": str(depth), "Content-Type": "application/xml"},
        )
        return parse_multistatus(body)

    async def exists(self, url: str) -> bool:
        try:
            await self.propfind(url, depth=0)
        except RecordNotFoundError:
            return False
        return True

    async def mkcol(self, url: str) -> None:
        # 405 はコレクションが既に存在する場合
        await self._request("MKCOL", url, ok={200, 201, 204, 405})

    async def ensure_folder(self) -> None:
        """バックアップ用フォルダーが無ければ階層ごとに作成"""
        if await self.exists(self.folder_url):
            return

        segments = self.config.remote_folder.split("/")
        for index in range(1, len(segments) + 1):
            partial = "/".join(quote(part) for part in segments[:index])
            url = f"{self.config.server_url}/{partial}/"
            if not await self.exists(url):
                await self.mkcol(url)
                self.logger.info("Remote collection created", folder=partial)

    async def list_folder(self) -> list[DavResource]:
        try:
            resources = await self.propfind(self.folder_url, depth=1)
        except RecordNotFoundError:
            return []
        folder_path = _normalized_path(self.folder_url)
        return [
            resource
            for resource in resources
            if not resource.is_collection
            and _normalized_path(resource.href) != folder_path
        ]

    async def put(self, name: str, data: bytes) -> None:
        await self._request(
            "PUT",
            self.file_url(name),
            ok={200, 201, 204},
            data=data,
            headers={"Content-Type": "application/json"},
        )

    async def get(self, name: str) -> bytes:
        _, body = await self._request("GET", self.file_url(name), ok={200})
        return body

    async def delete(self, name: str) -> None:
        await self._request("DELETE", self.file_url(name), ok={200, 202, 204})

    async def probe(self) -> bool:
        """読み取り専用の接続確認 (PROPFIND Depth 0)"""
        await self.propfind(self.root_url, depth=0)
        return True


__all__ = ["DavResource", "WebDavClient", "parse_multistatus"]
