"""
共通フィクスチャ

- ルートを `sys.path` に追加して `import finvault.*` を解決
- テスト向けの環境変数を毎テスト自動設定（autouse）
- メモリ上の Exporter と、 aiohttp.web によるテスト用 WebDAV サーバー
"""

from __future__ import annotations

import asyncio
import copy
import json
import sys
from datetime import UTC, datetime
from email.utils import format_datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

# プロジェクトルート（このファイルの親の親）をパスに追加
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from finvault.backup.errors import RecordNotFoundError, StorageIOError  # noqa: E402
from finvault.backup.models import LocationKind, RecordRef  # noqa: E402
from finvault.backup.storage.base import StorageLocation  # noqa: E402
from finvault.config import clear_settings_cache, get_settings  # noqa: E402

WEBDAV_USER = "alice"
WEBDAV_PASSWORD = "s3cret-pass"

SAMPLE_LEDGER: dict[str, Any] = {
    "categories": [
        {"id": 1, "name": "Food", "type": "expense"},
        {"id": 2, "name": "Salary", "type": "income"},
    ],
    "accounts": [
        {"id": 10, "name": "Wallet", "type": "cash", "balance": "120.50"},
        {"id": 11, "name": "Bank", "type": "bank", "balance": "5400.00"},
    ],
    "transactions": [
        {
            "id": 100,
            "amount": "12.30",
            "accountId": 10,
            "categoryId": 1,
            "date": "2025-01-05T12:00:00Z",
            "note": "lunch",
        },
        {
            "id": 101,
            "amount": "3000.00",
            "accountId": 11,
            "categoryId": 2,
            "date": "2025-01-25T09:00:00Z",
            "isIncome": True,
        },
    ],
    "budgets": [
        {
            "id": 1000,
            "name": "January food",
            "amount": "400.00",
            "startDate": "2025-01-01",
            "endDate": "2025-01-31",
            "categoryIds": [1],
        }
    ],
}


def sample_payload(**overrides: Any) -> bytes:
    document = {
        "formatVersion": 1,
        "exportedAt": "2025-02-01T08:00:00+00:00",
        **copy.deepcopy(SAMPLE_LEDGER),
        "metadata": {"exportTime": "2025-02-01 08:00:00", "version": "1.0"},
    }
    document.update(overrides)
    return json.dumps(document).encode("utf-8")


class MemoryExporter:
    """Exporter over an in-memory document."""

    def __init__(self, data: dict[str, Any] | None = None):
        self.data = copy.deepcopy(data if data is not None else SAMPLE_LEDGER)
        self.fail_serialize: Exception | None = None
        self.fail_deserialize: Exception | None = None
        self.serialize_calls = 0

    async def serialize(self) -> bytes:
        self.serialize_calls += 1
        if self.fail_serialize is not None:
            raise self.fail_serialize
        return json.dumps({"formatVersion": 1, **self.data}).encode("utf-8")

    async def deserialize(self, payload: bytes) -> None:
        if self.fail_deserialize is not None:
            raise self.fail_deserialize
        document = json.loads(payload)
        self.data = {
            name: document.get(name, [])
            for name in ("categories", "accounts", "transactions", "budgets")
        }


class FakeWebDav:
    """Minimal WebDAV server keeping files in memory."""

    def __init__(self, username: str = WEBDAV_USER, password: str = WEBDAV_PASSWORD):
        self.auth_header = aiohttp.BasicAuth(username, password).encode()
        self.files: dict[str, bytes] = {}
        self.collections: set[str] = {""}
        self.requests: list[tuple[str, str]] = []
        self.fail_next: list[int] = []
        self.stall_put = False
        self.put_started = asyncio.Event()
        self.put_release = asyncio.Event()
        self.base_url = ""

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.requests if m == method)

    def names_in(self, folder: str) -> list[str]:
        prefix = f"/{folder.strip('/')}/"
        return sorted(path[len(prefix):] for path in self.files if path.startswith(prefix))

    async def handle(self, request: web.Request) -> web.StreamResponse:
        self.requests.append((request.method, request.path))
        if self.fail_next:
            return web.Response(status=self.fail_next.pop(0))
        if request.headers.get("Authorization") != self.auth_header:
            return web.Response(status=401)

        path = request.path.rstrip("/")
        parent = path.rsplit("/", 1)[0]
        handler = getattr(self, f"_{request.method.lower()}", None)
        if handler is None:
            return web.Response(status=405)
        return await handler(request, path, parent)

    async def _propfind(self, request: web.Request, path: str, parent: str) -> web.Response:
        if path in self.collections:
            entries = [self._entry(path + "/", collection=True)]
            if request.headers.get("Depth", "1") != "0":
                for child, data in sorted(self.files.items()):
                    if child.rsplit("/", 1)[0] == path:
                        entries.append(self._entry(child, size=len(data)))
                for child in sorted(self.collections):
                    if child and child != path and child.rsplit("/", 1)[0] == path:
                        entries.append(self._entry(child + "/", collection=True))
        elif path in self.files:
            entries = [self._entry(path, size=len(self.files[path]))]
        else:
            return web.Response(status=404)

        body = (
            '<?xml version="1.0" encoding="utf-8"?>'
            '<d:multistatus xmlns:d="DAV:">' + "".join(entries) + "</d:multistatus>"
        )
        return web.Response(status=207, text=body, content_type="application/xml")

    async def _mkcol(self, request: web.Request, path: str, parent: str) -> web.Response:
        if path in self.collections or path in self.files:
            return web.Response(status=405)
        if parent not in self.collections:
            return web.Response(status=409)
        self.collections.add(path)
        return web.Response(status=201)

    async def _put(self, request: web.Request, path: str, parent: str) -> web.Response:
        if parent not in self.collections:
            return web.Response(status=409)
        body = await request.read()
        if self.stall_put:
            self.put_started.set()
            await self.put_release.wait()
            return web.Response(status=500)
        self.files[path] = body
        return web.Response(status=201)

    async def _get(self, request: web.Request, path: str, parent: str) -> web.Response:
        if path not in self.files:
            return web.Response(status=404)
        return web.Response(body=self.files[path])

    async def _delete(self, request: web.Request, path: str, parent: str) -> web.Response:
        if path not in self.files:
            return web.Response(status=404)
        del self.files[path]
        return web.Response(status=204)

    @staticmethod
    def _entry(href: str, *, collection: bool = False, size: int = 0) -> str:
        resource_type = (
            "<d:resourcetype><d:collection/></d:resourcetype>"
            if collection
            else "<d:resourcetype/>"
        )
        length = "" if collection else f"<d:getcontentlength>{size}</d:getcontentlength>"
        modified = format_datetime(datetime.now(UTC), usegmt=True)
        return (
            f"<d:response><d:href>{quote(href)}</d:href><d:propstat><d:prop>"
            f"{resource_type}{length}<d:getlastmodified>{modified}</d:getlastmodified>"
            "</d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
        )


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """テスト用の環境変数を毎テストで設定し、設定キャッシュをリセット。"""
    env = {
        "FINVAULT_ENVIRONMENT": "testing",
        "FINVAULT_DATA_DIR": str(tmp_path / "data"),
        "FINVAULT_LOG_DIR": str(tmp_path / "logs"),
        "FINVAULT_REMOTE_RETRY_BASE_SECONDS": "0.01",
        "FINVAULT_REMOTE_RETRY_MAX_SECONDS": "0.05",
        "FINVAULT_HTTP_TIMEOUT_SECONDS": "5",
        "FINVAULT_HTTP_CONNECT_TIMEOUT_SECONDS": "1",
    }
    for k, v in env.items():
        monkeypatch.setenv(k, v)

    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def exporter() -> MemoryExporter:
    return MemoryExporter()


@pytest.fixture
async def webdav_server():
    fake = FakeWebDav()
    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", fake.handle)
    server = TestServer(app)
    await server.start_server()
    fake.base_url = str(server.make_url("/")).rstrip("/")
    yield fake
    await server.close()


@pytest.fixture
def sync_config(webdav_server: FakeWebDav):
    from finvault.backup.models import SyncConfig

    return SyncConfig(
        server_url=webdav_server.base_url,
        username=WEBDAV_USER,
        password=WEBDAV_PASSWORD,
        remote_folder="finvault",
    )


@pytest.fixture
async def engine(settings, exporter):
    from finvault.backup.engine import BackupEngine
    from finvault.backup.preferences import PreferencesStore
    from finvault.security.cipher import MasterKeyCipher

    cipher = MasterKeyCipher(settings.master_key_path)
    backup_engine = BackupEngine(
        exporter,
        PreferencesStore(settings.preferences_path, cipher, settings),
        settings=settings,
    )
    yield backup_engine
    await backup_engine.close()


class MemoryStorage(StorageLocation):
    """In-memory storage location with failure injection."""

    kind = LocationKind.LOCAL_PATH

    def __init__(self, key: str = "memory:test"):
        self._key = key
        self.files: dict[str, tuple[bytes, datetime | None]] = {}
        self.fail_delete: set[str] = set()
        self.fail_write: Exception | None = None
        self.deleted: list[str] = []

    @property
    def key(self) -> str:
        return self._key

    def add(self, name: str, data: bytes = b"{}", modified_at: datetime | None = None):
        self.files[name] = (data, modified_at)

    async def ensure_ready(self) -> None:
        return None

    async def exists(self) -> bool:
        return True

    async def write(self, name: str, data: bytes) -> RecordRef:
        if self.fail_write is not None:
            raise self.fail_write
        now = datetime.now(UTC)
        self.files[name] = (data, now)
        return RecordRef(name=name, size_bytes=len(data), modified_at=now)

    async def read(self, name: str) -> bytes:
        if name not in self.files:
            raise RecordNotFoundError(name)
        return self.files[name][0]

    async def list(self) -> list[RecordRef]:
        return [
            RecordRef(name=name, size_bytes=len(data), modified_at=modified)
            for name, (data, modified) in self.files.items()
        ]

    async def delete(self, name: str) -> None:
        if name in self.fail_delete:
            raise StorageIOError(f"cannot delete {name}")
        if name not in self.files:
            raise RecordNotFoundError(name)
        del self.files[name]
        self.deleted.append(name)


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()
