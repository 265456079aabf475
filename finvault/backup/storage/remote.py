"""Remote storage on a WebDAV collection."""

from __future__ import annotations

from urllib.parse import urlsplit

from finvault.backup.models import LocationKind, RecordRef, SyncConfig
from finvault.backup.storage.base import (
    StorageLocation,
    check_record_name,
    is_temporary_name,
)
from finvault.sync.webdav import WebDavClient


class WebDavStorage(StorageLocation):
    """Backup folder on a WebDAV server.

    A single PUT publishes the whole record, so readers never observe a
    partially uploaded file on servers that stage uploads before committing.
    """

    kind = LocationKind.REMOTE

    def __init__(self, client: WebDavClient):
        self.client = client

    @classmethod
    def from_config(cls, config: SyncConfig, **client_kwargs) -> WebDavStorage:
        return cls(WebDavClient(config, **client_kwargs))

    @property
    def config(self) -> SyncConfig:
        return self.client.config

    @property
    def key(self) -> str:
        host = urlsplit(self.config.server_url).netloc.rsplit("@", 1)[-1]
        return f"remote:{self.config.username}@{host}/{self.config.remote_folder}"

    @property
    def display_name(self) -> str:
        host = urlsplit(self.config.server_url).netloc.rsplit("@", 1)[-1]
        return f"{host}/{self.config.remote_folder}"

    async def ensure_ready(self) -> None:
        await self.client.ensure_folder()

    async def exists(self) -> bool:
        return await self.client.exists(self.client.folder_url)

    async def write(self, name: str, data: bytes) -> RecordRef:
        check_record_name(name)
        await self.client.ensure_folder()
        await self.client.put(name, data)
        self.logger.info("Backup uploaded", record=name, size=len(data))
        return RecordRef(name=name, size_bytes=len(data))

    async def read(self, name: str) -> bytes:
        check_record_name(name)
        return await self.client.get(name)

    async def list(self) -> list[RecordRef]:
        resources = await self.client.list_folder()
        return [
            RecordRef(
                name=resource.name,
                size_bytes=resource.size_bytes,
                modified_at=resource.modified_at,
            )
            for resource in resources
            if resource.name and not is_temporary_name(resource.name)
        ]

    async def delete(self, name: str) -> None:
        check_record_name(name)
        await self.client.delete(name)
        self.logger.debug("Remote backup deleted", record=name)

    async def close(self) -> None:
        await self.client.close()


__all__ = ["WebDavStorage"]
