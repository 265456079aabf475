"""Collaborator that turns domain data into a snapshot payload and back."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Exporter(Protocol):
    async def serialize(self) -> bytes:
        """Serialize the current domain store."""
        ...

    async def deserialize(self, payload: bytes) -> None:
        """Replace the domain store with ``payload``.

        Implementations must either fully apply the payload or leave the
        previous contents untouched.
        """
        ...


__all__ = ["Exporter"]
