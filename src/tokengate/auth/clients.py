"""Registry of known API clients, fixed at process start."""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Iterator, Optional

from tokengate.models.entities import Client


class ClientRegistry:
    """Read-only lookup table of registered clients keyed by client id.

    A later client with the same id replaces an earlier one, so a clients
    file can override the built-in default client.
    """

    def __init__(self, clients: Iterable[Client]) -> None:
        table: dict[str, Client] = {}
        for client in clients:
            table[client.id] = client
        self._clients = MappingProxyType(table)

    def get(self, client_id: str) -> Optional[Client]:
        return self._clients.get(client_id)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients

    def __iter__(self) -> Iterator[Client]:
        return iter(self._clients.values())

    def __len__(self) -> int:
        return len(self._clients)
