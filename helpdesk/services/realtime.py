"""Realtime connection tracking and push delivery for websocket clients."""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable
from uuid import uuid4

from fastapi import WebSocket

from helpdesk.core.logging import log_debug

Identity = int


@dataclass(frozen=True, slots=True)
class BroadcastResult:
    """Summary of a push operation across several connections."""

    attempted: int
    delivered: int
    dropped: int

    def __add__(self, other: "BroadcastResult") -> "BroadcastResult":
        return BroadcastResult(
            attempted=self.attempted + other.attempted,
            delivered=self.delivered + other.delivered,
            dropped=self.dropped + other.dropped,
        )


EMPTY_RESULT = BroadcastResult(attempted=0, delivered=0, dropped=0)


class ConnectionRegistry:
    """Map each user identity to the set of its live connection ids.

    A single lock guards the whole mapping, so ``get_online_identities`` never
    observes a half-applied connect or disconnect. Identities only exist in the
    mapping while they own at least one connection.
    """

    def __init__(self) -> None:
        self._connections: dict[Identity, set[str]] = {}
        self._lock = asyncio.Lock()

    async def add_connection(self, identity: Identity, connection_id: str) -> int:
        """Register ``connection_id`` under ``identity``.

        Returns the number of live connections the identity owns afterwards.
        """

        async with self._lock:
            connections = self._connections.setdefault(identity, set())
            connections.add(connection_id)
            return len(connections)

    async def remove_connection(self, identity: Identity, connection_id: str) -> int:
        """Forget ``connection_id``; unknown pairs are ignored.

        Returns the number of live connections the identity still owns.
        """

        async with self._lock:
            connections = self._connections.get(identity)
            if connections is None:
                return 0
            connections.discard(connection_id)
            if not connections:
                del self._connections[identity]
                return 0
            return len(connections)

    async def get_connections(self, identity: Identity) -> frozenset[str]:
        async with self._lock:
            return frozenset(self._connections.get(identity, ()))

    async def get_online_identities(self) -> frozenset[Identity]:
        async with self._lock:
            return frozenset(self._connections)

    async def presence_snapshot(self) -> tuple[frozenset[Identity], frozenset[str]]:
        """Return the online identities and every connection id as one consistent view."""

        async with self._lock:
            return (
                frozenset(self._connections),
                frozenset(
                    connection_id
                    for connections in self._connections.values()
                    for connection_id in connections
                ),
            )

    async def connection_count(self, identity: Identity) -> int:
        async with self._lock:
            return len(self._connections.get(identity, ()))


class PushTransport(ABC):
    """Capability for sending a named event to one physical connection."""

    @abstractmethod
    async def push(self, connection_id: str, event: str, payload: Any) -> None:
        """Send ``payload`` labelled ``event`` to ``connection_id``."""


class WebSocketTransport(PushTransport):
    """Deliver events as JSON frames over accepted FastAPI websockets."""

    def __init__(self) -> None:
        self._sockets: dict[str, WebSocket] = {}

    def attach(self, websocket: WebSocket) -> str:
        connection_id = uuid4().hex
        self._sockets[connection_id] = websocket
        return connection_id

    def detach(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)

    async def push(self, connection_id: str, event: str, payload: Any) -> None:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            # The socket has already gone; its disconnect handler cleans up.
            return
        await websocket.send_json({"event": event, "data": payload})


async def deliver(
    transport: PushTransport,
    connection_ids: Iterable[str],
    event: str,
    payload: Any,
) -> BroadcastResult:
    """Push one event to each connection, isolating per-connection failures.

    The caller passes a snapshot of connection ids taken from the registry so
    no lock is held while sending.
    """

    targets = list(connection_ids)
    if not targets:
        return EMPTY_RESULT

    delivered = 0
    dropped = 0
    for connection_id in targets:
        try:
            await transport.push(connection_id, event, payload)
            delivered += 1
        except Exception as exc:
            dropped += 1
            log_debug(
                "Realtime push dropped",
                connection_id=connection_id,
                event=event,
                error=str(exc),
            )

    return BroadcastResult(attempted=len(targets), delivered=delivered, dropped=dropped)
