"""Presence and typing signals for the direct message websocket."""
from __future__ import annotations

from dataclasses import dataclass

from helpdesk.core.logging import log_info
from helpdesk.services.message_fanout import MessageFanout, RecentConversationsLoader
from helpdesk.services.realtime import (
    BroadcastResult,
    ConnectionRegistry,
    Identity,
    PushTransport,
    WebSocketTransport,
    deliver,
)

ONLINE_USERS_EVENT = "UpdateOnlineUsers"
STARTED_TYPING_EVENT = "StartedTyping"
STOPPED_TYPING_EVENT = "StoppedTyping"


class DirectMessageHub:
    """Connection lifecycle handling on top of a :class:`ConnectionRegistry`."""

    def __init__(self, registry: ConnectionRegistry, transport: PushTransport) -> None:
        self.registry = registry
        self.transport = transport

    async def on_connect(self, identity: Identity, connection_id: str) -> BroadcastResult:
        count = await self.registry.add_connection(identity, connection_id)
        log_info(
            "Direct message connection opened",
            user_id=identity,
            connection_id=connection_id,
            connections=count,
        )
        return await self.broadcast_presence()

    async def on_disconnect(self, identity: Identity, connection_id: str) -> BroadcastResult:
        remaining = await self.registry.remove_connection(identity, connection_id)
        log_info(
            "Direct message connection closed",
            user_id=identity,
            connection_id=connection_id,
            connections=remaining,
        )
        return await self.broadcast_presence()

    async def broadcast_presence(self) -> BroadcastResult:
        """Send the full online identity list to every connected client.

        The whole list is resent on each change; clients replace their state
        with it rather than applying a diff.
        """

        online, targets = await self.registry.presence_snapshot()
        return await deliver(self.transport, targets, ONLINE_USERS_EVENT, sorted(online))

    async def notify_typing(self, sender: Identity, receiver: Identity) -> BroadcastResult:
        return await self._relay(STARTED_TYPING_EVENT, sender, receiver)

    async def notify_stopped_typing(
        self, sender: Identity, receiver: Identity
    ) -> BroadcastResult:
        return await self._relay(STOPPED_TYPING_EVENT, sender, receiver)

    async def _relay(self, event: str, sender: Identity, receiver: Identity) -> BroadcastResult:
        targets = await self.registry.get_connections(receiver)
        return await deliver(self.transport, targets, event, sender)


@dataclass(slots=True)
class RealtimeServices:
    """Realtime collaborators shared by every handler of one application."""

    registry: ConnectionRegistry
    transport: WebSocketTransport
    hub: DirectMessageHub
    fanout: MessageFanout


def build_realtime_services(recent_conversations: RecentConversationsLoader) -> RealtimeServices:
    registry = ConnectionRegistry()
    transport = WebSocketTransport()
    return RealtimeServices(
        registry=registry,
        transport=transport,
        hub=DirectMessageHub(registry, transport),
        fanout=MessageFanout(registry, transport, recent_conversations),
    )
