"""Push committed direct message changes to every session of both parties."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Sequence

from helpdesk.core.logging import log_debug, log_error
from helpdesk.services.realtime import (
    EMPTY_RESULT,
    BroadcastResult,
    ConnectionRegistry,
    Identity,
    PushTransport,
    deliver,
)

RECENT_CONVERSATIONS_EVENT = "UpdateRecentDirectMessages"

RecentConversationsLoader = Callable[[Identity], Awaitable[Sequence[Any]]]


class MessageEventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    READ = "read"
    ATTACHMENT_UPDATED = "attachment_updated"
    ATTACHMENT_DELETED = "attachment_deleted"
    TYPING = "typing"


EVENT_NAMES: dict[MessageEventKind, str] = {
    MessageEventKind.CREATED: "ReceiveMessage",
    MessageEventKind.UPDATED: "MessageUpdated",
    MessageEventKind.DELETED: "MessageDeleted",
    MessageEventKind.READ: "MessageMarkAsRead",
    MessageEventKind.ATTACHMENT_UPDATED: "MessageAttachmentUpdated",
    MessageEventKind.ATTACHMENT_DELETED: "MessageAttachmentDeleted",
}


@dataclass(slots=True)
class MessageEvent:
    kind: MessageEventKind
    sender_id: Identity
    receiver_id: Identity
    payload: Any


class MessageFanout:
    """Deliver message events, then refreshed conversation summaries.

    Every push for an event happens before any ``UpdateRecentDirectMessages``
    refresh, so a summary never references a message state the client has not
    been told about yet.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        transport: PushTransport,
        recent_conversations: RecentConversationsLoader,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self._recent_conversations = recent_conversations

    async def notify(self, event: MessageEvent) -> BroadcastResult:
        event_name = _event_name(event.kind)
        result = await self._push_to_parties(
            (event.receiver_id, event.sender_id), event_name, event.payload
        )
        log_debug(
            "Direct message event fanned out",
            event=event_name,
            sender_id=event.sender_id,
            receiver_id=event.receiver_id,
            attempted=result.attempted,
            delivered=result.delivered,
            dropped=result.dropped,
        )
        for identity in _unique((event.receiver_id, event.sender_id)):
            result += await self.refresh_recent_conversations(identity)
        return result

    async def notify_all_read(
        self, receiver_id: Identity, events: Iterable[MessageEvent]
    ) -> BroadcastResult:
        """Tell each original sender that their messages to ``receiver_id`` were read."""

        by_sender: dict[Identity, list[Any]] = {}
        for event in events:
            by_sender.setdefault(event.sender_id, []).append(event.payload)

        event_name = EVENT_NAMES[MessageEventKind.READ]
        result = EMPTY_RESULT
        for sender_id, payloads in by_sender.items():
            result += await self._push_to_parties((receiver_id, sender_id), event_name, payloads)

        result += await self.refresh_recent_conversations(receiver_id)
        for sender_id in by_sender:
            if sender_id != receiver_id:
                result += await self.refresh_recent_conversations(sender_id)
        return result

    async def refresh_recent_conversations(self, identity: Identity) -> BroadcastResult:
        targets = await self.registry.get_connections(identity)
        if not targets:
            return EMPTY_RESULT
        try:
            snapshot = await self._recent_conversations(identity)
        except Exception as exc:
            log_error(
                "Unable to load recent conversations for realtime refresh",
                user_id=identity,
                error=str(exc),
            )
            return EMPTY_RESULT
        # Connections may have changed while the snapshot was loading.
        targets = await self.registry.get_connections(identity)
        return await deliver(
            self.transport, targets, RECENT_CONVERSATIONS_EVENT, list(snapshot)
        )

    async def _push_to_parties(
        self, identities: Iterable[Identity], event_name: str, payload: Any
    ) -> BroadcastResult:
        targets: list[str] = []
        seen: set[str] = set()
        for identity in _unique(identities):
            for connection_id in sorted(await self.registry.get_connections(identity)):
                if connection_id not in seen:
                    seen.add(connection_id)
                    targets.append(connection_id)
        return await deliver(self.transport, targets, event_name, payload)


def _event_name(kind: MessageEventKind) -> str:
    try:
        return EVENT_NAMES[kind]
    except KeyError:
        raise ValueError(f"{kind.value} events are not fanned out as message events") from None


def _unique(identities: Iterable[Identity]) -> list[Identity]:
    ordered: list[Identity] = []
    for identity in identities:
        if identity not in ordered:
            ordered.append(identity)
    return ordered
