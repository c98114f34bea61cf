import pytest

from helpdesk.services.direct_message_hub import (
    ONLINE_USERS_EVENT,
    STARTED_TYPING_EVENT,
    STOPPED_TYPING_EVENT,
    DirectMessageHub,
    build_realtime_services,
)
from helpdesk.services.realtime import ConnectionRegistry, WebSocketTransport


@pytest.fixture
def hub(transport):
    return DirectMessageHub(ConnectionRegistry(), transport)


@pytest.mark.anyio
async def test_connect_broadcasts_full_presence_to_every_client(hub, transport):
    await hub.on_connect(1, "a1")
    await hub.on_connect(2, "b1")

    last_two = transport.pushes[-2:]
    assert sorted(target for target, _, _ in last_two) == ["a1", "b1"]
    assert all(event == ONLINE_USERS_EVENT for _, event, _ in last_two)
    assert all(payload == [1, 2] for _, _, payload in last_two)


@pytest.mark.anyio
async def test_disconnect_rebroadcasts_presence_without_the_departed_identity(hub, transport):
    await hub.on_connect(1, "a1")
    await hub.on_connect(2, "b1")
    transport.pushes.clear()

    result = await hub.on_disconnect(2, "b1")

    assert transport.pushes == [("a1", ONLINE_USERS_EVENT, [1])]
    assert result.attempted == 1


@pytest.mark.anyio
async def test_closing_one_tab_keeps_identity_online(hub, transport):
    await hub.on_connect(1, "a1")
    await hub.on_connect(1, "a2")
    transport.pushes.clear()

    await hub.on_disconnect(1, "a1")

    assert transport.pushes == [("a2", ONLINE_USERS_EVENT, [1])]


@pytest.mark.anyio
async def test_stale_disconnect_is_harmless(hub, transport):
    await hub.on_connect(1, "a1")

    await hub.on_disconnect(1, "never-registered")
    await hub.on_disconnect(9, "ghost")

    assert await hub.registry.get_online_identities() == frozenset({1})


@pytest.mark.anyio
async def test_typing_reaches_every_receiver_connection_only(hub, transport):
    await hub.on_connect(1, "a1")
    await hub.on_connect(2, "b1")
    await hub.on_connect(2, "b2")
    transport.pushes.clear()

    await hub.notify_typing(1, 2)
    await hub.notify_stopped_typing(1, 2)

    assert sorted(transport.pushes) == sorted(
        [
            ("b1", STARTED_TYPING_EVENT, 1),
            ("b2", STARTED_TYPING_EVENT, 1),
            ("b1", STOPPED_TYPING_EVENT, 1),
            ("b2", STOPPED_TYPING_EVENT, 1),
        ]
    )
    assert transport.events_for("a1") == []


@pytest.mark.anyio
async def test_typing_to_offline_identity_is_a_silent_noop(hub, transport):
    await hub.on_connect(1, "a1")
    transport.pushes.clear()

    result = await hub.notify_typing(1, 2)

    assert transport.pushes == []
    assert (result.attempted, result.delivered, result.dropped) == (0, 0, 0)


@pytest.mark.anyio
async def test_failed_push_does_not_stop_presence_broadcast(hub, transport):
    await hub.on_connect(1, "a1")
    await hub.on_connect(2, "b1")
    transport.failing.add("a1")
    transport.pushes.clear()

    result = await hub.on_connect(3, "c1")

    assert sorted(target for target, _, _ in transport.pushes) == ["b1", "c1"]
    assert (result.attempted, result.delivered, result.dropped) == (3, 2, 1)
    # The dead connection stays registered until its own disconnect arrives.
    assert await hub.registry.get_connections(1) == frozenset({"a1"})


def test_build_realtime_services_shares_one_registry():
    async def no_conversations(identity):
        return []

    first = build_realtime_services(no_conversations)
    second = build_realtime_services(no_conversations)

    assert first.hub.registry is first.registry
    assert first.fanout.registry is first.registry
    assert first.hub.transport is first.transport
    assert isinstance(first.transport, WebSocketTransport)
    assert first.registry is not second.registry
