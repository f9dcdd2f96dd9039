"""
Tests for the group-addressed event router and the cross-instance bridge.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from handoff.models.events import Event, EventType
from handoff.realtime.bridge import RedisEventBridge
from handoff.realtime.router import AGENTS_ALL, session_group


@pytest.fixture
def alice(router, make_connection):
    connection = make_connection("conn-alice")
    router.register(connection)
    return connection


@pytest.fixture
def bob(router, make_connection):
    connection = make_connection("conn-bob")
    router.register(connection)
    return connection


# ===========================
# Membership Tests
# ===========================

async def test_broadcast_reaches_only_members(router, alice, bob):
    router.join(session_group("sess-1"), alice.connection_id)

    delivered = await router.broadcast(session_group("sess-1"), EventType.CHAT_RESPONSE, {"text": "hi"})

    assert delivered == 1
    assert alice.types() == ["chatResponse"]
    assert alice.sent[0]["payload"] == {"text": "hi"}
    assert "timestamp" in alice.sent[0]
    assert bob.sent == []


async def test_broadcast_exclude(router, alice, bob):
    for connection in (alice, bob):
        router.join(AGENTS_ALL, connection.connection_id)

    await router.broadcast(AGENTS_ALL, EventType.QUEUE_UPDATE, exclude=[alice.connection_id])

    assert alice.sent == []
    assert bob.types() == ["queueUpdate"]


async def test_broadcast_many_delivers_once_per_connection(router, alice):
    router.join("session:sess-1", alice.connection_id)
    router.join("owner:user-1", alice.connection_id)

    await router.broadcast_many(["session:sess-1", "owner:user-1"], EventType.TICKET_RESOLVED, {"ticket_id": "t"})

    assert alice.types() == ["ticketResolved"]


async def test_empty_group_misses_the_event(router, alice):
    assert await router.broadcast("session:nobody", EventType.TYPING) == 0
    assert alice.sent == []


def test_join_requires_registration(router):
    router.join("session:sess-1", "conn-ghost")

    assert router.members("session:sess-1") == set()


async def test_unregister_leaves_every_group(router, alice):
    router.join("session:sess-1", alice.connection_id)
    router.join("owner:user-1", alice.connection_id)

    router.unregister(alice.connection_id)

    assert router.has_connection(alice.connection_id) is False
    assert router.groups == {}
    assert await router.send(alice.connection_id, EventType.TYPING) is False


async def test_failing_connection_is_dropped(router, make_connection, alice):
    broken = make_connection("conn-broken", fail=True)
    router.register(broken)
    for connection in (alice, broken):
        router.join("session:sess-1", connection.connection_id)

    delivered = await router.broadcast("session:sess-1", EventType.TYPING)

    assert delivered == 1
    assert router.has_connection("conn-broken") is False
    assert router.members("session:sess-1") == {alice.connection_id}


def test_stats(router, alice, bob):
    router.join(AGENTS_ALL, alice.connection_id)

    stats = router.get_stats()

    assert stats["connections"] == 2
    assert stats["agents_online"] == 1
    assert stats["instance_id"] == "test-instance"


# ===========================
# Bridge Tests
# ===========================

async def test_broadcast_publishes_once_to_bridge(router, alice):
    router.bridge = MagicMock()
    router.bridge.publish = AsyncMock()
    router.join("session:sess-1", alice.connection_id)

    await router.broadcast_many(["session:sess-1", "owner:user-1"], EventType.TICKET_ASSIGNED)

    router.bridge.publish.assert_awaited_once()
    groups, event = router.bridge.publish.await_args.args
    assert groups == ["session:sess-1", "owner:user-1"]
    assert event.type == EventType.TICKET_ASSIGNED


@pytest.fixture
async def bridge(router):
    bridge = RedisEventBridge(router, "redis://localhost:6379/15")
    yield bridge
    await bridge.close()


async def test_bridge_delivers_remote_events(bridge, router, alice):
    router.join("session:sess-1", alice.connection_id)
    event = Event(type=EventType.CHAT_RESPONSE, payload={"text": "from elsewhere"})
    raw = json.dumps({"origin": "other-instance", "groups": ["session:sess-1"], "event": event.to_message()})

    assert await bridge.handle_envelope(raw) == 1
    assert alice.sent[0]["payload"]["text"] == "from elsewhere"


async def test_bridge_ignores_own_and_malformed_envelopes(bridge, router, alice):
    router.join("session:sess-1", alice.connection_id)
    event = Event(type=EventType.TYPING)
    own = json.dumps({"origin": "test-instance", "groups": ["session:sess-1"], "event": event.to_message()})

    assert await bridge.handle_envelope(own) == 0
    assert await bridge.handle_envelope("not json") == 0
    assert await bridge.handle_envelope(json.dumps({"origin": "x"})) == 0
    assert alice.sent == []
