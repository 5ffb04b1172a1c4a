"""
Tests for swarm_engine/services/events.py

Notification serialization and the sink implementations.
"""

import json

import pytest
import numpy as np

from swarm_engine.core.member import MemberRole, SwarmMember
from swarm_engine.services.events import (
    CallbackSink,
    InMemoryNotificationSink,
    Notification,
    RedisNotificationSink,
    create_notification_sink,
)


# ==================== Notification Tests ====================


class TestNotification:
    """Tests for Notification serialization."""

    def test_json_safe_payload(self):
        """Arrays, numpy scalars, enums and to_dict objects serialize."""
        member = SwarmMember(member_id="a", position=np.array([1.0, 2.0]))
        notification = Notification(
            event="member:joined",
            swarm_id="s1",
            payload={
                "member": member,
                "target": np.array([3.0, 4.0]),
                "score": np.float64(0.5),
                "role": MemberRole.SCOUT,
            },
            timestamp=10.0,
        )
        data = json.loads(notification.to_json())
        assert data["event"] == "member:joined"
        assert data["swarm_id"] == "s1"
        assert data["payload"]["member"]["position"] == [1.0, 2.0]
        assert data["payload"]["target"] == [3.0, 4.0]
        assert data["payload"]["score"] == 0.5
        assert data["payload"]["role"] == "scout"

    def test_from_json(self):
        """A JSON notification parses back to an equal one."""
        original = Notification("swarm:ready", "s1", {"member_count": 3}, timestamp=5.0)
        restored = Notification.from_json(original.to_json())
        assert restored == original


# ==================== Sink Tests ====================


class TestInMemorySink:
    """Tests for InMemoryNotificationSink."""

    def test_filters(self):
        """History can be filtered by event and swarm."""
        sink = InMemoryNotificationSink()
        sink.publish(Notification("member:joined", "s1"))
        sink.publish(Notification("member:joined", "s2"))
        sink.publish(Notification("member:left", "s1"))

        assert sink.count("member:joined") == 2
        assert len(sink.events(swarm_id="s1")) == 2
        assert len(sink.events("member:joined", swarm_id="s2")) == 1
        assert sink.names() == ["member:joined", "member:joined", "member:left"]

    def test_max_history(self):
        """Only the newest max_history notifications are kept."""
        sink = InMemoryNotificationSink(max_history=2)
        for i in range(5):
            sink.publish(Notification(f"e{i}", "s1"))
        assert sink.names() == ["e3", "e4"]

    def test_clear(self):
        """clear() empties the history."""
        sink = InMemoryNotificationSink()
        sink.publish(Notification("e", "s1"))
        sink.clear()
        assert sink.events() == []


class TestCallbackSink:
    """Tests for CallbackSink."""

    def test_forwards(self):
        """Every notification reaches the callback."""
        received = []
        sink = CallbackSink(received.append)
        assert sink.publish(Notification("e", "s1"))
        assert len(received) == 1

    def test_event_filter(self):
        """With an event list, other events are dropped."""
        received = []
        sink = CallbackSink(received.append, events=["action:completed"])
        assert not sink.publish(Notification("member:joined", "s1"))
        assert sink.publish(Notification("action:completed", "s1"))
        assert [n.event for n in received] == ["action:completed"]


class TestRedisSink:
    """Tests for RedisNotificationSink without a reachable server."""

    def test_unreachable_disables(self):
        """An unreachable server disables the sink instead of raising."""
        sink = RedisNotificationSink(redis_url="redis://127.0.0.1:1/0")
        assert not sink.publish(Notification("e", "s1"))
        assert not sink.enabled
        # Stays disabled without retrying
        assert not sink.publish(Notification("e", "s1"))
        sink.close()


# ==================== Factory Tests ====================


class TestFactory:
    """Tests for create_notification_sink()."""

    def test_memory(self):
        """'memory' gives an in-memory sink."""
        assert isinstance(create_notification_sink("memory"), InMemoryNotificationSink)

    def test_memory_with_options(self):
        """Options are passed through to the sink."""
        sink = create_notification_sink("memory", max_history=1)
        sink.publish(Notification("a", "s"))
        sink.publish(Notification("b", "s"))
        assert sink.names() == ["b"]

    def test_redis(self):
        """'redis' gives a Redis sink without connecting yet."""
        sink = create_notification_sink("redis", redis_url="redis://example:6379", channel="c")
        assert isinstance(sink, RedisNotificationSink)
        assert sink.channel == "c"

    def test_unknown(self):
        """Unknown backends raise ValueError."""
        with pytest.raises(ValueError):
            create_notification_sink("kafka")
