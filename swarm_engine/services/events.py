"""
swarm_engine/services/events.py

Notifications out of the engine.

Every mutating operation on a swarm produces a short list of named
notifications (``member:joined``, ``action:completed``, ...). The
coordinator hands them to subscribed sinks. There is no global event
bus: a sink only sees what it was subscribed to.

Sinks:
- InMemoryNotificationSink: thread-safe history, for tests and local hosts
- CallbackSink: wraps a plain callable
- RedisNotificationSink: publishes JSON to a Redis channel
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import json
import logging
import threading
import time

import numpy as np

logger = logging.getLogger(__name__)


# Notification names
SWARM_FORMED = "swarm:formed"
SWARM_READY = "swarm:ready"
SWARM_UNDERSTAFFED = "swarm:understaffed"
SWARM_DISSOLVED = "swarm:dissolved"
MEMBER_JOINED = "member:joined"
MEMBER_LEFT = "member:left"
MEMBER_UPDATED = "member:updated"
MEMBER_OFFLINE = "member:offline"
LEADER_ELECTED = "leader:elected"
MOVEMENT_SUGGESTED = "movement:suggested"
PHEROMONE_DEPOSITED = "pheromone:deposited"
PHEROMONE_EXPIRED = "pheromone:expired"
PHEROMONE_FADED = "pheromone:faded"
ACTION_STARTED = "action:started"
ACTION_COMPLETED = "action:completed"
ACTION_TIMEOUT = "action:timeout"
MESSAGE_BROADCAST = "message:broadcast"
MESSAGE_DIRECT = "message:direct"
KNOWLEDGE_SHARED = "knowledge:shared"
SECTOR_ASSIGNED = "sector:assigned"
METRICS_UPDATED = "metrics:updated"


def _to_jsonable(value: Any) -> Any:
    """Make payloads containing numpy values or enums JSON-safe."""
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_jsonable(v) for v in value]
    if hasattr(value, "to_dict"):
        return _to_jsonable(value.to_dict())
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass
class Notification:
    """A named event emitted by a swarm."""
    event: str
    swarm_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "swarm_id": self.swarm_id,
            "payload": _to_jsonable(self.payload),
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Notification:
        return cls(
            event=d["event"],
            swarm_id=d["swarm_id"],
            payload=dict(d.get("payload", {})),
            timestamp=float(d.get("timestamp", 0.0)),
        )

    @classmethod
    def from_json(cls, data: str) -> Notification:
        return cls.from_dict(json.loads(data))


class NotificationSink(ABC):
    """Receives notifications from the coordinator."""

    @abstractmethod
    def publish(self, notification: Notification) -> bool:
        """Deliver one notification. Returns True if delivered."""
        pass

    def close(self) -> None:
        """Release any resources held by the sink."""
        pass


class InMemoryNotificationSink(NotificationSink):
    """
    Keeps every notification it receives.

    Thread-safe; useful for tests and single-process hosts that poll.
    """

    def __init__(self, max_history: Optional[int] = None):
        self._history: List[Notification] = []
        self._max_history = max_history
        self._lock = threading.Lock()

    def publish(self, notification: Notification) -> bool:
        with self._lock:
            self._history.append(notification)
            if self._max_history is not None and len(self._history) > self._max_history:
                del self._history[: len(self._history) - self._max_history]
        return True

    def events(
        self,
        event: Optional[str] = None,
        swarm_id: Optional[str] = None
    ) -> List[Notification]:
        """Received notifications, oldest first, optionally filtered."""
        with self._lock:
            result = list(self._history)
        if event is not None:
            result = [n for n in result if n.event == event]
        if swarm_id is not None:
            result = [n for n in result if n.swarm_id == swarm_id]
        return result

    def names(self) -> List[str]:
        with self._lock:
            return [n.event for n in self._history]

    def count(self, event: str) -> int:
        return len(self.events(event))

    def clear(self) -> None:
        with self._lock:
            self._history.clear()


class CallbackSink(NotificationSink):
    """Forwards notifications to a callable, optionally filtered by name."""

    def __init__(
        self,
        callback: Callable[[Notification], None],
        events: Optional[List[str]] = None
    ):
        self.callback = callback
        self.events = set(events) if events else None

    def publish(self, notification: Notification) -> bool:
        if self.events is not None and notification.event not in self.events:
            return False
        self.callback(notification)
        return True


class RedisNotificationSink(NotificationSink):
    """
    Publishes notifications as JSON on a Redis pub/sub channel.

    The connection is made lazily. If Redis is unreachable the sink
    logs a warning and disables itself rather than failing swarm
    operations.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        channel: str = "swarm_engine:notifications",
    ):
        self.redis_url = redis_url
        self.channel = channel
        self.enabled = True
        self._redis = None

    def _get_redis(self):
        """Lazy connection to Redis."""
        if self._redis is None and self.enabled:
            try:
                import redis
                self._redis = redis.from_url(self.redis_url, decode_responses=True)
                self._redis.ping()
                logger.info(f"Notification sink connected to Redis at {self.redis_url}")
            except ImportError:
                logger.warning(
                    "redis package required for RedisNotificationSink. "
                    "Install with: pip install redis"
                )
                self.enabled = False
                self._redis = None
            except Exception as e:
                logger.warning(f"Failed to connect to Redis for notifications: {e}")
                self.enabled = False
                self._redis = None
        return self._redis

    def publish(self, notification: Notification) -> bool:
        r = self._get_redis()
        if r is None:
            return False
        try:
            r.publish(self.channel, notification.to_json())
            return True
        except Exception as e:
            logger.warning(f"Failed to publish {notification.event}: {e}")
            return False

    def close(self) -> None:
        if self._redis is not None:
            self._redis.close()
            self._redis = None


def create_notification_sink(
    backend: str = "memory",
    redis_url: str = "redis://localhost:6379",
    **kwargs
) -> NotificationSink:
    """
    Factory function to create a notification sink.

    Args:
        backend: "memory" or "redis"
        redis_url: Redis connection URL (for redis backend)
        **kwargs: Additional backend-specific options

    Returns:
        NotificationSink instance
    """
    if backend == "memory":
        return InMemoryNotificationSink(**kwargs)
    elif backend == "redis":
        return RedisNotificationSink(redis_url=redis_url, **kwargs)
    else:
        raise ValueError(f"Unknown backend: {backend}")
