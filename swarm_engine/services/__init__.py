"""
swarm_engine/services/

Services around the coordination core.

Architecture:
- Coordinator: Owns swarms, serializes operations per swarm, runs timers
- Events: Named notifications and the sinks that receive them

Import the coordinator from its module:

    from swarm_engine.services.coordinator import SwarmCoordinator

The package itself only exposes the notification types, which the
coordination layer depends on.
"""

from .events import (
    CallbackSink,
    InMemoryNotificationSink,
    Notification,
    NotificationSink,
    RedisNotificationSink,
    create_notification_sink,
)

__all__ = [
    "CallbackSink",
    "InMemoryNotificationSink",
    "Notification",
    "NotificationSink",
    "RedisNotificationSink",
    "create_notification_sink",
]
