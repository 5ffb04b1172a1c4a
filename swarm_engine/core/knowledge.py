"""
core/knowledge.py

What the swarm says and what the swarm knows.

Two channels:
1. A message log (broadcast and direct), append-only and bounded
2. A blackboard: last writer wins, no history

Algorithms read the blackboard (global best, food sources) and may
write derived facts back to it (consensus target).
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional
import time
import uuid


class MessageKind(Enum):
    BROADCAST = "broadcast"
    DIRECT = "direct"
    LEADER = "leader"
    EMERGENCY = "emergency"


BROADCAST_TTL = 3   # Hops
DIRECT_TTL = 1


@dataclass
class SwarmMessage:
    """A single message in the swarm's log."""
    message_id: str
    kind: MessageKind
    sender: str
    content: Any
    timestamp: float
    ttl: int
    recipient: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "kind": self.kind.value,
            "sender": self.sender,
            "recipient": self.recipient,
            "content": self.content,
            "timestamp": self.timestamp,
            "ttl": self.ttl,
        }


class MessageLog:
    """
    Append-only message record with bounded retention.

    The exchanged counter is cumulative: it counts every message ever
    appended, including those since dropped by retention.
    """

    def __init__(self, retention: int = 1000, clock: Callable[[], float] = time.time):
        if retention < 1:
            raise ValueError("retention must be at least 1")
        self._messages: Deque[SwarmMessage] = deque(maxlen=retention)
        self._clock = clock
        self.exchanged = 0

    def append(
        self,
        kind: MessageKind,
        sender: str,
        content: Any,
        recipient: Optional[str] = None
    ) -> SwarmMessage:
        kind = MessageKind(kind)
        message = SwarmMessage(
            message_id=str(uuid.uuid4()),
            kind=kind,
            sender=sender,
            content=content,
            timestamp=self._clock(),
            ttl=DIRECT_TTL if kind == MessageKind.DIRECT else BROADCAST_TTL,
            recipient=recipient,
        )
        self._messages.append(message)
        self.exchanged += 1
        return message

    def messages(
        self,
        kind: Optional[MessageKind] = None,
        recipient: Optional[str] = None
    ) -> List[SwarmMessage]:
        """Retained messages, oldest first, optionally filtered."""
        result = list(self._messages)
        if kind is not None:
            result = [m for m in result if m.kind == MessageKind(kind)]
        if recipient is not None:
            result = [m for m in result if m.recipient == recipient]
        return result

    def __len__(self) -> int:
        return len(self._messages)


@dataclass
class KnowledgeEntry:
    """One blackboard entry."""
    key: str
    value: Any
    written_by: str
    timestamp: float


class Blackboard:
    """Last-writer-wins shared key/value store."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: Dict[str, KnowledgeEntry] = {}
        self._clock = clock

    def put(self, key: str, value: Any, written_by: str = "swarm") -> KnowledgeEntry:
        entry = KnowledgeEntry(key=key, value=value, written_by=written_by, timestamp=self._clock())
        self._entries[key] = entry
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        return default if entry is None else entry.value

    def as_dict(self) -> Dict[str, Any]:
        """Plain key -> value view (a copy)."""
        return {k: e.value for k, e in self._entries.items()}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
