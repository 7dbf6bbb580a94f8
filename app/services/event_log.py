"""
Bounded, sequence-numbered inbound event log.

Webhook handlers admit events, one poller drains them with a cursor. Sequence
numbers start at 1, grow by exactly one per admitted event and are never
reused, even after the oldest events have been evicted.
"""

import threading
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass
from typing import Optional

from app.logging_config import get_logger

logger = get_logger("event_log")

DEFAULT_CAPACITY = 500


@dataclass(frozen=True)
class InboundEvent:
    seq: int
    id: str
    type: str
    channel: str
    sender: str
    text: str
    author: Optional[str]
    instance: Optional[str]
    received_at: int  # epoch milliseconds

    def to_dict(self) -> dict:
        data = asdict(self)
        data["receivedAt"] = data.pop("received_at")
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "InboundEvent":
        return cls(
            seq=int(data["seq"]),
            id=str(data.get("id") or uuid.uuid4()),
            type=str(data.get("type") or "whatsapp_message"),
            channel=str(data.get("channel") or "whatsapp"),
            sender=str(data.get("sender") or ""),
            text=str(data.get("text") or ""),
            author=data.get("author") or None,
            instance=data.get("instance") or None,
            received_at=int(data.get("receivedAt") or data.get("received_at") or 0),
        )


class EventLog:
    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._events: deque[InboundEvent] = deque(maxlen=capacity)
        self._last_seq = 0
        self._lock = threading.Lock()

    def admit(
        self,
        sender: str,
        text: str,
        channel: str = "whatsapp",
        author: Optional[str] = None,
        instance: Optional[str] = None,
        event_type: str = "whatsapp_message",
    ) -> InboundEvent:
        """Assign the next seq and append. Callers validate before admitting."""
        with self._lock:
            self._last_seq += 1
            event = InboundEvent(
                seq=self._last_seq,
                id=str(uuid.uuid4()),
                type=event_type,
                channel=channel,
                sender=sender,
                text=text,
                author=author or None,
                instance=instance or None,
                received_at=int(time.time() * 1000),
            )
            self._events.append(event)

        logger.info(
            "Event admitted",
            extra={"context": {"seq": event.seq, "channel": channel, "sender": sender}},
        )
        return event

    def read_after(self, cursor: int) -> tuple[list[InboundEvent], int]:
        """Events with seq > cursor plus the highest seq issued so far."""
        with self._lock:
            pending = [event for event in self._events if event.seq > cursor]
            return pending, self._last_seq

    @property
    def last_seq(self) -> int:
        with self._lock:
            return self._last_seq

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
