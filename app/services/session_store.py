import copy
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional


@dataclass
class ConversationSession:
    """State for one (channel, peer) pair.

    ``lead_id``, ``deal_id`` and ``automations_triggered`` are one-way latches:
    once set they are never cleared for the lifetime of the session.
    """

    channel: str
    peer: str
    draft: dict = field(default_factory=dict)
    lead_id: Optional[str] = None
    deal_id: Optional[str] = None
    automations_triggered: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.channel, self.peer)


class SessionStore:
    """In-process session map with one lock per (channel, peer) key."""

    def __init__(self):
        self._sessions: dict[tuple[str, str], ConversationSession] = {}
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def get(self, channel: str, peer: str) -> Optional[ConversationSession]:
        with self._guard:
            session = self._sessions.get((channel, peer))
            return copy.deepcopy(session) if session else None

    @contextmanager
    def transaction(self, channel: str, peer: str) -> Iterator[ConversationSession]:
        """Yield a working copy of the session; it replaces the stored one only if the block succeeds."""
        key = (channel, peer)
        with self._lock_for(key):
            with self._guard:
                current = self._sessions.get(key)
            working = copy.deepcopy(current) if current else ConversationSession(channel=channel, peer=peer)
            yield working
            with self._guard:
                self._sessions[key] = working

    def __len__(self) -> int:
        with self._guard:
            return len(self._sessions)
