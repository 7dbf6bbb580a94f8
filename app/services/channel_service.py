"""
Connection records for the inbound channels.

Configuring the WhatsApp Evolution connection starts its ingestion poller,
reconfiguring replaces it and clearing the credentials stops it.
"""

import asyncio
import copy
from dataclasses import dataclass
from typing import Callable, Optional

from app.logging_config import get_logger
from app.services.poller import IngestionPoller

logger = get_logger("channel_service")

CHANNEL_LABELS = {
    "whatsapp": "WhatsApp",
    "instagram": "Instagram",
    "facebook": "Facebook",
}

POLLED_CHANNELS = {"whatsapp"}


class UnknownChannelError(Exception):
    def __init__(self, channel: str):
        self.channel = channel
        super().__init__(f"Unknown channel: {channel}")


@dataclass
class ChannelConnection:
    channel: str
    provider: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    instance: Optional[str] = None
    connected: bool = False

    @property
    def label(self) -> str:
        return channel_label(self.channel)

    @property
    def is_configured(self) -> bool:
        return all((value or "").strip() for value in (self.base_url, self.api_key, self.instance))

    def public_dict(self) -> dict:
        return {
            "channel": self.channel,
            "label": self.label,
            "provider": self.provider,
            "baseUrl": self.base_url,
            "instance": self.instance,
            "hasApiKey": bool(self.api_key),
            "configured": self.is_configured,
            "connected": self.connected,
        }


def channel_label(channel: str) -> str:
    return CHANNEL_LABELS.get(channel, channel)


PollerFactory = Callable[[ChannelConnection], IngestionPoller]


class ChannelRegistry:
    def __init__(self, poller_factory: Optional[PollerFactory] = None):
        self.poller_factory = poller_factory
        self._connections = {channel: ChannelConnection(channel=channel) for channel in CHANNEL_LABELS}
        self._pollers: dict[str, IngestionPoller] = {}
        # cursor of the last stopped poller per channel
        self._cursors: dict[str, int] = {}
        self._lock = asyncio.Lock()

    def _require(self, channel: str) -> ChannelConnection:
        connection = self._connections.get(channel)
        if connection is None:
            raise UnknownChannelError(channel)
        return connection

    def get(self, channel: str) -> ChannelConnection:
        return copy.copy(self._require(channel))

    def all(self) -> list[ChannelConnection]:
        return [copy.copy(connection) for connection in self._connections.values()]

    def is_connected(self, channel: str) -> bool:
        connection = self._connections.get(channel)
        return bool(connection and connection.connected)

    def poller_for(self, channel: str) -> Optional[IngestionPoller]:
        return self._pollers.get(channel)

    def set_connected(self, channel: str, connected: bool) -> None:
        connection = self._require(channel)
        if connection.connected != connected:
            logger.info(
                "Channel connection changed",
                extra={"context": {"channel": channel, "connected": connected}},
            )
        connection.connected = connected

    async def configure(
        self,
        channel: str,
        base_url: Optional[str],
        api_key: Optional[str],
        instance: Optional[str],
        provider: str = "evolution",
    ) -> ChannelConnection:
        async with self._lock:
            connection = self._require(channel)
            connection.provider = provider
            connection.base_url = (base_url or "").strip() or None
            connection.api_key = (api_key or "").strip() or None
            connection.instance = (instance or "").strip() or None
            connection.connected = False

            await self._stop_poller(channel)
            if connection.is_configured and channel in POLLED_CHANNELS and self.poller_factory is not None:
                poller = self.poller_factory(copy.copy(connection))
                if channel in self._cursors:
                    poller.cursor = self._cursors[channel]
                self._pollers[channel] = poller
                poller.start()

            logger.info(
                "Channel configured",
                extra={"context": {"channel": channel, "configured": connection.is_configured}},
            )
            return copy.copy(connection)

    async def clear(self, channel: str) -> ChannelConnection:
        return await self.configure(channel, None, None, None, provider=None)

    async def _stop_poller(self, channel: str) -> None:
        poller = self._pollers.pop(channel, None)
        if poller is not None:
            await poller.stop()
            self._cursors[channel] = poller.cursor

    async def stop_all(self) -> None:
        async with self._lock:
            for channel in list(self._pollers):
                await self._stop_poller(channel)
