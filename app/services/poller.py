"""Cursor-driven consumer of the inbound event log."""

import asyncio
from typing import Awaitable, Callable, Optional, Protocol

import httpx

from app.logging_config import get_logger
from app.services.event_log import EventLog, InboundEvent

logger = get_logger("poller")

EventHandler = Callable[[InboundEvent], Awaitable[object]]


class EventSourceError(Exception):
    pass


class EventSource(Protocol):
    async def read_after(self, cursor: int) -> tuple[list[InboundEvent], int]: ...


class LocalEventSource:
    """Reads the in-process log. The log lock is held only for a list copy."""

    def __init__(self, event_log: EventLog):
        self.event_log = event_log

    async def read_after(self, cursor: int) -> tuple[list[InboundEvent], int]:
        return self.event_log.read_after(cursor)


class HttpEventSource:
    """Reads ``/api/evolution/events`` exposed by another process."""

    def __init__(self, url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def read_after(self, cursor: int) -> tuple[list[InboundEvent], int]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.url, params={"after": cursor})
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise EventSourceError(str(e) or type(e).__name__) from e

        if not isinstance(payload, dict) or not payload.get("ok"):
            raise EventSourceError("events endpoint returned an unexpected body")

        events = [InboundEvent.from_dict(item) for item in payload.get("events") or [] if isinstance(item, dict)]
        events.sort(key=lambda event: event.seq)
        try:
            next_cursor = int(payload.get("nextAfter") or 0)
        except (TypeError, ValueError):
            raise EventSourceError("events endpoint returned an invalid cursor") from None
        return events, next_cursor


class IngestionPoller:
    def __init__(self, source: EventSource, handler: EventHandler, interval: float = 2.0, name: str = "whatsapp"):
        self.source = source
        self.handler = handler
        self.interval = interval
        self.name = name
        self.cursor = 0
        self._task: Optional[asyncio.Task] = None
        self._source_down = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> int:
        """Read once, advance the cursor, run the handler per event. Returns events handled."""
        try:
            events, next_cursor = await self.source.read_after(self.cursor)
        except EventSourceError as e:
            if not self._source_down:
                logger.warning(
                    "Event source unavailable, will keep retrying",
                    extra={"context": {"poller": self.name, "cursor": self.cursor, "error": str(e)}},
                )
            self._source_down = True
            return 0

        if self._source_down:
            logger.info("Event source recovered", extra={"context": {"poller": self.name, "cursor": self.cursor}})
            self._source_down = False

        # follow the log even when nothing new arrived, eviction may have moved it
        self.cursor = next_cursor

        handled = 0
        for event in sorted(events, key=lambda item: item.seq):
            try:
                await self.handler(event)
                handled += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Event handling failed: {e}",
                    exc_info=True,
                    extra={"context": {"poller": self.name, "seq": event.seq}},
                )
        return handled

    async def _run(self) -> None:
        logger.info("Poller started", extra={"context": {"poller": self.name, "interval": self.interval}})
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Poller iteration failed", extra={"context": {"poller": self.name, "error": str(exc)}})
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Poller stopped", extra={"context": {"poller": self.name, "cursor": self.cursor}})
