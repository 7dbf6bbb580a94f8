"""Process-wide components shared by the routers and the startup hooks."""

from app.config import settings
from app.services.channel_service import ChannelConnection, ChannelRegistry
from app.services.event_log import EventLog
from app.services.gateway_client import GatewayClient
from app.services.message_dedup_service import MessageDeduplicator
from app.services.orchestrator import WorkflowOrchestrator
from app.services.poller import HttpEventSource, IngestionPoller, LocalEventSource
from app.services.session_store import SessionStore

event_log = EventLog(capacity=settings.event_log_capacity)
session_store = SessionStore()
gateway_client = GatewayClient()
message_dedup = MessageDeduplicator(redis_url=settings.redis_url)


def _build_poller(connection: ChannelConnection) -> IngestionPoller:
    if settings.events_source_url:
        source = HttpEventSource(settings.events_source_url, timeout=settings.gateway_timeout_seconds)
    else:
        source = LocalEventSource(event_log)
    return IngestionPoller(
        source,
        orchestrator.handle_event,
        interval=max(settings.poll_interval_seconds, 0.1),
        name=connection.channel,
    )


channel_registry = ChannelRegistry(poller_factory=_build_poller)
orchestrator = WorkflowOrchestrator(session_store, channels=channel_registry, gateway=gateway_client)


def get_event_log() -> EventLog:
    return event_log


def get_channel_registry() -> ChannelRegistry:
    return channel_registry


def get_gateway_client() -> GatewayClient:
    return gateway_client


def get_orchestrator() -> WorkflowOrchestrator:
    return orchestrator


def get_message_dedup() -> MessageDeduplicator:
    return message_dedup
