from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from app.runtime import get_channel_registry, get_gateway_client
from app.schemas.gateway import ChannelConfigRequest
from app.services.channel_service import ChannelRegistry, UnknownChannelError
from app.services.gateway_client import GatewayClient, is_connected_state

router = APIRouter(prefix="/api/channels")


@router.get("")
def list_channels(registry: ChannelRegistry = Depends(get_channel_registry)):
    return {"ok": True, "channels": [connection.public_dict() for connection in registry.all()]}


@router.put("/{channel}")
async def configure_channel(
    channel: str,
    body: ChannelConfigRequest,
    registry: ChannelRegistry = Depends(get_channel_registry),
):
    """Save channel credentials. Complete WhatsApp credentials start ingestion."""
    try:
        connection = await registry.configure(channel, body.baseUrl, body.apiKey, body.instance, provider=body.provider)
    except UnknownChannelError as e:
        raise HTTPException(status_code=404, detail=str(e))
    poller = registry.poller_for(channel)
    return {"ok": True, "channel": connection.public_dict(), "polling": bool(poller and poller.running)}


@router.delete("/{channel}")
async def clear_channel(channel: str, registry: ChannelRegistry = Depends(get_channel_registry)):
    try:
        connection = await registry.clear(channel)
    except UnknownChannelError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"ok": True, "channel": connection.public_dict(), "polling": False}


@router.post("/{channel}/refresh")
async def refresh_channel(
    channel: str,
    registry: ChannelRegistry = Depends(get_channel_registry),
    gateway: GatewayClient = Depends(get_gateway_client),
):
    """Re-read the connection state from the gateway."""
    try:
        connection = registry.get(channel)
    except UnknownChannelError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if not connection.is_configured:
        return JSONResponse(status_code=400, content={"ok": False, "error": "canal não configurado"})

    result, state = await gateway.fetch_connection_state(connection.base_url, connection.api_key, connection.instance)
    if not result.ok:
        return JSONResponse(status_code=502, content=result.to_dict())

    registry.set_connected(channel, is_connected_state(state))
    return {"ok": True, "state": state, "channel": registry.get(channel).public_dict()}
