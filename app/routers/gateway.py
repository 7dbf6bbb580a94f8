from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.config import settings
from app.runtime import get_channel_registry, get_gateway_client
from app.schemas.gateway import CreateInstanceRequest, GatewayRequest, SendTextRequest
from app.services.channel_service import ChannelRegistry
from app.services.gateway_client import GatewayClient, GatewayResult, is_connected_state, normalize_whatsapp_number

router = APIRouter(prefix="/api/evolution")

WHATSAPP_CHANNEL = "whatsapp"


def _resolve_credentials(body: GatewayRequest, registry: ChannelRegistry) -> tuple[Optional[str], Optional[str], str]:
    """Request values win, then the configured WhatsApp connection, then the environment."""
    connection = registry.get(WHATSAPP_CHANNEL)
    base_url = body.baseUrl or connection.base_url or settings.evolution_base_url
    api_key = body.apiKey or connection.api_key or settings.evolution_api_key
    instance = (body.instance or connection.instance or settings.evolution_instance or "").strip()
    return base_url, api_key, instance


def _bad_request(error: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"ok": False, "error": error})


def _gateway_response(result: GatewayResult, **extra) -> JSONResponse:
    return JSONResponse(status_code=200 if result.ok else 502, content={**result.to_dict(), **extra})


@router.post("/instance/create")
async def create_instance(
    body: CreateInstanceRequest,
    registry: ChannelRegistry = Depends(get_channel_registry),
    gateway: GatewayClient = Depends(get_gateway_client),
):
    base_url, api_key, instance = _resolve_credentials(body, registry)
    if not instance:
        return _bad_request("instance obrigatória")

    result = await gateway.create_instance(
        base_url,
        api_key,
        instance,
        instance_token=(body.instanceToken or api_key or "").strip() or None,
        webhook_url=(body.webhookUrl or "").strip() or None,
        webhook_token=(body.webhookToken or "").strip() or None,
    )
    return _gateway_response(result)


@router.post("/instance/connect")
async def connect_instance(
    body: GatewayRequest,
    registry: ChannelRegistry = Depends(get_channel_registry),
    gateway: GatewayClient = Depends(get_gateway_client),
):
    """Ask the gateway for a pairing QR code."""
    base_url, api_key, instance = _resolve_credentials(body, registry)
    if not instance:
        return _bad_request("instance obrigatória")

    result, qr = await gateway.connect_instance(base_url, api_key, instance)
    if not result.ok:
        return _gateway_response(result)
    return _gateway_response(result, qr=qr)


@router.post("/instance/status")
async def instance_status(
    body: GatewayRequest,
    registry: ChannelRegistry = Depends(get_channel_registry),
    gateway: GatewayClient = Depends(get_gateway_client),
):
    base_url, api_key, instance = _resolve_credentials(body, registry)
    if not instance:
        return _bad_request("instance obrigatória")

    result, state = await gateway.fetch_connection_state(base_url, api_key, instance)
    if not result.ok:
        return _gateway_response(result)

    connection = registry.get(WHATSAPP_CHANNEL)
    if connection.is_configured and connection.instance == instance:
        registry.set_connected(WHATSAPP_CHANNEL, is_connected_state(state))
    return _gateway_response(result, state=state)


@router.post("/message/sendText")
async def send_text(
    body: SendTextRequest,
    registry: ChannelRegistry = Depends(get_channel_registry),
    gateway: GatewayClient = Depends(get_gateway_client),
):
    base_url, api_key, instance = _resolve_credentials(body, registry)
    number = normalize_whatsapp_number(body.number)
    text = (body.text or "").strip()
    if not instance or not number or not text:
        return _bad_request("instance/number/text obrigatórios")

    result = await gateway.send_text(base_url, api_key, instance, number, text)
    return _gateway_response(result)
