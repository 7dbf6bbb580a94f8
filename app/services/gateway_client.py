"""
Outbound client for the Evolution messaging gateway.

The gateway's routing differs between versions and deployments, so every
operation carries an ordered list of candidate paths. A 404 means "this shape
is not served here" and the next candidate is tried; any other failure is
final for the call.
"""

import json
import re
from dataclasses import asdict, dataclass
from typing import Any, Optional, Sequence
from urllib.parse import quote

import httpx

from app.config import settings
from app.logging_config import get_logger
from app.services.payload_rules import CONNECTION_STATE, QR_CODE, first_match

logger = get_logger("gateway_client")

INVALID_CONFIG = "invalid_config"
ENDPOINT_NOT_FOUND = "endpoint_not_found"
TRANSPORT_FAILURE = "transport_failure"
HTTP_ERROR = "http_error"

CONNECTED_STATES = {"open", "connected"}

_BASE64_BODY = re.compile(r"^[A-Za-z0-9+/=]+$")
MIN_BASE64_IMAGE_LENGTH = 128


@dataclass
class GatewayResult:
    ok: bool
    status: int = 0
    path: Optional[str] = None
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_base_url(base_url: Optional[str]) -> str:
    trimmed = (base_url or "").strip()
    return trimmed[:-1] if trimmed.endswith("/") else trimmed


def build_auth_headers(api_key: Optional[str]) -> dict:
    """The provider accepts either convention depending on its version; send both."""
    token = (api_key or "").strip()
    if not token:
        return {}
    return {"apikey": token, "Authorization": f"Bearer {token}"}


def normalize_whatsapp_number(value: Any) -> str:
    """'5511999990000@s.whatsapp.net' -> '5511999990000'."""
    raw = str(value or "").strip()
    if not raw:
        return ""
    raw = re.sub(r"@s\.whatsapp\.net$", "", raw, flags=re.IGNORECASE)
    raw = re.sub(r"@g\.us$", "", raw, flags=re.IGNORECASE)
    return re.sub(r"\D", "", raw)


def to_data_image(value: Optional[str]) -> str:
    """Turn a bare base64 QR payload into an embeddable data URI."""
    trimmed = (value or "").strip()
    if not trimmed or trimmed.startswith("data:image/"):
        return trimmed
    if len(trimmed) >= MIN_BASE64_IMAGE_LENGTH and _BASE64_BODY.match(trimmed):
        return f"data:image/png;base64,{trimmed}"
    return trimmed


def extract_qr_code(payload: Any) -> Optional[str]:
    return first_match(payload, QR_CODE)


def extract_connection_state(payload: Any) -> Optional[str]:
    return first_match(payload, CONNECTION_STATE)


def is_connected_state(state: Optional[str]) -> bool:
    return (state or "").strip().lower() in CONNECTED_STATES


def _parse_body(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class GatewayClient:
    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout if timeout is not None else settings.gateway_timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def dispatch(
        self,
        base_url: Optional[str],
        api_key: Optional[str],
        method: str,
        paths: Sequence[str],
        body: Optional[dict] = None,
    ) -> GatewayResult:
        """Try candidate paths in order, one at a time."""
        normalized = normalize_base_url(base_url)
        if not normalized:
            return GatewayResult(ok=False, status=400, error="EVOLUTION_BASE_URL ausente", error_code=INVALID_CONFIG)

        headers = {"Content-Type": "application/json", **build_auth_headers(api_key)}
        last_not_found: Optional[GatewayResult] = None

        async with self._client() as client:
            for candidate in paths:
                path = candidate if candidate.startswith("/") else f"/{candidate}"
                try:
                    response = await client.request(method, f"{normalized}{path}", headers=headers, json=body)
                except httpx.HTTPError as e:
                    logger.warning(
                        "Gateway transport failure",
                        extra={"context": {"path": path, "method": method, "error": str(e)}},
                    )
                    return GatewayResult(
                        ok=False, status=0, path=path, error=str(e) or type(e).__name__, error_code=TRANSPORT_FAILURE
                    )

                data = _parse_body(response)
                if response.is_success:
                    return GatewayResult(ok=True, status=response.status_code, path=path, data=data)

                if response.status_code != 404:
                    logger.warning(
                        "Gateway request failed",
                        extra={"context": {"path": path, "status": response.status_code}},
                    )
                    return GatewayResult(
                        ok=False,
                        status=response.status_code,
                        path=path,
                        data=data,
                        error=f"HTTP {response.status_code}",
                        error_code=HTTP_ERROR,
                    )

                logger.debug("Gateway path not served, trying next", extra={"context": {"path": path}})
                last_not_found = GatewayResult(
                    ok=False, status=404, path=path, data=data, error="HTTP 404", error_code=ENDPOINT_NOT_FOUND
                )

        if last_not_found is not None:
            return last_not_found
        return GatewayResult(ok=False, status=500, error="Falha ao chamar Evolution API", error_code=ENDPOINT_NOT_FOUND)

    async def create_instance(
        self,
        base_url: Optional[str],
        api_key: Optional[str],
        instance: str,
        instance_token: Optional[str] = None,
        webhook_url: Optional[str] = None,
        webhook_token: Optional[str] = None,
    ) -> GatewayResult:
        payload: dict[str, Any] = {"instanceName": instance, "qrcode": True}
        if instance_token:
            payload["token"] = instance_token
        if webhook_url:
            webhook: dict[str, Any] = {"url": webhook_url, "byEvents": True}
            if webhook_token:
                webhook["token"] = webhook_token
            payload["webhook"] = webhook
        return await self.dispatch(base_url, api_key, "POST", ["/instance/create", "/api/instance/create"], payload)

    async def connect_instance(self, base_url: Optional[str], api_key: Optional[str], instance: str):
        """Returns (result, qr) where qr is a data URI or None."""
        name = quote(instance, safe="")
        result = await self.dispatch(
            base_url,
            api_key,
            "GET",
            [f"/instance/connect/{name}", f"/instance/qrcode/{name}", f"/api/instance/connect/{name}"],
        )
        if not result.ok:
            return result, None
        qr = extract_qr_code(result.data)
        return result, to_data_image(qr) if qr else None

    async def fetch_connection_state(self, base_url: Optional[str], api_key: Optional[str], instance: str):
        """Returns (result, state)."""
        name = quote(instance, safe="")
        result = await self.dispatch(
            base_url,
            api_key,
            "GET",
            [
                f"/instance/connectionState/{name}",
                f"/instance/status/{name}",
                f"/api/instance/connectionState/{name}",
                f"/api/instance/status/{name}",
            ],
        )
        if not result.ok:
            return result, None
        return result, extract_connection_state(result.data)

    async def send_text(
        self, base_url: Optional[str], api_key: Optional[str], instance: str, number: str, text: str
    ) -> GatewayResult:
        name = quote(instance, safe="")
        return await self.dispatch(
            base_url,
            api_key,
            "POST",
            [
                f"/message/sendText/{name}",
                f"/api/message/sendText/{name}",
                "/message/sendText",
                "/api/message/sendText",
            ],
            {"number": number, "text": text},
        )
