from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class GatewayRequest(BaseModel):
    """Credentials may be omitted; the configured WhatsApp connection is used instead."""

    baseUrl: Optional[str] = Field(default=None, validation_alias=AliasChoices("baseUrl", "base_url"))
    apiKey: Optional[str] = Field(default=None, validation_alias=AliasChoices("apiKey", "api_key"))
    instance: Optional[str] = None


class CreateInstanceRequest(GatewayRequest):
    instanceToken: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("instanceToken", "instance_token")
    )
    webhookUrl: Optional[str] = Field(default=None, validation_alias=AliasChoices("webhookUrl", "webhook_url"))
    webhookToken: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("webhookToken", "webhook_token")
    )


class SendTextRequest(GatewayRequest):
    number: Optional[str] = None
    text: Optional[str] = None


class ChannelConfigRequest(BaseModel):
    provider: str = "evolution"
    baseUrl: Optional[str] = Field(default=None, validation_alias=AliasChoices("baseUrl", "base_url"))
    apiKey: Optional[str] = Field(default=None, validation_alias=AliasChoices("apiKey", "api_key"))
    instance: Optional[str] = None
