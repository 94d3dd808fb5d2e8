from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ChatType = Literal["group", "direct"]


class MessageContext(BaseModel):
    """Normalized inbound message handed to the host dispatcher.

    Field aliases are the host's wire names; `to_host()` emits them.
    """

    body: str = Field(alias="Body")
    body_for_agent: str = Field(alias="BodyForAgent")
    command_body: str = Field(alias="CommandBody")
    body_for_commands: str = Field(alias="BodyForCommands")
    from_: str = Field(alias="From")
    session_key: str = Field(alias="SessionKey")
    account_id: str = Field(alias="AccountId")
    sender_name: str = Field(default="", alias="SenderName")
    sender_id: str = Field(alias="SenderId")
    chat_type: ChatType = Field(alias="ChatType")
    provider: str = Field(default="dingtalk", alias="Provider")
    surface: str = Field(default="dingtalk", alias="Surface")
    originating_channel: Literal["dingtalk"] = Field(default="dingtalk", alias="OriginatingChannel")
    originating_to: str = Field(alias="OriginatingTo")
    timestamp: Optional[int] = Field(default=None, alias="Timestamp")
    command_authorized: bool = Field(default=True, alias="CommandAuthorized")

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    def to_host(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class DeliverPayload(BaseModel):
    """Reply block produced by the host dispatcher."""

    text: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class ActionCardButton(BaseModel):
    title: str
    action_url: str = Field(alias="actionURL")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ActionCard(BaseModel):
    """Interactive card: 0 buttons uses the single "view details" link."""

    title: str
    text: str
    buttons: List[ActionCardButton] = Field(default_factory=list, max_length=2)
    single_title: Optional[str] = Field(default=None, alias="singleTitle")
    single_url: Optional[str] = Field(default=None, alias="singleURL")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class SendResult(BaseModel):
    ok: bool
    error: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class StatusResult(BaseModel):
    ok: bool
    message: str

    model_config = ConfigDict(extra="forbid")
