"""
Host-facing DingTalk channel.

Each operation works on one account at a time:

- start_account / stop_account: Stream connection lifecycle
- send_text / send_action_card: outbound sends returning a SendResult
- check_status: liveness of the recorded connection
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ...contracts.v1 import ActionCard, SendResult, StatusResult
from ...kernel import settings
from ...kernel.context import RuntimeContext
from ...kernel.errors import ConfigError, DingTalkError
from .inbound import CHANNEL_ID, GROUP_CONVERSATION_TYPE, Dispatcher
from .sender import OutboundSender
from .stream import ClientFactory, StreamManager, default_client_factory

logger = logging.getLogger("dtbridge.channel")

META: Dict[str, Any] = {
    "id": CHANNEL_ID,
    "label": "钉钉机器人",
    "selection_label": "钉钉机器人 (Dingtalk)",
    "docs_path": "/channels/dingtalk",
    "blurb": "通过钉钉 Stream SDK 接收和发送消息",
    "aliases": ["dt", "dingding"],
}

CAPABILITIES: Dict[str, Any] = {
    "chat_types": ["group", "dm"],
    "can_reply": True,
    "can_edit": False,
    "can_delete": False,
    "supports_images": False,
    "supports_files": False,
    "supports_voice": False,
}


def _incoming_raw(incoming: Any) -> Optional[Mapping[str, Any]]:
    if incoming is None:
        return None
    raw = incoming.get("raw") if isinstance(incoming, Mapping) else getattr(incoming, "raw", None)
    return raw if isinstance(raw, Mapping) and raw else None


class DingTalkChannel:
    id = CHANNEL_ID
    meta = META
    capabilities = CAPABILITIES

    def __init__(
        self,
        config: Dict[str, Any],
        dispatcher: Dispatcher,
        *,
        runtime: Optional[RuntimeContext] = None,
        client_factory: ClientFactory = default_client_factory,
    ):
        self.config = config
        self.runtime = runtime or RuntimeContext.create()
        self.sender = OutboundSender(self.runtime.http)
        self.streams = StreamManager(
            self.runtime,
            sender=self.sender,
            dispatcher=dispatcher,
            config=config,
            client_factory=client_factory,
        )

    # ---- config ----

    def list_account_ids(self) -> List[str]:
        return settings.list_account_ids(self.config)

    def resolve_account(self, account_id: str = settings.DEFAULT_ACCOUNT_ID) -> Dict[str, Any]:
        return settings.resolve_account(self.config, account_id)

    # ---- gateway ----

    async def start_account(self, account_id: str) -> Dict[str, Any]:
        try:
            credential = settings.require_credentials(self.config, account_id)
        except ConfigError:
            logger.error("[dingtalk:%s] Missing credentials.", account_id, extra={"account_id": account_id})
            raise
        return await self.streams.start(credential)

    async def stop_account(self, account_id: str) -> Dict[str, Any]:
        return await self.streams.stop(account_id)

    def check_status(self, account_id: str) -> StatusResult:
        if self.streams.is_running(account_id):
            return StatusResult(ok=True, message="Running")
        return StatusResult(ok=False, message="Stopped")

    # ---- outbound ----

    async def send_text(
        self,
        text: str,
        *,
        account_id: Optional[str] = None,
        incoming: Any = None,
    ) -> SendResult:
        """Reply into the conversation an `incoming` event came from.

        Group conversations (conversationType "2") use the group endpoint;
        anything else is a 1:1 send to the sender and needs robotCode.
        """
        account = settings.get_account(self.config, account_id or settings.DEFAULT_ACCOUNT_ID)
        if account is None or not account.configured:
            return SendResult(ok=False, error="Account config missing")

        raw = _incoming_raw(incoming)
        if raw is None:
            return SendResult(ok=False, error="No context")

        is_group = str(raw.get("conversationType") or "") == GROUP_CONVERSATION_TYPE
        if not is_group and not account.robot_code:
            return SendResult(ok=False, error="Missing robotCode")

        try:
            token = await self.runtime.tokens.get_token(account.client_id, account.client_secret)
            if is_group:
                await self.sender.send_group_message(token, str(raw.get("conversationId") or ""), text)
            else:
                await self.sender.send_private_message(
                    token, account.robot_code, str(raw.get("senderStaffId") or ""), text
                )
        except (DingTalkError, httpx.HTTPError) as e:
            logger.error("[dingtalk:%s] send_text failed: %s", account.account_id, e)
            return SendResult(ok=False, error=str(e))
        return SendResult(ok=True)

    async def send_action_card(
        self,
        card: ActionCard,
        *,
        open_conversation_id: str,
        account_id: Optional[str] = None,
    ) -> SendResult:
        account = settings.get_account(self.config, account_id or settings.DEFAULT_ACCOUNT_ID)
        if account is None or not account.configured:
            return SendResult(ok=False, error="Account config missing")
        try:
            token = await self.runtime.tokens.get_token(account.client_id, account.client_secret)
            await self.sender.send_group_action_card(token, open_conversation_id, card)
        except (DingTalkError, httpx.HTTPError) as e:
            logger.error("[dingtalk:%s] send_action_card failed: %s", account.account_id, e)
            return SendResult(ok=False, error=str(e))
        return SendResult(ok=True)

    async def aclose(self) -> None:
        await self.streams.stop_all()
        await self.runtime.aclose()
