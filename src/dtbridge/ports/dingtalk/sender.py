"""
Outbound delivery to DingTalk.

Three robot endpoints (group send, 1:1 batch send, action card via group
send) plus the per-event session webhook used for inbound replies.

Robot API quirk: `msgParam` is itself a JSON-encoded string nested inside
the JSON request body.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from ...contracts.v1 import ActionCard
from ...kernel.errors import ConfigError, DeliveryError
from ...kernel.formatting import MessageFormat, build_message_body, build_msg_param
from ...kernel.token_cache import DINGTALK_API

GROUP_SEND_URL = f"{DINGTALK_API}/v1.0/robot/groupMessages/send"
PRIVATE_SEND_URL = f"{DINGTALK_API}/v1.0/robot/oToMessages/batchSend"

MSG_KEY_ACTION_CARD = "sampleActionCard"
MSG_KEY_ACTION_CARD_2 = "sampleActionCard2"
DEFAULT_SINGLE_TITLE = "查看详情"

logger = logging.getLogger("dtbridge.sender")


def build_action_card_param(card: ActionCard) -> tuple[str, Dict[str, Any]]:
    """(msgKey, msgParam) for an action card with 0, 1 or 2 buttons."""
    param: Dict[str, Any] = {"title": card.title, "text": card.text}
    if card.buttons:
        for i, button in enumerate(card.buttons[:2], start=1):
            param[f"actionTitle{i}"] = button.title
            param[f"actionUrl{i}"] = button.action_url
        return MSG_KEY_ACTION_CARD_2, param
    param["singleTitle"] = card.single_title or DEFAULT_SINGLE_TITLE
    param["singleUrl"] = card.single_url or ""
    return MSG_KEY_ACTION_CARD, param


class OutboundSender:
    """Executes single, unretried send calls; raises DeliveryError on non-2xx."""

    def __init__(self, http: httpx.AsyncClient):
        self._http = http

    async def _post(
        self,
        url: str,
        body: Dict[str, Any],
        *,
        action: str,
        access_token: Optional[str] = None,
    ) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if access_token is not None:
            headers["x-acs-dingtalk-access-token"] = access_token
        resp = await self._http.post(url, json=body, headers=headers)
        if not resp.is_success:
            logger.warning("[%s] HTTP %s - %s", action, resp.status_code, resp.text[:300])
            raise DeliveryError(action, resp.status_code, resp.text)
        return resp

    async def send_group_message(
        self,
        access_token: str,
        open_conversation_id: str,
        content: str,
        format: Optional[MessageFormat] = None,
    ) -> None:
        msg_key, msg_param = build_msg_param(content, format)
        await self._post(
            GROUP_SEND_URL,
            {
                "msgParam": json.dumps(msg_param, ensure_ascii=False),
                "msgKey": msg_key,
                "openConversationId": open_conversation_id,
            },
            action="send message",
            access_token=access_token,
        )

    async def send_private_message(
        self,
        access_token: str,
        robot_code: Optional[str],
        user_id: str,
        content: str,
        format: Optional[MessageFormat] = None,
    ) -> None:
        if not robot_code:
            raise ConfigError("Missing robotCode")
        msg_key, msg_param = build_msg_param(content, format)
        await self._post(
            PRIVATE_SEND_URL,
            {
                "robotCode": robot_code,
                "userIds": [user_id],
                "msgKey": msg_key,
                "msgParam": json.dumps(msg_param, ensure_ascii=False),
            },
            action="send private message",
            access_token=access_token,
        )

    async def send_group_action_card(
        self,
        access_token: str,
        open_conversation_id: str,
        card: ActionCard,
    ) -> None:
        msg_key, msg_param = build_action_card_param(card)
        await self._post(
            GROUP_SEND_URL,
            {
                "msgParam": json.dumps(msg_param, ensure_ascii=False),
                "msgKey": msg_key,
                "openConversationId": open_conversation_id,
            },
            action="send action card",
            access_token=access_token,
        )

    async def post_session_webhook(self, webhook_url: str, content: str) -> None:
        """Reply through the per-event sessionWebhook (no auth header)."""
        await self._post(webhook_url, build_message_body(content), action="send reply")
