"""
Inbound dispatch bridge.

Turns DingTalk bot callbacks into host MessageContexts and hands them to the
host dispatcher. The callback is acknowledged as soon as the event is
accepted; dispatch and reply delivery run in a detached task per event.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set, Union

import httpx

from ...contracts.v1 import DeliverPayload, MessageContext
from ...kernel.context import RuntimeContext
from ...kernel.dedup import dedup_id_for
from ...kernel.errors import DingTalkError
from .sender import OutboundSender

CHANNEL_ID = "dingtalk"
GROUP_CONVERSATION_TYPE = "2"

logger = logging.getLogger("dtbridge.inbound")

DeliverFn = Callable[[Union[DeliverPayload, Dict[str, Any]]], Awaitable[None]]


class Dispatcher(ABC):
    """Host reply engine. `deliver` may be awaited zero or more times."""

    @abstractmethod
    async def dispatch(self, context: MessageContext, config: Dict[str, Any], deliver: DeliverFn) -> None:
        pass


class CallableDispatcher(Dispatcher):
    """Wraps a plain `async def fn(context, config, deliver)`."""

    def __init__(self, fn: Callable[[MessageContext, Dict[str, Any], DeliverFn], Awaitable[None]]):
        self._fn = fn

    async def dispatch(self, context: MessageContext, config: Dict[str, Any], deliver: DeliverFn) -> None:
        await self._fn(context, config, deliver)


def _text_content(event: Mapping[str, Any]) -> str:
    text = event.get("text")
    if not isinstance(text, dict):
        return ""
    return str(text.get("content") or "").strip()


def session_key_for(account_id: str, conversation_id: str) -> str:
    return f"{CHANNEL_ID}:{account_id}:{conversation_id}"


def build_message_context(account_id: str, event: Mapping[str, Any], text: str) -> MessageContext:
    conversation_id = str(event.get("conversationId") or "")
    sender_id = str(event.get("senderStaffId") or "")
    chat_type = "group" if str(event.get("conversationType") or "") == GROUP_CONVERSATION_TYPE else "direct"
    create_at = str(event.get("createAt") or "")
    return MessageContext(
        body=text,
        body_for_agent=text,
        command_body=text,
        body_for_commands=text,
        from_=sender_id,
        session_key=session_key_for(account_id, conversation_id),
        account_id=account_id,
        sender_name=str(event.get("senderNick") or ""),
        sender_id=sender_id,
        chat_type=chat_type,
        originating_to=conversation_id,
        timestamp=int(create_at) if create_at.isdigit() else None,
    )


class InboundBridge:
    def __init__(
        self,
        account_id: str,
        *,
        runtime: RuntimeContext,
        sender: OutboundSender,
        dispatcher: Dispatcher,
        config: Dict[str, Any],
    ):
        self.account_id = account_id
        self._runtime = runtime
        self._sender = sender
        self._dispatcher = dispatcher
        self._config = config
        self._tasks: Set[asyncio.Task[None]] = set()

    def _log_prefix(self) -> str:
        return f"[dingtalk:{self.account_id}]"

    def handle(self, event: Mapping[str, Any]) -> bool:
        """Accept one callback event. Returns True if a dispatch was spawned.

        Must be called from the event loop; never raises on dispatch failure.
        """
        dedup_id = dedup_id_for(event)
        if self._runtime.dedup.is_duplicate(dedup_id):
            logger.debug("%s Skipping duplicate message: %s", self._log_prefix(), dedup_id)
            return False

        text = _text_content(event)
        if event.get("msgtype") != "text" or not text:
            logger.debug(
                "%s Discarding msgtype=%s empty=%s",
                self._log_prefix(),
                event.get("msgtype"),
                not text,
            )
            return False

        context = build_message_context(self.account_id, event, text)
        webhook = str(event.get("sessionWebhook") or "")
        task = asyncio.get_running_loop().create_task(self._process(context, webhook))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    def _make_deliver(self, webhook: str) -> DeliverFn:
        async def deliver(payload: Union[DeliverPayload, Dict[str, Any]]) -> None:
            if isinstance(payload, dict):
                payload = DeliverPayload.model_validate(payload)
            if not payload.text or not webhook:
                return
            try:
                await self._sender.post_session_webhook(webhook, payload.text)
            except (DingTalkError, httpx.HTTPError) as e:
                logger.error("%s Error sending reply: %s", self._log_prefix(), e)

        return deliver

    async def _process(self, context: MessageContext, webhook: str) -> None:
        try:
            await self._dispatcher.dispatch(context, self._config, self._make_deliver(webhook))
        except Exception:
            logger.exception(
                "%s Failed to process message",
                self._log_prefix(),
                extra={"account_id": self.account_id, "conversation_id": context.originating_to},
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight dispatches (shutdown and tests)."""
        if not self._tasks:
            return
        await asyncio.wait(list(self._tasks), timeout=timeout)
