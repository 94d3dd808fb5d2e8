from __future__ import annotations

from .account import AccountCredential
from .message import (
    ActionCard,
    ActionCardButton,
    ChatType,
    DeliverPayload,
    MessageContext,
    SendResult,
    StatusResult,
)

__all__ = [
    "AccountCredential",
    "ActionCard",
    "ActionCardButton",
    "ChatType",
    "DeliverPayload",
    "MessageContext",
    "SendResult",
    "StatusResult",
]
