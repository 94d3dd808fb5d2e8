"""Error kinds raised by the DingTalk bridge."""

from __future__ import annotations


class DingTalkError(Exception):
    """Base class for bridge errors."""


class ConfigError(DingTalkError):
    """Missing or invalid account configuration (credentials, robotCode)."""


class _HttpStatusError(DingTalkError):
    def __init__(self, action: str, status: int, body: str):
        super().__init__(f"Failed to {action}: {status} {body}")
        self.action = action
        self.status = status
        self.body = body


class AuthError(_HttpStatusError):
    """Access token exchange rejected by the platform."""

    def __init__(self, status: int, body: str):
        super().__init__("get access token", status, body)


class DeliveryError(_HttpStatusError):
    """Send call rejected by the platform."""


class TransportError(DingTalkError):
    """Connection-level failure reported by the stream transport."""

    def __init__(self, account_id: str, message: str):
        super().__init__(f"[dingtalk:{account_id}] {message}")
        self.account_id = account_id
