"""
DingTalk Stream-mode channel.

Architecture:
- Inbound: Stream callback -> dedup/filter -> host dispatcher -> session webhook reply
- Outbound: host send_text -> token cache -> robot REST API

Usage:
    python -m dtbridge.ports.dingtalk --dispatcher myhost.replies:dispatch
"""

from .channel import DingTalkChannel
from .inbound import CallableDispatcher, Dispatcher, InboundBridge
from .sender import OutboundSender
from .stream import StreamManager

__all__ = [
    "CallableDispatcher",
    "DingTalkChannel",
    "Dispatcher",
    "InboundBridge",
    "OutboundSender",
    "StreamManager",
]
