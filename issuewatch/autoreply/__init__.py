"""Auto-reply decision gate and outbound reply senders."""

from .gate import AutoReplyGate, ConversationLocks, InboundOutcome, mentions_bot
from .sender import LoggingReplySender, ReplyDeliveryError, ReplySender, WebhookReplySender

__all__ = [
    "AutoReplyGate",
    "ConversationLocks",
    "InboundOutcome",
    "LoggingReplySender",
    "ReplyDeliveryError",
    "ReplySender",
    "WebhookReplySender",
    "mentions_bot",
]
