"""
Auto-reply decision layer for replybot.

Provides:
- Predicate gate and reply selection
- Per-sender hourly rate limiting
- Per-sender ordered processing lanes
"""

from replybot.auto_reply.gate import (
    AutoReplyGate,
    GateDecision,
    GateRejection,
    ReplyPlan,
    is_within_working_hours,
)
from replybot.auto_reply.queue import (
    MessageQueue,
    QueueConfig,
)
from replybot.auto_reply.rate_limit import RateLimiter

__all__ = [
    # Gate
    "AutoReplyGate",
    "GateDecision",
    "GateRejection",
    "ReplyPlan",
    "is_within_working_hours",
    # Queue
    "MessageQueue",
    "QueueConfig",
    # Rate limiting
    "RateLimiter",
]
