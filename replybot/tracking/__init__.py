"""
Usage tracking for replybot.

Tracks:
- Message analytics (daily, hourly, contacts, errors, response times)
- Auto-reply usage
"""

from replybot.tracking.analytics import (
    TIME_RANGES,
    AnalyticsAggregator,
    ContactStat,
    DailyStat,
    ErrorCategory,
    ErrorLogEntry,
    ResponseTimes,
    categorize_error,
    compute_response_times,
    message_type_breakdown,
    success_rates,
)
from replybot.tracking.replies import ReplyLog

__all__ = [
    "TIME_RANGES",
    "AnalyticsAggregator",
    "ContactStat",
    "DailyStat",
    "ErrorCategory",
    "ErrorLogEntry",
    "ResponseTimes",
    "categorize_error",
    "compute_response_times",
    "message_type_breakdown",
    "success_rates",
    "ReplyLog",
]
