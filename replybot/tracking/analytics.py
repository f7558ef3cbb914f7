"""
Message analytics for replybot.

Tracks:
- Daily counters (total, sent, received, failed)
- Hour-of-day histogram
- Per-contact activity (bounded, least recently active evicted first)
- Categorized send errors (bounded ring buffer)
- Response times between inbound messages and replies
- Message type breakdown and delivery/failure rates
"""

from collections import OrderedDict, defaultdict, deque
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Iterable
from zoneinfo import ZoneInfo

from loguru import logger

from replybot.bus.events import (
    Message,
    MessageDirection,
    MessageStatus,
    as_utc,
    parse_time,
    utcnow,
)

HOURS_PER_DAY = 24

# Range name -> length in days
TIME_RANGES = {
    "day": 1,
    "week": 7,
    "month": 30,
    "quarter": 90,
}


class ErrorCategory(str, Enum):
    """Send error taxonomy."""
    NETWORK = "Network Error"
    AUTHENTICATION = "Authentication Error"
    RATE_LIMIT = "Rate Limit"
    MEDIA = "Media Error"
    INVALID_FORMAT = "Invalid Format"
    UNKNOWN = "Unknown Error"


# Checked in order, first match wins
ERROR_KEYWORDS: list[tuple[ErrorCategory, tuple[str, ...]]] = [
    (ErrorCategory.NETWORK, ("network", "connection")),
    (ErrorCategory.AUTHENTICATION, ("auth", "authentication")),
    (ErrorCategory.RATE_LIMIT, ("rate", "limit")),
    (ErrorCategory.MEDIA, ("media", "file")),
    (ErrorCategory.INVALID_FORMAT, ("invalid", "format")),
]


def categorize_error(error: str | None) -> ErrorCategory:
    """
    Classify a free-text error message.

    Case-insensitive substring match against ERROR_KEYWORDS.
    """
    text = (error or "").lower()
    for category, keywords in ERROR_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return ErrorCategory.UNKNOWN


@dataclass
class DailyStat:
    """Message counters for one calendar date."""
    date: str  # YYYY-MM-DD
    total: int = 0
    sent: int = 0
    received: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "total": self.total,
            "sent": self.sent,
            "received": self.received,
            "failed": self.failed,
        }


@dataclass
class ContactStat:
    """Activity of one contact."""
    contact: str
    first_contact: datetime
    last_active: datetime
    message_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "contact": self.contact,
            "messageCount": self.message_count,
            "firstContact": self.first_contact.isoformat(),
            "lastActive": self.last_active.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContactStat":
        return cls(
            contact=data["contact"],
            message_count=data.get("messageCount", 0),
            first_contact=parse_time(data["firstContact"]),
            last_active=parse_time(data["lastActive"]),
        )


@dataclass
class ErrorLogEntry:
    """One failed send."""
    timestamp: datetime
    category: ErrorCategory
    message_id: str
    contact: str
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
            "messageId": self.message_id,
            "contact": self.contact,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ErrorLogEntry":
        return cls(
            timestamp=parse_time(data["timestamp"]),
            category=ErrorCategory(data["category"]),
            message_id=data.get("messageId", ""),
            contact=data.get("contact", ""),
            error=data.get("error", ""),
        )


@dataclass
class ResponseTimes:
    """Response-time summary in seconds."""
    average: int = 0
    fastest: int = 0
    slowest: int = 0
    samples: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "average": self.average,
            "fastest": self.fastest,
            "slowest": self.slowest,
            "samples": len(self.samples),
        }


def compute_response_times(messages: Iterable[Message]) -> ResponseTimes:
    """
    Measure how quickly inbound messages were answered.

    Messages are grouped by contact and sorted by time. Every outgoing
    message that directly follows an incoming one contributes one
    sample (the gap in seconds); later outgoing messages in the same run
    contribute nothing.

    Returns:
        Rounded average/fastest/slowest, zeros when there are no samples.
    """
    by_contact: dict[str, list[Message]] = defaultdict(list)
    for message in messages:
        by_contact[message.contact].append(message)

    samples: list[float] = []
    for thread in by_contact.values():
        thread.sort(key=lambda m: m.timestamp)
        for previous, current in zip(thread, thread[1:]):
            if (
                previous.direction == MessageDirection.INCOMING
                and current.direction == MessageDirection.OUTGOING
            ):
                samples.append((current.timestamp - previous.timestamp).total_seconds())

    if not samples:
        return ResponseTimes()

    return ResponseTimes(
        average=round(sum(samples) / len(samples)),
        fastest=round(min(samples)),
        slowest=round(max(samples)),
        samples=samples,
    )


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def message_type_breakdown(messages: Iterable[Message]) -> list[dict[str, Any]]:
    """Count and share of each message kind, most common first."""
    counts: dict[str, int] = defaultdict(int)
    for message in messages:
        counts[message.kind or "text"] += 1

    total = sum(counts.values())
    return [
        {"type": kind, "count": count, "percentage": _percent(count, total)}
        for kind, count in sorted(counts.items(), key=lambda item: item[1], reverse=True)
    ]


def success_rates(messages: Iterable[Message]) -> dict[str, Any]:
    """
    Delivery, failure and response rates as percentages.

    Delivered means an outgoing message acknowledged as delivered or
    read. The response rate is inbound volume relative to outbound
    volume, and is 0 unless both directions are present.
    """
    outgoing = incoming = delivered = failed = 0
    for message in messages:
        if message.direction == MessageDirection.INCOMING:
            incoming += 1
            continue
        outgoing += 1
        if message.status in (MessageStatus.DELIVERED, MessageStatus.READ):
            delivered += 1
        elif message.status == MessageStatus.FAILED:
            failed += 1

    return {
        "deliveryRate": _percent(delivered, outgoing),
        "failureRate": _percent(failed, outgoing),
        "responseRate": _percent(incoming, outgoing) if incoming else 0.0,
        "metrics": {
            "totalOutgoing": outgoing,
            "totalIncoming": incoming,
            "delivered": delivered,
            "failed": failed,
        },
    }


class AnalyticsAggregator:
    """
    Incremental rollups over the message stream.

    record() is a pure increment: feeding the same message twice counts
    it twice. Callers guarantee at-most-once delivery per message id.
    """

    def __init__(
        self,
        timezone_name: str = "UTC",
        error_log_size: int = 1000,
        max_contacts: int = 10000,
    ):
        self.timezone_name = timezone_name
        self._tz = ZoneInfo(timezone_name)
        self.error_log_size = error_log_size
        self.max_contacts = max_contacts

        self._daily: dict[str, DailyStat] = {}
        self._hourly: list[int] = [0] * HOURS_PER_DAY
        self._contacts: OrderedDict[str, ContactStat] = OrderedDict()
        self._errors: deque[ErrorLogEntry] = deque(maxlen=error_log_size)

        # Stats
        self._recorded_count = 0
        self._evicted_contacts = 0

    def _local(self, moment: datetime) -> datetime:
        return as_utc(moment).astimezone(self._tz)

    def today(self) -> date:
        """Current date in the analytics timezone."""
        return self._local(utcnow()).date()

    def record(self, message: Message) -> None:
        """
        Fold one message into the aggregates.

        Args:
            message: Inbound message, or outbound message after its send
                succeeded or failed.
        """
        local = self._local(message.timestamp)
        date_key = local.date().isoformat()

        # Daily stats
        day = self._daily.get(date_key)
        if day is None:
            day = DailyStat(date=date_key)
            self._daily[date_key] = day

        day.total += 1
        if message.direction == MessageDirection.OUTGOING:
            if message.status == MessageStatus.FAILED:
                day.failed += 1
            else:
                day.sent += 1
        else:
            day.received += 1

        # Hourly distribution
        self._hourly[local.hour] += 1

        # Contact stats
        contact = message.contact
        if contact:
            self._touch_contact(contact, message.timestamp)

        # Error log
        if message.status == MessageStatus.FAILED and message.error:
            self._errors.append(ErrorLogEntry(
                timestamp=message.timestamp,
                category=categorize_error(message.error),
                message_id=message.id,
                contact=contact,
                error=message.error,
            ))

        self._recorded_count += 1

    def _touch_contact(self, contact: str, timestamp: datetime) -> None:
        stat = self._contacts.get(contact)
        if stat is None:
            stat = ContactStat(contact=contact, first_contact=timestamp, last_active=timestamp)
            self._contacts[contact] = stat
        else:
            self._contacts.move_to_end(contact)

        stat.message_count += 1
        stat.last_active = max(stat.last_active, timestamp)
        stat.first_contact = min(stat.first_contact, timestamp)

        while len(self._contacts) > self.max_contacts:
            evicted, _ = self._contacts.popitem(last=False)
            self._evicted_contacts += 1
            logger.debug(f"Evicted contact stats for {evicted}")

    def rebuild(self, messages: Iterable[Message]) -> int:
        """
        Reset and recompute the aggregates from stored messages.

        Returns:
            Number of messages folded in.
        """
        self.reset()
        ordered = sorted(messages, key=lambda m: m.timestamp)
        for message in ordered:
            self.record(message)
        logger.info(f"Rebuilt analytics from {len(ordered)} messages")
        return len(ordered)

    # Queries

    def get_daily(self, date_key: str) -> DailyStat:
        """Counters for one date (zeros if nothing was recorded)."""
        return self._daily.get(date_key) or DailyStat(date=date_key)

    def daily_stats(self, start: date, end: date | None = None) -> list[DailyStat]:
        """
        Zero-filled daily series.

        Args:
            start: First date, inclusive.
            end: Last date, inclusive (defaults to today).
        """
        end = end or self.today()
        series = []
        current = start
        while current <= end:
            series.append(self.get_daily(current.isoformat()))
            current += timedelta(days=1)
        return series

    def hourly_distribution(self) -> list[dict[str, int]]:
        """Message counts per local hour of day."""
        return [{"hour": hour, "count": count} for hour, count in enumerate(self._hourly)]

    def top_contacts(self, limit: int = 10) -> list[ContactStat]:
        """Most active contacts, busiest first."""
        return sorted(
            self._contacts.values(),
            key=lambda stat: stat.message_count,
            reverse=True,
        )[:limit]

    def get_contact(self, contact: str) -> ContactStat | None:
        return self._contacts.get(contact)

    @property
    def error_log(self) -> list[ErrorLogEntry]:
        """Logged errors, oldest first."""
        return list(self._errors)

    def analyze_errors(self) -> list[dict[str, Any]]:
        """Error count and last occurrence per category."""
        summary: dict[ErrorCategory, dict[str, Any]] = {}
        for entry in self._errors:
            item = summary.get(entry.category)
            if item is None:
                item = {
                    "type": entry.category.value,
                    "count": 0,
                    "lastOccurrence": entry.timestamp,
                    "resolved": False,
                }
                summary[entry.category] = item

            item["count"] += 1
            if entry.timestamp > item["lastOccurrence"]:
                item["lastOccurrence"] = entry.timestamp

        return [
            {**item, "lastOccurrence": item["lastOccurrence"].isoformat()}
            for item in summary.values()
        ]

    def summarize(
        self,
        messages: Iterable[Message],
        time_range: str = "week",
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Build the analytics report for a time range.

        Args:
            messages: Stored messages covering at least the range and the
                period of equal length before it (for the trend).
            time_range: One of TIME_RANGES; unknown names mean "week".
            now: End of the range (defaults to the current time).

        Returns:
            Message volume with trend, response times, message types,
            success rates, top contacts, hourly distribution, daily
            series and error analysis.
        """
        now = as_utc(now or utcnow())
        span = timedelta(days=TIME_RANGES.get(time_range, TIME_RANGES["week"]))
        start = now - span
        previous_start = start - span

        window: list[Message] = []
        previous_count = 0
        for message in messages:
            if start <= message.timestamp <= now:
                window.append(message)
            elif previous_start <= message.timestamp < start:
                previous_count += 1

        total = len(window)
        sent = sum(
            1 for m in window
            if m.direction == MessageDirection.OUTGOING and m.status != MessageStatus.FAILED
        )
        received = sum(1 for m in window if m.direction == MessageDirection.INCOMING)
        failed = sum(1 for m in window if m.status == MessageStatus.FAILED)

        trend = round((total - previous_count) / previous_count * 100) if previous_count else 0

        return {
            "timeRange": time_range if time_range in TIME_RANGES else "week",
            "messageVolume": {
                "total": total,
                "sent": sent,
                "received": received,
                "failed": failed,
                "trend": trend,
            },
            "responseTime": compute_response_times(window).to_dict(),
            "messageTypes": message_type_breakdown(window),
            "successRates": success_rates(window),
            "topContacts": [stat.to_dict() for stat in self.top_contacts(10)],
            "hourlyDistribution": self.hourly_distribution(),
            "dailyStats": [
                stat.to_dict()
                for stat in self.daily_stats(self._local(start).date(), self._local(now).date())
            ],
            "errorAnalysis": self.analyze_errors(),
        }

    # Persistence

    def snapshot(self) -> dict[str, Any]:
        """Serializable copy of the aggregates."""
        return {
            "timezone": self.timezone_name,
            "dailyStats": [stat.to_dict() for stat in self._daily.values()],
            "hourlyDistribution": list(self._hourly),
            "contactStats": [stat.to_dict() for stat in self._contacts.values()],
            "errorLog": [entry.to_dict() for entry in self._errors],
        }

    def restore(self, data: dict[str, Any]) -> None:
        """Replace the aggregates with a snapshot."""
        self.reset()

        for item in data.get("dailyStats", []):
            stat = DailyStat(**item)
            self._daily[stat.date] = stat

        hourly = data.get("hourlyDistribution") or []
        if len(hourly) == HOURS_PER_DAY:
            self._hourly = [int(count) for count in hourly]

        contacts = [ContactStat.from_dict(item) for item in data.get("contactStats", [])]
        for stat in sorted(contacts, key=lambda s: s.last_active)[-self.max_contacts:]:
            self._contacts[stat.contact] = stat

        for item in data.get("errorLog", []):
            self._errors.append(ErrorLogEntry.from_dict(item))

        logger.debug(
            f"Restored analytics: {len(self._daily)} days, {len(self._contacts)} contacts, "
            f"{len(self._errors)} errors"
        )

    def reset(self) -> None:
        """Clear every aggregate."""
        self._daily.clear()
        self._hourly = [0] * HOURS_PER_DAY
        self._contacts.clear()
        self._errors.clear()
        self._recorded_count = 0

    def get_stats(self) -> dict[str, Any]:
        """Get aggregator statistics."""
        return {
            "recorded": self._recorded_count,
            "days": len(self._daily),
            "contacts": len(self._contacts),
            "errors": len(self._errors),
            "evicted_contacts": self._evicted_contacts,
            "timezone": self.timezone_name,
        }
