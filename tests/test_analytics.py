"""
Tests for analytics aggregation and the reply log.

Tests:
- Daily counters and hour-of-day histogram
- Local-time bucketing
- Contact eviction
- Error categorization and the bounded error log
- Response times, message types, success rates and range summaries
- Snapshot and restore
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from replybot.bus.events import AutoReplyRecord, Message, MessageStatus, ResponseType
from replybot.tracking.analytics import (
    AnalyticsAggregator,
    ErrorCategory,
    categorize_error,
    compute_response_times,
    message_type_breakdown,
    success_rates,
)
from replybot.tracking.replies import ReplyLog

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def inbound(sender: str, at: datetime, text: str = "hi") -> Message:
    return Message.incoming(sender, text, timestamp=at)


def outbound(recipient: str, at: datetime, **kwargs) -> Message:
    return Message.outgoing(recipient, "reply", timestamp=at, **kwargs)


def failed(recipient: str, at: datetime, error: str | None = "network connection lost") -> Message:
    return outbound(recipient, at, status=MessageStatus.FAILED, error=error)


class TestDailyStats:
    """Tests for daily counters."""

    def test_inbound_and_failed_counts(self):
        """Test ten inbound plus three failed sends on one day."""
        aggregator = AnalyticsAggregator()
        for i in range(10):
            aggregator.record(inbound(f"1555000{i:04d}", NOW))
        for i in range(3):
            aggregator.record(failed("15550000001", NOW))

        day = aggregator.get_daily("2024-01-15")

        assert (day.total, day.sent, day.received, day.failed) == (13, 0, 10, 3)

    def test_successful_sends_counted(self):
        aggregator = AnalyticsAggregator()
        aggregator.record(outbound("15550000001", NOW))
        aggregator.record(outbound("15550000001", NOW, status=MessageStatus.DELIVERED))

        assert aggregator.get_daily("2024-01-15").sent == 2

    def test_series_is_zero_filled(self):
        aggregator = AnalyticsAggregator()
        aggregator.record(inbound("1", NOW))

        series = aggregator.daily_stats(date(2024, 1, 13), date(2024, 1, 15))

        assert [stat.date for stat in series] == ["2024-01-13", "2024-01-14", "2024-01-15"]
        assert [stat.total for stat in series] == [0, 0, 1]

    def test_record_is_a_pure_increment(self):
        aggregator = AnalyticsAggregator()
        message = inbound("1", NOW)

        aggregator.record(message)
        aggregator.record(message)

        assert aggregator.get_daily("2024-01-15").received == 2


class TestLocalTime:
    """Tests for bucketing in the configured timezone."""

    def test_day_and_hour_follow_timezone(self):
        aggregator = AnalyticsAggregator(timezone_name="Asia/Tokyo")

        # 20:00 UTC is 05:00 the next day in Tokyo
        aggregator.record(inbound("1", datetime(2024, 1, 15, 20, 0, tzinfo=timezone.utc)))

        assert aggregator.get_daily("2024-01-16").total == 1
        assert aggregator.get_daily("2024-01-15").total == 0
        assert aggregator.hourly_distribution()[5] == {"hour": 5, "count": 1}

    def test_hourly_distribution_has_every_hour(self):
        distribution = AnalyticsAggregator().hourly_distribution()

        assert [item["hour"] for item in distribution] == list(range(24))


class TestContacts:
    """Tests for contact statistics."""

    def test_least_recently_active_evicted(self):
        aggregator = AnalyticsAggregator(max_contacts=2)
        aggregator.record(inbound("111", NOW))
        aggregator.record(inbound("222", NOW + timedelta(minutes=1)))
        aggregator.record(inbound("111", NOW + timedelta(minutes=2)))

        aggregator.record(inbound("333", NOW + timedelta(minutes=3)))

        assert aggregator.get_contact("222") is None
        assert aggregator.get_contact("111").message_count == 2
        assert aggregator.get_stats()["evicted_contacts"] == 1

    def test_outgoing_message_counts_for_recipient(self):
        aggregator = AnalyticsAggregator()
        aggregator.record(outbound("+1 555 000 0001", NOW))

        stat = aggregator.get_contact("15550000001")

        assert stat.message_count == 1
        assert stat.first_contact == NOW

    def test_top_contacts_busiest_first(self):
        aggregator = AnalyticsAggregator()
        for _ in range(3):
            aggregator.record(inbound("111", NOW))
        aggregator.record(inbound("222", NOW))

        top = aggregator.top_contacts(1)

        assert [stat.contact for stat in top] == ["111"]


class TestErrors:
    """Tests for error categorization and the error log."""

    @pytest.mark.parametrize("error,category", [
        ("Connection timeout to authentication server", ErrorCategory.NETWORK),
        ("Auth token expired", ErrorCategory.AUTHENTICATION),
        ("Too many requests: rate exceeded", ErrorCategory.RATE_LIMIT),
        ("Media upload failed", ErrorCategory.MEDIA),
        ("Invalid phone number", ErrorCategory.INVALID_FORMAT),
        ("Something odd happened", ErrorCategory.UNKNOWN),
        (None, ErrorCategory.UNKNOWN),
    ])
    def test_categorize(self, error, category):
        assert categorize_error(error) == category

    def test_log_is_bounded(self):
        aggregator = AnalyticsAggregator(error_log_size=3)
        for i in range(5):
            aggregator.record(failed("1", NOW + timedelta(seconds=i), error=f"network error {i}"))

        log = aggregator.error_log

        assert len(log) == 3
        assert [entry.error for entry in log] == ["network error 2", "network error 3", "network error 4"]

    def test_failure_without_error_text_not_logged(self):
        aggregator = AnalyticsAggregator()
        aggregator.record(failed("1", NOW, error=None))

        assert aggregator.error_log == []
        assert aggregator.get_daily("2024-01-15").failed == 1

    def test_analyze_errors_groups_by_category(self):
        aggregator = AnalyticsAggregator()
        aggregator.record(failed("1", NOW, error="network down"))
        aggregator.record(failed("1", NOW + timedelta(hours=1), error="connection reset"))
        aggregator.record(failed("2", NOW, error="file too large"))

        analysis = {item["type"]: item for item in aggregator.analyze_errors()}

        assert analysis["Network Error"]["count"] == 2
        assert analysis["Network Error"]["lastOccurrence"] == (NOW + timedelta(hours=1)).isoformat()
        assert analysis["Media Error"]["count"] == 1
        assert analysis["Media Error"]["resolved"] is False


class TestResponseTimes:
    """Tests for response-time measurement."""

    def test_only_first_reply_after_inbound_counts(self):
        messages = [
            inbound("111", NOW),
            outbound("111", NOW + timedelta(seconds=5)),
            inbound("222", NOW),
            outbound("222", NOW + timedelta(seconds=5)),
            outbound("222", NOW + timedelta(seconds=9)),
        ]

        times = compute_response_times(messages)

        assert times.samples == [5.0, 5.0]
        assert times.to_dict() == {"average": 5, "fastest": 5, "slowest": 5, "samples": 2}

    def test_reply_measured_from_latest_inbound(self):
        """Test that of two unanswered inbound messages only the later one is paired."""
        messages = [
            inbound("111", NOW),
            outbound("111", NOW + timedelta(seconds=5)),
            inbound("111", NOW + timedelta(seconds=10)),
            inbound("111", NOW + timedelta(seconds=20)),
            outbound("111", NOW + timedelta(seconds=25)),
        ]

        times = compute_response_times(messages)

        assert times.samples == [5.0, 5.0]

    def test_no_samples(self):
        assert compute_response_times([inbound("1", NOW)]).to_dict()["average"] == 0


class TestMessageTypes:
    """Tests for the message type breakdown."""

    def test_counts_and_percentages(self):
        messages = [
            inbound("1", NOW),
            inbound("1", NOW),
            outbound("1", NOW),
            outbound("1", NOW, kind="media"),
            Message.incoming("2", "", timestamp=NOW, kind=""),
        ]

        breakdown = message_type_breakdown(messages)

        assert breakdown == [
            {"type": "text", "count": 4, "percentage": 80.0},
            {"type": "media", "count": 1, "percentage": 20.0},
        ]

    def test_empty(self):
        assert message_type_breakdown([]) == []


class TestSuccessRates:
    """Tests for delivery and failure rates."""

    def test_rates(self):
        messages = [
            outbound("1", NOW, status=MessageStatus.DELIVERED),
            outbound("1", NOW, status=MessageStatus.READ),
            outbound("1", NOW),
            failed("1", NOW),
            inbound("1", NOW),
            inbound("1", NOW),
        ]

        rates = success_rates(messages)

        assert rates["deliveryRate"] == 50.0
        assert rates["failureRate"] == 25.0
        assert rates["responseRate"] == 50.0
        assert rates["metrics"] == {
            "totalOutgoing": 4,
            "totalIncoming": 2,
            "delivered": 2,
            "failed": 1,
        }

    def test_inbound_only(self):
        rates = success_rates([inbound("1", NOW)])

        assert rates["deliveryRate"] == 0
        assert rates["responseRate"] == 0
        assert rates["metrics"]["totalIncoming"] == 1


class TestSummary:
    """Tests for the range report."""

    def test_trend_against_previous_period(self):
        aggregator = AnalyticsAggregator()
        messages = [
            inbound("1", NOW - timedelta(days=1)),
            inbound("1", NOW - timedelta(days=2)),
            outbound("1", NOW - timedelta(days=2, seconds=-30)),
            inbound("1", NOW - timedelta(days=8)),
            inbound("1", NOW - timedelta(days=9)),
        ]
        aggregator.rebuild(messages)

        report = aggregator.summarize(messages, "week", now=NOW)

        volume = report["messageVolume"]
        assert volume["total"] == 3
        assert volume["received"] == 2
        assert volume["sent"] == 1
        assert volume["trend"] == 50
        assert report["responseTime"]["average"] == 30
        assert len(report["dailyStats"]) == 8

    def test_unknown_range_means_week(self):
        report = AnalyticsAggregator().summarize([], "fortnight", now=NOW)

        assert report["timeRange"] == "week"
        assert report["messageVolume"]["trend"] == 0

    def test_includes_types_and_rates(self):
        messages = [inbound("1", NOW - timedelta(hours=1)), failed("1", NOW - timedelta(minutes=59))]

        report = AnalyticsAggregator().summarize(messages, "day", now=NOW)

        assert report["messageTypes"] == [{"type": "text", "count": 2, "percentage": 100.0}]
        assert report["successRates"]["failureRate"] == 100.0

    def test_naive_timestamps_and_now(self):
        """Test that naive datetimes are read as UTC throughout."""
        naive_now = NOW.replace(tzinfo=None)
        messages = [inbound("1", naive_now - timedelta(hours=1))]
        aggregator = AnalyticsAggregator()
        aggregator.rebuild(messages)

        report = aggregator.summarize(messages, "day", now=naive_now)

        assert report["messageVolume"]["received"] == 1
        assert aggregator.get_daily("2024-01-15").received == 1


class TestSnapshot:
    """Tests for snapshot and restore."""

    def test_restore_reproduces_aggregates(self):
        original = AnalyticsAggregator()
        original.record(inbound("111", NOW))
        original.record(failed("111", NOW, error="rate limit hit"))

        restored = AnalyticsAggregator()
        restored.restore(original.snapshot())

        assert restored.get_daily("2024-01-15") == original.get_daily("2024-01-15")
        assert restored.hourly_distribution() == original.hourly_distribution()
        assert restored.get_contact("111").message_count == 2
        assert restored.error_log[0].category == ErrorCategory.RATE_LIMIT

    def test_reset(self):
        aggregator = AnalyticsAggregator()
        aggregator.record(inbound("1", NOW))

        aggregator.reset()

        assert aggregator.get_stats()["days"] == 0
        assert aggregator.top_contacts() == []


class TestReplyLog:
    """Tests for the auto-reply log."""

    def _record(self, sender: str, response_type: ResponseType, at: datetime, delivered: bool = True):
        return AutoReplyRecord(
            sender=sender,
            sender_name="Ann",
            request_text="hi",
            response_text="hello",
            response_type=response_type,
            delivered=delivered,
            timestamp=at,
        )

    def test_summary(self):
        log = ReplyLog()
        log.add(self._record("111", ResponseType.LLM, NOW - timedelta(days=1)))
        log.add(self._record("111", ResponseType.LLM, NOW - timedelta(days=1, hours=1)))
        log.add(self._record("222", ResponseType.LLM, NOW - timedelta(days=2)))
        log.add(self._record("333", ResponseType.AFTER_HOURS, NOW, delivered=False))
        log.add(self._record("444", ResponseType.LLM, NOW - timedelta(days=40)))

        summary = log.summary(days=30, now=NOW)

        assert summary["totalLLMReplies"] == 3
        assert summary["averagePerDay"] == 0.1
        assert summary["uniqueUsers"] == 2
        assert summary["responseTypes"] == {"llm": 3, "default": 0, "afterHours": 1}
        assert summary["undelivered"] == 1
        assert summary["dailyBreakdown"] == {"2024-01-13": 1, "2024-01-14": 2}

    def test_bounded(self):
        log = ReplyLog(max_records=2)
        for i in range(3):
            log.add(self._record(str(i), ResponseType.DEFAULT, NOW))

        assert len(log) == 2
        assert [r.sender for r in log.records] == ["1", "2"]
