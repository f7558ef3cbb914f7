"""Auto-reply usage log and summaries."""

from collections import deque
from datetime import datetime, timedelta
from typing import Any, Iterable

from replybot.bus.events import AutoReplyRecord, ResponseType, utcnow


class ReplyLog:
    """
    Bounded log of auto-reply send attempts.

    Oldest records drop once `max_records` is reached.
    """

    def __init__(self, max_records: int = 5000):
        self.max_records = max_records
        self._records: deque[AutoReplyRecord] = deque(maxlen=max_records)

    def add(self, record: AutoReplyRecord) -> None:
        self._records.append(record)

    def extend(self, records: Iterable[AutoReplyRecord]) -> None:
        for record in sorted(records, key=lambda r: r.timestamp):
            self._records.append(record)

    @property
    def records(self) -> list[AutoReplyRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def summary(self, days: int = 30, now: datetime | None = None) -> dict[str, Any]:
        """
        Summarize LLM reply usage over the last `days` days.

        Returns:
            Totals, per-day average, unique users, response-type
            breakdown and replies per day.
        """
        now = now or utcnow()
        days = max(days, 1)
        cutoff = now - timedelta(days=days)

        recent = [r for r in self._records if cutoff < r.timestamp <= now]
        llm_replies = [r for r in recent if r.response_type == ResponseType.LLM]

        response_types = {rt.value: 0 for rt in ResponseType}
        for record in recent:
            response_types[record.response_type.value] += 1

        daily: dict[str, int] = {}
        for record in llm_replies:
            key = record.timestamp.date().isoformat()
            daily[key] = daily.get(key, 0) + 1

        return {
            "totalLLMReplies": len(llm_replies),
            "averagePerDay": round(len(llm_replies) / days, 2),
            "uniqueUsers": len({r.sender for r in llm_replies}),
            "responseTypes": response_types,
            "undelivered": sum(1 for r in recent if not r.delivered),
            "dailyBreakdown": dict(sorted(daily.items())),
            "periodStart": cutoff.isoformat(),
            "periodEnd": now.isoformat(),
        }

    def clear(self) -> None:
        self._records.clear()
