"""
Auto-reply gate for replybot.

Decides whether an inbound message gets an automatic reply and which
text to send:
- Ordered predicate chain, first failure wins (no reply, no record)
- LLM path with static fallback on generation failure
- Static path when LLM replies are off
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo

from loguru import logger

from replybot.auto_reply.rate_limit import RateLimiter
from replybot.bus.events import Message, ResponseType, normalize_contact
from replybot.config.schema import BotSettings, WorkingHoursConfig, parse_hhmm
from replybot.errors import GenerationError
from replybot.providers.base import GenerationContext
from replybot.providers.generator import ResponseGenerator


class GateRejection(str, Enum):
    """Why the gate declined to reply."""
    AUTO_REPLY_DISABLED = "auto_reply_disabled"
    FROM_ME = "from_me"
    OUTSIDE_WORKING_HOURS = "outside_working_hours"
    NOT_ALLOWED = "not_allowed"
    BLOCKED = "blocked"
    RATE_LIMITED = "rate_limited"


@dataclass
class GateDecision:
    """Outcome of the predicate chain."""
    accepted: bool
    is_working_hours: bool = True
    rejection: GateRejection | None = None

    def __bool__(self) -> bool:
        return self.accepted


@dataclass
class ReplyPlan:
    """The reply the gate wants sent."""
    text: str
    response_type: ResponseType
    is_working_hours: bool = True
    generation_error: str | None = None  # Set when the LLM failed and a fallback was chosen

    @property
    def used_fallback(self) -> bool:
        return self.generation_error is not None


def is_within_working_hours(window: WorkingHoursConfig, at: datetime | None = None) -> bool:
    """
    Check whether `at` falls inside the window, boundaries inclusive.

    The time is converted to the window's timezone and compared as
    minutes since midnight. Naive datetimes are taken as UTC.
    """
    at = at or datetime.now(timezone.utc)
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)

    local = at.astimezone(ZoneInfo(window.timezone))
    minute_of_day = local.hour * 60 + local.minute
    return parse_hhmm(window.start) <= minute_of_day <= parse_hhmm(window.end)


def _contains(contacts: list[str], contact: str) -> bool:
    return contact in {normalize_contact(c) for c in contacts}


class AutoReplyGate:
    """
    Predicate chain plus reply-text selection.

    The gate consults the rate limiter but only charges it after a
    successful generation; static and fallback replies are free.
    """

    def __init__(self, limiter: RateLimiter, generator: ResponseGenerator | None = None):
        self.limiter = limiter
        self.generator = generator

        # Stats
        self._rejections: dict[str, int] = {r.value: 0 for r in GateRejection}
        self._accepted_count = 0
        self._fallback_count = 0

    def check(self, message: Message, settings: BotSettings) -> GateDecision:
        """
        Run the predicate chain.

        Args:
            message: Inbound message.
            settings: Current bot settings.

        Returns:
            The decision; `rejection` names the first failed predicate.
        """
        working_hours = is_within_working_hours(settings.working_hours, message.timestamp)
        sender = message.contact

        rejection: GateRejection | None = None
        if not settings.auto_reply:
            rejection = GateRejection.AUTO_REPLY_DISABLED
        elif message.from_me:
            rejection = GateRejection.FROM_ME
        elif settings.working_hours.enabled and not working_hours:
            rejection = GateRejection.OUTSIDE_WORKING_HOURS
        elif settings.allowed_contacts and not _contains(settings.allowed_contacts, sender):
            rejection = GateRejection.NOT_ALLOWED
        elif _contains(settings.blocked_contacts, sender):
            rejection = GateRejection.BLOCKED
        elif not self.limiter.allow(sender):
            rejection = GateRejection.RATE_LIMITED

        if rejection:
            self._rejections[rejection.value] += 1
            logger.debug(f"No auto-reply to {sender}: {rejection.value}")
            return GateDecision(accepted=False, is_working_hours=working_hours, rejection=rejection)

        self._accepted_count += 1
        return GateDecision(accepted=True, is_working_hours=working_hours)

    async def plan_reply(
        self,
        message: Message,
        settings: BotSettings,
        is_working_hours: bool = True,
    ) -> ReplyPlan:
        """
        Choose the reply text for an accepted message.

        Generation failures never propagate; the static fallback is
        returned instead and the limiter is left uncharged.
        """
        llm = settings.llm
        use_llm = (
            llm.enabled
            and llm.auto_reply
            and self.generator is not None
            and not (llm.only_during_business_hours and not is_working_hours)
        )

        if not use_llm:
            return self._static_reply(settings, is_working_hours)

        context = GenerationContext(
            sender_id=message.sender,
            sender_name=message.sender_name,
            is_group=message.is_group,
            business_hours=is_working_hours,
        )

        try:
            text = await self.generator.generate(message.content, context)
        except GenerationError as e:
            self._fallback_count += 1
            logger.warning(f"LLM reply to {message.contact} failed, using fallback: {e}")
            plan = self._fallback_reply(settings, is_working_hours)
            plan.generation_error = str(e)
            return plan

        self.limiter.record(message.contact)
        return ReplyPlan(text=text, response_type=ResponseType.LLM, is_working_hours=is_working_hours)

    async def evaluate(self, message: Message, settings: BotSettings) -> ReplyPlan | None:
        """Check the message and, if accepted, plan the reply."""
        decision = self.check(message, settings)
        if not decision:
            return None
        return await self.plan_reply(message, settings, decision.is_working_hours)

    def _static_reply(self, settings: BotSettings, is_working_hours: bool) -> ReplyPlan:
        if not is_working_hours:
            return ReplyPlan(
                text=settings.after_hours_message,
                response_type=ResponseType.AFTER_HOURS,
                is_working_hours=False,
            )
        return ReplyPlan(
            text=settings.auto_reply_message,
            response_type=ResponseType.DEFAULT,
            is_working_hours=True,
        )

    def _fallback_reply(self, settings: BotSettings, is_working_hours: bool) -> ReplyPlan:
        if not is_working_hours:
            return self._static_reply(settings, is_working_hours)
        return ReplyPlan(
            text=settings.llm.fallback_message or settings.auto_reply_message,
            response_type=ResponseType.DEFAULT,
            is_working_hours=True,
        )

    def get_stats(self) -> dict[str, Any]:
        """Get gate statistics."""
        return {
            "accepted": self._accepted_count,
            "rejected": dict(self._rejections),
            "fallbacks": self._fallback_count,
            "limiter": self.limiter.get_stats(),
        }
