"""
Tests for the auto-reply gate.

Tests:
- Predicate chain order and short-circuiting
- Business-hours window boundaries
- LLM path, fallback and rate-limit charging
- Static path selection
"""

import time
from datetime import datetime, timezone

import pytest

from replybot.auto_reply.gate import (
    AutoReplyGate,
    GateRejection,
    is_within_working_hours,
)
from replybot.auto_reply.rate_limit import RateLimiter
from replybot.bus.events import Message, ResponseType
from replybot.config.schema import WorkingHoursConfig
from replybot.errors import GenerationError
from replybot.providers.generator import ResponseGenerator

from tests.conftest import StubProvider


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 1, 15, hour, minute, tzinfo=timezone.utc)


def inbound(sender: str = "15550001111", text: str = "hello", **kwargs) -> Message:
    kwargs.setdefault("timestamp", at(10))
    return Message.incoming(sender, text, sender_name="Ann", **kwargs)


async def ready_generator(settings, provider) -> ResponseGenerator:
    generator = ResponseGenerator(settings, provider_factory=lambda s: provider)
    assert await generator.initialize() is True
    return generator


@pytest.fixture
def limiter():
    return RateLimiter(limit_per_hour=60)


@pytest.fixture
def gate(limiter):
    return AutoReplyGate(limiter)


class TestWorkingHours:
    """Tests for the business-hours window."""

    def test_boundaries_are_inclusive(self):
        window = WorkingHoursConfig(enabled=True, start="09:00", end="17:00")

        assert is_within_working_hours(window, at(8, 59)) is False
        assert is_within_working_hours(window, at(9, 0)) is True
        assert is_within_working_hours(window, at(17, 0)) is True
        assert is_within_working_hours(window, at(17, 1)) is False

    def test_window_evaluated_in_its_timezone(self):
        window = WorkingHoursConfig(
            enabled=True, start="09:00", end="17:00", timezone="America/New_York"
        )

        # 14:00 UTC is 09:00 in New York (EST)
        assert is_within_working_hours(window, at(14, 0)) is True
        assert is_within_working_hours(window, at(13, 59)) is False

    def test_naive_time_treated_as_utc(self):
        window = WorkingHoursConfig(start="09:00", end="17:00")

        assert is_within_working_hours(window, datetime(2024, 1, 15, 12, 0)) is True


class TestGatePredicates:
    """Tests for the predicate chain."""

    def test_accepts_ordinary_message(self, gate, bot_settings):
        decision = gate.check(inbound(), bot_settings)

        assert decision.accepted is True
        assert decision.rejection is None

    def test_auto_reply_disabled(self, gate, bot_settings):
        settings = bot_settings.merged({"auto_reply": False})

        decision = gate.check(inbound(), settings)

        assert not decision
        assert decision.rejection == GateRejection.AUTO_REPLY_DISABLED

    def test_self_originated_message_rejected(self, gate, bot_settings):
        decision = gate.check(inbound(from_me=True), bot_settings)

        assert decision.rejection == GateRejection.FROM_ME

    @pytest.mark.parametrize("hour,minute,accepted", [
        (8, 59, False),
        (9, 0, True),
        (17, 0, True),
        (17, 1, False),
    ])
    def test_business_hours_restriction(self, gate, bot_settings, hour, minute, accepted):
        """Test the 09:00-17:00 window against message timestamps."""
        settings = bot_settings.merged({
            "working_hours": {"enabled": True, "start": "09:00", "end": "17:00"},
        })

        decision = gate.check(inbound(timestamp=at(hour, minute)), settings)

        assert decision.accepted is accepted
        if not accepted:
            assert decision.rejection == GateRejection.OUTSIDE_WORKING_HOURS

    def test_allow_list_excludes_others(self, gate, bot_settings):
        settings = bot_settings.merged({"allowed_contacts": ["+1 555 000 9999"]})

        assert gate.check(inbound("15550009999@c.us"), settings).accepted is True
        decision = gate.check(inbound("15550001111"), settings)
        assert decision.rejection == GateRejection.NOT_ALLOWED

    def test_block_list_overrides_allow_list(self, gate, bot_settings):
        settings = bot_settings.merged({
            "allowed_contacts": ["15550001111"],
            "blocked_contacts": ["+1-555-000-1111"],
        })

        decision = gate.check(inbound("15550001111"), settings)

        assert decision.rejection == GateRejection.BLOCKED

    def test_rate_limited_sender(self, limiter, gate, bot_settings):
        limiter.limit_per_hour = 1
        limiter.record("15550001111")

        decision = gate.check(inbound(), bot_settings)

        assert decision.rejection == GateRejection.RATE_LIMITED

    def test_first_failure_wins(self, limiter, gate, bot_settings):
        """Test that a blocked sender that is also rate limited reports the block."""
        limiter.limit_per_hour = 0
        settings = bot_settings.merged({"blocked_contacts": ["15550001111"]})

        decision = gate.check(inbound(), settings)

        assert decision.rejection == GateRejection.BLOCKED
        assert limiter.get_stats()["denied_count"] == 0

    def test_rejections_counted(self, gate, bot_settings):
        gate.check(inbound(from_me=True), bot_settings)
        gate.check(inbound(), bot_settings)

        stats = gate.get_stats()
        assert stats["accepted"] == 1
        assert stats["rejected"]["from_me"] == 1


class TestStaticReplies:
    """Tests for replies without an LLM."""

    @pytest.mark.asyncio
    async def test_default_message_during_hours(self, gate, bot_settings):
        plan = await gate.evaluate(inbound(), bot_settings)

        assert plan.response_type == ResponseType.DEFAULT
        assert plan.text == bot_settings.auto_reply_message
        assert plan.is_working_hours is True

    @pytest.mark.asyncio
    async def test_after_hours_message_outside_window(self, gate, bot_settings):
        """Test that an unrestricted window still selects the after-hours text."""
        settings = bot_settings.merged({
            "working_hours": {"enabled": False, "start": "09:00", "end": "17:00"},
        })

        plan = await gate.evaluate(inbound(timestamp=at(20)), settings)

        assert plan.response_type == ResponseType.AFTER_HOURS
        assert plan.text == settings.after_hours_message
        assert plan.is_working_hours is False

    @pytest.mark.asyncio
    async def test_rejected_message_has_no_plan(self, gate, bot_settings):
        assert await gate.evaluate(inbound(from_me=True), bot_settings) is None


class TestLLMReplies:
    """Tests for the LLM path."""

    @pytest.mark.asyncio
    async def test_llm_reply_charges_limiter(self, limiter, bot_settings, llm_settings):
        provider = StubProvider(llm_settings, reply="Hi Ann!")
        gate = AutoReplyGate(limiter, await ready_generator(llm_settings, provider))
        settings = bot_settings.merged({"llm": llm_settings.model_dump()})

        plan = await gate.evaluate(inbound(), settings)

        assert plan.response_type == ResponseType.LLM
        assert plan.text == "Hi Ann!"
        assert limiter.remaining("15550001111") == llm_settings.rate_limit_per_hour - 1

    @pytest.mark.asyncio
    async def test_context_passed_to_provider(self, limiter, bot_settings, llm_settings):
        provider = StubProvider(llm_settings)
        gate = AutoReplyGate(limiter, await ready_generator(llm_settings, provider))
        settings = bot_settings.merged({
            "llm": llm_settings.model_dump(),
            "working_hours": {"start": "09:00", "end": "17:00"},
        })

        await gate.evaluate(inbound(timestamp=at(20), is_group=True), settings)

        system_prompt, user_text, context = provider.calls[0]
        assert user_text == "hello"
        assert context.sender_name == "Ann"
        assert context.is_group is True
        assert context.business_hours is False
        assert "group chat" in system_prompt
        assert "You are responding to Ann." in system_prompt

    @pytest.mark.asyncio
    async def test_timeout_falls_back_without_charging(self, limiter, bot_settings, llm_settings):
        """Test that a provider that never answers yields the fallback within the timeout."""
        provider = StubProvider(llm_settings, hang=True)
        gate = AutoReplyGate(limiter, await ready_generator(llm_settings, provider))
        settings = bot_settings.merged({"llm": llm_settings.model_dump()})

        started = time.monotonic()
        plan = await gate.evaluate(inbound(), settings)
        elapsed = time.monotonic() - started

        assert elapsed < llm_settings.timeout_seconds + 1.0
        assert plan.response_type == ResponseType.DEFAULT
        assert plan.text == llm_settings.fallback_message
        assert plan.used_fallback is True
        assert provider.cancelled is True
        assert limiter.remaining("15550001111") == llm_settings.rate_limit_per_hour

    @pytest.mark.asyncio
    async def test_provider_error_falls_back(self, limiter, bot_settings, llm_settings):
        provider = StubProvider(llm_settings, error=RuntimeError("quota exceeded"))
        gate = AutoReplyGate(limiter, await ready_generator(llm_settings, provider))
        settings = bot_settings.merged({"llm": llm_settings.model_dump()})

        plan = await gate.evaluate(inbound(), settings)

        assert plan.response_type == ResponseType.DEFAULT
        assert "quota exceeded" in plan.generation_error
        assert gate.get_stats()["fallbacks"] == 1

    @pytest.mark.asyncio
    async def test_fallback_after_hours_uses_after_hours_text(self, limiter, bot_settings, llm_settings):
        provider = StubProvider(llm_settings, error=RuntimeError("boom"))
        gate = AutoReplyGate(limiter, await ready_generator(llm_settings, provider))
        settings = bot_settings.merged({
            "llm": llm_settings.model_dump(),
            "working_hours": {"start": "09:00", "end": "17:00"},
        })

        plan = await gate.evaluate(inbound(timestamp=at(22)), settings)

        assert plan.response_type == ResponseType.AFTER_HOURS
        assert plan.text == settings.after_hours_message

    @pytest.mark.asyncio
    async def test_uninitialized_generator_falls_back(self, limiter, bot_settings, llm_settings):
        gate = AutoReplyGate(limiter, ResponseGenerator(llm_settings))
        settings = bot_settings.merged({"llm": llm_settings.model_dump()})

        plan = await gate.evaluate(inbound(), settings)

        assert plan.response_type == ResponseType.DEFAULT
        assert plan.used_fallback is True

    @pytest.mark.asyncio
    async def test_llm_auto_reply_off_uses_static_path(self, limiter, bot_settings, llm_settings):
        provider = StubProvider(llm_settings)
        gate = AutoReplyGate(limiter, await ready_generator(llm_settings, provider))
        llm = {**llm_settings.model_dump(), "auto_reply": False}
        settings = bot_settings.merged({"llm": llm})

        plan = await gate.evaluate(inbound(), settings)

        assert plan.response_type == ResponseType.DEFAULT
        assert plan.used_fallback is False
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_business_hours_only_llm(self, limiter, bot_settings, llm_settings):
        provider = StubProvider(llm_settings)
        gate = AutoReplyGate(limiter, await ready_generator(llm_settings, provider))
        llm = {**llm_settings.model_dump(), "only_during_business_hours": True}
        settings = bot_settings.merged({
            "llm": llm,
            "working_hours": {"start": "09:00", "end": "17:00"},
        })

        plan = await gate.evaluate(inbound(timestamp=at(19)), settings)

        assert plan.response_type == ResponseType.AFTER_HOURS
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_generation_errors_never_escape(self, limiter, bot_settings, llm_settings):
        provider = StubProvider(llm_settings, error=GenerationError("bad response"))
        gate = AutoReplyGate(limiter, await ready_generator(llm_settings, provider))
        settings = bot_settings.merged({"llm": llm_settings.model_dump()})

        plan = await gate.evaluate(inbound(), settings)

        assert plan is not None
        assert plan.response_type == ResponseType.DEFAULT
