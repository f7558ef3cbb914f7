"""
Pytest configuration and shared fixtures for replybot tests.
"""

import asyncio
from typing import Any

import pytest

from replybot.bus.broadcast import EventBroadcaster
from replybot.channels.base import DeliveryReceipt, TransportClient
from replybot.config.schema import (
    BotSettings,
    Config,
    ConnectionConfig,
    LLMSettings,
    WorkingHoursConfig,
)
from replybot.providers.base import LLMProvider, GenerationContext


class FakeTransport(TransportClient):
    """Transport double that records sends and lets tests fire events."""

    name = "fake"

    def __init__(self, connect_error: Exception | None = None):
        super().__init__()
        self.connect_error = connect_error
        self.connect_calls = 0
        self.connected = False
        self.destroyed = False
        self.logged_out = False
        self.sent: list[tuple[str, str, str | None]] = []
        self.send_attempts = 0
        self.fail_next = 0  # Number of upcoming sends that raise

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    async def destroy(self) -> None:
        self.destroyed = True
        self.connected = False

    async def logout(self) -> None:
        self.logged_out = True
        await self.destroy()

    async def send(self, recipient: str, content: str, media: str | None = None) -> DeliveryReceipt:
        self.send_attempts += 1
        if self.fail_next > 0:
            self.fail_next -= 1
            raise ConnectionError("network connection lost")
        self.sent.append((recipient, content, media))
        return DeliveryReceipt(message_id=f"out_{self.send_attempts}")


class TransportFactory:
    """Client factory that keeps every client it builds."""

    def __init__(self):
        self.clients: list[FakeTransport] = []
        self.connect_error: Exception | None = None

    def __call__(self) -> FakeTransport:
        client = FakeTransport(connect_error=self.connect_error)
        self.clients.append(client)
        return client

    @property
    def latest(self) -> FakeTransport:
        return self.clients[-1]


class RecordingBroadcaster(EventBroadcaster):
    """Keeps every emitted event."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    def emit(self, topic: str, payload: dict[str, Any]) -> None:
        name = topic.value if hasattr(topic, "value") else topic
        self.events.append((name, payload))

    def payloads(self, topic: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == topic]

    async def close(self) -> None:
        self.closed = True


class StubProvider(LLMProvider):
    """Scriptable provider: fixed reply, optional delay, error or hang."""

    name = "stub"

    def __init__(
        self,
        settings: LLMSettings,
        reply: str = "Generated reply",
        delay: float = 0.0,
        error: Exception | None = None,
        hang: bool = False,
        probe_ok: bool = True,
    ):
        super().__init__(settings)
        self.reply = reply
        self.delay = delay
        self.error = error
        self.hang = hang
        self.probe_ok = probe_ok
        self.calls: list[tuple[str, str, GenerationContext | None]] = []
        self.cancelled = False
        self.closed = False

    async def complete(
        self,
        system_prompt: str,
        user_text: str,
        context: GenerationContext | None = None,
    ) -> str:
        self.calls.append((system_prompt, user_text, context))
        try:
            if self.hang:
                await asyncio.Event().wait()
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error:
            raise self.error
        return self.reply.format(text=user_text)

    async def test_connection(self) -> bool:
        if not self.probe_ok:
            raise ConnectionError("provider unreachable")
        return True

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport_factory():
    """Factory producing FakeTransport clients."""
    return TransportFactory()


@pytest.fixture
def broadcaster():
    """Broadcaster that records events."""
    return RecordingBroadcaster()


@pytest.fixture
def llm_settings():
    """Enabled LLM settings with a short timeout."""
    return LLMSettings(
        enabled=True,
        provider="openai",
        model="gpt-4o-mini",
        api_key="test-key",
        timeout_ms=200,
        rate_limit_per_hour=60,
    )


@pytest.fixture
def bot_settings():
    """Auto-reply settings whose working window covers the whole day."""
    return BotSettings(
        auto_reply=True,
        auto_reply_message="Thanks, we got your message.",
        after_hours_message="We are closed right now.",
        failure_notice="Sorry, something went wrong.",
        working_hours=WorkingHoursConfig(enabled=False, start="00:00", end="23:59"),
    )


@pytest.fixture
def config(bot_settings):
    """Config with instant retries and no persistence."""
    return Config(
        bot=bot_settings,
        connection=ConnectionConfig(
            max_retries=3,
            auth_retry_delay=0,
            reconnect_delay=0,
            restart_delay=0,
            bulk_send_delay=0,
        ),
    )
