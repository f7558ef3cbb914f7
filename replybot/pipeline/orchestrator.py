"""
Pipeline orchestrator for replybot.

Provides:
- Explicit init()/cleanup() lifecycle around one set of components
- Inbound flow: persist, aggregate, broadcast, auto-reply
- Outbound sends with failure recording, single or bulk
- Delivery acknowledgements
- Periodic maintenance (rate-limit purge, analytics snapshot, flush)
"""

import asyncio
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable

from loguru import logger

from replybot.auto_reply.gate import AutoReplyGate
from replybot.auto_reply.queue import MessageQueue, QueueConfig
from replybot.auto_reply.rate_limit import RateLimiter
from replybot.bus.broadcast import EventBroadcaster, Topic, create_broadcaster
from replybot.bus.events import (
    AutoReplyRecord,
    Message,
    MessageStatus,
    status_from_ack,
    utcnow,
)
from replybot.channels.supervisor import ClientFactory, ConnectionSupervisor
from replybot.config.schema import BotSettings, Config
from replybot.errors import SendError, TransportNotReady
from replybot.providers.generator import ResponseGenerator
from replybot.storage.base import Persistence
from replybot.storage.json_store import JsonStore
from replybot.tracking.analytics import TIME_RANGES, AnalyticsAggregator
from replybot.tracking.replies import ReplyLog

SNAPSHOT_KIND = "snapshot"
MAX_BULK_RECIPIENTS = 50


class Pipeline:
    """
    Wires the supervisor, gate, generator, limiter and aggregator.

    The pipeline is the only writer of the rate limiter and the
    analytics aggregator. All work runs on one event loop; per-sender
    lanes keep replies in arrival order.
    """

    def __init__(
        self,
        config: Config,
        store: Persistence,
        client_factory: ClientFactory,
        broadcaster: EventBroadcaster | None = None,
        generator: ResponseGenerator | None = None,
        queue_config: QueueConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.store = store
        self.broadcaster = broadcaster or create_broadcaster(
            config.broadcast.webhook_url,
            config.broadcast.timeout,
        )

        self.limiter = RateLimiter(config.bot.llm.rate_limit_per_hour, clock=clock)
        self.aggregator = AnalyticsAggregator(
            timezone_name=config.analytics.timezone,
            error_log_size=config.analytics.error_log_size,
            max_contacts=config.analytics.max_contacts,
        )
        self.replies = ReplyLog(config.analytics.reply_log_size)
        self.generator = generator or ResponseGenerator(config.bot.llm)
        self.gate = AutoReplyGate(self.limiter, self.generator)

        self.supervisor = ConnectionSupervisor(
            client_factory,
            config=config.connection,
            broadcaster=self.broadcaster,
            store=store,
        )
        self.supervisor.set_message_handler(self.submit)
        self.supervisor.set_ack_handler(self.handle_ack)

        self.queue: MessageQueue[Message] = MessageQueue(self.handle_inbound, queue_config)

        self._maintenance_task: asyncio.Task | None = None
        self._running = False
        self._started_at: datetime | None = None

    @classmethod
    def from_config(
        cls,
        config: Config,
        client_factory: ClientFactory,
        **kwargs: Any,
    ) -> "Pipeline":
        """Build a pipeline backed by a JsonStore at the configured data path."""
        store = JsonStore(
            data_path=config.storage.path,
            persist=config.storage.persist,
            settings=config.bot,
            max_auto_replies=config.analytics.reply_log_size,
        )
        return cls(config, store, client_factory, **kwargs)

    @property
    def is_running(self) -> bool:
        return self._running

    # Lifecycle

    async def init(self, connect: bool = True) -> None:
        """
        Restore state, initialize the generator and connect.

        Args:
            connect: Start the transport session as well.
        """
        if self._running:
            return

        logger.info("Starting replybot pipeline")

        snapshot = await self.store.load_analytics(SNAPSHOT_KIND)
        if snapshot:
            self.aggregator.restore(snapshot)
        else:
            self.aggregator.rebuild(await self.store.get_messages())

        self.replies.extend(await self.store.get_auto_replies())

        settings = await self.store.get_settings()
        self.limiter.limit_per_hour = settings.llm.rate_limit_per_hour
        await self.generator.initialize(settings.llm)

        self._maintenance_task = asyncio.create_task(self._maintenance_loop())
        self._running = True
        self._started_at = datetime.now()

        if connect:
            await self.supervisor.connect()

    async def cleanup(self) -> None:
        """Stop workers, save analytics and release every component."""
        if not self._running:
            return

        logger.info("Stopping replybot pipeline")
        self._running = False

        if self._maintenance_task:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None

        await self.supervisor.cleanup()
        await self.queue.close()
        await self.run_maintenance()
        await self.generator.close()
        await self.broadcaster.close()
        self.limiter.reset()

    async def __aenter__(self) -> "Pipeline":
        await self.init()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.cleanup()

    # Inbound

    async def submit(self, message: Message) -> bool:
        """Queue an inbound message on its sender's lane."""
        lane = message.contact or message.chat_id or message.id
        return self.queue.add(lane, message)

    async def handle_inbound(self, message: Message) -> None:
        """
        Process one inbound message to completion.

        Persist, aggregate and broadcast it, then run the auto-reply
        path. Nothing raised here reaches the transport.
        """
        logger.debug(f"Received message {message.id} from {message.contact}")

        await self._save_message(message)
        self.aggregator.record(message)
        self.broadcaster.emit(Topic.MESSAGE_NEW, message.to_dict())

        try:
            await self._auto_reply(message)
        except Exception as e:
            logger.error(f"Auto-reply to {message.contact} failed unexpectedly: {e}")

    async def _auto_reply(self, message: Message) -> None:
        settings = await self.current_settings()

        plan = await self.gate.evaluate(message, settings)
        if plan is None:
            return

        recipient = message.chat_id if message.is_group and message.chat_id else message.sender
        delivered = True
        try:
            await self.send_message(recipient, plan.text)
        except SendError as e:
            delivered = False
            logger.warning(f"Auto-reply to {recipient} could not be sent: {e}")
            await self._send_failure_notice(recipient, settings)

        record = AutoReplyRecord(
            sender=message.sender,
            sender_name=message.sender_name,
            request_text=message.content,
            response_text=plan.text,
            response_type=plan.response_type,
            is_group=message.is_group,
            is_working_hours=plan.is_working_hours,
            delivered=delivered,
        )
        self.replies.add(record)
        try:
            await self.store.save_auto_reply(record)
        except Exception as e:
            logger.error(f"Failed to save auto-reply record: {e}")

        self.broadcaster.emit(Topic.AUTO_REPLY, record.to_dict())
        logger.info(f"Auto-reply ({plan.response_type.value}) to {message.contact}")

    async def _send_failure_notice(self, recipient: str, settings: BotSettings) -> None:
        # One attempt only; a failing notice is not retried
        if not settings.failure_notice:
            return
        try:
            await self.send_message(recipient, settings.failure_notice)
        except SendError as e:
            logger.error(f"Failure notice to {recipient} could not be sent: {e}")

    # Outbound

    async def send_message(
        self,
        recipient: str,
        content: str,
        media: str | None = None,
    ) -> Message:
        """
        Send a message through the transport.

        Every attempt is persisted and aggregated; failures become a
        `failed` message carrying the error text.

        Returns:
            The stored outbound message.

        Raises:
            TransportNotReady: The transport is not connected.
            SendError: The transport rejected the message.
        """
        client = self.supervisor.client
        if not self.supervisor.is_ready or client is None:
            error = "Transport client is not ready"
            await self._record_failed_send(recipient, content, media, error)
            raise TransportNotReady(error, recipient)

        logger.debug(f"Sending message to {recipient}")
        try:
            receipt = await client.send(recipient, content, media)
        except Exception as e:
            await self._record_failed_send(recipient, content, media, str(e))
            raise SendError(f"Failed to send message: {e}", recipient) from e

        message = Message.outgoing(
            recipient,
            content,
            message_id=receipt.message_id,
            kind="media" if media else "text",
            has_media=bool(media),
            media_path=media,
            timestamp=receipt.timestamp,
        )
        await self._save_message(message)
        self.aggregator.record(message)
        self.broadcaster.emit(Topic.MESSAGE_SENT, message.to_dict())
        return message

    async def _record_failed_send(
        self,
        recipient: str,
        content: str,
        media: str | None,
        error: str,
    ) -> Message:
        logger.warning(f"Send to {recipient} failed: {error}")
        message = Message.outgoing(
            recipient,
            content,
            message_id=f"failed_{uuid.uuid4().hex[:12]}",
            status=MessageStatus.FAILED,
            kind="media" if media else "text",
            has_media=bool(media),
            media_path=media,
            error=error,
        )
        await self._save_message(message)
        self.aggregator.record(message)
        self.broadcaster.emit(Topic.MESSAGE_FAILED, message.to_dict())
        return message

    async def send_bulk(
        self,
        recipients: list[str],
        content: str,
        media: str | None = None,
    ) -> dict[str, Any]:
        """
        Send the same message to several recipients, one at a time.

        A failed recipient does not stop the batch; its error is
        reported in the results and recorded like any failed send.

        Returns:
            Per-recipient results in input order plus a summary with
            total, successful and failed counts.

        Raises:
            ValueError: No recipients, or more than MAX_BULK_RECIPIENTS.
            TransportNotReady: The transport is not connected.
        """
        if not recipients:
            raise ValueError("Recipients list is required")
        if len(recipients) > MAX_BULK_RECIPIENTS:
            raise ValueError(f"Maximum {MAX_BULK_RECIPIENTS} recipients allowed per bulk send")
        if not self.supervisor.is_ready:
            raise TransportNotReady("Transport client is not ready")

        results: list[dict[str, Any]] = []
        for index, recipient in enumerate(recipients):
            if index:
                await asyncio.sleep(self.config.connection.bulk_send_delay)
            try:
                message = await self.send_message(recipient, content, media)
                results.append({"recipient": recipient, "success": True, "messageId": message.id})
            except SendError as e:
                results.append({"recipient": recipient, "success": False, "error": str(e)})

        successful = sum(1 for r in results if r["success"])
        logger.info(f"Bulk send finished: {successful}/{len(results)} delivered to transport")
        return {
            "results": results,
            "summary": {
                "total": len(results),
                "successful": successful,
                "failed": len(results) - successful,
            },
        }

    async def handle_ack(self, message_id: str, ack: int) -> MessageStatus:
        """Apply a transport delivery acknowledgement."""
        status = status_from_ack(ack)
        logger.debug(f"Message {message_id} status: {status.value}")

        await self.store.update_message_status(message_id, status)
        self.broadcaster.emit(Topic.MESSAGE_STATUS, {
            "messageId": message_id,
            "status": status.value,
            "timestamp": utcnow().isoformat(),
        })
        return status

    async def _save_message(self, message: Message) -> None:
        try:
            await self.store.save_message(message)
        except Exception as e:
            logger.error(f"Failed to save message {message.id}: {e}")

    # Settings

    async def current_settings(self) -> BotSettings:
        """Read settings and push LLM changes into the generator and limiter."""
        settings = await self.store.get_settings()
        await self._apply_llm_settings(settings)
        return settings

    async def update_settings(self, updates: dict[str, Any] | BotSettings) -> BotSettings:
        """Persist a settings update and apply it."""
        settings = await self.store.update_settings(updates)
        await self._apply_llm_settings(settings)
        return settings

    async def _apply_llm_settings(self, settings: BotSettings) -> None:
        self.limiter.limit_per_hour = settings.llm.rate_limit_per_hour
        if settings.llm != self.generator.settings:
            await self.generator.update_settings(settings.llm)

    # Analytics

    async def get_analytics(self, time_range: str = "week") -> dict[str, Any]:
        """Analytics report for day, week, month or quarter."""
        now = utcnow()
        span = timedelta(days=TIME_RANGES.get(time_range, TIME_RANGES["week"]))
        messages = await self.store.get_messages(since=now - 2 * span)
        return self.aggregator.summarize(messages, time_range, now)

    def get_reply_stats(self, days: int = 30) -> dict[str, Any]:
        """Auto-reply usage over the last `days` days."""
        return self.replies.summary(days)

    async def reset_analytics(self) -> None:
        """Clear aggregates and the stored snapshot."""
        self.aggregator.reset()
        await self.store.save_analytics(SNAPSHOT_KIND, self.aggregator.snapshot())
        logger.info("Analytics reset")

    # Maintenance

    async def _maintenance_loop(self) -> None:
        interval = self.config.analytics.maintenance_interval_seconds
        while True:
            await asyncio.sleep(interval)
            await self.run_maintenance()

    async def run_maintenance(self) -> None:
        """Purge expired rate-limit buckets, snapshot analytics, flush storage."""
        try:
            self.limiter.cleanup()
            await self.store.save_analytics(SNAPSHOT_KIND, self.aggregator.snapshot())
            await self.store.flush()
            logger.debug("Periodic maintenance completed")
        except Exception as e:
            logger.error(f"Error in periodic maintenance: {e}")

    def get_status(self) -> dict[str, Any]:
        """Get pipeline status."""
        return {
            "running": self._running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "connection": self.supervisor.get_status(),
            "generator": self.generator.get_status(),
            "gate": self.gate.get_stats(),
            "queue": self.queue.get_stats(),
            "analytics": self.aggregator.get_stats(),
            "auto_replies": len(self.replies),
        }
