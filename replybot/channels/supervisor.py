"""
Connection supervisor for replybot.

Provides:
- State machine over the transport lifecycle
- Bounded-retry client rebuild after authentication failures
- Bounded-retry reconnection after disconnects
- Status snapshots on every transition
"""

import asyncio
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from loguru import logger

from replybot.bus.broadcast import EventBroadcaster, LogBroadcaster, Topic
from replybot.bus.events import Message, utcnow
from replybot.channels.base import TransportClient, TransportListener
from replybot.config.schema import ConnectionConfig

if TYPE_CHECKING:
    from replybot.storage.base import Persistence


class ConnectionState(str, Enum):
    """Transport connection states."""
    DISCONNECTED = "disconnected"
    QR_PENDING = "qr_pending"                            # Waiting for the pairing code to be scanned
    AUTHENTICATED = "authenticated"                      # Session accepted, not yet ready
    CONNECTED = "connected"                              # Ready to send and receive
    AUTH_FAILED = "auth_failed"                          # Rebuild scheduled
    AUTH_FAILED_TERMINAL = "auth_failed_max_retries"     # Operator must intervene
    RECONNECT_FAILED = "reconnect_failed_max_retries"    # Operator must intervene
    LOGGED_OUT = "logged_out"


TERMINAL_STATES = {
    ConnectionState.AUTH_FAILED_TERMINAL,
    ConnectionState.RECONNECT_FAILED,
    ConnectionState.LOGGED_OUT,
}

LOGOUT_REASON = "LOGOUT"

ClientFactory = Callable[[], TransportClient]
MessageHandler = Callable[[Message], Awaitable[None]]
AckHandler = Callable[[str, int], Awaitable[None]]


class ConnectionSupervisor(TransportListener):
    """
    Owns the transport client and keeps it connected.

    Transitions are driven only by transport events. Automatic retries
    share one counter capped at `max_retries`; it resets when the client
    becomes ready and before every operator action (reconnect,
    disconnect, restart).
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        config: ConnectionConfig | None = None,
        broadcaster: EventBroadcaster | None = None,
        store: "Persistence | None" = None,
    ):
        self.config = config or ConnectionConfig()
        self._client_factory = client_factory
        self._broadcaster = broadcaster or LogBroadcaster()
        self._store = store

        self._client: TransportClient | None = None
        self._state = ConnectionState.DISCONNECTED
        self._is_ready = False
        self._client_info: dict[str, Any] | None = None
        self._qr_code: str | None = None
        self._retry_count = 0
        self._auto_reconnect = True
        self._last_error: str | None = None

        # Scheduled retries
        self._tasks: set[asyncio.Task] = set()

        # Handlers (set by the pipeline)
        self._message_handler: MessageHandler | None = None
        self._ack_handler: AckHandler | None = None

        # Stats
        self._auth_failures = 0
        self._disconnects = 0
        self._rebuilds = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._is_ready

    @property
    def client(self) -> TransportClient | None:
        return self._client

    @property
    def client_info(self) -> dict[str, Any] | None:
        return self._client_info

    @property
    def retry_count(self) -> int:
        return self._retry_count

    def set_message_handler(self, handler: MessageHandler) -> None:
        """Set the handler for inbound messages."""
        self._message_handler = handler

    def set_ack_handler(self, handler: AckHandler) -> None:
        """
        Set the handler for delivery acknowledgements.

        Args:
            handler: Async function(message_id, ack_level).
        """
        self._ack_handler = handler

    # Lifecycle

    async def connect(self) -> bool:
        """
        Build the client if needed and start the session.

        Returns:
            True if the transport accepted the connect request.
        """
        self._auto_reconnect = True
        if self._client is None:
            self._client = self._build_client()

        logger.info(f"Connecting transport ({self.config.session_name})")
        try:
            await self._client.connect()
        except Exception as e:
            self._last_error = str(e)
            logger.error(f"Transport connect failed: {e}")
            self._set_state(ConnectionState.DISCONNECTED)
            return False
        return True

    async def reconnect(self) -> bool:
        """Operator reconnect: fresh retry budget, fresh client."""
        logger.info("Manual reconnection requested")
        self._retry_count = 0
        self._auto_reconnect = True
        await self._cancel_scheduled()
        await self._destroy_client()
        return await self.connect()

    async def disconnect(self) -> None:
        """Operator disconnect. Suppresses automatic reconnection."""
        logger.info("Manual disconnection requested")
        self._retry_count = 0
        self._auto_reconnect = False
        await self._cancel_scheduled()
        await self._destroy_client()

        self._is_ready = False
        self._client_info = None
        self._qr_code = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def restart(self) -> bool:
        """Disconnect, wait `restart_delay`, connect again."""
        logger.info("Restart requested")
        await self.disconnect()
        await asyncio.sleep(self.config.restart_delay)
        self._retry_count = 0
        return await self.connect()

    async def logout(self) -> None:
        """End the session on the server side."""
        logger.info("Logout requested")
        self._auto_reconnect = False
        await self._cancel_scheduled()

        client, self._client = self._client, None
        if client is not None:
            try:
                await client.logout()
            except Exception as e:
                logger.warning(f"Transport logout failed: {e}")

        self._is_ready = False
        self._client_info = None
        self._qr_code = None
        self._set_state(ConnectionState.LOGGED_OUT)

    async def cleanup(self) -> None:
        """Cancel pending retries and release the client."""
        self._auto_reconnect = False
        await self._cancel_scheduled()
        await self._destroy_client()
        self._is_ready = False

    async def wait_idle(self) -> None:
        """Wait until no retry is scheduled or running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Transport events

    async def on_qr(self, payload: str) -> None:
        logger.info("Pairing code issued, waiting for scan")
        self._qr_code = payload
        self._set_state(ConnectionState.QR_PENDING)
        self._broadcaster.emit(Topic.BOT_QR, {
            "qrCode": payload,
            "status": self._state.value,
            "message": "Scan the pairing code with the mobile app",
        })
        await self._save("qr_code", {"qrCode": payload, "timestamp": utcnow().isoformat()})

    async def on_authenticated(self) -> None:
        logger.info("Transport authenticated")
        self._qr_code = None
        self._set_state(ConnectionState.AUTHENTICATED)

    async def on_ready(self, client_info: dict[str, Any]) -> None:
        logger.info("Transport ready")
        self._is_ready = True
        self._retry_count = 0
        self._qr_code = None
        self._client_info = {**client_info, "connectedAt": utcnow().isoformat()}

        self._broadcaster.emit(Topic.BOT_READY, {
            "status": ConnectionState.CONNECTED.value,
            "clientInfo": self._client_info,
        })
        self._set_state(ConnectionState.CONNECTED)
        await self._save("client_info", self._client_info)

    async def on_auth_failure(self, reason: str) -> None:
        logger.error(f"Transport authentication failed: {reason}")
        self._auth_failures += 1
        self._is_ready = False
        self._last_error = reason
        self._retry_count += 1

        if self._retry_count >= self.config.max_retries:
            logger.error(f"Max authentication retries reached ({self.config.max_retries})")
            self._set_state(ConnectionState.AUTH_FAILED_TERMINAL)
            return

        self._set_state(ConnectionState.AUTH_FAILED)
        logger.info(f"Retrying authentication ({self._retry_count}/{self.config.max_retries})")
        self._schedule(self._rebuild_after(self.config.auth_retry_delay))

    async def on_disconnected(self, reason: str) -> None:
        logger.warning(f"Transport disconnected: {reason}")
        self._disconnects += 1
        self._is_ready = False
        self._client_info = None
        self._last_error = reason

        # Session ended from the phone; a reconnect would only show a new pairing code
        if reason.upper() == LOGOUT_REASON:
            self._auto_reconnect = False
            self._set_state(ConnectionState.LOGGED_OUT)
            return

        self._set_state(ConnectionState.DISCONNECTED)
        if self._auto_reconnect:
            self._schedule_reconnect()

    async def on_message(self, message: Message) -> None:
        if self._message_handler is None:
            logger.debug(f"No message handler, dropping {message.id}")
            return
        try:
            await self._message_handler(message)
        except Exception as e:
            logger.error(f"Error processing incoming message {message.id}: {e}")

    async def on_message_ack(self, message_id: str, ack: int) -> None:
        if self._ack_handler is None:
            return
        try:
            await self._ack_handler(message_id, ack)
        except Exception as e:
            logger.error(f"Error updating message status for {message_id}: {e}")

    # Retry machinery

    def _schedule_reconnect(self) -> None:
        if self._retry_count >= self.config.max_retries:
            logger.error(f"Max reconnection attempts reached ({self.config.max_retries})")
            self._set_state(ConnectionState.RECONNECT_FAILED)
            return

        self._retry_count += 1
        logger.info(f"Attempting to reconnect ({self._retry_count}/{self.config.max_retries})")
        self._schedule(self._reconnect_after(self.config.reconnect_delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if not self._auto_reconnect:
            return
        try:
            await self._reinitialize()
        except Exception as e:
            self._last_error = str(e)
            logger.error(f"Reconnection failed: {e}")
            self._schedule_reconnect()

    async def _rebuild_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self._reinitialize()
        except Exception as e:
            logger.error(f"Client rebuild failed: {e}")
            await self.on_auth_failure(str(e))

    async def _reinitialize(self) -> None:
        """Replace the client with a fresh one and connect it."""
        await self._destroy_client()
        self._client = self._build_client()
        self._rebuilds += 1
        await self._client.connect()

    def _build_client(self) -> TransportClient:
        client = self._client_factory()
        client.bind(self)
        return client

    async def _destroy_client(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.destroy()
        except Exception as e:
            logger.warning(f"Error destroying transport client: {e}")

    def _schedule(self, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _cancel_scheduled(self) -> None:
        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _save(self, key: str, value: dict[str, Any]) -> None:
        if self._store is None:
            return
        try:
            await self._store.save_data(key, value)
        except Exception as e:
            logger.warning(f"Failed to persist {key}: {e}")

    # Status

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            logger.debug(f"Connection state: {self._state.value} -> {state.value}")
        self._state = state
        self._broadcaster.emit(Topic.BOT_STATUS, self.snapshot())

    def snapshot(self) -> dict[str, Any]:
        """Status payload broadcast on every transition."""
        return {
            "status": self._state.value,
            "isReady": self._is_ready,
            "clientInfo": self._client_info,
            "timestamp": utcnow().isoformat(),
        }

    def get_status(self) -> dict[str, Any]:
        """Get supervisor status."""
        return {
            **self.snapshot(),
            "qrCode": self._qr_code,
            "retryCount": self._retry_count,
            "maxRetries": self.config.max_retries,
            "isTerminal": self._state in TERMINAL_STATES,
            "lastError": self._last_error,
            "authFailures": self._auth_failures,
            "disconnects": self._disconnects,
            "rebuilds": self._rebuilds,
        }
