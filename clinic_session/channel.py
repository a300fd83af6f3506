"""Live-update channel with automatic reconnection.

The channel keeps one websocket open to the backend and fans inbound events
out to subscribers. Any loss of the connection, including a failed attempt
to open it, schedules a new attempt after a fixed delay. Only ``disconnect``
ends the cycle.

Usage:
    channel = ChannelClient("wss://reception.local/ws")
    channel.subscribe(ChannelMessageType.PATIENT_CREATED, on_patient_created)
    await channel.connect()
    ...
    await channel.disconnect()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from enum import Enum
from typing import Any

from .config import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_PING_INTERVAL,
    DEFAULT_RECONNECT_INTERVAL,
)
from .errors import (
    ChannelParseError,
    ClinicClientError,
    ClinicConnectionError,
    ClinicHandshakeError,
    ClinicTimeout,
)
from .protocol import (
    ChannelEvent,
    ChannelMessageType,
    build_envelope,
    message_type_key,
    parse_envelope,
)
from .ws_client import ChannelSocket, WsFrameType

_LOGGER = logging.getLogger(__name__)

Subscriber = Callable[[Any], Awaitable[None] | None]


class ChannelState(Enum):
    """Connection lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ChannelClient:
    """Persistent websocket client dispatching typed events to subscribers."""

    def __init__(
        self,
        url: str,
        *,
        reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL,
        ping_interval: int | None = DEFAULT_PING_INTERVAL,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        """Initialize the channel.

        Args:
            url: Websocket address
            reconnect_interval: Constant delay before each reconnect (seconds)
            ping_interval: Keepalive ping interval (seconds)
            connect_timeout: Timeout for opening the websocket (seconds)
        """
        self.url = url
        self._reconnect_interval = reconnect_interval
        self._ping_interval = ping_interval
        self._connect_timeout = connect_timeout

        self._ws: ChannelSocket | None = None
        self._state = ChannelState.DISCONNECTED
        self._listen_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        # Serializes opens so only one handshake can install a socket
        self._open_lock = asyncio.Lock()
        self._shutdown_requested = False
        self._reconnect_attempts = 0

        self._subscribers: dict[str, list[Subscriber]] = {}
        self._state_callback: Callable[[ChannelState], None] | None = None

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ChannelState.CONNECTED

    @property
    def reconnect_interval(self) -> float:
        return self._reconnect_interval

    @property
    def reconnect_attempts(self) -> int:
        """Number of reconnects scheduled since the last explicit connect."""
        return self._reconnect_attempts

    async def connect(self) -> bool:
        """Open the channel and keep it open until ``disconnect``.

        A failed open is not raised; it schedules a reconnect like any other
        connection loss.

        Returns:
            True if the websocket is open when this returns.
        """
        self._shutdown_requested = False
        self._reconnect_attempts = 0
        async with self._open_lock:
            await self._cancel_reconnect()
            return await self._open()

    async def disconnect(self) -> None:
        """Close the channel and suppress any pending reconnect."""
        _LOGGER.info("[%s] Disconnecting channel", self.url)
        self._shutdown_requested = True
        await self._cancel_reconnect()
        await self._drop_connection()
        self._set_state(ChannelState.DISCONNECTED)

    async def send(
        self, message_type: str | ChannelMessageType, data: Any = None
    ) -> None:
        """Send an envelope to the backend.

        Raises:
            ClinicConnectionError: If the channel is not connected.
        """
        if self._ws is None or not self.is_connected:
            raise ClinicConnectionError("Channel is not connected")
        await self._ws.send_json(build_envelope(message_type, data))

    # -------------------------------------------------------------------------
    # Public API: Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(
        self, message_type: str | ChannelMessageType, callback: Subscriber
    ) -> Callable[[], None]:
        """Register a callback for one message type.

        Callbacks receive the envelope's ``data`` and run in registration
        order. Coroutine callbacks are awaited before the next one runs.

        Returns:
            A function that removes this registration.
        """
        key = message_type_key(message_type)
        self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key)
            if callbacks is None:
                return
            with suppress(ValueError):
                callbacks.remove(callback)
            if not callbacks:
                del self._subscribers[key]

        return unsubscribe

    def on_state_changed(self, callback: Callable[[ChannelState], None]) -> None:
        """Register callback for connection state changes."""
        self._state_callback = callback

    async def handle_message(self, raw: str) -> None:
        """Decode one inbound text frame and dispatch it.

        Malformed frames are logged and dropped.
        """
        try:
            event = parse_envelope(raw)
        except ChannelParseError as err:
            _LOGGER.warning("[%s] Dropping malformed frame: %s", self.url, err)
            return
        await self.dispatch(event)

    async def dispatch(self, event: ChannelEvent) -> None:
        """Invoke every subscriber registered for the event's type."""
        callbacks = list(self._subscribers.get(event.type, ()))
        if not callbacks:
            _LOGGER.debug("[%s] No subscribers for %s", self.url, event.type)
            return

        for callback in callbacks:
            try:
                result = callback(event.data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _LOGGER.exception(
                    "[%s] Subscriber for %s raised", self.url, event.type
                )

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: ChannelState) -> None:
        """Update connection state and notify callback."""
        if self._state is not state:
            _LOGGER.debug(
                "[%s] State: %s → %s", self.url, self._state.value, state.value
            )
            self._state = state
            if self._state_callback:
                try:
                    self._state_callback(state)
                except Exception:
                    _LOGGER.exception("[%s] State callback raised", self.url)

    async def _open(self) -> bool:
        if self._shutdown_requested:
            _LOGGER.debug("[%s] Connection aborted: shutdown requested", self.url)
            return False

        await self._drop_connection()
        self._set_state(ChannelState.CONNECTING)
        _LOGGER.info(
            "[%s] Connecting (attempt #%d)", self.url, self._reconnect_attempts + 1
        )

        socket = ChannelSocket()
        try:
            await socket.connect(
                self.url,
                ping_interval=self._ping_interval,
                timeout=self._connect_timeout,
            )
        except ClinicTimeout:
            _LOGGER.warning("[%s] Connection timeout", self.url)
            self._handle_connection_lost()
            return False
        except ClinicHandshakeError as err:
            _LOGGER.error("[%s] WebSocket handshake failed: %s", self.url, err)
            self._handle_connection_lost()
            return False
        except ClinicConnectionError as err:
            _LOGGER.warning("[%s] Connection failed: %s", self.url, err)
            self._handle_connection_lost()
            return False

        if self._shutdown_requested or self._ws is not None:
            # disconnect() ran, or another socket was installed, mid-handshake
            await socket.close()
            return False

        self._ws = socket
        self._set_state(ChannelState.CONNECTED)
        _LOGGER.info("[%s] Channel connected", self.url)
        self._listen_task = asyncio.create_task(self._listen(socket))
        return True

    def _handle_connection_lost(self) -> None:
        """Mark the channel down and schedule a reconnect after the fixed delay."""
        self._set_state(ChannelState.DISCONNECTED)
        if self._shutdown_requested or self._reconnect_task is not None:
            return

        self._reconnect_attempts += 1
        _LOGGER.info(
            "[%s] Reconnecting in %.1fs (attempt %d)",
            self.url,
            self._reconnect_interval,
            self._reconnect_attempts,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    async def _reconnect_after_delay(self) -> None:
        try:
            await asyncio.sleep(self._reconnect_interval)
            async with self._open_lock:
                # Released before opening so a failed open can schedule the next one
                self._reconnect_task = None
                await self._open()
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Reconnect cancelled", self.url)
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    async def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _drop_connection(self) -> None:
        """Stop the listener and close the current websocket, if any."""
        listen_task = self._listen_task
        self._listen_task = None
        if listen_task is not None and listen_task is not asyncio.current_task():
            listen_task.cancel()
            with suppress(asyncio.CancelledError):
                await listen_task

        ws = self._ws
        self._ws = None
        if ws is not None:
            try:
                await asyncio.wait_for(ws.close(), timeout=2.0)
            except TimeoutError:
                _LOGGER.warning("[%s] WebSocket close timed out", self.url)

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _listen(self, socket: ChannelSocket) -> None:
        """Dispatch frames until the connection ends."""
        message_count = 0
        reconnect_required = False

        try:
            async for frame in socket:
                if frame.type is WsFrameType.TEXT:
                    message_count += 1
                    await self.handle_message(frame.data or "")
                elif frame.type is WsFrameType.CLOSED:
                    _LOGGER.info("[%s] Channel closed by server", self.url)
                    reconnect_required = True
                    break
                elif frame.type is WsFrameType.ERROR:
                    _LOGGER.error("[%s] Channel error: %s", self.url, frame.data)
                    reconnect_required = True
                    break

        except asyncio.CancelledError:
            _LOGGER.debug(
                "[%s] Listener cancelled (%d messages)", self.url, message_count
            )
            raise
        except ClinicClientError as err:
            _LOGGER.warning("[%s] Client error: %s", self.url, err)
            reconnect_required = True
        except Exception:
            _LOGGER.exception("[%s] Listener failed", self.url)
            reconnect_required = True
        finally:
            if reconnect_required and self._ws is socket:
                self._ws = None
                self._listen_task = None
                self._handle_connection_lost()
