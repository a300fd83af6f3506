"""WebSocket client wrapper for the clinic live-update channel."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import (
    ConnectionClosed,
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
    WebSocketException,
)

from .config import DEFAULT_CONNECT_TIMEOUT, DEFAULT_PING_INTERVAL
from .errors import ClinicConnectionError, ClinicHandshakeError, ClinicTimeout

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class WsFrameType(Enum):
    """Normalized WebSocket frame types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class WsFrame:
    """Normalized WebSocket frame."""

    type: WsFrameType
    data: str | None = None


async def connect_websocket(
    url: str,
    *,
    ping_interval: int | None = DEFAULT_PING_INTERVAL,
    timeout: float = DEFAULT_CONNECT_TIMEOUT,
) -> ClientConnection:
    """Open the channel websocket.

    ``timeout`` bounds the whole opening handshake, TLS included. A rejected
    upgrade reports the HTTP status the backend answered with, which is how
    an unauthenticated or misrouted channel address shows up.

    Raises:
        ClinicTimeout: If the handshake did not finish in time.
        ClinicHandshakeError: If the address is invalid or the upgrade failed.
        ClinicConnectionError: If the backend could not be reached.
    """
    try:
        return await connect(url, open_timeout=timeout, ping_interval=ping_interval)
    except TimeoutError as err:
        raise ClinicTimeout(
            f"Channel handshake timed out after {timeout:g}s"
        ) from err
    except InvalidURI as err:
        raise ClinicHandshakeError(f"Invalid channel address: {url}") from err
    except InvalidStatus as err:
        raise ClinicHandshakeError(
            f"Channel upgrade rejected with HTTP {err.response.status_code}"
        ) from err
    except InvalidHandshake as err:
        raise ClinicHandshakeError(f"Channel handshake failed: {err}") from err
    except (OSError, WebSocketException) as err:
        raise ClinicConnectionError(f"Cannot reach channel: {err}") from err


class ChannelSocket:
    """Wrapper around a websockets connection yielding normalized frames.

    Iteration always ends with exactly one CLOSED or ERROR frame, so the
    consumer sees the end of the connection as a frame instead of an
    exception.
    """

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    async def connect(
        self,
        url: str,
        *,
        ping_interval: int | None = DEFAULT_PING_INTERVAL,
        timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        """Open the websocket."""
        self._ws = await connect_websocket(
            url,
            ping_interval=ping_interval,
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the websocket connection."""
        if self._ws is not None:
            await self._ws.close()

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload as a text frame."""
        if self._ws is None:
            raise ClinicConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as err:
            raise ClinicConnectionError("WebSocket is closed") from err

    def __aiter__(self) -> AsyncIterator[WsFrame]:
        if self._ws is None:
            raise ClinicConnectionError("WebSocket is not connected")
        return self._iter_frames()

    async def _iter_frames(self) -> AsyncIterator[WsFrame]:
        if self._ws is None:
            raise ClinicConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                # Binary frames are not part of the channel protocol
                if isinstance(msg, str):
                    yield WsFrame(WsFrameType.TEXT, msg)
        except ConnectionClosed:
            yield WsFrame(type=WsFrameType.CLOSED)
        except Exception as err:
            yield WsFrame(type=WsFrameType.ERROR, data=str(err))
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield WsFrame(type=WsFrameType.CLOSED)
