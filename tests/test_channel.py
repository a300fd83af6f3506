"""Test ChannelClient dispatch and reconnection behavior."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from clinic_session.channel import ChannelClient, ChannelState
from clinic_session.errors import ClinicConnectionError, ClinicHandshakeError
from clinic_session.protocol import ChannelEvent, ChannelMessageType

from .conftest import AsyncIteratorMock

URL = "ws://clinic.test/ws"
CONNECT = "clinic_session.ws_client.connect_websocket"


def frame(message_type: str, data: Any = None) -> str:
    return json.dumps({"type": message_type, "data": data})


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.fixture
async def channel() -> AsyncIterator[ChannelClient]:
    client = ChannelClient(URL, reconnect_interval=0.02)
    yield client
    await client.disconnect()


class TestDispatch:
    """Tests for envelope decoding and subscriber fan-out."""

    async def test_matching_subscriber_receives_data(self, channel: ChannelClient):
        callback = MagicMock()
        channel.subscribe("encounter.updated", callback)

        await channel.handle_message(
            '{"type":"encounter.updated","data":{"id":"e1","status":"done"}}'
        )
        await channel.handle_message('{"type":"other"}')

        callback.assert_called_once_with({"id": "e1", "status": "done"})

    async def test_enum_and_string_keys_are_equivalent(self, channel: ChannelClient):
        callback = MagicMock()
        channel.subscribe(ChannelMessageType.PATIENT_CREATED, callback)

        await channel.handle_message(frame("patient_created", {"id": 9}))

        callback.assert_called_once_with({"id": 9})

    async def test_registration_order_and_failure_isolation(
        self, channel: ChannelClient, caplog: pytest.LogCaptureFixture
    ):
        calls: list[str] = []

        def first(data: Any) -> None:
            calls.append("first")
            raise RuntimeError("subscriber bug")

        async def second(data: Any) -> None:
            await asyncio.sleep(0)
            calls.append("second")

        def third(data: Any) -> None:
            calls.append("third")

        channel.subscribe("patient_deleted", first)
        channel.subscribe("patient_deleted", second)
        channel.subscribe("patient_deleted", third)

        with caplog.at_level(logging.ERROR):
            await channel.handle_message(frame("patient_deleted", {"id": 1}))

        assert calls == ["first", "second", "third"]
        assert "Subscriber for patient_deleted raised" in caplog.text

    @pytest.mark.parametrize(
        "raw",
        ["not json", "[1]", '{"data": {"id": 1}}', '{"type": null}'],
    )
    async def test_malformed_frames_are_dropped(
        self, channel: ChannelClient, raw: str, caplog: pytest.LogCaptureFixture
    ):
        callback = MagicMock()
        channel.subscribe("patient_created", callback)

        with caplog.at_level(logging.WARNING):
            await channel.handle_message(raw)

        callback.assert_not_called()
        assert "Dropping malformed frame" in caplog.text

    async def test_unsubscribe(self, channel: ChannelClient):
        kept = MagicMock()
        removed = MagicMock()
        channel.subscribe("encounter_created", kept)
        unsubscribe = channel.subscribe("encounter_created", removed)

        unsubscribe()
        unsubscribe()
        await channel.dispatch(ChannelEvent("encounter_created", {"id": "e2"}))

        kept.assert_called_once_with({"id": "e2"})
        removed.assert_not_called()


class TestConnection:
    """Tests for connect(), disconnect() and send()."""

    async def test_connect_and_receive(self, channel: ChannelClient):
        received: list[Any] = []
        channel.subscribe("patient_created", received.append)
        mock_ws = AsyncIteratorMock(
            ["garbage", frame("patient_created", {"id": 1})], hold_open=True
        )

        with patch(CONNECT, return_value=mock_ws) as mock_connect:
            assert await channel.connect() is True
            await wait_until(lambda: received == [{"id": 1}])

        assert channel.state is ChannelState.CONNECTED
        mock_connect.assert_awaited_once_with(URL, ping_interval=20, timeout=15.0)

        await channel.disconnect()

        assert channel.state is ChannelState.DISCONNECTED
        mock_ws.close.assert_awaited_once()

    async def test_state_transitions(self, channel: ChannelClient):
        states: list[ChannelState] = []
        channel.on_state_changed(states.append)

        with patch(CONNECT, return_value=AsyncIteratorMock([], hold_open=True)):
            await channel.connect()
            await channel.disconnect()

        assert states == [
            ChannelState.CONNECTING,
            ChannelState.CONNECTED,
            ChannelState.DISCONNECTED,
        ]

    async def test_second_connect_replaces_connection(self, channel: ChannelClient):
        first = AsyncIteratorMock([], hold_open=True)
        second = AsyncIteratorMock([], hold_open=True)

        with patch(CONNECT, side_effect=[first, second]):
            await channel.connect()
            await channel.connect()

        first.close.assert_awaited_once()
        second.close.assert_not_awaited()
        assert channel.is_connected

    async def test_send_encodes_envelope(self, channel: ChannelClient):
        mock_ws = AsyncIteratorMock([], hold_open=True)

        with patch(CONNECT, return_value=mock_ws):
            await channel.connect()
            await channel.send(
                ChannelMessageType.ENCOUNTER_STATUS_UPDATED, {"id": "e1"}
            )

        mock_ws.send.assert_awaited_once_with(
            '{"type": "encounter_status_updated", "data": {"id": "e1"}}'
        )

    async def test_send_not_connected(self, channel: ChannelClient):
        with pytest.raises(ClinicConnectionError, match="not connected"):
            await channel.send("ping")


class TestReconnect:
    """Tests for the fixed-interval reconnect cycle."""

    async def test_n_closes_give_n_reconnects(self, channel: ChannelClient):
        loop = asyncio.get_running_loop()
        attempts: list[float] = []
        sockets = [AsyncIteratorMock([]) for _ in range(3)]
        sockets.append(AsyncIteratorMock([], hold_open=True))

        async def fake_connect(url: str, **kwargs: Any) -> AsyncIteratorMock:
            attempts.append(loop.time())
            return sockets[len(attempts) - 1]

        with patch(CONNECT, side_effect=fake_connect):
            await channel.connect()
            await wait_until(lambda: len(attempts) == 4 and channel.is_connected)
            await asyncio.sleep(0.1)

        assert len(attempts) == 4
        assert channel.reconnect_attempts == 3
        gaps = [later - earlier for earlier, later in zip(attempts, attempts[1:])]
        assert all(gap >= channel.reconnect_interval * 0.9 for gap in gaps)

    async def test_disconnect_cancels_pending_reconnect(self):
        channel = ChannelClient(URL, reconnect_interval=0.2)
        mock_connect = AsyncMock(return_value=AsyncIteratorMock([]))

        with patch(CONNECT, mock_connect):
            await channel.connect()
            await wait_until(lambda: channel.reconnect_attempts == 1)
            assert channel.state is ChannelState.DISCONNECTED

            await channel.disconnect()
            await asyncio.sleep(channel.reconnect_interval * 2)

        assert mock_connect.await_count == 1
        assert channel.state is ChannelState.DISCONNECTED
        assert channel._reconnect_task is None

    async def test_failed_open_schedules_reconnect(self, channel: ChannelClient):
        with patch(
            CONNECT,
            side_effect=[
                ClinicConnectionError("refused"),
                ClinicHandshakeError("rejected"),
                AsyncIteratorMock([], hold_open=True),
            ],
        ) as mock_connect:
            assert await channel.connect() is False
            await wait_until(lambda: channel.is_connected)

        assert mock_connect.await_count == 3
        assert channel.reconnect_attempts == 2

    async def test_transport_error_reconnects(self, channel: ChannelClient):
        with patch(
            CONNECT,
            side_effect=[
                AsyncIteratorMock([], raise_on_iter=RuntimeError("reset by peer")),
                AsyncIteratorMock([], hold_open=True),
            ],
        ) as mock_connect:
            await channel.connect()
            await wait_until(
                lambda: mock_connect.await_count == 2 and channel.is_connected
            )

        assert channel.reconnect_attempts == 1

    async def test_connect_after_disconnect(self, channel: ChannelClient):
        with patch(
            CONNECT,
            side_effect=[
                AsyncIteratorMock([], hold_open=True),
                AsyncIteratorMock([], hold_open=True),
            ],
        ):
            await channel.connect()
            await channel.disconnect()
            assert await channel.connect() is True

        assert channel.is_connected

    async def test_subscribers_survive_reconnect(self, channel: ChannelClient):
        received: list[Any] = []
        channel.subscribe("encounter_created", received.append)

        with patch(
            CONNECT,
            side_effect=[
                AsyncIteratorMock([frame("encounter_created", {"id": "a"})]),
                AsyncIteratorMock(
                    [frame("encounter_created", {"id": "b"})], hold_open=True
                ),
            ],
        ):
            await channel.connect()
            await wait_until(lambda: len(received) == 2)

        assert received == [{"id": "a"}, {"id": "b"}]

    async def test_connect_during_reconnect_handshake(self, channel: ChannelClient):
        received: list[Any] = []
        channel.subscribe("patient_created", received.append)
        sockets = [
            AsyncIteratorMock([]),
            AsyncIteratorMock([], hold_open=True),
            AsyncIteratorMock([frame("patient_created", {"id": 5})], hold_open=True),
        ]
        opened: list[AsyncIteratorMock] = []

        async def fake_connect(url: str, **kwargs: Any) -> AsyncIteratorMock:
            socket = sockets[len(opened)]
            opened.append(socket)
            if len(opened) == 2:
                # Reconnect handshake still in flight when connect() is called
                await asyncio.sleep(0.1)
            return socket

        with patch(CONNECT, side_effect=fake_connect):
            await channel.connect()
            await wait_until(lambda: len(opened) == 2)
            assert await channel.connect() is True
            await wait_until(lambda: received == [{"id": 5}])
            await asyncio.sleep(0.05)

            assert len(opened) == 3
            assert channel.reconnect_attempts == 0
            sockets[1].close.assert_awaited_once()
            sockets[2].close.assert_not_awaited()

            await channel.disconnect()

        sockets[2].close.assert_awaited_once()
        assert received == [{"id": 5}]
        assert channel.state is ChannelState.DISCONNECTED

    async def test_listener_failure_reconnects(
        self, channel: ChannelClient, caplog: pytest.LogCaptureFixture
    ):
        channel.handle_message = AsyncMock(  # type: ignore[method-assign]
            side_effect=RuntimeError("listener bug")
        )

        with patch(
            CONNECT,
            side_effect=[
                AsyncIteratorMock([frame("patient_created")], hold_open=True),
                AsyncIteratorMock([], hold_open=True),
            ],
        ) as mock_connect:
            with caplog.at_level(logging.ERROR):
                await channel.connect()
                await wait_until(
                    lambda: mock_connect.await_count == 2 and channel.is_connected
                )

        assert channel.reconnect_attempts == 1
        assert "Listener failed" in caplog.text

    async def test_state_callback_failure_keeps_reconnecting(
        self, channel: ChannelClient, caplog: pytest.LogCaptureFixture
    ):
        channel.on_state_changed(MagicMock(side_effect=RuntimeError("ui bug")))

        with patch(
            CONNECT,
            side_effect=[
                ClinicConnectionError("refused"),
                AsyncIteratorMock([], hold_open=True),
            ],
        ) as mock_connect:
            with caplog.at_level(logging.ERROR):
                assert await channel.connect() is False
                await wait_until(lambda: channel.is_connected)

        assert mock_connect.await_count == 2
        assert channel.reconnect_attempts == 1
        assert "State callback raised" in caplog.text
