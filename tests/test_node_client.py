"""Tests for NodeClient against an in-memory Kodi."""

import asyncio
import logging

import aiohttp
import pytest
from fake_kodi import FakeKodi, split_time, wait_until

from aiokodisync.config import NodeIdentity
from aiokodisync.models import PlayerMethod, PlayerNotification
from aiokodisync.node import NodeClient, Notification


class TestRequests:
    """Tests for requests and their responses."""

    @pytest.mark.asyncio
    async def test_fetch_elapsed(self, node_factory):
        """Test measuring the playback position."""
        kodi = FakeKodi(elapsed=3723.0, playing=False)
        node = node_factory(kodi)
        assert await node.fetch_elapsed() == 3723.0
        assert node.elapsed == 3723.0
        assert node.speed == 0
        assert node.playing is False
        assert kodi.requests("Player.GetProperties")[0]["params"] == {
            "playerid": 1,
            "properties": ["time", "speed"],
        }

    @pytest.mark.asyncio
    async def test_fetch_speed(self, node_factory):
        """Test measuring whether the node plays."""
        node = node_factory(FakeKodi(playing=True))
        assert node.playing is None
        assert await node.fetch_speed() == 1
        assert node.playing is True
        assert node.elapsed is None

    @pytest.mark.asyncio
    async def test_player_id(self, node_factory):
        """Test that the configured player id is sent."""
        kodi = FakeKodi()
        node = node_factory(kodi, player_id=2)
        await node.set_playing(True)
        assert kodi.requests("Player.PlayPause")[0]["params"] == {"play": True, "playerid": 2}

    @pytest.mark.asyncio
    async def test_ids_increase(self, node_factory):
        """Test that every request gets a fresh id."""
        kodi = FakeKodi()
        node = node_factory(kodi)
        assert node.send(PlayerMethod.GET_PROPERTIES, {"playerid": 1, "properties": ["speed"]}) == 1
        assert node.send("JSONRPC.Ping") == 2
        await wait_until(lambda: len(kodi.received) == 2)
        assert [request["id"] for request in kodi.received] == [1, 2]

    @pytest.mark.asyncio
    async def test_out_of_order_responses(self, node_factory):
        """Test that responses are matched by id, not by arrival order."""
        kodi = FakeKodi(respond=False)
        node = node_factory(kodi)
        elapsed_task = asyncio.create_task(node.fetch_elapsed())
        speed_task = asyncio.create_task(node.fetch_speed())
        await wait_until(lambda: len(kodi.received) == 2)
        elapsed_id = kodi.received[0]["id"]
        speed_id = kodi.received[1]["id"]

        kodi.reply(speed_id, {"speed": 0})
        assert await asyncio.wait_for(speed_task, 1) == 0
        assert not elapsed_task.done()

        kodi.reply(elapsed_id, {"time": split_time(42.5)})
        assert await asyncio.wait_for(elapsed_task, 1) == 42.5
        assert node.correlator.pending == 0

    @pytest.mark.asyncio
    async def test_error_response(self, node_factory, caplog):
        """Test that an error response is returned and logged."""
        node = node_factory(FakeKodi())
        with caplog.at_level(logging.WARNING):
            response = await node.request_and_wait("Player.Unknown")
        assert response is not None
        assert response.error is not None
        assert response.error.code == -32601
        assert "Method not found." in caplog.text

    @pytest.mark.asyncio
    async def test_malformed_message_dropped(self, node_factory, caplog):
        """Test that garbage is logged and the reader keeps going."""
        kodi = FakeKodi(elapsed=10.0, playing=False)
        node = node_factory(kodi)
        with caplog.at_level(logging.WARNING):
            kodi.push_raw("this is not json")
            kodi.push_raw("[1, 2, 3]")
            assert await node.fetch_elapsed() == 10.0
        assert "Dropping malformed message" in caplog.text
        assert node.connected

    @pytest.mark.asyncio
    async def test_unknown_response_id(self, node_factory):
        """Test that a response nobody asked for changes nothing."""
        kodi = FakeKodi(elapsed=5.0, playing=False)
        node = node_factory(kodi)
        kodi.reply(1234, {"time": split_time(99.0), "speed": 1})
        assert await node.fetch_elapsed() == 5.0
        assert node.playing is False

    @pytest.mark.asyncio
    async def test_fetch_elapsed_without_time(self, node_factory):
        """Test that a response without a time does not report the previous position."""
        kodi = FakeKodi(respond=False)
        node = node_factory(kodi)
        first = asyncio.create_task(node.fetch_elapsed())
        await wait_until(lambda: len(kodi.received) == 1)
        kodi.reply(kodi.received[0]["id"], {"time": split_time(42.0), "speed": 1})
        assert await asyncio.wait_for(first, 1) == 42.0

        second = asyncio.create_task(node.fetch_elapsed())
        await wait_until(lambda: len(kodi.received) == 2)
        kodi.reply(kodi.received[1]["id"], {"speed": 1})
        assert await asyncio.wait_for(second, 1) is None
        assert node.elapsed is None
        assert node.playing is True

    @pytest.mark.asyncio
    async def test_request_timeout(self, node_factory):
        """Test giving up on a node that never answers."""
        node = node_factory(FakeKodi(respond=False), request_timeout=0.05)
        assert await node.fetch_elapsed() is None
        assert node.connected


class TestEchoSuppression:
    """Tests for keeping command echoes away from the pool."""

    @pytest.mark.asyncio
    async def test_echo_swallowed(self, node_factory):
        """Test that the pause caused by a command does not reach the pool."""
        received: list[Notification] = []
        kodi = FakeKodi(playing=True)
        node = node_factory(kodi, pool_sink=received.append)
        await node.fetch_speed()
        with node.notifications.subscribe() as listener:
            assert await node.set_playing(False)
            notification = listener.get_nowait()
        assert notification is not None
        assert notification.method == PlayerNotification.ON_PAUSE.value
        assert received == []
        assert node.notifications.pending_suppressions(PlayerNotification.ON_PAUSE) == 0
        assert not kodi.playing
        assert node.playing is False

    @pytest.mark.asyncio
    async def test_no_change_no_suppression(self, node_factory):
        """Test that pausing a paused node expects no echo."""
        received: list[Notification] = []
        kodi = FakeKodi(playing=False)
        node = node_factory(kodi, pool_sink=received.append)
        await node.fetch_speed()
        assert await node.set_playing(False)
        assert node.notifications.pending_suppressions(PlayerNotification.ON_PAUSE) == 0
        assert kodi.play_commands() == [False]
        assert received == []

    @pytest.mark.asyncio
    async def test_without_expecting_echo(self, node_factory):
        """Test that an echo not expected is forwarded to the pool."""
        received: list[Notification] = []
        node = node_factory(FakeKodi(playing=True), pool_sink=received.append)
        await node.fetch_speed()
        assert await node.set_playing(False, expect_echo=False)
        await wait_until(lambda: len(received) == 1)
        assert received[0].method == PlayerNotification.ON_PAUSE.value

    @pytest.mark.asyncio
    async def test_user_pause_reaches_pool(self, node_factory):
        """Test that a pause pressed on the node is forwarded to the pool."""
        received: list[Notification] = []
        kodi = FakeKodi(playing=True)
        node_factory(kodi, host="kodi-livingroom:9090", pool_sink=received.append)
        kodi.user_pause()
        await wait_until(lambda: len(received) == 1)
        assert received[0].node_name == "kodi-livingroom:9090"
        assert received[0].method == PlayerNotification.ON_PAUSE.value

    @pytest.mark.asyncio
    async def test_expect_notification(self, node_factory):
        """Test announcing an echo by hand."""
        received: list[Notification] = []
        kodi = FakeKodi(playing=True)
        node = node_factory(kodi, pool_sink=received.append)
        node.expect_notification(PlayerNotification.ON_PAUSE)
        kodi.user_pause()
        kodi.user_resume()
        await wait_until(lambda: len(received) == 1)
        assert received[0].method == PlayerNotification.ON_RESUME.value

    @pytest.mark.asyncio
    async def test_failed_command_releases_suppression(self, node_factory):
        """Test that a refused command does not leave a suppression behind."""
        kodi = FakeKodi(playing=True, respond=False)
        node = node_factory(kodi)
        node._speed = 1  # noqa: SLF001
        task = asyncio.create_task(node.set_playing(False))
        await wait_until(lambda: len(kodi.received) == 1)
        assert node.notifications.pending_suppressions(PlayerNotification.ON_PAUSE) == 1
        kodi.push(
            {
                "jsonrpc": "2.0",
                "id": kodi.received[0]["id"],
                "error": {"code": -32100, "message": "Failed to execute method."},
            }
        )
        assert await asyncio.wait_for(task, 1) is False
        assert node.notifications.pending_suppressions(PlayerNotification.ON_PAUSE) == 0


class TestConnectionLifecycle:
    """Tests for losing and closing the connection."""

    @pytest.mark.asyncio
    async def test_connection_loss_releases_waiters(self, node_factory):
        """Test that waiters return None when the connection drops."""
        kodi = FakeKodi(respond=False)
        node = node_factory(kodi)
        task = asyncio.create_task(node.fetch_elapsed())
        await wait_until(lambda: len(kodi.received) == 1)
        kodi.drop()
        assert await asyncio.wait_for(task, 1) is None
        assert node.lost
        assert not node.connected
        assert node.correlator.pending == 0

    @pytest.mark.asyncio
    async def test_disconnect(self, node_factory):
        """Test an orderly disconnect."""
        kodi = FakeKodi()
        node = node_factory(kodi)
        assert node.connected
        await node.disconnect()
        await asyncio.wait_for(node.wait_closed(), 1)
        assert kodi.closed
        assert not node.connected
        assert not node.lost
        # Disconnecting twice is harmless
        await node.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_releases_waiters(self, node_factory):
        """Test that disconnecting wakes pending requests."""
        kodi = FakeKodi(respond=False)
        node = node_factory(kodi)
        task = asyncio.create_task(node.fetch_speed())
        await wait_until(lambda: len(kodi.received) == 1)
        await node.disconnect()
        assert await asyncio.wait_for(task, 1) is None

    @pytest.mark.asyncio
    async def test_send_while_disconnected(self, node_factory):
        """Test that nothing is sent once disconnected."""
        kodi = FakeKodi()
        node = node_factory(kodi)
        await node.disconnect()
        assert node.send("JSONRPC.Ping") is None
        assert await node.request_and_wait("JSONRPC.Ping") is None
        assert await node.set_playing(False) is False
        assert kodi.received == []

    @pytest.mark.asyncio
    async def test_connect_refused(self):
        """Test that an unreachable node raises on connect."""
        node = NodeClient(NodeIdentity("127.0.0.1:1", "kodi", "secret"))
        with pytest.raises((aiohttp.ClientError, OSError, TimeoutError)):
            await node.connect(timeout=2.0)
        assert not node.connected

    @pytest.mark.asyncio
    async def test_write_error_closes_connection(self, node_factory, caplog):
        """Test that an unexpected write failure ends the connection and releases waiters."""
        kodi = FakeKodi()
        node = node_factory(kodi)
        kodi.send_error = RuntimeError("Cannot write to closing transport")
        with caplog.at_level(logging.ERROR):
            assert await asyncio.wait_for(node.fetch_elapsed(), 1) is None
        await wait_until(lambda: node.lost)
        assert not node.connected
        assert node.correlator.pending == 0
        assert "Error sending Player.GetProperties" in caplog.text
        # Later requests fail at once instead of queueing into a dead writer
        assert await asyncio.wait_for(node.set_playing(False), 1) is False
