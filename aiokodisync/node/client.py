"""Persistent JSON-RPC connection to a single Kodi node."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from types import TracebackType
from typing import Any, NamedTuple, Self

from aiohttp import BasicAuth, ClientSession, ClientWebSocketResponse, WSMsgType

from aiokodisync.config import NodeIdentity
from aiokodisync.models import (
    DEFAULT_PLAYER_ID,
    GetPropertiesParams,
    Operation,
    PlayerMethod,
    PlayerNotification,
    PlayerPropertiesResult,
    PlayPauseParams,
    RpcMessage,
    RpcRequest,
)

from .correlator import Correlator
from .router import NotificationRouter, PoolSink

logger = logging.getLogger(__name__)

MAX_PENDING_MSG = 512
HEARTBEAT_INTERVAL = 30.0


class _Outgoing(NamedTuple):
    """A request waiting in the writer queue."""

    request: RpcRequest
    operation: Operation


class NodeClient:
    """
    Async client of one Kodi node.

    A reader task decodes every incoming message and either routes it as a
    notification or resolves the request it answers. A writer task sends the
    queued requests one at a time, in submission order. Neither task ever lets
    an exception escape: failures are logged and the affected message is dropped.
    """

    def __init__(
        self,
        identity: NodeIdentity,
        *,
        player_id: int = DEFAULT_PLAYER_ID,
        request_timeout: float | None = None,
        session: ClientSession | None = None,
        pool_sink: PoolSink | None = None,
    ) -> None:
        """Create a client for ``identity``; call connect() to open the connection."""
        self._identity = identity
        self._player_id = player_id
        self._request_timeout = request_timeout
        self._session = session
        self._owns_session = session is None
        self._ws: ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._to_write: asyncio.Queue[_Outgoing] = asyncio.Queue(maxsize=MAX_PENDING_MSG)
        self._correlator = Correlator()
        self._router = NotificationRouter(identity.host, pool_sink)
        self._closed_event: asyncio.Event | None = None
        self._closing = False
        self._lost = False
        self._elapsed: float | None = None
        self._speed: int | None = None
        self._pending_play: bool | None = None
        self._play_commands_in_flight = 0
        self._logger = logger.getChild(identity.host)

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------
    @property
    def identity(self) -> NodeIdentity:
        """Return how this node is reached."""
        return self._identity

    @property
    def name(self) -> str:
        """Return the host of this node."""
        return self._identity.host

    @property
    def description(self) -> str:
        """Return a human-friendly description of this node."""
        return self._identity.description

    @property
    def elapsed(self) -> float | None:
        """Return the last measured playback position in seconds."""
        return self._elapsed

    @property
    def speed(self) -> int | None:
        """Return the last measured state, 0 when paused and 1 when playing."""
        return self._speed

    @property
    def playing(self) -> bool | None:
        """Return whether the node was last seen playing, None if never measured."""
        if self._speed is None:
            return None
        return self._speed != 0

    @property
    def connected(self) -> bool:
        """Return True while the connection is open."""
        return self._ws is not None and not self._ws.closed and not self._closing

    @property
    def lost(self) -> bool:
        """Return True if the connection ended without disconnect() being called."""
        return self._lost

    @property
    def notifications(self) -> NotificationRouter:
        """Return the router of the notifications pushed by this node."""
        return self._router

    @property
    def correlator(self) -> Correlator:
        """Return the requests in flight on this connection."""
        return self._correlator

    async def connect(self, timeout: float = 10.0) -> None:
        """Open the websocket and start the reader and writer tasks."""
        if self.connected:
            self._logger.debug("Already connected")
            return

        if self._session is None:
            self._session = ClientSession()
            self._owns_session = True

        url = self._identity.ws_url
        self._logger.info("Connecting to %s", url)
        try:
            async with asyncio.timeout(timeout):
                ws = await self._session.ws_connect(
                    url,
                    auth=BasicAuth(self._identity.user, self._identity.password),
                    heartbeat=HEARTBEAT_INTERVAL,
                )
        except BaseException:
            if self._owns_session:
                await self._session.close()
                self._session = None
            raise
        self.attach(ws)
        self._logger.info("Connected to %s", self.description)

    def attach(self, ws: ClientWebSocketResponse) -> None:
        """Take ownership of an open websocket and start serving it."""
        loop = asyncio.get_running_loop()
        self._ws = ws
        self._closing = False
        self._lost = False
        self._closed_event = asyncio.Event()
        self._correlator = Correlator()
        self._writer_task = loop.create_task(self._writer())
        self._reader_task = loop.create_task(self._reader_loop())

    async def disconnect(self) -> None:
        """Stop both tasks, close the connection and release every waiter."""
        if self._closing and self._ws is None:
            return
        self._closing = True
        self._logger.debug("Disconnecting")
        await self._shutdown()

    async def wait_closed(self) -> None:
        """Wait until the connection has ended."""
        if self._closed_event is not None:
            await self._closed_event.wait()

    def send(
        self,
        method: PlayerMethod | str,
        params: dict[str, Any] | None = None,
        operation: Operation = Operation.NONE,
    ) -> int | None:
        """
        Queue a request without waiting for its response.

        Returns the request id, or None if the request was dropped because the
        node is not connected or too many requests are queued.
        """
        request_id = self._correlator.next_id()
        if not self._enqueue(request_id, method, params, operation):
            return None
        return request_id

    async def request_and_wait(
        self,
        method: PlayerMethod | str,
        params: dict[str, Any] | None = None,
        operation: Operation = Operation.NONE,
    ) -> RpcMessage | None:
        """
        Send a request and wait for the response carrying the same id.

        Returns None if the request could not be queued, the connection ended
        first or the request timeout elapsed.
        """
        request_id = self._correlator.next_id()
        waiter = self._correlator.watch(request_id)
        try:
            if not self._enqueue(request_id, method, params, operation):
                return None
            if self._request_timeout is None:
                return await waiter
            async with asyncio.timeout(self._request_timeout):
                return await waiter
        except TimeoutError:
            self._logger.warning(
                "No response to %s (id %d) within %.1fs",
                _method_name(method),
                request_id,
                self._request_timeout,
            )
            return None
        finally:
            self._correlator.unwatch(request_id)

    async def fetch_elapsed(self) -> float | None:
        """Measure the playback position; returns None if it could not be measured."""
        # A response without a time must not leave the previous position behind
        self._elapsed = None
        params = GetPropertiesParams(playerid=self._player_id, properties=["time", "speed"])
        response = await self.request_and_wait(
            PlayerMethod.GET_PROPERTIES, params.to_dict(), Operation.ELAPSED_TIME
        )
        if response is None or response.error is not None:
            return None
        return self._elapsed

    async def fetch_speed(self) -> int | None:
        """Measure whether the node is playing (1) or paused (0)."""
        params = GetPropertiesParams(playerid=self._player_id, properties=["speed"])
        response = await self.request_and_wait(
            PlayerMethod.GET_PROPERTIES, params.to_dict(), Operation.SPEED
        )
        if response is None or response.error is not None:
            return None
        return self._speed

    async def set_playing(self, play: bool, *, expect_echo: bool = True) -> bool:
        """
        Play or pause the node and wait for the acknowledgment.

        With ``expect_echo`` the notification Kodi pushes for this change is
        swallowed instead of being forwarded to the pool. Nothing is swallowed
        when the node is already known to be in the requested state, since Kodi
        does not notify then.
        """
        if not self.connected:
            self._logger.debug("Not connected, cannot %s", "play" if play else "pause")
            return False

        echo = PlayerNotification.ON_RESUME if play else PlayerNotification.ON_PAUSE
        expected = self._pending_play if self._pending_play is not None else self.playing
        suppressed = expect_echo and expected is not play
        if suppressed:
            self._router.suppress_next(echo)

        self._pending_play = play
        self._play_commands_in_flight += 1
        try:
            response = await self.request_and_wait(
                PlayerMethod.PLAY_PAUSE,
                PlayPauseParams(play=play, playerid=self._player_id).to_dict(),
                Operation.SPEED,
            )
        finally:
            self._play_commands_in_flight -= 1
            if self._play_commands_in_flight == 0:
                self._pending_play = None

        if response is None:
            return False
        if response.error is not None:
            if suppressed:
                self._router.release_suppression(echo)
            return False
        return True

    def expect_notification(self, method: PlayerNotification | str) -> None:
        """Swallow the next ``method`` notification of this node."""
        self._router.suppress_next(method)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _enqueue(
        self,
        request_id: int,
        method: PlayerMethod | str,
        params: dict[str, Any] | None,
        operation: Operation,
    ) -> bool:
        name = _method_name(method)
        if not self.connected:
            self._logger.warning("Not connected, dropping %s", name)
            return False
        request = RpcRequest(method=name, id=request_id, params=params)
        try:
            self._to_write.put_nowait(_Outgoing(request, operation))
        except asyncio.QueueFull:
            self._logger.warning("Too many queued requests, dropping %s", name)
            return False
        self._logger.debug("Enqueued %s (id %d)", name, request_id)
        return True

    async def _writer(self) -> None:
        """Write queued requests one at a time."""
        ws = self._ws
        assert ws is not None
        try:
            while not ws.closed:
                outgoing = await self._to_write.get()
                request_id = outgoing.request.id
                # Registered right before the write and rolled back if it fails,
                # so only requests that reached the socket are ever mapped.
                self._correlator.register(request_id, outgoing.operation)
                try:
                    await ws.send_str(outgoing.request.to_json())
                except ConnectionError as err:
                    self._correlator.discard(request_id)
                    self._logger.warning(
                        "Failed to send %s (id %d): %s", outgoing.request.method, request_id, err
                    )
                    await ws.close()
                    break
                except Exception:
                    # Closing ends the reader, which releases every other waiter.
                    self._correlator.discard(request_id)
                    self._logger.exception(
                        "Error sending %s (id %d)", outgoing.request.method, request_id
                    )
                    await ws.close()
                    break
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.exception("Error in writer task")
            await ws.close()

    async def _reader_loop(self) -> None:
        """Read and route incoming messages until the connection ends."""
        ws = self._ws
        assert ws is not None
        try:
            async for msg in ws:
                if msg.type is WSMsgType.TEXT:
                    self._handle_text(msg.data)
                elif msg.type is WSMsgType.ERROR:
                    self._logger.warning("WebSocket error: %s", ws.exception())
                    break
                else:
                    self._logger.debug("Ignoring websocket message of type %s", msg.type)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.exception("WebSocket reader encountered an error")
        finally:
            if not self._closing:
                self._lost = True
                self._logger.warning("Connection to %s lost", self.description)
                await self._shutdown()

    def _handle_text(self, data: str) -> None:
        try:
            message = RpcMessage.from_json(data)
        except Exception as err:
            self._logger.warning("Dropping malformed message %r: %s", data, err)
            return

        if message.is_notification:
            assert message.method is not None
            self._router.dispatch(message.method, message.params)
        elif message.is_response:
            self._handle_response(message)
        elif message.error is not None:
            self._logger.warning(
                "Error without request id: %s (%d)", message.error.message, message.error.code
            )
        else:
            self._logger.debug("Ignoring message without id or method: %s", data)

    def _handle_response(self, message: RpcMessage) -> None:
        assert message.id is not None
        operation = self._correlator.resolve(message.id)
        if message.error is not None:
            self._logger.warning(
                "Request %d failed: %s (%d)",
                message.id,
                message.error.message,
                message.error.code,
            )
        elif operation is not None:
            self._record(operation, message.result)
        self._correlator.release(message.id, message)

    def _record(self, operation: Operation, result: Any) -> None:
        """Store what the response to an ``operation`` request tells about the node."""
        match operation:
            case Operation.ELAPSED_TIME | Operation.SPEED:
                try:
                    properties = PlayerPropertiesResult.from_dict(result)
                except Exception as err:
                    self._logger.warning("Unexpected %s result %r: %s", operation.value, result, err)
                    return
                if operation is Operation.ELAPSED_TIME:
                    if properties.time is None:
                        self._logger.warning("Response carries no time: %r", result)
                    else:
                        self._elapsed = properties.time.total_seconds()
                        self._logger.debug("Elapsed %.3fs", self._elapsed)
                if properties.speed is not None:
                    self._speed = 0 if properties.speed == 0 else 1
            case _:
                pass

    async def _shutdown(self) -> None:
        current_task = asyncio.current_task()
        for task in (self._writer_task, self._reader_task):
            if task is not None and task is not current_task and not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        self._writer_task = None
        self._reader_task = None
        if self._ws is not None:
            ws = self._ws
            self._ws = None
            if not ws.closed:
                await ws.close()
        while not self._to_write.empty():
            self._to_write.get_nowait()
        self._correlator.close()
        self._router.clear_suppressions()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
        if self._closed_event is not None:
            self._closed_event.set()

    async def __aenter__(self) -> Self:
        """Enter the async context manager returning this instance."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Disconnect when leaving the async context manager."""
        await self.disconnect()

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"<NodeClient {self.description} elapsed={self._elapsed} speed={self._speed}>"


def _method_name(method: PlayerMethod | str) -> str:
    return method.value if isinstance(method, PlayerMethod) else method
