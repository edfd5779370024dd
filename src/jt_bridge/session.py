import asyncio
import logging
from enum import Enum

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from .dispatcher import CommandDispatcher
from .errors import ProtocolError
from .protocol import INVALID_COMMAND, Response, decode_request, encode_legacy_response, encode_response

logger = logging.getLogger(__name__)


class Framing(str, Enum):
    BINARY = "binary"
    JSON = "json"


class Connection:
    """One accepted client connection.

    Owns the write lock of the underlying WebSocket: a response frame is
    encoded and sent while holding it, so concurrent handlers never
    interleave frames.
    """

    def __init__(self, websocket: WebSocket, framing: Framing = Framing.BINARY) -> None:
        self._websocket = websocket
        self._framing = framing
        self._write_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return (
            self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        )

    async def receive(self) -> str | bytes | None:
        """Wait for the next message; None once the client has gone."""
        message = await self._websocket.receive()
        if message["type"] == "websocket.disconnect":
            return None
        text = message.get("text")
        if text is None:
            return message.get("bytes") or b""
        return text

    async def send(self, response: Response) -> None:
        async with self._write_lock:
            if self._framing is Framing.JSON:
                await self._websocket.send_text(encode_legacy_response(response))
            else:
                await self._websocket.send_bytes(encode_response(response))


class Session:
    """Drives the request/response cycle of one connection.

    Every received message is handled in its own task and the loop goes
    straight back to waiting, so requests on the same connection overlap
    and may be answered out of order. Clients match replies by id.
    """

    def __init__(self, connection: Connection, dispatcher: CommandDispatcher) -> None:
        self._connection = connection
        self._dispatcher = dispatcher
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def run(self) -> None:
        while True:
            try:
                message = await self._connection.receive()
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug("read failed: %s", e)
                break
            if message is None or not self._connection.is_open:
                logger.debug("connection closed")
                break
            task = asyncio.create_task(self.handle(message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def handle(self, message: str | bytes) -> None:
        try:
            # Binary frames carry the same JSON text and must be valid UTF-8.
            text = message.decode("utf-8") if isinstance(message, bytes) else message
            request = decode_request(text)
        except ProtocolError as e:
            logger.warning("rejecting malformed request: %r", message[:200])
            response = Response.error(e.request_id, e.message)
        except Exception as e:
            logger.warning("rejecting undecodable request: %s", e)
            response = Response.error(0, INVALID_COMMAND)
        else:
            logger.debug("request %d: %s", request.id, request.command_name)
            response = await self._dispatcher.dispatch(request)

        try:
            await self._connection.send(response)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.info("dropping response %d, client is gone: %s", response.correlation_id, e)
