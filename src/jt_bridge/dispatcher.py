import logging
from typing import Awaitable, Callable

from .conversion import ConversionService
from .errors import BridgeError
from .protocol import INVALID_COMMAND, Request, Response

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[Response]]


class CommandDispatcher:
    """Routes a decoded request to its handler by command name.

    dispatch() never raises: every failure becomes an Error response for
    that request only.
    """

    def __init__(self, conversion: ConversionService, version: str) -> None:
        self._conversion = conversion
        self._version = version
        self._handlers: dict[str, Handler] = {
            "getVersion": self._get_version,
            "convertAjtToJt": self._convert_ajt_to_jt,
        }

    @property
    def commands(self) -> list[str]:
        return list(self._handlers)

    async def dispatch(self, request: Request) -> Response:
        handler = self._handlers.get(request.command_name)
        if handler is None:
            logger.warning("request %d: unknown command %r", request.id, request.command_name)
            return Response.error(request.id, INVALID_COMMAND)
        try:
            return await handler(request)
        except BridgeError as e:
            logger.warning("request %d: %s failed: %s", request.id, request.command_name, e.message)
            return Response.error(request.id, e.message)
        except Exception as e:
            logger.exception("request %d: %s raised", request.id, request.command_name)
            return Response.error(request.id, str(e) or type(e).__name__)

    async def _get_version(self, request: Request) -> Response:
        return Response.ok(request.id, self._version)

    async def _convert_ajt_to_jt(self, request: Request) -> Response:
        jt = await self._conversion.convert(request.arguments)
        return Response.ok(request.id, jt)
