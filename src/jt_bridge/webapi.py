import logging
import os

from fastapi import FastAPI, WebSocket

from . import __version__
from .conversion import ConversionService, ConverterGateway, SubprocessAjtConverter
from .dispatcher import CommandDispatcher
from .session import Connection, Framing, Session

logger = logging.getLogger(__name__)

# Global configuration defaults
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "9876"))
VERSION = os.getenv("JT_BRIDGE_VERSION", __version__)
FRAMING = os.getenv("JT_BRIDGE_FRAMING", Framing.BINARY.value).lower()
TEMP_DIR = os.getenv("JT_BRIDGE_TEMP_DIR") or None
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()


def create_app(
    converter: ConverterGateway | None = None,
    *,
    version: str = VERSION,
    framing: str = FRAMING,
) -> FastAPI:
    """Build the bridge application.

    The WebSocket route at "/" is the acceptor: uvicorn accepts sockets and
    runs each connection's handler as its own task, and the handler starts
    one Session for it. Pass a converter to replace the ajt2jt subprocess,
    e.g. in tests.
    """
    app = FastAPI(
        title="JT Bridge Service",
        version=version,
        description="Local WebSocket bridge converting AJT text into JT geometry.",
    )
    mode = Framing(framing)
    service = ConversionService(converter or SubprocessAjtConverter(temp_dir=TEMP_DIR))
    dispatcher = CommandDispatcher(service, version)
    app.state.dispatcher = dispatcher

    @app.get("/health")
    def health() -> dict[str, str]:
        """Basic health check endpoint."""
        return {"status": "ok"}

    @app.websocket("/")
    async def accept_client(websocket: WebSocket) -> None:
        try:
            await websocket.accept()
        except Exception as e:
            logger.warning("failed to accept client %s: %s", websocket.client, e)
            return
        logger.info("client connected: %s", websocket.client)
        await Session(Connection(websocket, mode), dispatcher).run()
        logger.info("client disconnected: %s", websocket.client)

    return app


app = create_app()


def resolve_log_level(name: str) -> tuple[str, int]:
    """Map a LOG_LEVEL name onto uvicorn's levels; unknown names fall back to info."""
    from uvicorn.config import LOG_LEVELS

    name = name.strip().lower()
    if name not in LOG_LEVELS:
        name = "info"
    return name, LOG_LEVELS[name]


def run() -> None:
    """Run the bridge with uvicorn.

    Listens on host:port (default 127.0.0.1:9876). Set HOST/PORT env vars to override.
    """
    import uvicorn

    level_name, level = resolve_log_level(LOG_LEVEL)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("JT bridge %s listening on %s:%d (%s frames)", VERSION, HOST, PORT, FRAMING)
    uvicorn.run("jt_bridge.webapi:app", host=HOST, port=PORT, log_level=level_name)


if __name__ == "__main__":
    run()
