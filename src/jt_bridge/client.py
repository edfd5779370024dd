"""
Bridge Client

WebSocket client for a running JT bridge. Sends commands, matches the
replies by correlation id and unwraps their payloads.
"""

import argparse
import asyncio
import base64
import binascii
import itertools
import json
import logging
import os
import sys
from typing import Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import BridgeError
from .protocol import Response, Status, decode_legacy_response, decode_response

logger = logging.getLogger(__name__)

DEFAULT_URL = os.getenv("JT_BRIDGE_URL", "ws://127.0.0.1:9876/")


def build_request(request_id: int, name: str, arguments: Optional[Dict[str, str]] = None) -> str:
    return json.dumps({"id": request_id, "command": {"name": name, "arguments": arguments or {}}})


def parse_frame(message: bytes | str) -> Response:
    """Decode a reply in either framing: binary frames or legacy JSON text."""
    if isinstance(message, str):
        return decode_legacy_response(message)
    return decode_response(message)


def unwrap(response: Response) -> bytes | str:
    if response.status is Status.ERROR:
        payload = response.payload
        raise BridgeError(payload if isinstance(payload, str) else payload.decode("utf-8", errors="replace"))
    return response.payload


class BridgeClient:
    """
    Async client for the bridge.

    Flow:
    1. Connect and start a reader task
    2. Send requests, each with a fresh id
    3. Resolve the waiting request when a reply with its id arrives
    """

    def __init__(self, url: str = DEFAULT_URL):
        self.url = url
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._ids = itertools.count(1)
        self._waiting: Dict[int, asyncio.Future] = {}

    async def __aenter__(self) -> "BridgeClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def connect(self) -> None:
        self._ws = await websockets.connect(self.url, max_size=None)
        self._reader = asyncio.create_task(self._read_loop())
        logger.info(f"Connected to bridge: {self.url}")

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._reader is not None:
            await self._reader
            self._reader = None

    async def request(self, name: str, arguments: Optional[Dict[str, str]] = None) -> Response:
        if self._ws is None:
            raise RuntimeError("Not connected to bridge")
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._waiting[request_id] = future
        try:
            # A finished reader no longer resolves futures registered after it.
            if self._reader is None or self._reader.done():
                raise ConnectionError("Bridge connection closed")
            await self._ws.send(build_request(request_id, name, arguments))
            return await future
        finally:
            self._waiting.pop(request_id, None)

    async def get_version(self) -> str:
        payload = unwrap(await self.request("getVersion"))
        return payload if isinstance(payload, str) else payload.decode("utf-8")

    async def convert_ajt_to_jt(self, tool_path: str, source: str) -> bytes:
        payload = unwrap(await self.request("convertAjtToJt", {"ajt2jt": tool_path, "ajtSource": source}))
        if isinstance(payload, str):
            try:
                return base64.b64decode(payload, validate=True)
            except binascii.Error as e:
                raise BridgeError(f"Malformed JT payload: {e}") from e
        return payload

    async def _read_loop(self) -> None:
        try:
            async for message in self._ws:
                try:
                    response = parse_frame(message)
                except BridgeError as e:
                    logger.warning(f"Dropping unreadable frame: {e}")
                    continue
                future = self._waiting.get(response.correlation_id)
                if future is None or future.done():
                    logger.warning(f"Unmatched response id {response.correlation_id}")
                    continue
                future.set_result(response)
        except ConnectionClosed as e:
            logger.warning(f"Connection closed: {e}")
        finally:
            for future in self._waiting.values():
                if not future.done():
                    future.set_exception(ConnectionError("Bridge connection closed"))


async def fetch_version(url: str = DEFAULT_URL) -> str:
    async with BridgeClient(url) as client:
        return await client.get_version()


async def convert_file(tool_path: str, source: str, url: str = DEFAULT_URL) -> bytes:
    async with BridgeClient(url) as client:
        return await client.convert_ajt_to_jt(tool_path, source)


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point for talking to a running bridge."""
    parser = argparse.ArgumentParser(description="Send commands to a JT bridge")
    parser.add_argument("--url", default=DEFAULT_URL, help="Bridge WebSocket URL")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("version", help="Print the bridge version")
    convert = sub.add_parser("convert", help="Convert an AJT file into JT")
    convert.add_argument("--tool", required=True, help="Path to the ajt2jt executable")
    convert.add_argument("source", help="AJT input file")
    convert.add_argument("target", help="JT output file")

    args = parser.parse_args(argv)
    try:
        if args.command == "version":
            print(asyncio.run(fetch_version(args.url)))
        else:
            with open(args.source, "r", encoding="utf-8") as f:
                source = f.read()
            jt = asyncio.run(convert_file(args.tool, source, args.url))
            with open(args.target, "wb") as f:
                f.write(jt)
            print(f"Wrote {len(jt)} bytes to {args.target}")
    except (BridgeError, OSError, WebSocketException) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
