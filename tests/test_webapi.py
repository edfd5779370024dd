import json
import logging
import os
import struct
import threading

import pytest
from fastapi.testclient import TestClient

from jt_bridge import __version__
from jt_bridge.conversion import SubprocessAjtConverter
from jt_bridge.protocol import Status, decode_response
from jt_bridge.webapi import VERSION, create_app, resolve_log_level

from conftest import FakeConverter

posix_only = pytest.mark.skipif(os.name != "posix", reason="fake converter is a POSIX shell script")


def message(request_id: int, name: str, arguments: dict | None = None) -> str:
    return json.dumps({"id": request_id, "command": {"name": name, "arguments": arguments or {}}})


@pytest.fixture
def client(fake_converter):
    with TestClient(create_app(fake_converter, version="3.1.4")) as c:
        yield c


def test_health_check(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_default_version_is_configured_version():
    with TestClient(create_app(FakeConverter())) as client:
        with client.websocket_connect("/") as ws:
            ws.send_text(message(1, "getVersion"))
            assert decode_response(ws.receive_bytes()).payload == VERSION.encode("utf-8")
    assert VERSION == os.getenv("JT_BRIDGE_VERSION", __version__)


def test_get_version_frame(client: TestClient):
    with client.websocket_connect("/") as ws:
        ws.send_text(message(1, "getVersion"))
        assert ws.receive_bytes() == struct.pack("<i", 1) + b"\x00" + b"3.1.4"


def test_get_version_with_arguments_is_unchanged(client: TestClient):
    with client.websocket_connect("/") as ws:
        ws.send_text(message(11, "getVersion", {"ajt2jt": "x", "other": "y"}))
        response = decode_response(ws.receive_bytes())
    assert (response.correlation_id, response.status, response.payload) == (11, Status.OK, b"3.1.4")


def test_unknown_command_then_connection_still_usable(client: TestClient):
    with client.websocket_connect("/") as ws:
        ws.send_text(message(2, "bogus"))
        assert ws.receive_bytes() == struct.pack("<i", 2) + b"\x01" + b"Invalid command."

        ws.send_text(message(3, "getVersion"))
        response = decode_response(ws.receive_bytes())
        assert response.correlation_id == 3
        assert response.status is Status.OK


def test_malformed_message_yields_invalid_command(client: TestClient):
    with client.websocket_connect("/") as ws:
        ws.send_text('{"id": 12, "command": {}}')
        response = decode_response(ws.receive_bytes())
        assert (response.correlation_id, response.status, response.payload) == (12, Status.ERROR, b"Invalid command.")

        ws.send_text("garbage")
        response = decode_response(ws.receive_bytes())
        assert (response.correlation_id, response.payload) == (0, b"Invalid command.")


def test_convert_with_missing_tool(client: TestClient):
    with client.websocket_connect("/") as ws:
        ws.send_text(message(3, "convertAjtToJt", {"ajt2jt": "/no/such/tool", "ajtSource": "X"}))
        frame = ws.receive_bytes()
    assert frame == struct.pack("<i", 3) + b"\x01" + b"Path '/no/such/tool' to AJT to JT converter is not valid."


def test_convert_with_blank_source(client: TestClient, tool_file):
    with client.websocket_connect("/") as ws:
        ws.send_text(message(4, "convertAjtToJt", {"ajt2jt": tool_file, "ajtSource": "   "}))
        response = decode_response(ws.receive_bytes())
    assert response.status is Status.ERROR
    assert response.payload == b"No AJT data provided."


def test_convert_returns_raw_jt_bytes(client: TestClient, fake_converter, tool_file):
    fake_converter.result = b"\x00\xffJT\x01"
    with client.websocket_connect("/") as ws:
        ws.send_text(message(5, "convertAjtToJt", {"ajt2jt": tool_file, "ajtSource": "geometry"}))
        frame = ws.receive_bytes()
    assert frame == struct.pack("<i", 5) + b"\x00" + b"\x00\xffJT\x01"
    assert fake_converter.calls == [(tool_file, "geometry")]


def test_responses_follow_completion_order_not_arrival_order(tool_file):
    gate = threading.Event()
    converter = FakeConverter(gates={"slow": gate})
    with TestClient(create_app(converter, version="1")) as client:
        with client.websocket_connect("/") as ws:
            ws.send_text(message(1, "convertAjtToJt", {"ajt2jt": tool_file, "ajtSource": "slow"}))
            ws.send_text(message(2, "getVersion"))

            first = decode_response(ws.receive_bytes())
            gate.set()
            second = decode_response(ws.receive_bytes())

    assert first.correlation_id == 2
    assert second.correlation_id == 1
    assert second.payload == b"JT-BYTES"


def test_each_connection_is_independent(client: TestClient):
    with client.websocket_connect("/") as first, client.websocket_connect("/") as second:
        first.send_text(message(1, "bogus"))
        second.send_text(message(1, "getVersion"))
        assert decode_response(second.receive_bytes()).status is Status.OK
        assert decode_response(first.receive_bytes()).status is Status.ERROR


def test_json_framing_answers_with_text(fake_converter):
    with TestClient(create_app(fake_converter, version="3.1.4", framing="json")) as client:
        with client.websocket_connect("/") as ws:
            ws.send_text(message(7, "getVersion"))
            assert json.loads(ws.receive_text()) == {"Id": 7, "Command": None, "Data": "3.1.4", "Error": None}


def test_unknown_framing_is_rejected(fake_converter):
    with pytest.raises(ValueError):
        create_app(fake_converter, framing="xml")


@posix_only
def test_end_to_end_conversion_with_real_subprocess(make_tool, work_dir):
    tool = make_tool('cat "$1" > "$2"')
    failing = make_tool('echo "  unsupported entity  " >&2', name="broken.sh")
    app = create_app(SubprocessAjtConverter(temp_dir=str(work_dir)), version="1")
    with TestClient(app) as client:
        with client.websocket_connect("/") as ws:
            ws.send_text(message(8, "convertAjtToJt", {"ajt2jt": tool, "ajtSource": "body 1"}))
            ok = decode_response(ws.receive_bytes())
            ws.send_text(message(9, "convertAjtToJt", {"ajt2jt": failing, "ajtSource": "body 2"}))
            failed = decode_response(ws.receive_bytes())

    assert (ok.correlation_id, ok.status, ok.payload) == (8, Status.OK, b"body 1")
    assert (failed.correlation_id, failed.status, failed.payload) == (9, Status.ERROR, b"unsupported entity")
    assert list(work_dir.iterdir()) == []


def test_deeply_nested_payload_gets_invalid_command_and_session_survives(client: TestClient):
    with client.websocket_connect("/") as ws:
        ws.send_text("[" * 100000)
        assert ws.receive_bytes() == struct.pack("<i", 0) + b"\x01" + b"Invalid command."

        ws.send_text(message(9, "getVersion"))
        response = decode_response(ws.receive_bytes())
    assert (response.correlation_id, response.status, response.payload) == (9, Status.OK, b"3.1.4")


def test_upper_case_keys_and_numeric_arguments_are_accepted(client: TestClient):
    with client.websocket_connect("/") as ws:
        ws.send_text('{"ID": 13, "COMMAND": {"NAME": "getVersion", "ARGUMENTS": {"a": 1}}}')
        response = decode_response(ws.receive_bytes())
    assert (response.correlation_id, response.status, response.payload) == (13, Status.OK, b"3.1.4")


@pytest.mark.parametrize(
    "name, expected",
    [
        ("trace", ("trace", 5)),
        ("DEBUG", ("debug", logging.DEBUG)),
        (" warning ", ("warning", logging.WARNING)),
        ("verbose", ("info", logging.INFO)),
        ("", ("info", logging.INFO)),
    ],
)
def test_resolve_log_level(name, expected):
    assert resolve_log_level(name) == expected
