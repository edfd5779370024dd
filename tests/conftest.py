"""Shared fixtures for the bridge tests.

Puts ``src/`` on sys.path so ``import jt_bridge`` works from a plain checkout,
and provides fake converters for tests that must not spawn a real tool.
"""

import os
import sys
import threading

import pytest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
SRC = os.path.join(PROJECT_ROOT, "src")

if SRC not in sys.path:
    sys.path.insert(0, SRC)


class FakeConverter:
    """Stands in for the ajt2jt subprocess.

    ``gates`` maps a source text to an event the call waits on, which lets a
    test hold one conversion while others complete.
    """

    def __init__(self, result: bytes = b"JT-BYTES", error: Exception | None = None, gates=None):
        self.result = result
        self.error = error
        self.gates: dict[str, threading.Event] = gates or {}
        self.calls: list[tuple[str, str]] = []

    def convert(self, tool_path: str, source_text: str) -> bytes:
        self.calls.append((tool_path, source_text))
        gate = self.gates.get(source_text)
        if gate is not None:
            gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def fake_converter() -> FakeConverter:
    return FakeConverter()


@pytest.fixture
def tool_file(tmp_path) -> str:
    """An existing file usable as the converter path when the converter is faked."""
    path = tmp_path / "ajt2jt"
    path.write_text("")
    return str(path)


@pytest.fixture
def make_tool(tmp_path):
    """Write an executable shell script acting as the converter.

    The script receives the source path as $1 and the target path as $2.
    """

    def _make(body: str, name: str = "ajt2jt.sh") -> str:
        path = tmp_path / name
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(0o755)
        return str(path)

    return _make


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path
