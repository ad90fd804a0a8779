"""Shared fixtures: fake probe tools written as shell scripts."""

import asyncio

import pytest

HOST_UP = 'echo "44 bytes from $5 id 0 time 4.21ms"'
HOST_DOWN = 'echo "Can\'t connect: Host is down" >&2\nexit 1'
SILENT = "exit 0"
HANG = "exec sleep 30"
# Shell stays the parent: killing only its pid would leave sleep holding the pipes
WRAPPER = "sleep 30"


@pytest.fixture
def make_tool(tmp_path):
    """Write an executable shell script and return its path."""

    def _make(name: str, body: str) -> str:
        path = tmp_path / name
        path.write_text(f"#!/bin/sh\n{body}\n")
        path.chmod(0o755)
        return str(path)

    return _make


@pytest.fixture
def lookup_ok(make_tool):
    return make_tool("which", "exit 0")


async def wait_until(predicate, timeout: float = 5.0) -> None:
    """Poll until predicate() is true or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
