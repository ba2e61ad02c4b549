"""Tests for the stdio transport."""

import asyncio
import json
import os
import subprocess
import sys

import pytest

from daedra.mcp.connection import Connection, TransportKind
from daedra.mcp.errors import PARSE_ERROR, TransportClosedError
from daedra.mcp.transport_stdio import StdioTransport


class FakeWriter:
    """Collects everything written to the protocol output."""

    def __init__(self):
        self.buffer = bytearray()

    def write(self, data: bytes) -> None:
        self.buffer.extend(data)

    async def drain(self) -> None:
        await asyncio.sleep(0)

    @property
    def messages(self) -> list[dict]:
        return [json.loads(line) for line in self.buffer.decode("utf-8").splitlines()]


class BrokenWriter(FakeWriter):
    def write(self, data: bytes) -> None:
        raise BrokenPipeError("reader went away")


class StalledWriter(FakeWriter):
    """A writer whose peer never reads."""

    async def drain(self) -> None:
        await asyncio.Event().wait()


def encode(*messages) -> bytes:
    lines = [m if isinstance(m, str) else json.dumps(m) for m in messages]
    return "".join(line + "\n" for line in lines).encode("utf-8")


def handshake() -> list[dict]:
    return [
        {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "initialize",
            "params": {
                "protocolVersion": "2024-11-05",
                "capabilities": {},
                "clientInfo": {"name": "test", "version": "1.0"},
            },
        },
        {"jsonrpc": "2.0", "method": "notifications/initialized"},
    ]


def make_transport(data: bytes = b"", eof: bool = True, writer=None, limit: int = 2**16, **kwargs):
    reader = asyncio.StreamReader(limit=limit)
    if data:
        reader.feed_data(data)
    if eof:
        reader.feed_eof()
    writer = writer or FakeWriter()
    return StdioTransport(reader, writer, **kwargs), reader, writer


async def wait_for_messages(writer: FakeWriter, count: int) -> None:
    for _ in range(200):
        if len(writer.messages) >= count:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"expected {count} messages, got {len(writer.messages)}")


class TestReceive:
    async def test_skips_blank_lines(self):
        transport, _, _ = make_transport(b"\n   \n{\"a\": 1}\n\n")

        assert await transport.receive() == b'{"a": 1}'
        assert await transport.receive() is None

    async def test_final_line_without_newline(self):
        transport, _, _ = make_transport(b'{"a": 1}\n{"b": 2}')

        assert await transport.receive() == b'{"a": 1}'
        assert await transport.receive() == b'{"b": 2}'
        assert await transport.receive() is None

    async def test_overlong_line_is_discarded(self):
        long_line = b'{"pad": "' + b"x" * 4000 + b'"}\n'
        transport, _, _ = make_transport(long_line + b'{"ok": true}\n', limit=512)

        assert await transport.receive() == b'{"ok": true}'
        assert await transport.receive() is None

    async def test_overlong_line_at_eof(self):
        transport, _, _ = make_transport(b"y" * 4000, limit=512)

        assert await transport.receive() is None


class TestSend:
    async def test_writes_one_line_per_message(self):
        transport, _, writer = make_transport()

        await transport.send('{"jsonrpc":"2.0","id":1,"result":{}}')
        await transport.send('{"jsonrpc":"2.0","id":2,"result":{}}')

        assert writer.buffer == b'{"jsonrpc":"2.0","id":1,"result":{}}\n{"jsonrpc":"2.0","id":2,"result":{}}\n'

    async def test_broken_output_raises_transport_closed(self):
        transport, _, _ = make_transport(writer=BrokenWriter())

        with pytest.raises(TransportClosedError):
            await transport.send("{}")
        assert transport.is_closed

        with pytest.raises(TransportClosedError):
            await transport.send("{}")

    async def test_write_timeout_raises_transport_closed(self):
        transport, _, _ = make_transport(writer=StalledWriter(), write_timeout=0.05)

        with pytest.raises(TransportClosedError, match="timed out"):
            await transport.send("{}")
        assert transport.is_closed


class TestServe:
    async def test_full_session(self, processor):
        data = encode(
            *handshake(),
            {"jsonrpc": "2.0", "id": 2, "method": "tools/list"},
            {
                "jsonrpc": "2.0",
                "id": 3,
                "method": "tools/call",
                "params": {"name": "echo", "arguments": {"message": "hello"}},
            },
            {"jsonrpc": "2.0", "id": 4, "method": "ping"},
        )
        transport, _, writer = make_transport(data)
        connection = Connection(TransportKind.STDIO)

        await transport.serve(processor, connection)

        messages = {m["id"]: m for m in writer.messages}
        assert set(messages) == {1, 2, 3, 4}
        assert messages[1]["result"]["protocolVersion"] == "2024-11-05"
        assert [t["name"] for t in messages[2]["result"]["tools"]] == ["echo", "fail"]
        assert messages[3]["result"]["content"][0]["text"] == "echo: hello"
        assert messages[4]["result"] == {}
        assert all(m["jsonrpc"] == "2.0" for m in messages.values())
        assert connection.is_closed

    async def test_malformed_lines_do_not_end_the_session(self, processor):
        data = encode(
            "this is not json",
            '{"jsonrpc": "2.0", "id": 7, "method": ',
            *handshake(),
            {"jsonrpc": "2.0", "id": 2, "method": "ping"},
        )
        transport, _, writer = make_transport(data)

        await transport.serve(processor, Connection(TransportKind.STDIO))

        messages = writer.messages
        # the id-less parse error has nowhere to go and is not written
        assert [m["id"] for m in messages] == [7, 1, 2]
        assert messages[0]["error"]["code"] == PARSE_ERROR

    async def test_overlong_message_is_dropped(self, processor):
        long_request = {
            "jsonrpc": "2.0",
            "id": 99,
            "method": "ping",
            "params": {"pad": "x" * 4000},
        }
        data = encode(
            *handshake(),
            long_request,
            {"jsonrpc": "2.0", "id": 5, "method": "ping"},
        )
        transport, _, writer = make_transport(data, limit=512)

        await transport.serve(processor, Connection(TransportKind.STDIO))

        assert [m["id"] for m in writer.messages] == [1, 5]

    async def test_requests_after_handshake_run_concurrently(self, processor, spy):
        spy.gate = asyncio.Event()
        data = encode(
            *handshake(),
            {
                "jsonrpc": "2.0",
                "id": 2,
                "method": "tools/call",
                "params": {"name": "echo", "arguments": {"message": "slow"}},
            },
            {"jsonrpc": "2.0", "id": 3, "method": "ping"},
        )
        transport, reader, writer = make_transport(data, eof=False)
        serving = asyncio.create_task(transport.serve(processor, Connection(TransportKind.STDIO)))

        await wait_for_messages(writer, 2)
        assert [m["id"] for m in writer.messages] == [1, 3]

        spy.gate.set()
        reader.feed_eof()
        await serving

        assert [m["id"] for m in writer.messages] == [1, 3, 2]

    async def test_pending_requests_are_answered_at_eof(self, processor):
        data = encode(
            *handshake(),
            {
                "jsonrpc": "2.0",
                "id": 2,
                "method": "tools/call",
                "params": {"name": "echo", "arguments": {"message": "last"}},
            },
        )
        transport, _, writer = make_transport(data)

        await transport.serve(processor, Connection(TransportKind.STDIO))

        assert writer.messages[-1]["id"] == 2

    async def test_broken_output_closes_connection(self, processor):
        data = encode(*handshake(), {"jsonrpc": "2.0", "id": 2, "method": "ping"})
        transport, _, _ = make_transport(data, writer=BrokenWriter())
        connection = Connection(TransportKind.STDIO)

        await transport.serve(processor, connection)

        assert connection.is_closed
        assert transport.is_closed

    async def test_empty_input(self, processor):
        transport, _, writer = make_transport()
        connection = Connection(TransportKind.STDIO)

        await transport.serve(processor, connection)

        assert writer.buffer == b""
        assert connection.is_closed


class TestRunStdio:
    async def test_serves_over_os_pipes(self, server):
        in_read, in_write = os.pipe()
        out_read, out_write = os.pipe()
        os.set_blocking(out_read, False)
        os.write(in_write, encode(*handshake(), {"jsonrpc": "2.0", "id": 2, "method": "ping"}))
        os.close(in_write)

        stdin = open(in_read, "rb", buffering=0)
        stdout = open(out_write, "wb", buffering=0)
        try:
            await server.run_stdio(stdin=stdin, stdout=stdout)
            output = os.read(out_read, 65536)
        finally:
            os.close(out_read)
            for pipe in (stdin, stdout):
                if not pipe.closed:
                    pipe.close()

        lines = output.decode("utf-8").splitlines()
        assert [json.loads(line)["id"] for line in lines] == [1, 2]

    async def test_serves_from_regular_files(self, server, tmp_path):
        requests = tmp_path / "requests.jsonl"
        responses = tmp_path / "responses.jsonl"
        requests.write_bytes(encode(*handshake(), {"jsonrpc": "2.0", "id": 2, "method": "ping"}))

        with open(requests, "rb") as stdin, open(responses, "wb") as stdout:
            await server.run_stdio(stdin=stdin, stdout=stdout)

        lines = responses.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["id"] for line in lines] == [1, 2]


def test_serve_command_with_redirected_files(tmp_path):
    """Test `daedra serve < requests.jsonl > responses.jsonl`."""
    requests = tmp_path / "requests.jsonl"
    responses = tmp_path / "responses.jsonl"
    requests.write_bytes(
        encode(
            *handshake(),
            "not json",
            {"jsonrpc": "2.0", "id": 2, "method": "ping"},
            {"jsonrpc": "2.0", "id": 3, "method": "tools/list"},
        )
    )

    with open(requests, "rb") as stdin, open(responses, "wb") as stdout:
        completed = subprocess.run(
            [sys.executable, "-m", "daedra.cli", "serve"],
            stdin=stdin,
            stdout=stdout,
            stderr=subprocess.PIPE,
            timeout=60,
        )

    assert completed.returncode == 0, completed.stderr.decode()
    messages = [json.loads(line) for line in responses.read_text(encoding="utf-8").splitlines()]
    assert [m["id"] for m in messages] == [1, 2, 3]
    assert messages[1]["result"] == {}
    assert {t["name"] for t in messages[2]["result"]["tools"]} == {"search_duckduckgo", "visit_page"}
