"""Stdio transport for MCP: newline-delimited JSON-RPC on stdin/stdout."""

import asyncio
import logging
import os
import stat
import sys
from typing import IO, Protocol

from daedra.mcp.connection import Connection
from daedra.mcp.errors import TransportClosedError
from daedra.mcp.jsonrpc import JsonRpcProcessor

logger = logging.getLogger(__name__)

DEFAULT_WRITE_TIMEOUT = 10.0
DEFAULT_MAX_MESSAGE_BYTES = 4 * 1024 * 1024
READ_CHUNK_BYTES = 64 * 1024

# Keeps file feeder tasks referenced until they finish
_feeders: set[asyncio.Task] = set()


class MessageWriter(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class FileWriter:
    """Writes messages to a regular file, such as stdout redirected to disk.

    Event loop pipe transports refuse regular files, so writes happen on a
    worker thread instead.
    """

    def __init__(self, fd: int):
        self._fd = fd
        self._pending: list[bytes] = []

    def write(self, data: bytes) -> None:
        self._pending.append(data)

    async def drain(self) -> None:
        data = b"".join(self._pending)
        self._pending.clear()
        if data:
            await asyncio.get_running_loop().run_in_executor(None, self._write_all, data)

    def _write_all(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = os.write(self._fd, view)
            view = view[written:]

    def close(self) -> None:
        # The file belongs to the caller
        self._pending.clear()


async def _feed_from_file(reader: asyncio.StreamReader, fd: int) -> None:
    loop = asyncio.get_running_loop()
    try:
        while True:
            chunk = await loop.run_in_executor(None, os.read, fd, READ_CHUNK_BYTES)
            if not chunk:
                break
            reader.feed_data(chunk)
    except OSError as e:
        logger.warning(f"Reading stdin failed: {e}")
    finally:
        reader.feed_eof()


def _is_regular_file(stream: IO) -> bool:
    return stat.S_ISREG(os.fstat(stream.fileno()).st_mode)


async def open_stdio_streams(
    limit: int = DEFAULT_MAX_MESSAGE_BYTES,
    stdin: IO | None = None,
    stdout: IO | None = None,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter | FileWriter]:
    """Wrap the process stdin/stdout in asyncio streams.

    Pipes, sockets and terminals are attached to the event loop directly.
    Regular files (``daedra serve < requests.jsonl > out.jsonl``) are read
    and written from worker threads.
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    loop = asyncio.get_running_loop()

    reader = asyncio.StreamReader(limit=limit)
    if _is_regular_file(stdin):
        task = asyncio.create_task(_feed_from_file(reader, stdin.fileno()))
        _feeders.add(task)
        task.add_done_callback(_feeders.discard)
    else:
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, stdin)

    if _is_regular_file(stdout):
        # Anything already buffered must land before our own writes
        stdout.flush()
        return reader, FileWriter(stdout.fileno())

    w_transport, w_protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin, stdout
    )
    writer = asyncio.StreamWriter(w_transport, w_protocol, None, loop)
    return reader, writer


class StdioTransport:
    """One MCP connection over a line-oriented byte stream pair.

    Nothing but serialized JSON-RPC messages is ever written to the output
    stream; diagnostics go to the log on stderr.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: MessageWriter,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
    ):
        self._reader = reader
        self._writer = writer
        self._write_lock = asyncio.Lock()
        self._closed = False
        self.write_timeout = write_timeout

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def receive(self) -> bytes | None:
        """Return the next non-blank line, or None at end of input.

        Lines longer than the reader's limit are discarded whole.
        """
        while True:
            try:
                line = await self._reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                # EOF; a final line without a newline still counts
                line = e.partial
                if not line.strip():
                    return None
            except asyncio.LimitOverrunError as e:
                logger.warning("Dropped message exceeding the maximum message size")
                if not await self._discard_line(e.consumed):
                    return None
                continue

            line = line.strip()
            if line:
                return line

    async def _discard_line(self, consumed: int) -> bool:
        """Skip the rest of an over-long line. False when input ended."""
        try:
            await self._reader.readexactly(consumed)
            while True:
                try:
                    await self._reader.readuntil(b"\n")
                    return True
                except asyncio.LimitOverrunError as e:
                    await self._reader.readexactly(e.consumed)
        except asyncio.IncompleteReadError:
            return False

    async def send(self, message: str) -> None:
        """
        Write one message followed by a newline.

        Raises:
            TransportClosedError: Output is broken or the write timed out.
        """
        if self._closed:
            raise TransportClosedError("Output stream is closed")

        data = (message + "\n").encode("utf-8")
        async with self._write_lock:
            try:
                self._writer.write(data)
                await asyncio.wait_for(self._writer.drain(), timeout=self.write_timeout)
            except asyncio.TimeoutError:
                self._closed = True
                raise TransportClosedError(
                    f"Write timed out after {self.write_timeout}s"
                ) from None
            except (ConnectionError, OSError) as e:
                self._closed = True
                raise TransportClosedError(f"Output stream failed: {e}") from e

    async def _handle(
        self, processor: JsonRpcProcessor, connection: Connection, raw: bytes
    ) -> None:
        response = await processor.handle_message(raw, connection)
        if response is None:
            return
        if response.id is None:
            # A parse error without a recoverable id has nobody to go to
            logger.warning(f"Not sending unaddressable error: {response.error.message}")
            return

        try:
            await self.send(processor.serialize_response(response))
        except TransportClosedError as e:
            logger.warning(f"Closing stdio connection: {e}")
            connection.close()

    async def serve(self, processor: JsonRpcProcessor, connection: Connection) -> None:
        """
        Serve one connection until end of input.

        Until the handshake completes messages are handled one at a time, in
        order. After that each message gets its own task, so a slow tool call
        does not hold up the rest.
        """
        tasks: set[asyncio.Task] = set()
        try:
            while not connection.is_closed:
                raw = await self.receive()
                if raw is None:
                    logger.info("End of input on stdin")
                    break

                if connection.is_ready:
                    task = asyncio.create_task(self._handle(processor, connection, raw))
                    tasks.add(task)
                    task.add_done_callback(tasks.discard)
                else:
                    await self._handle(processor, connection, raw)

            # Flush responses for requests still being processed
            if tasks and not connection.is_closed:
                await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            for task in tasks:
                task.cancel()
            connection.close()
