import asyncio
from typing import TYPE_CHECKING, AsyncIterator

from aioftp.common import DEFAULT_BLOCK_SIZE, StreamIO

if TYPE_CHECKING:
    from .protocol import Connection


class DataConnection:
    """
    The data side of a single transfer.

    Created by :py:meth:`Connection.transfer` once the server has accepted
    the transfer verb. Read or write through it, then call :py:meth:`finish`
    (or use it as an async context manager) so the completion reply gets
    read off the control channel. Until that happens the control connection
    counts as busy, and the pool won't reuse it.
    """

    def __init__(self, connection: "Connection", stream: StreamIO) -> None:
        self.connection = connection
        self.stream = stream
        self.closed = False

    async def read(self, count: int = -1) -> bytes:
        try:
            return await self.stream.read(count)
        except (OSError, asyncio.TimeoutError) as error:
            raise self.abort(error)

    async def readline(self) -> bytes:
        try:
            return await self.stream.readline()
        except (OSError, asyncio.TimeoutError, ValueError) as error:
            raise self.abort(error)

    async def iter_by_block(self, size: int = DEFAULT_BLOCK_SIZE) -> AsyncIterator[bytes]:
        """Yield chunks of at most ``size`` bytes until the server closes the stream."""
        while True:
            block = await self.read(size)
            if not block:
                break
            yield block

    async def write(self, data: bytes) -> None:
        try:
            await self.stream.write(data)
        except (OSError, asyncio.TimeoutError) as error:
            raise self.abort(error)

    def abort(self, error: BaseException) -> Exception:
        self.close()
        return self.connection.fail(error)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.stream.close()

    async def finish(self) -> None:
        """Close the data stream and wait for the server's completion reply."""
        self.close()
        await self.connection.complete()
        self.connection.pending = None

    async def __aenter__(self) -> "DataConnection":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is None:
            await self.finish()
        else:
            # Control channel still owes us a reply we'll never read
            self.close()
            self.connection.broken = True
