import asyncio
import logging
import warnings
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Deque

from .config import Limits, Timeout
from .errors import PoolClosedError, PoolTimeoutError
from .protocol import Connection

__all__ = ("Pool",)

logger = logging.getLogger(__name__)

Factory = Callable[[], Awaitable[Connection]]


class Pool:
    """
    Bounded pool of logged in control connections.

    Callers borrow a connection, use it alone, and hand it back. The pool
    never has more than ``limits.connections`` sockets alive, counting the
    idle ones and the ones out on loan. When everything is busy, borrowers
    queue up and get served oldest first.

    All bookkeeping happens between awaits on one event loop, so there's
    no lock. The only await inside borrow is the dial (or the wait for a
    hand-off), and the live slot is reserved before it.

    A waiter's future resolves to one of three things: a connection someone
    just returned, ``None`` meaning "a slot opened up, dial your own", or a
    :py:class:`PoolClosedError`.
    """

    def __init__(self, factory: Factory, limits: Limits, timeout: Timeout) -> None:
        self.factory = factory
        self.limits = limits
        self.timeout = timeout
        self.connections: Deque[Connection] = deque()  # idle, oldest first
        self.waiters: Deque[asyncio.Future] = deque()
        self.live = 0  # idle + leased + being dialed
        self.dialed = 0
        self.closed = False

    @property
    def idle(self) -> int:
        return len(self.connections)

    async def open(self) -> None:
        """Dial up to ``limits.minimum`` connections ahead of time.

        Raises:
            DialError: At least one of the dials failed; the ones that
                       worked stay in the pool
        """
        if self.closed:
            raise PoolClosedError("Pool is closed")

        count = self.limits.minimum - self.live
        if count <= 0:
            return

        self.live += count
        results = await asyncio.gather(
            *(self.dial() for _ in range(count)), return_exceptions=True
        )
        errors = []
        for result in results:
            if isinstance(result, BaseException):
                errors.append(result)
            else:
                self.put(result)
        if errors:
            raise errors[0]

    async def borrow(self) -> Connection:
        """Get a connection for exclusive use.

        Prefers an idle connection, then dials a new one if there's room,
        and otherwise waits for somebody to return one.

        Returns:
            Connection: Logged in, with a fresh lease started

        Raises:
            PoolTimeoutError: Nothing came free within ``timeout.pool``
            PoolClosedError: The pool is (or got) closed
            DialError: A new connection had to be dialed and that failed
        """
        if self.closed:
            raise PoolClosedError("Pool is closed")

        if self.connections:
            connection = self.connections.popleft()
        elif self.live < self.limits.connections:
            self.live += 1
            connection = await self.dial()
        else:
            connection = await self.wait()

        connection.lease()
        return connection

    async def wait(self) -> Connection:
        future = asyncio.get_running_loop().create_future()
        self.waiters.append(future)
        try:
            await asyncio.wait((future,), timeout=self.timeout.pool)
        except BaseException:
            self.abandon(future)
            raise

        if not future.done():
            self.abandon(future)
            raise PoolTimeoutError(
                f"No connection available within {self.timeout.pool} seconds"
            )

        connection = future.result()
        if connection is None:
            # A slot was freed and reserved for us
            connection = await self.dial()
        return connection

    def abandon(self, future: asyncio.Future) -> None:
        """Withdraw a waiter, passing on anything handed to it in the meantime."""
        if not future.done():
            future.cancel()
            self.waiters.remove(future)
        elif not future.cancelled() and future.exception() is None:
            connection = future.result()
            if connection is None:
                self.live -= 1
                self.vacate()
            else:
                self.put(connection)

    async def dial(self) -> Connection:
        # The caller has already counted this connection in ``live``
        try:
            connection = await self.factory()
        except BaseException:
            self.live -= 1
            self.vacate()
            raise
        self.dialed += 1
        logger.debug("Dialed connection #%d (%d live)", self.dialed, self.live)

        if self.closed:
            self.live -= 1
            connection.close()
            raise PoolClosedError("Pool closed while dialing")
        return connection

    def put(self, connection: Connection) -> None:
        """Hand a healthy connection to the oldest waiter, or park it.

        Once the pool is closed there is nobody to hand it to and nowhere
        to park it, so it gets closed instead.
        """
        if self.closed:
            self.live -= 1
            connection.close()
            return
        while self.waiters:
            waiter = self.waiters.popleft()
            if not waiter.done():
                waiter.set_result(connection)
                return
        self.connections.append(connection)

    def vacate(self) -> None:
        """Give a free slot to the oldest waiter, who will dial with it."""
        if self.closed:
            return
        while self.waiters:
            waiter = self.waiters.popleft()
            if not waiter.done():
                self.live += 1
                waiter.set_result(None)
                return

    def release(self, connection: Connection, healthy: bool) -> None:
        """Return a borrowed connection.

        Args:
            connection: What :py:meth:`borrow` gave you
            healthy: False throws the connection away and frees its slot
        """
        if self.closed or not healthy:
            self.live -= 1
            connection.close()
            logger.debug("Discarded connection (%d live)", self.live)
            self.vacate()
        else:
            self.put(connection)

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[Connection]:
        """Borrow a connection for the ``async with`` block and always return it.

        Ordinary exceptions from inside the block leave the verdict to the
        connection itself, which flags itself broken on anything that
        leaves the control channel in doubt. Cancellation always discards it.
        """
        connection = await self.borrow()
        healthy = False
        try:
            yield connection
            healthy = True
        except Exception:
            healthy = True
            raise
        finally:
            self.release(connection, healthy and connection.healthy)

    async def close(self) -> None:
        """Shut the pool down.

        Waiting borrowers fail with :py:class:`PoolClosedError`, idle
        connections get a QUIT, and leased ones are closed as they come
        back. Calling it twice is harmless.
        """
        if self.closed:
            return
        self.closed = True

        while self.waiters:
            waiter = self.waiters.popleft()
            if not waiter.done():
                waiter.set_exception(PoolClosedError("Pool closed"))

        connections = list(self.connections)
        self.connections.clear()
        self.live -= len(connections)
        for connection in connections:
            try:
                await connection.quit()
            except Exception as error:
                warnings.warn(f"Error closing pooled connection: {error}")
