from typing import Optional

from .reply import Reply


class FtpError(Exception):
    """Base class for everything FtpPool raises on purpose."""


class DialError(FtpError, ConnectionError):
    """
    Couldn't open or log into a control connection.

    Raised by the pool when building a fresh connection fails, whether
    the TCP connect timed out, the greeting was wrong, or TLS setup broke.
    Never retried automatically.
    """


class AuthError(DialError):
    """The server turned down the credentials (usually a 530)."""


class PoolTimeoutError(FtpError, TimeoutError):
    """No connection became free within the configured pool timeout."""


class PoolClosedError(FtpError, RuntimeError):
    """The pool was closed while (or before) somebody asked it for a connection."""


class ProtocolError(FtpError):
    """
    The server replied with something we didn't expect.

    Covers both a reply code that doesn't match the command's contract and
    a reply that is structurally broken (bad code prefix, mismatched
    continuation lines, unterminated quoting). The full reply is kept so
    callers can see exactly what the server said.

    Attributes:
        reply: The offending reply, when one was read.
        expected: The code (or codes) the command was waiting for.
    """

    def __init__(
        self,
        message: str,
        reply: Optional[Reply] = None,
        expected: Optional[str] = None,
    ) -> None:
        self.reply = reply
        self.expected = expected
        if reply is not None:
            message = f"{message}: {reply.code} {reply.describe()}\n{reply.message}"
        super().__init__(message)


class ParseError(FtpError, ValueError):
    """
    A directory listing entry could not be turned into a FileRecord.

    Attributes:
        entry: The raw listing line that failed.
    """

    def __init__(self, message: str, entry: str) -> None:
        self.entry = entry
        super().__init__(f"{message}: {entry}")


class MalformedEntryError(ParseError):
    """The entry breaks the listing grammar (bad facts, numbers or timestamp)."""


class IncompleteEntryError(ParseError):
    """The entry is well formed but misses a fact we need (type, modify, size)."""


class TransientError(FtpError, ConnectionError):
    """
    Network-level failure while talking to the server.

    The connection it happened on is in an unknown state and gets thrown
    away. ``stale`` is True when nothing had been exchanged on the current
    lease yet, which is the only case the client retries on its own.
    """

    def __init__(self, message: str, stale: bool = False) -> None:
        self.stale = stale
        super().__init__(message)
