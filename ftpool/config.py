import codecs
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Tuple, Union

from .auth import Basic, Guest
from .settings import SSL

HookType = Callable[..., Awaitable[Any]]
Stub = Tuple[int, str]

# Events a client will call back into
EVENTS = ("connect", "release", "error")

PASSIVE = ("epsv", "pasv")


@dataclass(frozen=True)
class Limits:
    """
    Connection limits for the pool.

    Every control connection is a live TCP socket and a logged in session on
    the server, and plenty of servers cap sessions per user, so keep these
    modest. The pool never holds more than ``connections`` sockets, idle and
    leased together.

    Attributes:
        connections: Maximum live control connections at any time.
        minimum: Connections dialed up front when the client opens, so the
                 first operations don't pay the login round trips.
    """

    connections: int = 5  # Maximum live control connections
    minimum: int = 0  # Connections opened eagerly

    def __post_init__(self) -> None:
        if self.connections <= 0:
            raise ValueError("Total connections must be positive")

        if self.minimum < 0:
            raise ValueError("Minimum connections cannot be negative")

        if self.minimum > self.connections:
            raise ValueError("Minimum connections cannot exceed total connections")


@dataclass(frozen=True)
class Timeout:
    """
    Timeout configuration for FTP operations.

    Each phase gets its own budget, and running out of any of them raises
    rather than hanging forever. Timeouts on read or write leave the
    control channel in an unknown state, so the connection that hit one is
    thrown away.

    Attributes:
        connect: Time to wait for the TCP (and TLS) handshake, control and
                 data connections alike.
        read: Time to wait for each read from the server, replies and data.
        write: Time to wait for each write to the server.
        pool: Time a caller waits for a free connection when every one of
              them is busy.
    """

    connect: float = 5.0  # Time to wait for connection establishment
    read: float = 30.0  # Time to wait for each read
    write: float = 10.0  # Time to wait for each write
    pool: float = 60.0  # Time to wait for a free pooled connection

    def __post_init__(self) -> None:
        if self.connect <= 0:
            raise ValueError("Connect timeout must be positive")
        if self.read <= 0:
            raise ValueError("Read timeout must be positive")
        if self.write <= 0:
            raise ValueError("Write timeout must be positive")
        if self.pool <= 0:
            raise ValueError("Pool timeout must be positive")


@dataclass(frozen=True)
class Config:
    """
    Everything a client needs to know, fixed once the client exists.

    Usually built by :py:class:`ftpool.Ftp` from an ``ftp://`` URL, but it
    can be constructed by hand too. Mappings handed in (stubs and hooks)
    are copied into read-only proxies, so changing the dict you passed in
    afterwards has no effect.

    Attributes:
        host: Server hostname or address.
        port: Control port.
        secure: Implicit TLS from the first byte (``ftps://``).
        auth: Login credentials, anonymous when not given.
        limits: Pool size.
        timeout: Per-phase timeouts.
        ssl: TLS settings, used for implicit and explicit TLS.
        stubs: Canned replies keyed by the exact command line
               (``"MLST /a.txt"``). A stubbed command never reaches the
               server. Meant for tests and fault injection.
        passive: Passive mode commands in the order to try them.
        encoding: Encoding of paths and reply text on the wire.
        hooks: Async callbacks for "connect", "release" and "error".
    """

    host: str
    port: int = 21
    secure: bool = False
    auth: Union[Basic, Guest] = field(default_factory=Guest)
    limits: Limits = field(default_factory=Limits)
    timeout: Timeout = field(default_factory=Timeout)
    ssl: SSL = field(default_factory=SSL)
    stubs: Mapping[str, Stub] = field(default_factory=dict)
    passive: Tuple[str, ...] = PASSIVE
    encoding: str = "utf-8"
    hooks: Mapping[str, HookType] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError("Host cannot be empty")

        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}")

        if not isinstance(self.auth, (Basic, Guest)):
            raise ValueError("FTP only supports Basic or Guest authentication")

        passive = tuple(verb.lower() for verb in self.passive)
        if not passive:
            raise ValueError("At least one passive command is required")
        for verb in passive:
            if verb not in PASSIVE:
                raise ValueError(f"Unsupported passive command: {verb}")

        try:
            codecs.lookup(self.encoding)
        except LookupError:
            raise ValueError(f"Unknown encoding: {self.encoding}") from None

        for line, stub in self.stubs.items():
            code = int(stub[0])
            if not 100 <= code <= 599:
                raise ValueError(f"Invalid reply code in stub for {line!r}: {code}")

        for event, hook in self.hooks.items():
            if event not in EVENTS:
                raise ValueError(f"Unknown hook event: {event}")
            if not callable(hook):
                raise ValueError(f"Hook for {event} must be callable")

        # Frozen dataclass, so normalized values go in through object.__setattr__
        object.__setattr__(self, "passive", passive)
        object.__setattr__(self, "stubs", MappingProxyType(dict(self.stubs)))
        object.__setattr__(self, "hooks", MappingProxyType(dict(self.hooks)))
