import socket
from typing import List

import aioftp
import pytest
import pytest_asyncio

from ftpool import Basic, Config, Connection, Ftp, Limits, Timeout

USER = "user"
PASSWORD = "secret"


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class ScriptedStream:
    """
    Stand-in for aioftp's StreamIO that plays back canned server lines.

    Everything the connection writes ends up in ``written``, decoded and
    without line terminators.
    """

    def __init__(self, lines: List[str]) -> None:
        self.lines = list(lines)
        self.written: List[str] = []
        self.closed = False

    async def readline(self) -> bytes:
        if not self.lines:
            return b""
        line = self.lines.pop(0)
        if isinstance(line, BaseException):
            raise line
        return line.encode("utf-8") + b"\r\n"

    async def read(self, count: int = -1) -> bytes:
        return await self.readline()

    async def write(self, data: bytes) -> None:
        self.written.append(data.decode("utf-8").rstrip("\r\n"))

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def scripted():
    """Build a Connection whose server side is a list of reply lines."""

    def build(*lines, **kwargs):
        kwargs.setdefault("host", "ftp.example.com")
        stream = ScriptedStream(lines)
        connection = Connection(stream, Config(**kwargs))
        connection.cwd = "/"
        connection.lease()
        return connection

    return build


@pytest.fixture
def root(tmp_path):
    """Server file tree: a couple of files and a directory."""
    base = tmp_path / "root"
    base.mkdir()
    (base / "hello.txt").write_bytes(b"hello world\n")
    (base / "with space.bin").write_bytes(bytes(range(256)) * 4)
    (base / "docs").mkdir()
    (base / "docs" / "guide.txt").write_bytes(b"read me")
    return base


@pytest.fixture
def port():
    return free_port()


@pytest_asyncio.fixture
async def server(root, port):
    users = [
        aioftp.User(
            login=USER,
            password=PASSWORD,
            base_path=root,
            home_path="/",
            permissions=[aioftp.Permission("/", readable=True, writable=True)],
        )
    ]
    instance = aioftp.Server(users)
    await instance.start(host="127.0.0.1", port=port)
    yield instance
    await instance.close()


@pytest.fixture
def ftp(server, port):
    """Factory for Ftp objects pointed at the test server."""

    def build(**kwargs):
        kwargs.setdefault("auth", Basic(USER, PASSWORD))
        kwargs.setdefault("limits", Limits(connections=2))
        kwargs.setdefault("timeout", Timeout(connect=2.0, read=5.0, write=5.0, pool=5.0))
        return Ftp(f"ftp://127.0.0.1:{port}", **kwargs)

    return build


@pytest_asyncio.fixture
async def client(ftp):
    async with ftp().client() as instance:
        yield instance
