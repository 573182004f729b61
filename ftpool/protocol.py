import asyncio
import logging
import posixpath
from typing import TYPE_CHECKING, List, Optional, Tuple, Union

import aioftp
from aioftp.common import END_OF_LINE, Code, StreamIO

from .errors import AuthError, DialError, FtpError, ProtocolError, TransientError
from .listing import FileRecord, Listing, parse_lines, parse_mlst
from .reply import UNKNOWN, Reply
from .transfer import DataConnection

if TYPE_CHECKING:
    from .config import Config

__all__ = ("Connection", "quote", "unquote")

logger = logging.getLogger(__name__)

Expected = Union[int, Tuple[int, ...]]


def quote(path: str) -> str:
    """Wrap a path in double quotes, doubling any quote inside it (RFC 959 appendix II)."""
    return '"' + path.replace('"', '""') + '"'


def unquote(text: str) -> Optional[str]:
    """
    Pull the quoted path out of a reply line like ``257 "/a ""b"" c" created``.

    Quotes inside the path are doubled (RFC 959 appendix II). Some servers
    don't bother, so a scan that runs off the end without a closing quote
    falls back to everything between the first and the last quote.

    Returns:
        The path with doubled quotes collapsed, or None if the text holds no
        quoted string at all.

    Raises:
        ValueError: The opening quote is never closed.
    """
    start = text.find('"')
    if start < 0:
        return None
    path = []
    index = start + 1
    while index < len(text):
        char = text[index]
        if char == '"':
            if text[index + 1:index + 2] == '"':
                path.append('"')
                index += 2
                continue
            return "".join(path)
        path.append(char)
        index += 1

    end = text.rfind('"')
    if end == start:
        raise ValueError(f"Unterminated quoted path in {text!r}")
    return text[start + 1:end].replace('""', '"')


def parse_pasv(text: str) -> Tuple[str, int]:
    """Read the (h1,h2,h3,h4,p1,p2) grant of a 227 reply."""
    try:
        host, port = aioftp.Client.parse_pasv_response(text)
    except (IndexError, ValueError):
        raise ValueError(f"No address in PASV reply {text!r}") from None
    octets = [int(octet) for octet in host.split(".")]
    if any(not 0 <= octet <= 255 for octet in octets) or not 0 < port < 65536:
        raise ValueError(f"Bad address in PASV reply {text!r}")
    return host, port


def parse_epsv(text: str) -> int:
    """Read the (|||port|) grant of a 229 reply."""
    try:
        _, port = aioftp.Client.parse_epsv_response(text)
    except (IndexError, ValueError):
        raise ValueError(f"No port in EPSV reply {text!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"Bad port in EPSV reply {text!r}")
    return port


class Connection:
    """
    One control connection and everything it has learned about its server.

    The connection is the protocol engine: it frames commands, reads
    complete (possibly multi-line) replies, checks codes and keeps the per
    session state - working directory, listing capability, which passive
    command works. It is never shared; the pool hands it to one caller at a
    time, so none of this needs locking.

    Anything that leaves the control channel in an unknown state (I/O
    errors, timeouts, replies that break a command's contract) sets
    ``broken`` and the pool throws the connection away when it comes back.
    """

    def __init__(self, stream: StreamIO, config: "Config") -> None:
        self.stream = stream
        self.config = config
        self.host: str = config.host
        self.listing: Optional[Listing] = None
        self.passive: List[str] = list(config.passive)
        self.cwd: str = ""
        self.secure: bool = False
        self.leases: int = 0
        self.exchanges: int = 0
        self.broken: bool = False
        self.pending: Optional[DataConnection] = None

    @classmethod
    async def open(cls, config: "Config") -> "Connection":
        """Dial, log in and probe a brand new control connection.

        Args:
            config: Client configuration with the endpoint, credentials,
                    TLS policy and timeouts.

        Returns:
            Connection: Logged in and ready for commands

        Raises:
            AuthError: The server rejected the credentials
            DialError: Anything else went wrong on the way
        """
        kwargs = {}
        if config.secure:
            kwargs["ssl"] = config.ssl.context
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(config.host, config.port, **kwargs),
                timeout=config.timeout.connect,
            )
        except asyncio.TimeoutError:
            raise DialError(
                f"Connection to {config.host}:{config.port} timed out"
            ) from None
        except OSError as error:
            raise DialError(
                f"Failed to connect to {config.host}:{config.port}: {error}"
            ) from error

        stream = StreamIO(
            reader,
            writer,
            read_timeout=config.timeout.read,
            write_timeout=config.timeout.write,
        )
        connection = cls(stream, config)
        connection.secure = config.secure
        try:
            await connection.login()
        except AuthError:
            connection.close()
            raise
        except FtpError as error:
            connection.close()
            raise DialError(f"Failed to set up FTP session: {error}") from error
        except BaseException:
            connection.close()
            raise
        return connection

    async def login(self) -> None:
        """Greeting, optional TLS upgrade, USER/PASS, binary mode and feature probe."""
        reply = await self.read_reply()
        while reply.preliminary:
            reply = await self.read_reply()
        if reply.status != 220:
            raise ProtocolError("Unexpected greeting", reply, "220")

        if self.config.ssl.explicit and not self.secure:
            await self.expect(234, "AUTH", "TLS")
            try:
                await self.stream.start_tls(
                    sslcontext=self.config.ssl.context,
                    server_hostname=self.host,
                )
            except (OSError, asyncio.TimeoutError) as error:
                raise self.fail(error)
            self.secure = True

        if self.secure:
            # Protect the data channel as well
            await self.expect(200, "PBSZ", "0")
            await self.expect(200, "PROT", "P")

        auth = self.config.auth
        reply = await self.send("USER", auth.user)
        if reply.intermediate:
            reply = await self.send("PASS", auth.password)
        if reply.status == 530:
            raise AuthError(f"Login rejected for {auth.user!r}: {reply}")
        if reply.status != 230:
            raise ProtocolError("Login failed", reply, "230")

        await self.expect(200, "TYPE", "I")

        # FEAT is advisory: a server that lists features without MLST never
        # gets an MLSD, everything else is probed on first use
        reply = await self.send("FEAT")
        if reply.status == 211:
            features = {
                line.strip().split(" ")[0].upper()
                for line in reply.lines[1:-1]
                if line.strip()
            }
            if "MLST" not in features:
                self.listing = Listing.LIST

        await self.getwd()

    def lease(self) -> None:
        """Start a new lease: bump the counter and forget previous exchanges."""
        self.leases += 1
        self.exchanges = 0

    @property
    def healthy(self) -> bool:
        return not self.broken and self.pending is None

    def fail(self, error: BaseException) -> TransientError:
        """Mark the connection broken and wrap a low level failure."""
        self.broken = True
        timeout = isinstance(error, (asyncio.TimeoutError, TimeoutError))
        reason = "timed out" if timeout else (str(error) or type(error).__name__)
        return TransientError(
            f"Connection to {self.host} failed: {reason}",
            stale=self.exchanges == 0 and not timeout,
        )

    async def write(self, line: str) -> None:
        """Send one raw command line, adding the CRLF terminator.

        Args:
            line: The full command line, already checked for line breaks

        Raises:
            TransientError: The socket failed or the write timed out
        """
        data = (line + END_OF_LINE).encode(self.config.encoding, "surrogateescape")
        try:
            await self.stream.write(data)
        except (OSError, asyncio.TimeoutError) as error:
            raise self.fail(error)

    async def read_line(self) -> str:
        """Read one line off the control channel.

        Returns:
            str: The decoded line without its terminator

        Raises:
            TransientError: The server hung up, or the read failed or timed out
            ProtocolError: The line is longer than the stream will buffer
        """
        try:
            data = await self.stream.readline()
        except (OSError, asyncio.TimeoutError) as error:
            raise self.fail(error)
        except ValueError:
            # StreamReader gives up on lines longer than its limit
            self.broken = True
            raise ProtocolError("Reply line too long") from None
        if not data:
            raise self.fail(ConnectionResetError("connection closed by server"))
        line = data.decode(self.config.encoding, "surrogateescape").rstrip("\r\n")
        logger.debug(line)
        return line

    async def read_reply(self) -> Reply:
        """
        Read one full reply from the control channel.

        A multi-line reply starts with ``ddd-`` and runs until a line that
        starts with the same code and a space. Lines in between may carry
        the ``ddd-`` prefix (stripped) or be free text (kept as is).
        """
        line = await self.read_line()
        code, separator = line[:3], line[3:4]
        if not (len(code) == 3 and code.isdigit() and separator in ("", " ", "-")):
            self.broken = True
            raise ProtocolError(f"Malformed reply line {line!r}")

        lines = [line[4:]]
        if separator == "-":
            while True:
                line = await self.read_line()
                prefix, separator = line[:3], line[3:4]
                if prefix == code and separator in ("", " "):
                    lines.append(line[4:])
                    break
                if prefix == code and separator == "-":
                    lines.append(line[4:])
                elif prefix.isdigit() and len(prefix) == 3 and separator == " ":
                    self.broken = True
                    raise ProtocolError(
                        f"Reply {code} ended with a different code: {line!r}"
                    )
                else:
                    lines.append(line)

        self.exchanges += 1
        return Reply(Code(code), lines)

    @staticmethod
    def command(verb: str, *args: str) -> str:
        line = " ".join((verb,) + tuple(arg for arg in args if arg))
        if "\r" in line or "\n" in line:
            raise ValueError(f"Line breaks are not allowed in FTP commands: {line!r}")
        return line

    def stubbed(self, line: str) -> Optional[Reply]:
        """The canned reply configured for this exact command line, if any."""
        stub = self.config.stubs.get(line)
        if stub is None:
            return None
        code, message = stub
        logger.debug("%s (stubbed)", line)
        return Reply(Code(str(code)), [message])

    async def send(self, verb: str, *args: str) -> Reply:
        """Send one command and return whatever the server answers.

        The command line is the verb and its non-empty arguments joined by
        single spaces. If that exact line is in the configured stub table,
        the canned reply comes back instead and nothing is sent.

        Args:
            verb: FTP command like "CWD" or "MLSD"
            *args: Command arguments, usually one path

        Returns:
            Reply: The complete server (or stub) reply

        Raises:
            ValueError: An argument would smuggle in a line break
            TransientError: The connection failed or timed out
            ProtocolError: The reply was malformed
        """
        line = self.command(verb, *args)
        stub = self.stubbed(line)
        if stub is not None:
            return stub

        if verb == "PASS":
            logger.debug("PASS %s", "*" * len(line[5:]))
        else:
            logger.debug(line)
        await self.write(line)
        return await self.read_reply()

    async def expect(self, expected: Expected, verb: str, *args: str) -> Reply:
        """Send a command and insist on a specific reply code.

        Args:
            expected: The code, or a tuple of acceptable codes
            verb: FTP command
            *args: Command arguments

        Returns:
            Reply: The matching reply

        Raises:
            ProtocolError: The code didn't match; the connection is marked broken
        """
        reply = await self.send(verb, *args)
        return self.check(reply, expected, verb)

    def check(self, reply: Reply, expected: Expected, verb: str) -> Reply:
        codes = expected if isinstance(expected, tuple) else (expected,)
        if reply.status not in codes:
            self.broken = True
            raise ProtocolError(
                f"{verb} failed", reply, "/".join(str(code) for code in codes)
            )
        return reply

    def resolve(self, path: str) -> str:
        """Absolute form of ``path`` against this connection's working directory."""
        return posixpath.normpath(posixpath.join(self.cwd or "/", path))

    def extract(self, reply: Reply) -> Optional[str]:
        try:
            return unquote(reply.lines[0])
        except ValueError as error:
            self.broken = True
            raise ProtocolError(str(error), reply) from None

    async def getwd(self) -> str:
        reply = await self.expect(257, "PWD")
        path = self.extract(reply)
        if path is None:
            self.broken = True
            raise ProtocolError("PWD reply without a quoted path", reply)
        self.cwd = path
        return path

    async def change_directory(self, path: str) -> str:
        await self.expect(250, "CWD", path)
        return await self.getwd()

    async def mkdir(self, path: str) -> str:
        reply = await self.expect(257, "MKD", path)
        # Servers may leave the path out, or send back an absolute one
        return self.extract(reply) or self.resolve(path)

    async def rmdir(self, path: str) -> None:
        """Remove an empty directory.

        Raises:
            ProtocolError: The server didn't answer 250
        """
        await self.expect(250, "RMD", path)

    async def delete(self, path: str) -> None:
        """Delete a file.

        Raises:
            ProtocolError: The server didn't answer 250
        """
        await self.expect(250, "DELE", path)

    async def rename(self, old: str, new: str) -> None:
        await self.expect(350, "RNFR", old)
        await self.expect(250, "RNTO", new)

    async def open_passive(self) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """
        Negotiate and dial a passive data connection.

        Passive verbs are tried in the configured order; one the server
        doesn't understand is dropped for the rest of this connection's life.
        The data socket is fully connected before this returns, so the
        transfer verb always goes out after the grant.
        """
        for index, name in enumerate(self.passive):
            verb = name.upper()
            reply = await self.send(verb)
            if reply.status in UNKNOWN and index < len(self.passive) - 1:
                continue
            self.passive = self.passive[index:]
            try:
                if verb == "EPSV":
                    self.check(reply, 229, verb)
                    host, port = self.host, parse_epsv(reply.message)
                else:
                    self.check(reply, 227, verb)
                    host, port = parse_pasv(reply.message)
            except ValueError as error:
                self.broken = True
                raise ProtocolError(str(error), reply) from None
            break
        else:
            raise ValueError("No passive commands configured")

        if host == "0.0.0.0":
            host = self.host

        kwargs = {}
        if self.secure:
            kwargs["ssl"] = self.config.ssl.context
            kwargs["server_hostname"] = self.host
        try:
            return await asyncio.wait_for(
                asyncio.open_connection(host, port, **kwargs),
                timeout=self.config.timeout.connect,
            )
        except (OSError, asyncio.TimeoutError) as error:
            raise self.fail(error)

    async def transfer(
        self,
        verb: str,
        *args: str,
        probe: bool = False,
    ) -> Optional[DataConnection]:
        """Open a data connection and start a transfer command on it.

        Args:
            verb: RETR, STOR, LIST or MLSD
            *args: Usually the remote path
            probe: Return None instead of raising when the server doesn't
                   know the verb at all (500/502)

        Returns:
            DataConnection: Ready for reading or writing; finish() it when done

        Raises:
            ProtocolError: The server refused the transfer
            TransientError: Dialing the data connection failed
        """
        # A stubbed transfer verb never gets a data connection, so it
        # always counts as refused
        stub = self.stubbed(self.command(verb, *args))
        if stub is not None:
            if probe and stub.status in UNKNOWN:
                return None
            self.broken = True
            raise ProtocolError(f"{verb} failed", stub, "125/150")

        reader, writer = await self.open_passive()
        try:
            reply = await self.send(verb, *args)
        except BaseException:
            writer.close()
            raise
        if not reply.preliminary:
            writer.close()
            if probe and reply.status in UNKNOWN:
                return None
            self.check(reply, (125, 150), verb)
        stream = StreamIO(
            reader,
            writer,
            read_timeout=self.config.timeout.read,
            write_timeout=self.config.timeout.write,
        )
        self.pending = DataConnection(self, stream)
        return self.pending

    async def complete(self) -> Reply:
        """Read the completion reply that follows the end of a data transfer.

        Any 2xx counts. Most servers send 226 or 250, some send 200.

        Raises:
            ProtocolError: The reply wasn't 2xx; the connection is marked broken
        """
        reply = await self.read_reply()
        if not reply.positive:
            self.broken = True
            raise ProtocolError("Transfer failed", reply, "2xx")
        return reply

    async def collect(self, verb: str, path: str, probe: bool = False) -> Optional[List[str]]:
        """Run a listing verb and return its data lines, None if probing failed."""
        data = await self.transfer(verb, path, probe=probe)
        if data is None:
            return None
        lines = []
        async with data:
            while True:
                line = await data.readline()
                if not line:
                    break
                lines.append(
                    line.decode(self.config.encoding, "surrogateescape").rstrip("\r\n")
                )
        return lines

    async def list(self, path: str = "", strict: bool = True) -> List[FileRecord]:
        """Children of a directory, through MLSD when the server can, else LIST."""
        if self.listing is not Listing.LIST:
            lines = await self.collect("MLSD", path, probe=True)
            if lines is not None:
                self.listing = Listing.MLSX
                return parse_lines(lines, Listing.MLSX, skip_self_parent=True, strict=strict)
            self.listing = Listing.LIST
        lines = await self.collect("LIST", path)
        return parse_lines(lines, Listing.LIST, skip_self_parent=True, strict=strict)

    async def stat(self, path: str) -> FileRecord:
        """Metadata of one path, through MLST when the server can, else LIST of the parent.

        The LIST route resolves ``path`` against the working directory
        first, so ``""`` means the working directory itself. The root has no
        parent to list, so without MLST it can't be stat'ed at all.

        Raises:
            ProtocolError: The path doesn't exist, or it is the root and the
                           server has no MLST (a synthesized 502)
        """
        if self.listing is not Listing.LIST:
            reply = await self.send("MLST", path)
            if reply.status not in UNKNOWN:
                self.check(reply, 250, "MLST")
                self.listing = Listing.MLSX
                entries = [line for line in reply.lines[1:-1] if line.strip()]
                if not entries:
                    self.broken = True
                    raise ProtocolError("MLST reply without an entry", reply)
                entry = entries[0]
                # the entry line starts with exactly one space
                if entry.startswith(" "):
                    entry = entry[1:]
                return parse_mlst(entry)
            self.listing = Listing.LIST

        parent, name = posixpath.split(self.resolve(path))
        if not name:
            raise ProtocolError(
                f"Can't stat {path!r} without MLST",
                Reply(Code("502"), [f"{quote(parent)}: root directory has no parent to list"]),
                "250",
            )
        for record in await self.list(parent, strict=False):
            if record.name == name:
                return record
        raise ProtocolError(
            f"Can't stat {path!r}",
            Reply(Code("550"), [f"{quote(path)}: No such file or directory"]),
            "250",
        )

    async def quit(self) -> None:
        """Say goodbye politely, then drop the socket whatever the answer."""
        try:
            await self.send("QUIT")
        finally:
            self.close()

    def close(self) -> None:
        if self.pending is not None:
            self.pending.close()
        self.stream.close()
