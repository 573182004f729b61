from dataclasses import dataclass, field
from typing import List

from aioftp.common import Code

# FTP response codes - what the server is trying to tell you
codes = {
    # 1xx - "Hold on, I'm working on it"
    110: "Restart marker reply",
    120: "Service ready in n minutes",
    125: "Data connection already open; transfer starting",
    150: "File status okay; about to open data connection",
    # 2xx - "Success! Everything went great"
    200: "Command okay",
    202: "Command not implemented, superfluous at this site",
    211: "System status, or system help reply",
    212: "Directory status",
    213: "File status",
    214: "Help message",
    215: "NAME system type",
    220: "Service ready for new user",
    221: "Service closing control connection",
    225: "Data connection open; no transfer in progress",
    226: "Closing data connection",
    227: "Entering Passive Mode",
    229: "Entering Extended Passive Mode",
    230: "User logged in, proceed",
    234: "Security data exchange complete",
    250: "Requested file action okay, completed",
    257: "PATHNAME created",
    # 3xx - "I need more info from you"
    331: "User name okay, need password",
    332: "Need account for login",
    350: "Requested file action pending further information",
    # 4xx - "Something's wrong, but we can try again"
    421: "Service not available, closing control connection",
    425: "Can't open data connection",
    426: "Connection closed; transfer aborted",
    450: "Requested file action not taken",
    451: "Requested action aborted: local error in processing",
    452: "Requested action not taken; insufficient storage space",
    # 5xx - "Nope, that's not going to work"
    500: "Syntax error, command unrecognized",
    501: "Syntax error in parameters or arguments",
    502: "Command not implemented",
    503: "Bad sequence of commands",
    504: "Command not implemented for that parameter",
    530: "Not logged in",
    532: "Need account for storing files",
    550: "Requested action not taken; file unavailable",
    551: "Requested action aborted: page type unknown",
    552: "Requested file action aborted; exceeded storage allocation",
    553: "Requested action not taken; file name not allowed",
}

# Replies meaning "I have no idea what that command is"
UNKNOWN = (500, 502)


@dataclass(frozen=True)
class Reply:
    """
    One complete server reply on the control channel.

    A reply is a three-digit code followed by one or more message lines.
    Multi-line replies arrive as ``ddd-first``, any number of free-form
    lines, and ``ddd last``; the lines are kept in order with the code
    prefix stripped from the first and last.

    Attributes:
        code: Three-digit status code. Supports masks like ``"2xx"``
              through :py:meth:`aioftp.Code.matches`.
        lines: Message lines, never empty.
    """

    code: Code
    lines: List[str] = field(default_factory=list)

    @property
    def status(self) -> int:
        return int(self.code)

    @property
    def message(self) -> str:
        return "\n".join(self.lines)

    @property
    def preliminary(self) -> bool:
        return self.code.matches("1xx")

    @property
    def positive(self) -> bool:
        return self.code.matches("2xx")

    @property
    def intermediate(self) -> bool:
        return self.code.matches("3xx")

    @property
    def transient(self) -> bool:
        return self.code.matches("4xx")

    @property
    def permanent(self) -> bool:
        return self.code.matches("5xx")

    def describe(self) -> str:
        """Human friendly meaning of the code, falling back to the reply class."""
        if self.status in codes:
            return codes[self.status]
        if self.transient:
            return "Transient negative completion"
        if self.permanent:
            return "Permanent negative completion"
        return "Unrecognized reply"

    def __str__(self) -> str:
        return f"{self.code} {self.message}"
