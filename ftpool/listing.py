import calendar
import enum
import posixpath
import re
import stat
import warnings
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .errors import IncompleteEntryError, MalformedEntryError

MONTHS = ("jan", "feb", "mar", "apr", "may", "jun",
          "jul", "aug", "sep", "oct", "nov", "dec")


class FileType(enum.Enum):
    REGULAR = "file"
    DIRECTORY = "dir"
    SYMLINK = "symlink"


class Listing(enum.Enum):
    """How a connection gets directory listings out of its server."""

    MLSX = "mlsx"  # MLST / MLSD facts
    LIST = "list"  # free-form ls -l text


@dataclass(frozen=True)
class FileRecord:
    """
    Normalized metadata for one directory entry.

    Whatever the server spoke (MLST facts or LIST text), this is what
    callers get back. ``mode`` follows the ``os.stat`` convention, so the
    helpers from the :py:mod:`stat` module work on it directly.

    Attributes:
        name: Base name of the entry.
        size: Size in bytes, None when a directory doesn't report one.
        mtime: Modification time, timezone-aware UTC.
        mode: Permission bits combined with S_IFREG, S_IFDIR or S_IFLNK.
        type: Regular file, directory or symlink.
        raw: The listing line this record came from, untouched.
    """

    name: str
    size: Optional[int]
    mtime: datetime
    mode: int
    type: FileType
    raw: str

    @property
    def permissions(self) -> int:
        return stat.S_IMODE(self.mode)

    def is_dir(self) -> bool:
        return self.type is FileType.DIRECTORY

    def is_file(self) -> bool:
        return self.type is FileType.REGULAR

    def is_symlink(self) -> bool:
        return self.type is FileType.SYMLINK


# Type bits for each normalized file type
_TYPE_BITS = {
    FileType.REGULAR: stat.S_IFREG,
    FileType.DIRECTORY: stat.S_IFDIR,
    FileType.SYMLINK: stat.S_IFLNK,
}

SELF_PARENT = (".", "..")


def _basename(name: str) -> str:
    return posixpath.basename(name.rstrip("/")) if name not in SELF_PARENT else name


class _Token(enum.Enum):
    NAME = 0
    VALUE = 1
    FILENAME = 2


class _Facts:
    """Facts pulled out of one MLST entry; only the ones we use."""

    __slots__ = ("type", "unix_mode", "perm", "size", "sizd", "modify")

    # fact name -> attribute
    known = {
        "type": "type",
        "unix.mode": "unix_mode",
        "perm": "perm",
        "size": "size",
        "sizd": "sizd",
        "modify": "modify",
    }

    def __init__(self) -> None:
        self.type = ""
        self.unix_mode = ""
        self.perm = ""
        self.size = ""
        self.sizd = ""
        self.modify = ""


def parse_mlst(entry: str, skip_self_parent: bool = False) -> Optional[FileRecord]:
    """
    Parse one MLST/MLSD entry into a FileRecord.

    An entry looks like::

        type=file;size=12;modify=20150216084148;UNIX.mode=0644; lorem.txt

    The facts are read by a small state machine (fact name, fact value,
    file name) rather than by splitting, so names holding ``;``, ``=`` or
    spaces come through intact.

    Args:
        entry: The entry, without any leading space from an MLST reply.
        skip_self_parent: Return None for the cdir/pdir entries and for
                          "." and "..", instead of a record.

    Returns:
        The record, or None when the entry was skipped.

    Raises:
        MalformedEntryError: The entry doesn't follow the fact grammar, or a
                             number or timestamp doesn't parse.
        IncompleteEntryError: A required fact (type, modify, size of a file)
                              is missing.
    """
    facts = _Facts()
    state = _Token.NAME
    left = ""  # previous token, "name=" included
    start = 0  # where the current token begins

    for index, char in enumerate(entry):
        if state is _Token.FILENAME:
            break
        if char == ";" and state is _Token.VALUE:
            if not left:
                raise MalformedEntryError("Failed parsing MLST entry", entry)
            key = left[:-1].lower()
            if key in _Facts.known:
                setattr(facts, _Facts.known[key], entry[start:index].lower())
            if entry[index + 1:index + 2] == " ":
                state = _Token.FILENAME
            else:
                state = _Token.NAME
            start = index + 1
        elif char == "=" and state is _Token.NAME:
            left = entry[start:index + 1]
            start = index + 1
            state = _Token.VALUE

    if state is not _Token.FILENAME or start + 1 >= len(entry):
        raise MalformedEntryError("Failed parsing MLST entry", entry)

    filename = entry[start + 1:]

    if not facts.type:
        raise IncompleteEntryError("MLST entry incomplete", entry)

    if skip_self_parent and (
        facts.type in ("cdir", "pdir") or filename in SELF_PARENT
    ):
        return None

    # Mode: UNIX.mode wins, then the perm fact, then plain read-only
    if facts.unix_mode:
        if facts.unix_mode.strip("01234567"):
            raise MalformedEntryError("Failed parsing MLST entry", entry)
        mode = int(facts.unix_mode, 8)
    elif facts.perm:
        # see http://tools.ietf.org/html/rfc3659#section-7.5.5
        mode = 0
        for char in facts.perm:
            if char in "adcfmpw":
                # these suggest you have write permissions
                mode |= 0o200
            elif char == "l":
                # can list dir entries means readable and executable
                mode |= 0o500
            elif char == "r":
                mode |= 0o400
    else:
        mode = 0o400

    if facts.type in ("dir", "cdir", "pdir"):
        kind = FileType.DIRECTORY
    elif facts.type.startswith(("os.unix=slink", "os.unix=symlink")):
        # no way to tell whether the link points at a file or a directory
        kind = FileType.SYMLINK
    else:
        kind = FileType.REGULAR

    if facts.size:
        size = _number(facts.size, entry)
    elif kind is FileType.DIRECTORY and facts.sizd:
        size = _number(facts.sizd, entry)
    elif facts.type == "file":
        raise IncompleteEntryError("MLST entry incomplete", entry)
    else:
        size = None

    if not facts.modify:
        raise IncompleteEntryError("MLST entry incomplete", entry)

    mtime = parse_timestamp(facts.modify)
    if mtime is None:
        raise MalformedEntryError("Failed parsing MLST modify fact", entry)

    return FileRecord(
        name=_basename(filename),
        size=size,
        mtime=mtime,
        mode=mode | _TYPE_BITS[kind],
        type=kind,
        raw=entry,
    )


def _number(value: str, entry: str) -> int:
    if not (value.isascii() and value.isdigit()):
        raise MalformedEntryError("Failed parsing MLST entry", entry)
    return int(value)


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse a 14-digit YYYYMMDDhhmmss time value as UTC, None if it isn't one."""
    if len(value) != 14 or not (value.isascii() and value.isdigit()):
        return None
    try:
        return datetime(
            int(value[:4]), int(value[4:6]), int(value[6:8]),
            int(value[8:10]), int(value[10:12]), int(value[12:14]),
            tzinfo=timezone.utc,
        )
    except ValueError:
        return None


# UNIX-style listing, with or without a group column:
# "-rw-r--r--   1 root     other        531 Jan 29 03:26 README"
# "dr-xr-xr-x   2 root     other        512 Apr  8  1994 etc"
# "dr-xr-xr-x   2 root     512 Apr  8  1994 etc"
# "lrwxrwxrwx   1 root     other          7 Jan 25 00:17 bin -> usr/bin"
_LIST_LINE = re.compile(
    r"^(?P<kind>[-bcdlps])(?P<perms>[-rwxsStTlL]{9})[+@.]?\s+"
    r"(?P<links>\d+)\s+"
    r"(?P<owner>\S+)\s+"
    r"(?:(?P<group>\S+)\s+)?"
    r"(?P<size>\d+)\s+"
    r"(?P<month>[A-Za-z]{3})\s+(?P<day>\d{1,2})\s+"
    r"(?:(?P<hour>\d{1,2}):(?P<minute>\d{2})|(?P<year>\d{4}))"
    r" (?P<name>.+)$"
)

_TOTAL_LINE = re.compile(r"^total\s+\d+\s*$", re.IGNORECASE)

# Bit for each position of an rwxrwxrwx string
_PERM_BITS = (0o400, 0o200, 0o100, 0o040, 0o020, 0o010, 0o004, 0o002, 0o001)


def parse_permissions(perms: str) -> int:
    """
    Turn an ls-style "rwxr-x--t" string into permission bits.

    Upper-case S/T mean the special bit is set without the execute bit.
    """
    mode = 0
    for index, char in enumerate(perms):
        if char == "-":
            continue
        if index % 3 != 2:
            mode |= _PERM_BITS[index]
            continue
        if char in "xst":
            mode |= _PERM_BITS[index]
        if char in "sS":
            mode |= stat.S_ISUID if index == 2 else stat.S_ISGID
        elif char in "tT":
            mode |= stat.S_ISVTX
    return mode


def _dated(year: int, month: int, day: int, hour: int, minute: int) -> datetime:
    # Feb 29 only exists in leap years, walk back to the closest one
    if (month, day) == (2, 29):
        while not calendar.isleap(year):
            year -= 1
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def parse_list(
    line: str,
    skip_self_parent: bool = False,
    now: Optional[datetime] = None,
) -> Optional[FileRecord]:
    """
    Parse one line of LIST output into a FileRecord.

    Only the conventional Unix ``ls -l`` shape is understood. Lines that only
    show "month day time" get the current year, and go back one year if that
    puts them in the future.

    Args:
        line: One LIST line without its line terminator.
        skip_self_parent: Return None for "." and "..".
        now: Reference time for year guessing (UTC now by default).

    Returns:
        The record, or None for skipped entries and "total N" lines.

    Raises:
        MalformedEntryError: The line isn't a listing line we understand.
    """
    if _TOTAL_LINE.match(line):
        return None

    match = _LIST_LINE.match(line)
    if match is None:
        raise MalformedEntryError("Failed parsing LIST entry", line)

    month = match["month"].lower()
    if month not in MONTHS:
        raise MalformedEntryError("Failed parsing LIST entry", line)

    kind = {
        "d": FileType.DIRECTORY,
        "l": FileType.SYMLINK,
    }.get(match["kind"], FileType.REGULAR)

    name = match["name"]
    if kind is FileType.SYMLINK and " -> " in name:
        name = name[:name.index(" -> ")]

    if skip_self_parent and name in SELF_PARENT:
        return None

    if now is None:
        now = datetime.now(timezone.utc)

    try:
        if match["year"]:
            mtime = _dated(int(match["year"]), MONTHS.index(month) + 1,
                           int(match["day"]), 0, 0)
        else:
            args = (MONTHS.index(month) + 1, int(match["day"]),
                    int(match["hour"]), int(match["minute"]))
            mtime = _dated(now.year, *args)
            if mtime > now:
                mtime = _dated(now.year - 1, *args)
    except ValueError:
        raise MalformedEntryError("Failed parsing LIST date", line) from None

    return FileRecord(
        name=_basename(name),
        size=int(match["size"]),
        mtime=mtime,
        mode=parse_permissions(match["perms"]) | _TYPE_BITS[kind],
        type=kind,
        raw=line,
    )


def parse_lines(
    lines: Iterable[str],
    listing: Listing,
    skip_self_parent: bool = False,
    strict: bool = True,
) -> List[FileRecord]:
    """
    Parse a whole listing with one strategy.

    Args:
        lines: Listing lines, terminators already stripped.
        listing: Which parser the lines are meant for.
        skip_self_parent: Drop ".", ".." and cdir/pdir entries.
        strict: Raise on the first bad entry. When False, bad entries are
                skipped with a warning.

    Returns:
        Records in the order the server sent them.
    """
    records = []
    for line in lines:
        if not line:
            continue
        try:
            if listing is Listing.MLSX:
                record = parse_mlst(line, skip_self_parent)
            else:
                record = parse_list(line, skip_self_parent)
        except (MalformedEntryError, IncompleteEntryError) as error:
            if strict:
                raise
            warnings.warn(f"Skipping listing entry: {error}")
            continue
        if record is not None:
            records.append(record)
    return records
