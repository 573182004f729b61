__version__ = "1.0.0"
__author__ = "Andrew Hernandez"
__email__ = "andromedeyz@hotmail.com"
__license__ = "MIT"
__description__ = "An async FTP client library for Python with a bounded connection pool, MLST/LIST parsing, and SSL support."
__url__ = "http://github.com/ApaxPhoenix/FtpPool"

# Make sure you're running a modern Python version
import sys

if sys.version_info < (3, 9):
    raise RuntimeError("FtpPool needs Python 3.9 or newer to work properly")

# The main Ftp class - builds clients from one endpoint URL
from .ftp import Ftp

# The client itself, plus the pool and the per-connection engine under it
from .core import FtpClient
from .pool import Pool
from .protocol import Connection

# Fine-tune how your FTP connections behave
from .config import (
    Config,  # Everything a client needs, frozen
    Timeout,  # Set how long to wait for connections, replies and the pool
    Limits,  # Control how many connections stay open
)

# Different ways to log in
from .auth import (
    Basic,  # Classic username and password login
    Guest,  # Anonymous access for public servers
)

# Keep your connections secure
from .settings import (
    SSL,  # Implicit (ftps://) or explicit (AUTH TLS) encryption
)

# What listings turn into
from .listing import FileRecord, FileType, Listing
from .reply import Reply, codes

# Everything that can go wrong
from .errors import (
    FtpError,
    DialError,
    AuthError,
    PoolTimeoutError,
    PoolClosedError,
    ProtocolError,
    ParseError,
    MalformedEntryError,
    IncompleteEntryError,
    TransientError,
)

# Everything you can import and use
__all__ = [
    # The main class you'll work with
    "Ftp",
    # Core functionality
    "FtpClient",
    "Pool",
    "Connection",
    # Configuration options
    "Config",
    "Timeout",
    "Limits",
    # Authentication types
    "Basic",
    "Guest",
    # Security settings
    "SSL",
    # Results
    "FileRecord",
    "FileType",
    "Listing",
    "Reply",
    "codes",
    # Errors
    "FtpError",
    "DialError",
    "AuthError",
    "PoolTimeoutError",
    "PoolClosedError",
    "ProtocolError",
    "ParseError",
    "MalformedEntryError",
    "IncompleteEntryError",
    "TransientError",
    # Package info
    "__version__",
    "__author__",
    "__email__",
    "__license__",
    "__description__",
    "__url__",
]
