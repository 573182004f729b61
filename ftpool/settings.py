import ssl
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class SSL:
    """
    TLS configuration for FTPS.

    Applies to implicit TLS (``ftps://`` endpoints, where the socket is
    encrypted from the first byte) and to explicit TLS, where a plain
    ``ftp://`` connection is upgraded with ``AUTH TLS`` right after the
    greeting. Either way the data connections get wrapped too (PROT P).

    A context is always built once, up front, unless you hand one in, and
    every connection of the client shares it.

    Attributes:
        verify: Check the server certificate and hostname. Turning this off
                makes the encryption worthless against an active attacker,
                but self-signed test servers need it.
        explicit: Upgrade plain connections with AUTH TLS.
        cert: Client certificate file for mutual TLS.
        key: Private key matching ``cert``.
        bundle: CA bundle to trust instead of the system store.
        ciphers: OpenSSL cipher list.
        context: A ready SSLContext, used as is.
    """

    verify: bool = True  # Check certificates against trusted CAs
    explicit: bool = False  # Upgrade plain connections with AUTH TLS
    cert: Optional[str] = None  # Client certificate for mutual TLS
    key: Optional[str] = None  # Client private key for mutual TLS
    bundle: Optional[str] = None  # Custom CA bundle
    ciphers: Optional[str] = None  # Allowed cipher suites
    context: Optional[ssl.SSLContext] = None  # Prebuilt context

    def __post_init__(self) -> None:
        """
        Validate the settings and build the SSL context.

        Raises:
            ValueError: Files are missing, only one of cert/key is given, or
                        OpenSSL refuses the certificates or cipher list.
        """
        if bool(self.cert) != bool(self.key):
            raise ValueError("Both certificate and key must be provided together for mutual TLS")

        for name, value in (("Certificate", self.cert), ("Private key", self.key), ("CA bundle", self.bundle)):
            if value and not Path(value).is_file():
                raise ValueError(f"{name} file not found: {value}")

        if self.context is not None and not isinstance(self.context, ssl.SSLContext):
            raise ValueError("SSL context must be an SSLContext object or None")

        if not self.verify:
            warnings.warn(
                "SSL certificate verification is disabled. "
                "This makes connections vulnerable to man-in-the-middle attacks. "
                "Only use this setting in development or trusted network environments.",
                UserWarning,
                stacklevel=3,
            )

        if self.context is not None:
            if any([self.cert, self.key, self.bundle, self.ciphers]):
                warnings.warn(
                    "An SSL context was given, other SSL parameters will be ignored.",
                    UserWarning,
                    stacklevel=3,
                )
            return

        ctx = ssl.create_default_context()

        if not self.verify:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE

        try:
            if self.cert and self.key:
                ctx.load_cert_chain(self.cert, self.key)
            if self.bundle:
                ctx.load_verify_locations(cafile=self.bundle)
            if self.ciphers:
                ctx.set_ciphers(self.ciphers)
        except (ssl.SSLError, OSError) as error:
            raise ValueError(f"Invalid SSL configuration: {error}") from error

        object.__setattr__(self, "context", ctx)
