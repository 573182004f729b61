import warnings
from dataclasses import dataclass

Username = str
Password = str


def _check(value: str, what: str) -> None:
    # Anything with a line break would split into a second FTP command
    if "\r" in value or "\n" in value:
        raise ValueError(f"{what} cannot contain line breaks")


@dataclass(frozen=True)
class Basic:
    """
    Username and password login.

    Sent as USER and PASS on every new control connection. Plain FTP sends
    both in clear text, so use ``ftps://`` or ``SSL(explicit=True)`` for
    anything that matters.

    Attributes:
        user: Account name on the server.
        password: Password for that account, may be empty for servers that
                  accept USER alone.
    """

    user: Username
    password: Password = ""

    def __post_init__(self) -> None:
        if not self.user.strip():
            raise ValueError("Username cannot be empty or whitespace")

        _check(self.user, "Username")
        _check(self.password, "Password")

    def __repr__(self) -> str:
        return f"Basic(user={self.user!r}, password='***')"


@dataclass(frozen=True)
class Guest:
    """
    Anonymous login.

    Logs in as "anonymous" and, by old convention, hands over an email
    address as the password so the site knows who is poking around.

    Attributes:
        email: Sent as the password.
    """

    email: str = "anonymous@"

    def __post_init__(self) -> None:
        _check(self.email, "Email")

        if "@" not in self.email:
            warnings.warn(
                "Anonymous password doesn't look like an email address. "
                "Some servers refuse such logins."
            )

    @property
    def user(self) -> Username:
        return "anonymous"

    @property
    def password(self) -> Password:
        return self.email
