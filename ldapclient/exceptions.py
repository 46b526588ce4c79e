"""
Exceptions raised by ldapclient.

Directory result codes for write operations are not exceptions: they come back
in the result dict.  Only configuration, bind, transport and codec problems are
raised.
"""

from django.core.exceptions import ImproperlyConfigured

from ldapclient import ldap


class LdapClientError(Exception):
    """Base class for all ldapclient errors."""


class ConfigError(LdapClientError, ImproperlyConfigured):
    """
    Contradictory or invalid connection or search options.

    Always raised before any network I/O happens.
    """


class BindFailed(LdapClientError):
    """
    The server rejected a bind.

    Args:
        code: the LDAP result code
        message: the diagnostic message returned by the server

    """

    def __init__(self, code: int, message: str = "") -> None:
        self.code = code
        self.message = message
        super().__init__(f"bind failed: code={code} message={message}")


class ConnectionFailure(LdapClientError):
    """A transport-level failure talking to the directory server."""


class SearchFailed(LdapClientError):
    """
    The server rejected a search for a reason other than the base entry not
    existing (a bad filter, an exceeded limit, ...).

    Args:
        code: the LDAP result code
        message: the description returned by the server

    """

    def __init__(self, code: int, message: str = "") -> None:
        self.code = code
        self.message = message
        super().__init__(f"search failed: code={code} message={message}")


class DecodeError(LdapClientError):
    """A wire entry could not be converted into a record."""


class InvalidAttributeValue(LdapClientError, ValueError):
    """A record value has a shape that cannot be sent to the server."""


#: python-ldap exceptions that mean the socket is no longer usable
TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    ldap.SERVER_DOWN,  # type: ignore[attr-defined]
    ldap.CONNECT_ERROR,  # type: ignore[attr-defined]
    ldap.TIMEOUT,  # type: ignore[attr-defined]
    OSError,
)


def error_info(exc: Exception) -> tuple[int, str, str]:
    """
    Pull the result code, description and diagnostic message out of a
    python-ldap exception.

    Args:
        exc: the exception raised by python-ldap

    Returns:
        A ``(code, desc, info)`` tuple.  ``code`` is ``-1`` if python-ldap did
        not supply one.

    """
    details: dict = {}
    if exc.args and isinstance(exc.args[0], dict):
        details = exc.args[0]
    code = details.get("result", -1)
    desc = str(details.get("desc", exc.__class__.__name__)).strip()
    info = details.get("info", "")
    if isinstance(info, (tuple, list)):
        info = " ".join(str(i) for i in info)
    return int(code), desc, str(info).strip()
