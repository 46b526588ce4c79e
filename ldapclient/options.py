"""
Connection options.

This module provides :py:class:`ConnectionOptions`, the validated form of the
keyword arguments accepted by :py:func:`ldapclient.client.connect`, and the
helpers that turn the ``host`` option into a list of :py:class:`Address`
objects.
"""

from collections.abc import Iterable
from dataclasses import dataclass, fields
from typing import Any

from .exceptions import ConfigError
from .typing import HostSpec

DEFAULT_ADDRESS = "localhost"
#: Plaintext and StartTLS port
DEFAULT_PORT = 389
#: Implicit TLS (ldaps) port
DEFAULT_SSL_PORT = 636
DEFAULT_NUM_CONNECTIONS = 1
#: milliseconds
DEFAULT_CONNECT_TIMEOUT = 60000
#: milliseconds
DEFAULT_TIMEOUT = 300000


@dataclass(frozen=True)
class Address:
    """
    One directory server.  ``port`` is ``None`` when the caller didn't give
    one, in which case the default port for the transport is used.
    """

    address: str = DEFAULT_ADDRESS
    port: int | None = None

    def effective_port(self, ssl: bool = False) -> int:
        if self.port is not None:
            return self.port
        return DEFAULT_SSL_PORT if ssl else DEFAULT_PORT

    def uri(self, ssl: bool = False) -> str:
        scheme = "ldaps" if ssl else "ldap"
        return f"{scheme}://{self.address}:{self.effective_port(ssl)}"

    def __str__(self) -> str:
        if self.port is None:
            return self.address
        return f"{self.address}:{self.port}"


def _parse_port(port: Any, host: Any) -> int | None:
    if port is None or port == "":
        return None
    try:
        value = int(port)
    except (TypeError, ValueError) as e:
        msg = f"Invalid port in host for an ldap connection: {host!r}"
        raise ConfigError(msg) from e
    if not 0 < value < 65536:  # noqa: PLR2004
        msg = f"Port out of range in host for an ldap connection: {host!r}"
        raise ConfigError(msg)
    return value


def parse_host(host: HostSpec) -> Address:
    """
    Turn a single host specification into an :py:class:`Address`.

    Args:
        host: ``None``, a ``"address:port"`` string (either part may be
            omitted), or a dict with ``address`` and ``port`` keys

    Raises:
        ConfigError: ``host`` is not a host specification we understand

    Returns:
        The address.

    """
    if host is None:
        return Address()
    if isinstance(host, str):
        parts = host.split(":")
        if len(parts) > 2:  # noqa: PLR2004
            msg = f"Invalid host for an ldap connection: {host!r}"
            raise ConfigError(msg)
        address = parts[0] or DEFAULT_ADDRESS
        port = _parse_port(parts[1], host) if len(parts) == 2 else None  # noqa: PLR2004
        return Address(address, port)
    if isinstance(host, dict):
        address = host.get("address") or DEFAULT_ADDRESS
        if not isinstance(address, str):
            msg = f"Invalid host for an ldap connection: {host!r}"
            raise ConfigError(msg)
        return Address(address, _parse_port(host.get("port"), host))
    msg = f"Invalid host for an ldap connection: {host!r}"
    raise ConfigError(msg)


def is_multi_host(host: Any) -> bool:
    """
    Return ``True`` if ``host`` is a collection of host specifications rather
    than a single one.
    """
    return isinstance(host, (list, tuple, set, frozenset))


def parse_hosts(host: Any) -> list[Address]:
    """
    Turn the ``host`` option into a list of addresses.

    Raises:
        ConfigError: a host specification is invalid, or the collection is
            empty

    """
    if not is_multi_host(host):
        return [parse_host(host)]
    addresses = [parse_host(h) for h in host]
    if not addresses:
        msg = "host: an empty collection of hosts was given"
        raise ConfigError(msg)
    return addresses


def _as_tuple(value: str | Iterable[str] | None) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return tuple(v.strip() for v in value.split(":") if v.strip())
    return tuple(value)


@dataclass(frozen=True)
class ConnectionOptions:
    """
    Validated connection options.

    Keyword Args:
        host: a host specification or a collection of them; a collection
            gets a round-robin pool
        bind_dn: the dn to bind as.  Leave empty for an anonymous bind.
        password: the password for ``bind_dn``
        num_connections: the pool size
        ssl: connect with implicit TLS (ldaps)
        start_tls: upgrade a plaintext connection with StartTLS before binding
        trust_managers: a directory of trusted CA certificates
        trust_store: a file of trusted CA certificates
        cipher_suites: OpenSSL cipher names, as a list or a ``:`` separated
            string
        ssl_protocols: TLS protocol names (``TLSv1``, ``TLSv1.1``, ``TLSv1.2``,
            ``TLSv1.3``)
        verify_host: check the server certificate matches the host name
        wildcard_host: allow a wildcard certificate to match
        connect_timeout: milliseconds to wait for a connection
        timeout: milliseconds to wait for a response
        checkout_timeout: seconds to wait for a free pooled connection;
            ``None`` waits forever

    Raises:
        ConfigError: the options contradict each other or are out of range

    """

    host: Any = None
    bind_dn: str | None = None
    password: str | None = None
    num_connections: int = DEFAULT_NUM_CONNECTIONS
    ssl: bool = False
    start_tls: bool = False
    trust_managers: str | None = None
    trust_store: str | None = None
    cipher_suites: tuple[str, ...] | None = None
    ssl_protocols: tuple[str, ...] | None = None
    verify_host: bool = False
    wildcard_host: bool = False
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    timeout: int = DEFAULT_TIMEOUT
    checkout_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.ssl and self.start_tls:
            msg = "Can't have both SSL and startTLS"
            raise ConfigError(msg)
        if not isinstance(self.num_connections, int) or self.num_connections < 1:
            msg = f"num_connections must be a positive integer, not {self.num_connections!r}"
            raise ConfigError(msg)
        for name in ("connect_timeout", "timeout"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value <= 0:
                msg = f"{name} must be a positive number of milliseconds, not {value!r}"
                raise ConfigError(msg)
        object.__setattr__(self, "cipher_suites", _as_tuple(self.cipher_suites))
        object.__setattr__(self, "ssl_protocols", _as_tuple(self.ssl_protocols))
        # Parse now so that a bad host fails before we open any sockets
        parse_hosts(self.host)

    @classmethod
    def from_dict(cls, options: dict[str, Any] | None) -> "ConnectionOptions":
        """
        Build a :py:class:`ConnectionOptions` from a dict, such as an entry in
        ``settings.LDAP_SERVERS``.

        Raises:
            ConfigError: ``options`` has keys we don't know about, or the
                values are invalid

        """
        options = dict(options or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            msg = f"Unknown ldap connection options: {', '.join(unknown)}"
            raise ConfigError(msg)
        return cls(**options)

    @property
    def multi_host(self) -> bool:
        return is_multi_host(self.host)

    @property
    def addresses(self) -> list[Address]:
        return parse_hosts(self.host)

    @property
    def uses_tls(self) -> bool:
        return self.ssl or self.start_tls
