"""
Opening and binding single LDAP connections.

This module knows how to turn an :py:class:`~ldapclient.options.Address` and
:py:class:`~ldapclient.options.ConnectionOptions` into a bound python-ldap
``LDAPObject``, and provides :py:class:`ConnectionSource`, the interface that
both a direct :py:class:`Connection` and the pools in :py:mod:`ldapclient.pool`
implement.
"""

import abc
import logging
from collections.abc import Iterator
from contextlib import contextmanager, suppress

from ldapclient import ldap

from .exceptions import (
    TRANSPORT_ERRORS,
    BindFailed,
    ConnectionFailure,
    LdapClientError,
    error_info,
)
from .options import Address, ConnectionOptions
from .tls import apply_tls_options, verify_hostname

logger = logging.getLogger(__name__)


@contextmanager
def transport_errors(where: object) -> Iterator[None]:
    """
    Re-raise python-ldap transport errors as :py:class:`ConnectionFailure`.

    Args:
        where: what we were talking to, for the error message

    """
    try:
        yield
    except TRANSPORT_ERRORS as e:
        _, desc, info = error_info(e)
        msg = f"{where}: {desc}"
        if info:
            msg = f"{msg}: {info}"
        raise ConnectionFailure(msg) from e


def open_connection(address: Address, options: ConnectionOptions):
    """
    Open a transport connection to ``address``, negotiating TLS if asked to.
    Nothing is sent before TLS is in place.

    Args:
        address: the server to connect to
        options: the connection options

    Raises:
        ConfigError: the TLS configuration is invalid
        ConnectionFailure: the server could not be reached, the TLS
            negotiation failed, or the certificate did not match the host name

    Returns:
        An unbound ``LDAPObject``.

    """
    uri = address.uri(ssl=options.ssl)
    logger.debug("ldapclient.connection.open uri=%s start_tls=%s", uri, options.start_tls)
    conn = ldap.initialize(uri)
    conn.set_option(ldap.OPT_REFERRALS, 0)  # type: ignore[attr-defined]
    conn.set_option(ldap.OPT_NETWORK_TIMEOUT, options.connect_timeout / 1000.0)  # type: ignore[attr-defined]
    # Used by python-ldap as the timeout for every synchronous operation
    conn.timeout = options.timeout / 1000.0
    if options.uses_tls:
        apply_tls_options(conn, options)
    try:
        with transport_errors(uri):
            if options.start_tls:
                conn.start_tls_s()
            elif options.ssl and options.verify_host:
                _handshake(conn, uri)
            if options.uses_tls and options.verify_host:
                verify_hostname(conn, address.address, allow_wildcard=options.wildcard_host)
    except LdapClientError:
        close_quietly(conn)
        raise
    return conn


def _handshake(conn, uri: str) -> None:
    # libldap connects lazily, so read the root DSE to get the TLS session up
    # before we look at the peer certificate or send credentials.
    try:
        conn.search_ext_s("", ldap.SCOPE_BASE, "(objectclass=*)", ["1.1"])  # type: ignore[attr-defined]
    except TRANSPORT_ERRORS:
        raise
    except ldap.LDAPError as e:  # type: ignore[attr-defined]
        # The server is entitled to refuse an anonymous root DSE read; the
        # handshake has happened by then.
        logger.debug("ldapclient.connection.root_dse.refused uri=%s error=%s", uri, e)


def bind(conn, bind_dn: str | None = None, password: str | None = None) -> None:
    """
    Authenticate ``conn``: a simple bind as ``bind_dn``, or an anonymous bind
    if ``bind_dn`` is empty.

    Raises:
        BindFailed: the server did not return success
        ConnectionFailure: the server could not be reached

    """
    try:
        with transport_errors(bind_dn or "anonymous bind"):
            if bind_dn:
                conn.simple_bind_s(bind_dn, password or "")
            else:
                conn.simple_bind_s()
    except ConnectionFailure:
        raise
    except ldap.LDAPError as e:  # type: ignore[attr-defined]
        code, desc, info = error_info(e)
        logger.warning(
            "ldapclient.bind.failed dn=%s code=%s desc=%s", bind_dn, code, desc
        )
        raise BindFailed(code, info or desc) from e


def close_quietly(conn) -> None:
    """Unbind ``conn``, ignoring errors from an already broken connection."""
    with suppress(ldap.LDAPError, OSError):  # type: ignore[attr-defined]
        conn.unbind_s()


def establish(
    address: Address,
    options: ConnectionOptions,
    bind_dn: str | None = None,
    password: str | None = None,
):
    """
    Open a connection to ``address`` and bind it.

    Raises:
        BindFailed: the bind was rejected
        ConnectionFailure: the server could not be reached

    Returns:
        A bound ``LDAPObject``.

    """
    conn = open_connection(address, options)
    try:
        bind(conn, bind_dn, password)
    except LdapClientError:
        close_quietly(conn)
        raise
    logger.debug("ldapclient.connection.bound address=%s dn=%s", address, bind_dn)
    return conn


def bind_throwaway(
    addresses: list[Address], options: ConnectionOptions, dn: str, password: str
) -> bool:
    """
    Check credentials on a connection of their own, tried against each of
    ``addresses`` in turn.  The connection is closed afterwards.

    Returns:
        ``True`` if the bind succeeded.

    """
    for address in addresses:
        try:
            conn = establish(address, options, dn, password)
        except ConnectionFailure:
            continue
        except Exception:  # noqa: BLE001
            return False
        close_quietly(conn)
        return True
    return False


class ConnectionSource(abc.ABC):
    """
    Something operations can borrow a bound ``LDAPObject`` from: either a
    direct :py:class:`Connection` or a pool.
    """

    @abc.abstractmethod
    def checkout(self):
        """Return a bound ``LDAPObject`` for exclusive use."""

    @abc.abstractmethod
    def checkin(self, conn, healthy: bool = True) -> None:
        """
        Give ``conn`` back.  ``healthy=False`` means the connection failed and
        must not be used again.
        """

    @abc.abstractmethod
    def bind_check(self, dn: str, password: str) -> bool:
        """Return ``True`` if ``dn`` can bind with ``password``."""

    @abc.abstractmethod
    def close(self) -> None:
        """Close every connection we own."""

    @contextmanager
    def borrow(self) -> Iterator:
        """
        Check out a connection for the duration of a ``with`` block.

        The connection is checked back in as defunct if a transport error
        escapes the block, and as healthy otherwise.  python-ldap transport
        errors are re-raised as :py:class:`ConnectionFailure`.
        """
        conn = self.checkout()
        healthy = True
        try:
            with transport_errors(self):
                yield conn
        except ConnectionFailure:
            healthy = False
            raise
        finally:
            self.checkin(conn, healthy=healthy)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Connection(ConnectionSource):
    """
    A single, directly held, bound connection.

    Unlike a pool, every borrower gets the same ``LDAPObject``, and
    :py:meth:`bind_check` changes the identity the connection is bound as:
    later operations run as the newly bound dn.

    Args:
        ldap_object: a bound ``LDAPObject``
        address: the server it is connected to

    """

    def __init__(self, ldap_object, address: Address) -> None:
        self.ldap_object = ldap_object
        self.address = address
        self.defunct = False

    @classmethod
    def open(cls, options: ConnectionOptions) -> "Connection":
        """
        Open and bind a direct connection.  With more than one host, the
        hosts are tried in order until one answers.

        Raises:
            BindFailed: the bind was rejected
            ConnectionFailure: none of the hosts could be reached

        """
        failure: ConnectionFailure | None = None
        for address in options.addresses:
            try:
                conn = establish(address, options, options.bind_dn, options.password)
            except ConnectionFailure as e:
                logger.warning(
                    "ldapclient.connection.unreachable address=%s error=%s", address, e
                )
                failure = e
                continue
            return cls(conn, address)
        raise ConnectionFailure(str(failure))

    def checkout(self):
        if self.defunct:
            msg = f"{self.address}: connection is closed"
            raise ConnectionFailure(msg)
        return self.ldap_object

    def checkin(self, conn, healthy: bool = True) -> None:
        if not healthy and not self.defunct:
            logger.warning("ldapclient.connection.defunct address=%s", self.address)
            self.defunct = True
            close_quietly(self.ldap_object)

    def bind_check(self, dn: str, password: str) -> bool:
        try:
            bind(self.checkout(), dn, password)
        except Exception:  # noqa: BLE001
            return False
        return True

    def close(self) -> None:
        if not self.defunct:
            self.defunct = True
            close_quietly(self.ldap_object)

    def __str__(self) -> str:
        return str(self.address)
