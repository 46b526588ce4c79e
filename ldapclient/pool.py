"""
Connection pools.

Two pools share the :py:class:`~ldapclient.connection.ConnectionSource`
interface:

* :py:class:`SingleHostPool` binds one connection to one server up front and
  grows to ``num_connections`` connections bound as the same identity.
* :py:class:`RoundRobinPool` opens connections lazily, each to the next server
  in rotation, and fails over to the other servers when one is unreachable.

Both are safe to share between threads.  :py:meth:`ConnectionPool.checkout`
blocks while every connection is checked out.
"""

import abc
import logging
import threading
import time
from typing import Any

from .connection import (
    ConnectionSource,
    bind_throwaway,
    close_quietly,
    establish,
)
from .exceptions import ConnectionFailure
from .options import Address, ConnectionOptions

logger = logging.getLogger(__name__)


class ConnectionPool(ConnectionSource):
    """
    Bookkeeping shared by the pool implementations.  Subclasses only need to
    know how to make a new bound connection.

    Args:
        options: the connection options; ``num_connections`` is the pool size
            and ``checkout_timeout`` bounds how long :py:meth:`checkout` waits

    """

    def __init__(self, options: ConnectionOptions) -> None:
        self.options = options
        self.size: int = options.num_connections
        self._lock = threading.Condition()
        #: connections ready to be checked out
        self._idle: list[Any] = []
        #: every live connection we made, idle or checked out, and its server
        self._live: dict[Any, Address] = {}
        #: slots reserved by checkouts that are still connecting
        self._pending = 0
        self._closed = False

    @abc.abstractmethod
    def _create(self) -> tuple[Any, Address]:
        """
        Open and bind a new connection.

        Returns:
            The bound ``LDAPObject`` and the address it is connected to.

        """

    def _add(self, conn, address: Address) -> None:
        with self._lock:
            self._live[conn] = address
            self._idle.append(conn)

    @property
    def idle_count(self) -> int:
        with self._lock:
            return len(self._idle)

    @property
    def checked_out(self) -> int:
        """The number of connections currently lent out."""
        with self._lock:
            return len(self._live) - len(self._idle)

    def checkout(self):
        """
        Borrow a connection, making a new one if the pool has room.

        Raises:
            ConnectionFailure: the pool is closed, no connection became free
                within ``checkout_timeout`` seconds, or a new connection could
                not be made
            BindFailed: a new connection could not be bound

        Returns:
            A bound ``LDAPObject``.

        """
        timeout = self.options.checkout_timeout
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            while True:
                if self._closed:
                    msg = f"{self}: pool is closed"
                    raise ConnectionFailure(msg)
                if self._idle:
                    return self._idle.pop()
                if len(self._live) + self._pending < self.size:
                    self._pending += 1
                    break
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    msg = f"{self}: timed out waiting for a free connection"
                    raise ConnectionFailure(msg)
                self._lock.wait(remaining)
        try:
            conn, address = self._create()
        except BaseException:
            with self._lock:
                self._pending -= 1
                self._lock.notify()
            raise
        with self._lock:
            self._pending -= 1
            self._live[conn] = address
        return conn

    def checkin(self, conn, healthy: bool = True) -> None:
        """
        Return a borrowed connection.  Unhealthy connections are closed and
        their slot freed, so the next checkout makes a fresh one.
        """
        with self._lock:
            address = self._live.get(conn)
            keep = healthy and not self._closed and address is not None
            if keep:
                self._idle.append(conn)
            else:
                self._live.pop(conn, None)
            self._lock.notify()
        if not keep:
            if not healthy:
                logger.warning("ldapclient.pool.checkin.defunct address=%s", address)
            close_quietly(conn)

    def close(self) -> None:
        """
        Close the idle connections.  Connections still checked out are closed
        when they are checked in.
        """
        with self._lock:
            self._closed = True
            idle = self._idle
            self._idle = []
            for conn in idle:
                self._live.pop(conn, None)
            self._lock.notify_all()
        for conn in idle:
            close_quietly(conn)
        logger.debug("ldapclient.pool.closed pool=%s", self)

    @abc.abstractmethod
    def _bind_addresses(self) -> list[Address]:
        """The servers to try, in order, for :py:meth:`bind_check`."""

    def bind_check(self, dn: str, password: str) -> bool:
        """
        Check whether ``dn`` can bind with ``password``.  The check runs on a
        connection of its own, so the identity of the pooled connections is
        not affected.

        Returns:
            ``True`` if the bind succeeded, ``False`` on any failure.

        """
        return bind_throwaway(self._bind_addresses(), self.options, dn, password)


class SingleHostPool(ConnectionPool):
    """
    A pool of connections to one server, all bound as the same identity.

    The first connection is opened and bound when the pool is created, so bad
    credentials or an unreachable server fail right away.

    Raises:
        BindFailed: the initial bind was rejected
        ConnectionFailure: the server could not be reached

    """

    def __init__(self, options: ConnectionOptions) -> None:
        super().__init__(options)
        self.address = options.addresses[0]
        conn = establish(self.address, options, options.bind_dn, options.password)
        self._add(conn, self.address)

    def _create(self) -> tuple[Any, Address]:
        conn = establish(
            self.address, self.options, self.options.bind_dn, self.options.password
        )
        return conn, self.address

    def _bind_addresses(self) -> list[Address]:
        return [self.address]

    def __str__(self) -> str:
        return str(self.address)


class RoundRobinPool(ConnectionPool):
    """
    A pool of connections spread over several servers.

    Each new connection goes to the next server in rotation.  If that server
    can't be reached we fail over to the ones after it; only when every server
    fails does :py:meth:`checkout` raise.

    Args:
        options: connection options whose ``host`` is a collection of hosts

    """

    def __init__(self, options: ConnectionOptions) -> None:
        super().__init__(options)
        self.addresses: list[Address] = options.addresses
        self._rotation = 0
        self._rotation_lock = threading.Lock()

    def _rotate(self) -> list[Address]:
        with self._rotation_lock:
            start = self._rotation
            self._rotation = (self._rotation + 1) % len(self.addresses)
        return self.addresses[start:] + self.addresses[:start]

    def _create(self) -> tuple[Any, Address]:
        errors = []
        for address in self._rotate():
            try:
                conn = establish(
                    address, self.options, self.options.bind_dn, self.options.password
                )
            except ConnectionFailure as e:
                logger.warning(
                    "ldapclient.pool.failover address=%s error=%s", address, e
                )
                errors.append(str(e))
                continue
            return conn, address
        msg = f"no ldap server could be reached: {'; '.join(errors)}"
        raise ConnectionFailure(msg)

    def _bind_addresses(self) -> list[Address]:
        # Start where the rotation is, but leave it there for the pool.
        with self._rotation_lock:
            start = self._rotation
        return self.addresses[start:] + self.addresses[:start]

    def __str__(self) -> str:
        return ",".join(str(a) for a in self.addresses)
