"""
The public ldapclient API.

Every operation takes a connection source as its first argument: the pool
returned by :py:func:`connect`, or a direct connection from
:py:func:`open_direct`.  Example::

    from ldapclient import client

    pool = client.connect(
        host=["ldap1.example.com:389", "ldap2.example.com:389"],
        bind_dn="cn=admin,dc=example,dc=com",
        password="secret",
        num_connections=4,
        start_tls=True,
    )
    client.add(pool, "ou=people,dc=example,dc=com",
               {"objectClass": ["top", "organizationalUnit"], "ou": "people"})
    client.get(pool, "ou=people,dc=example,dc=com")
    # {'dn': 'ou=people,dc=example,dc=com',
    #  'objectClass': {'top', 'organizationalUnit'}, 'ou': 'people'}

Write operations return ``{"code": ..., "name": ...}`` whatever the server
says; check ``code`` yourself.  Only configuration, bind and connection
problems raise.
"""

import logging
from collections.abc import Callable, Iterable
from typing import Any

from .connection import Connection, ConnectionSource
from .options import ConnectionOptions
from .pool import ConnectionPool, RoundRobinPool, SingleHostPool
from .requests import (
    build_add_request,
    build_delete_request,
    build_modify_request,
    build_password_modify_request,
    build_rename_request,
)
from .search import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_QUEUE_SIZE,
    search_criteria,
)
from .search import search as _search
from .search import search_all as _search_all
from .search import search_each as _search_each
from .typing import Record, WriteResult

logger = logging.getLogger(__name__)


def _options(options: dict[str, Any] | None, kwargs: dict[str, Any]) -> ConnectionOptions:
    merged = dict(options or {})
    merged.update(kwargs)
    return ConnectionOptions.from_dict(merged)


def connect(options: dict[str, Any] | None = None, **kwargs) -> ConnectionPool:
    """
    Connect to one or more LDAP servers and return a thread-safe pool.

    Options may be passed as a dict, as keyword arguments, or both (keyword
    arguments win):

    * ``host``: ``"address:port"``, ``{"address": ..., "port": ...}``, or a
      list of either for a round-robin pool with failover.  Defaults to
      ``localhost``; the port defaults to 389, or 636 with ``ssl``.
    * ``bind_dn``, ``password``: bind credentials; anonymous if omitted
    * ``num_connections``: pool size, default 1
    * ``ssl``: connect over implicit TLS (ldaps)
    * ``start_tls``: upgrade a plaintext connection with StartTLS
    * ``trust_store``: only trust certificates signed by the CAs in this file
    * ``trust_managers``: only trust certificates signed by the CAs in this
      directory
    * ``cipher_suites``, ``ssl_protocols``: restrict the TLS parameters
    * ``verify_host``, ``wildcard_host``: verify the certificate host name,
      optionally accepting wildcard certificates
    * ``connect_timeout``: milliseconds, default 60000
    * ``timeout``: milliseconds to wait for a response, default 300000
    * ``checkout_timeout``: seconds to wait for a free pooled connection

    Raises:
        ConfigError: the options are invalid; nothing was opened
        BindFailed: the initial bind was rejected
        ConnectionFailure: the server could not be reached

    Returns:
        A :py:class:`~ldapclient.pool.SingleHostPool`, or a
        :py:class:`~ldapclient.pool.RoundRobinPool` for several hosts.

    """
    opts = _options(options, kwargs)
    if opts.multi_host:
        pool: ConnectionPool = RoundRobinPool(opts)
    else:
        pool = SingleHostPool(opts)
    logger.debug("ldapclient.connect pool=%s size=%d", pool, opts.num_connections)
    return pool


def open_direct(options: dict[str, Any] | None = None, **kwargs) -> Connection:
    """
    Open a single bound connection, not a pool.  Takes the same options as
    :py:func:`connect`.  :py:func:`bind_check` on a direct connection changes
    the identity it is bound as.
    """
    return Connection.open(_options(options, kwargs))


def bind_check(source: ConnectionSource, dn: str, password: str) -> bool:
    """
    Check whether ``dn`` can bind with ``password``.

    On a direct connection this rebinds the connection itself, so later
    operations on it run as ``dn``.  On a pool the check uses a connection
    of its own and pooled connections are unaffected.

    Returns:
        ``True`` on success; ``False`` on any failure, including errors that
        have nothing to do with the credentials.

    """
    try:
        return source.bind_check(dn, password)
    except Exception:  # noqa: BLE001
        logger.warning("ldapclient.bind_check.error dn=%s", dn)
        return False


def get(
    source: ConnectionSource, dn: str, attributes: Iterable[Any] | None = None
) -> Record | None:
    """
    Read one entry.

    Args:
        source: the pool or connection to use
        dn: the dn of the entry

    Keyword Args:
        attributes: the attributes to return; all user attributes if omitted

    Returns:
        The record, or ``None`` if there is no such entry.

    """
    results = _search(source, search_criteria(dn, scope="base", attributes=attributes))
    if not results:
        return None
    return results[0]


def add(source: ConnectionSource, dn: str, entry: Record) -> WriteResult:
    """
    Add an entry.  ``entry`` maps attribute names to a value or a list of
    values.

    Raises:
        InvalidAttributeValue: a value can't be sent to the server

    """
    request = build_add_request(dn, entry)
    with source.borrow() as conn:
        result = request.send(conn)
    logger.debug("ldapclient.add dn=%s code=%s", dn, result["code"])
    return result


def modify(source: ConnectionSource, dn: str, modifications: dict[str, Any]) -> WriteResult:
    """
    Modify an entry.  ``modifications`` looks like::

        {
            "add": {"attribute-a": "some value", "attribute-b": ["v1", "v2"]},
            "delete": {"attribute-c": ALL, "attribute-d": "some value"},
            "replace": {"attribute-e": ["v1", "v2"]},
            "increment": {"attribute-f": 1},
            "pre_read": {"attribute-a", "attribute-b"},
            "post_read": {"attribute-c"},
        }

    ``add`` adds values, ``delete`` deletes values (:py:data:`ldapclient.ALL`
    deletes them all), ``replace`` replaces the values and ``increment`` adds
    to a numeric value.  ``pre_read`` and ``post_read`` name attributes to
    read before and after the change; they come back under the same keys in
    the result.

    Raises:
        InvalidAttributeValue: a value can't be sent to the server

    """
    request = build_modify_request(dn, modifications)
    with source.borrow() as conn:
        result = request.send(conn)
    logger.debug("ldapclient.modify dn=%s code=%s", dn, result["code"])
    return result


def modify_rdn(
    source: ConnectionSource,
    dn: str,
    new_rdn: str,
    delete_old_rdn: bool,
    new_superior: str | None = None,
) -> WriteResult:
    """
    Rename an entry.

    Args:
        source: the pool or connection to use
        dn: the dn of the entry
        new_rdn: the new RDN in ``attr=value`` form, e.g. ``cn=foo``
        delete_old_rdn: whether to remove the old RDN value from the entry

    Keyword Args:
        new_superior: move the entry under this dn as well

    """
    request = build_rename_request(dn, new_rdn, delete_old_rdn, new_superior)
    with source.borrow() as conn:
        result = request.send(conn)
    logger.debug("ldapclient.modify_rdn dn=%s new_rdn=%s code=%s", dn, new_rdn, result["code"])
    return result


def delete(
    source: ConnectionSource, dn: str, options: dict[str, Any] | None = None
) -> WriteResult:
    """
    Delete an entry.  ``options`` may contain ``"pre_read"``, the attributes to
    read before the entry goes; they come back under ``"pre_read"`` in the
    result.
    """
    request = build_delete_request(dn, options)
    with source.borrow() as conn:
        result = request.send(conn)
    logger.debug("ldapclient.delete dn=%s code=%s", dn, result["code"])
    return result


def modify_password(source: ConnectionSource, *passwords: str) -> WriteResult:
    """
    Change a password with the password modify extended operation.

    * ``modify_password(source, new)``: change the password of the identity
      the connection is bound as
    * ``modify_password(source, old, new)``: the same, checking the old
      password
    * ``modify_password(source, old, new, dn)``: change the password of
      ``dn``, which needs the right privileges

    If the server generated a password, it is in the result under
    ``"generated_password"``.

    Raises:
        TypeError: not one, two or three password arguments

    """
    user = None
    old = None
    if len(passwords) == 1:
        (new,) = passwords
    elif len(passwords) == 2:  # noqa: PLR2004
        old, new = passwords
    elif len(passwords) == 3:  # noqa: PLR2004
        old, new, user = passwords
    else:
        msg = f"modify_password takes 1 to 3 password arguments ({len(passwords)} given)"
        raise TypeError(msg)
    request = build_password_modify_request(new, old, user)
    with source.borrow() as conn:
        result = request.send(conn)
    logger.info("ldapclient.modify_password dn=%s code=%s", user or "self", result["code"])
    return result


def search(
    source: ConnectionSource,
    base: str,
    scope: str | None = None,
    filter: Any = None,  # noqa: A002
    attributes: Iterable[Any] | None = None,
) -> list[Record]:
    """
    Search, reading every result into memory.

    Args:
        source: the pool or connection to use
        base: the dn to search from

    Keyword Args:
        scope: ``"base"``, ``"one"`` or ``"sub"`` (the default)
        filter: a filter string or ``ldap_filter`` object; defaults to
            ``(objectclass=*)``
        attributes: the attributes to return; all user attributes if omitted

    Returns:
        The matching records; an empty list if there are none.

    """
    return _search(source, search_criteria(base, scope, filter, attributes))


def search_all(
    source: ConnectionSource,
    base: str,
    scope: str | None = None,
    filter: Any = None,  # noqa: A002
    attributes: Iterable[Any] | None = None,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> list[Record]:
    """
    Like :py:func:`search`, but fetches the results in pages so that server
    size limits don't cut the result set short.
    """
    return _search_all(
        source, search_criteria(base, scope, filter, attributes), page_size=page_size
    )


def search_each(
    source: ConnectionSource,
    base: str,
    handler: Callable[[Record], Any],
    scope: str | None = None,
    filter: Any = None,  # noqa: A002
    attributes: Iterable[Any] | None = None,
    queue_size: int = DEFAULT_QUEUE_SIZE,
) -> int:
    """
    Search and call ``handler`` with each result as it arrives, without
    reading the whole result set into memory.  Takes the same options as
    :py:func:`search` plus ``queue_size``, an advisory buffer size.

    Returns:
        The number of records passed to ``handler``.

    """
    return _search_each(
        source,
        search_criteria(base, scope, filter, attributes),
        handler,
        queue_size=queue_size,
    )
