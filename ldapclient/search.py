"""
Searching.

Three ways to run a search, all driven by a :py:class:`SearchCriteria`:

* :py:func:`search`: one request, every result in memory
* :py:func:`search_all`: RFC 2696 paged results, looping on the server's
  cookie until it runs out, every result in memory
* :py:func:`search_each`: entries are read one at a time and handed to a
  callback, so memory use does not grow with the result set

A search goes through the states in :py:class:`SearchState`; we log the
transitions at DEBUG.
"""

import enum
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from ldap_filter import Filter

from ldapclient import ldap

from .connection import ConnectionSource
from .entries import decode
from .exceptions import (
    TRANSPORT_ERRORS,
    ConfigError,
    ConnectionFailure,
    DecodeError,
    LdapClientError,
    SearchFailed,
    error_info,
)
from .typing import Record

SimplePagedResultsControl = ldap.controls.SimplePagedResultsControl

logger = logging.getLogger(__name__)

#: Entries per page for :py:func:`search_all`
DEFAULT_PAGE_SIZE = 500
#: Advisory buffer size for :py:func:`search_each`
DEFAULT_QUEUE_SIZE = 100
#: Match every entry
DEFAULT_FILTER: str = Filter.attribute("objectclass").present().to_string()

SCOPES: dict[str, int] = {
    "base": ldap.SCOPE_BASE,  # type: ignore[attr-defined]
    "one": ldap.SCOPE_ONELEVEL,  # type: ignore[attr-defined]
    "sub": ldap.SCOPE_SUBTREE,  # type: ignore[attr-defined]
}


class SearchState(enum.Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    PAGE_RECEIVED = "page-received"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass(frozen=True)
class SearchCriteria:
    """
    What to search for.  ``attributes`` of ``None`` asks for all user
    attributes (never operational ones).
    """

    base: str
    scope: int = ldap.SCOPE_SUBTREE  # type: ignore[attr-defined]
    filterstr: str = DEFAULT_FILTER
    attributes: tuple[str, ...] | None = None

    @property
    def attrlist(self) -> list[str] | None:
        if self.attributes is None:
            return None
        return list(self.attributes)


def get_scope(scope: str | int | None) -> int:
    """
    Convert ``"base"``, ``"one"`` or ``"sub"`` into a python-ldap scope.
    ``None`` means ``"sub"``.  python-ldap scope constants pass through.

    Raises:
        ConfigError: ``scope`` is not one of the above

    """
    if scope is None:
        return ldap.SCOPE_SUBTREE  # type: ignore[attr-defined]
    if isinstance(scope, str) and scope.lower() in SCOPES:
        return SCOPES[scope.lower()]
    if isinstance(scope, int) and not isinstance(scope, bool) and scope in SCOPES.values():
        return scope
    msg = f"Unknown search scope {scope!r}; use one of: {', '.join(SCOPES)}"
    raise ConfigError(msg)


def get_filter(filterstr: Any) -> str:
    """
    Accept either a filter string or an ``ldap_filter`` filter object.

    Raises:
        ConfigError: ``filterstr`` is neither

    """
    if filterstr is None or filterstr == "":
        return DEFAULT_FILTER
    if isinstance(filterstr, str):
        return filterstr
    if hasattr(filterstr, "to_string"):
        return filterstr.to_string()
    msg = f"Invalid search filter {filterstr!r}"
    raise ConfigError(msg)


def get_attributes(attributes: Iterable[Any] | None) -> tuple[str, ...] | None:
    if not attributes:
        return None
    if isinstance(attributes, str):
        return (attributes,)
    return tuple(str(a) for a in attributes)


def search_criteria(
    base: str,
    scope: str | int | None = None,
    filter: Any = None,  # noqa: A002
    attributes: Iterable[Any] | None = None,
) -> SearchCriteria:
    """
    Build a :py:class:`SearchCriteria`, filling in the defaults: subtree scope,
    ``(objectclass=*)`` and all user attributes.

    Raises:
        ConfigError: the scope or filter is invalid

    """
    return SearchCriteria(
        base=base,
        scope=get_scope(scope),
        filterstr=get_filter(filter),
        attributes=get_attributes(attributes),
    )


def decode_rows(rows: Iterable[Any] | None) -> list[Record]:
    """
    Decode python-ldap result rows, skipping search references (AD returns
    those at the end of a result set) and entries that decode to nothing.
    """
    records: list[Record] = []
    for row in rows or []:
        try:
            dn, attrs = row
        except (TypeError, ValueError):
            dn, attrs = None, None
        if dn is None or not isinstance(attrs, dict):
            continue
        record = decode(row)
        if record:
            records.append(record)
    return records


def _search_error(e: Exception, criteria: SearchCriteria) -> SearchFailed:
    code, desc, info = error_info(e)
    logger.warning(
        "ldapclient.search.failed base=%s filter=%s code=%s desc=%s",
        criteria.base,
        criteria.filterstr,
        code,
        desc,
    )
    return SearchFailed(code, info or desc)


def _result_timeout(conn) -> float:
    timeout = getattr(conn, "timeout", -1)
    return timeout if isinstance(timeout, (int, float)) else -1


def _run_search(conn, criteria: SearchCriteria, serverctrls: list | None = None):
    """Send one search and wait for all of its results."""
    msgid = conn.search_ext(
        criteria.base,
        criteria.scope,
        criteria.filterstr,
        criteria.attrlist,
        serverctrls=serverctrls,
    )
    _, rdata, _, rctrls = conn.result3(msgid, all=1, timeout=_result_timeout(conn))
    return rdata, rctrls


def search(source: ConnectionSource, criteria: SearchCriteria) -> list[Record]:
    """
    Run a search and return every result.

    Args:
        source: the pool or connection to use
        criteria: what to search for

    Raises:
        ConnectionFailure: the server could not be reached
        SearchFailed: the server rejected the search

    Returns:
        The matching records; an empty list if nothing matched or the base
        entry does not exist.

    """
    with source.borrow() as conn:
        try:
            rdata, _ = _run_search(conn, criteria)
        except ldap.NO_SUCH_OBJECT:  # type: ignore[attr-defined]
            return []
        except TRANSPORT_ERRORS:
            raise
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            raise _search_error(e, criteria) from e
    if not rdata:
        return []
    return decode_rows(rdata)


def _get_pctrls(serverctrls: Iterable[Any] | None) -> list:
    # The paged results control in the response carries the cookie for the
    # next request.
    return [
        c
        for c in serverctrls or []
        if c.controlType == SimplePagedResultsControl.controlType
    ]


def search_all(
    source: ConnectionSource,
    criteria: SearchCriteria,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> list[Record]:
    """
    Run a paged search and return every result.

    We keep asking for pages of ``page_size`` entries for as long as the server
    hands back a non-empty cookie.  There is no cap on the number of pages.

    Args:
        source: the pool or connection to use
        criteria: what to search for

    Keyword Args:
        page_size: entries per page

    Raises:
        ConnectionFailure: the server could not be reached
        SearchFailed: the server rejected the search

    Returns:
        The matching records, in the order the server returned them.

    """
    results: list[Record] = []
    state = SearchState.IDLE
    pages = 0
    # Note that we pass '' for the cookie because on first iteration, it
    # starts out empty.
    paging = SimplePagedResultsControl(False, size=page_size, cookie="")  # noqa: FBT003
    with source.borrow() as conn:
        while True:
            state = SearchState.REQUESTING
            try:
                rdata, serverctrls = _run_search(conn, criteria, serverctrls=[paging])
            except ldap.NO_SUCH_OBJECT:  # type: ignore[attr-defined]
                state = SearchState.EXHAUSTED
                break
            except TRANSPORT_ERRORS:
                logger.debug("ldapclient.search.paged.state state=%s", SearchState.FAILED.value)
                raise
            except ldap.LDAPError as e:  # type: ignore[attr-defined]
                logger.debug("ldapclient.search.paged.state state=%s", SearchState.FAILED.value)
                raise _search_error(e, criteria) from e
            state = SearchState.PAGE_RECEIVED
            pages += 1
            results.extend(decode_rows(rdata))
            paged_controls = _get_pctrls(serverctrls)
            logger.debug(
                "ldapclient.search.paged.page base=%s page=%d entries=%d",
                criteria.base,
                pages,
                len(results),
            )
            # No control means the server ignored paging and sent everything;
            # no cookie means that was the last page.
            if not paged_controls or not paged_controls[0].cookie:
                state = SearchState.EXHAUSTED
                break
            paging.cookie = paged_controls[0].cookie
    logger.debug(
        "ldapclient.search.paged.state state=%s pages=%d entries=%d",
        state.value,
        pages,
        len(results),
    )
    return results


class EntryStream:
    """
    Reads the results of one search an entry at a time.

    Protocol errors raised while reading are re-raised as
    :py:class:`ConnectionFailure` (transport) or :py:class:`SearchFailed`.

    Args:
        conn: the ``LDAPObject`` to search on
        criteria: what to search for

    """

    def __init__(self, conn, criteria: SearchCriteria) -> None:
        self.conn = conn
        self.criteria = criteria
        self.msgid: int | None = None
        self.state = SearchState.IDLE

    def _fail(self, e: Exception) -> Exception:
        self.state = SearchState.FAILED
        if isinstance(e, TRANSPORT_ERRORS):
            _, desc, info = error_info(e)
            return ConnectionFailure(f"{self.criteria.base}: {desc} {info}".strip())
        return _search_error(e, self.criteria)

    def __iter__(self) -> Iterator[Record]:
        self.state = SearchState.REQUESTING
        try:
            self.msgid = self.conn.search_ext(
                self.criteria.base,
                self.criteria.scope,
                self.criteria.filterstr,
                self.criteria.attrlist,
            )
        except ldap.NO_SUCH_OBJECT:  # type: ignore[attr-defined]
            self.state = SearchState.EXHAUSTED
            return
        except (ldap.LDAPError, OSError) as e:  # type: ignore[attr-defined]
            raise self._fail(e) from e
        while self.state != SearchState.EXHAUSTED:
            try:
                rtype, rdata, _, _ = self.conn.result3(
                    self.msgid, all=0, timeout=_result_timeout(self.conn)
                )
            except ldap.NO_SUCH_OBJECT:  # type: ignore[attr-defined]
                self.state = SearchState.EXHAUSTED
                return
            except (ldap.LDAPError, OSError) as e:  # type: ignore[attr-defined]
                raise self._fail(e) from e
            try:
                records = decode_rows(rdata)
            except DecodeError:
                self.state = SearchState.FAILED
                raise
            if rtype == ldap.RES_SEARCH_RESULT:  # type: ignore[attr-defined]
                self.state = SearchState.EXHAUSTED
            yield from records

    def abandon(self) -> None:
        """
        Tell the server to stop sending results for this search.

        Raises:
            ConnectionFailure: the abandon could not be sent

        """
        if self.msgid is None or self.state in (SearchState.EXHAUSTED, SearchState.FAILED):
            return
        try:
            self.conn.abandon(self.msgid)
        except (ldap.LDAPError, OSError) as e:  # type: ignore[attr-defined]
            raise self._fail(e) from e
        self.state = SearchState.EXHAUSTED


def search_each(
    source: ConnectionSource,
    criteria: SearchCriteria,
    handler: Callable[[Record], Any],
    queue_size: int = DEFAULT_QUEUE_SIZE,
) -> int:
    """
    Run a search and call ``handler`` once per result, without holding the
    whole result set in memory.

    One connection is held for the whole search and is always given back:

    * after the last entry, as healthy
    * if reading results fails for any reason (the connection drops, the
      server rejects the search, an entry can't be decoded), as defunct, and
      the error is re-raised
    * if ``handler`` raises, the search is abandoned, the connection is
      given back as healthy and the handler's exception propagates

    Nothing is retried; ``handler`` sees every entry at most once.

    Args:
        source: the pool or connection to use
        criteria: what to search for
        handler: called with each record

    Keyword Args:
        queue_size: how many entries may be buffered; advisory only

    Raises:
        ConfigError: ``queue_size`` is not a positive integer
        ConnectionFailure: the connection failed while reading results
        SearchFailed: the server rejected the search
        DecodeError: an entry in the results could not be decoded

    Returns:
        The number of records passed to ``handler``.

    """
    if not isinstance(queue_size, int) or queue_size < 1:
        msg = f"queue_size must be a positive integer, not {queue_size!r}"
        raise ConfigError(msg)
    conn = source.checkout()
    stream = EntryStream(conn, criteria)
    healthy = True
    count = 0
    logger.debug(
        "ldapclient.search.stream.start base=%s filter=%s queue_size=%d",
        criteria.base,
        criteria.filterstr,
        queue_size,
    )
    records = iter(stream)
    try:
        while True:
            try:
                record = next(records)
            except StopIteration:
                break
            except BaseException:
                # Unread results may still be queued on the connection.
                healthy = False
                raise
            try:
                handler(record)
            except BaseException:
                try:
                    stream.abandon()
                except LdapClientError:
                    healthy = False
                raise
            count += 1
    finally:
        source.checkin(conn, healthy=healthy)
        logger.debug(
            "ldapclient.search.stream.end base=%s entries=%d state=%s",
            criteria.base,
            count,
            stream.state.value,
        )
    return count
