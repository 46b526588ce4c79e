"""
LDAP client type definitions.

This module provides type aliases for python-ldap data structures and for the
structured records and results returned by :py:mod:`ldapclient.client`.
"""

from typing import Any, TypedDict

#: A python-ldap search result row: ``(dn, {attribute: [value, ...]})``
LDAPData = tuple[str, dict[str, list[bytes]]]
AddModlistEntry = tuple[str, list[bytes]]
AddModlist = list[AddModlistEntry]
ModifyModListEntry = tuple[int, str, list[bytes] | None]
ModifyModList = list[ModifyModListEntry]
#: A decoded directory entry
Record = dict[str, Any]
#: A host specification: ``"host:port"`` or ``{"address": ..., "port": ...}``
HostSpec = str | dict[str, Any] | None


class _WriteResultBase(TypedDict):
    code: int
    name: str


class WriteResult(_WriteResultBase, total=False):
    pre_read: Record
    post_read: Record
    generated_password: str
