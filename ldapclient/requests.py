"""
Write request construction.

This module turns the declarative dicts accepted by :py:mod:`ldapclient.client`
into request objects that know how to send themselves over a python-ldap
connection, and turns the server's answer back into a result dict of the form::

    {"code": 0, "name": "success", "pre_read": {...}, "post_read": {...}}

Directory result codes are never raised from here; python-ldap raises an
exception for every non-success code, and we fold those back into the result
dict.  Transport errors are left for the connection layer to deal with.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ldapclient import ldap

from .entries import decode, encode, encode_values
from .exceptions import TRANSPORT_ERRORS, error_info
from .typing import AddModlist, ModifyModList, Record, WriteResult

PreReadControl = ldap.readentry.PreReadControl
PostReadControl = ldap.readentry.PostReadControl


class _AllValues:
    """Marker for "every value of this attribute" in a ``delete`` group."""

    def __repr__(self) -> str:
        return "ALL"


#: Use as a value in the ``"delete"`` group of a modification to remove every
#: value of the attribute.
ALL = _AllValues()

#: The modification groups we understand, in the order they are sent.  The
#: server applies modifications in request order, so this order matters when
#: the same attribute shows up in more than one group.
MODIFY_OPERATIONS: tuple[tuple[str, int], ...] = (
    ("add", ldap.MOD_ADD),  # type: ignore[attr-defined]
    ("delete", ldap.MOD_DELETE),  # type: ignore[attr-defined]
    ("replace", ldap.MOD_REPLACE),  # type: ignore[attr-defined]
    ("increment", ldap.MOD_INCREMENT),  # type: ignore[attr-defined]
)

SUCCESS_NAME = "success"


# -----------------------
# Results
# -----------------------


def _response_controls(response: Any) -> list:
    # python-ldap's *_ext_s methods return (rtype, rdata, msgid, ctrls)
    if isinstance(response, tuple) and len(response) >= 4 and response[3]:
        return list(response[3])
    return []


def write_result(
    response_controls: Iterable[Any] | None = None,
    code: int = 0,
    name: str = SUCCESS_NAME,
) -> WriteResult:
    """
    Build a write result, merging in any pre-read or post-read entries the
    server returned.

    Args:
        response_controls: the decoded response controls from python-ldap

    Keyword Args:
        code: the LDAP result code
        name: the name of the result code

    Returns:
        The result dict.

    """
    result: WriteResult = {"code": code, "name": name}
    for control in response_controls or []:
        if control.controlType == PreReadControl.controlType:
            key = "pre_read"
        elif control.controlType == PostReadControl.controlType:
            key = "post_read"
        else:
            continue
        entry = getattr(control, "entry", None)
        if entry is None:
            continue
        result.setdefault(key, {}).update(  # type: ignore[misc]
            decode((getattr(control, "dn", ""), entry), include_dn=False)
        )
    return result


def error_result(exc: Exception) -> WriteResult:
    """
    Turn a python-ldap result-code exception into a write result.

    Args:
        exc: the ``ldap.LDAPError`` python-ldap raised

    Returns:
        The result dict, with ``name`` set to the lower-cased result
        description, e.g. ``"no such object"``.

    """
    code, desc, _ = error_info(exc)
    return write_result(code=code, name=desc.lower())


def _send(func, *args, **kwargs) -> WriteResult:
    try:
        response = func(*args, **kwargs)
    except TRANSPORT_ERRORS:
        raise
    except ldap.LDAPError as e:  # type: ignore[attr-defined]
        return error_result(e)
    return write_result(_response_controls(response))


# -----------------------
# Controls
# -----------------------


def _attribute_names(names: Iterable[Any]) -> list[str]:
    return sorted(str(name) for name in names)


def read_entry_controls(options: dict[str, Any] | None, post_read: bool = True) -> list:
    """
    Build the pre-read and (optionally) post-read request controls asked for
    in ``options``.

    Args:
        options: a modification dict or delete options dict

    Keyword Args:
        post_read: if ``False``, ignore any ``"post_read"`` key

    Both controls are critical, so a server that does not support them
    refuses the operation rather than silently dropping the read.

    Returns:
        A list of python-ldap request controls, possibly empty.

    """
    controls: list = []
    if not options:
        return controls
    if "pre_read" in options:
        controls.append(
            PreReadControl(
                criticality=True, attrList=_attribute_names(options["pre_read"])
            )
        )
    if post_read and "post_read" in options:
        controls.append(
            PostReadControl(
                criticality=True, attrList=_attribute_names(options["post_read"])
            )
        )
    return controls


# -----------------------
# Requests
# -----------------------


@dataclass(frozen=True)
class AddRequest:
    """Add a new entry."""

    dn: str
    modlist: AddModlist

    def send(self, conn) -> WriteResult:
        return _send(conn.add_ext_s, self.dn, self.modlist)


@dataclass(frozen=True)
class ModifyRequest:
    """Modify the attributes of an existing entry."""

    dn: str
    modlist: ModifyModList
    serverctrls: list = field(default_factory=list)

    def send(self, conn) -> WriteResult:
        return _send(
            conn.modify_ext_s, self.dn, self.modlist, serverctrls=self.serverctrls or None
        )


@dataclass(frozen=True)
class DeleteRequest:
    """Delete an entry."""

    dn: str
    serverctrls: list = field(default_factory=list)

    def send(self, conn) -> WriteResult:
        return _send(conn.delete_ext_s, self.dn, serverctrls=self.serverctrls or None)


@dataclass(frozen=True)
class RenameRequest:
    """Change the RDN of an entry, optionally moving it under a new parent."""

    dn: str
    new_rdn: str
    delete_old_rdn: bool
    new_superior: str | None = None

    def send(self, conn) -> WriteResult:
        return _send(
            conn.rename_s,
            self.dn,
            self.new_rdn,
            newsuperior=self.new_superior,
            delold=1 if self.delete_old_rdn else 0,
        )


@dataclass(frozen=True)
class PasswordModifyRequest:
    """
    An RFC 3062 password modify extended operation.  ``user`` is ``None`` to
    change the password of the identity the connection is bound as.
    """

    new_password: str | None
    old_password: str | None = None
    user: str | None = None

    def send(self, conn) -> WriteResult:
        try:
            _, generated = conn.passwd_s(
                self.user, self.old_password, self.new_password, extract_newpw=True
            )
        except TRANSPORT_ERRORS:
            raise
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            return error_result(e)
        result = write_result()
        if generated:
            if isinstance(generated, bytes):
                generated = generated.decode("utf-8")
            result["generated_password"] = generated
        return result


def build_add_request(dn: str, record: Record) -> AddRequest:
    """
    Build an :py:class:`AddRequest` with one attribute per record key.

    Raises:
        InvalidAttributeValue: a record value has an unsupported shape

    """
    return AddRequest(dn, encode(record))


def build_modify_request(dn: str, modifications: dict[str, Any]) -> ModifyRequest:
    """
    Build a :py:class:`ModifyRequest` from a modification dict of the form::

        {
            "add": {"mail": ["a@example.com", "b@example.com"]},
            "delete": {"description": ALL, "mail": "c@example.com"},
            "replace": {"cn": "New Name"},
            "increment": {"uidNumber": 1},
            "pre_read": {"cn"},
            "post_read": {"cn", "uidNumber"},
        }

    Every group is optional.  Modifications are sent in the order add,
    delete, replace, increment.

    Args:
        dn: the dn of the entry to modify
        modifications: the modification dict

    Raises:
        InvalidAttributeValue: a value has an unsupported shape

    Returns:
        The request.

    """
    modlist: ModifyModList = []
    for key, modtype in MODIFY_OPERATIONS:
        for attr, value in (modifications.get(key) or {}).items():
            attr = str(attr)  # noqa: PLW2901
            if modtype == ldap.MOD_DELETE and (value is ALL or value is None):  # type: ignore[attr-defined]
                modlist.append((modtype, attr, None))
            else:
                modlist.append((modtype, attr, encode_values(attr, value)))
    return ModifyRequest(dn, modlist, read_entry_controls(modifications))


def build_delete_request(dn: str, options: dict[str, Any] | None = None) -> DeleteRequest:
    """
    Build a :py:class:`DeleteRequest`.  Only ``"pre_read"`` is honored in
    ``options``; there is nothing left to read after a delete.
    """
    return DeleteRequest(dn, read_entry_controls(options, post_read=False))


def build_rename_request(
    dn: str,
    new_rdn: str,
    delete_old_rdn: bool,
    new_superior: str | None = None,
) -> RenameRequest:
    return RenameRequest(dn, new_rdn, bool(delete_old_rdn), new_superior)


def build_password_modify_request(
    new_password: str | None,
    old_password: str | None = None,
    user: str | None = None,
) -> PasswordModifyRequest:
    return PasswordModifyRequest(new_password, old_password, user)
