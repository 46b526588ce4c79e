"""
Conversion between python-ldap wire entries and structured records.

python-ldap hands us search results as ``(dn, {attribute: [bytes, ...]})``
tuples.  We turn those into plain dicts where each attribute is shaped by a
fixed rule:

* ``objectClass`` is always a :py:class:`set` of strings
* any other attribute with more than one value is a :py:class:`list`, in the
  order the server returned the values
* an attribute with exactly one value is a scalar

Going the other way, :py:func:`encode` builds an add modlist suitable for
``add_ext_s``.
"""

import enum
from collections.abc import Iterable
from typing import Any

from .exceptions import DecodeError, InvalidAttributeValue
from .typing import AddModlist, LDAPData, Record

#: The attribute whose values are decoded as a set
OBJECTCLASS = "objectclass"
#: The record key that holds the distinguished name
DN_KEY = "dn"


class ValueShape(enum.Enum):
    """How the values of one attribute are represented in a record."""

    SCALAR = "scalar"
    LIST = "list"
    SET = "set"


def shape_of(name: str, values: list[Any]) -> ValueShape:
    """
    Decide the :py:class:`ValueShape` for an attribute.

    Args:
        name: the attribute name, in whatever case the server used
        values: the attribute values

    Returns:
        The shape to use for this attribute in a record.

    """
    if name.lower() == OBJECTCLASS:
        return ValueShape.SET
    if len(values) > 1:
        return ValueShape.LIST
    return ValueShape.SCALAR


def decode_value(value: bytes | str) -> str | bytes:
    """
    Decode one attribute value.  Values that are not valid UTF-8 are left as
    :py:class:`bytes`, which is what binary attributes like ``jpegPhoto`` want.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return bytes(value)
    msg = f"unsupported attribute value type {type(value).__name__}"
    raise DecodeError(msg)


def decode_attribute(name: str, values: Any) -> Any:
    """
    Shape the values of a single attribute.

    Raises:
        DecodeError: ``values`` is not a non-empty list of values

    """
    if not isinstance(values, (list, tuple)) or not values:
        msg = f"attribute {name!r} has no values"
        raise DecodeError(msg)
    decoded = [decode_value(v) for v in values]
    shape = shape_of(name, decoded)
    if shape == ValueShape.SET:
        return set(decoded)
    if shape == ValueShape.LIST:
        return decoded
    return decoded[0]


def decode(entry: LDAPData, include_dn: bool = True) -> Record:
    """
    Convert a python-ldap ``(dn, attrs)`` entry into a record.

    Args:
        entry: the wire entry

    Keyword Args:
        include_dn: if ``True``, put the entry's dn under the ``"dn"`` key

    Raises:
        DecodeError: the entry is malformed.  Nothing is partially converted.

    Returns:
        The record.

    """
    try:
        dn, attrs = entry
    except (TypeError, ValueError) as e:
        msg = f"expected a (dn, attributes) pair, got {entry!r}"
        raise DecodeError(msg) from e
    if not isinstance(attrs, dict):
        msg = f"attributes for {dn!r} are not a mapping"
        raise DecodeError(msg)
    record: Record = {}
    if include_dn:
        record[DN_KEY] = dn
    for name, values in attrs.items():
        if not isinstance(name, str):
            msg = f"attribute name {name!r} for {dn!r} is not a string"
            raise DecodeError(msg)
        record[name] = decode_attribute(name, values)
    return record


def _to_bytes(name: str, value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if value is None or isinstance(value, (dict, list, tuple, set, frozenset)):
        msg = f"{name}: {type(value).__name__} is not a valid attribute value"
        raise InvalidAttributeValue(msg)
    return str(value).encode("utf-8")


def encode_values(name: str, value: Any) -> list[bytes]:
    """
    Turn one record value into the list of bytes python-ldap sends.

    Sequences and sets become one wire value per element, :py:class:`bytes`
    is sent untouched as a single binary value, and anything else is
    stringified.

    Raises:
        InvalidAttributeValue: ``value`` is a mapping, ``None``, or a
            collection that contains collections

    """
    if isinstance(value, (bytes, bytearray)):
        return [bytes(value)]
    if isinstance(value, (list, tuple, set, frozenset)):
        elements: Iterable[Any] = value
        if isinstance(value, (set, frozenset)):
            # keep the wire order stable for sets
            elements = sorted(value, key=str)
        return [_to_bytes(name, v) for v in elements]
    return [_to_bytes(name, value)]


def encode(record: Record) -> AddModlist:
    """
    Convert a record into a python-ldap add modlist.  The ``"dn"`` key, if
    present, names the entry and is not sent as an attribute.

    Raises:
        InvalidAttributeValue: a value has an unsupported shape, or is an
            empty collection

    """
    modlist: AddModlist = []
    for name, value in record.items():
        if name == DN_KEY:
            continue
        values = encode_values(str(name), value)
        if not values:
            msg = f"{name}: an entry attribute needs at least one value"
            raise InvalidAttributeValue(msg)
        modlist.append((str(name), values))
    return modlist
