"""
TLS policy for ldapclient connections.

libldap takes its TLS configuration as per-connection options, so this module
translates the TLS related :py:class:`~ldapclient.options.ConnectionOptions`
into ``OPT_X_TLS_*`` settings.  Host name verification is done here too,
against the peer certificate, so that it works the same regardless of the
trust policy.
"""

import ipaddress
import logging
from collections.abc import Iterable
from pathlib import Path

from cryptography import x509
from cryptography.x509.oid import NameOID

from ldapclient import ldap

from .exceptions import ConfigError, ConnectionFailure
from .options import ConnectionOptions

logger = logging.getLogger(__name__)

#: TLS protocol names we accept, mapped to the libldap protocol version numbers
SSL_PROTOCOLS: dict[str, int] = {
    "TLSv1": 0x301,
    "TLSv1.1": 0x302,
    "TLSv1.2": 0x303,
    "TLSv1.3": 0x304,
}


def ssl_protocol_mapping(ssl_protocols: Iterable[str] | None) -> list[int]:
    """
    Convert user protocol names into libldap protocol versions.  Names we
    don't support are dropped and logged rather than treated as an error.

    Args:
        ssl_protocols: protocol names like ``"TLSv1.2"``

    Returns:
        The protocol versions, sorted from oldest to newest.

    """
    protocols = list(ssl_protocols or [])
    invalid = [p for p in protocols if p not in SSL_PROTOCOLS]
    if invalid:
        logger.info(
            "ldapclient.tls.unsupported_protocols protocols=%s action=removed",
            ",".join(invalid),
        )
    return sorted({SSL_PROTOCOLS[p] for p in protocols if p in SSL_PROTOCOLS})


def _check_file(path: str, label: str, directory: bool = False) -> None:
    p = Path(path)
    if not p.exists():
        msg = f"{label} does not exist: {path}"
        raise ConfigError(msg)
    if directory and not p.is_dir():
        msg = f"{label} is not a directory: {path}"
        raise ConfigError(msg)
    if not directory and not p.is_file():
        msg = f"{label} is not a file: {path}"
        raise ConfigError(msg)


def apply_tls_options(conn, options: ConnectionOptions) -> None:
    """
    Configure the TLS policy on a python-ldap connection object.  This must
    happen before the connection talks to the server.

    The default is to trust every certificate.  ``trust_managers`` (a CA
    directory) wins over ``trust_store`` (a CA bundle); either one makes
    certificate validation mandatory.

    Args:
        conn: an ``LDAPObject`` from ``ldap.initialize``
        options: the connection options

    Raises:
        ConfigError: a CA file or directory doesn't exist

    """
    if options.trust_managers:
        _check_file(options.trust_managers, "CA Certificate directory", directory=True)
        conn.set_option(ldap.OPT_X_TLS_CACERTDIR, options.trust_managers)  # type: ignore[attr-defined]
        conn.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)  # type: ignore[attr-defined]
    elif options.trust_store:
        _check_file(options.trust_store, "CA Certificate file")
        conn.set_option(ldap.OPT_X_TLS_CACERTFILE, options.trust_store)  # type: ignore[attr-defined]
        conn.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)  # type: ignore[attr-defined]
    else:
        conn.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)  # type: ignore[attr-defined]
    if options.cipher_suites:
        conn.set_option(ldap.OPT_X_TLS_CIPHER_SUITE, ":".join(options.cipher_suites))  # type: ignore[attr-defined]
    if options.ssl_protocols is not None:
        versions = ssl_protocol_mapping(options.ssl_protocols)
        if versions:
            conn.set_option(ldap.OPT_X_TLS_PROTOCOL_MIN, versions[0])  # type: ignore[attr-defined]
            # OPT_X_TLS_PROTOCOL_MAX needs a recent libldap
            protocol_max = getattr(ldap, "OPT_X_TLS_PROTOCOL_MAX", None)
            if protocol_max is not None:
                conn.set_option(protocol_max, versions[-1])
    # reinitialize TLS context to materialize settings
    conn.set_option(ldap.OPT_X_TLS_NEWCTX, 0)  # type: ignore[attr-defined]


def hostname_matches(hostname: str, pattern: str, allow_wildcard: bool = False) -> bool:
    """
    Compare a host name to a name from a certificate.

    A wildcard is only honored when ``allow_wildcard`` is ``True``, only as
    the whole leftmost label, and it matches exactly one label.

    Args:
        hostname: the name we connected to
        pattern: a DNS name or common name from the certificate

    Keyword Args:
        allow_wildcard: whether ``*.example.com`` style names may match

    Returns:
        ``True`` if the names match.

    """
    hostname = hostname.rstrip(".").lower()
    pattern = pattern.rstrip(".").lower()
    if not pattern:
        return False
    if "*" not in pattern:
        return hostname == pattern
    if not allow_wildcard:
        return False
    first, _, rest = pattern.partition(".")
    if first != "*" or not rest or "*" in rest:
        return False
    host_first, _, host_rest = hostname.partition(".")
    return bool(host_first) and host_rest == rest


def certificate_names(der: bytes) -> list[str]:
    """
    Return the names a certificate is valid for: the subjectAltName DNS names
    and IP addresses, or the subject common names if there is no
    subjectAltName extension.
    """
    cert = x509.load_der_x509_certificate(der)
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return [
            str(attr.value)
            for attr in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        ]
    names = list(san.get_values_for_type(x509.DNSName))
    names.extend(str(ip) for ip in san.get_values_for_type(x509.IPAddress))
    return names


def _is_ip_address(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def verify_hostname(conn, hostname: str, allow_wildcard: bool = False) -> None:
    """
    Check that the certificate the server presented is valid for ``hostname``.
    The TLS session must already be established.

    Args:
        conn: an ``LDAPObject`` with an established TLS session
        hostname: the host name we connected to

    Keyword Args:
        allow_wildcard: whether wildcard certificates may match

    Raises:
        ConfigError: this libldap build can't hand us the peer certificate
        ConnectionFailure: the certificate does not match ``hostname``

    """
    peercert_option = getattr(ldap, "OPT_X_TLS_PEERCERT", None)
    if peercert_option is None:
        msg = "verify_host needs a python-ldap built with OPT_X_TLS_PEERCERT support"
        raise ConfigError(msg)
    der = conn.get_option(peercert_option)
    if not der:
        msg = f"{hostname}: the server did not present a certificate"
        raise ConnectionFailure(msg)
    names = certificate_names(der)
    wildcard = allow_wildcard and not _is_ip_address(hostname)
    if not any(hostname_matches(hostname, name, allow_wildcard=wildcard) for name in names):
        logger.warning(
            "ldapclient.tls.hostname_mismatch host=%s names=%s", hostname, ",".join(names)
        )
        msg = f"certificate for {hostname} does not match any of: {', '.join(names)}"
        raise ConnectionFailure(msg)
