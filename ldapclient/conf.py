"""
Build connection pools from Django settings.

``settings.LDAP_SERVERS`` maps a name to a dict of the options
:py:func:`ldapclient.client.connect` takes::

    LDAP_SERVERS = {
        "default": {
            "host": ["ldap1.example.com", "ldap2.example.com"],
            "bind_dn": "cn=admin,dc=example,dc=com",
            "password": "secret",
            "start_tls": True,
            "num_connections": 4,
        },
    }
"""

from typing import Any

from django.conf import settings

from .client import connect
from .exceptions import ConfigError
from .pool import ConnectionPool


def get_server_config(name: str = "default") -> dict[str, Any]:
    """
    Return the options for ``name`` from ``settings.LDAP_SERVERS``.

    Raises:
        ConfigError: ``settings.LDAP_SERVERS`` is missing or has no ``name`` key

    """
    try:
        servers = settings.LDAP_SERVERS
    except AttributeError as e:
        msg = "settings.LDAP_SERVERS does not exist!"
        raise ConfigError(msg) from e
    try:
        return dict(servers[name])
    except KeyError as e:
        msg = f"settings.LDAP_SERVERS has no key '{name}'"
        raise ConfigError(msg) from e


def connect_from_settings(name: str = "default", **overrides) -> ConnectionPool:
    """
    Connect using the options in ``settings.LDAP_SERVERS[name]``.  Keyword
    arguments override individual settings.

    Raises:
        ConfigError: the settings are missing or invalid

    """
    return connect(get_server_config(name), **overrides)
