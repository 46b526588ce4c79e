# mypy: disable-error-code="attr-defined"
"""
Fake python-ldap connection objects for tests that need more control over
the server's answers than python-ldap-faker gives us.
"""

from unittest.mock import MagicMock, patch

import ldap

PASSWORDS = {
    "cn=admin,dc=example,dc=com": "admin",
    "uid=alice,ou=users,dc=example,dc=com": "password",
}


def invalid_credentials() -> Exception:
    return ldap.INVALID_CREDENTIALS({"result": 49, "desc": "Invalid credentials"})


def server_down() -> Exception:
    return ldap.SERVER_DOWN({"result": -1, "desc": "Can't contact LDAP server"})


def fake_ldap_object(uri: str = "ldap://localhost:389", down: bool = False) -> MagicMock:
    """
    Build a ``MagicMock`` standing in for an ``LDAPObject``.  Simple binds
    check the password against :py:data:`PASSWORDS`; with ``down=True`` every
    bind fails as if the server were unreachable.
    """
    conn = MagicMock(name=uri)
    conn.uri = uri

    def simple_bind_s(who=None, cred=None):
        if down:
            raise server_down()
        if who and PASSWORDS.get(who) != cred:
            raise invalid_credentials()
        return (ldap.RES_BIND, [], 1, [])

    conn.simple_bind_s.side_effect = simple_bind_s
    conn.search_ext.return_value = 1
    conn.add_ext_s.return_value = (ldap.RES_ADD, [], 2, [])
    conn.modify_ext_s.return_value = (ldap.RES_MODIFY, [], 2, [])
    conn.delete_ext_s.return_value = (ldap.RES_DELETE, [], 2, [])
    conn.rename_s.return_value = (ldap.RES_MODRDN, [], 2, [])
    conn.passwd_s.return_value = (None, None)
    return conn


class FakeServersMixin:
    """
    Patch ``ldapclient.ldap.initialize`` so that every connection is a
    :py:func:`fake_ldap_object`.  URIs listed in ``down_uris`` behave as
    unreachable servers.  Every search returns ``search_results`` in a single
    response.  Every object handed out is kept in ``self.opened``.
    """

    down_uris: tuple[str, ...] = ()
    search_results: tuple = ()

    def setUp(self):
        super().setUp()
        self.opened: list[MagicMock] = []

        def initialize(uri, *args, **kwargs):
            conn = fake_ldap_object(uri, down=uri in self.down_uris)
            conn.result3.side_effect = lambda *a, **kw: (
                ldap.RES_SEARCH_RESULT, list(self.search_results), 1, []
            )
            self.opened.append(conn)
            return conn

        patcher = patch("ldapclient.ldap.initialize", side_effect=initialize)
        self.initialize = patcher.start()
        self.addCleanup(patcher.stop)

    @property
    def opened_uris(self) -> list[str]:
        return [conn.uri for conn in self.opened]
