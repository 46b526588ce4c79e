# mypy: disable-error-code="attr-defined"
# type: ignore
import unittest
from types import SimpleNamespace
from unittest.mock import patch

import ldap

from ldapclient import ALL, client
from ldapclient.connection import Connection
from ldapclient.exceptions import BindFailed, ConfigError, ConnectionFailure
from ldapclient.pool import RoundRobinPool, SingleHostPool
from ldapclient.requests import PreReadControl

from .helpers import FakeServersMixin

ADMIN = {"bind_dn": "cn=admin,dc=example,dc=com", "password": "admin"}
ALICE = "uid=alice,ou=users,dc=example,dc=com"


class TestConnect(FakeServersMixin, unittest.TestCase):
    def test_single_host(self):
        pool = client.connect(host="ldap.example.com:389", **ADMIN)
        self.assertIsInstance(pool, SingleHostPool)
        self.assertEqual(self.opened_uris, ["ldap://ldap.example.com:389"])

    def test_options_dict_and_keywords(self):
        pool = client.connect({"host": "ldap.example.com", "ssl": True}, num_connections=4, **ADMIN)
        self.assertEqual(pool.size, 4)
        self.assertEqual(self.opened_uris, ["ldaps://ldap.example.com:636"])

    def test_multi_host(self):
        pool = client.connect(host=["ldap1.example.com", "ldap2.example.com"], **ADMIN)
        self.assertIsInstance(pool, RoundRobinPool)
        self.assertEqual(self.opened, [])

    def test_ssl_and_start_tls_is_rejected_before_connecting(self):
        with self.assertRaisesRegex(ConfigError, "Can't have both SSL and startTLS"):
            client.connect(host="ldap.example.com", ssl=True, start_tls=True)
        self.initialize.assert_not_called()

    def test_unknown_option(self):
        with self.assertRaises(ConfigError):
            client.connect(host="ldap.example.com", use_ssl=True)
        self.initialize.assert_not_called()

    def test_bind_failure(self):
        with self.assertRaises(BindFailed):
            client.connect(bind_dn="cn=admin,dc=example,dc=com", password="wrong")

    def test_open_direct(self):
        conn = client.open_direct(host="ldap.example.com", **ADMIN)
        self.assertIsInstance(conn, Connection)

    def test_open_direct_unreachable(self):
        self.down_uris = ("ldap://ldap.example.com:389",)
        with self.assertRaises(ConnectionFailure):
            client.open_direct(host="ldap.example.com", **ADMIN)


class TestOperations(FakeServersMixin, unittest.TestCase):
    search_results = (
        (
            ALICE,
            {
                "uid": [b"alice"],
                "cn": [b"Alice Johnson"],
                "mail": [b"alice@example.com", b"ajohnson@example.com"],
                "objectClass": [b"top", b"posixAccount"],
            },
        ),
    )

    def setUp(self):
        super().setUp()
        self.pool = client.connect(**ADMIN)
        self.conn = self.opened[0]

    def test_get(self):
        record = client.get(self.pool, ALICE, attributes=["uid", "cn", "mail", "objectClass"])
        self.assertEqual(
            record,
            {
                "dn": ALICE,
                "uid": "alice",
                "cn": "Alice Johnson",
                "mail": ["alice@example.com", "ajohnson@example.com"],
                "objectClass": {"top", "posixAccount"},
            },
        )
        self.conn.search_ext.assert_called_once_with(
            ALICE,
            ldap.SCOPE_BASE,
            "(objectclass=*)",
            ["uid", "cn", "mail", "objectClass"],
            serverctrls=None,
        )

    def test_get_missing(self):
        self.search_results = ()
        self.assertIsNone(client.get(self.pool, "uid=nobody,ou=users,dc=example,dc=com"))

    def test_add(self):
        result = client.add(
            self.pool, ALICE, {"objectClass": ["top", "posixAccount"], "uid": "alice"}
        )
        self.assertEqual(result, {"code": 0, "name": "success"})
        self.conn.add_ext_s.assert_called_once_with(
            ALICE, [("objectClass", [b"top", b"posixAccount"]), ("uid", [b"alice"])]
        )
        self.assertEqual(self.pool.checked_out, 0)

    def test_add_existing_entry_is_not_an_exception(self):
        self.conn.add_ext_s.side_effect = ldap.ALREADY_EXISTS({"result": 68, "desc": "Already exists"})
        result = client.add(self.pool, ALICE, {"uid": "alice"})
        self.assertEqual(result["code"], 68)

    def test_modify(self):
        client.modify(
            self.pool,
            ALICE,
            {"delete": {"mail": ALL}, "replace": {"cn": "Alice J."}, "pre_read": ["cn"]},
        )
        args, kwargs = self.conn.modify_ext_s.call_args
        self.assertEqual(
            args,
            (ALICE, [(ldap.MOD_DELETE, "mail", None), (ldap.MOD_REPLACE, "cn", [b"Alice J."])]),
        )
        self.assertIsInstance(kwargs["serverctrls"][0], PreReadControl)

    def test_modify_rdn(self):
        client.modify_rdn(self.pool, ALICE, "uid=alicej", True)
        self.conn.rename_s.assert_called_once_with(ALICE, "uid=alicej", newsuperior=None, delold=1)

    def test_delete(self):
        self.assertEqual(client.delete(self.pool, ALICE), {"code": 0, "name": "success"})
        self.conn.delete_ext_s.assert_called_once_with(ALICE, serverctrls=None)

    def test_delete_with_pre_read(self):
        client.delete(self.pool, ALICE, {"pre_read": ["uid"]})
        (control,) = self.conn.delete_ext_s.call_args.kwargs["serverctrls"]
        self.assertEqual(control.attrList, ["uid"])

    def test_modify_password(self):
        client.modify_password(self.pool, "new")
        self.conn.passwd_s.assert_called_with(None, None, "new", extract_newpw=True)
        client.modify_password(self.pool, "old", "new")
        self.conn.passwd_s.assert_called_with(None, "old", "new", extract_newpw=True)
        client.modify_password(self.pool, "old", "new", ALICE)
        self.conn.passwd_s.assert_called_with(ALICE, "old", "new", extract_newpw=True)
        with self.assertRaises(TypeError):
            client.modify_password(self.pool)
        with self.assertRaises(TypeError):
            client.modify_password(self.pool, "a", "b", "c", "d")

    def test_modify_password_generated(self):
        self.conn.passwd_s.return_value = (None, b"s3cr3t")
        result = client.modify_password(self.pool, None, None, ALICE)
        self.assertEqual(result["generated_password"], "s3cr3t")

    def test_search(self):
        results = client.search(self.pool, "ou=users,dc=example,dc=com", filter="(uid=alice)")
        self.assertEqual([r["dn"] for r in results], [ALICE])

    def test_search_all(self):
        results = client.search_all(self.pool, "ou=users,dc=example,dc=com", page_size=10)
        self.assertEqual(len(results), 1)
        control = self.conn.search_ext.call_args.kwargs["serverctrls"][0]
        self.assertEqual(control.size, 10)

    def test_search_each(self):
        seen = []
        count = client.search_each(self.pool, "ou=users,dc=example,dc=com", seen.append, scope="one")
        self.assertEqual(count, 1)
        self.assertEqual(seen[0]["uid"], "alice")
        self.assertEqual(self.pool.checked_out, 0)

    def test_bad_scope(self):
        with self.assertRaises(ConfigError):
            client.search(self.pool, "ou=users,dc=example,dc=com", scope="everything")

    def test_bind_check(self):
        self.assertTrue(client.bind_check(self.pool, ALICE, "password"))
        self.assertFalse(client.bind_check(self.pool, ALICE, "wrong"))
        # repeatable, and the pool still works as the admin afterwards
        self.assertTrue(client.bind_check(self.pool, ALICE, "password"))
        self.assertIsNotNone(client.get(self.pool, ALICE))

    def test_bind_check_never_raises(self):
        with patch.object(self.pool, "bind_check", side_effect=RuntimeError("boom")):
            self.assertFalse(client.bind_check(self.pool, ALICE, "password"))

    def test_connection_failure_during_write(self):
        self.conn.add_ext_s.side_effect = ldap.SERVER_DOWN({"desc": "Can't contact LDAP server"})
        with self.assertRaises(ConnectionFailure):
            client.add(self.pool, ALICE, {"uid": "alice"})
        self.conn.unbind_s.assert_called_once_with()
        # the next operation gets a fresh connection
        self.assertEqual(client.delete(self.pool, ALICE)["code"], 0)
        self.assertEqual(len(self.opened), 2)


class TestDirectConnection(FakeServersMixin, unittest.TestCase):
    def test_bind_check_changes_identity(self):
        conn = client.open_direct(**ADMIN)
        self.assertTrue(client.bind_check(conn, ALICE, "password"))
        self.opened[0].simple_bind_s.assert_called_with(ALICE, "password")
        client.delete(conn, ALICE)
        self.opened[0].delete_ext_s.assert_called_once_with(ALICE, serverctrls=None)


class TestScenarios(FakeServersMixin, unittest.TestCase):
    search_results = (
        (
            "ou=people,dc=example,dc=com",
            {"objectClass": [b"top", b"organizationalUnit"], "ou": [b"people"]},
        ),
    )

    def setUp(self):
        super().setUp()
        self.pool = client.connect(**ADMIN)
        self.conn = self.opened[0]

    def test_add_then_get(self):
        result = client.add(
            self.pool,
            "ou=people,dc=example,dc=com",
            {"objectClass": ["top", "organizationalUnit"], "ou": "people"},
        )
        self.assertEqual(result["code"], 0)
        record = client.get(self.pool, "ou=people,dc=example,dc=com")
        self.assertEqual(record["objectClass"], {"top", "organizationalUnit"})
        self.assertEqual(record["ou"], "people")

    def test_modify_with_pre_read(self):
        self.conn.modify_ext_s.return_value = (
            ldap.RES_MODIFY,
            [],
            2,
            [
                SimpleNamespace(
                    controlType=PreReadControl.controlType,
                    dn=ALICE,
                    entry={"description": [b"old"]},
                )
            ],
        )
        result = client.modify(
            self.pool, ALICE, {"replace": {"description": "new"}, "pre_read": {"description"}}
        )
        self.assertEqual(
            result, {"code": 0, "name": "success", "pre_read": {"description": "old"}}
        )

    def test_delete_missing_and_dropped(self):
        self.conn.delete_ext_s.side_effect = ldap.NO_SUCH_OBJECT(
            {"result": 32, "desc": "No such object"}
        )
        result = client.delete(self.pool, "cn=missing,dc=example,dc=com")
        self.assertEqual(result, {"code": 32, "name": "no such object"})
        self.conn.delete_ext_s.side_effect = ldap.SERVER_DOWN({"desc": "Can't contact LDAP server"})
        with self.assertRaises(ConnectionFailure):
            client.delete(self.pool, ALICE)
