# mypy: disable-error-code="attr-defined"
# type: ignore
"""
Tests against a simulated directory server, using python-ldap-faker.
"""

import unittest

from ldap_faker.unittest import LDAPFakerMixin

from ldapclient import client
from ldapclient.exceptions import BindFailed

ADMIN = {"bind_dn": "cn=admin,dc=example,dc=com", "password": "admin"}


class TestClientWithFaker(LDAPFakerMixin, unittest.TestCase):
    ldap_modules = ["ldapclient"]

    @classmethod
    def setUpClass(cls):
        super().setUpClass()
        cls.test_objects = [
            [
                "cn=admin,dc=example,dc=com",
                {
                    "cn": [b"admin"],
                    "userPassword": [b"admin"],
                    "objectclass": [b"simpleSecurityObject", b"organizationalRole", b"top"],
                },
            ],
            [
                "uid=alice,ou=users,dc=example,dc=com",
                {
                    "uid": [b"alice"],
                    "cn": [b"Alice Johnson"],
                    "mail": [b"alice@example.com", b"ajohnson@example.com"],
                    "userPassword": [b"password"],
                    "objectclass": [b"posixAccount", b"top"],
                },
            ],
            [
                "uid=bob,ou=users,dc=example,dc=com",
                {
                    "uid": [b"bob"],
                    "cn": [b"Bob Smith"],
                    "userPassword": [b"password"],
                    "objectclass": [b"posixAccount", b"top"],
                },
            ],
        ]

    def setUp(self):
        super().setUp()
        self.server_factory.default.raw_objects.clear()  # type: ignore[attr-defined]
        self.server_factory.default.objects.clear()  # type: ignore[attr-defined]
        for dn, attrs in self.test_objects:
            self.server_factory.default.register_object((dn, attrs))  # type: ignore[attr-defined]
        self.pool = client.connect(host="localhost:389", **ADMIN)
        self.addCleanup(self.pool.close)

    def test_get(self):
        record = client.get(self.pool, "uid=alice,ou=users,dc=example,dc=com")
        self.assertEqual(record["dn"], "uid=alice,ou=users,dc=example,dc=com")
        self.assertEqual(record["uid"], "alice")
        self.assertEqual(record["objectclass"], {"posixAccount", "top"})
        self.assertEqual(record["mail"], ["alice@example.com", "ajohnson@example.com"])

    def test_get_missing(self):
        self.assertIsNone(client.get(self.pool, "uid=nobody,ou=users,dc=example,dc=com"))

    def test_search(self):
        results = client.search(
            self.pool, "ou=users,dc=example,dc=com", filter="(objectclass=posixAccount)"
        )
        self.assertEqual(sorted(r["uid"] for r in results), ["alice", "bob"])

    def test_search_each(self):
        seen = []
        count = client.search_each(
            self.pool,
            "ou=users,dc=example,dc=com",
            seen.append,
            filter="(uid=bob)",
        )
        self.assertEqual(count, 1)
        self.assertEqual(seen[0]["cn"], "Bob Smith")

    def test_bind_check(self):
        self.assertTrue(client.bind_check(self.pool, "uid=alice,ou=users,dc=example,dc=com", "password"))
        self.assertFalse(client.bind_check(self.pool, "uid=alice,ou=users,dc=example,dc=com", "wrong"))
        self.assertFalse(client.bind_check(self.pool, "uid=nobody,ou=users,dc=example,dc=com", "password"))

    def test_bad_admin_password(self):
        with self.assertRaises(BindFailed):
            client.connect(host="localhost:389", bind_dn="cn=admin,dc=example,dc=com", password="nope")
