# This file is here so that we can patch the ldap module in our tests.
# python-ldap-faker patches ``<module>.ldap.initialize``, so everything in
# ldapclient reaches python-ldap through this module.
import ldap
from ldap import *  # noqa: F403
from ldap import controls, modlist  # noqa: F401
from ldap.controls import readentry  # noqa: F401

__version__ = ldap.__version__
