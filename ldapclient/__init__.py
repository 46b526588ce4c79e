from .client import (
    add,
    bind_check,
    connect,
    delete,
    get,
    modify,
    modify_password,
    modify_rdn,
    open_direct,
    search,
    search_all,
    search_each,
)
from .exceptions import (
    BindFailed,
    ConfigError,
    ConnectionFailure,
    DecodeError,
    InvalidAttributeValue,
    LdapClientError,
    SearchFailed,
)
from .requests import ALL

__version__ = "0.4.0"
