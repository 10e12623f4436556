#!/usr/bin/env python
import logging

__version__ = "0.9.0"

from .davclient import DAVClient
from .davclient import get_davclient
from .collection import AddressBook
from .collection import AddressBookSet
from .collection import Principal
from .addressobject import AddressObject
from .sync import SyncEngine
from .sync import SyncHandler
from .sync import synchronize
from .discovery import discover_addressbooks

## Silence notification of no default logging handler
log = logging.getLogger("carddav")


class NullHandler(logging.Handler):
    def emit(self, record) -> None:
        pass


log.addHandler(NullHandler())

__all__ = [
    "__version__",
    "DAVClient",
    "get_davclient",
    "AddressBook",
    "AddressBookSet",
    "Principal",
    "AddressObject",
    "SyncEngine",
    "SyncHandler",
    "synchronize",
    "discover_addressbooks",
]
