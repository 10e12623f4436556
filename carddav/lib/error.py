#!/usr/bin/env python
import logging
import os
from collections import defaultdict
from typing import Dict
from typing import Optional
from typing import Type

from carddav import __version__

## Environment variables prefixed with "PYTHON_CARDDAV" are for debugging,
## environment variables prefixed with "CARDDAV_" are connection parameters
debug_dump_communication = os.environ.get("PYTHON_CARDDAV_COMMDUMP", False)

## one of DEBUG_PDB, DEBUG, DEVELOPMENT, PRODUCTION
debugmode = os.environ.get("PYTHON_CARDDAV_DEBUGMODE")
if not debugmode:
    if "dev" in __version__:
        debugmode = "DEVELOPMENT"
    else:
        debugmode = "PRODUCTION"

log = logging.getLogger("carddav")
if debugmode.startswith("DEBUG"):
    log.setLevel(logging.DEBUG)


def errmsg(r) -> str:
    """Utility for formatting an error response to an error string"""
    return "%s %s\n\n%s" % (r.status, r.reason, r.raw)


def weirdness(*reasons):
    from carddav.lib.debug import xmlstring

    reason = " : ".join([xmlstring(x) for x in reasons])
    log.warning(f"Deviation from expectations found: {reason}")
    if debugmode == "DEBUG_PDB":
        log.error(f"Dropping into debugger due to {reason}")
        import pdb

        pdb.set_trace()


def assert_(condition: object) -> None:
    try:
        assert condition
    except AssertionError:
        if debugmode == "PRODUCTION":
            log.error(
                "Deviation from expectations found.  %s" % ERR_FRAGMENT, exc_info=True
            )
        elif debugmode == "DEBUG_PDB":
            log.error("Deviation from expectations found.  Dropping into debugger")
            import pdb

            pdb.set_trace()
        else:
            raise


ERR_FRAGMENT: str = "Please consider raising an issue, include this error and the traceback (if any) and tell what server you are using"


class DAVError(Exception):
    url: Optional[str] = None
    reason: str = "no reason"

    def __init__(self, url: Optional[str] = None, reason: Optional[str] = None) -> None:
        if url:
            self.url = url
        if reason:
            self.reason = reason

    def __str__(self) -> str:
        return "%s at '%s', reason %s" % (
            self.__class__.__name__,
            self.url,
            self.reason,
        )


class TransportError(DAVError):
    """
    The request never produced an HTTP response: connection refused,
    DNS failure, TLS failure or a timeout.  The sync engine never
    retries on this.
    """

    pass


class AuthorizationError(DAVError):
    """
    The client encountered an HTTP 401 or 403 error and is passing it on
    to the user. The url property will contain the url in question,
    the reason property will contain the excuse the server sent.
    """

    pass


class ProtocolError(DAVError):
    """
    The server answered, but not in the way RFC4918/RFC6352 says it
    should: an unexpected status, a body that is not a multistatus,
    a missing ETag header on a GET, and so on.
    """

    pass


class PropfindError(ProtocolError):
    pass


class ReportError(ProtocolError):
    pass


class PutError(ProtocolError):
    pass


class DeleteError(ProtocolError):
    pass


class ResponseError(ProtocolError):
    pass


class RedirectError(ProtocolError):
    pass


class NotFoundError(DAVError):
    pass


class ConflictError(DAVError):
    """
    A precondition kept failing, i.e. every filename tried while
    creating a card was already taken.
    """

    pass


class ValidationError(DAVError):
    """
    A vCard failed the mandatory-field checks and was not sent to the
    server.
    """

    pass


class DiscoveryError(DAVError):
    """Raised when service discovery is asked for something it can't do"""

    pass


exception_by_method: Dict[str, Type[DAVError]] = defaultdict(lambda: ProtocolError)
for method in (
    "delete",
    "put",
    "report",
    "propfind",
):
    exception_by_method[method] = locals()[method[0].upper() + method[1:] + "Error"]
