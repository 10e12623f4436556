#!/usr/bin/env python
"""
The little bit of vCard knowledge the CardDAV client needs.  Cards are
otherwise treated as opaque text; parsing and serialization is left to
the vobject library.
"""
import logging
import re
import uuid
from typing import Iterable
from typing import List
from typing import Optional

import vobject

from carddav.lib import error
from carddav.lib.python_utilities import to_normal_str

log = logging.getLogger("carddav")

## Properties that are always requested when asking the server for a
## subset of the vCard properties.  Without them the result isn't a
## valid vCard.
REQUIRED_PROPERTIES = ("BEGIN", "END", "FN", "VERSION", "UID")

## We don't want to be too verbose on the users when fixing up data
fixup_error_loggings = 0


def fix(card) -> str:
    """Receives vCard text and fixes up breakages that would upset
    vobject or the server:

    1) CRLF and stray CR line endings are turned into plain newlines

    2) trailing white space on content lines is removed, unless the
    next line is a folded continuation

    3) the card always ends with exactly one newline

    Only 2) and 3) are considered breakages worth logging.
    """
    card = re.sub(r"\r\n?", "\n", to_normal_str(card))
    fixed = re.sub(r"[ \t]+$(?!\n[ \t])", "", card, flags=re.MULTILINE)
    fixed = fixed.strip("\n") + "\n"
    if fixed.rstrip("\n") != card.rstrip("\n"):
        global fixup_error_loggings
        fixup_error_loggings += 1
        ## rate limit: warn on powers of two only
        if not (fixup_error_loggings & (fixup_error_loggings - 1)):
            _log = log.warning
        else:
            _log = log.debug
        _log(
            "vCard data was modified to avoid compatibility issues "
            f"(error count: {fixup_error_loggings} - this warning is ratelimited)"
        )
    return fixed


def to_vobject(card):
    """Accepts vCard text (str or bytes) or a vobject component"""
    if hasattr(card, "serialize"):
        return card
    try:
        return vobject.readOne(fix(card))
    except (vobject.base.ParseError, StopIteration) as e:
        raise error.ValidationError(reason=f"Could not parse vCard: {e}") from e


def serialize(card) -> str:
    if hasattr(card, "serialize"):
        return to_normal_str(card.serialize())
    return fix(card)


def get_uid(component) -> Optional[str]:
    if "uid" not in component.contents:
        return None
    uid = component.uid.value
    return str(uid) if uid else None


def ensure_uid(component) -> str:
    """Adds a freshly generated UID if the card has none, returns the UID"""
    uid = get_uid(component)
    if uid is None:
        uid = str(uuid.uuid4())
        log.info(f"Adding missing UID property to new vCard ({uid})")
        component.add("uid").value = uid
    return uid


def uid_to_filename(uid: str, extension: str = ".vcf") -> str:
    """
    A filename derived from the UID, restricted to characters that are
    safe in an URL path segment.  vCard 4.0 UIDs are typically given as
    urn:uuid:..., the prefix is dropped.
    """
    uid = uid.replace("urn:uuid:", "")
    return re.sub(r"[^A-Za-z0-9._-]", "-", uid) + extension


def validate(component) -> None:
    """
    Checks the fields RFC6350/RFC2426 and RFC6352 require before a
    card is sent to a server.  Raises ValidationError listing all
    errors found, minor issues are only logged.
    """
    errors: List[str] = []
    if (component.name or "").upper() != "VCARD":
        errors.append(f"not a vCard but a {component.name}")
    contents = component.contents

    version = contents["version"][0].value if "version" in contents else None
    if not version:
        errors.append("VERSION property missing")
    elif version not in ("3.0", "4.0"):
        log.warning(f"vCard version {version} is not supported by RFC6352")

    fn = contents["fn"][0].value if "fn" in contents else None
    if not fn or not str(fn).strip():
        errors.append("FN property missing or empty")

    ## N is optional from vCard 4.0 on
    if version == "3.0" and "n" not in contents:
        errors.append("N property missing, it is mandatory in vCard 3.0")

    if not get_uid(component):
        errors.append("UID property missing")

    if errors:
        for msg in errors:
            log.error(f"Issue with vCard: {msg}")
        raise error.ValidationError(reason="; ".join(errors))


def add_required_properties(props: Iterable[str]) -> List[str]:
    ret = [p.upper() for p in props]
    for prop in REQUIRED_PROPERTIES:
        if prop not in ret:
            ret.append(prop)
    return ret
