#!/usr/bin/env python
## calendarserver.org extensions.  Not part of any RFC, but widely supported.
from typing import ClassVar

from .base import ValuedBaseElement
from carddav.lib.namespace import ns


class GetCTag(ValuedBaseElement):
    tag: ClassVar[str] = ns("CS", "getctag")
