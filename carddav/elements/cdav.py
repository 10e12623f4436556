#!/usr/bin/env python
from typing import ClassVar
from typing import Optional

from .base import BaseElement
from .base import NamedBaseElement
from .base import ValuedBaseElement
from carddav.lib.namespace import ns


# Operations (RFC6352 section 8)
class AddressbookQuery(BaseElement):
    tag: ClassVar[str] = ns("C", "addressbook-query")


class AddressbookMultiGet(BaseElement):
    tag: ClassVar[str] = ns("C", "addressbook-multiget")


# Filters
class Filter(BaseElement):
    tag: ClassVar[str] = ns("C", "filter")

    def __init__(self, match_all: bool = False) -> None:
        super(Filter, self).__init__()
        self.attributes["test"] = "allof" if match_all else "anyof"


class PropFilter(NamedBaseElement):
    tag: ClassVar[str] = ns("C", "prop-filter")

    def __init__(self, name: Optional[str] = None, match_all: bool = False) -> None:
        super(PropFilter, self).__init__(name=name)
        self.attributes["test"] = "allof" if match_all else "anyof"


class ParamFilter(NamedBaseElement):
    tag: ClassVar[str] = ns("C", "param-filter")


# Conditions
class TextMatch(ValuedBaseElement):
    tag: ClassVar[str] = ns("C", "text-match")

    def __init__(
        self,
        value,
        collation: str = "i;unicode-casemap",
        negate: bool = False,
        match_type: str = "contains",
    ) -> None:
        super(TextMatch, self).__init__(value=value)

        if self.attributes is None:
            raise ValueError("Unexpected value None for self.attributes")

        self.attributes["collation"] = collation
        self.attributes["match-type"] = match_type
        if negate:
            self.attributes["negate-condition"] = "yes"


class IsNotDefined(BaseElement):
    tag: ClassVar[str] = ns("C", "is-not-defined")


class Limit(BaseElement):
    tag: ClassVar[str] = ns("C", "limit")


class NResults(ValuedBaseElement):
    tag: ClassVar[str] = ns("C", "nresults")


# Components / Data
class AddressData(BaseElement):
    tag: ClassVar[str] = ns("C", "address-data")


class AddressDataProp(NamedBaseElement):
    """<C:prop name="FN"/> inside an address-data request"""

    tag: ClassVar[str] = ns("C", "prop")


class AddressDataType(BaseElement):
    tag: ClassVar[str] = ns("C", "address-data-type")


# Properties
class AddressbookHomeSet(BaseElement):
    tag: ClassVar[str] = ns("C", "addressbook-home-set")


class Addressbook(BaseElement):
    tag: ClassVar[str] = ns("C", "addressbook")


class AddressbookDescription(ValuedBaseElement):
    tag: ClassVar[str] = ns("C", "addressbook-description")


class SupportedAddressData(BaseElement):
    tag: ClassVar[str] = ns("C", "supported-address-data")


class MaxResourceSize(ValuedBaseElement):
    tag: ClassVar[str] = ns("C", "max-resource-size")
