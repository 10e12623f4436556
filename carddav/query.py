"""
Filter trees for the addressbook-query REPORT (RFC6352 section 10.5).

Conditions may be given as objects::

    PropFilter("EMAIL", [TextMatch("@example.com", match_type="ends-with")])

or with the shorthand accepted by ``AddressBook.query``, a dict (or a
list of pairs, if the same property is to be filtered more than once)
from vCard property name to condition:

* ``True`` - the property is defined
* ``False`` or ``None`` - the property is not defined
* ``"foo"`` - the property contains foo
* ``"/foo/"`` - the property equals foo
* ``"/foo"`` - the property starts with foo
* ``"foo/"`` - the property ends with foo
* ``"!foo"`` (and ``"!/foo/"``, etc) - negated match
* a ``TextMatch`` or ``ParamFilter``, or a list of those

Matching is case-insensitive (i;unicode-casemap) unless another
collation is given.
"""
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Iterable
from typing import List
from typing import Optional
from typing import Tuple
from typing import Union

from .elements import cdav

MATCH_TYPES = ("equals", "contains", "starts-with", "ends-with")


@dataclass
class TextMatch:
    value: str
    match_type: str = "contains"
    negate: bool = False
    collation: str = "i;unicode-casemap"

    def __post_init__(self) -> None:
        if self.match_type not in MATCH_TYPES:
            raise ValueError(
                f"match_type must be one of {', '.join(MATCH_TYPES)}, not {self.match_type}"
            )

    @classmethod
    def from_string(cls, text: str) -> "TextMatch":
        negate = False
        if text.startswith("!"):
            negate = True
            text = text[1:]
        if len(text) >= 2 and text.startswith("/") and text.endswith("/"):
            return cls(text[1:-1], "equals", negate)
        if len(text) >= 2 and text.startswith("/"):
            return cls(text[1:], "starts-with", negate)
        if len(text) >= 2 and text.endswith("/"):
            return cls(text[:-1], "ends-with", negate)
        return cls(text, "contains", negate)

    def to_element(self) -> cdav.TextMatch:
        return cdav.TextMatch(
            self.value,
            collation=self.collation,
            negate=self.negate,
            match_type=self.match_type,
        )


@dataclass
class ParamFilter:
    """Filters on a property parameter, i.e. TYPE=work on EMAIL"""

    name: str
    condition: Union[bool, str, TextMatch, None] = True

    def to_element(self) -> cdav.ParamFilter:
        if not self.name:
            raise ValueError("ParamFilter needs a parameter name")
        el = cdav.ParamFilter(self.name.upper())
        if self.condition is True:
            return el
        if self.condition is False or self.condition is None:
            return el + cdav.IsNotDefined()
        return el + _text_match(self.condition).to_element()


@dataclass
class PropFilter:
    """
    Filters on one vCard property.  With no conditions, the property
    must be defined.  With defined=False, it must not be.  Several
    conditions are combined with anyof, or allof if match_all is set.
    """

    name: str
    conditions: List[Union[TextMatch, ParamFilter]] = field(default_factory=list)
    match_all: bool = False
    defined: bool = True

    def to_element(self) -> cdav.PropFilter:
        if not self.name:
            raise ValueError("PropFilter needs a property name")
        el = cdav.PropFilter(self.name.upper(), match_all=self.match_all)
        if not self.defined:
            if self.conditions:
                raise ValueError(
                    f"Conditions given for {self.name}, but the property is required to be undefined"
                )
            return el + cdav.IsNotDefined()
        for condition in self.conditions:
            el += condition.to_element()
        return el


def _text_match(condition: Union[str, TextMatch]) -> TextMatch:
    if isinstance(condition, TextMatch):
        return condition
    if isinstance(condition, str):
        return TextMatch.from_string(condition)
    raise TypeError(f"Can't make a text-match out of {condition!r}")


def prop_filter(name: str, condition: Any) -> PropFilter:
    """One shorthand condition (see module doc) as a PropFilter"""
    if isinstance(condition, PropFilter):
        return condition
    if condition is True:
        return PropFilter(name)
    if condition is False or condition is None:
        return PropFilter(name, defined=False)
    if isinstance(condition, (str, TextMatch, ParamFilter)):
        condition = [condition]
    conditions = []
    for c in condition:
        if isinstance(c, ParamFilter):
            conditions.append(c)
        else:
            conditions.append(_text_match(c))
    return PropFilter(name, conditions)


def build_filter(
    conditions: Union[dict, Iterable[Tuple[str, Any]], Iterable[PropFilter]],
    match_all: bool = False,
) -> cdav.Filter:
    """
    Builds the C:filter element.  The prop-filters are combined with
    anyof, or allof if match_all is set.
    """
    if isinstance(conditions, dict):
        items: Iterable = conditions.items()
    else:
        items = conditions
    filter_ = cdav.Filter(match_all=match_all)
    count = 0
    for item in items:
        if isinstance(item, PropFilter):
            pf = item
        else:
            (name, condition) = item
            pf = prop_filter(name, condition)
        filter_ += pf.to_element()
        count += 1
    if not count:
        raise ValueError("At least one condition is needed for a query")
    return filter_


def limit_element(limit: Optional[int]) -> Optional[cdav.Limit]:
    if not limit or limit <= 0:
        return None
    return cdav.Limit() + cdav.NResults(str(int(limit)))
