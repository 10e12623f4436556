import logging
import sys
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple
from typing import TYPE_CHECKING
from typing import Union
from urllib.parse import ParseResult
from urllib.parse import quote
from urllib.parse import SplitResult
from urllib.parse import unquote

from lxml import etree

if TYPE_CHECKING:
    from .davclient import DAVClient
    from .davclient import DAVResponse

if sys.version_info < (3, 9):
    from typing import Sequence
else:
    from collections.abc import Sequence

from .elements import dav
from .elements.base import BaseElement
from .lib import error
from .lib.error import errmsg
from .lib.url import URL

log = logging.getLogger("carddav")


"""
This file contains one class, the DAVObject which is the base class
for AddressBook, Principal, AddressObject and AddressBookSet.  There
is some code here for handling some of the DAV-related communication,
and the class lists some common methods that are shared on all kind
of objects.  Library users should not need to know a lot about the
DAVObject class, should never need to initialize one, but may
encounter inherited methods coming from this class.
"""


class DAVObject:
    """
    Base class for all DAV objects.  Can be instantiated by a client
    and an absolute or relative URL, or from the parent object.
    """

    id: Optional[str] = None
    url: Optional[URL] = None
    client: Optional["DAVClient"] = None
    parent: Optional["DAVObject"] = None
    name: Optional[str] = None

    def __init__(
        self,
        client: Optional["DAVClient"] = None,
        url: Union[str, ParseResult, SplitResult, URL, None] = None,
        parent: Optional["DAVObject"] = None,
        name: Optional[str] = None,
        id: Optional[str] = None,
        props=None,
        **extra,
    ) -> None:
        """
        Default constructor.

        Args:
          client: A DAVClient instance
          url: The url for this object.  May be a full URL or a relative URL.
          parent: The parent object - used when creating objects
          name: A displayname
          props: a dict with known properties for this object
          id: The resource id (UID for a vCard)
        """

        if client is None and parent is not None:
            client = parent.client
        self.client = client
        self.parent = parent
        self.name = name
        self.id = id
        self.props = props or {}
        self.extra_init_options = extra
        # url may be a path relative to the carddav root, or a full URL
        # possibly on another host than the client URL
        if client and url and not URL.objectify(url).hostname:
            self.url = client.url.join(url)
        elif url is None:
            self.url = None
        else:
            self.url = URL.objectify(url)

    def children(self, type: Optional[str] = None) -> List[Tuple[URL, Any, Any]]:
        """List children, using a propfind (resourcetype) on the parent object,
        at depth = 1.

        Returns a list of (url, resource types, display name) tuples.
        The collection itself is not included.
        """
        if self.url is None:
            raise ValueError("Unexpected value None for self.url")

        props = [dav.DisplayName()]
        multiprops = [dav.ResourceType()]
        response = self._query_properties(props + multiprops, depth=1)
        properties = response.expand_simple_props(
            props=props, multi_value_props=multiprops
        )

        c = []
        for path in properties:
            resource_types = properties[path][dav.ResourceType.tag]
            resource_name = properties[path][dav.DisplayName.tag]

            if type is None or type in resource_types:
                url = URL(path)
                if url.hostname is None:
                    # Quote when path is not a full URL
                    path = quote(path)
                ## The collection itself is also returned on a depth 1 propfind
                if not self.url.same_path(self.url.join(path)):
                    c.append((self.url.join(path), resource_types, resource_name))
        return c

    def _query_properties(
        self,
        props: Optional[Sequence[BaseElement]] = None,
        depth: int = 0,
        url: Optional[URL] = None,
    ) -> "DAVResponse":
        """
        This is an internal method for doing a propfind query.
        """
        root = None
        # build the propfind request
        if props is not None and len(props) > 0:
            prop = dav.Prop() + props
            root = dav.Propfind() + prop

        return self._query(root, depth, url=url)

    def _query(
        self,
        root=None,
        depth=0,
        query_method="propfind",
        url=None,
        expected_return_value=None,
    ) -> "DAVResponse":
        """
        This is an internal method for doing a query.  404 gives a
        NotFoundError, other error statuses an error depending on the
        query method (PropfindError, ReportError, ...)
        """
        body = ""
        if root:
            if hasattr(root, "xmlelement"):
                body = etree.tostring(
                    root.xmlelement(),
                    encoding="utf-8",
                    xml_declaration=True,
                    pretty_print=bool(error.debug_dump_communication),
                )
            else:
                body = root
        if url is None:
            url = self.url
        ret = getattr(self.client, query_method)(url, body, depth)
        if ret.status in (404, 410):
            raise error.NotFoundError(url=str(url), reason=errmsg(ret))
        if (
            expected_return_value is not None and ret.status != expected_return_value
        ) or ret.status >= 400:
            raise error.exception_by_method[query_method](
                url=str(url), reason=errmsg(ret)
            )
        return ret

    def _find_own_props(self, properties: Dict[str, Any]) -> Dict[str, Any]:
        """
        Picks the properties of this object out of a multistatus.
        Servers may report the href with or without a trailing slash,
        as a full URL or as a path.
        """
        if self.url is None:
            raise ValueError("Unexpected value None for self.url")

        path = unquote(self.url.path)
        if path in properties:
            return properties[path]
        for href in properties:
            if self.url.same_path(self.url.join(href)):
                return properties[href]
        if "//" in path and path.replace("//", "/") in properties:
            return properties[path.replace("//", "/")]
        if len(properties) == 1:
            ## Let's be pragmatic and just accept whatever the server
            ## is throwing at us.  But we'll log a warning anyway.
            log.warning(
                "Possibly the server has a path handling problem, possibly the URL configured is wrong.\n"
                "Path expected: %s, path found: %s %s.\n"
                "Continuing, probably everything will be fine"
                % (path, str(list(properties)), error.ERR_FRAGMENT)
            )
            return list(properties.values())[0]
        error.weirdness(f"The requested path {path} was not found in the response", str(list(properties)))
        return {}

    def get_property(
        self, prop: BaseElement, use_cached: bool = False, **passthrough
    ) -> Optional[str]:
        """
        Wrapper for the :class:`get_properties`, when only one property is wanted

        Args:

         prop: the property to search for
         use_cached: don't send anything to the server if we've asked before

        Other parameters are sent directly to the :class:`get_properties` method
        """
        if use_cached:
            if prop.tag in self.props:
                return self.props[prop.tag]
        foo = self.get_properties([prop], **passthrough)
        return foo.get(prop.tag, None)

    def get_properties(
        self,
        props: Optional[Sequence[BaseElement]] = None,
        depth: int = 0,
        parse_response_xml: bool = True,
        parse_props: bool = True,
    ):
        """Get properties (PROPFIND) for this object.

        With parse_response_xml and parse_props set to True a
        best-attempt will be done on decoding the XML we get from the
        server - but this works only for properties that don't have
        complex types.  With parse_response_xml set to False, a
        DAVResponse object will be returned, and it's up to the caller
        to decode.  With parse_props set to false but
        parse_response_xml set to true, xml elements will be returned
        rather than values.

        Args:
         props: ``[dav.ResourceType(), dav.DisplayName(), ...]``

        Returns:
          ``{proptag: value, ...}``
        """
        response = self._query_properties(props, depth)
        if not parse_response_xml:
            return response

        if not parse_props:
            properties = response.find_objects_and_props()
        else:
            properties = response.expand_simple_props(props)

        rc = self._find_own_props(properties)
        self.props.update(rc)
        return rc

    def get_display_name(self) -> Optional[str]:
        """
        Get display name (addressbook, principal, ...)
        """
        return self.get_property(dav.DisplayName(), use_cached=True)

    def __str__(self) -> str:
        try:
            return str(self.get_display_name() or self.url)
        except error.DAVError:
            return str(self.url)

    def __repr__(self) -> str:
        return "%s(%s)" % (self.__class__.__name__, self.url)
