"""
I'm trying to be consistent with the terminology in the RFCs:

AddressBookSet is a collection of AddressBooks (the addressbook-home-set)
AddressBook is a collection of AddressObjects (vCard resources)
Principal is not a collection, but holds an AddressBookSet.
"""
import logging
import random
import sys
from dataclasses import dataclass
from dataclasses import field
from typing import Dict
from typing import FrozenSet
from typing import List
from typing import Optional
from typing import Tuple
from typing import TYPE_CHECKING
from typing import Union
from urllib.parse import ParseResult
from urllib.parse import quote
from urllib.parse import SplitResult

from lxml import etree

if TYPE_CHECKING:
    from .davclient import DAVClient
    from .davclient import DAVResponse
    from .sync import SyncHandler
    from .sync import SyncResult

if sys.version_info < (3, 9):
    from typing import Iterable
else:
    from collections.abc import Iterable

from .addressobject import AddressObject
from .compatibility_hints import FeatureSet
from .davobject import DAVObject
from .elements import cdav
from .elements import cs
from .elements import dav
from .lib import error
from .lib import vcard
from .lib.error import errmsg
from .lib.url import URL
from .query import build_filter
from .query import limit_element

log = logging.getLogger("carddav")

## Number of filenames tried when creating a new card before giving up
CREATE_ATTEMPTS = 5

VCARD_CONTENT_TYPE = 'text/vcard; charset="utf-8"'


class AddressBookSet(DAVObject):
    """
    An AddressBookSet is a set of addressbooks.
    """

    def addressbooks(self) -> List["AddressBook"]:
        """
        List all addressbook collections in this set.

        Returns:
         * [AddressBook(), ...]
        """
        abooks = []

        data = self.children(cdav.Addressbook.tag)
        for ab_url, ab_type, ab_name in data:
            ab_id = str(ab_url).rstrip("/").split("/")[-1] or None
            abooks.append(
                AddressBook(self.client, id=ab_id, url=ab_url, parent=self, name=ab_name)
            )

        return abooks

    def addressbook(
        self, name: Optional[str] = None, ab_id: Optional[str] = None
    ) -> "AddressBook":
        """
        The addressbook method will return an addressbook object.  If
        it gets a name, it will look through the addressbooks on the
        server.  If given an id, no network traffic is done.

        Args:
          name: return the addressbook with this display name
          ab_id: return the addressbook with this id (the last path component)
        """
        if name and not ab_id:
            for abook in self.addressbooks():
                display_name = abook.get_display_name()
                if display_name == name:
                    return abook
        if name and not ab_id:
            raise error.NotFoundError(
                url=str(self.url), reason=f"No addressbook with name {name} found"
            )
        if not ab_id and not name:
            abooks = self.addressbooks()
            if not abooks:
                raise error.NotFoundError(
                    url=str(self.url), reason="No addressbooks found"
                )
            return abooks[0]

        if self.url is None:
            raise ValueError("Unexpected value None for self.url")

        return AddressBook(
            self.client, name=name, parent=self, url=self.url.join(quote(ab_id) + "/"), id=ab_id
        )


class Principal(DAVObject):
    """
    This class represents a DAV Principal. It doesn't do much, except
    keep track of the URL for the addressbook-home-set.
    """

    def __init__(
        self,
        client: Optional["DAVClient"] = None,
        url: Union[str, ParseResult, SplitResult, URL, None] = None,
        addressbook_home_set: URL = None,
        **kwargs,  ## to be passed to super.__init__
    ) -> None:
        """
        Returns a Principal.

        End-users usually shouldn't need to construct Principal-objects
        directly.  Use davclient.principal() to get the principal object
        of the logged-in user.

        Args:
          client: a DAVClient() object
          url: The URL, if known.
          addressbook_home_set: the addressbook home set, if known

        If url is not given, the principal path is found by a propfind
        for current-user-principal (RFC5397) on the client URL.
        """
        self._addressbook_home_set = None

        super(Principal, self).__init__(client=client, url=url, **kwargs)
        if url is None:
            if self.client is None:
                raise ValueError("Unexpected value None for self.client")

            self.url = self.client.url
            if not self.client.features.is_supported("get-current-user-principal"):
                cup = None
                log.debug(f"using {self.client.url} as the principal URL")
            else:
                cup = self.get_property(dav.CurrentUserPrincipal())
                if cup is None:
                    log.warning("carddav server lacking a feature:")
                    log.warning("current-user-principal property not found")
                    log.warning("assuming %s is the principal URL" % self.client.url)
            if cup is not None:
                self.url = self.client.url.resolve(cup)
        if addressbook_home_set is not None:
            self.addressbook_home_set = addressbook_home_set

    @property
    def addressbook_home_set(self) -> AddressBookSet:
        if not self._addressbook_home_set:
            home_set_url = self.get_property(cdav.AddressbookHomeSet())
            if home_set_url is None:
                raise error.PropfindError(
                    url=str(self.url), reason="No addressbook-home-set property found"
                )
            ## Some servers return the email address unquoted in the path
            if "@" in home_set_url and "://" not in home_set_url:
                home_set_url = quote(home_set_url)
            self.addressbook_home_set = home_set_url
        return self._addressbook_home_set

    @addressbook_home_set.setter
    def addressbook_home_set(self, url) -> None:
        if isinstance(url, AddressBookSet):
            self._addressbook_home_set = url
            return
        ## The home set may live on another host than the principal
        self._addressbook_home_set = AddressBookSet(
            self.client, self.url.resolve(URL.objectify(url))
        )

    def addressbooks(self) -> List["AddressBook"]:
        """
        Return the principal's addressbooks.
        """
        return self.addressbook_home_set.addressbooks()

    def addressbook(
        self,
        name: Optional[str] = None,
        ab_id: Optional[str] = None,
        ab_url: Optional[str] = None,
    ) -> "AddressBook":
        """
        The addressbook method will return an addressbook object.
        With ab_url or ab_id given, it will not initiate any
        communication with the server.
        """
        if not ab_url:
            return self.addressbook_home_set.addressbook(name, ab_id)
        return AddressBook(self.client, url=self.url.resolve(ab_url))


@dataclass(frozen=True)
class AddressBookProperties:
    """
    Snapshot of the collection properties of an addressbook.  A new
    snapshot replaces the old one as a whole.
    """

    display_name: Optional[str] = None
    ctag: Optional[str] = None
    add_member_url: Optional[str] = None
    max_resource_size: Optional[int] = None
    supported_reports: FrozenSet[str] = frozenset()
    description: Optional[str] = None
    supported_address_data: Tuple[Tuple[str, str], ...] = ()
    sync_token: Optional[str] = None
    extra: Dict[str, str] = field(default_factory=dict)

    def supports_report(self, tag: str) -> bool:
        return tag in self.supported_reports

    @property
    def supports_sync_collection(self) -> bool:
        return self.supports_report(dav.SyncCollection.tag)

    @property
    def supports_multiget(self) -> bool:
        return self.supports_report(cdav.AddressbookMultiGet.tag)


class QueryResult(dict):
    """
    Result of an addressbook query, url -> AddressObject.  truncated is
    set if the server did not deliver all matches (RFC6352 section 8.6.1)
    """

    truncated: bool = False


class MultigetResult(dict):
    """
    Result of an addressbook multiget, url -> AddressObject.  URLs the
    server reported as not existing are listed in missing.
    """

    def __init__(self, *largs, **kwargs) -> None:
        super(MultigetResult, self).__init__(*largs, **kwargs)
        self.missing: List[str] = []


def _text(element) -> Optional[str]:
    if element is None:
        return None
    if element.text is None:
        return None
    return element.text.strip() or None


class AddressBook(DAVObject):
    """
    The AddressBook object is used to represent an addressbook
    collection.  Refer to the RFC for details:
    https://datatracker.ietf.org/doc/html/rfc6352#section-5.2
    """

    _properties: Optional[AddressBookProperties] = None

    ## Properties fetched for the collection itself
    COLLECTION_PROPS = (
        dav.DisplayName,
        cs.GetCTag,
        dav.AddMember,
        cdav.MaxResourceSize,
        dav.SupportedReportSet,
        cdav.AddressbookDescription,
        cdav.SupportedAddressData,
        dav.SyncToken,
        dav.ResourceType,
    )

    def __init__(self, *largs, features=None, **kwargs) -> None:
        super(AddressBook, self).__init__(*largs, **kwargs)
        self._features = FeatureSet(features) if features is not None else None

    @property
    def features(self) -> FeatureSet:
        """The addressbook's own FeatureSet, or else the client's"""
        if self._features is not None:
            return self._features
        if self.client is not None and getattr(self.client, "features", None) is not None:
            return self.client.features
        return FeatureSet()

    def _href_to_url(self, href: str) -> str:
        return str(self.url.resolve(href))

    def _is_self(self, href: str) -> bool:
        return self.url.same_path(self.url.resolve(href))

    def get_addressbook_properties(self, force: bool = False) -> AddressBookProperties:
        """
        Fetches the collection properties (one PROPFIND) unless a
        snapshot is already cached.  If the request fails, the error
        propagates and the previous snapshot is kept.
        """
        if self._properties is not None and not force:
            return self._properties

        response = self._query_properties([p() for p in self.COLLECTION_PROPS], depth=0)
        props = self._find_own_props(response.find_objects_and_props())

        resource_types = props.get(dav.ResourceType.tag)
        if resource_types is not None and resource_types.find(cdav.Addressbook.tag) is None:
            error.weirdness(f"{self.url} is not reported as an addressbook collection")

        add_member = props.get(dav.AddMember.tag)
        add_member_url = None
        if add_member is not None:
            href = _text(add_member.find(dav.Href.tag))
            if href:
                add_member_url = self._href_to_url(href)

        max_size = _text(props.get(cdav.MaxResourceSize.tag))
        if max_size is not None:
            try:
                max_size = int(max_size)
            except ValueError:
                error.weirdness(f"max-resource-size is not an integer: {max_size}")
                max_size = None

        reports = set()
        report_set = props.get(dav.SupportedReportSet.tag)
        if report_set is not None:
            for report in report_set.iter(dav.Report.tag):
                for child in report:
                    reports.add(child.tag)

        address_data = []
        sad = props.get(cdav.SupportedAddressData.tag)
        if sad is not None:
            for adt in sad.iter(cdav.AddressDataType.tag):
                address_data.append(
                    (adt.get("content-type", "text/vcard"), adt.get("version", "3.0"))
                )

        known = {p.tag for p in self.COLLECTION_PROPS}
        extra = {
            tag: _text(value)
            for tag, value in props.items()
            if tag not in known and len(value) == 0 and _text(value) is not None
        }

        self._properties = AddressBookProperties(
            display_name=_text(props.get(dav.DisplayName.tag)),
            ctag=_text(props.get(cs.GetCTag.tag)),
            add_member_url=add_member_url,
            max_resource_size=max_size,
            supported_reports=frozenset(reports),
            description=_text(props.get(cdav.AddressbookDescription.tag)),
            supported_address_data=tuple(address_data),
            sync_token=_text(props.get(dav.SyncToken.tag)),
            extra=extra,
        )
        if self._properties.display_name:
            self.props[dav.DisplayName.tag] = self._properties.display_name
        return self._properties

    @property
    def ctag(self) -> Optional[str]:
        """The ctag of the cached property snapshot"""
        return self.get_addressbook_properties().ctag

    def get_display_name(self) -> str:
        """
        The displayname, or the last path component of the URL if the
        server does not give one (as suggested in RFC6352 section 6.2.1)
        """
        name = self.get_addressbook_properties().display_name
        if name:
            return name
        return URL.objectify(self.url).path.rstrip("/").split("/")[-1]

    def get_details(self) -> str:
        """A printable summary of the addressbook properties"""
        props = self.get_addressbook_properties()
        lines = [
            f"Addressbook {self.get_display_name()} at {self.url}",
            f"  ctag: {props.ctag}",
            f"  sync-token: {props.sync_token}",
            f"  add-member: {props.add_member_url}",
            f"  max-resource-size: {props.max_resource_size}",
            f"  description: {props.description}",
            "  supported address data: "
            + ", ".join(f"{ct} {v}" for ct, v in props.supported_address_data),
            "  supported reports: " + ", ".join(sorted(props.supported_reports)),
        ]
        for tag, value in props.extra.items():
            lines.append(f"  {tag}: {value}")
        return "\n".join(lines)

    def _card_object(self, url, data=None, etag=None) -> AddressObject:
        return AddressObject(
            self.client, url=self.url.resolve(url), data=data, parent=self, etag=etag
        )

    def get_card(self, url) -> AddressObject:
        """
        Fetches one card.  Raises NotFoundError if it does not exist.
        """
        return self._card_object(url).load()

    def create_card(self, card) -> AddressObject:
        """
        Stores a new card in the addressbook.

        The card may be vCard text or a vobject component.  If it has
        no UID, one is generated.  The URL of the new resource is
        derived from the UID, unless the server offers an add-member
        URL (RFC5995), in which case the server picks the URL.

        Returns the AddressObject with url and etag of the new resource.
        """
        component = vcard.to_vobject(card)
        uid = vcard.get_uid(component)
        if uid is None or hasattr(card, "serialize"):
            uid = vcard.ensure_uid(component)
            data = vcard.serialize(component)
        else:
            data = vcard.fix(card)
        vcard.validate(component)

        headers = {"Content-Type": VCARD_CONTENT_TYPE}
        props = self.get_addressbook_properties()
        if props.add_member_url and self.features.is_supported("add-member"):
            r = self.client.post(props.add_member_url, data, headers)
            if r.status not in (200, 201, 204):
                raise error.PutError(url=props.add_member_url, reason=errmsg(r))
            location = r.headers.get("Location")
            if not location:
                raise error.ProtocolError(
                    url=props.add_member_url,
                    reason="Response to add-member POST carries no Location header",
                )
            return self._card_object(
                URL.objectify(props.add_member_url).resolve(location),
                data=data,
                etag=r.headers.get("ETag", ""),
            )

        filename = vcard.uid_to_filename(uid)
        stem = filename[: -len(".vcf")]
        headers["If-None-Match"] = "*"
        for attempt in range(CREATE_ATTEMPTS):
            url = self.url.join(quote(filename))
            r = self.client.put(str(url), data, headers)
            if r.status in (201, 204):
                return self._card_object(url, data=data, etag=r.headers.get("ETag", ""))
            if r.status != 412:
                raise error.PutError(url=str(url), reason=errmsg(r))
            log.info(f"{url} already exists, trying another filename")
            filename = f"{stem}-{random.randint(0, 2**31 - 1)}.vcf"
        raise error.ConflictError(
            url=str(self.url),
            reason=f"Could not find a free filename for {uid} in {CREATE_ATTEMPTS} attempts",
        )

    def update_card(self, url, card, etag: Optional[str]) -> Optional[str]:
        """
        Replaces a card on the server, if it wasn't changed since etag.

        Returns the new ETag ("" if the server didn't give one), or
        None if the card was changed on the server.
        """
        return self._card_object(url, data=card, etag=etag).update(etag)

    def delete_card(self, url) -> None:
        self._card_object(url).delete()

    def _address_data(self, props: Optional[Iterable[str]] = None) -> cdav.AddressData:
        """
        address-data element, asking for the given vCard properties
        only (plus the ones needed for a valid card), or the full card
        """
        el = cdav.AddressData()
        if props:
            el += [cdav.AddressDataProp(p) for p in vcard.add_required_properties(props)]
        return el

    def _cards_from_response(
        self, response: "DAVResponse", result: dict
    ) -> Tuple[bool, List[str]]:
        """
        Fills result with url -> AddressObject.  Returns (truncated,
        urls reported as missing).
        """
        truncated = False
        missing = []
        objects = response.find_objects_and_props()
        for href in objects:
            status = response.status_of(href)
            if self._is_self(href):
                if status == 507:
                    truncated = True
                continue
            if status in (404, 410):
                missing.append(self._href_to_url(href))
                continue
            if status is None or not 200 <= status < 300:
                error.weirdness(f"unexpected status {status} for {href}")
                continue
            props = objects[href]
            data = _text(props.get(cdav.AddressData.tag))
            if data is None:
                error.weirdness(f"no address-data delivered for {href}")
                continue
            result[self._href_to_url(href)] = self._card_object(
                href, data=props[cdav.AddressData.tag].text,
                etag=_text(props.get(dav.GetEtag.tag)),
            )
        return (truncated, missing)

    def query(
        self,
        conditions,
        props: Optional[Iterable[str]] = None,
        match_all: bool = False,
        limit: int = 0,
    ) -> QueryResult:
        """
        Searches the addressbook (addressbook-query REPORT).  See
        carddav.query for the format of conditions.

        Args:
          conditions: the filter conditions
          props: vCard properties to return, all if not given
          match_all: all conditions must match (default is any)
          limit: ask the server to return at most this many results

        Returns:
          QueryResult, url -> AddressObject with a truncated attribute
        """
        if not self.features.is_supported("query"):
            raise error.ReportError(
                url=str(self.url), reason="addressbook-query is not supported by the server"
            )
        root = (
            cdav.AddressbookQuery()
            + [dav.Prop() + [dav.GetEtag(), self._address_data(props)]]
            + build_filter(conditions, match_all=match_all)
        )
        ## without server side limits, all results are fetched and cut below
        if self.features.is_supported("query.limit"):
            limit_el = limit_element(limit)
            if limit_el is not None:
                root += limit_el
        response = self._query(root, 1, "report")
        if not response.is_multistatus():
            raise error.ReportError(
                url=str(self.url), reason=f"Expected multistatus, got {errmsg(response)}"
            )
        result = QueryResult()
        (truncated, missing) = self._cards_from_response(response, result)
        if limit and len(result) > limit:
            ## the server ignored the limit
            for url in list(result)[limit:]:
                del result[url]
            truncated = True
        result.truncated = truncated
        return result

    def multiget(
        self, urls: Iterable[Union[str, URL]], props: Optional[Iterable[str]] = None
    ) -> MultigetResult:
        """
        Fetches several cards at once (addressbook-multiget REPORT).
        """
        hrefs = [dav.Href(value=URL.objectify(self.url.resolve(u)).path) for u in urls]
        result = MultigetResult()
        if not hrefs:
            return result
        root = (
            cdav.AddressbookMultiGet()
            + [dav.Prop() + [dav.GetEtag(), self._address_data(props)]]
            + hrefs
        )
        response = self._query(root, 0, "report")
        if not response.is_multistatus():
            raise error.ReportError(
                url=str(self.url), reason=f"Expected multistatus, got {errmsg(response)}"
            )
        (truncated, missing) = self._cards_from_response(response, result)
        result.missing = missing
        return result

    def list_members(self) -> Dict[str, str]:
        """
        All vCard resources in the addressbook, url -> etag.
        Sub-collections and the collection itself are skipped.
        """
        response = self._query_properties([dav.ResourceType(), dav.GetEtag()], depth=1)
        objects = response.find_objects_and_props()
        ret = {}
        for href in objects:
            if self._is_self(href):
                continue
            props = objects[href]
            resource_type = props.get(dav.ResourceType.tag)
            if resource_type is not None and resource_type.find(dav.Collection.tag) is not None:
                continue
            status = response.status_of(href)
            if status is not None and not 200 <= status < 300:
                log.debug(f"{href} listed with status {status}, skipped")
                continue
            etag = _text(props.get(dav.GetEtag.tag))
            if etag is None:
                error.weirdness(f"member {href} without getetag")
                continue
            ret[self._href_to_url(href)] = etag
        return ret

    def sync_collection(
        self, sync_token: Optional[str] = "", props: Optional[Iterable[str]] = None
    ) -> "DAVResponse":
        """
        Sends a sync-collection REPORT (RFC6578) and returns the raw
        response.  Error statuses are not raised, the caller decides.
        """
        root = dav.SyncCollection() + [
            dav.SyncToken(value=sync_token or None),
            dav.SyncLevel(value="1"),
        ]
        prop = dav.Prop() + dav.GetEtag()
        if props:
            prop += self._address_data(props)
        root += prop
        depth = self.features.is_supported("sync-token.depth", return_type=dict).get(
            "depth", "0"
        )
        body = self._report_body(root)
        return self.client.report(str(self.url), body, depth)

    def _report_body(self, root) -> bytes:
        return etree.tostring(
            root.xmlelement(),
            encoding="utf-8",
            xml_declaration=True,
            pretty_print=bool(error.debug_dump_communication),
        )

    def synchronize(
        self,
        handler: "SyncHandler",
        props: Optional[Iterable[str]] = None,
        sync_token: str = "",
        **options,
    ) -> "SyncResult":
        """
        Synchronizes the addressbook into the handler, see carddav.sync.
        options are passed on to the SyncEngine.
        """
        from .sync import SyncEngine

        return SyncEngine(**options).synchronize(
            self, handler, props=props, sync_token=sync_token
        )
