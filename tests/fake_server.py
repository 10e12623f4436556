"""
A small in-memory CardDAV server for the unit tests.  An instance is
plugged in as the ``request`` method of the requests session of a
DAVClient, so the whole client stack is exercised without any network
traffic.

Layout::

    /dav/                       context path, gives current-user-principal
    /dav/principals/user/       principal, gives addressbook-home-set
    /dav/home/                  addressbook home set
    /dav/home/abook/            the addressbook
    /dav/home/abook-add/        add-member URL (if enabled)
    /.well-known/carddav        redirects to /dav/
"""
import http.client
from urllib.parse import unquote
from urllib.parse import urlparse
from xml.sax.saxutils import escape

from carddav.davclient import DAVClient
from lxml import etree
from requests.models import Response
from requests.structures import CaseInsensitiveDict

BASE_URL = "https://carddav.example.com"
CONTEXT_PATH = "/dav/"
PRINCIPAL_PATH = "/dav/principals/user/"
HOME_PATH = "/dav/home/"
ABOOK_PATH = "/dav/home/abook/"
ADD_MEMBER_PATH = "/dav/home/abook-add/"
WELL_KNOWN_PATH = "/.well-known/carddav"
TOKEN_PREFIX = "http://carddav.example.com/sync/"

DAV = "{DAV:}"
CARD = "{urn:ietf:params:xml:ns:carddav}"

XML_HEADERS = {"Content-Type": 'application/xml; charset="utf-8"'}


def make_response(status, body=b"", headers=None) -> Response:
    r = Response()
    r.status_code = status
    r.reason = http.client.responses.get(status, "")
    r.headers = CaseInsensitiveDict(headers or {})
    if isinstance(body, str):
        body = body.encode("utf-8")
    r._content = body
    return r


def multistatus(responses, sync_token=None) -> Response:
    body = (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<d:multistatus xmlns:d="DAV:" xmlns:card="urn:ietf:params:xml:ns:carddav" '
        'xmlns:cs="http://calendarserver.org/ns/">'
        + "".join(responses)
    )
    if sync_token:
        body += f"<d:sync-token>{sync_token}</d:sync-token>"
    body += "</d:multistatus>"
    return make_response(207, body, XML_HEADERS)


def prop_response(href, props, status="HTTP/1.1 200 OK") -> str:
    return (
        f"<d:response><d:href>{href}</d:href><d:propstat><d:prop>{props}</d:prop>"
        f"<d:status>{status}</d:status></d:propstat></d:response>"
    )


def status_response(href, status) -> str:
    return f"<d:response><d:href>{href}</d:href><d:status>{status}</d:status></d:response>"


def make_card(uid, fn, version="3.0", extra="") -> str:
    n = f"N:{fn.split()[-1]};{fn.split()[0]};;;\n" if version == "3.0" else ""
    return (
        f"BEGIN:VCARD\nVERSION:{version}\nUID:{uid}\nFN:{fn}\n{n}{extra}END:VCARD\n"
    )


class FakeCardDAVServer:
    """
    Cards are kept as path -> (etag, data).  Every change bumps the
    revision, the sync token is derived from the revision.

    Switches:
      sync: sync-collection is advertised and answered
      ctag: the getctag property is given
      multiget: addressbook-multiget is advertised and answered
      add_member: the add-member property is given and POST accepted
      empty_token: an empty sync-token is accepted
      required_depth: sync-collection is rejected unless sent with this Depth
      truncate_after: sync-collection answers at most this many cards,
        and a 507 for the collection
      ignore_limit: addressbook-query ignores the nresults limit
      drop_from_multiget: paths left out of multiget answers
    """

    def __init__(
        self,
        sync=True,
        ctag=True,
        multiget=True,
        add_member=False,
        empty_token=True,
        required_depth=None,
        truncate_after=None,
        ignore_limit=False,
    ):
        self.sync = sync
        self.ctag = ctag
        self.multiget = multiget
        self.add_member = add_member
        self.empty_token = empty_token
        self.required_depth = required_depth
        self.truncate_after = truncate_after
        self.ignore_limit = ignore_limit
        self.drop_from_multiget = set()
        self.cards = {}
        self.revision = 0
        self.changes = []
        self.requests = []

    ## server side manipulation

    def add(self, name, data):
        self._store(ABOOK_PATH + name, data)
        return BASE_URL + ABOOK_PATH + name

    def remove(self, name):
        path = ABOOK_PATH + name
        del self.cards[path]
        self.revision += 1
        self.changes.append((self.revision, path))

    def _store(self, path, data):
        self.revision += 1
        self.cards[path] = (f'"etag-{self.revision}"', data)
        self.changes.append((self.revision, path))

    @property
    def sync_token(self):
        return f"{TOKEN_PREFIX}{self.revision}"

    @property
    def ctag_value(self):
        return f"ctag-{self.revision}"

    def methods(self):
        return [r[0] for r in self.requests]

    def reports(self):
        """(root tag, headers, body) of all REPORT requests"""
        ret = []
        for (method, path, headers, body) in self.requests:
            if method == "REPORT":
                ret.append((etree.fromstring(body).tag, headers, body))
        return ret

    ## request handling

    def __call__(self, method, url, data=None, headers=None, **kwargs):
        path = unquote(urlparse(url).path)
        headers = CaseInsensitiveDict(headers or {})
        self.requests.append((method, path, headers, data))
        if path == WELL_KNOWN_PATH:
            return make_response(301, b"", {"Location": CONTEXT_PATH})
        return getattr(self, "do_" + method)(path, headers, data)

    def _card_props(self, path, with_data=False):
        etag, data = self.cards[path]
        props = f"<d:getetag>{etag}</d:getetag>"
        if with_data:
            props += f"<card:address-data>{escape(data)}</card:address-data>"
        return prop_response(path, props)

    def do_OPTIONS(self, path, headers, body):
        return make_response(200, b"", {"DAV": "1, 2, 3, addressbook, extended-mkcol"})

    def do_PROPFIND(self, path, headers, body):
        depth = headers.get("Depth", "0")
        if path == CONTEXT_PATH:
            return multistatus(
                [
                    prop_response(
                        path,
                        f"<d:current-user-principal><d:href>{PRINCIPAL_PATH}</d:href></d:current-user-principal>",
                    )
                ]
            )
        if path == PRINCIPAL_PATH:
            return multistatus(
                [
                    prop_response(
                        path,
                        f"<card:addressbook-home-set><d:href>{HOME_PATH}</d:href></card:addressbook-home-set>",
                    )
                ]
            )
        if path == HOME_PATH:
            return multistatus(
                [
                    prop_response(path, "<d:resourcetype><d:collection/></d:resourcetype>"),
                    prop_response(
                        ABOOK_PATH,
                        "<d:resourcetype><d:collection/><card:addressbook/></d:resourcetype>"
                        "<d:displayname>Contacts</d:displayname>",
                    ),
                ]
            )
        if path != ABOOK_PATH:
            return make_response(404)
        if depth == "0":
            return multistatus([prop_response(path, self._collection_props())])
        responses = [
            prop_response(
                path, "<d:resourcetype><d:collection/><card:addressbook/></d:resourcetype>"
            )
        ]
        for card_path in self.cards:
            responses.append(
                prop_response(
                    card_path,
                    f"<d:resourcetype/><d:getetag>{self.cards[card_path][0]}</d:getetag>",
                )
            )
        return multistatus(responses)

    def _collection_props(self):
        reports = ["<card:addressbook-query/>"]
        if self.multiget:
            reports.append("<card:addressbook-multiget/>")
        if self.sync:
            reports.append("<d:sync-collection/>")
        props = (
            "<d:resourcetype><d:collection/><card:addressbook/></d:resourcetype>"
            "<d:displayname>Contacts</d:displayname>"
            "<card:max-resource-size>102400</card:max-resource-size>"
            "<d:supported-report-set>"
            + "".join(
                f"<d:supported-report><d:report>{r}</d:report></d:supported-report>"
                for r in reports
            )
            + "</d:supported-report-set>"
        )
        if self.ctag:
            props += f"<cs:getctag>{self.ctag_value}</cs:getctag>"
        if self.sync:
            props += f"<d:sync-token>{self.sync_token}</d:sync-token>"
        if self.add_member:
            props += f"<d:add-member><d:href>{ADD_MEMBER_PATH}</d:href></d:add-member>"
        return props

    def do_REPORT(self, path, headers, body):
        root = etree.fromstring(body)
        if root.tag == DAV + "sync-collection":
            return self._sync_collection(root, headers)
        if root.tag == CARD + "addressbook-multiget":
            if not self.multiget:
                return make_response(501)
            responses = []
            for href in root.iterfind(DAV + "href"):
                card_path = unquote(href.text)
                if card_path in self.drop_from_multiget:
                    continue
                if card_path in self.cards:
                    responses.append(self._card_props(card_path, with_data=True))
                else:
                    responses.append(status_response(card_path, "HTTP/1.1 404 Not Found"))
            return multistatus(responses)
        if root.tag == CARD + "addressbook-query":
            needle = root.findtext(".//" + CARD + "text-match")
            nresults = root.findtext(".//" + CARD + "nresults")
            matches = [
                p
                for p in self.cards
                if needle is None or needle.lower() in self.cards[p][1].lower()
            ]
            responses = []
            if nresults and not self.ignore_limit and len(matches) > int(nresults):
                matches = matches[: int(nresults)]
                responses.append(
                    status_response(ABOOK_PATH, "HTTP/1.1 507 Insufficient Storage")
                )
            responses = [self._card_props(p, with_data=True) for p in matches] + responses
            return multistatus(responses)
        return make_response(501)

    def _sync_collection(self, root, headers):
        if not self.sync:
            return make_response(501)
        if self.required_depth is not None and headers.get("Depth") != self.required_depth:
            return make_response(400, "Depth not accepted", {"Content-Type": "text/plain"})
        token = root.findtext(DAV + "sync-token") or ""
        if not token and not self.empty_token:
            return make_response(400, "sync-token required", {"Content-Type": "text/plain"})
        if token:
            if not token.startswith(TOKEN_PREFIX):
                return self._invalid_token()
            since = int(token[len(TOKEN_PREFIX) :])
            paths = []
            for (revision, changed) in self.changes:
                if revision > since:
                    if changed in paths:
                        paths.remove(changed)
                    paths.append(changed)
        else:
            paths = list(self.cards)
        with_data = root.find(".//" + CARD + "address-data") is not None
        responses = []
        truncated = self.truncate_after is not None and len(paths) > self.truncate_after
        if truncated:
            paths = paths[: self.truncate_after]
        for p in paths:
            if p in self.cards:
                responses.append(self._card_props(p, with_data))
            else:
                responses.append(status_response(p, "HTTP/1.1 404 Not Found"))
        if truncated:
            responses.append(status_response(ABOOK_PATH, "HTTP/1.1 507 Insufficient Storage"))
        return multistatus(responses, self.sync_token)

    def _invalid_token(self):
        return make_response(
            403,
            '<?xml version="1.0" encoding="utf-8"?>'
            '<d:error xmlns:d="DAV:"><d:valid-sync-token/></d:error>',
            XML_HEADERS,
        )

    def do_GET(self, path, headers, body):
        if path not in self.cards:
            return make_response(404, "Not found", {"Content-Type": "text/plain"})
        etag, data = self.cards[path]
        return make_response(200, data, {"Content-Type": "text/vcard", "ETag": etag})

    def do_PUT(self, path, headers, body):
        exists = path in self.cards
        if headers.get("If-None-Match") == "*" and exists:
            return make_response(412)
        if "If-Match" in headers and (
            not exists or self.cards[path][0] != headers["If-Match"]
        ):
            return make_response(412)
        self._store(path, body.decode("utf-8"))
        return make_response(204 if exists else 201, b"", {"ETag": self.cards[path][0]})

    def do_POST(self, path, headers, body):
        if not self.add_member or path != ADD_MEMBER_PATH:
            return make_response(405)
        card_path = f"{ABOOK_PATH}new-{self.revision + 1}.vcf"
        self._store(card_path, body.decode("utf-8"))
        return make_response(
            201, b"", {"Location": card_path, "ETag": self.cards[card_path][0]}
        )

    def do_DELETE(self, path, headers, body):
        if path not in self.cards:
            return make_response(404)
        del self.cards[path]
        self.revision += 1
        self.changes.append((self.revision, path))
        return make_response(204)


def client_for(server, url=BASE_URL + CONTEXT_PATH, **kwargs) -> DAVClient:
    client = DAVClient(url=url, **kwargs)
    client.session.request = server
    return client


def addressbook_for(server, **kwargs):
    client = client_for(server, **kwargs)
    return client.addressbook(url=BASE_URL + ABOOK_PATH)
