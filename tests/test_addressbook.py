#!/usr/bin/env python
"""
Tests for AddressBook, AddressObject, Principal and AddressBookSet,
run against the in-memory server in fake_server.py.
"""
from unittest import mock

import pytest
from lxml import etree

from .fake_server import ABOOK_PATH
from .fake_server import ADD_MEMBER_PATH
from .fake_server import addressbook_for
from .fake_server import BASE_URL
from .fake_server import CARD
from .fake_server import client_for
from .fake_server import FakeCardDAVServer
from .fake_server import make_card
from .fake_server import make_response
from .fake_server import PRINCIPAL_PATH
from carddav.collection import AddressBook
from carddav.collection import AddressBookProperties
from carddav.lib import error
from carddav.lib import vcard

jane = make_card("jane-1", "Jane Doe", extra="EMAIL;TYPE=work:jane@example.com\n")
john = make_card("john-1", "John Smith", extra="EMAIL:john@example.org\n")
jim = make_card("jim-1", "Jim Doe")


def url(name):
    return BASE_URL + ABOOK_PATH + name


class TestAddressBookProperties:
    def test_properties(self):
        server = FakeCardDAVServer(add_member=True)
        ab = addressbook_for(server)
        props = ab.get_addressbook_properties()
        assert props.display_name == "Contacts"
        assert props.ctag == server.ctag_value
        assert props.max_resource_size == 102400
        assert props.sync_token == server.sync_token
        assert props.add_member_url == BASE_URL + ADD_MEMBER_PATH
        assert props.supports_sync_collection
        assert props.supports_multiget
        assert props.supports_report(CARD + "addressbook-query")
        assert ab.get_display_name() == "Contacts"
        assert "Contacts" in ab.get_details()

    def test_cached_until_forced(self):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        props = ab.get_addressbook_properties()
        assert ab.get_addressbook_properties() is props
        assert server.methods() == ["PROPFIND"]
        server.add("jane.vcf", jane)
        props2 = ab.get_addressbook_properties(force=True)
        assert props2.ctag != props.ctag
        assert ab.ctag == props2.ctag

    def test_failed_refresh_keeps_snapshot(self):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        props = ab.get_addressbook_properties()
        with mock.patch.object(server, "do_PROPFIND", return_value=make_response(500)):
            with pytest.raises(error.PropfindError):
                ab.get_addressbook_properties(force=True)
        assert ab.get_addressbook_properties() is props

    def test_display_name_fallback(self):
        ab = AddressBook(url="https://carddav.example.com/dav/home/work/")
        ab._properties = AddressBookProperties()
        assert ab.get_display_name() == "work"

    def test_without_sync_and_multiget(self):
        server = FakeCardDAVServer(sync=False, multiget=False, ctag=False)
        props = addressbook_for(server).get_addressbook_properties()
        assert not props.supports_sync_collection
        assert not props.supports_multiget
        assert props.ctag is None
        assert props.sync_token is None


class TestCards:
    def test_create_and_get(self):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        card = ab.create_card(jane)
        assert str(card.url) == url("jane-1.vcf")
        assert card.etag == '"etag-1"'
        assert server.requests[-1][2]["If-None-Match"] == "*"

        got = ab.get_card(card.url)
        assert got.data == jane
        assert got.etag == card.etag
        assert got.uid == "jane-1"
        assert got.vobject_instance.fn.value == "Jane Doe"

    def test_create_from_vobject(self):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        component = vcard.to_vobject(make_card("vo-1", "Val Object"))
        card = ab.create_card(component)
        assert str(card.url) == url("vo-1.vcf")
        assert "Val Object" in server.cards[ABOOK_PATH + "vo-1.vcf"][1]

    def test_filename_from_urn_uid(self):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        card = ab.create_card(make_card("urn:uuid:ab/c d", "Odd Uid"))
        assert str(card.url) == url("ab-c-d.vcf")

    def test_missing_uid_is_generated(self, caplog):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        data = "BEGIN:VCARD\nVERSION:3.0\nFN:No Uid\nN:Uid;No;;;\nEND:VCARD\n"
        with caplog.at_level("INFO", logger="carddav"):
            card = ab.create_card(data)
        uid = vcard.get_uid(vcard.to_vobject(card.data))
        assert uid
        assert str(card.url) == url(uid + ".vcf")
        assert any("Adding missing UID" in r.getMessage() for r in caplog.records)

    def test_collision_gets_new_filename(self):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        ab.create_card(jane)
        with mock.patch("carddav.collection.random.randint", return_value=42):
            card = ab.create_card(jane)
        assert str(card.url) == url("jane-1-42.vcf")
        assert len(server.cards) == 2

    def test_collision_retry_is_bounded(self):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        with mock.patch.object(server, "do_PUT", return_value=make_response(412)):
            with pytest.raises(error.ConflictError):
                ab.create_card(jane)
        assert server.methods().count("PUT") == 5

    def test_create_put_error(self):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        with mock.patch.object(server, "do_PUT", return_value=make_response(507)):
            with pytest.raises(error.PutError):
                ab.create_card(jane)

    def test_invalid_card_not_sent(self):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        with pytest.raises(error.ValidationError):
            ab.create_card("BEGIN:VCARD\nVERSION:3.0\nUID:x\nN:X;;;;\nEND:VCARD\n")
        assert "PUT" not in server.methods()

    def test_add_member(self):
        server = FakeCardDAVServer(add_member=True)
        ab = addressbook_for(server)
        card = ab.create_card(jane)
        assert str(card.url) == url("new-1.vcf")
        assert card.etag == '"etag-1"'
        assert "POST" in server.methods()
        assert "PUT" not in server.methods()

    def test_add_member_disabled(self):
        server = FakeCardDAVServer(add_member=True)
        ab = addressbook_for(server, features={"add-member": False})
        card = ab.create_card(jane)
        assert str(card.url) == url("jane-1.vcf")
        assert "POST" not in server.methods()

    def test_add_member_without_location(self):
        server = FakeCardDAVServer(add_member=True)
        ab = addressbook_for(server)
        with mock.patch.object(server, "do_POST", return_value=make_response(201)):
            with pytest.raises(error.ProtocolError):
                ab.create_card(jane)

    def test_update(self):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        card = ab.create_card(jane)
        jane2 = jane.replace("Jane Doe", "Jane Doe-Smith")
        etag = ab.update_card(card.url, jane2, card.etag)
        assert etag == '"etag-2"'
        assert server.requests[-1][2]["If-Match"] == card.etag
        assert ab.get_card(card.url).data == jane2

    def test_update_conflict(self):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        card = ab.create_card(jane)
        ## someone else changes the card
        server.add("jane-1.vcf", jane.replace("Jane", "Janet"))
        assert ab.update_card(card.url, jane, card.etag) is None
        assert "Janet" in ab.get_card(card.url).data

    def test_delete(self):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        card = ab.create_card(jane)
        ab.delete_card(card.url)
        with pytest.raises(error.NotFoundError):
            ab.get_card(card.url)
        with pytest.raises(error.NotFoundError):
            ab.delete_card(card.url)

    def test_get_without_etag(self):
        server = FakeCardDAVServer()
        ab = addressbook_for(server)
        server.add("jane.vcf", jane)
        response = make_response(200, jane, {"Content-Type": "text/vcard"})
        with mock.patch.object(server, "do_GET", return_value=response):
            with pytest.raises(error.ProtocolError):
                ab.get_card(url("jane.vcf"))

    def test_list_members(self):
        server = FakeCardDAVServer()
        server.add("jane.vcf", jane)
        server.add("john.vcf", john)
        assert addressbook_for(server).list_members() == {
            url("jane.vcf"): '"etag-1"',
            url("john.vcf"): '"etag-2"',
        }


class TestQueries:
    def setup_method(self):
        self.server = FakeCardDAVServer()
        self.server.add("jane.vcf", jane)
        self.server.add("john.vcf", john)
        self.server.add("jim.vcf", jim)
        self.ab = addressbook_for(self.server)

    def test_query(self):
        result = self.ab.query({"FN": "doe"})
        assert sorted(result) == [url("jane.vcf"), url("jim.vcf")]
        assert not result.truncated
        assert result[url("jane.vcf")].data == jane

        (tag, headers, body) = self.server.reports()[-1]
        assert tag == CARD + "addressbook-query"
        assert headers["Depth"] == "1"
        root = etree.fromstring(body)
        tm = root.find(".//" + CARD + "text-match")
        assert tm.get("match-type") == "contains"
        assert tm.get("collation") == "i;unicode-casemap"
        assert root.find(CARD + "filter").get("test") == "anyof"

    def test_query_limit_honored(self):
        result = self.ab.query({"FN": "doe"}, limit=1)
        assert len(result) == 1
        assert result.truncated

    def test_query_limit_ignored(self):
        self.server.ignore_limit = True
        result = self.ab.query({"FN": "doe"}, limit=1)
        assert len(result) == 1
        assert result.truncated

    def test_query_limit_unsupported(self):
        ab = addressbook_for(self.server, features={"query.limit": False})
        result = ab.query({"FN": "doe"}, limit=1)
        assert len(result) == 1
        assert result.truncated
        (tag, headers, body) = self.server.reports()[-1]
        assert etree.fromstring(body).find(".//" + CARD + "nresults") is None

    def test_query_unsupported(self):
        ab = addressbook_for(self.server, features={"query": False})
        with pytest.raises(error.ReportError):
            ab.query({"FN": "doe"})
        assert self.server.reports() == []

    def test_multiget(self):
        result = self.ab.multiget([url("jane.vcf"), ABOOK_PATH + "gone.vcf"])
        assert list(result) == [url("jane.vcf")]
        assert result[url("jane.vcf")].etag == '"etag-1"'
        assert result.missing == [url("gone.vcf")]
        (tag, headers, body) = self.server.reports()[-1]
        assert headers["Depth"] == "0"

    def test_multiget_nothing(self):
        assert self.ab.multiget([]) == {}
        assert self.server.reports() == []


class TestPrincipal:
    def test_principal_and_addressbooks(self):
        server = FakeCardDAVServer()
        client = client_for(server)
        principal = client.principal()
        assert str(principal.url) == BASE_URL + "/dav/principals/user/"
        assert str(principal.addressbook_home_set.url) == BASE_URL + "/dav/home/"
        abooks = principal.addressbooks()
        assert len(abooks) == 1
        assert str(abooks[0].url) == url("")
        assert abooks[0].id == "abook"
        assert abooks[0].name == "Contacts"

    def test_principal_without_current_user_principal(self):
        server = FakeCardDAVServer()
        client = client_for(
            server,
            url=BASE_URL + PRINCIPAL_PATH,
            features={"get-current-user-principal": False},
        )
        principal = client.principal()
        assert str(principal.url) == BASE_URL + PRINCIPAL_PATH
        assert server.requests == []
        assert str(principal.addressbook_home_set.url) == BASE_URL + "/dav/home/"

    def test_addressbook_by_name(self):
        server = FakeCardDAVServer()
        principal = client_for(server).principal()
        assert principal.addressbook(name="Contacts").id == "abook"
        with pytest.raises(error.NotFoundError):
            principal.addressbook(name="Work")

    def test_addressbook_by_url_without_traffic(self):
        server = FakeCardDAVServer()
        client = client_for(server)
        principal = client.principal()
        server.requests = []
        ab = principal.addressbook(ab_url="/dav/home/other/")
        assert str(ab.url) == BASE_URL + "/dav/home/other/"
        assert server.requests == []
