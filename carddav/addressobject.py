#!/usr/bin/env python
"""
AddressObject is one vCard resource in an addressbook collection.

The vCard data is kept as text exactly as delivered by the server; a
vobject instance is only made on demand.
"""
import logging
from typing import Optional
from typing import TYPE_CHECKING
from typing import Union

from .davobject import DAVObject
from .lib import error
from .lib import vcard
from .lib.error import errmsg
from .lib.python_utilities import to_normal_str
from .lib.url import URL

if TYPE_CHECKING:
    from .collection import AddressBook
    from .davclient import DAVClient

log = logging.getLogger("carddav")


class AddressObject(DAVObject):
    """
    A vCard resource.  ``etag`` is the entity tag as last seen from the
    server, ``data`` the vCard text (or None if not loaded).
    """

    etag: Optional[str] = None
    _data: Optional[str] = None
    _vobject_instance = None

    def __init__(
        self,
        client: Optional["DAVClient"] = None,
        url: Union[str, URL, None] = None,
        data=None,
        parent: Optional["AddressBook"] = None,
        id: Optional[str] = None,
        props=None,
        etag: Optional[str] = None,
    ) -> None:
        super(AddressObject, self).__init__(
            client=client, url=url, parent=parent, id=id, props=props
        )
        self.etag = etag
        if data is not None:
            self.data = data

    def _get_data(self) -> Optional[str]:
        if self._data is None and self._vobject_instance is not None:
            return vcard.serialize(self._vobject_instance)
        return self._data

    def _set_data(self, data) -> None:
        if hasattr(data, "serialize"):
            self._vobject_instance = data
            self._data = None
        else:
            self._data = to_normal_str(data)
            self._vobject_instance = None

    data = property(_get_data, _set_data, doc="vCard data as a string")

    @property
    def vobject_instance(self):
        """
        The card parsed by vobject, parsed on first access.  Changes
        to it are not reflected in data until it is assigned to data.
        """
        if self._vobject_instance is None and self._data is not None:
            self._vobject_instance = vcard.to_vobject(self._data)
        return self._vobject_instance

    @property
    def uid(self) -> Optional[str]:
        if self.id:
            return self.id
        if self.data is None:
            return None
        return vcard.get_uid(self.vobject_instance)

    def load(self) -> "AddressObject":
        """
        (Re)load the card from the server.  The ETag header is
        mandatory in a GET response to a vCard resource.
        """
        r = self.client.get(str(self.url))
        if r.status in (404, 410):
            raise error.NotFoundError(url=str(self.url), reason=errmsg(r))
        if not 200 <= r.status < 300:
            raise error.ProtocolError(url=str(self.url), reason=errmsg(r))
        etag = r.headers.get("ETag")
        if not etag:
            raise error.ProtocolError(
                url=str(self.url), reason="Response to GET carries no ETag header"
            )
        if not r.raw:
            raise error.ProtocolError(
                url=str(self.url), reason="Response to GET carries no vCard data"
            )
        self.etag = etag
        self.data = r.raw
        return self

    def update(self, etag: Optional[str] = None) -> Optional[str]:
        """
        Conditional PUT of the current data, using If-Match with the
        given (or last known) ETag.  Returns the new ETag ("" if the
        server doesn't tell), or None if the card was changed on the
        server in the meantime.
        """
        etag = etag if etag is not None else self.etag
        card = vcard.to_vobject(self.data)
        vcard.validate(card)
        headers = {"Content-Type": 'text/vcard; charset="utf-8"'}
        if etag:
            headers["If-Match"] = etag
        r = self.client.put(str(self.url), self.data, headers)
        if r.status == 412:
            log.info(f"{self.url} was modified on the server, not overwritten")
            return None
        if not 200 <= r.status < 300:
            raise error.PutError(url=str(self.url), reason=errmsg(r))
        self.etag = r.headers.get("ETag", "")
        return self.etag

    def delete(self) -> None:
        """
        Delete the card.  A missing resource gives a NotFoundError.
        """
        r = self.client.delete(str(self.url))
        if r.status in (404, 410):
            raise error.NotFoundError(url=str(self.url), reason=errmsg(r))
        if r.status not in (200, 204):
            raise error.DeleteError(url=str(self.url), reason=errmsg(r))
