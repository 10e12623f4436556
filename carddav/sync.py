"""
Synchronization of an addressbook into a local cache.

The cache is owned by the caller and is reached through a SyncHandler.
One call to ``SyncEngine.synchronize`` is one synchronization pass:

* if the addressbook supports RFC6578 sync-collection, only the changes
  since the given sync token are fetched (with an empty token, all
  cards are delivered)
* else, if the ctag of the addressbook is the same as last time,
  nothing has changed
* else, all members are listed and their ETags compared with the ETags
  the handler knows about

The returned SyncResult holds the token to pass on the next call.
Tokens starting with ``ctag-`` or ``fake-`` are made up by this module
for addressbooks without sync-collection support, they are meaningless
to the server.

Example::

    class Cache(SyncHandler):
        def __init__(self):
            self.cards = {}
        def address_object_changed(self, url, etag, card):
            self.cards[url] = (etag, card)
        def address_object_deleted(self, url):
            self.cards.pop(url, None)
        def get_existing_etags(self):
            return {url: etag for url, (etag, card) in self.cards.items()}

    cache = Cache()
    result = synchronize(addressbook, cache)
    ...
    result = synchronize(addressbook, cache, sync_token=result.sync_token)
"""
import hashlib
import logging
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import Dict
from typing import List
from typing import Optional
from typing import TYPE_CHECKING
from typing import Union

from .elements import cdav
from .elements import dav
from .lib import error
from .lib.error import errmsg

if TYPE_CHECKING:
    from .collection import AddressBook
    from .collection import AddressBookProperties

log = logging.getLogger("carddav")

CTAG_PREFIX = "ctag-"
FAKE_PREFIX = "fake-"


class SyncState(Enum):
    START = "start"
    STRATEGY_SELECTED = "strategy-selected"
    DELTA_FETCH = "delta-fetch"
    ENUMERATE_ALL = "enumerate-all"
    RECONCILE = "reconcile"
    DONE = "done"
    FAILED = "failed"


class SyncStrategy(Enum):
    DELTA = "delta"
    CTAG_UNCHANGED = "ctag-unchanged"
    ENUMERATE = "enumerate"


@dataclass(frozen=True)
class Upserted:
    """A card was added or changed.  card is None if not fetched"""

    url: str
    etag: str
    card: Optional[str] = None


@dataclass(frozen=True)
class Deleted:
    url: str


@dataclass(frozen=True)
class RecordError:
    """A change record that could not be processed"""

    url: Optional[str]
    reason: str


@dataclass
class SyncResult:
    sync_token: str
    truncated: bool = False
    strategy: Optional[SyncStrategy] = None
    upserted: List[Upserted] = field(default_factory=list)
    deleted: List[Deleted] = field(default_factory=list)
    errors: List[RecordError] = field(default_factory=list)


class FatalSyncError(Exception):
    """
    Raised by a SyncHandler callback to abort the synchronization.
    Any other exception from a callback is logged and noted in
    SyncResult.errors, and the synchronization goes on.
    """

    pass


class SyncHandler:
    """
    Interface for the local cache.  Callbacks are called synchronously,
    in the order the server delivered the changes.  They must be
    idempotent, the same change may be delivered again on the next
    pass if a pass fails.
    """

    def address_object_changed(self, url: str, etag: str, card: Optional[str]) -> None:
        raise NotImplementedError()

    def address_object_deleted(self, url: str) -> None:
        raise NotImplementedError()

    def get_existing_etags(self) -> Dict[str, str]:
        """url -> etag of all cards in the cache"""
        return {}


def ctag_token(ctag: str) -> str:
    return CTAG_PREFIX + ctag


def fake_token(members: Dict[str, str]) -> str:
    """A token made from the url and etag of all members"""
    combined = "|".join(f"{url} {members[url]}" for url in sorted(members))
    return FAKE_PREFIX + hashlib.md5(combined.encode("utf-8")).hexdigest()


def is_marker_token(token: Optional[str]) -> bool:
    return bool(token) and (
        token.startswith(CTAG_PREFIX) or token.startswith(FAKE_PREFIX)
    )


def _token_rejected(response) -> bool:
    """
    True if a sync-collection REPORT failed because of the token
    (the DAV:valid-sync-token precondition, RFC6578 section 3.2) or
    because the server doesn't handle the REPORT in this form (400
    or 501).  Those are worked around by enumerating.
    """
    if response.status in (400, 501):
        return True
    if response.status in (403, 409):
        tree = response.tree
        return (
            tree is not None
            and tree.tag == dav.Error.tag
            and tree.find(dav.ValidSyncToken.tag) is not None
        )
    return False


class _Pending:
    """A change record under construction"""

    __slots__ = ("url", "etag", "card", "deleted", "failed")

    def __init__(self, url, etag=None, card=None, deleted=False) -> None:
        self.url = url
        self.etag = etag
        self.card = card
        self.deleted = deleted
        self.failed = False

    def record(self) -> Union[Upserted, Deleted]:
        if self.deleted:
            return Deleted(self.url)
        return Upserted(self.url, self.etag, self.card)


class SyncEngine:
    """
    Holds the options for synchronization passes.  The engine keeps no
    state between passes, the same engine may be used for several
    addressbooks.

    Args:
      fetch_cards: fetch the vCard data of changed cards.  If False, the
        handler gets card=None.
      use_ctag: skip the synchronization if the ctag says nothing has
        changed (addressbooks without sync-collection only)
      multiget_batch_size: max number of cards per multiget REPORT, all
        at once if None
    """

    def __init__(
        self,
        fetch_cards: bool = True,
        use_ctag: bool = True,
        multiget_batch_size: Optional[int] = None,
    ) -> None:
        if multiget_batch_size is not None and multiget_batch_size < 1:
            raise ValueError("multiget_batch_size must be positive")
        self.fetch_cards = fetch_cards
        self.use_ctag = use_ctag
        self.multiget_batch_size = multiget_batch_size

    def synchronize(
        self,
        addressbook: "AddressBook",
        handler: SyncHandler,
        props: Optional[List[str]] = None,
        sync_token: Optional[str] = "",
    ) -> SyncResult:
        """
        One synchronization pass.

        Args:
          addressbook: the AddressBook to synchronize
          handler: receives the changes
          props: vCard properties to fetch, all if not given
          sync_token: the token from the previous pass, "" for the first one

        Returns:
          SyncResult

        Errors affecting the pass as a whole are raised, and no token
        is returned.  Errors affecting one change are logged and noted
        in SyncResult.errors.
        """
        return _SyncPass(self, addressbook, handler, props, sync_token or "").run()


def synchronize(
    addressbook: "AddressBook",
    handler: SyncHandler,
    props: Optional[List[str]] = None,
    sync_token: Optional[str] = "",
    **options,
) -> SyncResult:
    """Shortcut for SyncEngine(**options).synchronize(...)"""
    return SyncEngine(**options).synchronize(
        addressbook, handler, props=props, sync_token=sync_token
    )


class _SyncPass:
    """State of one synchronization pass"""

    def __init__(
        self,
        engine: SyncEngine,
        addressbook: "AddressBook",
        handler: SyncHandler,
        props: Optional[List[str]],
        sync_token: str,
    ) -> None:
        self.engine = engine
        self.addressbook = addressbook
        self.handler = handler
        self.props = list(props) if props else None
        self.sync_token = sync_token
        self.state = SyncState.START
        self.strategy: Optional[SyncStrategy] = None
        self.properties: Optional["AddressBookProperties"] = None
        ## token to send in the sync-collection REPORT
        self.request_token = ""
        ## DAV:sync-token property captured before enumerating
        self.captured_token: Optional[str] = None
        self.new_token: Optional[str] = None
        self.truncated = False
        self.errors: List[RecordError] = []

    def _transition(self, state: SyncState) -> None:
        log.debug(
            f"sync of {self.addressbook.url}: {self.state.value} -> {state.value}"
        )
        self.state = state

    def _error(self, url: Optional[str], reason: str) -> None:
        log.warning(f"sync of {self.addressbook.url}: skipping {url}: {reason}")
        self.errors.append(RecordError(url, reason))

    def run(self) -> SyncResult:
        try:
            self._select_strategy()
            self._transition(SyncState.STRATEGY_SELECTED)
            pending: Optional[List[_Pending]] = None
            if self.strategy == SyncStrategy.CTAG_UNCHANGED:
                pending = []
                self.new_token = self.sync_token
            if self.strategy == SyncStrategy.DELTA:
                self._transition(SyncState.DELTA_FETCH)
                pending = self._delta_fetch()
                if pending is None:
                    self.strategy = SyncStrategy.ENUMERATE
            if self.strategy == SyncStrategy.ENUMERATE:
                self._transition(SyncState.ENUMERATE_ALL)
                pending = self._enumerate_all()
            self._fetch_cards(pending)
            self._transition(SyncState.RECONCILE)
            result = self._reconcile(pending)
            self._transition(SyncState.DONE)
            return result
        except Exception:
            self._transition(SyncState.FAILED)
            raise

    def _select_strategy(self) -> None:
        ab = self.addressbook
        features = ab.features
        self.properties = ab.get_addressbook_properties(force=True)
        token = self.sync_token

        delta_capable = (
            self.properties.supports_sync_collection
            and features.is_supported("sync-token", return_type=str) != "unsupported"
        )
        if delta_capable:
            self.request_token = "" if is_marker_token(token) else token
            if not self.request_token and not features.is_supported(
                "sync-token.empty-token"
            ):
                log.info(
                    f"{ab.url} does not accept an empty sync-token, enumerating all cards"
                )
                self.captured_token = self.properties.sync_token
                self.strategy = SyncStrategy.ENUMERATE
            else:
                self.strategy = SyncStrategy.DELTA
        elif (
            token
            and self.engine.use_ctag
            and self.properties.ctag
            and features.is_supported("getctag")
            and token == ctag_token(self.properties.ctag)
        ):
            self.strategy = SyncStrategy.CTAG_UNCHANGED
        else:
            self.strategy = SyncStrategy.ENUMERATE
        log.debug(f"sync of {ab.url}: strategy {self.strategy.value}")

    def _delta_fetch(self) -> Optional[List[_Pending]]:
        """
        sync-collection REPORT.  Returns None if the server rejects the
        token or the REPORT, the caller should then enumerate all cards.
        Any other failure aborts the pass.
        """
        ab = self.addressbook
        response = ab.sync_collection(self.request_token, self.props)
        if _token_rejected(response):
            log.info(
                f"sync-collection REPORT on {ab.url} rejected ({response.status} {response.reason}), enumerating all cards instead"
            )
            return None
        if response.status >= 400:
            raise error.ReportError(url=str(ab.url), reason=errmsg(response))
        if not response.is_multistatus():
            raise error.ProtocolError(
                url=str(ab.url),
                reason=f"Expected multistatus on sync-collection REPORT, got {errmsg(response)}",
            )
        objects = response.find_objects_and_props()
        for (href, reason) in response.errors:
            self.errors.append(RecordError(href, reason))
        if not response.sync_token:
            raise error.ProtocolError(
                url=str(ab.url), reason="No sync-token in sync-collection response"
            )
        self.new_token = response.sync_token

        pending = []
        for href in objects:
            status = response.status_of(href)
            if ab._is_self(href):
                if status == 507:
                    self.truncated = True
                else:
                    log.debug(f"status {status} for the collection itself ignored")
                continue
            url = ab._href_to_url(href)
            if status in (404, 410):
                pending.append(_Pending(url, deleted=True))
                continue
            if status is None or not 200 <= status < 300:
                self._error(url, f"unexpected status {status} in sync response")
                continue
            props = objects[href]
            etag_el = props.get(dav.GetEtag.tag)
            etag = etag_el.text.strip() if etag_el is not None and etag_el.text else None
            if not etag:
                self._error(url, "no getetag in sync response")
                continue
            card_el = props.get(cdav.AddressData.tag)
            card = card_el.text if card_el is not None and card_el.text else None
            pending.append(_Pending(url, etag, card))

        if not self.request_token and not self.truncated:
            ## all cards were reported, anything else in the cache is gone
            reported = {p.url for p in pending}
            for url in self.handler.get_existing_etags() or {}:
                if url not in reported:
                    pending.append(_Pending(url, deleted=True))
        return pending

    def _enumerate_all(self) -> List[_Pending]:
        ab = self.addressbook
        members = ab.list_members()
        existing = self.handler.get_existing_etags() or {}
        pending = []
        for url, etag in members.items():
            if existing.get(url) != etag:
                pending.append(_Pending(url, etag))
        for url in existing:
            if url not in members:
                pending.append(_Pending(url, deleted=True))

        if self.captured_token:
            self.new_token = self.captured_token
        elif self.properties.ctag and ab.features.is_supported("getctag"):
            self.new_token = ctag_token(self.properties.ctag)
        else:
            self.new_token = fake_token(members)
        return pending

    def _fetch_cards(self, pending: List[_Pending]) -> None:
        """Fills in the card data of changed cards not yet having it"""
        if not self.engine.fetch_cards:
            return
        ab = self.addressbook
        need = [p for p in pending if not p.deleted and p.card is None]
        if not need:
            return
        use_multiget = (
            ab.features.is_supported("multiget")
            and self.properties.supports_multiget
        )
        if not use_multiget:
            for p in need:
                try:
                    card = ab.get_card(p.url)
                except error.NotFoundError:
                    p.deleted = True
                    continue
                except error.ProtocolError as e:
                    p.failed = True
                    self._error(p.url, f"could not fetch card: {e}")
                    continue
                p.card = card.data
                p.etag = card.etag or p.etag
            return

        batch_size = self.engine.multiget_batch_size or len(need)
        for i in range(0, len(need), batch_size):
            batch = need[i : i + batch_size]
            result = ab.multiget([p.url for p in batch], self.props)
            for p in batch:
                if p.url in result:
                    p.card = result[p.url].data
                    p.etag = result[p.url].etag or p.etag
                elif p.url in result.missing:
                    p.deleted = True
                else:
                    p.failed = True
                    self._error(p.url, "card missing in multiget response")

    def _reconcile(self, pending: List[_Pending]) -> SyncResult:
        result = SyncResult(
            sync_token=self.new_token,
            truncated=self.truncated,
            strategy=self.strategy,
            errors=self.errors,
        )
        handler = self.handler
        for p in pending:
            if p.failed:
                continue
            record = p.record()
            try:
                if isinstance(record, Deleted):
                    handler.address_object_deleted(record.url)
                    result.deleted.append(record)
                else:
                    handler.address_object_changed(record.url, record.etag, record.card)
                    result.upserted.append(record)
            except FatalSyncError:
                raise
            except Exception as e:
                log.error(f"sync handler failed on {record.url}", exc_info=True)
                result.errors.append(RecordError(record.url, f"handler error: {e}"))
        log.info(
            f"sync of {self.addressbook.url} ({self.strategy.value}): "
            f"{len(result.upserted)} changed, {len(result.deleted)} deleted, "
            f"{len(result.errors)} errors"
        )
        return result
