## Keeping a local copy of an addressbook up to date.
##
## The library doesn't store anything by itself.  The local copy is
## owned by the application, the sync engine reaches it through a
## SyncHandler.  The example below keeps it in a JSON file, together
## with the sync token to pass on the next run.
import json
import logging
import sys

sys.path.insert(0, "..")
sys.path.insert(0, ".")

import carddav
from carddav.sync import SyncHandler

CACHE_FILE = "contacts-cache.json"


class JSONCache(SyncHandler):
    def __init__(self, filename):
        self.filename = filename
        try:
            with open(filename) as f:
                stored = json.load(f)
        except FileNotFoundError:
            stored = {"sync_token": "", "cards": {}}
        self.sync_token = stored["sync_token"]
        self.cards = stored["cards"]

    def address_object_changed(self, url, etag, card):
        if len(card) > 1024 * 1024:
            ## an error raised here is reported for this card only
            raise ValueError("card too large")
        self.cards[url] = {"etag": etag, "card": card}

    def address_object_deleted(self, url):
        self.cards.pop(url, None)

    def get_existing_etags(self):
        return {url: c["etag"] for url, c in self.cards.items()}

    def save(self, sync_token):
        with open(self.filename, "w") as f:
            json.dump({"sync_token": sync_token, "cards": self.cards}, f)


def sync_once(addressbook):
    cache = JSONCache(CACHE_FILE)
    ## A FatalSyncError raised by the handler aborts the pass.  Nothing
    ## is saved then, the next run starts from the old token.
    result = addressbook.synchronize(cache, sync_token=cache.sync_token)
    print(
        f"{result.strategy.value}: {len(result.upserted)} changed, "
        f"{len(result.deleted)} deleted, {len(result.errors)} errors"
    )
    for err in result.errors:
        print(f"  {err.url}: {err.reason}")
    if result.truncated:
        ## the server delivered only part of the changes, run again
        print("more changes are waiting on the server")
    cache.save(result.sync_token)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    ## connection parameters from CARDDAV_* environment variables or
    ## ~/.config/carddav/carddav.yaml
    client = carddav.get_davclient()
    if client is None:
        sys.exit("no connection parameters found")
    with client:
        for addressbook in client.principal().addressbooks():
            sync_once(addressbook)
