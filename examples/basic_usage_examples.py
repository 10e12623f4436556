import sys

## We'll try to use the local carddav library, not the system-installed
sys.path.insert(0, "..")
sys.path.insert(0, ".")

import carddav
from carddav.discovery import discover_addressbooks
from carddav.lib import error

## CONFIGURATION.  Edit here, or set CARDDAV_URL, CARDDAV_USERNAME and
## CARDDAV_PASSWORD in the environment and use carddav.get_davclient()
carddav_url = "https://contacts.example.com/dav/"
username = "somebody"
password = "hunter2"

new_card = """BEGIN:VCARD
VERSION:3.0
UID:carddav-example-1
FN:Jane Doe
N:Doe;Jane;;;
EMAIL;TYPE=work:jane@example.com
TEL;TYPE=cell:+47 12345678
END:VCARD
"""


def run_examples():
    """
    Run through all the examples, one by one
    """
    ## The client object stores http session information, username,
    ## password, etc.  No server communication happens until needed.
    with carddav.DAVClient(
        url=carddav_url, username=username, password=password
    ) as client:
        ## If the server supports RFC6764, the domain is enough:
        ## discover_addressbooks(client, "somebody@example.com")
        addressbooks = discover_addressbooks(client)
        if not addressbooks:
            print("No addressbooks found")
            return
        print_addressbooks_demo(addressbooks)
        addressbook = addressbooks[0]

        card = add_card_demo(addressbook)
        search_demo(addressbook)
        modify_card_demo(addressbook, card)

        ## Clean up
        addressbook.delete_card(card.url)


def print_addressbooks_demo(addressbooks):
    for addressbook in addressbooks:
        ## get_details does one PROPFIND, the result is cached
        print(addressbook.get_details())


def add_card_demo(addressbook):
    ## Cards may be given as text or vobject components.  A missing
    ## UID is added, mandatory fields are checked before anything is
    ## sent to the server.
    try:
        card = addressbook.create_card(new_card)
    except error.ValidationError as e:
        print(f"the card is broken: {e.reason}")
        raise
    print(f"created {card.url} with etag {card.etag}")
    return card


def search_demo(addressbook):
    ## Everyone with a name containing "doe" and a work email at
    ## example.com.  See carddav.query for the syntax.
    found = addressbook.query(
        {"FN": "doe", "EMAIL": "@example.com/"}, match_all=True, limit=10
    )
    for url, card in found.items():
        print(url, card.vobject_instance.fn.value)
    if found.truncated:
        print("... and more")

    ## Only fetching some properties.  FN, UID and VERSION are always
    ## included.
    for card in addressbook.query({"TEL": True}, props=["TEL"]).values():
        print(card.data)


def modify_card_demo(addressbook, card):
    card = addressbook.get_card(card.url)
    card.vobject_instance.fn.value = "Jane Doe-Smith"
    card.vobject_instance.n.value.family = "Doe-Smith"
    ## the text is what gets sent, changes to the vobject instance
    ## have to be assigned back
    card.data = card.vobject_instance
    ## The ETag given makes sure we don't overwrite changes done by
    ## somebody else in the meantime
    if card.update(card.etag) is None:
        print("the card was changed on the server, reload and try again")


if __name__ == "__main__":
    run_examples()
