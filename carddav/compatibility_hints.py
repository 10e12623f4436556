# fmt: off
"""
This file serves as a database of the different compatibility issues
encountered with CardDAV servers, and the FeatureSet logic used to
look them up.

A FeatureSet is what the DAVClient consults before deciding how to
talk to a server: what Depth to send on a sync-collection REPORT,
whether an empty sync token is accepted, whether to trust the ctag,
etc.  Capabilities advertised by the server itself (supported-report-set,
add-member) are discovered at runtime and combined with what's
configured here.
"""
import copy


class FeatureSet:
    """
    An object of this class describes the feature set of a server.

    Features are named with dots, "sync-token.empty-token" is a
    subfeature of "sync-token".  If a feature is not explicitly
    configured, the parent feature is consulted, and if nothing is
    configured the default from FEATURES is used.

      type -> "client-feature", "client-hints", "server-peculiarity", "server-feature" (last is default)
      support -> "full" (default), "unsupported", "fragile", "quirk", "ungraceful"

    unsupported means that attempts to use the feature will fail or be
    silently ignored.  quirk means that the feature is supported, but
    special handling needs to be done towards the server (the details
    are given in the extra keys).  fragile means that it sometimes works
    and sometimes not.  ungraceful means the server will throw some
    error.
    """
    FEATURES = {
        "auto-connect": {
            "type": "client-hints",
        },
        "auto-connect.url": {
            "description": "Instruction for how to access CardDAV if the URL given only contains a domain, i.e. `/remote.php/dav` for Nextcloud.",
            "type": "client-hints",
            "extra_keys": {
                "basepath": "The path to append to the domain",
                "domain": "Domain name may be given through the features - useful for well-known cloud solutions",
                "scheme": "The scheme to prepend to the domain.  Defaults to https",
            }
        },
        "get-current-user-principal": {
            "description": "Support for RFC5397, current principal extension.  Most CardDAV servers have this, but it is an extension to the DAV standard"
        },
        "sync-token": {
            "description": "RFC6578 sync-collection reports are supported.  Even when configured as supported, the addressbook is only synchronized with it if the DAV:supported-report-set of the collection lists sync-collection",
            "links": ["https://datatracker.ietf.org/doc/html/rfc6578"],
        },
        "sync-token.empty-token": {
            "description": "An initial sync-collection REPORT with an empty sync-token (RFC6578 section 3.8) is accepted.  When unsupported, the initial synchronization enumerates the collection and fetches the DAV:sync-token property instead (Google)",
        },
        "sync-token.depth": {
            "description": "RFC6578 says the Depth header of a sync-collection REPORT MUST be 0.  Some servers insist on Depth: 1 (Google)",
            "extra_keys": {
                "depth": "The value to send in the Depth header",
            },
        },
        "getctag": {
            "description": "The (non-standard) calendarserver.org getctag property is delivered and updated on every change of the addressbook.  Used as a fast path when synchronizing",
        },
        "multiget": {
            "description": "RFC6352 section 8.7, addressbook-multiget REPORT.  Mandatory in the RFC.  When unsupported, cards are fetched one by one with GET",
        },
        "add-member": {
            "description": "RFC5995 POST to the add-member URL.  Used for creating new cards when the server advertises it",
        },
        "prefer-minimal": {
            "description": "RFC7240 Prefer: return=minimal is honored on PROPFIND, making the server leave out 404 propstats for unknown properties",
        },
        "query": {
            "description": "RFC6352 section 8.6, addressbook-query REPORT",
        },
        "query.limit": {
            "description": "The server honors the C:limit/C:nresults element of an addressbook-query (RFC6352 section 8.6.1)",
        },
    }

    def __init__(self, feature_set_dict=None):
        """
        feature_set_dict should be a dict with dotted feature names
        as keys.  The values may be a dict like {"support": "unsupported"},
        a support string or a boolean.  Shortcuts accepted:

        { "sync-token.empty-token": "unsupported" }

        is equivalent with

        { "sync-token.empty-token": {"support": "unsupported"} }

        A FeatureSet object may also be given, it will be copied.
        A string is looked up as a server profile name, i.e. "google".
        """
        self._server_features = {}
        if isinstance(feature_set_dict, str):
            feature_set_dict = get_server_features(feature_set_dict)
        if isinstance(feature_set_dict, FeatureSet):
            self._server_features = copy.deepcopy(feature_set_dict._server_features)
        elif feature_set_dict:
            self.copyFeatureSet(feature_set_dict)

    def set_feature(self, feature, value=True):
        if isinstance(value, dict):
            fc = {feature: value}
        elif isinstance(value, str):
            fc = {feature: {"support": value}}
        elif value is True:
            fc = {feature: {"support": "full"}}
        elif value is False:
            fc = {feature: {"support": "unsupported"}}
        elif value is None:
            fc = {feature: {"support": "unknown"}}
        else:
            raise ValueError(f"Unexpected value {value!r} for feature {feature}")
        self.copyFeatureSet(fc)

    def copyFeatureSet(self, feature_set):
        if isinstance(feature_set, FeatureSet):
            feature_set = feature_set._server_features
        for feature in feature_set:
            self.find_feature(feature)
            value = feature_set[feature]
            if feature not in self._server_features:
                self._server_features[feature] = {}
            server_node = self._server_features[feature]
            if isinstance(value, bool):
                server_node['support'] = "full" if value else "unsupported"
            elif isinstance(value, str):
                server_node['support'] = value
            elif isinstance(value, dict):
                server_node.update(copy.deepcopy(value))
            else:
                raise ValueError(f"Unexpected value {value!r} for feature {feature}")

    def _default(self, feature_info):
        if isinstance(feature_info, str):
            feature_info = self.find_feature(feature_info)
        if 'default' in feature_info:
            return feature_info['default']
        feature_type = feature_info.get('type', 'server-feature')
        if feature_type == 'server-feature':
            return { "support": "full" }
        elif feature_type == 'client-feature':
            return { "enable": False }
        elif feature_type == 'server-peculiarity':
            return { "behaviour": "normal" }
        else:
            return { }

    def is_supported(self, feature, return_type=bool, return_defaults=True, accept_fragile=False):
        """
        The dotted features is essentially a tree.  If feature foo
        is unsupported it basically means that feature foo.bar is also
        unsupported.  Hence the extra logic visiting the parent nodes.

        return_type may be bool, str (the support level) or dict (the
        full node, including extra keys).
        """
        feature_info = self.find_feature(feature)
        feature_ = feature
        while True:
            if feature_ in self._server_features:
                return self._convert_node(self._server_features[feature_], feature_info, return_type, accept_fragile)
            if '.' not in feature_:
                if not return_defaults:
                    return None
                return self._convert_node(self._default(feature_info), feature_info, return_type, accept_fragile)
            feature_ = feature_[:feature_.rfind('.')]

    def _convert_node(self, node, feature_info, return_type, accept_fragile=False):
        """
        Return the information in a "node" given the wished return_type
        """
        if return_type == str:
            return node.get('support', node.get('enable', node.get('behaviour')))
        elif return_type == dict:
            return node
        elif return_type == bool:
            support = node.get('support', 'full')
            if support == 'quirk':
                return True
            if accept_fragile and support == 'fragile':
                support = 'full'
            if feature_info.get('type', 'server-feature') == 'server-feature':
                return support == 'full'
            else:
                return bool(node.get('enable'))
        else:
            raise ValueError(f"Unexpected return_type {return_type}")

    @classmethod
    def find_feature(cls, feature: str) -> dict:
        """
        Feature should be a string like feature.subfeature.

        Looks through the FEATURES list and returns the relevant
        section.  Raises KeyError for unknown features.
        """
        if feature not in cls.FEATURES:
            raise KeyError(f"Unknown feature {feature}")
        info = cls.FEATURES[feature]
        if 'name' not in info:
            info['name'] = feature
        return info

    def dotted_feature_set_list(self, compact=False):
        ret = {}
        for x in self._server_features:
            feature = self._server_features[x]
            if compact and feature == self._default(x):
                continue
            ret[x] = feature.copy()
        return ret


## Server profiles.  Only deviations from the default are given.

## Google Contacts, https://www.googleapis.com/carddav/v1/principals/<email>/lists/default/
## Sync-collection works, but only with Depth: 1.  An empty sync-token
## is rejected, so the initial pass enumerates the collection and keeps
## the DAV:sync-token property as the token for the next pass.
google = {
    "auto-connect.url": {
        "domain": "www.googleapis.com",
        "basepath": "/.well-known/carddav",
    },
    "sync-token.depth": {"support": "quirk", "depth": "1"},
    "sync-token.empty-token": {"support": "unsupported"},
    "add-member": {"support": "unsupported"},
}

## Nextcloud / Sabre based servers
nextcloud = {
    "auto-connect.url": {
        "basepath": "/remote.php/dav",
    },
}


def get_server_features(name: str) -> dict:
    """Looks up a server profile by name"""
    profiles = {
        "google": google,
        "nextcloud": nextcloud,
    }
    try:
        return profiles[name.lower()]
    except KeyError:
        raise KeyError(f"Unknown server profile {name}") from None
