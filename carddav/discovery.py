#!/usr/bin/env python
"""
Finding the addressbooks of a user.

Two layers:

* ``discover_service`` locates the CardDAV service of a domain as
  described in RFC6764: DNS SRV record ``_carddavs._tcp``, a TXT record
  with the context path, and as a last resort the well-known URI
  ``/.well-known/carddav``.
* ``discover_addressbooks`` walks from a context URL to the
  addressbooks: current-user-principal (RFC5397) on the context URL,
  addressbook-home-set (RFC6352 section 7.1.1) on the principal, and a
  depth 1 PROPFIND on the home set.  Several context URLs are tried,
  the first one giving any addressbooks wins.

SECURITY CONSIDERATIONS:
    DNS is easily spoofed unless DNSSEC is used.  By default only TLS
    services are accepted, and SRV targets and well-known redirects
    must be in the same domain as the one queried (RFC6764 section 8).

See: https://datatracker.ietf.org/doc/html/rfc6764
"""
import logging
from dataclasses import dataclass
from typing import Iterator
from typing import List
from typing import Optional
from typing import Tuple
from typing import TYPE_CHECKING
from urllib.parse import urljoin
from urllib.parse import urlparse

import dns.exception
import dns.resolver
import requests

from .collection import AddressBook
from .collection import Principal
from .davobject import DAVObject
from .elements import dav
from .lib import error
from .lib.url import URL

if TYPE_CHECKING:
    from .davclient import DAVClient

log = logging.getLogger("carddav")

SERVICE = "carddav"
WELL_KNOWN_PATH = "/.well-known/carddav"


@dataclass
class ServiceInfo:
    """Information about a discovered CardDAV service"""

    url: str
    hostname: str
    port: int
    path: str
    tls: bool
    priority: int = 0
    weight: int = 0
    source: str = "unknown"  # 'srv', 'well-known'
    username: Optional[str] = None  # from the email address, if given

    def __str__(self) -> str:
        return f"ServiceInfo(url={self.url}, source={self.source}, priority={self.priority}, username={self.username})"


def _is_subdomain_or_same(discovered_domain: str, original_domain: str) -> bool:
    """
    Check if discovered domain is the same as or a subdomain of the original domain.

    Examples:
        >>> _is_subdomain_or_same('contacts.example.com', 'example.com')
        True
        >>> _is_subdomain_or_same('example.com', 'example.com')
        True
        >>> _is_subdomain_or_same('exampleXcom.evil.com', 'example.com')
        False
    """
    discovered = discovered_domain.lower().strip(".")
    original = original_domain.lower().strip(".")
    return discovered == original or discovered.endswith("." + original)


def _extract_domain(identifier: str) -> Tuple[str, Optional[str]]:
    """
    Domain and optional username from an email address, URL or domain.

    Examples:
        >>> _extract_domain('user@example.com')
        ('example.com', 'user')
        >>> _extract_domain('https://carddav.example.com/path')
        ('carddav.example.com', None)
    """
    if "://" in identifier:
        parsed = urlparse(identifier)
        return (parsed.hostname or identifier, None)
    if "@" in identifier:
        parts = identifier.split("@")
        username = parts[0].strip() if parts[0] else None
        return (parts[-1].strip(), username)
    return (identifier.strip(), None)


def _parse_txt_record(txt_data: str) -> Optional[str]:
    """
    The path attribute of a TXT record.

    Examples:
        >>> _parse_txt_record('path=/dav/')
        '/dav/'
        >>> _parse_txt_record('other=value')
    """
    for pair in txt_data.split():
        if "=" in pair:
            key, value = pair.split("=", 1)
            if key.strip().lower() == "path":
                return value.strip()
    return None


def _srv_name(domain: str, use_tls: bool) -> str:
    return f"_{SERVICE}{'s' if use_tls else ''}._tcp.{domain}"


def _srv_lookup(domain: str, use_tls: bool = True) -> List[Tuple[str, int, int, int]]:
    """
    Returns a list of (hostname, port, priority, weight), best first
    """
    srv_name = _srv_name(domain, use_tls)
    log.debug(f"Performing SRV lookup for {srv_name}")
    try:
        answers = dns.resolver.resolve(srv_name, "SRV")
    except dns.exception.DNSException as e:
        log.debug(f"SRV lookup failed for {srv_name}: {e}")
        return []
    results = []
    for rdata in answers:
        hostname = str(rdata.target).rstrip(".")
        results.append(
            (hostname, int(rdata.port), int(rdata.priority), int(rdata.weight))
        )
        log.debug(f"Found SRV record: {hostname}:{rdata.port}")
    ## lower priority is better, then higher weight
    results.sort(key=lambda x: (x[2], -x[3]))
    return results


def _txt_lookup(domain: str, use_tls: bool = True) -> Optional[str]:
    txt_name = _srv_name(domain, use_tls)
    log.debug(f"Performing TXT lookup for {txt_name}")
    try:
        answers = dns.resolver.resolve(txt_name, "TXT")
    except dns.exception.DNSException as e:
        log.debug(f"TXT lookup failed for {txt_name}: {e}")
        return None
    for rdata in answers:
        txt_data = "".join(
            s.decode("utf-8") if isinstance(s, bytes) else s for s in rdata.strings
        )
        log.debug(f"Found TXT record: {txt_data}")
        path = _parse_txt_record(txt_data)
        if path:
            return path
    return None


def _well_known_lookup(
    domain: str, timeout: Optional[float] = 10, ssl_verify_cert: bool = True
) -> Optional[ServiceInfo]:
    """
    GET on https://domain/.well-known/carddav.  A redirect gives the
    context URL, a 200 means the well-known URI is the context URL
    itself.
    """
    url = f"https://{domain}{WELL_KNOWN_PATH}"
    log.debug(f"Trying well-known URI: {url}")
    try:
        response = requests.get(
            url, timeout=timeout, verify=ssl_verify_cert, allow_redirects=False
        )
    except requests.exceptions.RequestException as e:
        log.debug(f"Well-known URI lookup failed: {e}")
        return None

    if response.status_code in (301, 302, 303, 307, 308):
        location = response.headers.get("Location")
        if not location:
            return None
        final_url = urljoin(url, location)
        parsed = urlparse(final_url)
        redirect_hostname = parsed.hostname or domain
        if not _is_subdomain_or_same(redirect_hostname, domain):
            log.warning(
                f"Rejecting well-known redirect from {domain} to another domain ({redirect_hostname})"
            )
            return None
        return ServiceInfo(
            url=final_url,
            hostname=redirect_hostname,
            port=parsed.port or (443 if parsed.scheme == "https" else 80),
            path=parsed.path or "/",
            tls=parsed.scheme == "https",
            source="well-known",
        )

    if response.status_code == 200:
        return ServiceInfo(
            url=url,
            hostname=domain,
            port=443,
            path=WELL_KNOWN_PATH,
            tls=True,
            source="well-known",
        )
    return None


def discover_service(
    identifier: str,
    timeout: Optional[float] = 10,
    ssl_verify_cert: bool = True,
    require_tls: bool = True,
    well_known: bool = True,
) -> Optional[ServiceInfo]:
    """
    Locate the CardDAV service for a domain or email address (RFC6764).

    Args:
        identifier: Domain name (example.com), email address
          (user@example.com) or URL
        timeout: Timeout for the well-known HTTP request
        ssl_verify_cert: Whether to verify SSL certificates
        require_tls: If True (default), only TLS services are accepted.
          Otherwise _carddav._tcp is tried after _carddavs._tcp.
        well_known: fall back to the well-known URI if DNS gives nothing

    Returns:
        ServiceInfo, or None if nothing was found
    """
    if not identifier:
        raise error.DiscoveryError(reason="No domain or email address given")
    domain, username = _extract_domain(identifier)
    log.info(f"Discovering CardDAV service for domain: {domain}")

    tls_options = [True] if require_tls else [True, False]
    for use_tls in tls_options:
        srv_records = _srv_lookup(domain, use_tls)
        if not srv_records:
            continue
        hostname, port, priority, weight = srv_records[0]
        if not _is_subdomain_or_same(hostname, domain):
            log.warning(
                f"Rejecting SRV record for {domain} pointing to another domain ({hostname})"
            )
            continue
        path = _txt_lookup(domain, use_tls) or "/"
        scheme = "https" if use_tls else "http"
        default_port = 443 if use_tls else 80
        if port != default_port:
            url = f"{scheme}://{hostname}:{port}{path}"
        else:
            url = f"{scheme}://{hostname}{path}"
        log.info(f"Discovered CardDAV service via SRV: {url}")
        return ServiceInfo(
            url=url,
            hostname=hostname,
            port=port,
            path=path,
            tls=use_tls,
            priority=priority,
            weight=weight,
            source="srv",
            username=username,
        )

    if not well_known:
        return None
    info = _well_known_lookup(domain, timeout, ssl_verify_cert)
    if info:
        info.username = username
        log.info(f"Discovered CardDAV service via well-known URI: {info.url}")
        return info
    log.info(f"Failed to discover a CardDAV service for {domain}")
    return None


def _candidates(client: "DAVClient", identifier: Optional[str]) -> Iterator[URL]:
    client_url = client.url
    if client_url is not None and client_url.path not in ("", "/"):
        yield client_url

    host = None
    if identifier:
        host = _extract_domain(identifier)[0]
    elif client_url is not None:
        host = client_url.hostname
    if not host:
        return

    info = discover_service(
        identifier or host,
        timeout=client.timeout,
        ssl_verify_cert=client.ssl_verify_cert,
        well_known=False,
    )
    if info:
        yield URL.objectify(info.url)
    yield URL.objectify(f"https://{host}{WELL_KNOWN_PATH}")
    yield URL.objectify(f"https://{host}/")


def _context_urls(client: "DAVClient", identifier: Optional[str]) -> Iterator[URL]:
    """
    Candidate context URLs, in the order they should be tried.  The
    DNS lookup is only done if the client URL gives nothing.
    """
    seen = set()
    for url in _candidates(client, identifier):
        key = str(url.canonical())
        if key not in seen:
            seen.add(key)
            yield url


def _principal_at(client: "DAVClient", url: URL) -> Optional[Principal]:
    """
    The principal of the logged-in user, as given by the
    current-user-principal property of the context URL
    """
    obj = DAVObject(client=client, url=url)
    props = [dav.CurrentUserPrincipal()]
    response = obj._query_properties(props)
    ## relative hrefs are relative to where the redirects took us
    if response.url:
        obj.url = URL.objectify(response.url)
    cup = obj._find_own_props(response.expand_simple_props(props)).get(
        dav.CurrentUserPrincipal.tag
    )
    if not cup:
        log.info(f"No current-user-principal on {url}")
        return None
    return Principal(client=client, url=obj.url.resolve(cup))


def discover_addressbooks(
    client: "DAVClient", identifier: Optional[str] = None
) -> List[AddressBook]:
    """
    Finds the addressbooks of the logged-in user.

    Args:
        client: a DAVClient with credentials.  If its URL has a path,
          it is tried first.
        identifier: email address or domain for the DNS lookup,
          defaults to the host of the client URL

    Returns:
        The addressbooks of the first context URL yielding any, may be
        an empty list.  Failures on one context URL are logged and the
        next one is tried.
    """
    for url in _context_urls(client, identifier):
        log.debug(f"Looking for addressbooks via {url}")
        try:
            principal = _principal_at(client, url)
            if principal is None:
                continue
            addressbooks = principal.addressbooks()
        except error.DAVError as e:
            log.info(f"Addressbook discovery via {url} failed: {e}")
            continue
        if addressbooks:
            log.info(f"Found {len(addressbooks)} addressbooks via {url}")
            return addressbooks
        log.info(f"No addressbooks found via {url}")
    return []
