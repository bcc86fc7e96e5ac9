"""
SSRF protection for caller-supplied URLs.

Every remote image URL is validated here before it is fetched: only HTTPS is
allowed, internal hostnames and private address ranges are refused, and domain
names are resolved at validation time so that a name pointing at an internal
address is caught before any request is made.
"""

import asyncio
import ipaddress
import logging
import socket
from enum import Enum
from typing import Iterable, Optional, Tuple
from urllib.parse import urljoin, urlsplit

import aiohttp

logger = logging.getLogger(__name__)

BLOCKED_HOSTNAMES = frozenset({"localhost", "metadata.google.internal", "metadata"})

METADATA_IP = ipaddress.ip_address("169.254.169.254")

BLOCKED_NETWORKS = tuple(
    ipaddress.ip_network(net)
    for net in (
        "127.0.0.0/8",  # loopback
        "10.0.0.0/8",  # private class A
        "172.16.0.0/12",  # private class B
        "192.168.0.0/16",  # private class C
        "169.254.0.0/16",  # link-local, cloud metadata
        "0.0.0.0/8",  # "this" network
        "::1/128",  # IPv6 loopback
        "fe80::/10",  # IPv6 link-local
        "fc00::/7",  # IPv6 unique local, includes fd00::/8
    )
)

MAPPED_PREFIX = "::ffff:"
MAX_UNWRAP_DEPTH = 4

DEFAULT_MAX_BYTES = 50 * 1024 * 1024
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_REDIRECTS = 5


class RejectReason(str, Enum):
    """Why a URL was refused."""

    MALFORMED_URL = "malformed_url"
    NON_HTTPS_SCHEME = "non_https_scheme"
    BLOCKED_HOST = "blocked_host"
    BLOCKED_LITERAL_IP = "blocked_literal_ip"
    DNS_REBINDING_DETECTED = "dns_rebinding_detected"
    UNRESOLVABLE_DOMAIN = "unresolvable_domain"
    RESOLUTION_FAILED = "resolution_failed"


class URLValidationError(ValueError):
    """Base exception for refused URLs."""

    reason: RejectReason = RejectReason.MALFORMED_URL

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class MalformedURLError(URLValidationError):
    reason = RejectReason.MALFORMED_URL


class InsecureSchemeError(URLValidationError):
    reason = RejectReason.NON_HTTPS_SCHEME


class BlockedHostError(URLValidationError):
    reason = RejectReason.BLOCKED_HOST


class BlockedAddressError(URLValidationError):
    reason = RejectReason.BLOCKED_LITERAL_IP


class DNSRebindingError(URLValidationError):
    reason = RejectReason.DNS_REBINDING_DETECTED


class UnresolvableDomainError(URLValidationError):
    reason = RejectReason.UNRESOLVABLE_DOMAIN


class DomainResolutionError(URLValidationError):
    reason = RejectReason.RESOLUTION_FAILED


class DownloadError(Exception):
    """Raised when a validated remote resource cannot be fetched."""

    pass


def _strip_brackets(host: str) -> str:
    if host.startswith("[") and host.endswith("]"):
        return host[1:-1]
    return host


def _unwrap_mapped(host: str) -> Optional[str]:
    """
    Peel ``::ffff:`` prefixes off a host literal.

    Returns None when the input is still wrapped after MAX_UNWRAP_DEPTH
    iterations.
    """
    current = host
    for _ in range(MAX_UNWRAP_DEPTH):
        if not current.lower().startswith(MAPPED_PREFIX):
            return current
        current = current[len(MAPPED_PREFIX) :]
    if current.lower().startswith(MAPPED_PREFIX):
        return None
    return current


def _parse_ip(host: str) -> Optional[ipaddress._BaseAddress]:
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        return None


def is_ip_literal(host: str) -> bool:
    """Return True if ``host`` is an IPv4 or IPv6 literal (brackets allowed)."""
    return _parse_ip(_strip_brackets(host).split("%", 1)[0]) is not None


def is_blocked_ip(address: str) -> bool:
    """
    Check an address (or hostname) against the blocked ranges.

    Handles IPv4-mapped IPv6 both in textual ``::ffff:a.b.c.d`` form and
    in its canonical hex form.
    """
    host = _strip_brackets(address.strip()).lower()
    # drop an IPv6 zone id
    host = host.split("%", 1)[0]

    if host in BLOCKED_HOSTNAMES:
        return True

    ip = _parse_ip(host)
    if ip is None:
        # not a valid literal as a whole, e.g. nested "::ffff:" wrappers
        unwrapped = _unwrap_mapped(host)
        if unwrapped is None:
            return True
        if unwrapped in BLOCKED_HOSTNAMES:
            return True
        ip = _parse_ip(unwrapped)
        if ip is None:
            return False

    for _ in range(MAX_UNWRAP_DEPTH):
        mapped = getattr(ip, "ipv4_mapped", None)
        if mapped is None:
            break
        ip = mapped

    if ip == METADATA_IP:
        return True
    return any(ip.version == net.version and ip in net for net in BLOCKED_NETWORKS)


async def _resolve(hostname: str) -> Iterable[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


async def validate_url(url: str) -> str:
    """
    Validate a URL for security before fetching it (SSRF prevention).

    Domain names are resolved here so that a name which points at an internal
    address is refused, even if it is not on any static list.

    Args:
        url: URL to validate

    Returns:
        str: The URL, unchanged

    Raises:
        URLValidationError: A subclass naming the rejection reason
    """
    try:
        parsed = urlsplit(url)
        hostname = parsed.hostname
    except ValueError as e:
        raise MalformedURLError(f"Invalid URL: {url}", url=url) from e

    if not parsed.scheme:
        raise MalformedURLError(f"Invalid URL: {url}", url=url)

    if parsed.scheme.lower() != "https":
        raise InsecureSchemeError(
            "Only HTTPS URLs are allowed for security reasons", url=url
        )

    if not parsed.netloc or not hostname:
        raise MalformedURLError(f"Invalid URL: {url}", url=url)

    host = _strip_brackets(hostname.lower())

    if host.startswith(MAPPED_PREFIX):
        if is_blocked_ip(host):
            logger.warning(f"SECURITY: Blocked IPv4-mapped IPv6 address: {hostname}")
            raise BlockedAddressError(
                "Access to internal/private IP addresses is not allowed", url=url
            )

    if host in BLOCKED_HOSTNAMES:
        logger.warning(f"SECURITY: Blocked access to prohibited hostname: {hostname}")
        raise BlockedHostError(
            "Access to cloud metadata endpoints is not allowed", url=url
        )

    if is_ip_literal(host):
        if is_blocked_ip(host):
            logger.warning(f"SECURITY: Blocked access to private/internal IP: {hostname}")
            raise BlockedAddressError(
                "Access to internal/private IP addresses is not allowed", url=url
            )
        return url

    try:
        logger.debug(f"Resolving DNS for hostname: {host}")
        addresses = await _resolve(host)
    except socket.gaierror as e:
        if e.errno in (socket.EAI_NONAME, getattr(socket, "EAI_NODATA", None)):
            logger.warning(f"SECURITY: Domain {host} could not be resolved")
            raise UnresolvableDomainError(
                f"Domain {host} could not be resolved", url=url
            ) from e
        logger.warning(f"SECURITY: DNS lookup failed for {host}: {e}")
        raise DomainResolutionError(
            f"Failed to validate domain {host}: {e}", url=url
        ) from e
    except OSError as e:
        logger.warning(f"SECURITY: DNS lookup failed for {host}: {e}")
        raise DomainResolutionError(
            f"Failed to validate domain {host}: {e}", url=url
        ) from e

    if not addresses:
        raise UnresolvableDomainError(f"Domain {host} could not be resolved", url=url)

    for address in addresses:
        if is_blocked_ip(address):
            logger.warning(
                f"SECURITY: DNS resolution of {host} points to blocked IP: {address}"
            )
            raise DNSRebindingError(
                f"Domain {host} resolves to internal/private IP address", url=url
            )

    logger.debug(f"DNS validation passed for {host} (resolved to {addresses[0]})")
    return url


async def fetch_remote_bytes(
    url: str,
    session: Optional[aiohttp.ClientSession] = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    max_redirects: int = DEFAULT_MAX_REDIRECTS,
) -> Tuple[bytes, Optional[str]]:
    """
    Fetch a caller-supplied URL after validating it and every redirect hop.

    Args:
        url: Remote resource URL
        session: Optional session to reuse; a private one is created otherwise
        max_bytes: Maximum accepted body size
        timeout_seconds: Total timeout for the whole fetch
        max_redirects: Maximum number of redirects to follow

    Returns:
        Tuple of (body bytes, content type or None)

    Raises:
        URLValidationError: If the URL or any redirect target is refused
        DownloadError: For HTTP errors, redirect loops and oversized bodies
    """
    owns_session = session is None
    if session is None:
        session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=timeout_seconds)
        )

    try:
        current = url
        for _ in range(max_redirects + 1):
            await validate_url(current)
            logger.debug(f"Fetching remote resource: {current}")
            try:
                async with session.get(
                    current,
                    allow_redirects=False,
                    timeout=aiohttp.ClientTimeout(total=timeout_seconds),
                ) as response:
                    if response.status in (301, 302, 303, 307, 308):
                        location = response.headers.get("Location")
                        if not location:
                            raise DownloadError(
                                f"HTTP {response.status} redirect without Location"
                            )
                        current = urljoin(current, location)
                        continue

                    if response.status != 200:
                        raise DownloadError(f"HTTP {response.status} fetching {current}")

                    declared = response.content_length
                    if declared is not None and declared > max_bytes:
                        raise DownloadError(
                            f"Remote resource too large: {declared} bytes"
                        )

                    body = bytearray()
                    async for chunk in response.content.iter_chunked(64 * 1024):
                        body.extend(chunk)
                        if len(body) > max_bytes:
                            raise DownloadError(
                                f"Remote resource exceeds {max_bytes} bytes"
                            )
                    return bytes(body), response.headers.get("Content-Type")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise DownloadError(f"Network error fetching {current}: {e}") from e

        raise DownloadError(f"Too many redirects (>{max_redirects}) fetching {url}")
    finally:
        if owns_session:
            await session.close()
