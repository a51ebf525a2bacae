"""IP address parsing and range matching.

Used by the throttle engine for IP whitelists and per-IP rule overrides, and by
the HTTP integration to pick the client address out of ``X-Forwarded-For``.

Range specifications accept three forms:

- a bare address: ``203.0.113.9`` (exact match)
- CIDR notation: ``192.168.0.0/24`` (host bits are tolerated)
- an inclusive dash range: ``10.0.0.1 - 10.0.0.10``

A specification that cannot be parsed never matches and never raises; it is
reported once through the module logger so a single bad entry in a whitelist
does not break evaluation of the others.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Literal

from reqthrottle.core.errors import InvalidIpFormatError, ValidationAppError

logger = logging.getLogger(__name__)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

ForwardedIpStrategy = Literal["none", "last", "first"]

_PRIVATE_IPV4_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
    ipaddress.IPv4Network("169.254.0.0/16"),
)

# IPv6 unique-local addresses in use start with 0xFD
_IPV6_UNIQUE_LOCAL_FIRST_OCTET = 0xFD


def _strip_port(text: str) -> str:
    """Remove a trailing ``:port`` from an address literal.

    The port is stripped when the text holds exactly one colon (``1.2.3.4:80``)
    or uses bracket notation followed by a port (``[::1]:8080``). Anything else
    (plain IPv6 with several colons) is returned unchanged.
    """

    last_colon = text.rfind(":")
    if last_colon == -1:
        return text

    single_colon = last_colon == text.find(":")
    bracket_end = text.find("]")
    bracketed_with_port = text.startswith("[") and bracket_end != -1 and bracket_end < last_colon

    if single_colon or bracketed_with_port:
        return text[:last_colon]
    return text


def parse_ip(text: str) -> IPAddress:
    """Parse an IP literal, tolerating a trailing port and IPv6 brackets.

    Args:
        text: Address as received from a socket, header or configuration.

    Returns:
        The parsed IPv4 or IPv6 address.

    Raises:
        InvalidIpFormatError: If the text is not a valid address.
    """

    if not isinstance(text, str):
        raise InvalidIpFormatError(
            code="invalid_ip_format",
            message="IP address must be a string",
            details={"value": repr(text)},
        )

    candidate = _strip_port(text.strip())
    if candidate.startswith("[") and candidate.endswith("]"):
        candidate = candidate[1:-1]

    try:
        return ipaddress.ip_address(candidate)
    except ValueError as exc:
        raise InvalidIpFormatError(
            code="invalid_ip_format",
            message=f"'{text}' is not a valid IP address",
            details={"value": text},
        ) from exc


def _coerce(address: str | IPAddress) -> IPAddress:
    if isinstance(address, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return address
    return parse_ip(address)


def is_private(address: str | IPAddress) -> bool:
    """Classify an address as private or link-local.

    IPv4 10/8, 172.16/12, 192.168/16 and 169.254/16 are private. IPv6
    addresses are private only when unique-local (first octet ``0xFD``).

    Raises:
        InvalidIpFormatError: If ``address`` is a string that does not parse.
    """

    ip = _coerce(address)
    if ip.version == 6:
        return ip.packed[0] == _IPV6_UNIQUE_LOCAL_FIRST_OCTET
    return any(ip in network for network in _PRIVATE_IPV4_NETWORKS)


@dataclass(frozen=True)
class IpAddressRange:
    """Inclusive range of addresses of one IP family."""

    begin: IPAddress
    end: IPAddress

    @classmethod
    def parse(cls, spec: str) -> "IpAddressRange":
        """Parse a bare address, CIDR block or ``low - high`` range.

        Raises:
            ValidationAppError: If the specification is malformed.
        """

        text = spec.strip()
        try:
            if "-" in text:
                low_text, _, high_text = text.partition("-")
                begin = parse_ip(low_text)
                end = parse_ip(high_text)
                if begin.version != end.version:
                    raise ValueError("range mixes IPv4 and IPv6 addresses")
                if begin > end:
                    raise ValueError("range start is greater than range end")
                return cls(begin=begin, end=end)

            if "/" in text:
                network = ipaddress.ip_network(text, strict=False)
                return cls(begin=network.network_address, end=network.broadcast_address)

            ip = parse_ip(text)
            return cls(begin=ip, end=ip)
        except (ValueError, ValidationAppError) as exc:
            raise ValidationAppError(
                code="invalid_ip_range",
                message=f"'{spec}' is not a valid IP range",
                details={"value": spec, "hint": str(exc)},
            ) from exc

    def contains(self, address: str | IPAddress) -> bool:
        ip = _coerce(address)
        if ip.version != self.begin.version:
            return False
        return self.begin <= ip <= self.end


@lru_cache(maxsize=4096)
def _cached_range(spec: str) -> IpAddressRange | None:
    # Invalid specs are cached as None so the warning is logged once per spec.
    try:
        return IpAddressRange.parse(spec)
    except ValidationAppError as exc:
        logger.warning(
            "ip_range.invalid",
            extra={"ip_range": spec, "reason": exc.details.get("hint") if exc.details else None},
        )
        return None


def range_contains(spec: str, address: str | IPAddress) -> bool:
    """Check whether ``address`` falls inside the range ``spec``.

    Unparseable specs and unparseable addresses never match.
    """

    ip_range = _cached_range(spec)
    if ip_range is None:
        return False
    try:
        return ip_range.contains(address)
    except InvalidIpFormatError:
        return False


def any_range_contains(specs: Iterable[str], address: str | IPAddress) -> tuple[bool, str | None]:
    """Find the first range specification containing ``address``.

    Args:
        specs: Range specifications, evaluated in iteration order.
        address: Address to test (string or parsed).

    Returns:
        ``(True, spec)`` for the first matching spec, ``(False, None)`` otherwise.
    """

    try:
        ip = _coerce(address)
    except InvalidIpFormatError:
        return False, None

    for spec in specs:
        if range_contains(spec, ip):
            return True, spec
    return False, None


def resolve_client_ip(
    remote_addr: str | None,
    forwarded_for: str | None,
    strategy: ForwardedIpStrategy = "last",
) -> str | None:
    """Pick the client address when running behind a reverse proxy.

    Private and unparseable entries in ``X-Forwarded-For`` are ignored. With
    ``strategy="last"`` the last public entry wins (cloud load balancers
    append the client address); with ``"first"`` the first one does (nginx
    ``proxy_add_x_forwarded_for``). ``"none"`` ignores the header.

    Args:
        remote_addr: Address of the directly connected peer.
        forwarded_for: Raw ``X-Forwarded-For`` header value, if any.
        strategy: Which public forwarded address to trust.

    Returns:
        The selected address, or ``remote_addr`` when no public forwarded
        address is available.
    """

    if strategy == "none" or not forwarded_for:
        return remote_addr

    public_ips: list[str] = []
    for entry in forwarded_for.split(","):
        candidate = entry.strip()
        if not candidate:
            continue
        try:
            if not is_private(candidate):
                public_ips.append(candidate)
        except InvalidIpFormatError:
            continue

    if not public_ips:
        return remote_addr
    return public_ips[-1] if strategy == "last" else public_ips[0]
