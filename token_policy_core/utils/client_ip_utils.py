"""
Client IP resolution for the request path.

Behind a reverse proxy the socket peer is the proxy, so the forwarded headers
carry the real caller. Headers are only trusted when configured to be.
"""

import ipaddress
from typing import Mapping, Optional

from ..exceptions import ErrorCode, ValidationError

FORWARDED_FOR_HEADER = "x-forwarded-for"
REAL_IP_HEADER = "x-real-ip"


def normalize_ip(value: str) -> str:
    """
    Return the canonical text form of an IPv4/IPv6 address.

    IPv4-mapped IPv6 addresses collapse to their IPv4 form so the same caller
    never occupies two IP slots.

    Raises:
        ValidationError: If the value is not an IP address
    """
    try:
        address = ipaddress.ip_address(value.strip())
    except (ValueError, AttributeError) as e:
        raise ValidationError(
            f"Invalid source IP: {value}",
            field="source_ip",
            error_code=ErrorCode.INVALID_FORMAT,
            cause=e,
            value=str(value),
        ) from e

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    return str(address)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name and value and value.strip():
            return value.strip()
    return None


def _from_headers(headers: Mapping[str, str]) -> Optional[str]:
    forwarded = _header(headers, FORWARDED_FOR_HEADER)
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return _header(headers, REAL_IP_HEADER)


def extract_client_ip(
    headers: Optional[Mapping[str, str]],
    peer_ip: Optional[str],
    trust_proxy_headers: bool = False,
) -> Optional[str]:
    """
    Resolve the caller's IP address.

    With trusted proxy headers: first X-Forwarded-For entry, then X-Real-IP,
    then the peer address. Otherwise the peer address wins and the headers are
    only consulted when it is missing.

    Returns:
        The raw (not yet normalized) address, or None if nothing is known
    """
    headers = headers or {}
    peer = peer_ip.strip() if peer_ip and peer_ip.strip() else None

    if trust_proxy_headers:
        return _from_headers(headers) or peer
    return peer or _from_headers(headers)
