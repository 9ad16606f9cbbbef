"""
auth/network.py -- Trusted-network classifier for the two-factor exemption.

Requests from configured internal ranges skip the TOTP prompt. Rules:
  - IPv4-mapped IPv6 (::ffff:a.b.c.d) is normalized to plain IPv4 first.
  - Loopback (127.0.0.0/8, ::1) is always trusted.
  - Only IPv4 addresses are compared against ranges; every other IPv6
    address is untrusted.
  - Ranges are inclusive and compared as 32-bit big-endian integers.
  - Range entries that do not parse as two IPv4 addresses are skipped.
"""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Iterable

from core.config import IpRange

logger = logging.getLogger("identitygate.auth.network")

_IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def _normalize(address: _IPAddress) -> _IPAddress:
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def _parse_ranges(ranges: Iterable[IpRange]) -> list[tuple[int, int]]:
    parsed: list[tuple[int, int]] = []
    for entry in ranges:
        try:
            start = _normalize(ipaddress.ip_address(entry.start.strip()))
            end = _normalize(ipaddress.ip_address(entry.end.strip()))
        except ValueError:
            logger.debug("Skipping malformed trusted IP range %r-%r", entry.start, entry.end)
            continue
        if start.version == 4 and end.version == 4:
            parsed.append((int(start), int(end)))
        else:
            logger.debug("Skipping non-IPv4 trusted IP range %s-%s", start, end)
    return parsed


def is_trusted_origin(remote_address: str | None, ranges: Iterable[IpRange]) -> bool:
    """Return True if remote_address is loopback or inside a configured IPv4 range."""
    if not remote_address:
        return False
    try:
        address = _normalize(ipaddress.ip_address(remote_address))
    except ValueError:
        return False

    if address.is_loopback:
        return True
    if address.version != 4:
        return False

    value = int(address)
    return any(start <= value <= end for start, end in _parse_ranges(ranges))
