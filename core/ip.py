"""
core/ip.py -- IP literal parsing for whitelist input.

An entry may carry a /prefix-length suffix ("172.18.0.0/16"). The suffix is
kept in the stored value, since nginx `allow` accepts CIDR, so the whole
value is validated: the address, and the prefix length against the address
family. Netmask suffixes ("/255.255.0.0") are rejected; nginx does not read
them.
"""

import ipaddress

from core.errors import InvalidIP


def validate_ip(ip: str) -> str:
    """Return ip stripped of surrounding whitespace, or raise InvalidIP."""
    value = ip.strip()
    address, slash, prefix = value.partition("/")
    try:
        if slash:
            if not prefix.isdigit():
                raise ValueError(f"bad prefix length {prefix!r}")
            ipaddress.ip_network(value, strict=False)
        else:
            ipaddress.ip_address(address)
    except ValueError:
        raise InvalidIP(ip) from None
    return value


def split_ip_list(raw: str) -> list[str]:
    """Split a comma separated --ip value, dropping empty items."""
    return [part.strip() for part in raw.split(",") if part.strip()]


def dedupe(ips: list[str]) -> list[str]:
    """Remove duplicates, keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for ip in ips:
        if ip not in seen:
            seen.add(ip)
            result.append(ip)
    return result
