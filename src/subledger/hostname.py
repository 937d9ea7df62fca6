"""
Hostname normalization module.

Canonicalizes raw hostnames before they enter the domain store. Normalization
never fails: values that do not look like a hostname are only trimmed and
lower-cased, and callers can use is_valid_hostname to flag them.
"""

import re

import idna


MAX_HOSTNAME_LENGTH = 253

# Dot-separated LDH labels of 1-63 chars, no leading/trailing hyphen, optional root dot.
FQDN_PATTERN = re.compile(
    r'^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?'
    r'(\.[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?)*\.?$'
)


def normalize_host(raw: str) -> str:
    """
    Convert a raw hostname to canonical form (trimmed, lower-case).

    Args:
        raw: Hostname as produced by a discovery source

    Returns:
        The canonical hostname, or "" for empty input
    """
    return raw.strip().lower()


def is_valid_hostname(host: str) -> bool:
    """
    Check a normalized hostname against the FQDN shape rules.

    Internationalized names are checked through their IDNA (punycode) form.

    Args:
        host: A hostname, ideally already passed through normalize_host

    Returns:
        True if the hostname has a plausible FQDN shape
    """
    if not host or len(host) > MAX_HOSTNAME_LENGTH:
        return False

    if any(ord(c) > 127 for c in host):
        try:
            host = idna.encode(host.rstrip("."), uts46=True).decode("ascii")
        except idna.IDNAError:
            return False
        if len(host) > MAX_HOSTNAME_LENGTH:
            return False

    return FQDN_PATTERN.match(host) is not None


def normalize_hosts(raw_hosts) -> list[str]:
    """Normalize an iterable of hostnames, dropping empties and duplicates in order."""
    seen: set[str] = set()
    result = []
    for raw in raw_hosts:
        host = normalize_host(raw)
        if host and host not in seen:
            seen.add(host)
            result.append(host)
    return result
