"""
Target Parser
=============

Classifies user input as a single address, an address range, a CIDR
block or a domain name, and expands ranges into concrete hosts.

parse_target() never performs I/O and never raises; require_target()
is the raising variant for callers that need control flow.
"""

import ipaddress
import re
from dataclasses import dataclass
from enum import Enum
from itertools import islice
from typing import Any, Dict, List, Optional

from .exceptions import InvalidTargetFormat

# Candidate host expansion is capped to bound resource use
MAX_HOSTS = 100

DOMAIN_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]{0,61}[a-zA-Z0-9](?:\.[a-zA-Z]{2,})+$")


class TargetType(str, Enum):
    SINGLE = "single"
    RANGE = "range"
    CIDR = "cidr"
    DOMAIN = "domain"


@dataclass(frozen=True)
class ParsedTarget:
    type: TargetType
    value: str

    @property
    def is_single_host(self) -> bool:
        return self.type in (TargetType.SINGLE, TargetType.DOMAIN)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "value": self.value}


def is_valid_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def is_ipv4(value: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(value), ipaddress.IPv4Address)
    except ValueError:
        return False


def is_valid_cidr(value: str) -> bool:
    if "/" not in value:
        return False
    address, _, prefix = value.partition("/")
    if not is_valid_ip(address) or not prefix.isdigit():
        return False
    try:
        ipaddress.ip_network(value, strict=False)
    except ValueError:
        return False
    return True


def is_valid_domain(value: str) -> bool:
    return len(value) <= 253 and DOMAIN_PATTERN.match(value) is not None


def parse_target(value: Optional[str]) -> Optional[ParsedTarget]:
    """
    Classify a target string.

    Args:
        value: Raw user input

    Returns:
        ParsedTarget, or None when the input is not a recognized format
    """
    if not value:
        return None
    text = value.strip()

    if is_valid_ip(text):
        return ParsedTarget(TargetType.SINGLE, text)

    if "-" in text:
        parts = text.split("-")
        if len(parts) == 2 and all(is_valid_ip(part.strip()) for part in parts):
            return ParsedTarget(TargetType.RANGE, text)

    if is_valid_cidr(text):
        return ParsedTarget(TargetType.CIDR, text)

    if is_valid_domain(text):
        return ParsedTarget(TargetType.DOMAIN, text)

    return None


def require_target(value: Optional[str]) -> ParsedTarget:
    """Same as parse_target() but raises InvalidTargetFormat."""
    parsed = parse_target(value)
    if parsed is None:
        raise InvalidTargetFormat(value or "")
    return parsed


def expand_targets(target: Any, max_hosts: int = MAX_HOSTS) -> List[str]:
    """
    Expand a target into concrete hosts.

    Ranges are inclusive; CIDR blocks yield usable host addresses only.
    The result is truncated to max_hosts.

    Raises:
        InvalidTargetFormat: Unparseable input or a reversed range
    """
    parsed = target if isinstance(target, ParsedTarget) else require_target(target)

    if parsed.type in (TargetType.SINGLE, TargetType.DOMAIN):
        return [parsed.value]

    if parsed.type == TargetType.RANGE:
        start_text, end_text = (part.strip() for part in parsed.value.split("-"))
        start = ipaddress.ip_address(start_text)
        end = ipaddress.ip_address(end_text)
        if start.version != end.version:
            raise InvalidTargetFormat(parsed.value, "mixed address families")
        if int(end) < int(start):
            raise InvalidTargetFormat(parsed.value, "range end precedes start")
        count = min(int(end) - int(start) + 1, max_hosts)
        return [str(start + offset) for offset in range(count)]

    network = ipaddress.ip_network(parsed.value, strict=False)
    hosts = network.hosts() if network.num_addresses > 2 else iter(network)
    return [str(host) for host in islice(hosts, max_hosts)]
