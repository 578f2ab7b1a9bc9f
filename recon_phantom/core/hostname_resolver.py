"""
Recon Phantom - Hostname Resolver
=================================

Name resolution over DNS-over-HTTPS JSON APIs, so lookups go through
the same application-layer surface as every other probe.

Features:
- Google, Cloudflare and Quad9 resolvers, first answering server wins
- A / AAAA / CNAME / MX / TXT / PTR records
- Reverse lookups through PTR queries
- System resolver fallback when every DoH server fails

Version: 1.0.0
"""

import asyncio
import ipaddress
import logging
import re
import socket
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlencode

from .exceptions import ProbeError

logger = logging.getLogger(__name__)

DNS_SERVERS = (
    "https://dns.google/resolve",
    "https://cloudflare-dns.com/dns-query",
    "https://dns.quad9.net:5053/dns-query",
)

RECORD_TYPES = {1: "A", 28: "AAAA", 5: "CNAME", 15: "MX", 16: "TXT", 12: "PTR"}

HOSTNAME_PATTERN = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


def clean_hostname(value: str) -> str:
    """Strip scheme, path and port from user input."""
    text = value.strip().lower()
    text = re.sub(r"^https?://", "", text)
    text = re.sub(r"/.*$", "", text)
    return re.sub(r":\d+$", "", text)


def is_valid_hostname(hostname: str) -> bool:
    return len(hostname) <= 253 and HOSTNAME_PATTERN.match(hostname) is not None


@dataclass
class DNSRecord:
    hostname: str
    value: str
    record_type: str
    ttl: Optional[int] = None
    response_time_ms: float = 0.0
    priority: Optional[int] = None
    observed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hostname": self.hostname,
            "value": self.value,
            "record_type": self.record_type,
            "ttl": self.ttl,
            "priority": self.priority,
            "response_time_ms": self.response_time_ms,
        }


@dataclass
class ResolverResult:
    hostname: str
    records: List[DNSRecord] = field(default_factory=list)
    error: Optional[str] = None
    total_time_ms: float = 0.0
    methods: List[str] = field(default_factory=list)

    @property
    def addresses(self) -> List[str]:
        return [r.value for r in self.records if r.record_type in ("A", "AAAA")]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hostname": self.hostname,
            "records": [r.to_dict() for r in self.records],
            "error": self.error,
            "total_time_ms": self.total_time_ms,
            "methods": list(self.methods),
        }


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class HostnameResolver:
    """
    DNS-over-HTTPS resolver.

    Usage:
        resolver = HostnameResolver(transport)
        result = await resolver.resolve("example.com")
        name = await resolver.reverse_lookup("8.8.8.8")
    """

    def __init__(self, transport, servers: Sequence[str] = DNS_SERVERS,
                 timeout_ms: float = 10000, system_fallback: bool = True) -> None:
        self.transport = transport
        self.servers = tuple(servers)
        self.timeout_ms = timeout_ms
        self.system_fallback = system_fallback

    async def query(self, hostname: str, record_type: str = "A") -> List[DNSRecord]:
        """
        Query the DoH servers in order.

        Returns:
            Records from the first server that returned any, else []
        """
        for server in self.servers:
            start = time.perf_counter()
            url = f"{server}?{urlencode({'name': hostname, 'type': record_type})}"
            try:
                response = await self.transport.request(
                    "GET", url, self.timeout_ms, headers={"Accept": "application/dns-json"},
                )
                if not response.ok:
                    continue
                data = response.json()
            except (ProbeError, ValueError) as e:
                logger.debug(f"DoH server {server} failed for {hostname}: {e}")
                continue

            records = self._parse_answers(hostname, data, _elapsed_ms(start))
            if records:
                return records
        return []

    async def resolve(self, value: str) -> ResolverResult:
        """Resolve A and AAAA records for a hostname."""
        start = time.perf_counter()
        hostname = clean_hostname(value)
        if not hostname or not is_valid_hostname(hostname):
            return ResolverResult(hostname=hostname or value, error="Invalid hostname format",
                                  total_time_ms=_elapsed_ms(start))

        result = ResolverResult(hostname=hostname, methods=["DNS-over-HTTPS"])
        result.records.extend(await self.query(hostname, "A"))
        result.records.extend(await self.query(hostname, "AAAA"))

        if not result.records and self.system_fallback:
            result.methods.append("System Resolver")
            result.records.extend(await self._system_resolve(hostname))

        if not result.records:
            result.error = (f"Unable to resolve hostname: {hostname}. "
                            "The hostname may not exist or may not be reachable.")
        result.total_time_ms = _elapsed_ms(start)
        return result

    async def resolve_batch(self, hostnames: Sequence[str]) -> List[ResolverResult]:
        return list(await asyncio.gather(*(self.resolve(h) for h in hostnames)))

    async def reverse_lookup(self, ip: str) -> Optional[str]:
        """PTR lookup; returns the host name without the trailing dot."""
        try:
            pointer = ipaddress.ip_address(ip).reverse_pointer
        except ValueError:
            return None

        for record in await self.query(pointer, "PTR"):
            if record.record_type == "PTR":
                return record.value.rstrip(".")

        if not self.system_fallback:
            return None
        loop = asyncio.get_running_loop()
        try:
            name, _, _ = await loop.run_in_executor(None, socket.gethostbyaddr, ip)
        except OSError:
            return None
        return name

    # -------------------------------------------------------------------------

    @staticmethod
    def _parse_answers(hostname: str, data: Dict[str, Any], response_time_ms: float) -> List[DNSRecord]:
        records = []
        for answer in data.get("Answer") or []:
            record_type = RECORD_TYPES.get(answer.get("type"))
            if record_type is None:
                continue
            value = str(answer.get("data", ""))
            priority = None
            if record_type == "MX":
                head, _, rest = value.partition(" ")
                if head.isdigit() and rest:
                    priority, value = int(head), rest
            records.append(DNSRecord(
                hostname=hostname,
                value=value,
                record_type=record_type,
                ttl=answer.get("TTL"),
                response_time_ms=response_time_ms,
                priority=priority,
            ))
        return records

    @staticmethod
    async def _system_resolve(hostname: str) -> List[DNSRecord]:
        start = time.perf_counter()
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
        except OSError as e:
            logger.debug(f"System resolver failed for {hostname}: {e}")
            return []

        records = []
        seen = set()
        for family, _, _, _, sockaddr in infos:
            address = sockaddr[0]
            if address in seen:
                continue
            seen.add(address)
            records.append(DNSRecord(
                hostname=hostname,
                value=address,
                record_type="AAAA" if family == socket.AF_INET6 else "A",
                response_time_ms=_elapsed_ms(start),
            ))
        return records
