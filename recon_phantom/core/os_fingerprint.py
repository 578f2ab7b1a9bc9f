"""
OS Fingerprint Module for Recon Phantom
=======================================

Operating system inference from application-layer evidence.

EVIDENCE SOURCES:
-----------------
1. TTL table           - TTL of the first discovery observation
2. HTTP header rules   - banners captured on open web ports
3. Service hints       - well-known service names (RDP, SMB, ...)
4. Active HTTP probing - Server / X-Powered-By / X-AspNet-Version headers

Candidates sharing (name, family) are merged: highest confidence wins and
contributing methods are unioned. The ranking is sorted by descending
confidence (ties keep table order) and truncated to five entries.

Version: 1.0.0
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .exceptions import ProbeError
from .models import DiscoveryObservation, OSFingerprintCandidate, PortLike, coerce_open_port
from .transport import DEFAULT_USER_AGENT, build_url

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 5
HTTP_FINGERPRINT_PORTS = (80, 443, 8080, 8443)

METHOD_TTL = "TTL"
METHOD_HTTP_HEADERS = "HTTP-Headers"
METHOD_SERVICE = "Service-Detection"
METHOD_SERVER_HEADER = "HTTP-Server-Header"
METHOD_ASPNET_HEADER = "HTTP-ASP.NET-Header"


# =============================================================================
# RULE TABLES
# =============================================================================

@dataclass(frozen=True)
class OSProfile:
    """Static OS description emitted by a rule."""
    name: str
    family: str
    accuracy: int
    device_type: str
    confidence: int
    generation: Optional[str] = None

    def candidate(self, method: str) -> OSFingerprintCandidate:
        return OSFingerprintCandidate(
            name=self.name,
            family=self.family,
            accuracy=self.accuracy,
            device_type=self.device_type,
            confidence=self.confidence,
            generation=self.generation,
            contributing_methods={method},
        )


TTL_PATTERNS: Dict[int, Tuple[OSProfile, ...]] = {
    64: (
        OSProfile("Linux 5.x/6.x", "Linux", 85, "server", 80, "5.x+"),
        OSProfile("Linux 4.x", "Linux", 80, "server", 75, "4.x"),
        OSProfile("Android", "Linux", 70, "workstation", 65, "Mobile"),
    ),
    128: (
        OSProfile("Windows 10/11", "Windows", 90, "workstation", 85, "10+"),
        OSProfile("Windows Server 2019/2022", "Windows", 85, "server", 80, "Server"),
        OSProfile("Windows 8/8.1", "Windows", 75, "workstation", 70, "8.x"),
    ),
    255: (
        OSProfile("Cisco IOS", "Cisco", 90, "router", 85),
        OSProfile("FreeBSD 13.x/14.x", "BSD", 80, "server", 75, "13.x+"),
        OSProfile("Solaris/OpenSolaris", "Solaris", 70, "server", 65),
    ),
    32: (
        OSProfile("Windows 95/98/ME", "Windows", 95, "workstation", 90, "9x"),
    ),
    60: (
        OSProfile("macOS/Mac OS X", "Darwin", 85, "workstation", 80),
        OSProfile("iOS/iPadOS", "Darwin", 75, "workstation", 70, "Mobile"),
    ),
}

# Evaluated in order, first match per banner wins
HTTP_PATTERNS: Tuple[Tuple[str, OSProfile], ...] = (
    (r"IIS/10\.0", OSProfile("Windows Server 2016/2019/2022", "Windows", 90, "server", 85, "Server")),
    (r"Apache/2\.[45]", OSProfile("Linux (Apache)", "Linux", 75, "server", 70)),
    (r"nginx/1\.", OSProfile("Linux (nginx)", "Linux", 75, "server", 70)),
    (r"Microsoft-HTTPAPI", OSProfile("Windows Server", "Windows", 85, "server", 80, "Server")),
    (r"cloudflare", OSProfile("CloudFlare CDN", "Linux", 60, "server", 55)),
)

SERVICE_PATTERNS: Dict[str, Tuple[OSProfile, ...]] = {
    "SSH": (OSProfile("Linux/Unix SSH", "Linux", 70, "server", 65),),
    "RDP": (OSProfile("Windows RDP", "Windows", 95, "server", 90),),
    "SMB": (OSProfile("Windows SMB", "Windows", 90, "server", 85),),
    "SNMP": (OSProfile("Network Device", "Embedded", 80, "router", 75),),
}

APACHE_DISTROS = (
    ("Ubuntu", "Ubuntu Linux"),
    ("CentOS", "CentOS Linux"),
    ("Red Hat", "Red Hat Enterprise Linux"),
)


def merge_candidates(candidates: Iterable[OSFingerprintCandidate]) -> List[OSFingerprintCandidate]:
    """Merge by (name, family): max confidence/accuracy, union of methods."""
    merged: Dict[Tuple[str, str], OSFingerprintCandidate] = {}
    for candidate in candidates:
        existing = merged.get(candidate.key)
        if existing is None:
            merged[candidate.key] = OSFingerprintCandidate(
                name=candidate.name,
                family=candidate.family,
                accuracy=candidate.accuracy,
                device_type=candidate.device_type,
                confidence=candidate.confidence,
                generation=candidate.generation,
                contributing_methods=set(candidate.contributing_methods),
            )
            continue
        existing.contributing_methods |= candidate.contributing_methods
        existing.accuracy = max(existing.accuracy, candidate.accuracy)
        if candidate.confidence > existing.confidence:
            existing.confidence = candidate.confidence
            existing.device_type = candidate.device_type
            existing.generation = candidate.generation or existing.generation
    return list(merged.values())


def rank_candidates(candidates: Iterable[OSFingerprintCandidate],
                    limit: int = MAX_CANDIDATES) -> List[OSFingerprintCandidate]:
    ranked = sorted(merge_candidates(candidates), key=lambda c: c.confidence, reverse=True)
    return ranked[:limit]


def _first_ttl(discovery_data: Optional[Sequence[Any]]) -> Optional[int]:
    if not discovery_data:
        return None
    first = discovery_data[0]
    if isinstance(first, DiscoveryObservation):
        return first.ttl
    if isinstance(first, dict):
        return first.get("ttl")
    return getattr(first, "ttl", None)


# =============================================================================
# ENGINE
# =============================================================================

class OSFingerprinter:
    """
    Combines the evidence sources into ranked candidates.

    Args:
        transport: Probe transport used for active HTTP fingerprinting
        timeout_ms: Budget per active HEAD request
        ttl_patterns / http_patterns / service_patterns: rule tables
    """

    def __init__(self, transport=None, timeout_ms: float = 5000,
                 user_agent: str = DEFAULT_USER_AGENT,
                 ttl_patterns: Optional[Dict[int, Sequence[OSProfile]]] = None,
                 http_patterns: Optional[Sequence[Tuple[str, OSProfile]]] = None,
                 service_patterns: Optional[Dict[str, Sequence[OSProfile]]] = None) -> None:
        self.transport = transport
        self.timeout_ms = timeout_ms
        self.user_agent = user_agent
        self.ttl_patterns = TTL_PATTERNS if ttl_patterns is None else ttl_patterns
        self.http_patterns = HTTP_PATTERNS if http_patterns is None else http_patterns
        self.service_patterns = SERVICE_PATTERNS if service_patterns is None else service_patterns

    async def fingerprint(self, target: str, open_ports: Iterable[PortLike],
                          discovery_data: Optional[Sequence[Any]] = None,
                          active: bool = True) -> List[OSFingerprintCandidate]:
        """
        Rank OS candidates for a target.

        Args:
            target: Host name or address
            open_ports: Open ports, optionally with service name and banner
            discovery_data: Discovery observations; only the first TTL is used
            active: Send HEAD requests to open web ports

        Returns:
            At most five candidates, sorted by descending confidence
        """
        ports = [coerce_open_port(p) for p in open_ports]
        candidates: List[OSFingerprintCandidate] = []

        candidates.extend(self.from_ttl(_first_ttl(discovery_data)))
        for port_info in ports:
            if port_info.port in HTTP_FINGERPRINT_PORTS and port_info.banner:
                candidates.extend(self.from_banner(port_info.banner))
        for port_info in ports:
            candidates.extend(self.from_service(port_info.service))

        if active and self.transport is not None:
            for port_info in ports:
                if port_info.port in HTTP_FINGERPRINT_PORTS:
                    candidates.extend(await self.probe_http(target, port_info.port))

        ranked = rank_candidates(candidates)
        logger.debug(f"OS fingerprint for {target}: {[c.name for c in ranked]}")
        return ranked

    def from_ttl(self, ttl: Optional[int]) -> List[OSFingerprintCandidate]:
        if not ttl:
            return []
        return [profile.candidate(METHOD_TTL) for profile in self.ttl_patterns.get(ttl, ())]

    def from_banner(self, banner: str) -> List[OSFingerprintCandidate]:
        for pattern, profile in self.http_patterns:
            if re.search(pattern, banner, re.IGNORECASE):
                return [profile.candidate(METHOD_HTTP_HEADERS)]
        return []

    def from_service(self, service: Optional[str]) -> List[OSFingerprintCandidate]:
        if not service:
            return []
        return [profile.candidate(METHOD_SERVICE)
                for profile in self.service_patterns.get(service.upper(), ())]

    async def probe_http(self, target: str, port: int) -> List[OSFingerprintCandidate]:
        """Read OS clues from the headers of a HEAD response."""
        url = build_url(target, port)
        try:
            response = await self.transport.request(
                "HEAD", url, self.timeout_ms,
                headers={"User-Agent": f"{self.user_agent} OS-Fingerprint"}, read_body=False,
            )
        except ProbeError as e:
            logger.debug(f"HTTP fingerprinting failed on {url}: {e}")
            return []

        server = response.header("Server") or ""
        powered_by = response.header("X-Powered-By") or ""
        asp_net = response.header("X-AspNet-Version") or ""
        candidates = []

        if "IIS" in server:
            version_match = re.search(r"IIS/(\d+\.\d+)", server)
            version = version_match.group(1) if version_match else None
            name, confidence = "Windows Server", 85
            if version == "10.0":
                name, confidence = "Windows Server 2016/2019/2022", 90
            elif version == "8.5":
                name, confidence = "Windows Server 2012 R2", 95
            candidates.append(OSProfile(name, "Windows", confidence, "server", confidence, "Server")
                              .candidate(METHOD_SERVER_HEADER))

        if "Apache" in server:
            hint_match = re.search(r"\(([^)]+)\)", server)
            hint = hint_match.group(1) if hint_match else ""
            name, confidence = "Linux (Apache)", 75
            for marker, distro in APACHE_DISTROS:
                if marker in hint:
                    name, confidence = distro, 85
                    break
            candidates.append(OSProfile(name, "Linux", confidence, "server", confidence)
                              .candidate(METHOD_SERVER_HEADER))

        if "nginx" in server:
            candidates.append(OSProfile("Linux (nginx)", "Linux", 75, "server", 70)
                              .candidate(METHOD_SERVER_HEADER))

        if asp_net or "ASP.NET" in powered_by:
            candidates.append(OSProfile("Windows Server (ASP.NET)", "Windows", 90, "server", 85, "Server")
                              .candidate(METHOD_ASPNET_HEADER))

        return candidates
