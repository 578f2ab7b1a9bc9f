"""
Recon Phantom - Data Model
==========================

Records exchanged between the probing layer, the orchestrator and the
inference engines (services, OS, firewall, scripts).

Features:
- Observations are immutable once produced
- Every confidence/accuracy value passes through clamp_confidence()
- to_dict() on each record for the external reporting layer

Version: 1.0.0
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union


def clamp_confidence(value: float) -> float:
    """Clamp a confidence or accuracy score to [0, 100]."""
    return max(0, min(100, value))


# =============================================================================
# ENUMERATIONS
# =============================================================================

class PortStatus(str, Enum):
    """Coarse verdict for a single port."""
    OPEN = "open"
    CLOSED = "closed"
    FILTERED = "filtered"
    TIMEOUT = "timeout"


class ScanType(str, Enum):
    """Requested scan technique. Only CONNECT is executed as-is."""
    CONNECT = "connect"
    SYN = "syn"
    ACK = "ack"
    UDP = "udp"

    @classmethod
    def parse(cls, value: Union[str, "ScanType"]) -> "ScanType":
        """Accept both 'syn' and the long 'tcp-syn' spelling."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        if normalized.startswith("tcp-"):
            normalized = normalized[4:]
        return cls(normalized)


class Severity(str, Enum):
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ScriptState(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    FILTERED = "filtered"


class ScriptCategory(str, Enum):
    AUTH = "auth"
    DISCOVERY = "discovery"
    SAFE = "safe"
    INTRUSIVE = "intrusive"
    VULN = "vuln"
    DEFAULT = "default"
    MALWARE = "malware"


class FirewallType(str, Enum):
    STATEFUL = "stateful"
    PACKET_FILTER = "packet-filter"
    PROXY = "proxy"
    IDS_IPS = "ids-ips"
    WAF = "waf"
    UNKNOWN = "unknown"


class TimingPattern(str, Enum):
    CONSISTENT = "consistent"
    VARIABLE = "variable"
    RATE_LIMITED = "rate-limited"
    RANDOM = "random"


# =============================================================================
# PROBING
# =============================================================================

@dataclass(frozen=True)
class ProbeTarget:
    """One probe attempt against host:port."""
    host: str
    port: int
    protocol: str = "tcp"


@dataclass(frozen=True)
class ProbeVerdict:
    """
    Result of the probe strategy layer.

    Attributes:
        is_open: Something answered on the port
        is_filtered: Silence or a near-timeout error
        banner: Any text captured while probing
        timed_out: The probe failed unexpectedly and is reported as timeout
        elapsed_ms: Wall time spent probing
    """
    is_open: bool
    is_filtered: bool
    banner: Optional[str] = None
    timed_out: bool = False
    elapsed_ms: float = 0.0

    @property
    def status(self) -> PortStatus:
        if self.is_open:
            return PortStatus.OPEN
        if self.timed_out:
            return PortStatus.TIMEOUT
        if self.is_filtered:
            return PortStatus.FILTERED
        return PortStatus.CLOSED


@dataclass(frozen=True)
class PortObservation:
    """
    One observation per (scan run, port).

    Attributes:
        port: Scanned port
        protocol: Transport protocol label
        status: open / closed / filtered / timeout
        latency_ms: Time from dispatch to verdict
        banner: Text captured from the probe, if any
        service: Well-known service name for the port, if any
        observed_at: Creation timestamp
    """
    port: int
    status: PortStatus
    latency_ms: float = 0.0
    protocol: str = "tcp"
    banner: Optional[str] = None
    service: Optional[str] = None
    observed_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", PortStatus(self.status))

    @property
    def is_open(self) -> bool:
        return self.status == PortStatus.OPEN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "port": self.port,
            "protocol": self.protocol,
            "status": self.status.value,
            "banner": self.banner,
            "service": self.service,
            "latency_ms": self.latency_ms,
            "observed_at": self.observed_at.isoformat(),
        }


@dataclass(frozen=True)
class DiscoveryObservation:
    """One observation per (discovery run, host)."""
    ip: str
    method: str
    latency_ms: float
    is_alive: bool
    hostname: Optional[str] = None
    ttl: Optional[int] = None
    vendor: Optional[str] = None
    observed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ip": self.ip,
            "hostname": self.hostname,
            "vendor": self.vendor,
            "method": self.method,
            "latency_ms": self.latency_ms,
            "ttl": self.ttl,
            "is_alive": self.is_alive,
            "observed_at": self.observed_at.isoformat(),
        }


@dataclass(frozen=True)
class OpenPort:
    """Open port handed to the inference engines."""
    port: int
    protocol: str = "tcp"
    service: Optional[str] = None
    banner: Optional[str] = None


PortLike = Union[OpenPort, PortObservation, int, Dict[str, Any]]


def coerce_open_port(item: PortLike) -> OpenPort:
    """Normalize the accepted open-port shapes into an OpenPort."""
    if isinstance(item, OpenPort):
        return item
    if isinstance(item, PortObservation):
        return OpenPort(port=item.port, protocol=item.protocol,
                        service=item.service, banner=item.banner)
    if isinstance(item, bool):
        raise TypeError("Port must be an integer, got bool")
    if isinstance(item, int):
        return OpenPort(port=item)
    if isinstance(item, dict):
        return OpenPort(
            port=int(item["port"]),
            protocol=item.get("protocol", "tcp"),
            service=item.get("service"),
            banner=item.get("banner"),
        )
    raise TypeError(f"Unsupported open port value: {item!r}")


# =============================================================================
# SERVICES
# =============================================================================

@dataclass(frozen=True)
class ServiceSignature:
    """
    Static registry entry describing a recognizable service.

    match_patterns are case-insensitive regular expressions; the first
    capture group of a matching pattern is read as the version.
    """
    name: str
    match_patterns: Tuple[str, ...]
    applicable_ports: Tuple[int, ...]
    base_confidence: int
    category: str
    secure_by_default: bool = False
    known_versions: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ServiceVulnerability:
    id: str
    severity: Severity
    title: str
    description: str
    cvss: Optional[float] = None
    cve: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "cvss": self.cvss,
            "cve": self.cve,
        }


@dataclass
class DetectedService:
    """
    Service identified on an open port.

    Attributes:
        port: Port number
        protocol: Transport protocol label
        name: Signature name or generic well-known name
        confidence: Match score in [0, 100]
        category: Signature category (web, database, ...)
        secure: Signature is secure by default or port is a TLS/SSH port
        product: Product name when a banner pattern matched
        version: First capture group of the matching pattern
        extra_info: Distribution hint taken from the banner
        os_type: Operating system hint taken from the banner
        banner: Banner the match was computed from
        cpe: CPE 2.3 identifiers
        vulnerabilities: Annotations looked up by service name
        methods: Evidence used for the detection
    """
    port: int
    protocol: str
    name: str
    confidence: float
    category: str
    secure: bool
    product: Optional[str] = None
    version: Optional[str] = None
    extra_info: Optional[str] = None
    os_type: Optional[str] = None
    banner: Optional[str] = None
    cpe: List[str] = field(default_factory=list)
    vulnerabilities: List[ServiceVulnerability] = field(default_factory=list)
    methods: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.confidence = clamp_confidence(self.confidence)

    @property
    def extracted_info(self) -> Dict[str, str]:
        info = {
            "product": self.product,
            "version": self.version,
            "extra_info": self.extra_info,
            "os_type": self.os_type,
        }
        return {key: value for key, value in info.items() if value}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "port": self.port,
            "protocol": self.protocol,
            "name": self.name,
            "confidence": self.confidence,
            "category": self.category,
            "secure": self.secure,
            "extracted_info": self.extracted_info,
            "banner": self.banner,
            "cpe": list(self.cpe),
            "vulnerabilities": [v.to_dict() for v in self.vulnerabilities],
            "methods": list(self.methods),
        }


# =============================================================================
# OS FINGERPRINTS
# =============================================================================

@dataclass
class OSFingerprintCandidate:
    """
    Candidate operating system.

    Candidates sharing (name, family) are merged: the highest confidence
    wins and contributing methods are unioned.
    """
    name: str
    family: str
    accuracy: float
    device_type: str
    confidence: float
    generation: Optional[str] = None
    contributing_methods: Set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.accuracy = clamp_confidence(self.accuracy)
        self.confidence = clamp_confidence(self.confidence)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.name, self.family)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "family": self.family,
            "generation": self.generation,
            "accuracy": self.accuracy,
            "device_type": self.device_type,
            "confidence": self.confidence,
            "methods": sorted(self.contributing_methods),
        }


# =============================================================================
# FIREWALL ANALYSIS
# =============================================================================

@dataclass
class TimingAnalysis:
    min_ms: float = 0.0
    max_ms: float = 0.0
    avg_ms: float = 0.0
    stddev_ms: float = 0.0
    samples: List[float] = field(default_factory=list)
    outliers: List[float] = field(default_factory=list)
    pattern: TimingPattern = TimingPattern.RANDOM

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_ms": self.min_ms,
            "max_ms": self.max_ms,
            "avg_ms": self.avg_ms,
            "stddev_ms": self.stddev_ms,
            "samples": list(self.samples),
            "outliers": list(self.outliers),
            "pattern": self.pattern.value,
        }


@dataclass
class FirewallAnalysis:
    """
    Firewall verdict for one analysis call.

    detected is always derived from confidence (> 30).
    """
    confidence: float
    indicators: List[str] = field(default_factory=list)
    avg_response_time_ms: float = 0.0
    response_variance_ms: float = 0.0
    rate_limit_detected: bool = False
    filtered_port_count: int = 0
    recommendations: List[str] = field(default_factory=list)
    type: Optional[FirewallType] = None
    rate_limit_threshold_ms: Optional[float] = None
    fingerprint: Optional[str] = None
    bypass_techniques: List[str] = field(default_factory=list)
    timing: Optional[TimingAnalysis] = None

    def __post_init__(self) -> None:
        self.confidence = clamp_confidence(self.confidence)

    @property
    def detected(self) -> bool:
        return self.confidence > 30

    @property
    def dropped_packets(self) -> int:
        return self.filtered_port_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detected": self.detected,
            "type": self.type.value if self.type else None,
            "confidence": self.confidence,
            "indicators": list(self.indicators),
            "avg_response_time_ms": self.avg_response_time_ms,
            "response_variance_ms": self.response_variance_ms,
            "rate_limit_detected": self.rate_limit_detected,
            "rate_limit_threshold_ms": self.rate_limit_threshold_ms,
            "filtered_port_count": self.filtered_port_count,
            "fingerprint": self.fingerprint,
            "bypass_techniques": list(self.bypass_techniques),
            "recommendations": list(self.recommendations),
            "timing": self.timing.to_dict() if self.timing else None,
        }


# =============================================================================
# SCRIPTS
# =============================================================================

@dataclass(frozen=True)
class ScriptFinding:
    title: str
    description: str
    severity: Severity
    remediation: Optional[str] = None
    references: Tuple[str, ...] = ()
    cvss: Optional[float] = None
    cve: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value,
            "remediation": self.remediation,
            "references": list(self.references),
            "cvss": self.cvss,
            "cve": self.cve,
        }


@dataclass
class ScriptResult:
    """One result per executed (or rejected) script work item."""
    script_id: str
    host: str
    output: str
    severity: Severity
    state: ScriptState
    duration_ms: float = 0.0
    port: Optional[int] = None
    name: str = ""
    category: str = ""
    findings: List[ScriptFinding] = field(default_factory=list)
    observed_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        self.severity = Severity(self.severity)
        self.state = ScriptState(self.state)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "script_id": self.script_id,
            "name": self.name,
            "category": self.category,
            "host": self.host,
            "port": self.port,
            "output": self.output,
            "severity": self.severity.value,
            "state": self.state.value,
            "duration_ms": self.duration_ms,
            "findings": [f.to_dict() for f in self.findings],
            "observed_at": self.observed_at.isoformat(),
        }


PortRule = Callable[[int, Optional[str]], bool]
HostRule = Callable[[str], bool]
ScriptAction = Callable[..., Awaitable[ScriptResult]]


@dataclass(frozen=True)
class SecurityScript:
    """
    Catalog entry for a named check.

    Attributes:
        id: Unique script identifier
        name: Display name
        category: ScriptCategory value
        action: Coroutine function (context, host, port, service) -> ScriptResult
        description: One-line summary
        port_rule: Applicability predicate per (port, service)
        host_rule: Applicability predicate per host
    """
    id: str
    name: str
    category: ScriptCategory
    action: ScriptAction
    description: str = ""
    port_rule: Optional[PortRule] = None
    host_rule: Optional[HostRule] = None
    author: str = "Recon Phantom Team"
    license: str = "MIT"
    dependencies: Tuple[str, ...] = ()

    def applies_to_port(self, port: int, service: Optional[str] = None) -> bool:
        # No rule at all means every port; host-level scripts never match a port
        if self.port_rule is None:
            return self.host_rule is None
        return bool(self.port_rule(port, service))

    def applies_to_host(self, host: str) -> bool:
        return bool(self.host_rule and self.host_rule(host))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "description": self.description,
            "author": self.author,
            "license": self.license,
            "dependencies": list(self.dependencies),
            "scope": "host" if self.host_rule else "port",
        }
