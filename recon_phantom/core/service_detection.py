"""
Service Detection Module for Recon Phantom

Signature-based identification of services on open ports.

Features:
- Static signature registry with port and banner scoring
- Version extraction from the best signature's capture groups
- Generic well-known port fallback
- CPE generation and vulnerability annotations
- Banner grabbing through the probe transport

Scoring: +30 when the port is one of the signature's ports, plus the
signature's base confidence when any of its patterns matches the banner.
Vulnerabilities are looked up by service name only; version ranges are
not evaluated, so annotations describe the product, not the build.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .exceptions import ProbeError
from .models import (
    DetectedService,
    OpenPort,
    PortLike,
    ServiceSignature,
    ServiceVulnerability,
    Severity,
    clamp_confidence,
    coerce_open_port,
)
from .transport import DEFAULT_USER_AGENT, build_url

logger = logging.getLogger(__name__)

PORT_MATCH_SCORE = 30
GENERIC_CONFIDENCE = 50

SECURE_PORTS = (22, 443, 993, 995, 8443)


# Comprehensive Service Signature Database
SERVICE_SIGNATURES: Tuple[ServiceSignature, ...] = (
    # Web Services
    ServiceSignature(
        name="Apache HTTP Server",
        match_patterns=(r"Apache/(\d+\.\d+\.\d+)", r"Apache"),
        applicable_ports=(80, 443, 8080, 8443),
        base_confidence=90,
        category="web",
        known_versions=("2.4.54", "2.4.52", "2.4.41"),
    ),
    ServiceSignature(
        name="nginx",
        match_patterns=(r"nginx/(\d+\.\d+\.\d+)", r"nginx"),
        applicable_ports=(80, 443, 8080, 8443),
        base_confidence=95,
        category="web",
        known_versions=("1.24.0", "1.22.1", "1.20.2"),
    ),
    ServiceSignature(
        name="Microsoft IIS",
        match_patterns=(r"Microsoft-IIS/(\d+\.\d+)", r"IIS"),
        applicable_ports=(80, 443, 8080),
        base_confidence=95,
        category="web",
        known_versions=("10.0", "8.5", "7.5"),
    ),
    ServiceSignature(
        name="Cloudflare",
        match_patterns=(r"cloudflare", r"cf-ray"),
        applicable_ports=(80, 443),
        base_confidence=85,
        category="web",
        secure_by_default=True,
        known_versions=("CDN",),
    ),

    # SSH Services
    ServiceSignature(
        name="OpenSSH",
        match_patterns=(r"SSH-2\.0-OpenSSH_(\d+\.\d+)", r"OpenSSH"),
        applicable_ports=(22, 2222),
        base_confidence=95,
        category="remote",
        secure_by_default=True,
        known_versions=("8.9p1", "8.4p1", "7.4"),
    ),
    ServiceSignature(
        name="Dropbear SSH",
        match_patterns=(r"SSH-2\.0-dropbear_(\d+\.\d+)", r"dropbear"),
        applicable_ports=(22,),
        base_confidence=90,
        category="remote",
        secure_by_default=True,
        known_versions=("2022.83", "2020.81"),
    ),

    # Database Services
    ServiceSignature(
        name="MySQL",
        match_patterns=(r"mysql_native_password", r"MySQL", r"MariaDB"),
        applicable_ports=(3306,),
        base_confidence=90,
        category="database",
        known_versions=("8.0.32", "5.7.41", "10.11.2"),
    ),
    ServiceSignature(
        name="PostgreSQL",
        match_patterns=(r"PostgreSQL", r"postgres"),
        applicable_ports=(5432,),
        base_confidence=90,
        category="database",
        known_versions=("15.2", "14.7", "13.10"),
    ),
    ServiceSignature(
        name="MongoDB",
        match_patterns=(r"MongoDB", r"mongo"),
        applicable_ports=(27017, 27018, 27019),
        base_confidence=85,
        category="database",
        known_versions=("6.0.4", "5.0.15", "4.4.18"),
    ),
    ServiceSignature(
        name="Redis",
        match_patterns=(r"Redis", r"PONG", r"redis_version"),
        applicable_ports=(6379,),
        base_confidence=90,
        category="database",
        known_versions=("7.0.9", "6.2.11", "5.0.14"),
    ),

    # Mail Services
    ServiceSignature(
        name="Postfix SMTP",
        match_patterns=(r"Postfix", r"ESMTP Postfix"),
        applicable_ports=(25, 587),
        base_confidence=90,
        category="mail",
        known_versions=("3.6.4", "3.5.18"),
    ),
    ServiceSignature(
        name="Microsoft Exchange",
        match_patterns=(r"Microsoft ESMTP MAIL", r"Exchange"),
        applicable_ports=(25, 587, 993, 995),
        base_confidence=85,
        category="mail",
        known_versions=("2019", "2016", "2013"),
    ),

    # File Services
    ServiceSignature(
        name="vsftpd",
        match_patterns=(r"vsftpd (\d+\.\d+\.\d+)", r"vsftpd"),
        applicable_ports=(21,),
        base_confidence=90,
        category="file",
        known_versions=("3.0.5", "3.0.3"),
    ),
    ServiceSignature(
        name="ProFTPD",
        match_patterns=(r"ProFTPD (\d+\.\d+\.\d+)", r"ProFTPD"),
        applicable_ports=(21,),
        base_confidence=90,
        category="file",
        known_versions=("1.3.8", "1.3.7"),
    ),
    ServiceSignature(
        name="Samba SMB",
        match_patterns=(r"Samba", r"SMB"),
        applicable_ports=(139, 445),
        base_confidence=85,
        category="file",
        known_versions=("4.17.5", "4.15.13"),
    ),

    # Remote Access
    ServiceSignature(
        name="Microsoft RDP",
        match_patterns=(r"RDP", r"Terminal Services", r"Remote Desktop"),
        applicable_ports=(3389,),
        base_confidence=90,
        category="remote",
        known_versions=("10.0", "6.3", "6.1"),
    ),
    ServiceSignature(
        name="VNC Server",
        match_patterns=(r"RFB", r"VNC", r"TightVNC", r"RealVNC"),
        applicable_ports=(5900, 5901, 5902),
        base_confidence=85,
        category="remote",
        known_versions=("4.1.3", "1.12.0"),
    ),

    # Network Services
    ServiceSignature(
        name="BIND DNS",
        match_patterns=(r"BIND", r"named"),
        applicable_ports=(53,),
        base_confidence=80,
        category="network",
        known_versions=("9.18.12", "9.16.37"),
    ),
    ServiceSignature(
        name="ISC DHCP",
        match_patterns=(r"ISC DHCP", r"dhcpd"),
        applicable_ports=(67, 68),
        base_confidence=75,
        category="network",
        known_versions=("4.4.3", "4.3.6"),
    ),
)


VULNERABILITY_DATABASE: Dict[str, Tuple[ServiceVulnerability, ...]] = {
    "Apache HTTP Server": (
        ServiceVulnerability(
            id="apache-version-disclosure",
            severity=Severity.LOW,
            title="Server Version Disclosure",
            description="Apache server version is disclosed in HTTP headers",
            cvss=2.6,
        ),
    ),
    "nginx": (
        ServiceVulnerability(
            id="nginx-version-disclosure",
            severity=Severity.LOW,
            title="Server Version Disclosure",
            description="nginx server version is disclosed in HTTP headers",
            cvss=2.6,
        ),
    ),
    "OpenSSH": (
        ServiceVulnerability(
            id="ssh-version-disclosure",
            severity=Severity.INFO,
            title="SSH Version Disclosure",
            description="SSH server version is disclosed during handshake",
            cvss=0.0,
        ),
    ),
}


CPE_PRODUCTS: Dict[str, str] = {
    "Apache HTTP Server": "apache:http_server",
    "nginx": "nginx:nginx",
    "Microsoft IIS": "microsoft:internet_information_server",
    "OpenSSH": "openbsd:openssh",
    "MySQL": "oracle:mysql",
    "PostgreSQL": "postgresql:postgresql",
}


COMMON_PORT_NAMES: Dict[int, str] = {
    21: "FTP",
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    80: "HTTP",
    110: "POP3",
    139: "NetBIOS-SSN",
    143: "IMAP",
    161: "SNMP",
    443: "HTTPS",
    445: "SMB",
    993: "IMAPS",
    995: "POP3S",
    1433: "MSSQL",
    3306: "MySQL",
    3389: "RDP",
    5432: "PostgreSQL",
    5900: "VNC",
    6379: "Redis",
    8080: "HTTP-Proxy",
    8443: "HTTPS-Alt",
    27017: "MongoDB",
}

# Later entries win when several markers appear in one banner
DISTRO_MARKERS = ("Ubuntu", "CentOS", "Red Hat", "Debian", "Windows")

LINUX_MARKERS = ("Ubuntu", "CentOS", "Red Hat", "Debian")
WINDOWS_MARKERS = ("Windows", "Microsoft", "IIS")

BANNER_WEB_PORTS = (80, 443, 8080, 8443, 8000, 3000, 5000, 9000)
BANNER_TEXT_PORTS = (21, 25, 110, 143, 993, 995)
BANNER_HEADERS = ("Server", "X-Powered-By", "X-AspNet-Version", "X-Generator", "X-Framework")
HTML_SIGNATURES = ("WordPress", "Drupal", "Joomla", "Django", "Laravel", "React", "Angular", r"Vue\.js")


def generic_service_name(port: int) -> str:
    return COMMON_PORT_NAMES.get(port, f"Service-{port}")


def is_secure_port(port: int) -> bool:
    return port in SECURE_PORTS


def generate_cpe(service_name: str, version: Optional[str]) -> List[str]:
    product = CPE_PRODUCTS.get(service_name)
    if product and version:
        return [f"cpe:2.3:a:{product}:{version}:*:*:*:*:*:*:*"]
    return []


def infer_os_from_banner(service_name: str, banner: Optional[str]) -> Optional[str]:
    if not banner:
        return None
    if any(marker in banner for marker in LINUX_MARKERS):
        return "Linux"
    if any(marker in banner for marker in WINDOWS_MARKERS):
        return "Windows"
    if "Microsoft" in service_name or "IIS" in service_name:
        return "Windows"
    if "Apache" in service_name and "Unix" in banner:
        return "Linux"
    return None


# =============================================================================
# BANNER HELPERS
# =============================================================================

class BannerExtractor:
    """Banner normalization and version extraction."""

    @staticmethod
    def clean_banner(banner: Union[bytes, str, None]) -> str:
        """
        Decode and strip control characters from a banner.

        Args:
            banner: Raw banner bytes or text

        Returns:
            Cleaned banner string
        """
        if not banner:
            return ""
        if isinstance(banner, bytes):
            banner = banner.decode("utf-8", errors="ignore")
        cleaned = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', banner)
        return cleaned.strip()

    @staticmethod
    def extract_version(banner: Optional[str], signature: ServiceSignature) -> Tuple[Optional[str], Optional[str]]:
        """
        Re-apply a signature's patterns to a banner.

        Returns:
            Tuple of (product, version); version is the first capture group
        """
        if not banner:
            return None, None
        for pattern in signature.match_patterns:
            match = re.search(pattern, banner, re.IGNORECASE)
            if match:
                version = match.group(1) if match.groups() else None
                return signature.name, version
        return None, None

    @staticmethod
    def extract_extra_info(banner: Optional[str]) -> Optional[str]:
        if not banner:
            return None
        found = None
        for marker in DISTRO_MARKERS:
            if marker in banner:
                found = marker
        return found


# =============================================================================
# SIGNATURE MATCHER
# =============================================================================

@dataclass(frozen=True)
class SignatureMatch:
    signature: ServiceSignature
    score: int


class SignatureMatcher:
    """
    Scores registry signatures against a port and an optional banner.

    The registry and the vulnerability table are injected, the module
    level tables are only defaults.
    """

    def __init__(self, signatures: Sequence[ServiceSignature] = SERVICE_SIGNATURES,
                 vulnerabilities: Optional[Mapping[str, Sequence[ServiceVulnerability]]] = None) -> None:
        self.signatures = tuple(signatures)
        self.vulnerabilities = VULNERABILITY_DATABASE if vulnerabilities is None else vulnerabilities

    def rank(self, port: int, banner: Optional[str] = None) -> List[SignatureMatch]:
        """Score every signature; zero scores are dropped, ties keep registry order."""
        matches = []
        for signature in self.signatures:
            score = 0
            if port in signature.applicable_ports:
                score += PORT_MATCH_SCORE
            if banner and any(re.search(p, banner, re.IGNORECASE) for p in signature.match_patterns):
                score += signature.base_confidence
            if score > 0:
                matches.append(SignatureMatch(signature, score))
        return sorted(matches, key=lambda m: m.score, reverse=True)

    def match(self, port: int, banner: Optional[str] = None, protocol: str = "tcp") -> List[DetectedService]:
        """
        Ranked detections for a port.

        Returns:
            DetectedService list sorted by descending confidence, or a
            single generic entry when no signature scores
        """
        ranked = self.rank(port, banner)
        if not ranked:
            return [self.generic(port, banner, protocol)]
        return [self._build(m, port, banner, protocol) for m in ranked]

    def identify(self, port: int, banner: Optional[str] = None, protocol: str = "tcp") -> DetectedService:
        return self.match(port, banner, protocol)[0]

    def generic(self, port: int, banner: Optional[str] = None, protocol: str = "tcp") -> DetectedService:
        return DetectedService(
            port=port,
            protocol=protocol,
            name=generic_service_name(port),
            confidence=GENERIC_CONFIDENCE,
            category="other",
            secure=is_secure_port(port),
            banner=banner,
            methods=["port-based"],
        )

    def _build(self, match: SignatureMatch, port: int, banner: Optional[str], protocol: str) -> DetectedService:
        signature = match.signature
        product, version = BannerExtractor.extract_version(banner, signature)
        methods = ["signature-matching"]
        if product:
            methods.insert(0, "banner-analysis")
        return DetectedService(
            port=port,
            protocol=protocol,
            name=signature.name,
            confidence=clamp_confidence(match.score),
            category=signature.category,
            secure=signature.secure_by_default or is_secure_port(port),
            product=product,
            version=version,
            extra_info=BannerExtractor.extract_extra_info(banner),
            os_type=infer_os_from_banner(signature.name, banner),
            banner=banner,
            cpe=generate_cpe(signature.name, version),
            vulnerabilities=list(self.vulnerabilities.get(signature.name, ())),
            methods=methods,
        )


# =============================================================================
# SERVICE DETECTOR
# =============================================================================

class ServiceDetector:
    """
    Banner grabbing plus signature matching for a list of open ports.

    Args:
        transport: Probe transport used for banner grabbing
        matcher: Signature matcher (default registry when omitted)
        timeout_ms: Timeout per banner grab
    """

    def __init__(self, transport, matcher: Optional[SignatureMatcher] = None,
                 timeout_ms: float = 5000, user_agent: str = DEFAULT_USER_AGENT) -> None:
        self.transport = transport
        self.matcher = matcher or SignatureMatcher()
        self.timeout_ms = timeout_ms
        self.user_agent = user_agent

    async def detect_services(self, target: str, open_ports: Iterable[PortLike]) -> List[DetectedService]:
        """
        Detect one service per open port.

        A port whose analysis fails still produces a port-based entry.
        """
        services = []
        for item in open_ports:
            port_info = coerce_open_port(item)
            try:
                services.append(await self.analyze(target, port_info))
            except Exception as e:
                logger.warning(f"Service detection failed on {target}:{port_info.port}: {e}")
                services.append(self.matcher.generic(port_info.port, port_info.banner, port_info.protocol))
        return services

    async def analyze(self, target: str, port_info: OpenPort) -> DetectedService:
        banner = port_info.banner or await self.grab_banner(target, port_info.port)
        return self.matcher.identify(port_info.port, banner, port_info.protocol)

    async def grab_banner(self, target: str, port: int) -> Optional[str]:
        if port in BANNER_WEB_PORTS:
            return await self._grab_http_banner(target, port)
        if port == 22:
            return await self._grab_text_banner(target, port, "SSH service detected")
        if port in BANNER_TEXT_PORTS:
            return await self._grab_text_banner(target, port, f"Service on port {port}")
        return None

    async def _grab_http_banner(self, target: str, port: int) -> Optional[str]:
        url = build_url(target, port)
        headers = {"User-Agent": f"{self.user_agent} Service-Detection"}
        try:
            response = await self.transport.request("HEAD", url, self.timeout_ms, headers=headers)
        except ProbeError as e:
            logger.debug(f"HTTP banner grab failed on {url}: {e}")
            return None

        lines = [f"{name}: {response.header(name)}" for name in BANNER_HEADERS if response.header(name)]

        try:
            page = await self.transport.request("GET", url, min(self.timeout_ms, 3000), headers=headers)
        except ProbeError as e:
            logger.debug(f"HTTP content fetch failed on {url}: {e}")
        else:
            for pattern in HTML_SIGNATURES:
                if re.search(pattern, page.text, re.IGNORECASE):
                    lines.append(f"Content-Signature: {pattern}")

        return "\n".join(lines) if lines else "HTTP service detected"

    async def _grab_text_banner(self, target: str, port: int, fallback: str) -> str:
        try:
            result = await self.transport.connect(
                target, port, self.timeout_ms, read_banner=True,
                banner_timeout_ms=min(self.timeout_ms, 3000), tls=port in (993, 995),
            )
        except ProbeError as e:
            logger.debug(f"Banner grab failed on {target}:{port}: {e}")
            return fallback
        return BannerExtractor.clean_banner(result.banner) or fallback
