"""
Recon Phantom - Probe Strategy Layer
====================================

Chooses one of three probing techniques from the port number and turns
the outcome into a coarse open / closed / filtered verdict.

Techniques:
- REQUEST:    conventional web ports, HEAD then GET
- CONNECTION: persistent-protocol ports (shells, databases, mail, RDP)
- LOAD:       everything else, verdict inferred from error timing

Heuristics kept on purpose:
- an opaque error (TLS failure, reset, protocol mismatch) means "open",
  since something on the port answered
- a load probe error under half the budget means "open", under 80% of
  the budget means "filtered", otherwise "closed"

Version: 1.0.0
"""

import logging
import time
from enum import Enum
from typing import Callable, Optional, Union

from .exceptions import (
    ProbeError,
    ProbeFiltered,
    ProbeOpaqueError,
    ProbeRefused,
    ProbeTimeout,
    UnsupportedScanTypeDegraded,
)
from .models import ProbeVerdict, ScanType
from .service_detection import BannerExtractor
from .transport import DEFAULT_USER_AGENT, build_url

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security')

LogCallback = Callable[[str, str], None]


# =============================================================================
# PORT CLASSES
# =============================================================================

WEB_PORTS = (80, 443, 8080, 8443, 8000, 3000, 5000, 9000, 8888, 9090)
PERSISTENT_PORTS = (21, 22, 23, 25, 110, 143, 993, 995, 1433, 3306, 3389, 5432, 6379, 27017)
# Load probes use https for these
LOAD_TLS_PORTS = (443, 8443, 993, 995)
# Connection probes wrap these in TLS before reading a greeting
CONNECT_TLS_PORTS = (993, 995)

LOAD_OPEN_RATIO = 0.5
LOAD_FILTERED_RATIO = 0.8


class ProbeTechnique(str, Enum):
    REQUEST = "request"
    CONNECTION = "connection"
    LOAD = "load"


def select_technique(port: int) -> ProbeTechnique:
    if port in WEB_PORTS:
        return ProbeTechnique.REQUEST
    if port in PERSISTENT_PORTS:
        return ProbeTechnique.CONNECTION
    return ProbeTechnique.LOAD


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class ProbeStrategy:
    """
    Executes the probe technique matching a port.

    probe() never raises: unexpected failures come back as a timeout
    verdict ({is_open: False, is_filtered: True, timed_out: True}).
    """

    def __init__(self, transport, user_agent: str = DEFAULT_USER_AGENT,
                 read_banners: bool = True, banner_timeout_ms: float = 1500) -> None:
        self.transport = transport
        self.user_agent = user_agent
        self.read_banners = read_banners
        self.banner_timeout_ms = banner_timeout_ms

    def resolve_scan_type(self, scan_type: Union[str, ScanType],
                          on_log: Optional[LogCallback] = None) -> ScanType:
        """
        Map the requested scan type onto an executable one.

        Anything other than CONNECT degrades to CONNECT; the degradation
        is logged on the security logger and forwarded to on_log.
        """
        requested = ScanType.parse(scan_type)
        if requested == ScanType.CONNECT:
            return requested

        notice = UnsupportedScanTypeDegraded(requested.value, ScanType.CONNECT.value)
        security_logger.warning(str(notice))
        if on_log:
            on_log(str(notice), "warning")
        return ScanType.CONNECT

    async def probe(self, target: str, port: int, timeout_ms: float,
                    scan_type: Union[str, ScanType] = ScanType.CONNECT,
                    on_log: Optional[LogCallback] = None) -> ProbeVerdict:
        """
        Probe target:port.

        Args:
            target: Host name or address
            port: Port number
            timeout_ms: Budget for the whole probe
            scan_type: Requested technique, degraded to connect when needed
            on_log: Receives degradation notices

        Returns:
            ProbeVerdict
        """
        start = time.perf_counter()
        try:
            self.resolve_scan_type(scan_type, on_log)
            technique = select_technique(port)
            if technique == ProbeTechnique.REQUEST:
                verdict = await self._request_probe(target, port, timeout_ms)
            elif technique == ProbeTechnique.CONNECTION:
                verdict = await self._connection_probe(target, port, timeout_ms)
            else:
                verdict = await self._load_probe(target, port, timeout_ms)
        except Exception as e:
            logger.debug(f"Probe {target}:{port} failed unexpectedly: {e!r}")
            return ProbeVerdict(is_open=False, is_filtered=True, timed_out=True,
                                elapsed_ms=_elapsed_ms(start))

        return ProbeVerdict(
            is_open=verdict.is_open,
            is_filtered=verdict.is_filtered,
            banner=verdict.banner,
            elapsed_ms=_elapsed_ms(start),
        )

    # =========================================================================
    # TECHNIQUES
    # =========================================================================

    async def _request_probe(self, target: str, port: int, timeout_ms: float) -> ProbeVerdict:
        """HEAD first, GET when HEAD is inconclusive; timeout means filtered."""
        url = build_url(target, port)
        headers = {"User-Agent": self.user_agent, "Accept": "*/*", "Connection": "close"}
        start = time.perf_counter()

        for method in ("HEAD", "GET"):
            remaining = timeout_ms - _elapsed_ms(start)
            if remaining <= 0:
                return ProbeVerdict(is_open=False, is_filtered=True)
            try:
                response = await self.transport.request(method, url, remaining, headers=headers,
                                                        read_body=False)
            except ProbeTimeout:
                return ProbeVerdict(is_open=False, is_filtered=True)
            except ProbeOpaqueError:
                return ProbeVerdict(is_open=True, is_filtered=False,
                                    banner="HTTP service (CORS restricted)")
            except (ProbeRefused, ProbeFiltered) as e:
                logger.debug(f"{method} {url} inconclusive: {e}")
                continue

            banner = (response.header("Server") or response.header("X-Powered-By")
                      or "HTTP service detected")
            return ProbeVerdict(is_open=True, is_filtered=False, banner=banner)

        return ProbeVerdict(is_open=False, is_filtered=False)

    async def _connection_probe(self, target: str, port: int, timeout_ms: float) -> ProbeVerdict:
        """Established connection means open, refusal closed, silence filtered."""
        try:
            result = await self.transport.connect(
                target, port, timeout_ms,
                read_banner=self.read_banners,
                banner_timeout_ms=min(self.banner_timeout_ms, timeout_ms),
                tls=port in CONNECT_TLS_PORTS,
            )
        except ProbeRefused:
            return ProbeVerdict(is_open=False, is_filtered=False)
        except (ProbeTimeout, ProbeFiltered):
            return ProbeVerdict(is_open=False, is_filtered=True)
        except ProbeOpaqueError:
            return ProbeVerdict(is_open=True, is_filtered=False, banner="TCP service detected")

        banner = BannerExtractor.clean_banner(result.banner) if result.banner else ""
        return ProbeVerdict(is_open=True, is_filtered=False,
                            banner=banner or "TCP service (connection established)")

    async def _load_probe(self, target: str, port: int, timeout_ms: float) -> ProbeVerdict:
        """Resource load; the verdict comes from how fast an error came back."""
        scheme = "https" if port in LOAD_TLS_PORTS else "http"
        url = build_url(target, port, f"/favicon.ico?probe={int(time.time() * 1000)}", scheme=scheme)
        start = time.perf_counter()

        try:
            await self.transport.load(url, timeout_ms)
        except ProbeTimeout:
            return ProbeVerdict(is_open=False, is_filtered=False)
        except ProbeRefused:
            return ProbeVerdict(is_open=False, is_filtered=False)
        except ProbeError:
            latency = _elapsed_ms(start)
            if latency < timeout_ms * LOAD_OPEN_RATIO:
                return ProbeVerdict(is_open=True, is_filtered=False,
                                    banner=f"Service detected ({latency:.0f}ms response)")
            if latency < timeout_ms * LOAD_FILTERED_RATIO:
                return ProbeVerdict(is_open=False, is_filtered=True, banner="Possibly filtered")
            return ProbeVerdict(is_open=False, is_filtered=False)

        latency = _elapsed_ms(start)
        return ProbeVerdict(is_open=True, is_filtered=False,
                            banner=f"HTTP service detected ({latency:.0f}ms)")
