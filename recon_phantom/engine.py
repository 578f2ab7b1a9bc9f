"""
Recon Phantom Engine
====================

Single entry point wiring the reconnaissance components together and
exposing the operation set used by callers (CLI, UI, reporting).

Usage:
    engine = ReconEngine()
    summary = asyncio.run(engine.scan_ports("example.test", start_port=1, end_port=1024))
    services = asyncio.run(engine.detect_services("example.test", summary.open_ports))

Version: 1.0.0
"""

import logging
from typing import Any, Callable, Iterable, List, Optional, Sequence, Set, Union

from .core.firewall_detection import FirewallDetector, ProgressCallback as FirewallProgressCallback
from .core.hostname_resolver import DNS_SERVERS, HostnameResolver, ResolverResult
from .core.models import (
    DetectedService,
    DiscoveryObservation,
    FirewallAnalysis,
    OSFingerprintCandidate,
    PortLike,
    ScanType,
    ScriptCategory,
    ScriptResult,
    SecurityScript,
)
from .core.os_fingerprint import OSFingerprinter
from .core.presets import TimingTemplate, get_timing_template
from .core.probe_strategy import ProbeStrategy
from .core.scan_engine import (
    DEFAULT_BATCH_DELAY_MS,
    DEFAULT_CONCURRENCY,
    CancellationToken,
    LogCallback,
    ProgressCallback,
    ResultCallback,
    ScanOrchestrator,
    ScanSummary,
)
from .core.script_engine import (
    DEFAULT_SCRIPT_CONCURRENCY,
    DEFAULT_SCRIPT_TIMEOUT_MS,
    ScriptEngine,
    ScriptProgressCallback,
    ScriptResultCallback,
)
from .core.scripts import ScriptContext
from .core.service_detection import ServiceDetector
from .core.target_parser import MAX_HOSTS, ParsedTarget, parse_target
from .core.transport import BROWSER_USER_AGENT, DEFAULT_USER_AGENT, ProbeTransport
from .security.rate_limiter import AsyncTokenBucket, enforce_rate_limit

logger = logging.getLogger(__name__)

DEFAULT_SCAN_TIMEOUT_MS = 3000


class ReconEngine:
    """
    Facade over the orchestrator, matchers and analyzers.

    Every component shares one ProbeTransport; cancellation tokens handed
    out by scans are tracked so stop_scan() reaches all of them.
    """

    def __init__(self, transport: Optional[ProbeTransport] = None,
                 resolver: Optional[HostnameResolver] = None,
                 timeout_ms: float = DEFAULT_SCAN_TIMEOUT_MS,
                 concurrency: int = DEFAULT_CONCURRENCY,
                 batch_delay_ms: float = DEFAULT_BATCH_DELAY_MS,
                 retries: int = 0,
                 timing: Optional[str] = None,
                 rate_limit: Optional[float] = None,
                 max_hosts: int = MAX_HOSTS,
                 user_agent: str = DEFAULT_USER_AGENT,
                 browser_user_agent: str = BROWSER_USER_AGENT,
                 service_timeout_ms: float = 5000,
                 banner_timeout_ms: float = 1500,
                 read_banners: bool = True,
                 discovery_concurrency: int = DEFAULT_CONCURRENCY,
                 script_concurrency: int = DEFAULT_SCRIPT_CONCURRENCY,
                 script_timeout_ms: Optional[float] = DEFAULT_SCRIPT_TIMEOUT_MS,
                 firewall_options: Optional[dict] = None) -> None:
        self.transport = transport or ProbeTransport(user_agent=user_agent)
        self.resolver = resolver or HostnameResolver(self.transport)
        self.timeout_ms = timeout_ms
        self.concurrency = concurrency
        self.batch_delay_ms = batch_delay_ms
        self.retries = retries
        self.timing = get_timing_template(timing) if timing else None
        self.max_hosts = max_hosts
        self.discovery_concurrency = discovery_concurrency

        rate = enforce_rate_limit(rate_limit)
        self.rate_limiter = AsyncTokenBucket(rate) if rate else None

        self.strategy = ProbeStrategy(self.transport, user_agent=user_agent,
                                      read_banners=read_banners, banner_timeout_ms=banner_timeout_ms)
        self.orchestrator = self._build_orchestrator(batch_delay_ms, retries)
        self.service_detector = ServiceDetector(self.transport, timeout_ms=service_timeout_ms,
                                                user_agent=user_agent)
        self.os_fingerprinter = OSFingerprinter(self.transport, timeout_ms=service_timeout_ms,
                                                user_agent=user_agent)
        self.firewall_detector = FirewallDetector(self.transport, user_agent=user_agent,
                                                  browser_user_agent=browser_user_agent,
                                                  **(firewall_options or {}))
        self.script_engine = ScriptEngine(
            ScriptContext(self.transport, self.resolver, user_agent=user_agent),
            concurrency=script_concurrency,
            script_timeout_ms=script_timeout_ms,
        )
        self._tokens: Set[CancellationToken] = set()

    @classmethod
    def from_config(cls, config) -> "ReconEngine":
        """Build an engine from a ConfigManager."""
        user_agent = config.get("http.user_agent", DEFAULT_USER_AGENT)
        transport = ProbeTransport(user_agent=user_agent,
                                   verify_tls=bool(config.get("http.verify_tls", False)))
        resolver = HostnameResolver(
            transport,
            servers=config.get("dns.servers", list(DNS_SERVERS)),
            timeout_ms=config.get("dns.timeout_ms", 10000),
            system_fallback=bool(config.get("dns.system_fallback", True)),
        )
        return cls(
            transport=transport,
            resolver=resolver,
            timeout_ms=config.get("scan.timeout_ms", DEFAULT_SCAN_TIMEOUT_MS),
            concurrency=config.get("scan.concurrency", DEFAULT_CONCURRENCY),
            batch_delay_ms=config.get("scan.batch_delay_ms", DEFAULT_BATCH_DELAY_MS),
            retries=config.get("scan.retries", 0),
            timing=config.get("scan.timing_template"),
            rate_limit=config.get("scan.rate_limit", 0),
            max_hosts=config.get("scan.max_hosts", MAX_HOSTS),
            user_agent=user_agent,
            browser_user_agent=config.get("http.browser_user_agent", BROWSER_USER_AGENT),
            service_timeout_ms=config.get("services.timeout_ms", 5000),
            banner_timeout_ms=config.get("services.banner_timeout_ms", 1500),
            read_banners=bool(config.get("services.read_banners", True)),
            discovery_concurrency=config.get("discovery.concurrency", DEFAULT_CONCURRENCY),
            script_concurrency=config.get("scripts.concurrency", DEFAULT_SCRIPT_CONCURRENCY),
            script_timeout_ms=config.get("scripts.timeout_ms", DEFAULT_SCRIPT_TIMEOUT_MS),
            firewall_options={
                "timing_samples": config.get("firewall.timing_samples", 3),
                "sample_ports": config.get("firewall.sample_ports", 3),
                "burst_size": config.get("firewall.burst_size", 5),
                "slow_burst_ms": config.get("firewall.slow_burst_ms", 10000),
            },
        )

    def _build_orchestrator(self, batch_delay_ms: float, retries: int) -> ScanOrchestrator:
        return ScanOrchestrator(self.strategy, resolver=self.resolver, batch_delay_ms=batch_delay_ms,
                                max_hosts=self.max_hosts, rate_limiter=self.rate_limiter,
                                retries=retries)

    def close(self) -> None:
        self.stop_scan()
        self.script_engine.stop_all_scripts()
        self.transport.close()

    def __enter__(self) -> "ReconEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # =========================================================================
    # TARGETS
    # =========================================================================

    @staticmethod
    def parse_target(value: str) -> Optional[ParsedTarget]:
        return parse_target(value)

    async def resolve_hostname(self, hostname: str) -> ResolverResult:
        return await self.resolver.resolve(hostname)

    # =========================================================================
    # SCANNING
    # =========================================================================

    def _new_token(self) -> CancellationToken:
        token = CancellationToken()
        self._tokens.add(token)
        return token

    def stop_scan(self) -> None:
        """Cancel every discovery or port scan started through this engine."""
        for token in list(self._tokens):
            token.cancel()
        self.orchestrator.stop()

    async def discover_hosts(self, target: str, methods: Optional[Sequence[str]] = None,
                             on_log: Optional[LogCallback] = None,
                             on_progress: Optional[Callable[[float], None]] = None,
                             concurrency: Optional[int] = None) -> List[DiscoveryObservation]:
        token = self._new_token()
        try:
            return await self.orchestrator.discover_hosts(
                target, methods or ("ping",), concurrency or self.discovery_concurrency,
                on_log=on_log, on_progress=on_progress, token=token,
            )
        finally:
            self._tokens.discard(token)

    async def scan_ports(self, target: str, start_port: int = 1, end_port: int = 1000,
                         scan_type: Union[str, ScanType] = ScanType.CONNECT,
                         timeout_ms: Optional[float] = None,
                         concurrency: Optional[int] = None,
                         on_progress: Optional[ProgressCallback] = None,
                         on_result: Optional[ResultCallback] = None,
                         on_log: Optional[LogCallback] = None,
                         ports: Optional[Iterable[int]] = None,
                         timing: Optional[str] = None) -> ScanSummary:
        """
        Scan a port range (or an explicit port list) on a single host.

        A timing template, given here or at construction, supplies the
        batch delay, batch size, probe timeout and retries that are not
        passed explicitly.

        Raises:
            InvalidTargetFormat: Target is not a single address or domain
            ValueError: Invalid port range
        """
        if ports is None:
            if start_port > end_port:
                raise ValueError(f"Invalid port range: {start_port}-{end_port}")
            ports = range(start_port, end_port + 1)

        template: Optional[TimingTemplate] = get_timing_template(timing) if timing else self.timing
        orchestrator = self.orchestrator
        if template is not None:
            orchestrator = self._build_orchestrator(template.delay_ms, template.retries)
            timeout_ms = timeout_ms or template.timeout_ms
            concurrency = concurrency or template.parallel

        token = self._new_token()
        try:
            return await orchestrator.scan_ports(
                target, ports, scan_type,
                timeout_ms=timeout_ms or self.timeout_ms,
                concurrency=concurrency or self.concurrency,
                on_progress=on_progress, on_result=on_result, on_log=on_log, token=token,
            )
        finally:
            self._tokens.discard(token)

    # =========================================================================
    # ANALYSIS
    # =========================================================================

    async def detect_services(self, target: str, open_ports: Iterable[PortLike]) -> List[DetectedService]:
        return await self.service_detector.detect_services(target, open_ports)

    async def fingerprint_os(self, target: str, open_ports: Iterable[PortLike],
                             discovery_data: Optional[Sequence[Any]] = None) -> List[OSFingerprintCandidate]:
        return await self.os_fingerprinter.fingerprint(target, open_ports, discovery_data)

    async def analyze_firewall(self, target: str, port_results: Iterable[Any],
                               on_progress: Optional[FirewallProgressCallback] = None) -> FirewallAnalysis:
        return await self.firewall_detector.analyze(target, port_results, on_progress)

    # =========================================================================
    # SCRIPTS
    # =========================================================================

    async def run_scripts(self, script_ids: Sequence[str], target: str,
                          open_ports: Iterable[PortLike],
                          on_progress: Optional[ScriptProgressCallback] = None,
                          on_result: Optional[ScriptResultCallback] = None) -> List[ScriptResult]:
        return await self.script_engine.run_scripts(script_ids, target, open_ports, on_progress, on_result)

    def get_available_scripts(self) -> List[SecurityScript]:
        return self.script_engine.get_available_scripts()

    def get_scripts_for_port(self, port: int, service: Optional[str] = None) -> List[SecurityScript]:
        return self.script_engine.get_scripts_for_port(port, service)

    def get_scripts_by_category(self, category: Union[str, ScriptCategory]) -> List[SecurityScript]:
        return self.script_engine.get_scripts_by_category(category)
