"""
Recon Phantom - Scan Orchestrator
=================================

Batched, cancellable port scanning and host discovery on top of the
probe strategy layer.

Features:
- Fixed-size batches awaited as a unit, small inter-batch delay
- Pull style (async generators) and push style (callbacks) over one
  implementation
- Cooperative cancellation checked before every batch
- Optional token-bucket pacing of probe dispatch
- Host discovery with ping / tcp-syn / tcp-ack / arp / http-probe methods

Every requested port yields exactly one PortObservation per completed
run, and every candidate host exactly one DiscoveryObservation.

Version: 1.0.0
"""

import asyncio
import ipaddress
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from ..security.rate_limiter import AsyncTokenBucket
from .exceptions import InvalidTargetFormat, ProbeError, ProbeOpaqueError, ScanCancelled
from .models import DiscoveryObservation, PortObservation, PortStatus, ScanType
from .probe_strategy import ProbeStrategy
from .service_detection import COMMON_PORT_NAMES
from .target_parser import MAX_HOSTS, expand_targets, is_valid_ip, require_target
from .transport import build_url

logger = logging.getLogger(__name__)

LogCallback = Callable[[str, str], None]
ProgressCallback = Callable[[float, Optional[int]], None]
ResultCallback = Callable[[PortObservation], None]

DEFAULT_BATCH_DELAY_MS = 100
DEFAULT_CONCURRENCY = 10

LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "debug": logging.DEBUG,
}


def emit_log(on_log: Optional[LogCallback], message: str, level: str = "info") -> None:
    """Mirror a caller-facing log line to the module logger."""
    logger.log(LOG_LEVELS.get(level, logging.INFO), message)
    if on_log:
        on_log(message, level)


def chunked(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    size = max(1, int(size))
    return [items[i:i + size] for i in range(0, len(items), size)]


def unique_ports(ports: Iterable[int]) -> List[int]:
    seen: Set[int] = set()
    ordered = []
    for port in ports:
        port = int(port)
        if not 1 <= port <= 65535:
            raise ValueError(f"Port out of range (1-65535): {port}")
        if port not in seen:
            seen.add(port)
            ordered.append(port)
    return ordered


# =============================================================================
# CANCELLATION / SUMMARY
# =============================================================================

class CancellationToken:
    """Shared flag consulted between batches."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class ScanSummary:
    """
    Outcome of one scan_ports() run.

    Attributes:
        target: Scanned host
        scan_type: Technique actually executed
        requested_scan_type: Technique the caller asked for
        total: Number of unique requested ports
        observations: One entry per completed port, in completion order
        cancelled: Scan stopped before every batch was dispatched
    """
    target: str
    scan_type: ScanType
    requested_scan_type: ScanType
    total: int
    observations: List[PortObservation] = field(default_factory=list)
    cancelled: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def completed(self) -> int:
        return len(self.observations)

    @property
    def open_ports(self) -> List[PortObservation]:
        return sorted((o for o in self.observations if o.is_open), key=lambda o: o.port)

    def count(self, status: PortStatus) -> int:
        return sum(1 for o in self.observations if o.status == status)

    def sorted_observations(self) -> List[PortObservation]:
        return sorted(self.observations, key=lambda o: o.port)

    def raise_for_cancel(self) -> None:
        if self.cancelled:
            raise ScanCancelled(self.completed, self.total)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "scan_type": self.scan_type.value,
            "requested_scan_type": self.requested_scan_type.value,
            "total": self.total,
            "completed": self.completed,
            "cancelled": self.cancelled,
            "counts": {status.value: self.count(status) for status in PortStatus},
            "observations": [o.to_dict() for o in self.sorted_observations()],
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


# =============================================================================
# DISCOVERY HEURISTICS
# =============================================================================

PING_PORTS = (80, 443, 22, 21, 25, 53)
SYN_PORTS = (80, 443, 22, 21, 25, 53, 110, 143, 993, 995)
QUICK_HTTP_PORTS = (80, 8080, 8000, 3000)
QUICK_HTTPS_PORTS = (443, 8443)

PING_TIMEOUT_MS = 1000
SYN_TIMEOUT_MS = 2000
HTTP_PROBE_TIMEOUT_MS = 3000
# A ping-style answer under this latency counts as alive even if it failed
FAST_ANSWER_MS = 500

DISCOVERY_METHODS = ("ping", "icmp-echo", "tcp-syn", "tcp-ack", "arp", "http-probe")


def guess_vendor(ip: str) -> Optional[str]:
    """Device class guess from private address ranges."""
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return None
    if address.version != 4:
        return None

    octets = [int(part) for part in str(address).split(".")]
    if octets[0] == 192 and octets[1] == 168:
        if octets[2] == 1 and octets[3] == 1:
            return "Router/Gateway"
        if octets[3] < 50:
            return "Network Infrastructure"
        return "Private Network Device"
    if octets[0] == 10:
        return "Enterprise Network Device"
    if octets[0] == 172 and 16 <= octets[1] <= 31:
        return "Corporate Network Device"
    return None


def estimate_ttl(latency_ms: float) -> int:
    """Rough TTL estimate from round trip latency."""
    if latency_ms < 10:
        return 64
    if latency_ms < 50:
        return 128
    if latency_ms < 100:
        return 64
    return 32


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class ScanOrchestrator:
    """
    Batches probes and host checks with bounded concurrency.

    Scan result collections belong to the call that created them; the
    only state shared across runs is the set of active cancellation
    tokens, which stop() flips.

    Usage:
        orchestrator = ScanOrchestrator(ProbeStrategy(ProbeTransport()))
        summary = await orchestrator.scan_ports("example.test", range(1, 1025))
        async for observation in orchestrator.iter_ports("example.test", [22, 80]):
            print(observation.port, observation.status)
    """

    def __init__(self, strategy: ProbeStrategy, resolver=None,
                 batch_delay_ms: float = DEFAULT_BATCH_DELAY_MS, max_hosts: int = MAX_HOSTS,
                 rate_limiter: Optional[AsyncTokenBucket] = None, retries: int = 0) -> None:
        self.strategy = strategy
        self.transport = strategy.transport
        self.resolver = resolver
        self.batch_delay_ms = batch_delay_ms
        self.max_hosts = max_hosts
        self.rate_limiter = rate_limiter
        self.retries = max(0, int(retries))
        self._active_tokens: Set[CancellationToken] = set()

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def stop(self) -> None:
        """Cancel every scan or discovery currently running on this orchestrator."""
        for token in list(self._active_tokens):
            token.cancel()

    @property
    def is_running(self) -> bool:
        return bool(self._active_tokens)

    # -------------------------------------------------------------------------
    # Port scanning
    # -------------------------------------------------------------------------

    async def iter_ports(self, target: str, ports: Iterable[int],
                         scan_type: Union[str, ScanType] = ScanType.CONNECT,
                         timeout_ms: float = 3000, concurrency: int = DEFAULT_CONCURRENCY,
                         on_log: Optional[LogCallback] = None,
                         token: Optional[CancellationToken] = None) -> AsyncIterator[PortObservation]:
        """
        Stream one PortObservation per port, batch by batch.

        Observations inside a batch arrive in completion order. The
        generator is finite and cannot be restarted.

        Raises:
            InvalidTargetFormat: target is not a single host or domain
        """
        host = self._require_single_host(target)
        effective = self.strategy.resolve_scan_type(scan_type, on_log)
        port_list = unique_ports(ports)
        token = token or CancellationToken()

        self._active_tokens.add(token)
        try:
            batches = chunked(port_list, concurrency)
            for index, batch in enumerate(batches):
                if token.cancelled:
                    emit_log(on_log, f"Scan cancelled, {len(batches) - index} batch(es) not dispatched", "warning")
                    break

                tasks = [asyncio.ensure_future(self._observe_port(host, port, effective, timeout_ms))
                         for port in batch]
                try:
                    for next_done in asyncio.as_completed(tasks):
                        yield await next_done
                finally:
                    for task in tasks:
                        if not task.done():
                            task.cancel()

                if index < len(batches) - 1 and self.batch_delay_ms > 0 and not token.cancelled:
                    await asyncio.sleep(self.batch_delay_ms / 1000.0)
        finally:
            self._active_tokens.discard(token)

    async def scan_ports(self, target: str, ports: Iterable[int],
                         scan_type: Union[str, ScanType] = ScanType.CONNECT,
                         timeout_ms: float = 3000, concurrency: int = DEFAULT_CONCURRENCY,
                         on_progress: Optional[ProgressCallback] = None,
                         on_result: Optional[ResultCallback] = None,
                         on_log: Optional[LogCallback] = None,
                         token: Optional[CancellationToken] = None) -> ScanSummary:
        """
        Scan ports and push every observation through the callbacks.

        Args:
            target: Single address or domain
            ports: Ports to probe (duplicates are scanned once)
            scan_type: Requested technique (degrades to connect)
            timeout_ms: Timeout per probe
            concurrency: Batch size
            on_progress: (percent, last port) after every observation
            on_result: Receives each PortObservation
            on_log: (message, level) log lines

        Returns:
            ScanSummary
        """
        self._require_single_host(target)
        port_list = unique_ports(ports)
        requested = ScanType.parse(scan_type)
        token = token or CancellationToken()
        summary = ScanSummary(
            target=target,
            scan_type=ScanType.CONNECT,
            requested_scan_type=requested,
            total=len(port_list),
        )

        emit_log(on_log, f"Starting {requested.value.upper()} scan on {target}", "info")
        if port_list:
            emit_log(on_log, f"Port range: {min(port_list)}-{max(port_list)} ({len(port_list)} ports)", "info")

        async for observation in self.iter_ports(target, port_list, requested, timeout_ms,
                                                 concurrency, on_log, token):
            summary.observations.append(observation)
            if on_result:
                on_result(observation)
            if observation.status == PortStatus.OPEN:
                emit_log(on_log, f"Port {observation.port}/{observation.protocol} OPEN - "
                                 f"{observation.service or 'unknown'}", "success")
            elif observation.status == PortStatus.FILTERED:
                emit_log(on_log, f"Port {observation.port}/{observation.protocol} FILTERED", "warning")
            if on_progress:
                on_progress(summary.completed / summary.total * 100, observation.port)

        summary.cancelled = token.cancelled and summary.completed < summary.total
        summary.finished_at = datetime.now()
        if not summary.cancelled:
            emit_log(on_log, f"Scan completed: {summary.completed} ports scanned", "success")
        return summary

    async def _observe_port(self, host: str, port: int, scan_type: ScanType,
                            timeout_ms: float) -> PortObservation:
        start = time.perf_counter()
        try:
            attempts = self.retries + 1
            verdict = None
            for _ in range(attempts):
                if self.rate_limiter:
                    await self.rate_limiter.acquire_and_wait()
                verdict = await self.strategy.probe(host, port, timeout_ms, scan_type)
                if verdict.status != PortStatus.TIMEOUT:
                    break
            return PortObservation(
                port=port,
                status=verdict.status,
                latency_ms=_elapsed_ms(start),
                banner=verdict.banner,
                service=COMMON_PORT_NAMES.get(port),
            )
        except Exception as e:
            logger.debug(f"Observation for {host}:{port} failed: {e!r}")
            return PortObservation(port=port, status=PortStatus.TIMEOUT, latency_ms=timeout_ms,
                                   service=COMMON_PORT_NAMES.get(port))

    @staticmethod
    def _require_single_host(target: str) -> str:
        parsed = require_target(target)
        if not parsed.is_single_host:
            raise InvalidTargetFormat(
                target, "port scans need a single address or domain")
        return parsed.value

    # -------------------------------------------------------------------------
    # Host discovery
    # -------------------------------------------------------------------------

    async def iter_hosts(self, target: str, methods: Sequence[str] = ("ping",),
                         concurrency: int = DEFAULT_CONCURRENCY,
                         on_log: Optional[LogCallback] = None,
                         token: Optional[CancellationToken] = None) -> AsyncIterator[DiscoveryObservation]:
        """
        Stream one DiscoveryObservation per candidate host.

        Ranges and CIDR blocks are expanded up to max_hosts addresses.
        """
        hosts = expand_targets(target, self.max_hosts)
        methods = list(methods) or ["ping"]
        token = token or CancellationToken()

        emit_log(on_log, f"Starting host discovery on {len(hosts)} targets", "info")
        emit_log(on_log, f"Methods: {', '.join(methods)}", "info")

        self._active_tokens.add(token)
        try:
            batches = chunked(hosts, concurrency)
            for index, batch in enumerate(batches):
                if token.cancelled:
                    emit_log(on_log, "Host discovery cancelled", "warning")
                    break

                tasks = [asyncio.ensure_future(self.discover_host(host, methods)) for host in batch]
                try:
                    for next_done in asyncio.as_completed(tasks):
                        observation = await next_done
                        if observation.is_alive:
                            emit_log(on_log, f"Host {observation.ip} is alive "
                                             f"({observation.latency_ms:.0f}ms via {observation.method})", "success")
                        yield observation
                finally:
                    for task in tasks:
                        if not task.done():
                            task.cancel()

                if index < len(batches) - 1 and self.batch_delay_ms > 0 and not token.cancelled:
                    await asyncio.sleep(self.batch_delay_ms / 1000.0)
        finally:
            self._active_tokens.discard(token)

    async def discover_hosts(self, target: str, methods: Sequence[str] = ("ping",),
                             concurrency: int = DEFAULT_CONCURRENCY,
                             on_log: Optional[LogCallback] = None,
                             on_progress: Optional[Callable[[float], None]] = None,
                             token: Optional[CancellationToken] = None) -> List[DiscoveryObservation]:
        """Collect discovery observations; progress is reported per host."""
        total = len(expand_targets(target, self.max_hosts))
        results: List[DiscoveryObservation] = []
        async for observation in self.iter_hosts(target, methods, concurrency, on_log, token):
            results.append(observation)
            if on_progress:
                on_progress(len(results) / total * 100)

        alive = sum(1 for r in results if r.is_alive)
        emit_log(on_log, f"Host discovery completed: {alive}/{len(results)} hosts alive", "success")
        return results

    async def discover_host(self, host: str, methods: Sequence[str]) -> DiscoveryObservation:
        """Try each method in order until one reports the host alive."""
        start = time.perf_counter()
        for method in methods:
            try:
                alive = await self.test_host(host, method)
            except Exception as e:
                logger.debug(f"Discovery method {method} failed on {host}: {e!r}")
                continue
            if alive:
                latency = _elapsed_ms(start)
                return DiscoveryObservation(
                    ip=host,
                    method=method,
                    latency_ms=latency,
                    is_alive=True,
                    hostname=await self._hostname_for(host),
                    ttl=estimate_ttl(latency),
                    vendor=guess_vendor(host),
                )

        return DiscoveryObservation(ip=host, method="none", latency_ms=_elapsed_ms(start), is_alive=False)

    async def test_host(self, host: str, method: str) -> bool:
        method = method.lower()
        if method in ("ping", "icmp-echo"):
            return await self._test_ping(host)
        if method in ("tcp-syn", "tcp-ack"):
            return await self._test_tcp_ports(host)
        # arp and unknown methods use the HTTP probe
        return await self._test_http_probe(host)

    async def quick_port_test(self, host: str, port: int, timeout_ms: float) -> bool:
        """Cheap reachability check used by discovery."""
        if port in QUICK_HTTP_PORTS or port in QUICK_HTTPS_PORTS:
            scheme = "https" if port in QUICK_HTTPS_PORTS else "http"
            try:
                await self.transport.request("HEAD", build_url(host, port, scheme=scheme),
                                             timeout_ms, read_body=False)
            except ProbeError:
                return False
            return True

        try:
            await self.transport.connect(host, port, timeout_ms)
        except ProbeOpaqueError:
            return True
        except ProbeError:
            return False
        return True

    async def _test_ping(self, host: str) -> bool:
        for port in PING_PORTS:
            start = time.perf_counter()
            answered = await self.quick_port_test(host, port, PING_TIMEOUT_MS)
            if answered or _elapsed_ms(start) < FAST_ANSWER_MS:
                return True
        return False

    async def _test_tcp_ports(self, host: str) -> bool:
        results = await asyncio.gather(
            *(self.quick_port_test(host, port, SYN_TIMEOUT_MS) for port in SYN_PORTS),
            return_exceptions=True,
        )
        return any(result is True for result in results)

    async def _test_http_probe(self, host: str) -> bool:
        async def head(scheme: str) -> bool:
            try:
                await self.transport.request("HEAD", f"{scheme}://{self._url_host(host)}",
                                             HTTP_PROBE_TIMEOUT_MS, read_body=False)
            except ProbeError:
                return False
            return True

        http_ok, https_ok = await asyncio.gather(head("http"), head("https"))
        return http_ok or https_ok

    @staticmethod
    def _url_host(host: str) -> str:
        return f"[{host}]" if ":" in host else host

    async def _hostname_for(self, host: str) -> Optional[str]:
        if not is_valid_ip(host):
            return host
        if self.resolver is None:
            return None
        return await self.resolver.reverse_lookup(host)
