"""
Firewall Detection Module for Recon Phantom
===========================================

Statistical firewall and rate-limit inference.

ANALYSES (run in sequence, progress 20/40/60/80/100):
-----------------------------------------------------
1. Port responses   - filtered/open/closed counts over existing results
2. Timing           - repeated timed probes, outliers, timing pattern
3. Rate limit       - short burst of concurrent requests
4. Response pattern - filtered runs, admin ports, filtered:open ratio
5. Stealth          - HTTP vs HTTPS and user-agent asymmetries

The final confidence is the maximum of the sub-analysis confidences,
never their sum. detected == confidence > 30.

Version: 1.0.0
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .exceptions import ProbeError
from .models import FirewallAnalysis, FirewallType, PortObservation, TimingAnalysis, TimingPattern
from .transport import BROWSER_USER_AGENT, DEFAULT_USER_AGENT, build_url

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

TIMING_WEB_PORTS = (80, 443, 8080, 8443)
ADMIN_PORTS = (135, 139, 445, 1433, 3389)
RATE_LIMIT_HEADERS = ("X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After")

# Confidence contributed by each sub-analysis
RATE_LIMIT_CONFIDENCE = 70
STEALTH_CONFIDENCE = 60
MANY_FILTERED_CONFIDENCE = 50
MANY_FILTERED_THRESHOLD = 5

DETECTED_RECOMMENDATIONS = (
    "Consider using stealth scanning techniques",
    "Try scanning from different source addresses",
    "Use timing delays between scan attempts",
    "Consider fragmenting scan packets",
)
RATE_LIMIT_RECOMMENDATIONS = (
    "Implement rate limiting in scan configuration",
    "Use longer delays between requests",
)


# =============================================================================
# INPUT NORMALIZATION / STATISTICS
# =============================================================================

@dataclass(frozen=True)
class PortSample:
    port: int
    status: str
    latency_ms: float


def coerce_port_result(item: Any) -> PortSample:
    """Accept PortObservation objects or {port, status, latency_ms} dicts."""
    if isinstance(item, PortObservation):
        return PortSample(item.port, item.status.value, item.latency_ms)
    if isinstance(item, dict):
        latency = item.get("latency_ms", item.get("latency", 0.0))
        status = item.get("status", "closed")
        return PortSample(int(item["port"]), getattr(status, "value", status), float(latency or 0.0))
    raise TypeError(f"Unsupported port result: {item!r}")


def mean_and_variance(values: Sequence[float]) -> Tuple[float, float]:
    """Population mean and variance; (0, 0) for an empty sequence."""
    if not values:
        return 0.0, 0.0
    avg = sum(values) / len(values)
    variance = sum((value - avg) ** 2 for value in values) / len(values)
    return avg, variance


def classify_timing(samples: Sequence[float]) -> TimingAnalysis:
    """
    Summarize timing samples.

    Outliers lie more than two standard deviations from the mean. The
    pattern is consistent when stddev < 10% of the mean, variable under
    30%, rate-limited when any sample exceeds one second, else random.
    """
    if not samples:
        return TimingAnalysis()

    avg, variance = mean_and_variance(samples)
    stddev = math.sqrt(variance)
    outliers = [s for s in samples if abs(s - avg) > 2 * stddev]

    pattern = TimingPattern.RANDOM
    if stddev < avg * 0.1:
        pattern = TimingPattern.CONSISTENT
    elif stddev < avg * 0.3:
        pattern = TimingPattern.VARIABLE
    elif any(s > 1000 for s in samples):
        pattern = TimingPattern.RATE_LIMITED

    return TimingAnalysis(
        min_ms=min(samples),
        max_ms=max(samples),
        avg_ms=avg,
        stddev_ms=stddev,
        samples=list(samples),
        outliers=outliers,
        pattern=pattern,
    )


# =============================================================================
# SUB-ANALYSIS RESULTS
# =============================================================================

@dataclass
class PortResponseAnalysis:
    filtered: int = 0
    open: int = 0
    closed: int = 0
    avg_latency_ms: float = 0.0
    latency_variance: float = 0.0
    indicators: List[str] = field(default_factory=list)


@dataclass
class RateLimitAnalysis:
    detected: bool = False
    threshold_ms: Optional[float] = None
    evidence: List[str] = field(default_factory=list)


@dataclass
class PatternAnalysis:
    confidence: int = 0
    patterns: List[str] = field(default_factory=list)
    signatures: List[str] = field(default_factory=list)


@dataclass
class StealthAnalysis:
    detected: bool = False
    techniques: List[str] = field(default_factory=list)
    bypasses: List[str] = field(default_factory=list)


def analyze_port_responses(samples: Sequence[PortSample]) -> PortResponseAnalysis:
    filtered = sum(1 for s in samples if s.status == "filtered")
    open_count = sum(1 for s in samples if s.status == "open")
    closed = sum(1 for s in samples if s.status == "closed")
    latencies = [s.latency_ms for s in samples]
    avg, variance = mean_and_variance(latencies)

    indicators = []
    if filtered > open_count + closed:
        indicators.append("High number of filtered ports suggests firewall presence")
    if filtered > 0 and open_count == 0:
        indicators.append("All responsive ports filtered - likely behind firewall")
    if len(latencies) > 5 and all(abs(lat - avg) < 50 for lat in latencies):
        indicators.append("Consistent response timing suggests rate limiting")

    return PortResponseAnalysis(filtered, open_count, closed, avg, variance, indicators)


def analyze_response_patterns(samples: Sequence[PortSample]) -> PatternAnalysis:
    result = PatternAnalysis()
    filtered = [s for s in samples if s.status == "filtered"]
    open_count = sum(1 for s in samples if s.status == "open")

    if filtered:
        result.confidence += 30
        result.patterns.append(f"{len(filtered)} ports filtered")
        if any(s.port in ADMIN_PORTS for s in filtered):
            result.confidence += 20
            result.signatures.append("Common administrative ports filtered")

    # Counts adjacent filtered pairs, so a run of n ports scores n - 1
    ordered = sorted(samples, key=lambda s: s.port)
    run = longest = 0
    for current, following in zip(ordered, ordered[1:]):
        if (current.status == "filtered" and following.status == "filtered"
                and following.port == current.port + 1):
            run += 1
            longest = max(longest, run)
        else:
            run = 0
    if longest > 5:
        result.confidence += 25
        result.signatures.append(f"{longest} consecutive ports filtered")

    avg, variance = mean_and_variance([s.latency_ms for s in samples])
    if samples and variance < 100 and avg > 100:
        result.confidence += 15
        result.patterns.append("Consistent response timing suggests traffic shaping")

    if open_count > 0 and len(filtered) > open_count * 2:
        result.confidence += 20
        result.signatures.append("High filter-to-open ratio indicates selective filtering")

    result.confidence = min(result.confidence, 100)
    return result


def generate_fingerprint(ports: PortResponseAnalysis, timing: TimingAnalysis,
                         patterns: PatternAnalysis) -> str:
    return "|".join((
        f"F:{ports.filtered}",
        f"O:{ports.open}",
        f"T:{round(timing.avg_ms)}",
        f"V:{round(timing.stddev_ms)}",
        f"P:{timing.pattern.value}",
        f"C:{patterns.confidence}",
    ))


# =============================================================================
# DETECTOR
# =============================================================================

class FirewallDetector:
    """
    Runs the five sub-analyses against a target.

    Usage:
        detector = FirewallDetector(transport)
        analysis = await detector.analyze("example.test", summary.observations)
        if analysis.detected:
            print(analysis.type, analysis.confidence)
    """

    def __init__(self, transport, timing_samples: int = 3, sample_ports: int = 3,
                 sample_delay_ms: float = 100, burst_size: int = 5,
                 slow_burst_ms: float = 10000, probe_timeout_ms: float = 5000,
                 user_agent: str = DEFAULT_USER_AGENT,
                 browser_user_agent: str = BROWSER_USER_AGENT) -> None:
        self.transport = transport
        self.timing_samples = timing_samples
        self.sample_ports = sample_ports
        self.sample_delay_ms = sample_delay_ms
        self.burst_size = burst_size
        self.slow_burst_ms = slow_burst_ms
        self.probe_timeout_ms = probe_timeout_ms
        self.user_agent = user_agent
        self.browser_user_agent = browser_user_agent

    async def analyze(self, target: str, port_results: Iterable[Any],
                      on_progress: Optional[ProgressCallback] = None) -> FirewallAnalysis:
        """
        Produce one FirewallAnalysis for a target.

        Args:
            target: Host name or address
            port_results: PortObservation objects or dicts from a prior scan
            on_progress: Receives 20, 40, 60, 80 and 100
        """
        samples = [coerce_port_result(item) for item in port_results]
        progress = on_progress or (lambda value: None)

        ports = analyze_port_responses(samples)
        progress(20)
        timing = await self.timing_analysis(target, samples[:self.sample_ports])
        progress(40)
        rate_limit = await self.detect_rate_limit(target)
        progress(60)
        patterns = analyze_response_patterns(samples)
        progress(80)
        stealth = await self.stealth_detection(target)
        progress(100)

        analysis = self.compile(ports, timing, rate_limit, patterns, stealth)
        logger.info(f"Firewall analysis for {target}: detected={analysis.detected} "
                    f"confidence={analysis.confidence} type={analysis.type.value}")
        return analysis

    @staticmethod
    def compile(ports: PortResponseAnalysis, timing: TimingAnalysis, rate_limit: RateLimitAnalysis,
                patterns: PatternAnalysis, stealth: StealthAnalysis) -> FirewallAnalysis:
        confidence = max(
            patterns.confidence,
            RATE_LIMIT_CONFIDENCE if rate_limit.detected else 0,
            STEALTH_CONFIDENCE if stealth.detected else 0,
            MANY_FILTERED_CONFIDENCE if ports.filtered > MANY_FILTERED_THRESHOLD else 0,
        )

        if rate_limit.detected:
            firewall_type = FirewallType.PROXY
        elif ports.filtered > ports.open:
            firewall_type = FirewallType.STATEFUL
        elif timing.pattern == TimingPattern.CONSISTENT:
            firewall_type = FirewallType.PACKET_FILTER
        else:
            firewall_type = FirewallType.UNKNOWN

        analysis = FirewallAnalysis(
            confidence=confidence,
            indicators=(ports.indicators + rate_limit.evidence + patterns.patterns
                        + patterns.signatures + stealth.techniques),
            avg_response_time_ms=timing.avg_ms,
            response_variance_ms=timing.stddev_ms,
            rate_limit_detected=rate_limit.detected,
            filtered_port_count=ports.filtered,
            type=firewall_type,
            rate_limit_threshold_ms=rate_limit.threshold_ms,
            fingerprint=generate_fingerprint(ports, timing, patterns),
            bypass_techniques=list(stealth.bypasses),
            timing=timing,
        )
        if analysis.detected:
            analysis.recommendations.extend(DETECTED_RECOMMENDATIONS)
        if rate_limit.detected:
            analysis.recommendations.extend(RATE_LIMIT_RECOMMENDATIONS)
        return analysis

    # -------------------------------------------------------------------------
    # Active sub-analyses
    # -------------------------------------------------------------------------

    async def timing_analysis(self, target: str, sample_ports: Sequence[PortSample]) -> TimingAnalysis:
        """Timed probes against the sample ports; failures still count as samples."""
        samples = []
        for port_sample in sample_ports:
            for _ in range(self.timing_samples):
                samples.append(await self._timed_probe(target, port_sample.port))
                if self.sample_delay_ms > 0:
                    await asyncio.sleep(self.sample_delay_ms / 1000.0)
        return classify_timing(samples)

    async def _timed_probe(self, target: str, port: int) -> float:
        start = time.perf_counter()
        try:
            if port in TIMING_WEB_PORTS:
                await self.transport.request("HEAD", build_url(target, port), self.probe_timeout_ms,
                                             read_body=False)
            else:
                await self.transport.connect(target, port, 2000)
        except ProbeError as e:
            logger.debug(f"Timing probe {target}:{port} failed: {e}")
        return round((time.perf_counter() - start) * 1000, 2)

    async def detect_rate_limit(self, target: str) -> RateLimitAnalysis:
        result = RateLimitAnalysis()
        url = build_url(target, 80, scheme="http")
        start = time.perf_counter()
        responses = await asyncio.gather(
            *(self._head_or_none(url, 3000) for _ in range(self.burst_size))
        )
        total_ms = (time.perf_counter() - start) * 1000
        answered = [r for r in responses if r is not None]

        if any(r.header(name) is not None for r in answered for name in RATE_LIMIT_HEADERS):
            result.detected = True
            result.evidence.append("Rate limiting headers detected")

        throttled = sum(1 for r in answered if r.status_code == 429)
        if throttled:
            result.detected = True
            result.evidence.append(f"{throttled} rate limit responses (429) received")

        if total_ms > self.slow_burst_ms:
            result.detected = True
            result.evidence.append("Suspiciously slow response times suggest rate limiting")
            result.threshold_ms = total_ms / max(self.burst_size, 1)

        return result

    async def stealth_detection(self, target: str) -> StealthAnalysis:
        result = StealthAnalysis()
        http_url = build_url(target, 80, scheme="http")
        https_url = build_url(target, 443, scheme="https")

        http_result, https_result = await asyncio.gather(
            self._head_or_none(http_url, self.probe_timeout_ms),
            self._head_or_none(https_url, self.probe_timeout_ms),
        )
        if http_result is not None and https_result is None:
            result.techniques.append("HTTPS traffic blocked while HTTP allowed")
            result.bypasses.extend(("Try HTTP tunneling", "Use different HTTPS ports"))
        elif http_result is None and https_result is not None:
            result.techniques.append("HTTP traffic blocked while HTTPS allowed")
            result.bypasses.extend(("Use HTTPS for all connections", "Try HTTP over TLS"))

        tool_result, browser_result = await asyncio.gather(
            self._head_or_none(http_url, self.probe_timeout_ms, self.user_agent),
            self._head_or_none(http_url, self.probe_timeout_ms, self.browser_user_agent),
        )
        if tool_result is None and browser_result is not None:
            result.techniques.append("User-Agent filtering detected")
            result.bypasses.extend(("Use common browser User-Agent strings", "Rotate User-Agent headers"))

        result.detected = bool(result.techniques)
        return result

    async def _head_or_none(self, url: str, timeout_ms: float, user_agent: Optional[str] = None):
        headers: Dict[str, str] = {"User-Agent": user_agent} if user_agent else {}
        try:
            return await self.transport.request("HEAD", url, timeout_ms, headers=headers, read_body=False)
        except ProbeError as e:
            logger.debug(f"HEAD {url} failed: {e}")
            return None
