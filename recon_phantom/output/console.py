"""
Console Output
==============

Colored status lines for the command line front end, built on colorama
so the same codes work on Windows terminals.
"""

import sys
from typing import Optional

from colorama import Fore, Style, init as colorama_init

from ..core.models import (
    DetectedService,
    DiscoveryObservation,
    FirewallAnalysis,
    OSFingerprintCandidate,
    PortObservation,
    PortStatus,
    ScriptResult,
    Severity,
)


class ConsoleColors:
    """Color codes for terminal output"""
    HEADER = Fore.MAGENTA
    BLUE = Fore.BLUE
    CYAN = Fore.CYAN
    GREEN = Fore.GREEN
    YELLOW = Fore.YELLOW
    RED = Fore.RED
    ENDC = Style.RESET_ALL
    BOLD = Style.BRIGHT
    DIM = Style.DIM


STATUS_COLORS = {
    PortStatus.OPEN: ConsoleColors.GREEN,
    PortStatus.CLOSED: ConsoleColors.RED,
    PortStatus.FILTERED: ConsoleColors.YELLOW,
    PortStatus.TIMEOUT: ConsoleColors.DIM,
}

SEVERITY_COLORS = {
    Severity.INFO: ConsoleColors.BLUE,
    Severity.LOW: ConsoleColors.CYAN,
    Severity.MEDIUM: ConsoleColors.YELLOW,
    Severity.HIGH: ConsoleColors.RED,
    Severity.CRITICAL: ConsoleColors.RED + ConsoleColors.BOLD,
}

_enabled = True


def init_console(colors_enabled: bool = True) -> None:
    """Initialize colorama; colors are dropped when disabled or not a TTY."""
    global _enabled
    _enabled = colors_enabled and sys.stdout.isatty()
    colorama_init(strip=not _enabled)


def colored(text: str, color: str) -> str:
    if not _enabled:
        return text
    return f"{color}{text}{ConsoleColors.ENDC}"


class ConsoleFormatter:
    """Formatters for console output"""

    @staticmethod
    def success(msg: str) -> str:
        return colored(f"[✓] {msg}", ConsoleColors.GREEN)

    @staticmethod
    def error(msg: str) -> str:
        return colored(f"[✗] {msg}", ConsoleColors.RED)

    @staticmethod
    def warning(msg: str) -> str:
        return colored(f"[!] {msg}", ConsoleColors.YELLOW)

    @staticmethod
    def info(msg: str) -> str:
        return colored(f"[i] {msg}", ConsoleColors.BLUE)

    @staticmethod
    def header(msg: str) -> str:
        return colored(msg, ConsoleColors.HEADER + ConsoleColors.BOLD)

    @classmethod
    def log_line(cls, message: str, level: str = "info") -> str:
        """Format an on_log (message, level) pair."""
        formatter = {
            "success": cls.success,
            "warning": cls.warning,
            "error": cls.error,
        }.get(level, cls.info)
        return formatter(message)

    @staticmethod
    def port(observation: PortObservation) -> str:
        status = observation.status.value.upper()
        line = (f"{observation.port:>5}/{observation.protocol:<4} "
                f"{status:<9} {observation.service or 'unknown':<14} "
                f"{observation.latency_ms:7.1f}ms")
        if observation.banner:
            line += f"  {observation.banner.splitlines()[0][:60]}"
        return colored(line, STATUS_COLORS.get(observation.status, ""))

    @staticmethod
    def host(observation: DiscoveryObservation) -> str:
        state = "up" if observation.is_alive else "down"
        line = f"{observation.ip:<16} {state:<5} via {observation.method:<10} {observation.latency_ms:7.1f}ms"
        extras = [x for x in (observation.hostname, observation.vendor) if x]
        if extras:
            line += "  " + " | ".join(extras)
        return colored(line, ConsoleColors.GREEN if observation.is_alive else ConsoleColors.DIM)

    @staticmethod
    def service(detected: DetectedService) -> str:
        product = " ".join(x for x in (detected.product, detected.version) if x)
        line = (f"{detected.port:>5}/{detected.protocol:<4} {detected.name:<16} "
                f"{detected.confidence:5.1f}%  {product}")
        if detected.extra_info:
            line += f" ({detected.extra_info})"
        if detected.vulnerabilities:
            line += colored(f"  [{len(detected.vulnerabilities)} known issue(s)]", ConsoleColors.RED)
        return line

    @staticmethod
    def os_candidate(rank: int, candidate: OSFingerprintCandidate) -> str:
        methods = ", ".join(sorted(candidate.contributing_methods))
        return (f"{rank}. {candidate.name} [{candidate.family}] "
                f"{candidate.confidence:.0f}% ({candidate.device_type}; {methods})")

    @staticmethod
    def firewall(analysis: FirewallAnalysis) -> str:
        verdict = "DETECTED" if analysis.detected else "not detected"
        color = ConsoleColors.YELLOW if analysis.detected else ConsoleColors.GREEN
        lines = [colored(f"Firewall {verdict} (confidence {analysis.confidence:.0f}%, "
                         f"type {analysis.type.value if analysis.type else 'unknown'})", color)]
        lines.extend(f"  - {indicator}" for indicator in analysis.indicators)
        if analysis.fingerprint:
            lines.append(f"  fingerprint: {analysis.fingerprint}")
        return "\n".join(lines)

    @staticmethod
    def script(result: ScriptResult) -> str:
        where = f"{result.host}:{result.port}" if result.port is not None else result.host
        title = colored(f"[{result.severity.value.upper()}] {result.script_id} @ {where} "
                        f"({result.state.value}, {result.duration_ms:.0f}ms)",
                        SEVERITY_COLORS.get(result.severity, ""))
        body = "\n".join(f"    {line}" for line in result.output.splitlines())
        return f"{title}\n{body}" if body else title

    @staticmethod
    def progress(percent: float, label: Optional[str] = None) -> str:
        filled = int(max(0.0, min(percent, 100.0)) / 5)
        bar = "#" * filled + "-" * (20 - filled)
        suffix = f" {label}" if label else ""
        return colored(f"[{bar}] {percent:5.1f}%{suffix}", ConsoleColors.CYAN)
