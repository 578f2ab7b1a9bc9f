"""
Recon Phantom - Exception Taxonomy
==================================

Errors raised by the reconnaissance engine.

Per-item probing and scripting failures are converted into structured
results before they reach the caller. Only target parsing failures and
scan-level aborts escape as exceptions.

Version: 1.0.0
"""

from typing import Optional


class ReconError(Exception):
    """Base class for every engine error."""


class ConfigError(ReconError):
    """Configuration file could not be loaded or validated."""


class InvalidTargetFormat(ReconError, ValueError):
    """Target string is not an address, range, CIDR block or domain."""

    def __init__(self, target: str, reason: Optional[str] = None) -> None:
        self.target = target
        self.reason = reason
        message = f"Invalid target format: {target!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


# =============================================================================
# PROBE ERRORS
# =============================================================================

class ProbeError(ReconError):
    """
    A single probe did not produce a usable response.

    Attributes:
        host: Probed host
        port: Probed port (None for URL level probes)
        elapsed_ms: Time spent before the failure surfaced
    """

    def __init__(self, message: str, host: Optional[str] = None,
                 port: Optional[int] = None, elapsed_ms: float = 0.0) -> None:
        super().__init__(message)
        self.host = host
        self.port = port
        self.elapsed_ms = elapsed_ms


class ProbeTimeout(ProbeError):
    """No answer within the probe budget."""


class ProbeFiltered(ProbeError):
    """Target unreachable: name resolution failure or no route."""


class ProbeRefused(ProbeError):
    """Explicit connection refusal from the target."""


class ProbeOpaqueError(ProbeError):
    """
    Connection attempt failed in a way that hides the port state.

    TLS failures, resets and protocol mismatches all land here. The probe
    strategies read this as "open": something answered, it just did not
    speak the expected protocol.
    """


# =============================================================================
# SCAN / SCRIPT CONTROL FLOW
# =============================================================================

class ScanCancelled(ReconError):
    """Scan was stopped before every batch was dispatched."""

    def __init__(self, completed: int, total: int) -> None:
        self.completed = completed
        self.total = total
        super().__init__(f"Scan cancelled after {completed}/{total} items")


class ScriptAlreadyRunning(ReconError):
    """Same (script, host, port) work item is already in flight."""

    def __init__(self, script_id: str, host: str, port: Optional[int] = None) -> None:
        self.script_id = script_id
        self.host = host
        self.port = port
        super().__init__(f"Script {script_id} is already running for {host}:{port}")


class UnsupportedScanTypeDegraded(UserWarning):
    """Requested scan technique was replaced by the connect technique."""

    def __init__(self, requested: str, effective: str) -> None:
        self.requested = requested
        self.effective = effective
        super().__init__(
            f"Scan type '{requested}' is not available without raw sockets, "
            f"falling back to '{effective}'"
        )
