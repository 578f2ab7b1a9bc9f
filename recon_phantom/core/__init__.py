"""
Core module initialization for Recon Phantom.
"""

from .exceptions import (
    InvalidTargetFormat,
    ProbeError,
    ProbeFiltered,
    ProbeOpaqueError,
    ProbeTimeout,
    ReconError,
    ScanCancelled,
    ScriptAlreadyRunning,
    UnsupportedScanTypeDegraded,
)
from .models import (
    DetectedService,
    DiscoveryObservation,
    FirewallAnalysis,
    OSFingerprintCandidate,
    PortObservation,
    PortStatus,
    ScanType,
    ScriptResult,
    SecurityScript,
    Severity,
)

__all__ = [
    'InvalidTargetFormat',
    'ProbeError',
    'ProbeFiltered',
    'ProbeOpaqueError',
    'ProbeTimeout',
    'ReconError',
    'ScanCancelled',
    'ScriptAlreadyRunning',
    'UnsupportedScanTypeDegraded',
    'DetectedService',
    'DiscoveryObservation',
    'FirewallAnalysis',
    'OSFingerprintCandidate',
    'PortObservation',
    'PortStatus',
    'ScanType',
    'ScriptResult',
    'SecurityScript',
    'Severity',
]
