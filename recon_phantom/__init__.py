"""
Recon Phantom v1.0.0 - Application-Layer Reconnaissance Toolkit
===============================================================

Port scanning, service identification, OS inference, firewall analysis
and security scripts built only on application-layer probes (timed
connections and HTTP requests), no raw sockets.

Usage:
    from recon_phantom import ReconEngine
    from recon_phantom.config import ConfigManager

Author: Recon Phantom Team
Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Recon Phantom Team"

from recon_phantom.core.target_parser import parse_target
from recon_phantom.engine import ReconEngine

__all__ = [
    'ReconEngine',
    'parse_target',
    '__version__',
]
