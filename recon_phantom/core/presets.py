"""
Scan Presets
============

Timing templates and port presets shared by the engine and the CLI.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

from .exceptions import ReconError


class PortSpecError(ReconError, ValueError):
    """Port specification could not be parsed."""


@dataclass(frozen=True)
class TimingTemplate:
    """
    Pacing profile for a scan.

    Attributes:
        name: Template name
        delay_ms: Pause between batches
        parallel: Probes per batch
        timeout_ms: Budget per probe
        retries: Re-probes for ports that ended in timeout
    """
    name: str
    delay_ms: int
    parallel: int
    timeout_ms: int
    retries: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "delay_ms": self.delay_ms,
            "parallel": self.parallel,
            "timeout_ms": self.timeout_ms,
            "retries": self.retries,
        }


TIMING_PRESETS: Dict[str, TimingTemplate] = {
    "paranoid": TimingTemplate("paranoid", delay_ms=5000, parallel=1, timeout_ms=60000, retries=10),
    "sneaky": TimingTemplate("sneaky", delay_ms=1000, parallel=1, timeout_ms=30000, retries=5),
    "polite": TimingTemplate("polite", delay_ms=400, parallel=2, timeout_ms=10000, retries=3),
    "normal": TimingTemplate("normal", delay_ms=100, parallel=10, timeout_ms=5000, retries=2),
    "aggressive": TimingTemplate("aggressive", delay_ms=10, parallel=50, timeout_ms=1250, retries=1),
    "insane": TimingTemplate("insane", delay_ms=0, parallel=100, timeout_ms=300, retries=0),
}


TOP_100_PORTS: Tuple[int, ...] = (
    7, 9, 13, 21, 22, 23, 25, 26, 37, 53, 79, 80, 81, 88, 106, 110, 111, 113, 119, 135,
    139, 143, 144, 179, 199, 389, 427, 443, 444, 445, 465, 513, 514, 515, 543, 544, 548,
    554, 587, 631, 646, 873, 990, 993, 995, 1025, 1026, 1027, 1028, 1029, 1110, 1433, 1720,
    1723, 1755, 1900, 2000, 2001, 2049, 2121, 2717, 3000, 3128, 3306, 3389, 3986, 4899, 5000,
    5009, 5051, 5060, 5101, 5190, 5357, 5432, 5631, 5666, 5800, 5900, 6000, 6001, 6646, 7070,
    8000, 8008, 8009, 8080, 8081, 8443, 8888, 9100, 9999, 10000, 32768, 49152, 49153, 49154,
    49155, 49156, 49157,
)

PORT_PRESETS: Dict[str, Tuple[int, ...]] = {
    "top100": TOP_100_PORTS,
    "top1000": tuple(range(1, 1001)),
    "all": tuple(range(1, 65536)),
}


def get_timing_template(name: str) -> TimingTemplate:
    try:
        return TIMING_PRESETS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown timing template '{name}'. Choose from: {', '.join(TIMING_PRESETS)}"
        ) from None


def _parse_port(text: str) -> int:
    try:
        port = int(text)
    except ValueError:
        raise PortSpecError(f"Invalid port: {text!r}") from None
    if not 1 <= port <= 65535:
        raise PortSpecError(f"Port out of range (1-65535): {port}")
    return port


def parse_port_spec(spec: str) -> List[int]:
    """
    Parse a port specification.

    Accepts preset names (top100, top1000, all), single ports and
    inclusive ranges separated by commas: "22,80,8000-8010".

    Returns:
        Sorted list of unique ports

    Raises:
        PortSpecError: Malformed entry or out-of-range port
    """
    if not spec or not spec.strip():
        raise PortSpecError("Empty port specification")

    preset = PORT_PRESETS.get(spec.strip().lower())
    if preset is not None:
        return list(preset)

    ports = set()
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_text, _, end_text = part.partition("-")
            start, end = _parse_port(start_text.strip()), _parse_port(end_text.strip())
            if end < start:
                raise PortSpecError(f"Invalid port range: {part}")
            ports.update(range(start, end + 1))
        else:
            ports.add(_parse_port(part))

    if not ports:
        raise PortSpecError("Empty port specification")
    return sorted(ports)
