#!/usr/bin/env python3
"""
Recon Phantom - Command Line Interface
======================================

USAGE:
    rp <command> [options]

COMMANDS:
    scan          Port scan a single host
    discover      Find live hosts in an address, range or CIDR block
    services      Scan, then identify services on open ports
    os            Scan, then rank operating system candidates
    firewall      Scan, then analyze filtering and rate limiting
    scripts       Scan, then run security scripts on open ports
    list-scripts  Show the script catalog

EXAMPLES:
    rp scan -t example.test -p 1-1024
    rp scan -t 10.0.0.5 -p top100 --timing aggressive
    rp discover -t 192.168.1.0/28 --methods ping http-probe
    rp scripts -t example.test -p 80,443 --scripts http-title http-headers
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from . import __version__
from .config.config_manager import ConfigManager
from .core.exceptions import InvalidTargetFormat, ReconError
from .core.models import PortStatus, ScanType
from .core.presets import TIMING_PRESETS, parse_port_spec
from .core.scan_engine import DISCOVERY_METHODS, ScanSummary
from .core.target_parser import parse_target
from .engine import ReconEngine
from .output.console import ConsoleFormatter, init_console

logger = logging.getLogger(__name__)


# =============================================================================
# ARGUMENT VALIDATION
# =============================================================================

def validate_target(value: str) -> str:
    if parse_target(value) is None:
        raise argparse.ArgumentTypeError(f"Invalid target: {value}")
    return value.strip()


def validate_port_spec(value: str) -> List[int]:
    try:
        return parse_port_spec(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def validate_positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected an integer, got {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"Must be >= 1: {number}")
    return number


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rp",
        description="Recon Phantom - application-layer reconnaissance toolkit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", default=None, help="JSON configuration file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")

    subparsers = parser.add_subparsers(dest="command", metavar="command")

    for name, help_text in (
        ("scan", "Port scan a single host"),
        ("services", "Identify services on open ports"),
        ("os", "Rank operating system candidates"),
        ("firewall", "Analyze filtering and rate limiting"),
        ("scripts", "Run security scripts on open ports"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-t", "--target", required=True, type=validate_target,
                         help="Target address or domain")
        sub.add_argument("-p", "--ports", type=validate_port_spec, default=None,
                         help="Ports: 22,80,8000-8010 or top100/top1000/all")
        sub.add_argument("-s", "--scan-type", default=ScanType.CONNECT.value,
                         choices=[t.value for t in ScanType], help="Requested scan technique")
        sub.add_argument("-T", "--timing", choices=list(TIMING_PRESETS), default=None,
                         help="Timing template")
        sub.add_argument("--timeout", type=validate_positive_int, default=None,
                         help="Probe timeout in milliseconds")
        sub.add_argument("--concurrency", type=validate_positive_int, default=None,
                         help="Probes per batch")
        if name == "scripts":
            sub.add_argument("--scripts", nargs="+", default=None, metavar="ID",
                             help="Script IDs (default: every script applicable to the open ports)")
            sub.add_argument("--category", default=None, help="Run every script in a category")

    discover = subparsers.add_parser("discover", help="Find live hosts")
    discover.add_argument("-t", "--target", required=True, type=validate_target,
                          help="Address, range or CIDR block")
    discover.add_argument("-m", "--methods", nargs="+", choices=DISCOVERY_METHODS, default=None,
                          help="Discovery methods, tried in order")

    list_scripts = subparsers.add_parser("list-scripts", help="Show the script catalog")
    list_scripts.add_argument("--category", default=None, help="Filter by category")

    return parser


# =============================================================================
# COMMANDS
# =============================================================================

def _print_log(message: str, level: str) -> None:
    print(ConsoleFormatter.log_line(message, level))


async def _scan(engine: ReconEngine, args, config: ConfigManager, quiet: bool) -> ScanSummary:
    ports = args.ports or parse_port_spec(config.get("scan.default_ports", "top100"))
    summary = await engine.scan_ports(
        args.target,
        ports=ports,
        scan_type=args.scan_type,
        timeout_ms=args.timeout,
        concurrency=args.concurrency,
        timing=args.timing,
        on_log=None if quiet else _print_log,
    )
    if not quiet:
        print(ConsoleFormatter.header("\nPORT       STATE     SERVICE        LATENCY"))
        for observation in summary.sorted_observations():
            if observation.status != PortStatus.CLOSED:
                print(ConsoleFormatter.port(observation))
        closed = summary.completed - len(summary.open_ports) - summary.count(PortStatus.FILTERED)
        print(ConsoleFormatter.info(f"{closed} closed port(s) not shown"))
    return summary


async def run_command(engine: ReconEngine, args, config: ConfigManager) -> int:
    quiet = args.json

    if args.command == "list-scripts":
        scripts = (engine.get_scripts_by_category(args.category) if args.category
                   else engine.get_available_scripts())
        if quiet:
            print(json.dumps([s.to_dict() for s in scripts], indent=2))
        else:
            for script in scripts:
                print(f"{script.id:<26} {script.category.value:<10} {script.description}")
        return 0

    if args.command == "discover":
        methods = args.methods or config.get("discovery.methods", ["ping"])
        hosts = await engine.discover_hosts(args.target, methods,
                                            on_log=None if quiet else _print_log)
        if quiet:
            print(json.dumps([h.to_dict() for h in hosts], indent=2))
        else:
            for host in hosts:
                print(ConsoleFormatter.host(host))
        return 0

    summary = await _scan(engine, args, config, quiet)
    if summary.cancelled:
        print(ConsoleFormatter.warning("Scan interrupted, results are partial"), file=sys.stderr)

    if args.command == "scan":
        if quiet:
            print(json.dumps(summary.to_dict(), indent=2))
        return 0

    open_ports = summary.open_ports
    if args.command == "services":
        services = await engine.detect_services(args.target, open_ports)
        if quiet:
            print(json.dumps([s.to_dict() for s in services], indent=2))
        else:
            print(ConsoleFormatter.header("\nSERVICES"))
            for service in services:
                print(ConsoleFormatter.service(service))
        return 0

    if args.command == "os":
        candidates = await engine.fingerprint_os(args.target, open_ports)
        if quiet:
            print(json.dumps([c.to_dict() for c in candidates], indent=2))
        elif not candidates:
            print(ConsoleFormatter.warning("No OS candidates"))
        else:
            print(ConsoleFormatter.header("\nOS CANDIDATES"))
            for rank, candidate in enumerate(candidates, 1):
                print(ConsoleFormatter.os_candidate(rank, candidate))
        return 0

    if args.command == "firewall":
        analysis = await engine.analyze_firewall(
            args.target, summary.observations,
            on_progress=None if quiet else (lambda p: print(ConsoleFormatter.progress(p, "firewall"))),
        )
        if quiet:
            print(json.dumps(analysis.to_dict(), indent=2))
        else:
            print(ConsoleFormatter.firewall(analysis))
        return 0

    if args.command == "scripts":
        if args.scripts:
            script_ids = args.scripts
        elif args.category:
            script_ids = [s.id for s in engine.get_scripts_by_category(args.category)]
        else:
            script_ids = [s.id for s in engine.get_available_scripts()
                          if s.host_rule is None and s.category.value != "intrusive"]
        results = await engine.run_scripts(
            script_ids, args.target, open_ports,
            on_result=None if quiet else (lambda r: print(ConsoleFormatter.script(r))),
        )
        if quiet:
            print(json.dumps([r.to_dict() for r in results], indent=2))
        return 0

    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    config = ConfigManager(args.config)
    if args.config:
        config.load()

    level = "DEBUG" if args.verbose else config.get("general.log_level", "INFO")
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    init_console(bool(config.get("general.colors_enabled", True)) and not args.no_color)

    try:
        engine = ReconEngine.from_config(config)
    except ValueError as e:
        print(ConsoleFormatter.error(f"Invalid configuration: {e}"), file=sys.stderr)
        return 2

    loop = asyncio.new_event_loop()
    task = loop.create_task(run_command(engine, args, config))
    try:
        while True:
            try:
                return loop.run_until_complete(task)
            except KeyboardInterrupt:
                if task.done():
                    raise
                print(ConsoleFormatter.warning("Interrupted, stopping after the current batch"),
                      file=sys.stderr)
                engine.stop_scan()
                engine.script_engine.stop_all_scripts()
    except InvalidTargetFormat as e:
        print(ConsoleFormatter.error(str(e)), file=sys.stderr)
        return 2
    except ReconError as e:
        print(ConsoleFormatter.error(str(e)), file=sys.stderr)
        return 1
    finally:
        engine.close()
        loop.close()


if __name__ == "__main__":
    sys.exit(main())
