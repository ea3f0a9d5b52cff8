"""Command-line entry point for the GPS verification engine.

    scout-gps ports
    scout-gps probe /dev/ttyUSB0 --baud 9600
    scout-gps scan
    scout-gps monitor [PORT] [--duration 30]
    scout-gps test [PORT] [--criterion min_satellites=8 ...] [--save]
    scout-gps optimize [PORT]

Commands that need a receiver auto-detect one when no port is given.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .api import CommandResult, GPSTestEngine
from .config import DEFAULT_CONFIG_PATH, EngineConfig
from .core.logging_utils import LOG_LEVELS, configure_logging, get_module_logger
from .gps_core.constants import DEFAULT_BAUD_RATE

logger = get_module_logger("CLI")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ERROR = 2


def positive_float(value: str) -> float:
    """Ensure CLI floating point parameters are strictly positive."""
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("Value must be a number") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("Value must be positive")
    return parsed


def criterion_assignment(value: str) -> tuple[str, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError("Criterion must look like name=value")
    name, raw = value.split("=", 1)
    return name.strip(), raw.strip()


def _add_port_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("port", nargs=None if required else "?", default=None,
                        help="Serial port name (auto-detected when omitted)" if not required
                        else "Serial port name")
    parser.add_argument("--baud", type=int, default=DEFAULT_BAUD_RATE,
                        help="Baud rate for an explicit port")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scout-gps",
        description="GPS receiver acquisition and acceptance testing",
    )
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH,
                        help="key = value configuration file")
    parser.add_argument("--log-level", choices=sorted(LOG_LEVELS.keys()), default=None,
                        help="Logging verbosity")
    parser.add_argument("--log-file", default=None, help="Optional path to write logs")
    parser.add_argument("--baud-rates", dest="baud_rates", default=None,
                        help="Comma separated candidate baud rates for discovery")
    parser.add_argument("--probe-timeout", type=positive_float, default=None,
                        help="Seconds to wait for NMEA on each port/baud")
    parser.add_argument("--interval", type=positive_float, default=None,
                        help="Sampling interval in seconds")
    parser.add_argument("--results-dir", default=None, help="Directory for saved test reports")
    parser.add_argument("--no-ubx", action="store_true", default=None,
                        help="Ignore UBX binary frames")
    parser.add_argument("--no-ublox-config", dest="no_ublox_config", action="store_true",
                        default=None,
                        help="Do not enable multi-constellation output on u-blox receivers")
    parser.add_argument("--json", action="store_true", help="Print raw JSON results")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("ports", help="List serial ports")

    probe = commands.add_parser("probe", help="Check one port/baud for NMEA output")
    _add_port_arguments(probe, required=True)

    commands.add_parser("scan", help="Search all ports for a GPS receiver")

    monitor = commands.add_parser("monitor", help="Print the live navigation state")
    _add_port_arguments(monitor, required=False)
    monitor.add_argument("--duration", type=positive_float, default=None,
                         help="Stop after this many seconds")

    test = commands.add_parser("test", help="Run an acceptance test")
    _add_port_arguments(test, required=False)
    test.add_argument("--criterion", dest="criteria", action="append", default=[],
                      type=criterion_assignment, metavar="NAME=VALUE",
                      help="Override one acceptance criterion (repeatable)")
    test.add_argument("--save", action="store_true", help="Write the report as JSON")

    optimize = commands.add_parser("optimize", help="Apply the marine profile to a u-blox receiver")
    _add_port_arguments(optimize, required=False)

    return parser


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _emit(result: CommandResult, as_json: bool) -> bool:
    if as_json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    elif not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
    return result.success


def _format_ports(ports: List[Dict[str, Any]]) -> str:
    if not ports:
        return "No serial ports found."
    lines = []
    for port in ports:
        marker = "*" if port["is_likely_gps"] else " "
        label = port["product"] or port["description"] or ""
        lines.append(f"{marker} {port['name']:<16} {port['port_type']:<10} {label}")
    return "\n".join(lines)


def _format_state(state: Dict[str, Any]) -> str:
    fix = state.get("fix_quality_label") or "No fix"
    parts = [fix]
    if state.get("latitude") is not None and state.get("longitude") is not None:
        parts.append(f"{state['latitude']:.6f}, {state['longitude']:.6f}")
    parts.append(f"sats {state.get('satellites_in_use') or 0}/{len(state.get('satellites') or [])}")
    if state.get("hdop") is not None:
        parts.append(f"HDOP {state['hdop']:.1f}")
    if state.get("speed_kmh") is not None:
        parts.append(f"{state['speed_kmh']:.1f} km/h")
    return " | ".join(parts)


def _format_test(result: Dict[str, Any]) -> str:
    lines = [f"Verdict: {result['verdict'].upper()}"]
    ttff = result.get("ttff_seconds")
    lines.append(f"Time to first fix: {'-' if ttff is None else f'{ttff:.1f}s'}")
    for row in result["criteria_results"]:
        mark = "PASS" if row["passed"] else "FAIL"
        lines.append(f"  [{mark}] {row['name']:<24} expected {row['expected']:<8} actual {row['actual']}")
    return "\n".join(lines)


def _format_optimization(status: Dict[str, Any]) -> str:
    if status["phase"] == "error":
        return f"Optimization failed: {status['error']}"
    report = status.get("report")
    if not report:
        return f"Optimization {status['phase']}"
    chip = report["chip"]
    return "\n".join([
        f"Chip: {chip['chip_name']} ({chip['series']})",
        f"Profile: {report['profile_applied']}",
        f"HDOP improvement: {report['hdop_improvement_pct']:+.1f}%",
        f"Satellite improvement: {report['satellite_improvement_pct']:+.1f}%",
        f"SNR improvement: {report['snr_improvement_pct']:+.1f}%",
        f"Constellations: {report['constellation_improvement']:+d}",
    ])


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _ensure_connected(engine: GPSTestEngine, args: argparse.Namespace) -> bool:
    if args.port:
        result = await engine.connect(args.port, args.baud)
        if not result.success:
            print(f"Error: {result.error}", file=sys.stderr)
        return result.success

    logger.info("No port given, searching for a receiver")
    result = await engine.auto_detect(wait=True)
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return False
    if result.data["connected"] is None:
        print("No GPS receiver found.", file=sys.stderr)
        return False
    found = result.data["connected"]
    print(f"Using {found['port']['name']} at {found['baud_rate']} baud")
    return True


async def _wait(stop: asyncio.Event, seconds: float) -> bool:
    """Sleep up to ``seconds``. Returns True if a stop was requested."""
    with contextlib.suppress(asyncio.TimeoutError):
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    return stop.is_set()


async def cmd_ports(engine: GPSTestEngine, args: argparse.Namespace, stop: asyncio.Event) -> int:
    result = await engine.list_ports()
    if not _emit(result, args.json):
        return EXIT_ERROR
    if not args.json:
        print(_format_ports(result.data))
    return EXIT_OK


async def cmd_probe(engine: GPSTestEngine, args: argparse.Namespace, stop: asyncio.Event) -> int:
    result = await engine.test_port(args.port, args.baud)
    if not _emit(result, args.json):
        return EXIT_ERROR
    detected = result.data["nmea_detected"]
    if not args.json:
        print(f"{args.port} @ {args.baud}: {'NMEA detected' if detected else 'no NMEA'}")
    return EXIT_OK if detected else EXIT_FAILED


async def cmd_scan(engine: GPSTestEngine, args: argparse.Namespace, stop: asyncio.Event) -> int:
    result = await engine.auto_detect(wait=True)
    if not _emit(result, args.json):
        return EXIT_ERROR
    if not args.json:
        found = result.data["found"]
        if not found:
            print("No GPS receiver found.")
        for item in found:
            print(f"{item['port']['name']} at {item['baud_rate']} baud")
    return EXIT_OK if result.data["found"] else EXIT_FAILED


async def cmd_monitor(engine: GPSTestEngine, args: argparse.Namespace, stop: asyncio.Event) -> int:
    if not await _ensure_connected(engine, args):
        return EXIT_ERROR

    loop = asyncio.get_running_loop()
    deadline = None if args.duration is None else loop.time() + args.duration
    while deadline is None or loop.time() < deadline:
        state = await engine.get_navigation_state()
        status = await engine.get_connection_status()
        if args.json:
            print(json.dumps(state.data, default=str))
        else:
            print(f"[{status.data['state']}] {_format_state(state.data)}")
        if status.data["state"] == "error":
            print(f"Error: {status.data['last_error']}", file=sys.stderr)
            return EXIT_ERROR
        if await _wait(stop, engine.config.sample_interval_s * 2):
            break
    return EXIT_OK


async def cmd_test(engine: GPSTestEngine, args: argparse.Namespace, stop: asyncio.Event) -> int:
    if args.criteria:
        result = await engine.set_criteria(dict(args.criteria))
        if not _emit(result, False):
            return EXIT_ERROR

    if not await _ensure_connected(engine, args):
        return EXIT_ERROR

    started = await engine.start_test()
    if not _emit(started, False):
        return EXIT_ERROR

    waiter = asyncio.create_task(engine.wait_for_test())
    stopper = asyncio.create_task(stop.wait())
    done, _ = await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)
    stopper.cancel()
    if waiter not in done:
        await engine.abort_test()
        await asyncio.gather(waiter, return_exceptions=True)
        print("Test aborted.", file=sys.stderr)
        return EXIT_ERROR

    status = await engine.get_test_status()
    if args.json:
        print(json.dumps(status.data, indent=2, default=str))
    else:
        print(_format_test(status.data))

    if args.save:
        saved = await engine.save_test_report()
        if _emit(saved, False) and not args.json:
            print(f"Report saved to {saved.data['path']}")

    return EXIT_OK if status.data["verdict"] == "pass" else EXIT_FAILED


async def cmd_optimize(engine: GPSTestEngine, args: argparse.Namespace, stop: asyncio.Event) -> int:
    if not await _ensure_connected(engine, args):
        return EXIT_ERROR

    started = await engine.start_optimization()
    if not _emit(started, False):
        return EXIT_ERROR

    last_phase = None
    while True:
        status = (await engine.get_optimization_status()).data
        if status["phase"] != last_phase:
            last_phase = status["phase"]
            if not args.json:
                print(f"Phase: {last_phase}")
        if status["phase"] in ("complete", "error"):
            break
        if await _wait(stop, 1.0):
            await engine.abort_optimization()
            print("Optimization aborted.", file=sys.stderr)
            return EXIT_ERROR

    if args.json:
        print(json.dumps(status, indent=2, default=str))
    else:
        print(_format_optimization(status))
    return EXIT_OK if status["phase"] == "complete" else EXIT_FAILED


COMMANDS = {
    "ports": cmd_ports,
    "probe": cmd_probe,
    "scan": cmd_scan,
    "monitor": cmd_monitor,
    "test": cmd_test,
    "optimize": cmd_optimize,
}


def install_signal_handlers(loop: asyncio.AbstractEventLoop, stop: asyncio.Event) -> None:
    """Register SIGINT/SIGTERM handlers that request a clean stop."""
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)


async def run(args: argparse.Namespace, engine: Optional[GPSTestEngine] = None) -> int:
    if engine is None:
        engine = GPSTestEngine(EngineConfig.from_file(args.config, args))

    stop = asyncio.Event()
    install_signal_handlers(asyncio.get_running_loop(), stop)
    try:
        return await COMMANDS[args.command](engine, args, stop)
    finally:
        await engine.shutdown()


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = EngineConfig.from_file(args.config, args)
    configure_logging(
        config.log_level,
        config.log_file or None,
        console_output=config.console_output,
    )

    try:
        return asyncio.run(run(args, GPSTestEngine(config)))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
