from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from . import config
from .errors import TsunamiError
from .killer import parse_signal, terminate
from .logger import setup_logging
from .models import PortBinding, Signal
from .output import filter_bindings, print_bindings
from .ports import expand_port_args, parse_duration
from .scanner import find_by_port, scan

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

EXAMPLES = """\
examples:
  tsunami                    interactive selector
  tsunami 3000               kill process on port 3000 (with confirmation)
  tsunami 3000 -f            kill without confirmation
  tsunami 3000-3010          ports 3000 through 3010
  tsunami 3000,8080,9000     comma-separated ports
  tsunami -l --json          list listening ports as JSON
  tsunami -l --filter node   list only node processes
  tsunami 3000 -s KILL       send SIGKILL immediately
  tsunami 3000 --timeout 5s  wait 5s before escalating to SIGKILL
  tsunami --pid 1234         kill a process by PID
"""


def _duration(text: str) -> float:
    try:
        return parse_duration(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="tsunami",
        description="Kill processes listening on TCP ports. Sends SIGTERM and "
        "escalates to SIGKILL if the process does not exit in time.",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("ports", nargs="*", help="Ports: 3000, 3000-3010 or 3000,8080")
    p.add_argument("-f", "--force", action="store_true", help="Skip confirmation prompt")
    p.add_argument("-s", "--signal", default="TERM", help="Signal to send: TERM, KILL, INT, HUP (default: TERM)")
    p.add_argument("-l", "--list", action="store_true", help="List listening ports and exit")
    p.add_argument("-q", "--quiet", action="store_true", help="Suppress output except errors")
    p.add_argument("-n", "--dry-run", action="store_true", help="Show what would be killed without killing")
    p.add_argument("-a", "--all", action="store_true", help="Kill all processes on a port when several share it")
    p.add_argument("--json", action="store_true", help="JSON output (with --list)")
    p.add_argument("--filter", default="", help="Filter by process name or user=<name> (with --list)")
    p.add_argument(
        "-t",
        "--timeout",
        type=_duration,
        default=config.DEFAULT_TIMEOUT,
        help=f"Wait before escalating SIGTERM to SIGKILL, e.g. 2s or 500ms (default: {config.DEFAULT_TIMEOUT:g}s)",
    )
    p.add_argument("-p", "--pid", type=int, action="append", default=[], help="Kill a PID directly (repeatable)")
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def confirm(question: str) -> bool:
    try:
        answer = input(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def error(msg: str) -> None:
    print(f"Error: {msg}", file=sys.stderr)


def list_ports(args: argparse.Namespace) -> int:
    bindings = scan()
    if args.filter:
        bindings = filter_bindings(bindings, args.filter)
    print_bindings(bindings, as_json=args.json)
    return 0


def _describe(b: PortBinding) -> str:
    return f"{b.process or '?'} (PID {b.pid}) on port {b.port}"


def _killed(what: str, requested: Signal, used: Signal) -> str:
    if requested is Signal.TERM and used is Signal.KILL:
        return f"Killed {what} (escalated to SIGKILL)"
    return f"Killed {what}"


def kill_binding(b: PortBinding, sig: Signal, args: argparse.Namespace) -> None:
    if args.dry_run:
        print(f"Would kill: {_describe(b)} with signal {sig}")
        return
    if not args.force and not confirm(f"Kill {_describe(b)}?"):
        return

    used = terminate(b.pid, sig, args.timeout)
    if not args.quiet:
        print(_killed(_describe(b), sig, used))


def kill_port(port: int, sig: Signal, args: argparse.Namespace) -> List[str]:
    """Returns failure messages for this port; empty when everything worked."""
    matches = find_by_port(port)
    if not matches:
        return [f"no process listening on port {port}"]
    if len(matches) > 1 and not args.all:
        pids = ", ".join(str(b.pid) for b in matches)
        return [f"multiple processes on port {port}: {pids}. Use --all to kill all"]

    failures = []
    for b in matches:
        try:
            kill_binding(b, sig, args)
        except TsunamiError as e:
            failures.append(f"port {port}: {e}")
    return failures


def kill_pids(pids: List[int], sig: Signal, args: argparse.Namespace) -> List[str]:
    failures = []
    for pid in pids:
        if args.dry_run:
            print(f"Would kill: PID {pid} with signal {sig}")
            continue
        if not args.force and not confirm(f"Kill PID {pid}?"):
            continue
        try:
            used = terminate(pid, sig, args.timeout)
        except TsunamiError as e:
            failures.append(f"PID {pid}: {e}")
            continue
        if not args.quiet:
            print(_killed(f"PID {pid}", sig, used))
    return failures


def interactive(sig: Signal, args: argparse.Namespace) -> int:
    # imported here so list/kill modes work where curses is unavailable
    from .selector import run_selector

    bindings = scan()
    if not bindings:
        print("No listening ports found")
        return 0

    chosen = run_selector(bindings)
    if chosen is None:
        return 0

    used = terminate(chosen.pid, sig, args.timeout)
    if not args.quiet:
        print(_killed(_describe(chosen), sig, used))
    return 0


def _report(failures: List[str]) -> int:
    for f in failures:
        error(f)
    return 1 if failures else 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        if args.list:
            return list_ports(args)

        sig = parse_signal(args.signal)

        if args.pid:
            return _report(kill_pids(args.pid, sig, args))

        if not args.ports:
            if args.force:
                error("--force requires port argument")
                return 1
            if args.dry_run:
                error("--dry-run requires port argument")
                return 1
            return interactive(sig, args)

        ports = expand_port_args(args.ports)
        logger.debug("targets: %s", ports)
    except TsunamiError as e:
        error(str(e))
        return 1

    failures: List[str] = []
    for port in ports:
        try:
            failures.extend(kill_port(port, sig, args))
        except TsunamiError as e:
            failures.append(str(e))
    return _report(failures)


def run(argv: Optional[List[str]] = None) -> None:
    sys.exit(main(argv))
