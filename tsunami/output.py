from __future__ import annotations

import json
from typing import List

from .models import PortBinding

PROCESS_WIDTH = 20


def filter_bindings(bindings: List[PortBinding], query: str) -> List[PortBinding]:
    """
    "user=<name>" keeps bindings owned by that user (exact, any case);
    anything else is a case-insensitive substring match on the process name.
    """
    if query.startswith("user="):
        user = query[len("user="):].lower()
        return [b for b in bindings if b.user.lower() == user]

    q = query.lower()
    return [b for b in bindings if q in b.process.lower()]


def _truncate(s: str, width: int) -> str:
    if len(s) > width:
        return s[: width - 3] + "..."
    return s


def format_row(b: PortBinding) -> str:
    pid = b.pid if b.pid is not None else "-"
    return f"{b.port:<8} {pid!s:<10} {_truncate(b.process, PROCESS_WIDTH):<20} {b.user:<15} {b.proto}"


def format_table(bindings: List[PortBinding]) -> str:
    lines = [
        f"{'PORT':<8} {'PID':<10} {'PROCESS':<20} {'USER':<15} PROTO",
        "-" * 65,
    ]
    lines.extend(format_row(b) for b in bindings)
    return "\n".join(lines)


def to_json(bindings: List[PortBinding]) -> str:
    return json.dumps([b.to_dict() for b in bindings], indent=2)


def print_bindings(bindings: List[PortBinding], as_json: bool = False) -> None:
    if as_json:
        print(to_json(bindings))
    elif not bindings:
        print("No listening ports found")
    else:
        print(format_table(bindings))


def port_category(port: int) -> str:
    if port < 1024:
        return "system"
    if port < 49152:
        return "user"
    return "ephemeral"
