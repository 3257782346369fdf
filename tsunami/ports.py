from __future__ import annotations

import re
from typing import Iterable, List

from . import config
from .errors import InvalidPort

_RANGE = re.compile(r"^(\d+)-(\d+)$")
_DURATION = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m)?$")
_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, None: 1.0}


def validate_port(port) -> int:
    if isinstance(port, bool) or not isinstance(port, int):
        raise InvalidPort(port, "not an integer")
    if port < 1 or port > 65535:
        raise InvalidPort(port)
    return port


def parse_port(text: str) -> int:
    text = text.strip()
    if not text.isdecimal():
        raise InvalidPort(text)
    return validate_port(int(text))


def expand_port_args(args: Iterable[str], max_range: int = config.MAX_PORT_RANGE) -> List[int]:
    """
    Expands command line port arguments into a list of ports.
    Supports:
    - Single ports: "3000"
    - Ranges: "3000-3010"
    - Comma-separated: "3000,8080,9000"
    Order is kept as given; repeats are dropped.
    """
    ports: List[int] = []
    for arg in args:
        for part in arg.split(","):
            part = part.strip()
            if not part:
                continue
            m = _RANGE.match(part)
            if m:
                start = parse_port(m.group(1))
                end = parse_port(m.group(2))
                if start > end:
                    raise InvalidPort(part, "start > end")
                if end - start > max_range:
                    raise InvalidPort(part, f"range too large, max {max_range} ports")
                ports.extend(range(start, end + 1))
            else:
                ports.append(parse_port(part))

    seen = set()
    return [p for p in ports if not (p in seen or seen.add(p))]


def parse_duration(text: str) -> float:
    """"2", "2.5", "2s", "500ms" and "1m" all become seconds."""
    m = _DURATION.match(text.strip().lower())
    if not m:
        raise ValueError(f"invalid duration: {text!r}")
    return float(m.group(1)) * _UNITS[m.group(2)]
