from __future__ import annotations

import signal
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

PROTO_TCP = "tcp"
PROTO_TCP6 = "tcp6"


@dataclass(frozen=True)
class PortBinding:
    port: int
    pid: Optional[int]
    process: str
    user: str
    proto: str = PROTO_TCP

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Signal(str, Enum):
    TERM = "TERM"
    KILL = "KILL"
    INT = "INT"
    HUP = "HUP"

    @property
    def number(self) -> int:
        return int(getattr(signal, f"SIG{self.value}"))

    def __str__(self) -> str:
        return self.value
