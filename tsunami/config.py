"""
Runtime defaults. Every value can be overridden from the environment;
nothing is read from or written to disk.
"""

import os


def get_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def get_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


# Seconds to wait after SIGTERM before escalating to SIGKILL
DEFAULT_TIMEOUT = get_float("TSUNAMI_TIMEOUT", 2.0)
# Liveness probe interval while waiting
POLL_INTERVAL = get_float("TSUNAMI_POLL_INTERVAL", 0.1)
# Largest span accepted for a "start-end" port range
MAX_PORT_RANGE = get_int("TSUNAMI_MAX_RANGE", 1000)

LOG_LEVEL = os.getenv("TSUNAMI_LOG_LEVEL", "WARNING")

PROC_ROOT = "/proc"
LSOF_BIN = "lsof"
