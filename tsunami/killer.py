"""
Signal delivery and graceful termination.

terminate_with_escalation() sends SIGTERM, polls with a zero signal until
the process is gone or the wait runs out, then sends SIGKILL once.
"""
from __future__ import annotations

import logging
import os
import time
from typing import Callable

from . import config
from .errors import PermissionDenied, ProcessNotFound, SignalFailed, UnknownSignal
from .models import Signal

logger = logging.getLogger(__name__)


def parse_signal(name: str) -> Signal:
    """"term", "SIGTERM", "Term" -> Signal.TERM. Anything unknown raises."""
    key = (name or "").strip().upper()
    if key.startswith("SIG"):
        key = key[3:]
    try:
        return Signal(key)
    except ValueError:
        raise UnknownSignal(name) from None


def send_signal(pid: int, sig: Signal) -> None:
    if pid < 1:
        # 0 and negatives address process groups in kill(2)
        raise ProcessNotFound(pid)
    logger.debug("sending SIG%s to PID %d", sig, pid)
    try:
        os.kill(pid, sig.number)
    except ProcessLookupError as e:
        raise ProcessNotFound(pid) from e
    except PermissionError as e:
        raise PermissionDenied(pid) from e
    except OSError as e:
        raise SignalFailed(pid, sig, e) from e


def is_alive(pid: int) -> bool:
    if pid < 1:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by someone else
        return True
    except OSError:
        return False
    return True


def terminate_with_escalation(
    pid: int,
    wait: float = config.DEFAULT_TIMEOUT,
    poll_interval: float = config.POLL_INTERVAL,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> Signal:
    """
    Returns the signal that ended the process: TERM if it exited within
    `wait` seconds, KILL if it had to be forced. Errors from the first
    SIGTERM or from the SIGKILL propagate unchanged.
    """
    send_signal(pid, Signal.TERM)

    deadline = clock() + wait
    while clock() < deadline:
        if not is_alive(pid):
            logger.info("PID %d exited after SIGTERM", pid)
            return Signal.TERM
        sleep(poll_interval)

    # it may have exited between the last probe and the deadline
    if not is_alive(pid):
        logger.info("PID %d exited after SIGTERM", pid)
        return Signal.TERM

    logger.warning("PID %d still alive after %.1fs, sending SIGKILL", pid, wait)
    send_signal(pid, Signal.KILL)
    return Signal.KILL


def terminate(pid: int, sig: Signal, wait: float = config.DEFAULT_TIMEOUT) -> Signal:
    """TERM escalates; any explicitly chosen signal is sent exactly once."""
    if sig is Signal.TERM:
        return terminate_with_escalation(pid, wait)
    send_signal(pid, sig)
    return sig
