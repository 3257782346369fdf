from __future__ import annotations

from typing import Optional


class TsunamiError(Exception):
    """Base class for everything the resolver and terminator raise."""


# Resolver


class PlatformUnsupported(TsunamiError):
    def __init__(self, system: str):
        super().__init__(f"unsupported platform: {system or 'unknown'}")
        self.system = system


class SourceUnavailable(TsunamiError):
    pass


class InvalidPort(TsunamiError, ValueError):
    def __init__(self, value, reason: str = "must be 1-65535"):
        super().__init__(f"invalid port: {value} ({reason})")
        self.value = value


# Terminator


class ProcessNotFound(TsunamiError):
    def __init__(self, pid: int):
        super().__init__(f"process not found: PID {pid}")
        self.pid = pid


class PermissionDenied(TsunamiError):
    def __init__(self, pid: int):
        super().__init__(f"permission denied signaling PID {pid}. Try sudo")
        self.pid = pid


class SignalFailed(TsunamiError):
    def __init__(self, pid: int, sig, cause: Optional[OSError] = None):
        detail = f": {cause.strerror or cause}" if cause is not None else ""
        super().__init__(f"failed to send SIG{sig} to PID {pid}{detail}")
        self.pid = pid
        self.sig = sig


class UnknownSignal(TsunamiError, ValueError):
    def __init__(self, name: str):
        super().__init__(f"unknown signal: {name!r} (valid: TERM, KILL, INT, HUP)")
        self.name = name
