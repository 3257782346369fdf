"""
Listening-socket resolver.

Two strategies produce the same PortBinding snapshot:

- Linux: read the kernel socket tables under /proc/net and map each
  listening socket inode back to a process through /proc/<pid>/fd.
- macOS: run lsof restricted to TCP sockets in LISTEN state.

The inode join walks every process's descriptor table, so the first
process found holding the inode is reported. A socket inherited by
several processes is attributed to whichever one the walk reaches first.
"""
from __future__ import annotations

import logging
import os
import platform
import pwd
import shutil
import socket
import struct
import subprocess
from typing import Callable, Dict, List, Optional, Tuple

from . import config
from .errors import PlatformUnsupported, SourceUnavailable
from .models import PROTO_TCP, PROTO_TCP6, PortBinding
from .ports import validate_port

logger = logging.getLogger(__name__)

LISTEN_STATE = "0A"
PROC_NET_TABLES = (
    ("net/tcp", PROTO_TCP, True),
    ("net/tcp6", PROTO_TCP6, False),  # absent when IPv6 is disabled
)
MIN_PROC_FIELDS = 10
MIN_LSOF_FIELDS = 9

ProcessIndex = Dict[str, Tuple[int, str]]


def scan(system: Optional[str] = None) -> List[PortBinding]:
    """Fresh snapshot of listening TCP sockets, ascending by port."""
    system = system if system is not None else platform.system()
    strategy = STRATEGIES.get(system)
    if strategy is None:
        raise PlatformUnsupported(system)

    bindings = strategy()
    logger.debug("scan via %s found %d listening sockets", strategy.__name__, len(bindings))
    # sorted() is stable, so equal ports keep source order
    return sorted(bindings, key=lambda b: b.port)


def find_by_port(port: int, system: Optional[str] = None) -> List[PortBinding]:
    """All bindings on exactly this port. Several only when the port is shared."""
    validate_port(port)
    return [b for b in scan(system) if b.port == port]


# ---------------------------------------------------------------------------
# Linux: /proc/net/tcp{,6}
# ---------------------------------------------------------------------------


def decode_address(field: str) -> Tuple[str, int]:
    """
    Decodes a kernel table address such as "0100007F:0050" into
    ("127.0.0.1", 80). IPv4 is one little-endian word, IPv6 is four.
    """
    ip_hex, sep, port_hex = field.partition(":")
    if not sep:
        raise ValueError(f"no port in address {field!r}")
    port = int(port_hex, 16)
    raw = bytes.fromhex(ip_hex)
    if len(raw) == 4:
        ip = socket.inet_ntop(socket.AF_INET, struct.pack("<I", *struct.unpack(">I", raw)))
    elif len(raw) == 16:
        words = struct.unpack(">4I", raw)
        ip = socket.inet_ntop(socket.AF_INET6, struct.pack("<4I", *words))
    else:
        raise ValueError(f"bad address length in {field!r}")
    if not 1 <= port <= 65535:
        raise ValueError(f"port out of range in {field!r}")
    return ip, port


def lookup_user(uid: str) -> str:
    try:
        return pwd.getpwuid(int(uid)).pw_name
    except (KeyError, ValueError, OverflowError):
        return uid


def build_process_index(proc_root: str = config.PROC_ROOT) -> ProcessIndex:
    """
    Maps socket inode -> (pid, comm) by reading every fd symlink under
    proc_root. Processes we cannot inspect are skipped; first pid wins.
    """
    index: ProcessIndex = {}
    try:
        entries = os.listdir(proc_root)
    except OSError as e:
        raise SourceUnavailable(f"cannot list {proc_root}: {e}") from e

    for name in entries:
        if not name.isdecimal():
            continue
        fd_dir = os.path.join(proc_root, name, "fd")
        try:
            fds = os.listdir(fd_dir)
        except OSError:
            continue

        comm = None
        for fd in fds:
            try:
                link = os.readlink(os.path.join(fd_dir, fd))
            except OSError:
                continue
            if not (link.startswith("socket:[") and link.endswith("]")):
                continue
            inode = link[8:-1]
            if inode in index:
                continue
            if comm is None:
                comm = _read_comm(proc_root, name)
            index[inode] = (int(name), comm)
    return index


def _read_comm(proc_root: str, pid: str) -> str:
    try:
        with open(os.path.join(proc_root, pid, "comm"), "r", encoding="utf-8", errors="replace") as f:
            return f.read().strip()
    except OSError:
        return ""


def parse_proc_net_tcp(
    path: str,
    proto: str,
    resolve: Callable[[str], Optional[Tuple[int, str]]],
) -> List[PortBinding]:
    """
    Parses one /proc/net/tcp style table. `resolve` maps an inode to
    (pid, comm) or None; unattributed sockets are dropped.
    """
    bindings: List[PortBinding] = []
    users: Dict[str, str] = {}

    with open(path, "r", encoding="ascii", errors="replace") as f:
        next(f, None)  # header
        for line in f:
            fields = line.split()
            if len(fields) < MIN_PROC_FIELDS:
                continue
            if fields[3] != LISTEN_STATE:
                continue
            try:
                _, port = decode_address(fields[1])
            except ValueError as e:
                logger.debug("skipping %s record: %s", proto, e)
                continue

            inode = fields[9]
            owner = resolve(inode)
            if owner is None:
                logger.debug("no process owns %s socket inode %s (port %d)", proto, inode, port)
                continue
            pid, comm = owner

            uid = fields[7]
            if uid not in users:
                users[uid] = lookup_user(uid)

            bindings.append(PortBinding(port=port, pid=pid, process=comm, user=users[uid], proto=proto))
    return bindings


def scan_linux(proc_root: str = config.PROC_ROOT) -> List[PortBinding]:
    bindings: List[PortBinding] = []
    index: Optional[ProcessIndex] = None

    def resolve(inode: str) -> Optional[Tuple[int, str]]:
        nonlocal index
        if index is None:
            index = build_process_index(proc_root)
        return index.get(inode)

    for rel, proto, required in PROC_NET_TABLES:
        path = os.path.join(proc_root, rel)
        try:
            bindings.extend(parse_proc_net_tcp(path, proto, resolve))
        except FileNotFoundError as e:
            if required:
                raise SourceUnavailable(f"kernel socket table missing: {path}") from e
            logger.debug("%s not present, skipping", path)
        except OSError as e:
            raise SourceUnavailable(f"cannot read {path}: {e}") from e
    return bindings


# ---------------------------------------------------------------------------
# macOS: lsof
# ---------------------------------------------------------------------------


def port_from_lsof_name(name: str) -> int:
    """
    Port from an lsof NAME field: "*:3000", "127.0.0.1:3000", "[::1]:6379".
    Returns 0 when there is no usable port.
    """
    _, sep, port_s = name.rpartition(":")
    if not sep or not port_s.isdecimal():
        return 0
    port = int(port_s)
    return port if 1 <= port <= 65535 else 0


def parse_lsof_output(output: str) -> List[PortBinding]:
    """
    Parses `lsof -iTCP -sTCP:LISTEN -n -P` output, e.g.
    node      42156  mike   23u  IPv4 0x1234  0t0  TCP *:3000 (LISTEN)
    """
    bindings: List[PortBinding] = []
    lines = output.splitlines()
    for line in lines[1:]:  # COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME
        fields = line.split()
        if len(fields) < MIN_LSOF_FIELDS:
            continue
        if not fields[1].isdecimal():
            continue
        port = port_from_lsof_name(fields[8])
        if port == 0:
            continue
        proto = PROTO_TCP6 if fields[4] == "IPv6" else PROTO_TCP
        bindings.append(
            PortBinding(port=port, pid=int(fields[1]), process=fields[0], user=fields[2], proto=proto)
        )
    return bindings


def scan_darwin(lsof_bin: str = config.LSOF_BIN) -> List[PortBinding]:
    exe = shutil.which(lsof_bin)
    if exe is None:
        raise SourceUnavailable("lsof not found. Install with: brew install lsof")

    # -n / -P: no host or port name lookups
    cmd = [exe, "-iTCP", "-sTCP:LISTEN", "-n", "-P"]
    logger.debug("RUN: %s", " ".join(cmd))
    try:
        res = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise SourceUnavailable(f"lsof failed: {e}") from e

    if res.returncode != 0:
        # lsof exits 1 when nothing matched
        if res.returncode == 1 and not res.stdout.strip():
            return []
        if not res.stdout.strip():
            raise SourceUnavailable(f"lsof failed ({res.returncode}): {res.stderr.strip()}")
        logger.info("lsof exited %d with output, using partial results", res.returncode)
    return parse_lsof_output(res.stdout)


STRATEGIES: Dict[str, Callable[[], List[PortBinding]]] = {
    "Linux": scan_linux,
    "Darwin": scan_darwin,
}
