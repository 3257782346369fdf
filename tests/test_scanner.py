import os
import subprocess

import pytest

from tsunami import scanner
from tsunami.errors import InvalidPort, PlatformUnsupported, SourceUnavailable
from tsunami.models import PortBinding

TCP_HEADER = "  sl  local_address rem_address   st tx_queue rx_queue tr tm->when retrnsmt   uid  timeout inode\n"

TCP_TABLE = TCP_HEADER + (
    "   0: 00000000:0BB8 00000000:0000 0A 00000000:00000000 00:00000000 00000000  1000        0 12345 1 0000000000000000 100 0 0 10 0\n"
    "   1: 0100007F:0050 00000000:0000 0A 00000000:00000000 00:00000000 00000000     0        0 67890 1 0000000000000000 100 0 0 10 0\n"
    "   2: 00000000:1F90 00000000:0000 01 00000000:00000000 00:00000000 00000000  1000        0 11111 1 0000000000000000 100 0 0 10 0\n"
)

TCP6_TABLE = TCP_HEADER + (
    "   0: 00000000000000000000000001000000:18EB 00000000000000000000000000000000:0000 0A "
    "00000000:00000000 00:00000000 00000000  1000        0 22222 1 0000000000000000 100 0 0 10 0\n"
)

LSOF_OUTPUT = """\
COMMAND     PID  USER   FD   TYPE             DEVICE SIZE/OFF NODE NAME
node      42156  mike   23u  IPv4 0x1234567890abcdef      0t0  TCP *:3000 (LISTEN)
redis-ser   789  mike    6u  IPv6 0x1234567890abcdee      0t0  TCP [::1]:6379 (LISTEN)
postgres    501  _pg     7u  IPv4 0x1234567890abcded      0t0  TCP 127.0.0.1:5432 (LISTEN)
"""


def make_proc(root, tcp=TCP_TABLE, tcp6=None, processes=None):
    """Builds a fake /proc: processes maps pid -> (comm, [inodes])."""
    net = root / "net"
    net.mkdir()
    if tcp is not None:
        (net / "tcp").write_text(tcp)
    if tcp6 is not None:
        (net / "tcp6").write_text(tcp6)
    for pid, (comm, inodes) in (processes or {}).items():
        fd = root / str(pid) / "fd"
        fd.mkdir(parents=True)
        (root / str(pid) / "comm").write_text(comm + "\n")
        os.symlink("/dev/null", fd / "0")
        for n, inode in enumerate(inodes, start=3):
            os.symlink(f"socket:[{inode}]", fd / str(n))
    return str(root)


@pytest.fixture
def fake_users(monkeypatch):
    monkeypatch.setattr(scanner, "lookup_user", lambda uid: {"0": "root", "1000": "mike"}.get(uid, uid))


class TestDecodeAddress:
    """Tests for kernel table address decoding."""

    def test_ipv4_any(self):
        assert scanner.decode_address("00000000:0BB8") == ("0.0.0.0", 3000)

    def test_ipv4_loopback(self):
        assert scanner.decode_address("0100007F:0050") == ("127.0.0.1", 80)

    def test_ipv6_loopback(self):
        assert scanner.decode_address("00000000000000000000000001000000:18EB") == ("::1", 6379)

    @pytest.mark.parametrize("field", ["0BB8", "zzzzzzzz:0BB8", "000000:0BB8", "00000000:0000", "00000000:xyz"])
    def test_malformed(self, field):
        with pytest.raises(ValueError):
            scanner.decode_address(field)


class TestLookupUser:
    def test_unknown_uid_falls_back_to_number(self):
        assert scanner.lookup_user("99999999") == "99999999"

    def test_non_numeric(self):
        assert scanner.lookup_user("abc") == "abc"

    def test_root(self):
        assert scanner.lookup_user("0") == "root"


class TestProcNetTCP:
    """Tests for /proc/net/tcp parsing."""

    def test_listen_records_only(self, tmp_path, fake_users):
        path = tmp_path / "tcp"
        path.write_text(TCP_TABLE)
        owners = {"12345": (100, "node"), "67890": (200, "nginx"), "11111": (300, "client")}

        bindings = scanner.parse_proc_net_tcp(str(path), "tcp", owners.get)

        assert bindings == [
            PortBinding(port=3000, pid=100, process="node", user="mike", proto="tcp"),
            PortBinding(port=80, pid=200, process="nginx", user="root", proto="tcp"),
        ]

    def test_unattributed_socket_dropped(self, tmp_path, fake_users):
        path = tmp_path / "tcp"
        path.write_text(TCP_TABLE)

        bindings = scanner.parse_proc_net_tcp(str(path), "tcp", {"67890": (200, "nginx")}.get)

        assert [b.port for b in bindings] == [80]

    def test_malformed_lines_skipped(self, tmp_path, fake_users):
        path = tmp_path / "tcp"
        path.write_text(
            TCP_HEADER
            + "   0: short\n"
            + "   1: GARBAGE:0BB8 00000000:0000 0A 0 0 0 1000 0 12345\n"
            + "   2: 00000000:0BB9 00000000:0000 0A 0 0 0 1000 0 12345\n"
        )

        bindings = scanner.parse_proc_net_tcp(str(path), "tcp", lambda inode: (1, "x"))

        assert [b.port for b in bindings] == [3001]

    def test_owner_resolution_failure_keeps_binding(self, tmp_path, monkeypatch):
        monkeypatch.setattr(scanner, "lookup_user", lambda uid: uid)
        path = tmp_path / "tcp"
        path.write_text(TCP_TABLE)

        bindings = scanner.parse_proc_net_tcp(str(path), "tcp", {"12345": (100, "node")}.get)

        assert bindings == [PortBinding(3000, 100, "node", "1000", "tcp")]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            scanner.parse_proc_net_tcp(str(tmp_path / "nope"), "tcp", lambda inode: None)


class TestProcessIndex:
    def test_maps_inodes_to_processes(self, tmp_path):
        root = make_proc(tmp_path, processes={100: ("node", ["12345"]), 200: ("nginx", ["67890", "1"])})

        index = scanner.build_process_index(root)

        assert index["12345"] == (100, "node")
        assert index["67890"] == (200, "nginx")
        assert index["1"] == (200, "nginx")

    def test_shared_inode_has_single_owner(self, tmp_path):
        root = make_proc(tmp_path, processes={100: ("parent", ["555"]), 200: ("child", ["555"])})

        index = scanner.build_process_index(root)

        assert index["555"] in ((100, "parent"), (200, "child"))

    def test_missing_comm(self, tmp_path):
        root = make_proc(tmp_path, processes={100: ("node", ["12345"])})
        os.remove(tmp_path / "100" / "comm")

        assert scanner.build_process_index(root)["12345"] == (100, "")


class TestScanLinux:
    def test_scan_fake_proc(self, tmp_path, fake_users):
        root = make_proc(
            tmp_path,
            tcp6=TCP6_TABLE,
            processes={100: ("node", ["12345"]), 200: ("nginx", ["67890"]), 300: ("redis", ["22222"])},
        )

        bindings = scanner.scan_linux(root)

        assert sorted(bindings, key=lambda b: b.port) == [
            PortBinding(80, 200, "nginx", "root", "tcp"),
            PortBinding(3000, 100, "node", "mike", "tcp"),
            PortBinding(6379, 300, "redis", "mike", "tcp6"),
        ]

    def test_tcp6_optional(self, tmp_path, fake_users):
        root = make_proc(tmp_path, processes={100: ("node", ["12345"])})

        assert [b.port for b in scanner.scan_linux(root)] == [3000]

    def test_tcp_required(self, tmp_path):
        root = make_proc(tmp_path, tcp=None)

        with pytest.raises(SourceUnavailable):
            scanner.scan_linux(root)

    def test_no_listeners_is_empty(self, tmp_path):
        root = make_proc(tmp_path, tcp=TCP_HEADER)

        assert scanner.scan_linux(root) == []

    @pytest.mark.skipif(not os.path.exists("/proc/net/tcp"), reason="needs Linux /proc")
    def test_real_proc(self):
        for b in scanner.scan_linux():
            assert 1 <= b.port <= 65535
            assert b.pid > 0


class TestLsof:
    """Tests for lsof output parsing."""

    def test_parse(self):
        bindings = scanner.parse_lsof_output(LSOF_OUTPUT)

        assert bindings == [
            PortBinding(port=3000, pid=42156, process="node", user="mike", proto="tcp"),
            PortBinding(port=6379, pid=789, process="redis-ser", user="mike", proto="tcp6"),
            PortBinding(port=5432, pid=501, process="postgres", user="_pg", proto="tcp"),
        ]

    def test_short_and_bad_lines_skipped(self):
        output = (
            "COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME\n"
            "node 42156 mike 23u IPv4\n"
            "node abc mike 23u IPv4 0x1 0t0 TCP *:3000 (LISTEN)\n"
            "node 1 mike 23u IPv4 0x1 0t0 TCP *:http (LISTEN)\n"
            "node 2 mike 23u IPv4 0x1 0t0 TCP *:70000 (LISTEN)\n"
            "\n"
        )

        assert scanner.parse_lsof_output(output) == []

    def test_non_decimal_digits_skipped(self):
        output = (
            "COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME\n"
            "node \u00b2 mike 23u IPv4 0x1 0t0 TCP *:3000 (LISTEN)\n"
            "node 7 mike 23u IPv4 0x1 0t0 TCP *:\u00b2 (LISTEN)\n"
            "node 8 mike 23u IPv4 0x1 0t0 TCP *:3001 (LISTEN)\n"
        )

        assert scanner.parse_lsof_output(output) == [PortBinding(3001, 8, "node", "mike", "tcp")]

    def test_header_only(self):
        assert scanner.parse_lsof_output("COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME\n") == []
        assert scanner.parse_lsof_output("") == []

    @pytest.mark.parametrize(
        "name,port",
        [("*:3000", 3000), ("127.0.0.1:8080", 8080), ("[::1]:6379", 6379), ("[fe80::1%lo0]:22", 22), ("nocolon", 0), ("*:", 0)],
    )
    def test_port_from_name(self, name, port):
        assert scanner.port_from_lsof_name(name) == port


class TestScanDarwin:
    def _run(self, monkeypatch, returncode, stdout="", stderr=""):
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

        monkeypatch.setattr(scanner.shutil, "which", lambda name: "/usr/sbin/lsof")
        monkeypatch.setattr(scanner.subprocess, "run", fake_run)
        return calls

    def test_success(self, monkeypatch):
        calls = self._run(monkeypatch, 0, LSOF_OUTPUT)

        bindings = scanner.scan_darwin()

        assert len(bindings) == 3
        assert calls == [["/usr/sbin/lsof", "-iTCP", "-sTCP:LISTEN", "-n", "-P"]]

    def test_no_results_exit_code(self, monkeypatch):
        self._run(monkeypatch, 1)

        assert scanner.scan_darwin() == []

    def test_failure(self, monkeypatch):
        self._run(monkeypatch, 2, stderr="lsof: bad option")

        with pytest.raises(SourceUnavailable, match="bad option"):
            scanner.scan_darwin()

    def test_no_results_exit_with_output_is_parsed(self, monkeypatch):
        self._run(monkeypatch, 1, LSOF_OUTPUT, "lsof: WARNING: can't stat() fuse file system")

        assert [b.port for b in scanner.scan_darwin()] == [3000, 6379, 5432]

    def test_other_exit_with_output_is_parsed(self, monkeypatch):
        self._run(monkeypatch, 2, LSOF_OUTPUT, "lsof: some sockets unreadable")

        assert len(scanner.scan_darwin()) == 3

    def test_other_exit_without_output_fails(self, monkeypatch):
        self._run(monkeypatch, 2, "  \n", "lsof: kernel error")

        with pytest.raises(SourceUnavailable, match="kernel error"):
            scanner.scan_darwin()

    def test_missing_lsof(self, monkeypatch):
        monkeypatch.setattr(scanner.shutil, "which", lambda name: None)

        with pytest.raises(SourceUnavailable, match="lsof not found"):
            scanner.scan_darwin()


class TestScan:
    @pytest.fixture
    def fake_platform(self, monkeypatch):
        data = []
        monkeypatch.setitem(scanner.STRATEGIES, "Linux", lambda: list(data))
        return data

    def test_sorted_and_stable(self, fake_platform):
        fake_platform.extend([
            PortBinding(8080, 1, "a", "u"),
            PortBinding(22, 2, "sshd", "root"),
            PortBinding(8080, 3, "b", "u"),
            PortBinding(443, 4, "nginx", "root"),
            PortBinding(8080, 5, "c", "u"),
        ])

        bindings = scanner.scan("Linux")

        assert [b.port for b in bindings] == [22, 443, 8080, 8080, 8080]
        assert [b.pid for b in bindings if b.port == 8080] == [1, 3, 5]

    def test_empty(self, fake_platform):
        assert scanner.scan("Linux") == []

    def test_unsupported_platform(self):
        with pytest.raises(PlatformUnsupported):
            scanner.scan("Windows")

    def test_uses_current_platform(self, monkeypatch):
        monkeypatch.setattr(scanner.platform, "system", lambda: "Plan9")

        with pytest.raises(PlatformUnsupported, match="Plan9"):
            scanner.scan()

    def test_find_by_port(self, fake_platform):
        fake_platform.extend([PortBinding(3000, 1, "a", "u"), PortBinding(3000, 2, "b", "u"), PortBinding(80, 3, "c", "u")])

        assert [b.pid for b in scanner.find_by_port(3000, "Linux")] == [1, 2]
        assert scanner.find_by_port(3001, "Linux") == []

    @pytest.mark.parametrize("port", [0, -1, 65536, 100000, "3000", 3000.0, True])
    def test_find_by_port_invalid(self, fake_platform, port):
        with pytest.raises(InvalidPort):
            scanner.find_by_port(port, "Linux")

    def test_fresh_snapshot_each_call(self, fake_platform):
        fake_platform.append(PortBinding(3000, 1, "a", "u"))
        first = scanner.scan("Linux")
        fake_platform.clear()

        assert scanner.scan("Linux") == []
        assert len(first) == 1
