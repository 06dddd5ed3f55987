"""Verification Test: Load Test - large log files and busy socket tables.

All refresh work runs on the UI thread, so the per-tick cost of re-reading a
log file and parsing the port listing has to stay well under the 1 second
tick even on busy hosts.
"""

import os
import time

import pytest

from procdash.logs import read_from_offset, read_tail
from procdash.ports import parse_lsof_output, parse_ss_output


@pytest.fixture
def big_log(tmp_path):
    """A log file with 200k lines (about 10 MB)."""
    is_ci = os.environ.get("CI", "false").lower() == "true"
    count = 50_000 if is_ci else 200_000
    path = tmp_path / "big.log"
    with path.open("w") as handle:
        for i in range(count):
            handle.write(f"2026-10-19T10:00:00Z INFO request {i} handled in 12ms\n")
    return path, count


class TestLoadTest:
    """Load test verification suite tests."""

    def test_tail_of_large_file(self, big_log):
        path, count = big_log
        start = time.perf_counter()
        lines = read_tail(path)
        elapsed = time.perf_counter() - start

        assert len(lines) == 500
        assert lines[-1].endswith(f"request {count - 1} handled in 12ms")
        assert elapsed < 2.0, f"tail took {elapsed:.2f}s"

    def test_initial_capture_reads_only_what_it_needs(self, big_log):
        path, _ = big_log
        start = time.perf_counter()
        lines = read_from_offset(path, 0)
        elapsed = time.perf_counter() - start

        assert len(lines) == 100
        assert elapsed < 0.5, f"capture took {elapsed:.2f}s"

    def test_many_listening_sockets(self):
        lsof = "\n".join(
            f"node {1000 + i % 500} user {i}u IPv4 0x0 0t0 TCP 127.0.0.1:{10000 + i} (LISTEN)"
            for i in range(20_000)
        )
        ss = "\n".join(
            f'LISTEN 0 128 0.0.0.0:{10000 + i} 0.0.0.0:* users:(("node",pid={1000 + i % 500},fd=3))'
            for i in range(20_000)
        )

        start = time.perf_counter()
        by_lsof = parse_lsof_output(lsof)
        by_ss = parse_ss_output(ss)
        elapsed = time.perf_counter() - start

        assert len(by_lsof) == len(by_ss) == 500
        assert by_lsof == by_ss
        assert all(len(ports) == 40 for ports in by_lsof.values())
        assert elapsed < 5.0, f"parsing took {elapsed:.2f}s"
