"""Tests for the concurrent executor."""

import pytest

from batchssh.exceptions import ConnectError, LocalFileError, RecoveredFault, RemoteNonZeroExit
from batchssh.executor import ConcurrentExecutor, ExecutionSummary, normalize_concurrency
from batchssh.operations import CommandOperation, PingOperation
from batchssh.progress import ProgressSink
from batchssh.types import ConnectionDefaults, Host, Outcome, PingResult, Result

from fakes import FakeClientFactory


class RecordingSink(ProgressSink):
    """Progress sink that records every notification."""

    def __init__(self):
        self.events = []

    def add_host(self, host):
        self.events.append(("add", host))

    def update_host(self, host, percent, stage):
        self.events.append(("update", host, percent, stage))

    def mark_done(self, host):
        self.events.append(("done", host))

    def mark_errored(self, host, reason):
        self.events.append(("errored", host, reason))

    def for_host(self, host):
        return [e for e in self.events if e[1] == host]


def make_hosts(count):
    return [Host(f"10.0.0.{i}") for i in range(count)]


def make_executor(hosts, factory, **defaults):
    defaults.setdefault("user", "deploy")
    return ConcurrentExecutor(hosts, ConnectionDefaults(**defaults), client_factory=factory)


class TestNormalizeConcurrency:
    """Tests for concurrency defaults."""

    def test_values(self):
        """Test zero, negative and missing values fall back to 5."""
        assert normalize_concurrency(0) == 5
        assert normalize_concurrency(-3) == 5
        assert normalize_concurrency(None) == 5
        assert normalize_concurrency(12) == 12


class TestExecutionSummary:
    """Tests for ExecutionSummary."""

    def test_counts(self):
        """Test statistics are computed from the results."""
        results = [
            Result(host="a", command="x"),
            Result.failure("b", "x", RemoteNonZeroExit("b", 2), exit_code=2),
            Result.failure("c", "x", ConnectError("c", "refused")),
        ]
        summary = ExecutionSummary(results=results, duration=1.5)

        assert summary.total_hosts == 3
        assert summary.successful == 1
        assert summary.failed == 2
        assert summary.outcomes == {
            Outcome.SUCCEEDED: 1,
            Outcome.REMOTE_FAILED: 1,
            Outcome.CONNECT_FAILED: 1,
        }
        assert not summary.is_success()

    def test_empty(self):
        """Test an empty summary counts as success."""
        assert ExecutionSummary().is_success()


class TestConcurrentExecutor:
    """Tests for ConcurrentExecutor.run and its wrappers."""

    @pytest.mark.asyncio
    async def test_results_in_host_order(self):
        """Test results follow input order even when later hosts finish first."""
        hosts = make_hosts(6)
        delays = {h.address: 0.002 * (6 - i) for i, h in enumerate(hosts)}
        factory = FakeClientFactory(delays=delays)

        results = await make_executor(hosts, factory).run_command("hostname", concurrency=6)

        assert [r.host for r in results] == [h.address for h in hosts]
        assert all(r.success for r in results)

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        """Test no more than the limit of hosts are active at once."""
        hosts = make_hosts(12)
        factory = FakeClientFactory(delays={h.address: 0.01 for h in hosts})

        results = await make_executor(hosts, factory).run_command("true", concurrency=3)

        assert len(results) == 12
        assert factory.peak <= 3
        assert factory.peak == 3

    @pytest.mark.asyncio
    async def test_default_concurrency(self):
        """Test a zero limit uses the default of 5."""
        hosts = make_hosts(10)
        factory = FakeClientFactory(delays={h.address: 0.01 for h in hosts})

        await make_executor(hosts, factory).run_command("true", concurrency=0)

        assert factory.peak == 5

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self):
        """Test failing hosts do not affect the others."""
        hosts = make_hosts(4)
        factory = FakeClientFactory(
            exit_codes={"10.0.0.1": 3},
            unreachable=("10.0.0.2",),
            crash=("10.0.0.3",),
        )

        results = await make_executor(hosts, factory).run_command("deploy")

        assert results[0].success
        assert results[1].exit_code == 3
        assert results[1].outcome is Outcome.REMOTE_FAILED
        assert results[2].outcome is Outcome.CONNECT_FAILED
        assert results[2].exit_code == -1
        assert "Connection refused" in results[2].stderr
        assert isinstance(results[3].error, RecoveredFault)
        assert "RuntimeError: boom" in results[3].stderr
        assert all(client.closed for client in factory.clients)

    @pytest.mark.asyncio
    async def test_defaults_applied(self):
        """Test hosts without user, key or port get the request defaults."""
        hosts = [Host("a"), Host("b", port=2222, user="root", key_path="/k/b")]
        factory = FakeClientFactory()
        executor = make_executor(
            hosts, factory, user="deploy", key_path="/k/default", password="pw", timeout=7
        )

        await executor.run_command("true")

        a, b = factory.clients
        assert a.options == {
            "port": 22,
            "user": "deploy",
            "key_path": "/k/default",
            "password": "pw",
            "timeout": 7,
        }
        assert (b.options["port"], b.options["user"], b.options["key_path"]) == (2222, "root", "/k/b")

    def test_effective_host_does_not_mutate(self):
        """Test applying defaults leaves the input host untouched."""
        host = Host("a", groups=["web"])
        executor = ConcurrentExecutor([host], ConnectionDefaults(user="deploy"))

        effective = executor.effective_host(host)

        assert effective.user == "deploy"
        assert host.user == ""
        assert effective.groups is not host.groups

    @pytest.mark.asyncio
    async def test_empty_host_list(self):
        """Test running against no hosts returns no results."""
        results = await make_executor([], FakeClientFactory()).run_command("true")

        assert results == []

    @pytest.mark.asyncio
    async def test_progress_stages(self):
        """Test progress notifications for successful and failed hosts."""
        hosts = [Host("ok"), Host("down")]
        factory = FakeClientFactory(unreachable=("down",))
        sink = RecordingSink()

        await make_executor(hosts, factory).run(CommandOperation("true"), progress=sink)

        assert sink.for_host("ok") == [
            ("add", "ok"),
            ("update", "ok", 10, "connecting"),
            ("update", "ok", 30, "authenticated"),
            ("update", "ok", 60, "running"),
            ("update", "ok", 100, "succeeded"),
            ("done", "ok"),
        ]
        down = sink.for_host("down")
        assert down[-2] == ("update", "down", 100, "failed")
        assert down[-1][0] == "errored"
        assert "Connection refused" in down[-1][2]

    @pytest.mark.asyncio
    async def test_ping_skips_connect(self):
        """Test ping manages its own connection."""
        hosts = [Host("a"), Host("b")]
        factory = FakeClientFactory(unreachable=("b",))
        sink = RecordingSink()

        results = await make_executor(hosts, factory).ping(timeout=2, progress=sink)

        assert all(isinstance(r, PingResult) for r in results)
        assert [r.success for r in results] == [True, False]
        assert not any(client.connected for client in factory.clients)
        assert ("update", "a", 30, "authenticated") not in sink.events

    @pytest.mark.asyncio
    async def test_ping_fault(self):
        """Test an unexpected error during ping becomes a failed PingResult."""
        factory = FakeClientFactory(crash=("a",))

        results = await make_executor([Host("a")], factory).run(PingOperation())

        assert isinstance(results[0], PingResult)
        assert not results[0].success
        assert results[0].outcome is Outcome.FAULT

    @pytest.mark.asyncio
    async def test_upload_conflicts(self, tmp_path):
        """Test upload conflicts are reported as skipped per host."""
        local = tmp_path / "f"
        local.write_text("x\n")
        hosts = [Host("a"), Host("b")]
        factory = FakeClientFactory(conflicts=("b",))

        results = await make_executor(hosts, factory).upload_file(str(local), "/etc/f")

        assert results[0].success
        assert results[1].outcome is Outcome.SKIPPED
        assert results[1].exit_code == 1

    @pytest.mark.asyncio
    async def test_run_script(self, tmp_path):
        """Test script results carry the local script path."""
        script = tmp_path / "deploy.sh"
        script.write_text("echo hi\n")
        factory = FakeClientFactory()

        results = await make_executor([Host("a")], factory).run_script(str(script), interpreter="sh")

        assert results[0].command == str(script)
        assert results[0].success

    @pytest.mark.asyncio
    async def test_missing_local_file_checked_before_connect(self, tmp_path):
        """Test a missing upload source fails every host without connecting."""
        factory = FakeClientFactory(unreachable=("b",))
        missing = str(tmp_path / "absent.conf")

        results = await make_executor([Host("a"), Host("b")], factory).upload_file(
            missing, "/etc/absent.conf"
        )

        assert [type(r.error) for r in results] == [LocalFileError, LocalFileError]
        assert all(r.error.path == missing for r in results)
        assert factory.clients == []

    @pytest.mark.asyncio
    async def test_missing_script_checked_before_connect(self, tmp_path):
        """Test a missing script is reported instead of the connect failure."""
        factory = FakeClientFactory(unreachable=("a",))

        results = await make_executor([Host("a")], factory).run_script(str(tmp_path / "nope.sh"))

        assert isinstance(results[0].error, LocalFileError)
        assert results[0].command == str(tmp_path / "nope.sh")
        assert factory.clients == []

    @pytest.mark.asyncio
    async def test_unfilled_result_slot_raises(self, monkeypatch):
        """Test a host left without a result is an error, not a dropped entry."""
        executor = make_executor(make_hosts(2), FakeClientFactory())

        async def record_nothing(*args):
            return None

        monkeypatch.setattr(executor, "_run_host", record_nothing)

        with pytest.raises(RuntimeError, match="10.0.0.0, 10.0.0.1"):
            await executor.run(CommandOperation("true"))
