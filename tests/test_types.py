"""Tests for type definitions."""

import pytest

from batchssh.exceptions import (
    AuthResolutionError,
    ConnectError,
    HostError,
    RecoveredFault,
    RemoteNonZeroExit,
    TransportError,
    TransportTimeout,
    UploadConflict,
)
from batchssh.types import (
    ConnectionDefaults,
    Host,
    Outcome,
    PingResult,
    Result,
    RunRequest,
    TaskState,
    default_user,
    outcome_for,
)


class TestHost:
    """Tests for Host dataclass."""

    def test_defaults(self):
        """Test a bare host gets port 22 and no groups."""
        host = Host(address="web01")

        assert host.port == 22
        assert host.user == ""
        assert host.key_path == ""
        assert host.groups == []
        assert host.identity == ("web01", 22)

    def test_identity_includes_port(self):
        """Test hosts on different ports have different identities."""
        assert Host("web01", 22).identity != Host("web01", 2222).identity

    def test_add_group_keeps_order_without_duplicates(self):
        """Test group membership keeps first-seen order."""
        host = Host("web01")
        host.add_group("web")
        host.add_group("prod")
        host.add_group("web")

        assert host.groups == ["web", "prod"]

    def test_label(self):
        """Test the port is only shown when it is not 22."""
        assert Host("web01").label == "web01"
        assert Host("web01", 2222).label == "web01:2222"

    def test_groups_not_shared_between_instances(self):
        """Test the default group list is per instance."""
        a = Host("a")
        b = Host("b")
        a.add_group("web")

        assert b.groups == []


class TestResult:
    """Tests for Result."""

    def test_success(self):
        """Test a zero exit status with no error is a success."""
        result = Result(host="web01", command="true")

        assert result.success
        assert result.outcome is Outcome.SUCCEEDED

    def test_nonzero_exit_is_not_success(self):
        """Test a non-zero exit status is a failure even without an error."""
        result = Result(host="web01", command="false", exit_code=1)

        assert not result.success

    def test_failure_factory(self):
        """Test Result.failure carries the error text in stderr."""
        error = ConnectError("web01", "connection failed", "Connection refused")
        result = Result.failure("web01", "uptime", error, duration=0.5)

        assert not result.success
        assert result.exit_code == -1
        assert result.stderr == "connection failed: Connection refused"
        assert result.duration == 0.5
        assert result.error is error
        assert result.outcome is Outcome.CONNECT_FAILED

    def test_failure_factory_exit_code(self):
        """Test Result.failure accepts an explicit exit code."""
        result = Result.failure("web01", "upload", UploadConflict("web01", "/etc/x"), exit_code=1)

        assert result.exit_code == 1
        assert result.outcome is Outcome.SKIPPED


class TestOutcome:
    """Tests for error classification."""

    def test_outcome_for_each_error(self):
        """Test each error type maps to its outcome."""
        assert outcome_for(None) is Outcome.SUCCEEDED
        assert outcome_for(AuthResolutionError("h", "no key")) is Outcome.CONNECT_FAILED
        assert outcome_for(ConnectError("h", "refused")) is Outcome.CONNECT_FAILED
        assert outcome_for(TransportTimeout("h", 5)) is Outcome.CONNECT_FAILED
        assert outcome_for(RemoteNonZeroExit("h", 3)) is Outcome.REMOTE_FAILED
        assert outcome_for(TransportError("h", "lost")) is Outcome.TRANSPORT_FAILED
        assert outcome_for(UploadConflict("h", "/tmp/x")) is Outcome.SKIPPED
        assert outcome_for(RecoveredFault("h", RuntimeError("boom"))) is Outcome.FAULT
        assert outcome_for(HostError("h", "other")) is Outcome.TRANSPORT_FAILED

    def test_ping_result_outcome(self):
        """Test PingResult classifies its error the same way."""
        assert PingResult(host="h", success=True).outcome is Outcome.SUCCEEDED
        failed = PingResult(host="h", success=False, error=TransportTimeout("h", 5, "session open"))
        assert failed.outcome is Outcome.CONNECT_FAILED


class TestTaskState:
    """Tests for progress stages."""

    def test_stage_percentages(self):
        """Test stage percentages increase towards 100."""
        assert TaskState.CONNECTING.percent == 10
        assert TaskState.AUTHENTICATED.percent == 30
        assert TaskState.RUNNING.percent == 60
        assert TaskState.SUCCEEDED.percent == 100
        assert TaskState.FAILED.percent == 100
        assert TaskState.RUNNING.label == "running"


class TestRunRequest:
    """Tests for RunRequest."""

    def test_defaults(self):
        """Test request defaults."""
        request = RunRequest(inventory="a,b", user="deploy")

        assert request.concurrency == 5
        assert request.port == 22
        assert request.timeout == 30.0
        assert request.log_dir == ""

    def test_connection_defaults(self):
        """Test a request hands its connection settings to the executor."""
        request = RunRequest(user="deploy", key_path="~/.ssh/k", password="pw", port=2222, timeout=5)
        defaults = request.defaults()

        assert defaults == ConnectionDefaults(
            user="deploy", key_path="~/.ssh/k", password="pw", port=2222, timeout=5
        )


class TestDefaultUser:
    """Tests for the login-user fallback."""

    def test_current_user(self, monkeypatch):
        """Test the login name is used when it can be looked up."""
        monkeypatch.setattr("batchssh.types.getuser", lambda: "alice")

        assert default_user() == "alice"
        assert ConnectionDefaults().user == "alice"

    @pytest.mark.parametrize("error", [KeyError("uid not found: 1234"), OSError("No username")])
    def test_unknown_uid(self, monkeypatch, error):
        """Test a uid without a passwd entry gives an empty user instead of raising."""

        def lookup_fails():
            raise error

        monkeypatch.setattr("batchssh.types.getuser", lookup_fails)

        assert default_user() == ""
        assert ConnectionDefaults().user == ""
        assert RunRequest(inventory="web1").user == ""
