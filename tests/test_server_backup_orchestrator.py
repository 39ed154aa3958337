"""Tests for server orchestration and the run controller."""

from datetime import date
from unittest.mock import MagicMock

import pytest

from tools.server_backup.config import (
    AppConfig,
    Command,
    DefaultConfig,
    Output,
    ServerConfig,
    Sync,
)
from tools.server_backup.controller import RunController
from tools.server_backup.errors import ServerConnectionError
from tools.server_backup.orchestrator import ServerOrchestrator, ServerState
from tools.server_backup.report import RunReport, ServerReport
from tools.server_backup.transport import ExecResult

TODAY = date(2024, 5, 3)


class RecordingTransport:
    """Transport recording its lifecycle."""

    def __init__(self, fail_connect=False, stderr_for=()):
        self.fail_connect = fail_connect
        self.stderr_for = stderr_for
        self.events = []

    def connect(self):
        self.events.append("connect")
        if self.fail_connect:
            raise ServerConnectionError("db1", "host unreachable")

    def execute(self, command, sink, env=None, timeout=None):
        self.events.append(f"exec:{command}")
        sink.write(b"data")
        stderr = "failed\n" if command in self.stderr_for else ""
        return ExecResult(0, stderr)

    def close(self):
        self.events.append("close")


def make_orchestrator(tmp_path, server, transport, transfer=None):
    defaults = DefaultConfig(backup_dir=str(tmp_path))
    return ServerOrchestrator(
        server, defaults, today=TODAY, transport=transport, transfer=transfer or MagicMock()
    )


class TestServerOrchestrator:
    """Test ServerOrchestrator."""

    def test_commands_then_syncs_in_order(self, tmp_path):
        """Test sequencing and connection release."""
        server = ServerConfig(
            name="db1",
            host="db1.example.com",
            commands=(Command(exec="one", outputs=(Output("1.out"),)), Command(exec="two")),
            syncs=(Sync(source="/a", destination="a"), Sync(source="/b", destination="b")),
        )
        transport = RecordingTransport()
        transfer = MagicMock()
        orchestrator = make_orchestrator(tmp_path, server, transport, transfer)

        report = orchestrator.run()

        assert transport.events == ["connect", "exec:one", "exec:two", "close"]
        assert [r.command.exec for r in report.commands] == ["one", "two"]
        assert [r.sync.source for r in report.folders] == ["/a", "/b"]
        assert [c.args[0].source for c in transfer.call_args_list] == [
            "root@db1.example.com:/a",
            "root@db1.example.com:/b",
        ]
        assert report.has_error is False
        assert orchestrator.state == ServerState.CLOSED

    def test_failures_do_not_stop_server(self, tmp_path):
        """Test that a failing command and sync are recorded and the rest still runs."""
        server = ServerConfig(
            name="db1",
            host="h",
            commands=(Command(exec="bad"), Command(exec="good")),
            syncs=(Sync(source="/a", destination="a"), Sync(source="/b", destination="b")),
        )
        transfer = MagicMock(side_effect=[OSError("rsync missing"), "ok"])
        transport = RecordingTransport(stderr_for=("bad",))
        orchestrator = make_orchestrator(tmp_path, server, transport, transfer)

        report = orchestrator.run()

        assert [r.status for r in report.commands] == [False, True]
        assert [r.status for r in report.folders] == [False, True]
        assert report.has_error is True
        assert transport.events[-1] == "close"

    def test_connection_failure_closes_once(self, tmp_path):
        """Test that a failed connection raises and is released exactly once."""
        server = ServerConfig(name="db1", host="h", commands=(Command(exec="x"),))
        transport = RecordingTransport(fail_connect=True)
        orchestrator = make_orchestrator(tmp_path, server, transport)

        with pytest.raises(ServerConnectionError):
            orchestrator.run()
        orchestrator.close()

        assert transport.events == ["connect", "close"]
        assert orchestrator.state == ServerState.FAILED

    def test_unexpected_connect_error_wrapped(self, tmp_path):
        """Test that transport exceptions become ServerConnectionError."""
        server = ServerConfig(name="db1", host="h")
        transport = MagicMock()
        transport.connect.side_effect = OSError("refused")
        orchestrator = make_orchestrator(tmp_path, server, transport)

        with pytest.raises(ServerConnectionError, match="refused"):
            orchestrator.connect()

    def test_local_server_skips_connect(self, tmp_path):
        """Test that local servers never connect."""
        server = ServerConfig(name="self", local=True, commands=(Command(exec="x"),))
        transport = RecordingTransport()
        orchestrator = make_orchestrator(tmp_path, server, transport)

        orchestrator.run()

        assert "connect" not in transport.events
        assert transport.events[-1] == "close"

    def test_local_server_goes_from_idle_to_running(self, tmp_path):
        """Test that local servers never pass through the connected state."""
        server = ServerConfig(name="self", local=True, commands=(Command(exec="x"),))
        transport = RecordingTransport()
        orchestrator = make_orchestrator(tmp_path, server, transport)
        states = []
        execute = transport.execute

        def record_state(*args, **kwargs):
            states.append(orchestrator.state)
            return execute(*args, **kwargs)

        transport.execute = record_state

        orchestrator.connect()
        states.append(orchestrator.state)
        orchestrator.backup()

        assert states == [ServerState.IDLE, ServerState.RUNNING_COMMANDS]

    def test_tokens_fixed_per_server(self, tmp_path):
        """Test that the token map is computed at construction."""
        server = ServerConfig(name="db1", host="h")
        orchestrator = make_orchestrator(tmp_path, server, RecordingTransport())
        assert orchestrator.tokens["%server%"] == "db1"
        assert orchestrator.tokens["%day%"] == "03"

    def test_predicate_condition_gets_orchestrator(self, tmp_path):
        """Test that predicate conditions receive the orchestrator."""
        seen = []

        def only_db1(orchestrator):
            seen.append(orchestrator)
            return orchestrator.name == "db1"

        server = ServerConfig(
            name="db1",
            host="h",
            commands=(Command(exec="x", outputs=(Output("p.out", condition=only_db1),)),),
        )
        orchestrator = make_orchestrator(tmp_path, server, RecordingTransport())
        orchestrator.run()

        assert seen == [orchestrator]
        assert (tmp_path / "db1" / "p.out").read_bytes() == b"data"


class TestReports:
    """Test report aggregation."""

    def test_run_report_errors_flag(self):
        """Test that the top-level flag reflects any server error."""
        report = RunReport(servers={"a": ServerReport(), "b": ServerReport()})
        assert report.errors is False

        report.servers["c"] = ServerReport(error="unreachable")
        assert report.errors is True

    def test_to_dict_shape(self):
        """Test the collaborator contract shape."""
        data = RunReport(servers={"a": ServerReport()}).to_dict()
        assert data == {
            "errors": False,
            "servers": {"a": {"errors": False, "error": None, "commands": [], "folders": []}},
        }


class TestRunController:
    """Test RunController."""

    def _config(self, *names):
        servers = tuple(ServerConfig(name=n, host=f"{n}.example.com") for n in names)
        return AppConfig(defaults=DefaultConfig(backup_dir="/srv/backups"), servers=servers)

    def _factory(self, reports, failing=()):
        def factory(server):
            orchestrator = MagicMock()
            if server.name in failing:
                orchestrator.run.side_effect = ServerConnectionError(server.name, "timeout")
            else:
                orchestrator.run.return_value = reports.get(server.name, ServerReport())
            return orchestrator

        return factory

    def test_connection_error_does_not_stop_run(self):
        """Test that other servers are still backed up."""
        controller = RunController(
            self._config("a", "b", "c"),
            orchestrator_factory=self._factory({}, failing=("b",)),
            notifiers=[],
        )
        report = controller.run()

        assert list(report.servers) == ["a", "b", "c"]
        assert report.servers["b"].has_error is True
        assert "timeout" in report.servers["b"].error
        assert report.servers["a"].has_error is False
        assert report.errors is True

    def test_only_selected_servers(self):
        """Test filtering by server name."""
        controller = RunController(
            self._config("a", "b"), orchestrator_factory=self._factory({}), notifiers=[]
        )
        report = controller.run(only=["b", "missing"])
        assert list(report.servers) == ["b"]

    def test_concurrent_keeps_config_order(self):
        """Test that concurrent runs assemble the report in configuration order."""
        names = ["s1", "s2", "s3", "s4"]
        controller = RunController(
            self._config(*names),
            max_workers=4,
            orchestrator_factory=self._factory({}, failing=("s3",)),
            notifiers=[],
        )
        report = controller.run()

        assert list(report.servers) == names
        assert report.errors is True

    def test_notify_calls_every_notifier(self):
        """Test that notifiers receive the report and formatted output."""
        good, bad = MagicMock(), MagicMock()
        bad.notify.side_effect = RuntimeError("smtp down")
        formatter = MagicMock()
        controller = RunController(
            self._config("a"),
            orchestrator_factory=self._factory({}),
            notifiers=[bad, good],
            formatter=formatter,
        )
        report = controller.run()

        controller.notify(report)

        good.notify.assert_called_once_with(report, formatter.format.return_value)
        assert len(controller.notification_errors) == 1
        assert "smtp down" in controller.notification_errors[0]
