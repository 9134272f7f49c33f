"""Unit tests for command execution and ProcessManager."""

import subprocess
import sys
from unittest.mock import Mock, patch

import pytest

from pod_tunnel.common.exceptions import CommandError
from pod_tunnel.common.process import ProcessManager, resolve_binary, run_command


class TestRunCommand:
    """Test cases for run_command"""

    def test_captures_stdout(self):
        result = run_command([sys.executable, "-c", "print('hello')"])
        assert result.stdout.strip() == "hello"
        assert result.returncode == 0

    def test_non_zero_exit_raises_with_stderr(self):
        with pytest.raises(CommandError) as exc_info:
            run_command(
                [
                    sys.executable,
                    "-c",
                    "import sys; sys.stderr.write('pods \"x\" not found\\n'); sys.exit(1)",
                ]
            )

        error = exc_info.value
        assert error.returncode == 1
        assert error.stderr == 'pods "x" not found'
        assert 'pods "x" not found' in str(error)

    def test_non_zero_exit_without_check(self):
        result = run_command([sys.executable, "-c", "import sys; sys.exit(2)"], check=False)
        assert result.returncode == 2

    def test_missing_binary_raises(self):
        with pytest.raises(CommandError) as exc_info:
            run_command(["/nonexistent/kubectl", "version"])
        assert exc_info.value.returncode is None

    @patch("pod_tunnel.common.process.subprocess.run")
    def test_timeout_raises(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(["kubectl"], 1.0)

        with pytest.raises(CommandError, match="timed out after 1.0s"):
            run_command(["kubectl", "get", "pods"], timeout=1.0)


class TestCommandError:
    def test_message_format(self):
        error = CommandError(["kubectl", "delete"], 1, "  boom \n")
        assert str(error) == "kubectl exited with 1: boom"
        assert error.args_list == ["kubectl", "delete"]

    def test_message_without_stderr(self):
        assert str(CommandError(["aws"], 255)) == "aws exited with 255"


def test_resolve_binary_falls_back_to_name():
    assert resolve_binary("definitely-not-a-real-binary-xyz") == (
        "definitely-not-a-real-binary-xyz"
    )


class TestProcessManager:
    """Test cases for ProcessManager class"""

    def test_process_manager_requires_command(self):
        """ProcessManager should reject an empty command"""
        with pytest.raises(ValueError, match="Command cannot be empty"):
            ProcessManager([])

    def test_process_manager_initial_state(self):
        pm = ProcessManager(["kubectl", "port-forward"])
        assert not pm.is_running()
        assert pm.pid is None
        assert pm.poll() is None

    @patch("subprocess.Popen")
    def test_process_manager_starts_process(self, mock_popen):
        """ProcessManager should start the process and report its PID"""
        mock_process = Mock()
        mock_process.pid = 12345
        mock_process.poll.return_value = None
        mock_popen.return_value = mock_process

        pm = ProcessManager(["kubectl", "port-forward", "pod/p", "1:2"])
        pid = pm.start()

        assert pid == 12345
        assert pm.is_running()
        assert pm.pid == 12345
        mock_popen.assert_called_once_with(["kubectl", "port-forward", "pod/p", "1:2"])

    @patch("subprocess.Popen")
    def test_process_manager_handles_start_failure(self, mock_popen):
        """ProcessManager should raise CommandError when the binary cannot run"""
        mock_popen.side_effect = OSError("Failed to start process")

        pm = ProcessManager(["kubectl"])

        with pytest.raises(CommandError, match="Failed to start process"):
            pm.start()
        assert not pm.is_running()

    @patch("subprocess.Popen")
    def test_process_manager_start_is_idempotent(self, mock_popen):
        mock_process = Mock()
        mock_process.pid = 1
        mock_process.poll.return_value = None
        mock_popen.return_value = mock_process

        pm = ProcessManager(["kubectl"])
        pm.start()
        pm.start()

        mock_popen.assert_called_once()

    @patch("subprocess.Popen")
    def test_process_manager_stops_gracefully(self, mock_popen):
        """ProcessManager should terminate and wait"""
        mock_process = Mock()
        mock_process.pid = 12345
        mock_process.poll.return_value = None
        mock_process.wait.return_value = 0
        mock_popen.return_value = mock_process

        pm = ProcessManager(["kubectl"])
        pm.start()

        assert pm.stop() is True
        mock_process.terminate.assert_called_once()
        mock_process.kill.assert_not_called()
        assert pm.returncode == 0

    @patch("subprocess.Popen")
    def test_process_manager_force_kills_on_timeout(self, mock_popen):
        """ProcessManager should kill a process that ignores terminate"""
        mock_process = Mock()
        mock_process.pid = 12345
        mock_process.poll.return_value = None
        mock_process.wait.side_effect = [subprocess.TimeoutExpired("cmd", 5), -9]
        mock_popen.return_value = mock_process

        pm = ProcessManager(["kubectl"], kill_timeout=5)
        pm.start()

        assert pm.stop() is True
        mock_process.terminate.assert_called_once()
        mock_process.kill.assert_called_once()
        assert pm.returncode == -9

    def test_process_manager_stop_when_not_started(self):
        assert ProcessManager(["kubectl"]).stop() is True

    def test_poll_reports_exit_code(self):
        pm = ProcessManager([sys.executable, "-c", "import sys; sys.exit(4)"])
        pm.start()
        pm._process.wait(timeout=10)

        assert pm.poll() == 4
        assert not pm.is_running()

    def test_context_manager_stops_process(self):
        """ProcessManager should stop the process on context exit"""
        with ProcessManager(
            [sys.executable, "-c", "import time; time.sleep(30)"], kill_timeout=2
        ) as pm:
            assert pm.is_running()

        assert not pm.is_running()
        assert pm.pid is None
