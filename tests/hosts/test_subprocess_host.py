"""
Tests for SubprocessAgentHost - fallback when tmux is not available.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from featureloop.hosts.base import AgentLaunchError
from featureloop.hosts.registry import AgentRegistry
from featureloop.hosts.subprocess_host import SubprocessAgentHost


def fake_process(pid=12345, alive=True):
    proc = MagicMock()
    proc.pid = pid
    proc.poll.return_value = None if alive else 0
    return proc


@pytest.fixture
def registry(tmp_path):
    return AgentRegistry(tmp_path / "agents.json")


@pytest.fixture
def host(tmp_path, registry):
    return SubprocessAgentHost(
        tmp_path,
        registry,
        log_dir=tmp_path / "logs",
        claude_binary="claude",
        sleep=lambda _: None,
    )


class TestSubprocessAgentHost:

    def test_start_spawns_process(self, host, tmp_path, registry):
        proc = fake_process()
        with patch("featureloop.hosts.subprocess_host.subprocess.Popen", return_value=proc) as popen:
            handle = host.start("search", tmp_path, env={"FEATURE": "search"})

        args, kwargs = popen.call_args
        assert args[0] == ["claude", "--dangerously-skip-permissions"]
        assert kwargs["stdin"] == subprocess.PIPE
        assert kwargs["env"]["FEATURE"] == "search"
        assert kwargs["start_new_session"] is True
        assert handle.target == "pid-12345"
        assert registry.get("search").pid == 12345
        assert (tmp_path / "logs" / "search.log").exists()

    def test_start_is_idempotent(self, host, tmp_path):
        with patch("featureloop.hosts.subprocess_host.subprocess.Popen", return_value=fake_process()) as popen:
            host.start("search", tmp_path)
            host.start("search", tmp_path)

        popen.assert_called_once()

    def test_launch_failure(self, host, tmp_path):
        with patch("featureloop.hosts.subprocess_host.subprocess.Popen", side_effect=FileNotFoundError("claude")):
            with pytest.raises(AgentLaunchError):
                host.start("search", tmp_path)

    def test_initial_input_written_to_stdin(self, host, tmp_path):
        proc = fake_process()
        with patch("featureloop.hosts.subprocess_host.subprocess.Popen", return_value=proc):
            host.start("qa", tmp_path, initial_input="wait for RUN_QA")

        proc.stdin.write.assert_called_once_with("wait for RUN_QA\n")
        proc.stdin.flush.assert_called()

    def test_dead_process(self, host, tmp_path):
        proc = fake_process()
        with patch("featureloop.hosts.subprocess_host.subprocess.Popen", return_value=proc):
            handle = host.start("qa", tmp_path)
        proc.poll.return_value = 1

        assert not host.is_alive(handle)
        assert host.send_input(handle, "hello") is False

    def test_broken_pipe_is_dropped(self, host, tmp_path):
        proc = fake_process()
        proc.stdin.write.side_effect = BrokenPipeError()
        with patch("featureloop.hosts.subprocess_host.subprocess.Popen", return_value=proc):
            handle = host.start("qa", tmp_path)

        assert host.send_input(handle, "hello") is False
        assert proc.stdin.write.call_count == host.send_retries

    def test_unknown_agent(self, host):
        handle = host.resolve("ghost")

        assert handle.target == "ghost"
        assert not host.is_alive(handle)

    def test_stop_sends_sigterm(self, host, tmp_path, registry):
        proc = fake_process(pid=4242)
        with patch("featureloop.hosts.subprocess_host.subprocess.Popen", return_value=proc):
            handle = host.start("search", tmp_path)

        with patch("featureloop.hosts.subprocess_host.os.kill") as kill:
            host.stop(handle)

        assert kill.call_args[0][0] == 4242
        assert registry.get("search").status == "terminated"
        assert not host.is_alive(handle)

    def test_multiline_initial_input_written_line_by_line(self, host, tmp_path):
        proc = fake_process()
        with patch("featureloop.hosts.subprocess_host.subprocess.Popen", return_value=proc):
            host.start("qa", tmp_path, initial_input="line one\nline two")

        assert [c.args[0] for c in proc.stdin.write.call_args_list] == ["line one\n", "line two\n"]

    def test_cleanup_stops_every_process(self, host, tmp_path, registry):
        with patch("featureloop.hosts.subprocess_host.subprocess.Popen",
                   side_effect=[fake_process(pid=1), fake_process(pid=2)]):
            host.start("qa", tmp_path)
            host.start("search", tmp_path)

        with patch("featureloop.hosts.subprocess_host.os.kill") as kill:
            host.cleanup()

        assert sorted(c.args[0] for c in kill.call_args_list) == [1, 2]
        assert registry.list_active() == []
