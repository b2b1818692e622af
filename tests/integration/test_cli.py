"""Integration tests for the click CLI."""

import json
import shutil
import subprocess

import pytest
from click.testing import CliRunner

from toolguard.cli import cli
from toolguard.config import load_config

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def repo(tmp_path):
    root = tmp_path / "repo"
    root.mkdir()
    (root / "main.py").write_text("def greet():\n    return 'hi'\n")
    return root.resolve()


@pytest.fixture
def git_repo(repo):
    subprocess.run(["git", "init", "-q"], cwd=repo, check=True)
    subprocess.run(["git", "config", "user.email", "test@example.com"], cwd=repo, check=True)
    subprocess.run(["git", "config", "user.name", "Test"], cwd=repo, check=True)
    subprocess.run(["git", "add", "main.py"], cwd=repo, check=True)
    subprocess.run(["git", "commit", "-q", "-m", "initial"], cwd=repo, check=True)
    return repo


class TestFileCommands:
    """Tests for read, edit and multi-edit."""

    def test_read(self, runner, repo):
        result = runner.invoke(cli, ["read", str(repo), "main.py"])
        assert result.exit_code == 0
        assert result.output == "def greet():\n    return 'hi'\n"

    def test_read_traversal(self, runner, repo):
        result = runner.invoke(cli, ["read", str(repo), "../etc/passwd"])
        assert result.exit_code == 1
        assert "[PathTraversal]" in result.output

    def test_edit(self, runner, repo):
        result = runner.invoke(cli, ["edit", str(repo), "main.py", "--old", "'hi'", "--new", "'hello'"])
        assert result.exit_code == 0
        assert "Successfully replaced 1 occurrence(s) in main.py" in result.output
        assert "'hello'" in (repo / "main.py").read_text()

    def test_edit_no_match(self, runner, repo):
        result = runner.invoke(cli, ["edit", str(repo), "main.py", "--old", "missing", "--new", "x"])
        assert result.exit_code == 1
        assert "[NoMatch]" in result.output

    def test_multi_edit_from_stdin(self, runner, repo):
        edits = [
            {"old_string": "def greet", "new_string": "def salute"},
            {"old_string": "'hi'", "new_string": "'hey'"},
        ]
        result = runner.invoke(cli, ["multi-edit", str(repo), "main.py", "-"], input=json.dumps(edits))
        assert result.exit_code == 0
        assert "Successfully applied 2 edit(s)" in result.output
        assert (repo / "main.py").read_text() == "def salute():\n    return 'hey'\n"

    def test_multi_edit_invalid_json(self, runner, repo):
        result = runner.invoke(cli, ["multi-edit", str(repo), "main.py", "-"], input="{not json")
        assert result.exit_code == 1
        assert "Invalid edits JSON" in result.output

    def test_multi_edit_rolls_back(self, runner, repo):
        edits = [
            {"old_string": "def greet", "new_string": "def salute"},
            {"old_string": "nowhere", "new_string": "x"},
        ]
        result = runner.invoke(cli, ["multi-edit", str(repo), "main.py", "-"], input=json.dumps(edits))
        assert result.exit_code == 1
        assert "[BatchFailed] Edit 2 failed" in result.output
        assert (repo / "main.py").read_text() == "def greet():\n    return 'hi'\n"


class TestClassify:
    """Tests for the classify command."""

    @pytest.mark.parametrize(
        "argv,level",
        [
            (["status"], "read_only"),
            (["commit", "-m", "msg"], "modifying"),
            (["clean", "-fd"], "destructive"),
            (["push", "--force-with-lease"], "destructive"),
            (["branch", "-D", "feature"], "destructive"),
            (["branch", "--list"], "read_only"),
        ],
    )
    def test_levels(self, runner, argv, level):
        result = runner.invoke(cli, ["classify", *argv])
        assert result.exit_code == 0
        assert result.output.splitlines()[0] == level

    def test_unknown_subcommand(self, runner):
        result = runner.invoke(cli, ["classify", "daemon"])
        assert result.exit_code == 1
        assert "[Disallowed]" in result.output


class TestRunAndGit:
    """Tests for run and git."""

    def test_run(self, runner, repo):
        result = runner.invoke(cli, ["run", str(repo), "ls"])
        assert result.exit_code == 0
        assert "main.py" in result.output

    def test_run_propagates_exit_code(self, runner, repo):
        result = runner.invoke(cli, ["run", str(repo), "false"])
        assert result.exit_code == 1

    def test_run_refuses_interpreter(self, runner, repo):
        result = runner.invoke(cli, ["run", str(repo), "sh", "-c", "id"])
        assert result.exit_code == 1
        assert "[Disallowed]" in result.output

    @requires_git
    def test_git_status(self, runner, git_repo):
        result = runner.invoke(cli, ["git", str(git_repo), "log", "--oneline"])
        assert result.exit_code == 0
        assert "initial" in result.output

    @requires_git
    def test_git_destructive_rejected_without_tty(self, runner, git_repo):
        (git_repo / "main.py").write_text("changed\n")
        result = runner.invoke(cli, ["git", str(git_repo), "checkout", "--", "main.py"])
        assert result.exit_code == 1
        assert "[DestructiveRefused]" in result.output
        assert (git_repo / "main.py").read_text() == "changed\n"

    @requires_git
    def test_git_destructive_dry_run(self, runner, git_repo):
        result = runner.invoke(cli, ["git", "--dry-run", str(git_repo), "reset", "--hard"])
        assert result.exit_code == 1
        assert "git reset --hard" in result.output

    @requires_git
    def test_git_destructive_allowed(self, runner, git_repo):
        (git_repo / "main.py").write_text("changed\n")
        result = runner.invoke(cli, ["git", "--allow-destructive", str(git_repo), "checkout", "--", "main.py"])
        assert result.exit_code == 0
        assert (git_repo / "main.py").read_text() == "def greet():\n    return 'hi'\n"


class TestDispatch:
    """Tests for the dispatch command."""

    def test_dispatch_stream_shares_session(self, runner, repo):
        requests = [
            {"name": "read_file", "arguments": {"path": "main.py"}},
            {"name": "edit_file", "arguments": {"path": "main.py", "old_string": "'hi'", "new_string": "'yo'"}},
            {"name": "nope", "arguments": {}},
        ]
        stdin = "\n".join(json.dumps(r) for r in requests) + "\n\nnot json\n"
        result = runner.invoke(cli, ["dispatch", str(repo)], input=stdin)
        assert result.exit_code == 0

        responses = [json.loads(line) for line in result.output.splitlines()]
        assert responses[0] == {"ok": "def greet():\n    return 'hi'\n"}
        assert responses[1] == {"ok": "Successfully replaced 1 occurrence(s) in main.py"}
        assert responses[2]["code"] == "UnknownTool"
        assert responses[3]["code"] == "InvalidArguments"
        assert "'yo'" in (repo / "main.py").read_text()


class TestInitStatusTelemetry:
    """Tests for init, status and telemetry tail."""

    def test_init_writes_loadable_config(self, runner, repo):
        result = runner.invoke(cli, ["init", str(repo)])
        assert result.exit_code == 0
        assert (repo / ".toolguard.yml").exists()

        config = load_config(repo)
        assert config.edits.max_edits == 50
        assert config.rate_limits.limits["git_command"] == (60, 60.0)
        assert config.approval.webhook.url is None

    def test_init_keeps_existing(self, runner, repo):
        (repo / ".toolguard.yml").write_text("edits:\n  max_edits: 3\n")
        result = runner.invoke(cli, ["init", str(repo)], input="n\n")
        assert result.exit_code == 0
        assert (repo / ".toolguard.yml").read_text() == "edits:\n  max_edits: 3\n"

    def test_status_json(self, runner, repo):
        runner.invoke(cli, ["edit", str(repo), "main.py", "--old", "'hi'", "--new", "'hello'"])
        result = runner.invoke(cli, ["status", str(repo), "--format", "json"])
        assert result.exit_code == 0
        st = json.loads(result.output)
        assert st["edit_success_rate"] == 1.0
        assert st["edit_strategies"] == {"exact": 1}

    def test_status_text(self, runner, repo):
        result = runner.invoke(cli, ["status", str(repo)])
        assert result.exit_code == 0
        assert "Tool calls/hour: 0.00" in result.output

    def test_telemetry_tail(self, runner, repo):
        runner.invoke(cli, ["run", str(repo), "true"])
        runner.invoke(cli, ["run", str(repo), "true"])
        result = runner.invoke(cli, ["telemetry", "tail", str(repo), "-n", "1"])
        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["type"] == "command_executed"

    def test_telemetry_tail_missing(self, runner, repo):
        result = runner.invoke(cli, ["telemetry", "tail", str(repo)])
        assert result.exit_code == 1
        assert "Telemetry file not found" in result.output
