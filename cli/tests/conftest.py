from __future__ import annotations

import subprocess
from dataclasses import dataclass, field

import pytest

from laradeploy.executor import RemoteExecutor
from laradeploy.plan import build_plan


@dataclass
class Call:
    command: str
    input: str | None = None
    privileged: bool = False
    cwd: str | None = None


@dataclass
class _Rule:
    needles: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


@dataclass
class FakeSession:
    """Records every remote command; replies from substring rules (first match wins)."""

    calls: list[Call] = field(default_factory=list)
    rules: list[_Rule] = field(default_factory=list)
    started: bool = False
    closed: bool = False

    def respond(self, *needles: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.rules.append(_Rule(needles, returncode, stdout, stderr))

    def commands(self) -> list[str]:
        return [call.command for call in self.calls]

    def index_of(self, needle: str) -> int:
        for idx, command in enumerate(self.commands()):
            if needle in command:
                return idx
        raise AssertionError(f"no command containing {needle!r}")

    def _reply(self, call: Call) -> subprocess.CompletedProcess:
        self.calls.append(call)
        for rule in self.rules:
            if all(needle in call.command for needle in rule.needles):
                return subprocess.CompletedProcess([], rule.returncode, rule.stdout, rule.stderr)
        return subprocess.CompletedProcess([], 0, "", "")

    def run(self, command, *, cwd=None):
        return self._reply(Call(command, cwd=cwd))

    def run_input(self, command, content, *, log_label, cwd=None):
        return self._reply(Call(command, input=content, cwd=cwd))

    def run_privileged(self, command, *, cwd=None):
        return self._reply(Call(command, privileged=True, cwd=cwd))

    def run_input_privileged(self, command, content, *, log_label, cwd=None):
        return self._reply(Call(command, input=content, privileged=True, cwd=cwd))

    # SSHSession surface used by the deploy command
    def start(self) -> None:
        self.started = True

    def close(self) -> None:
        self.closed = True

    def detect_sudo(self) -> str:
        return "nopass"


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def executor(session: FakeSession) -> RemoteExecutor:
    return RemoteExecutor(session)


@pytest.fixture
def make_plan():
    def _make(**overrides):
        params = dict(
            repo_url="git@github.com:acme/shop.git",
            server_host="203.0.113.10",
            ssh_user="deploy",
            runtime_version="8.2",
            domain_name="shop.example.com",
            project_path="/var/www",
        )
        params.update(overrides)
        return build_plan(**params)

    return _make


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    from laradeploy_cli import config

    monkeypatch.setattr(config, "user_config_dir", lambda _: str(tmp_path))
    monkeypatch.delenv(config.ENV_SSH_KEY, raising=False)
    return tmp_path
