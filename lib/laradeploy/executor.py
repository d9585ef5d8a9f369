from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Protocol, Sequence

from .commands import Command, render_batch
from .errors import RemoteCommandError

logger = logging.getLogger(__name__)


class Session(Protocol):
    """Authenticated command channel to one host as one user."""

    def run(self, command: str, *, cwd: str | None = None) -> subprocess.CompletedProcess: ...

    def run_input(
            self,
            command: str,
            content: str,
            *,
            log_label: str,
            cwd: str | None = None,
    ) -> subprocess.CompletedProcess: ...

    def run_privileged(self, command: str, *, cwd: str | None = None) -> subprocess.CompletedProcess: ...

    def run_input_privileged(
            self,
            command: str,
            content: str,
            *,
            log_label: str,
            cwd: str | None = None,
    ) -> subprocess.CompletedProcess: ...


@dataclass(frozen=True)
class CommandResult:
    command: str
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class RemoteExecutor:
    """Runs commands over a session, one at a time, without retries.

    Transport failures surface as ``RemoteConnectionError`` and timeouts as
    ``CommandTimeoutError`` from the session itself; a non-zero exit becomes
    ``RemoteCommandError`` unless the caller passes ``check=False``.
    """

    def __init__(self, session: Session):
        self.session = session

    def run(
            self,
            command: Command,
            *,
            input: str | None = None,
            cwd: str | None = None,
            check: bool = True,
    ) -> CommandResult:
        rendered = command.render()
        logger.debug("remote%s: %s", " [sudo]" if command.sudo else "", command.describe())
        res = self._dispatch(rendered, command.sudo, input=input, label=command.describe(), cwd=cwd)
        return self._result(command.describe(), res, check=check)

    def run_batch(
            self,
            commands: Sequence[Command],
            *,
            cwd: str | None = None,
            sudo: bool = False,
            check: bool = True,
    ) -> CommandResult:
        """Send several commands as one remote shell script.

        Shell state (``cd``, exported variables) carries across the batch,
        and ``set -e`` stops it at the first failing command.
        """
        if not commands:
            raise ValueError("Batch must contain at least one command.")
        script = render_batch(commands, cwd=cwd)
        label = " && ".join(command.describe() for command in commands)
        logger.debug("remote batch%s (cwd=%s): %s", " [sudo]" if sudo else "", cwd or "~", label)
        res = self._dispatch(script, sudo, input=None, label=label, cwd=None)
        return self._result(label, res, check=check)

    def _dispatch(
            self,
            rendered: str,
            sudo: bool,
            *,
            input: str | None,
            label: str,
            cwd: str | None,
    ) -> subprocess.CompletedProcess:
        if input is not None:
            if sudo:
                return self.session.run_input_privileged(rendered, input, log_label=label, cwd=cwd)
            return self.session.run_input(rendered, input, log_label=label, cwd=cwd)
        if sudo:
            return self.session.run_privileged(rendered, cwd=cwd)
        return self.session.run(rendered, cwd=cwd)

    @staticmethod
    def _result(label: str, res: subprocess.CompletedProcess, *, check: bool) -> CommandResult:
        result = CommandResult(
            command=label,
            stdout=res.stdout or "",
            stderr=res.stderr or "",
            exit_code=res.returncode,
        )
        if check and not result.ok:
            raise RemoteCommandError(label, result.exit_code, stderr=result.stderr, stdout=result.stdout)
        return result
