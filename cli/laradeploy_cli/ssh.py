from __future__ import annotations

import functools
import os
import platform
import re
import shlex
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from laradeploy.errors import CommandTimeoutError, RemoteConnectionError

from . import console

# ssh exits 255 both for its own failures and for remote commands that do; only
# these diagnostics mean the transport itself is down.
_SSH_TRANSPORT_ERRORS = (
    "connection refused",
    "connection timed out",
    "connection closed",
    "could not resolve hostname",
    "no route to host",
    "network is unreachable",
    "permission denied (",
    "host key verification failed",
    "connection reset",
    "broken pipe",
)


@dataclass
class SshTarget:
    host: str
    user: str = "root"
    port: int = 22
    key_path: str | None = None
    password: str | None = None
    sudo: bool = False
    sudo_password: str | None = None
    dry_run: bool = False
    sudo_mode: str | None = None
    timeout: float | None = None
    host_key_checking: str = "yes"

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.host}"


@dataclass
class SSHSession:
    target: SshTarget
    control_path: str
    _started: bool = field(default=False, init=False, repr=False)
    _control_master_enabled: bool = field(default=True, init=False, repr=False)

    def __post_init__(self) -> None:
        self._control_master_enabled = supports_control_master()

    def start(self) -> None:
        if self.target.dry_run:
            return
        if not self._control_master_enabled:
            self._check_connection(control_master=False)
            return
        cmd = self._ssh_base_cmd(control_master=True) + [self.target.destination, "true"]
        res = self._spawn(cmd, "true", input=None)
        if res.returncode != 0:
            if _is_control_master_unsupported(_decode_stderr(res.stderr or res.stdout)):
                self._control_master_enabled = False
                self._check_connection(control_master=False)
                return
            raise RemoteConnectionError(
                _decode_stderr(res.stderr) or f"Failed to establish SSH connection to {self.target.destination}"
            )
        if not is_windows():
            self._started = True

    def _check_connection(self, *, control_master: bool) -> None:
        cmd = self._ssh_base_cmd(control_master=control_master) + [self.target.destination, "true"]
        res = self._spawn(cmd, "true", input=None)
        if res.returncode != 0:
            raise RemoteConnectionError(
                _decode_stderr(res.stderr) or f"Failed to establish SSH connection to {self.target.destination}"
            )

    def close(self) -> None:
        if self.target.dry_run or not self._started:
            return
        cmd = self._ssh_base_cmd(control_master=False) + ["-O", "exit", self.target.destination]
        try:
            subprocess.run(cmd, text=True, capture_output=True, env=_ssh_env(self.target.password), timeout=10)
        except (OSError, subprocess.TimeoutExpired):
            return
        self._started = False

    def run(self, command: str, *, cwd: str | None = None) -> subprocess.CompletedProcess:
        remote_cmd = _with_cwd(command, cwd)
        if self.target.dry_run:
            console.info(f"[dry-run] ssh {self.target.destination}: {remote_cmd}")
            return subprocess.CompletedProcess([], 0, "", "")
        cmd = self._ssh_base_cmd(control_master=False) + [self.target.destination, remote_cmd]
        return self._checked_transport(self._spawn(cmd, remote_cmd, input=None))

    def run_input(
            self,
            command: str,
            content: str,
            *,
            log_label: str,
            cwd: str | None = None,
    ) -> subprocess.CompletedProcess:
        remote_cmd = _with_cwd(command, cwd)
        if self.target.dry_run:
            console.info(f"[dry-run] ssh {self.target.destination}: {log_label}")
            return subprocess.CompletedProcess([], 0, "", "")
        cmd = self._ssh_base_cmd(control_master=False) + [self.target.destination, remote_cmd]
        return self._checked_transport(self._spawn(cmd, log_label, input=content))

    def run_privileged(self, command: str, *, cwd: str | None = None) -> subprocess.CompletedProcess:
        if not self.target.sudo:
            return self.run(command, cwd=cwd)
        self._ensure_sudo_mode()
        sudo_cmd = _sudo_command_with_cwd(self.target, command, cwd)
        if self.target.dry_run:
            console.info(f"[dry-run] ssh {self.target.destination}: [sudo] {_with_cwd(command, cwd)}")
            return subprocess.CompletedProcess([], 0, "", "")
        cmd = self._ssh_base_cmd(control_master=False) + [self.target.destination, sudo_cmd]
        stdin = f"{self.target.sudo_password}\n" if self.target.sudo_mode == "password" else None
        return self._checked_transport(self._spawn(cmd, command, input=stdin))

    def run_input_privileged(
            self,
            command: str,
            content: str,
            *,
            log_label: str,
            cwd: str | None = None,
    ) -> subprocess.CompletedProcess:
        if not self.target.sudo:
            return self.run_input(command, content, log_label=log_label, cwd=cwd)
        self._ensure_sudo_mode()
        sudo_cmd = _sudo_command_with_cwd(self.target, command, cwd)
        if self.target.dry_run:
            console.info(f"[dry-run] ssh {self.target.destination}: [sudo] {log_label}")
            return subprocess.CompletedProcess([], 0, "", "")
        cmd = self._ssh_base_cmd(control_master=False) + [self.target.destination, sudo_cmd]
        if self.target.sudo_mode == "password":
            content = f"{self.target.sudo_password}\n{content}"
        return self._checked_transport(self._spawn(cmd, log_label, input=content))

    def detect_sudo(self) -> str:
        """Return ``root``, ``nopass`` or ``password`` for the remote user."""
        if self.target.dry_run:
            self.target.sudo_mode = "nopass"
            return "nopass"
        res = self.run("id -u")
        if res.returncode == 0 and (res.stdout or "").strip() == "0":
            self.target.sudo = False
            return "root"
        if self.run("command -v sudo >/dev/null 2>&1").returncode != 0:
            raise RemoteConnectionError("Remote user does not have sufficient privileges (sudo required)")
        check = self.run("sudo -n true")
        if check.returncode == 0:
            self.target.sudo_mode = "nopass"
            return "nopass"
        stderr = (check.stderr or "").lower()
        if "not in the sudoers file" in stderr or "is not allowed to run sudo" in stderr:
            raise RemoteConnectionError("Remote user does not have sufficient privileges (sudo required)")
        return "password"

    def verify_sudo_password(self, password: str) -> bool:
        verify = self.run_input("sudo -S -p '' true", f"{password}\n", log_label="sudo check")
        if verify.returncode != 0:
            return False
        self.target.sudo_password = password
        self.target.sudo_mode = "password"
        return True

    def _ensure_sudo_mode(self) -> None:
        if self.target.sudo_mode:
            return
        if self.target.dry_run:
            self.target.sudo_mode = "nopass"
            return
        if self.run("sudo -n true").returncode == 0:
            self.target.sudo_mode = "nopass"
            return
        if self.target.sudo_password:
            self.target.sudo_mode = "password"
            return
        raise RemoteConnectionError("Sudo requires a password. Re-run with --sudo-password or configure NOPASSWD.")

    def _spawn(self, cmd: list[str], label: str, *, input: str | None) -> subprocess.CompletedProcess:
        # Killing the local ssh client on timeout closes the channel and the remote session with it.
        try:
            return subprocess.run(
                cmd,
                text=True,
                input=input,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                env=_ssh_env(self.target.password),
                timeout=self.target.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandTimeoutError(label, self.target.timeout or 0) from exc
        except FileNotFoundError as exc:
            raise RemoteConnectionError(f"SSH client not found: {exc.filename}") from exc

    def _checked_transport(self, res: subprocess.CompletedProcess) -> subprocess.CompletedProcess:
        if res.returncode == 255 and _is_transport_failure(res.stderr):
            raise RemoteConnectionError(
                f"SSH connection to {self.target.destination} failed: {_decode_stderr(res.stderr)}"
            )
        return res

    def _ssh_base_cmd(self, *, control_master: bool) -> list[str]:
        cmd = ["ssh", "-p", str(self.target.port), "-o", f"StrictHostKeyChecking={self.target.host_key_checking}"]
        if not is_windows() and self._control_master_enabled:
            cmd += ["-o", f"ControlPath={self.control_path}"]
            if control_master:
                cmd += ["-o", "ControlMaster=auto", "-o", "ControlPersist=10m"]
        if self.target.key_path:
            cmd += ["-i", self.target.key_path]
        if self.target.password:
            if is_windows():
                raise RemoteConnectionError(
                    "Password SSH authentication is not supported on Windows. "
                    "Use --ssh-key or deploy from Linux/macOS."
                )
            if not shutil.which("sshpass"):
                raise RemoteConnectionError("sshpass is required for password authentication")
            cmd = ["sshpass", "-e"] + cmd
        return cmd


def _decode_stderr(raw: bytes | str | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="ignore").strip()
    return str(raw).strip()


def _is_transport_failure(stderr: str | None) -> bool:
    lowered = _decode_stderr(stderr).lower()
    if not lowered:
        return False
    return lowered.startswith("ssh:") or any(token in lowered for token in _SSH_TRANSPORT_ERRORS)


def build_control_path(*, dry_run: bool) -> str:
    if dry_run:
        if is_windows():
            return str(Path(tempfile.gettempdir()) / "laradeploy-ctl-%C")
        return "/tmp/laradeploy-ctl-%C"
    base = Path(os.path.expanduser("~/.cache/laradeploy/ctl"))
    base.mkdir(parents=True, exist_ok=True)
    return str(base / "%C")


def is_windows() -> bool:
    return os.name == "nt" or platform.system() == "Windows"


@functools.lru_cache(maxsize=1)
def _ssh_version() -> tuple[int, int] | None:
    try:
        res = subprocess.run(["ssh", "-V"], text=True, capture_output=True)
    except FileNotFoundError:
        return None
    output = (res.stderr or res.stdout or "").strip()
    match = re.search(r"OpenSSH_(\d+)\.(\d+)", output)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def supports_control_master() -> bool:
    if is_windows():
        return False
    version = _ssh_version()
    if version is None:
        return True
    major, minor = version
    return (major, minor) >= (4, 0)


def _is_control_master_unsupported(stderr: str) -> bool:
    if not stderr:
        return False
    lowered = stderr.lower()
    return any(
        token in lowered
        for token in (
            "bad configuration option: controlmaster",
            "bad configuration option: controlpersist",
            "bad configuration option: controlpath",
        )
    )


def _sudo_prefix(target: SshTarget) -> str:
    if target.sudo_mode == "password":
        return "sudo -S -p ''"
    return "sudo -n"


def _with_cwd(command: str, cwd: str | None) -> str:
    if not cwd:
        return command
    return f"cd {shlex.quote(cwd)} && {command}"


def _sudo_command_with_cwd(target: SshTarget, command: str, cwd: str | None) -> str:
    wrapped = _with_cwd(command, cwd)
    return f"{_sudo_prefix(target)} sh -c {shlex.quote(wrapped)}"


def _ssh_env(password: str | None) -> dict[str, str] | None:
    if not password:
        return None
    env = os.environ.copy()
    env["SSHPASS"] = password
    return env
