from __future__ import annotations


class DeployError(Exception):
    """Base deployment error."""


class ValidationError(DeployError, ValueError):
    """Plan input rejected before any remote action."""


class RemoteConnectionError(DeployError, ConnectionError):
    """Transport to the remote host could not be established."""


class RemoteCommandError(DeployError):
    def __init__(
            self,
            command: str,
            exit_code: int,
            stderr: str | None = None,
            stdout: str | None = None,
            message: str | None = None,
    ):
        super().__init__(message or f"Remote command exited with {exit_code}: {command}")
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr or ""
        self.stdout = stdout or ""


class CommandTimeoutError(RemoteCommandError):
    def __init__(self, command: str, timeout: float):
        super().__init__(command, -1, message=f"Remote command timed out after {timeout:g}s: {command}")
        self.timeout = timeout


class CloneError(DeployError):
    def __init__(self, message: str, *, exit_code: int | None = None, stderr: str | None = None):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr or ""


class ConfigValidationError(DeployError):
    """Reverse-proxy configuration failed `nginx -t`."""

    def __init__(self, message: str, *, stderr: str | None = None):
        super().__init__(message)
        self.stderr = stderr or ""
