from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from typing import Any

import tomli_w
from platformdirs import user_config_dir

from laradeploy.plan import DEFAULT_ENV_TEMPLATE, DEFAULT_PROJECT_PATH, DEFAULT_WEB_USER

from . import console

APP_NAME = "laradeploy"
CONFIG_FILENAME = "config.toml"
ENV_SSH_KEY = "LARADEPLOY_SSH_KEY"
HOST_KEY_CHECKING_MODES = ("yes", "accept-new", "no")


@dataclass
class SshSettings:
    port: int = 22
    key_path: str = ""
    sudo: bool = True
    timeout: float | None = None
    host_key_checking: str = "yes"


@dataclass
class DeploySettings:
    project_path: str = DEFAULT_PROJECT_PATH
    runtime_version: str = ""
    app_env: str = "production"
    web_user: str = DEFAULT_WEB_USER
    env_template: str = DEFAULT_ENV_TEMPLATE
    certificate_email: str = ""


@dataclass
class AppSettings:
    ssh: SshSettings = field(default_factory=SshSettings)
    deploy: DeploySettings = field(default_factory=DeploySettings)


def config_path() -> str:
    return f"{user_config_dir(APP_NAME)}/{CONFIG_FILENAME}"


def default_config() -> AppSettings:
    return AppSettings()


def ensure_parent_dir(path: str) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)


def to_toml(cfg: AppSettings) -> dict[str, Any]:
    ssh: dict[str, Any] = {
        "port": cfg.ssh.port,
        "key_path": cfg.ssh.key_path,
        "sudo": cfg.ssh.sudo,
        "host_key_checking": cfg.ssh.host_key_checking,
    }
    if cfg.ssh.timeout is not None:
        ssh["timeout"] = cfg.ssh.timeout
    return {
        "ssh": ssh,
        "deploy": {
            "project_path": cfg.deploy.project_path,
            "runtime_version": cfg.deploy.runtime_version,
            "app_env": cfg.deploy.app_env,
            "web_user": cfg.deploy.web_user,
            "env_template": cfg.deploy.env_template,
            "certificate_email": cfg.deploy.certificate_email,
        },
    }


def _as_str(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value).strip()


def from_toml(data: dict[str, Any]) -> AppSettings:
    cfg = default_config()
    ssh_raw = data.get("ssh") or {}
    if isinstance(ssh_raw, dict):
        port = ssh_raw.get("port")
        if isinstance(port, int) and 0 < port < 65536:
            cfg.ssh.port = port
        cfg.ssh.key_path = _as_str(ssh_raw.get("key_path"), cfg.ssh.key_path)
        if isinstance(ssh_raw.get("sudo"), bool):
            cfg.ssh.sudo = ssh_raw["sudo"]
        timeout = ssh_raw.get("timeout")
        if isinstance(timeout, (int, float)) and not isinstance(timeout, bool) and timeout > 0:
            cfg.ssh.timeout = float(timeout)
        checking = _as_str(ssh_raw.get("host_key_checking"), cfg.ssh.host_key_checking)
        if checking in HOST_KEY_CHECKING_MODES:
            cfg.ssh.host_key_checking = checking
        else:
            console.warn(f"Ignoring unknown ssh.host_key_checking value: {checking!r}")
    deploy_raw = data.get("deploy") or {}
    if isinstance(deploy_raw, dict):
        d = cfg.deploy
        d.project_path = _as_str(deploy_raw.get("project_path"), d.project_path) or DEFAULT_PROJECT_PATH
        d.runtime_version = _as_str(deploy_raw.get("runtime_version"), d.runtime_version)
        d.app_env = _as_str(deploy_raw.get("app_env"), d.app_env) or "production"
        d.web_user = _as_str(deploy_raw.get("web_user"), d.web_user) or DEFAULT_WEB_USER
        d.env_template = _as_str(deploy_raw.get("env_template"), d.env_template) or DEFAULT_ENV_TEMPLATE
        d.certificate_email = _as_str(deploy_raw.get("certificate_email"), d.certificate_email)
    return cfg


def load_config() -> AppSettings:
    path = config_path()
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        return default_config()
    except tomllib.TOMLDecodeError as exc:
        console.warn(f"Ignoring unreadable settings file {path}: {exc}")
        return default_config()
    return from_toml(data)


def save_config(cfg: AppSettings) -> str:
    path = config_path()
    ensure_parent_dir(path)
    with open(path, "wb") as f:
        f.write(tomli_w.dumps(to_toml(cfg)).encode("utf-8"))
    os.chmod(path, 0o600)
    return path


def resolve_ssh_key(cfg: AppSettings, override: str | None = None) -> str | None:
    if override:
        return override
    env_value = os.getenv(ENV_SSH_KEY, "").strip()
    if env_value:
        return env_value
    return cfg.ssh.key_path or None
