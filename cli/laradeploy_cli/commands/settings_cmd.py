from __future__ import annotations

import typer

from laradeploy.errors import ValidationError
from laradeploy.plan import DEFAULT_WEB_USER, normalize_project_path, validate_runtime_version

from .. import console
from ..config import HOST_KEY_CHECKING_MODES, config_path, load_config, resolve_ssh_key, save_config

app = typer.Typer(help="Manage local CLI settings (~/.config/laradeploy/config.toml).")


@app.command("show")
def show_settings():
    cfg = load_config()
    key = resolve_ssh_key(cfg) or "(none)"
    timeout = f"{cfg.ssh.timeout:g}s" if cfg.ssh.timeout else "(none)"
    console.console.print(f"config={config_path()}", markup=False)
    console.console.print(
        f"ssh.port={cfg.ssh.port} ssh.key_path={key} ssh.sudo={cfg.ssh.sudo} "
        f"ssh.timeout={timeout} ssh.host_key_checking={cfg.ssh.host_key_checking}",
        markup=False,
    )
    d = cfg.deploy
    console.console.print(
        f"deploy.project_path={d.project_path} deploy.runtime_version={d.runtime_version or '(unset)'} "
        f"deploy.app_env={d.app_env} deploy.web_user={d.web_user} deploy.env_template={d.env_template} "
        f"deploy.certificate_email={d.certificate_email or '(unset)'}",
        markup=False,
    )


@app.command("set")
def set_setting(
        ssh_port: int | None = typer.Option(None, "--ssh-port", help="Default SSH port."),
        ssh_key: str | None = typer.Option(None, "--ssh-key", help="Default SSH private key path."),
        sudo: bool | None = typer.Option(None, "--sudo/--no-sudo", help="Use sudo for privileged commands."),
        timeout: float | None = typer.Option(None, "--timeout", help="Per-command timeout in seconds (0 disables)."),
        host_key_checking: str | None = typer.Option(
            None, "--host-key-checking", help="StrictHostKeyChecking mode: yes, accept-new or no."
        ),
        project_path: str | None = typer.Option(None, "--project-path", help="Default project directory."),
        php_version: str | None = typer.Option(None, "--php-version", help="Default PHP version (major.minor)."),
        app_env: str | None = typer.Option(None, "--env", help="Default Laravel environment."),
        web_user: str | None = typer.Option(None, "--web-user", help="Web server user."),
        env_template: str | None = typer.Option(None, "--env-template", help="Template copied to .env."),
        certificate_email: str | None = typer.Option(None, "--certificate-email", help="Let's Encrypt email."),
):
    cfg = load_config()
    try:
        if ssh_port is not None:
            if not 0 < ssh_port < 65536:
                raise ValidationError(f"Invalid SSH port: {ssh_port}")
            cfg.ssh.port = ssh_port
        if ssh_key is not None:
            cfg.ssh.key_path = ssh_key.strip()
        if sudo is not None:
            cfg.ssh.sudo = sudo
        if timeout is not None:
            cfg.ssh.timeout = timeout if timeout > 0 else None
        if host_key_checking is not None:
            if host_key_checking not in HOST_KEY_CHECKING_MODES:
                raise ValidationError(
                    f"Invalid host key checking mode: {host_key_checking!r} "
                    f"(expected one of {', '.join(HOST_KEY_CHECKING_MODES)})."
                )
            cfg.ssh.host_key_checking = host_key_checking
        if project_path is not None:
            cfg.deploy.project_path = normalize_project_path(project_path)
        if php_version is not None:
            cfg.deploy.runtime_version = validate_runtime_version(php_version) if php_version.strip() else ""
        if app_env is not None:
            cfg.deploy.app_env = app_env.strip() or "production"
        if web_user is not None:
            cfg.deploy.web_user = web_user.strip() or DEFAULT_WEB_USER
        if env_template is not None:
            cfg.deploy.env_template = env_template.strip() or cfg.deploy.env_template
        if certificate_email is not None:
            cfg.deploy.certificate_email = certificate_email.strip()
    except ValidationError as exc:
        console.err(str(exc))
        raise typer.Exit(code=2)
    saved = save_config(cfg)
    console.ok(f"Settings updated: {saved}")
