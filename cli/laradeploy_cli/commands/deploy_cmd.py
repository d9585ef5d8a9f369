from __future__ import annotations

import typer

from laradeploy.errors import DeployError, RemoteConnectionError, ValidationError
from laradeploy.executor import RemoteExecutor
from laradeploy.pipeline import run_pipeline
from laradeploy.plan import DeploymentPlan

from .. import console
from ..config import AppSettings, load_config, resolve_ssh_key
from ..interactive import confirm_choice, prompt_secret
from ..plan_input import PlanInputs, collect_inputs, load_plan_file, to_plan, write_plan_template
from ..probe import probe_site
from ..reporting import print_plan, print_summary, render_event, report_failure
from ..ssh import SSHSession, SshTarget, build_control_path


def _make_session(target: SshTarget) -> SSHSession:
    return SSHSession(target=target, control_path=build_control_path(dry_run=target.dry_run))


def deploy(
        plan_file: str | None = typer.Option(None, "--plan", help="TOML plan file (see `laradeploy plan-template`)."),
        repo_url: str | None = typer.Option(None, "--repo-url", help="SSH URL of the Git repository."),
        host: str | None = typer.Option(None, "--host", help="Server SSH host or IP address."),
        user: str | None = typer.Option(None, "--user", help="SSH username."),
        ssh_port: int | None = typer.Option(None, "--ssh-port", help="SSH port."),
        project_path: str | None = typer.Option(None, "--project-path", help="Absolute directory holding the checkout."),
        app_env: str | None = typer.Option(None, "--env", help="Laravel APP_ENV value."),
        app_key: str | None = typer.Option(None, "--app-key", help="Laravel APP_KEY (generated on the server if empty)."),
        php_version: str | None = typer.Option(None, "--php-version", help="PHP version, major.minor (e.g. 8.2)."),
        domain: str | None = typer.Option(None, "--domain", help="Domain name served by Nginx."),
        create_db: bool | None = typer.Option(None, "--create-db/--no-create-db", help="Create a MySQL database."),
        db_name: str | None = typer.Option(None, "--db-name", help="MySQL database name."),
        db_root_password: str | None = typer.Option(None, "--db-root-password", help="MySQL root password."),
        db_user: str | None = typer.Option(None, "--db-user", help="Dedicated MySQL user to create."),
        db_user_password: str | None = typer.Option(None, "--db-user-password", help="Password for --db-user."),
        migrations: bool | None = typer.Option(None, "--migrations/--no-migrations", help="Run migrations and seeders."),
        certificate: bool | None = typer.Option(
            None, "--certificate/--no-certificate", help="Request a Let's Encrypt certificate."
        ),
        certificate_email: str | None = typer.Option(None, "--certificate-email", help="Let's Encrypt account email."),
        web_user: str | None = typer.Option(None, "--web-user", help="Web server user owning writable dirs."),
        env_template: str | None = typer.Option(None, "--env-template", help="Template copied to .env."),
        ssh_key: str | None = typer.Option(None, "--ssh-key", help="SSH private key path."),
        ssh_password: str | None = typer.Option(None, "--ssh-password", help="SSH password (requires sshpass)."),
        sudo: bool | None = typer.Option(None, "--sudo/--no-sudo", help="Use sudo for privileged commands."),
        sudo_password: str | None = typer.Option(None, "--sudo-password", help="Sudo password for the SSH user."),
        timeout: float | None = typer.Option(None, "--timeout", help="Per-command timeout in seconds."),
        dry_run: bool = typer.Option(False, "--dry-run", help="Print remote commands without executing them."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
        verify_http: bool = typer.Option(False, "--verify-http", help="Probe the site over HTTP after deploying."),
        non_interactive: bool = typer.Option(False, "--non-interactive", help="Never prompt; fail on missing input."),
):
    """Provision the server and deploy a Laravel application."""
    cfg = load_config()
    flags = PlanInputs(
        repo_url=repo_url,
        server_host=host,
        ssh_user=user,
        ssh_port=ssh_port,
        project_path=project_path,
        app_env=app_env,
        app_key=app_key,
        runtime_version=php_version,
        domain_name=domain,
        create_database=create_db,
        db_name=db_name,
        db_root_password=db_root_password,
        db_user=db_user,
        db_user_password=db_user_password,
        install_migrations=migrations,
        issue_certificate=certificate,
        certificate_email=certificate_email,
        web_user=web_user,
        env_template=env_template,
    )
    try:
        inputs = load_plan_file(plan_file).merged(flags) if plan_file else flags
    except ValidationError as exc:
        console.err(str(exc))
        raise typer.Exit(code=2)

    inputs = collect_inputs(inputs, cfg, non_interactive=non_interactive)
    try:
        plan = to_plan(inputs, cfg)
    except ValidationError as exc:
        console.err(str(exc))
        raise typer.Exit(code=2)

    print_plan(plan)
    if not (yes or dry_run or non_interactive):
        if not confirm_choice("Proceed with deployment?", default=True):
            console.info("Deployment cancelled.")
            raise typer.Exit(code=1)

    target = SshTarget(
        host=plan.server_host,
        user=plan.ssh_user,
        port=plan.ssh_port,
        key_path=resolve_ssh_key(cfg, ssh_key),
        password=ssh_password,
        sudo=cfg.ssh.sudo if sudo is None else sudo,
        sudo_password=sudo_password,
        dry_run=dry_run,
        timeout=timeout if timeout is not None else cfg.ssh.timeout,
        host_key_checking=cfg.ssh.host_key_checking,
    )
    session = _make_session(target)
    try:
        try:
            session.start()
            if target.sudo:
                _ensure_remote_sudo(session, target, non_interactive=non_interactive)
        except DeployError as exc:
            console.err(str(exc))
            raise typer.Exit(code=2)
        report = run_pipeline(plan, RemoteExecutor(session), on_event=render_event)
    finally:
        session.close()

    if report.failure is not None:
        report_failure(report)
        raise typer.Exit(code=2)
    print_summary(report)
    if verify_http and not dry_run:
        _verify_site(plan, report.site_urls())


def _ensure_remote_sudo(session: SSHSession, target: SshTarget, *, non_interactive: bool) -> None:
    mode = session.detect_sudo()
    if mode == "root":
        console.info("Remote sudo: not required (running as root).")
        return
    if mode == "nopass":
        console.info("Remote sudo: enabled.")
        return
    if target.sudo_password:
        if not session.verify_sudo_password(target.sudo_password):
            raise RemoteConnectionError("Sudo authentication failed.")
        return
    if non_interactive:
        raise RemoteConnectionError("Sudo requires a password. Re-run with --sudo-password or without --non-interactive.")
    console.info("Sudo password required for remote host.")
    if not session.verify_sudo_password(prompt_secret("Sudo password")):
        raise RemoteConnectionError("Sudo authentication failed.")


def _verify_site(plan: DeploymentPlan, urls: list[str]) -> None:
    console.info(f"Probing {plan.domain_name}...")
    for url in urls:
        probe_site(url)


def plan_template(
        path: str = typer.Argument(..., help="Where to write the TOML plan template."),
        force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
):
    """Write a plan file skeleton; secrets are never written."""
    cfg: AppSettings = load_config()
    try:
        written = write_plan_template(path, cfg, force=force)
    except FileExistsError:
        console.err(f"File already exists: {path}")
        console.info("Use --force to overwrite.")
        raise typer.Exit(code=2)
    except OSError as exc:
        console.err(f"Cannot write plan template: {exc}")
        raise typer.Exit(code=2)
    console.ok(f"Plan template written: {written}")
    console.info("Secrets (app key, database passwords) are not stored; pass them as flags or at the prompts.")
