"""Collects deployment inputs from a plan file, CLI flags and prompts.

Nothing here touches the remote host: the result is a validated, frozen
``DeploymentPlan`` or a ``ValidationError``.
"""
from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields, replace
from typing import Any

import tomli_w
import typer

from laradeploy.plan import DeploymentPlan, build_database_spec, build_plan, validate_runtime_version
from laradeploy.errors import ValidationError

from . import console
from .config import AppSettings
from .interactive import confirm_choice, prompt_secret, prompt_text


@dataclass
class PlanInputs:
    repo_url: str | None = None
    server_host: str | None = None
    ssh_user: str | None = None
    ssh_port: int | None = None
    project_path: str | None = None
    app_env: str | None = None
    app_key: str | None = None
    runtime_version: str | None = None
    domain_name: str | None = None
    create_database: bool | None = None
    db_name: str | None = None
    db_root_password: str | None = None
    db_user: str | None = None
    db_user_password: str | None = None
    install_migrations: bool | None = None
    issue_certificate: bool | None = None
    certificate_email: str | None = None
    web_user: str | None = None
    env_template: str | None = None

    def merged(self, override: PlanInputs) -> PlanInputs:
        """Return a copy where every non-None field of ``override`` wins."""
        changes = {f.name: getattr(override, f.name) for f in fields(override) if getattr(override, f.name) is not None}
        return replace(self, **changes)


# (section, key, field)
_PLAN_FILE_LAYOUT: tuple[tuple[str, str, str], ...] = (
    ("server", "host", "server_host"),
    ("server", "user", "ssh_user"),
    ("server", "port", "ssh_port"),
    ("app", "repo_url", "repo_url"),
    ("app", "project_path", "project_path"),
    ("app", "env", "app_env"),
    ("app", "key", "app_key"),
    ("app", "php_version", "runtime_version"),
    ("app", "domain", "domain_name"),
    ("app", "migrations", "install_migrations"),
    ("app", "web_user", "web_user"),
    ("app", "env_template", "env_template"),
    ("database", "create", "create_database"),
    ("database", "name", "db_name"),
    ("database", "root_password", "db_root_password"),
    ("database", "user", "db_user"),
    ("database", "user_password", "db_user_password"),
    ("certificate", "issue", "issue_certificate"),
    ("certificate", "email", "certificate_email"),
)
_BOOL_FIELDS = {"create_database", "install_migrations", "issue_certificate"}


def from_plan_data(data: dict[str, Any]) -> PlanInputs:
    inputs = PlanInputs()
    for section, key, name in _PLAN_FILE_LAYOUT:
        block = data.get(section)
        if not isinstance(block, dict) or key not in block:
            continue
        value = block[key]
        if name in _BOOL_FIELDS:
            if not isinstance(value, bool):
                raise ValidationError(f"[{section}].{key} must be true or false.")
        elif name == "ssh_port":
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValidationError(f"[{section}].{key} must be an integer.")
        else:
            value = str(value)
        setattr(inputs, name, value)
    return inputs


def load_plan_file(path: str) -> PlanInputs:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as exc:
        raise ValidationError(f"Plan file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ValidationError(f"Plan file {path} is not valid TOML: {exc}") from exc
    return from_plan_data(data)


def plan_template(settings: AppSettings) -> dict[str, Any]:
    """Plan file skeleton; secrets are deliberately left out."""
    return {
        "server": {"host": "203.0.113.10", "user": "deploy", "port": settings.ssh.port},
        "app": {
            "repo_url": "git@github.com:acme/shop.git",
            "project_path": settings.deploy.project_path,
            "env": settings.deploy.app_env,
            "php_version": settings.deploy.runtime_version or "8.2",
            "domain": "shop.example.com",
            "migrations": False,
            "web_user": settings.deploy.web_user,
            "env_template": settings.deploy.env_template,
        },
        "database": {"create": False, "name": "shop", "user": "shop"},
        "certificate": {"issue": False, "email": settings.deploy.certificate_email},
    }


def write_plan_template(path: str, settings: AppSettings, *, force: bool = False) -> str:
    if os.path.exists(path) and not force:
        raise FileExistsError(path)
    with open(path, "wb") as f:
        f.write(tomli_w.dumps(plan_template(settings)).encode("utf-8"))
    return path


def _missing_required(inputs: PlanInputs) -> list[str]:
    required = {
        "repo_url": "--repo-url",
        "server_host": "--host",
        "ssh_user": "--user",
        "runtime_version": "--php-version",
        "domain_name": "--domain",
    }
    missing = [flag for name, flag in required.items() if not getattr(inputs, name)]
    if inputs.create_database:
        if not inputs.db_name:
            missing.append("--db-name")
        if not inputs.db_root_password:
            missing.append("--db-root-password")
        if inputs.db_user and not inputs.db_user_password:
            missing.append("--db-user-password")
    return missing


def collect_inputs(inputs: PlanInputs, settings: AppSettings, *, non_interactive: bool) -> PlanInputs:
    """Fill gaps from settings defaults and, when allowed, operator prompts."""
    d = settings.deploy
    resolved = replace(inputs)
    if non_interactive:
        if resolved.project_path is None:
            resolved.project_path = d.project_path
        if not resolved.runtime_version and d.runtime_version:
            resolved.runtime_version = d.runtime_version
        missing = _missing_required(resolved)
        if missing:
            console.err(f"Missing required flags: {', '.join(missing)}")
            raise typer.Exit(code=2)
        return resolved

    if resolved.project_path is None:
        resolved.project_path = prompt_text("Absolute path to the project directory", default=d.project_path)
    if not resolved.repo_url:
        resolved.repo_url = prompt_text("SSH URL of the Git repository")
    if not resolved.server_host:
        resolved.server_host = prompt_text("Server SSH host or IP address")
    if not resolved.ssh_user:
        resolved.ssh_user = prompt_text("SSH username")
    if resolved.app_env is None:
        resolved.app_env = prompt_text("Laravel environment (local, production, ...)", default=d.app_env)
    if resolved.app_key is None:
        resolved.app_key = prompt_text("Laravel app key (leave empty to generate one on the server)", default="")
    while not resolved.runtime_version:
        candidate = prompt_text("PHP version (e.g. 8.2)", default=d.runtime_version or None)
        try:
            resolved.runtime_version = validate_runtime_version(candidate)
        except ValidationError as exc:
            console.err(str(exc))
    if resolved.create_database is None:
        resolved.create_database = confirm_choice("Create a MySQL database on the server?", default=False)
    if resolved.create_database:
        if not resolved.db_name:
            resolved.db_name = prompt_text("MySQL database name")
        if not resolved.db_root_password:
            resolved.db_root_password = prompt_secret("MySQL root password")
        if resolved.db_user is None:
            if confirm_choice("Create a dedicated MySQL user for the application?", default=True):
                resolved.db_user = prompt_text("MySQL user name")
            else:
                resolved.db_user = ""
        if resolved.db_user and not resolved.db_user_password:
            resolved.db_user_password = prompt_secret("MySQL user password", confirm=True)
    if resolved.install_migrations is None:
        resolved.install_migrations = confirm_choice("Run migrations and seeders?", default=False)
    if not resolved.domain_name:
        resolved.domain_name = prompt_text("Domain name for the site (e.g. example.com)")
    if resolved.issue_certificate is None:
        resolved.issue_certificate = confirm_choice("Request a Let's Encrypt certificate?", default=False)
    if resolved.issue_certificate and resolved.certificate_email is None:
        resolved.certificate_email = prompt_text(
            "Email for Let's Encrypt (optional)",
            default=d.certificate_email,
        )
    return resolved


def to_plan(inputs: PlanInputs, settings: AppSettings) -> DeploymentPlan:
    d = settings.deploy
    database = None
    if inputs.create_database:
        database = build_database_spec(
            name=inputs.db_name or "",
            root_password=inputs.db_root_password or "",
            user=inputs.db_user,
            user_password=inputs.db_user_password,
        )
    return build_plan(
        repo_url=inputs.repo_url or "",
        server_host=inputs.server_host or "",
        ssh_user=inputs.ssh_user or "",
        runtime_version=inputs.runtime_version or "",
        domain_name=inputs.domain_name or "",
        project_path=inputs.project_path or d.project_path,
        app_env=inputs.app_env or d.app_env,
        app_key=inputs.app_key,
        database=database,
        install_migrations=bool(inputs.install_migrations),
        issue_certificate=bool(inputs.issue_certificate),
        certificate_email=inputs.certificate_email or d.certificate_email or None,
        ssh_port=inputs.ssh_port or settings.ssh.port,
        web_user=inputs.web_user or d.web_user,
        env_template=inputs.env_template or d.env_template,
    )


def describe_plan(plan: DeploymentPlan) -> list[tuple[str, str]]:
    """Operator-facing plan rows; secrets are shown only as set/unset."""
    rows = [
        ("Server", f"{plan.ssh_destination}:{plan.ssh_port}"),
        ("Repository", plan.repo_url),
        ("Checkout", plan.checkout_path),
        ("Environment", plan.app_env),
        ("App key", "(provided)" if plan.app_key else "(generate on server)"),
        ("PHP", plan.runtime_version),
        ("Domain", plan.domain_name),
        ("Nginx site", plan.site_available_path),
    ]
    if plan.database:
        user = plan.database.user or "root"
        rows.append(("Database", f"{plan.database.name} (user: {user})"))
    else:
        rows.append(("Database", "(not created)"))
    rows.append(("Migrations", "yes" if plan.install_migrations else "no"))
    rows.append(("Certificate", "yes" if plan.issue_certificate else "no"))
    return rows
