from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from typing import Callable, Mapping

from . import commands
from .envfile import apply_substitutions
from .errors import CloneError, CommandTimeoutError, ConfigValidationError, RemoteCommandError, ValidationError
from .executor import RemoteExecutor
from .nginx import render_for_plan
from .plan import DeploymentPlan

logger = logging.getLogger(__name__)

BASE_PACKAGES = ("nginx", "git", "curl", "unzip")
PHP_EXTENSIONS = (
    "fpm",
    "mysql",
    "cli",
    "common",
    "zip",
    "mbstring",
    "xml",
    "curl",
    "gd",
    "imagick",
    "bcmath",
)
CERTBOT_PACKAGES = ("certbot", "python3-certbot-nginx")
WRITABLE_DIRS = ("storage", "bootstrap/cache")

_GIT_AUTH_MARKERS = (
    "permission denied (publickey",
    "authentication failed",
    "could not read from remote repository",
    "host key verification failed",
    "could not read username",
)


@dataclass
class StageContext:
    plan: DeploymentPlan
    executor: RemoteExecutor
    on_warning: Callable[[str], None] | None = None

    def warn(self, message: str) -> None:
        logger.warning(message)
        if self.on_warning:
            self.on_warning(message)


@dataclass(frozen=True)
class PackagesResult:
    installed: tuple[str, ...] = ()
    already_present: tuple[str, ...] = ()
    index_refreshed: bool = False
    staged_composer: str | None = None


@dataclass(frozen=True)
class CloneResult:
    checkout_path: str


@dataclass(frozen=True)
class EnvResult:
    env_path: str
    keys: tuple[str, ...]
    created: bool


@dataclass(frozen=True)
class DatabaseResult:
    name: str
    username: str
    password: str = field(repr=False)
    user_created: bool = False


@dataclass(frozen=True)
class DependenciesResult:
    composer: str
    key_generated: bool


@dataclass(frozen=True)
class MigrationsResult:
    command: str


@dataclass(frozen=True)
class ProxyResult:
    config_path: str
    enabled_path: str


@dataclass(frozen=True)
class CertificateResult:
    domain: str
    certbot_installed: bool


def required_packages(runtime_version: str) -> list[str]:
    extensions = list(PHP_EXTENSIONS)
    # php-json became part of core in PHP 8.0.
    if int(runtime_version.split(".", 1)[0]) < 8:
        extensions.append("json")
    return [*BASE_PACKAGES, *(f"php{runtime_version}-{ext}" for ext in extensions)]


def parse_installed_packages(output: str) -> set[str]:
    installed: set[str] = set()
    for line in (output or "").splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[-1] == "installed":
            installed.add(parts[0].split(":", 1)[0])
    return installed


def _has_output(ctx: StageContext, command: commands.Command) -> bool:
    return bool(ctx.executor.run(command, check=False).stdout.strip())


def ensure_writable_dir(ctx: StageContext, path: str) -> bool:
    """Create ``path`` for the SSH user unless it is already a writable directory."""
    if _has_output(ctx, commands.writable_dir(path)):
        return False
    ctx.executor.run(commands.make_dir(path, sudo=True))
    ctx.executor.run(commands.chown(ctx.plan.ssh_user, path))
    return True


def update_env_file(ctx: StageContext, values: Mapping[str, str]) -> tuple[str, ...]:
    env_path = ctx.plan.env_path
    current = ctx.executor.run(commands.read_file(env_path)).stdout
    try:
        updated = apply_substitutions(current, values)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if updated != current:
        ctx.executor.run(commands.write_file(env_path, label="write .env"), input=updated)
    return tuple(values)


def provision_packages(ctx: StageContext) -> PackagesResult:
    ex = ctx.executor
    packages = required_packages(ctx.plan.runtime_version)
    status = ex.run(commands.package_status(packages), check=False)
    present = parse_installed_packages(status.stdout)
    missing = [pkg for pkg in packages if pkg not in present]

    refreshed = False
    # Mirrors the original recipe: a missing nginx is taken as "fresh host".
    if "nginx" in missing:
        ex.run(commands.apt_update())
        ex.run(commands.apt_upgrade())
        refreshed = True
    if missing:
        ex.run(commands.apt_install(missing))

    staged = None
    if not _has_output(ctx, commands.lookup_binary("composer")):
        staged = _stage_local_composer(ctx)

    return PackagesResult(
        installed=tuple(missing),
        already_present=tuple(pkg for pkg in packages if pkg in present),
        index_refreshed=refreshed,
        staged_composer=staged,
    )


def _stage_local_composer(ctx: StageContext) -> str:
    plan = ctx.plan
    target = plan.staged_composer_path
    if _has_output(ctx, commands.path_exists(target)):
        return target
    ensure_writable_dir(ctx, plan.staging_dir)
    installer = "composer-setup.php"
    ctx.executor.run_batch(
        [
            commands.fetch_composer_installer(installer),
            commands.run_composer_installer(plan.php_binary, installer, plan.staging_dir),
            commands.remove_file(installer),
        ],
        cwd=plan.staging_dir,
    )
    return target


def deploy_repository(ctx: StageContext) -> CloneResult:
    plan = ctx.plan
    listing = ctx.executor.run(commands.list_dir_if_present(plan.checkout_path))
    if listing.stdout.strip():
        raise CloneError(f"{plan.checkout_path} already exists and is not empty.")
    ensure_writable_dir(ctx, plan.checkout_path)
    try:
        ctx.executor.run(commands.git_clone(plan.repo_url, plan.checkout_path))
    except CommandTimeoutError:
        raise
    except RemoteCommandError as exc:
        lowered = exc.stderr.lower()
        if any(marker in lowered for marker in _GIT_AUTH_MARKERS):
            message = (
                f"git clone of {plan.repo_url} failed: the server could not authenticate to the "
                "repository (check the deploy key / credentials on the host)."
            )
        else:
            message = f"git clone of {plan.repo_url} failed with exit code {exc.exit_code}."
        raise CloneError(message, exit_code=exc.exit_code, stderr=exc.stderr) from exc
    return CloneResult(checkout_path=plan.checkout_path)


def configure_environment(ctx: StageContext) -> EnvResult:
    plan = ctx.plan
    created = False
    if _has_output(ctx, commands.path_exists(plan.env_path)):
        ctx.warn(f"{plan.env_path} already exists; updating keys in place.")
    else:
        ctx.executor.run(commands.copy_file(plan.env_template_path, plan.env_path))
        created = True
    keys = update_env_file(ctx, {"APP_ENV": plan.app_env})
    return EnvResult(env_path=plan.env_path, keys=keys, created=created)


def provision_database(ctx: StageContext) -> DatabaseResult:
    spec = ctx.plan.database
    if spec is None:
        raise ValidationError("Database stage requires database settings.")
    ctx.executor.run(commands.mysql_root(), input=commands.database_script(spec))
    if spec.creates_user:
        return DatabaseResult(
            name=spec.name,
            username=spec.user or "",
            password=spec.user_password or "",
            user_created=True,
        )
    return DatabaseResult(name=spec.name, username="root", password=spec.root_password)


def install_dependencies(
        ctx: StageContext,
        packages: PackagesResult,
        database: DatabaseResult | None,
) -> DependenciesResult:
    plan = ctx.plan
    ex = ctx.executor
    checkout = plan.checkout_path
    local_phar = packages.staged_composer is not None
    if packages.staged_composer:
        ex.run(commands.move_file(packages.staged_composer, posixpath.join(checkout, "composer.phar")))

    ex.run_batch([commands.composer_install(plan.php_binary, local_phar=local_phar)], cwd=checkout)
    owner = f"{plan.web_user}:{plan.web_user}"
    ex.run(commands.chown(owner, *(posixpath.join(checkout, d) for d in WRITABLE_DIRS), recursive=True))

    values: dict[str, str] = {}
    if database is not None:
        values.update(
            {
                "DB_CONNECTION": "mysql",
                "DB_DATABASE": database.name,
                "DB_USERNAME": database.username,
                "DB_PASSWORD": database.password,
            }
        )
    if plan.app_key:
        values["APP_KEY"] = plan.app_key
    if values:
        update_env_file(ctx, values)

    key_generated = False
    if not plan.app_key:
        ex.run_batch([commands.artisan(plan.php_binary, "key:generate", "--force", "--no-interaction")], cwd=checkout)
        key_generated = True
    return DependenciesResult(
        composer="composer.phar" if local_phar else "composer",
        key_generated=key_generated,
    )


def run_migrations(ctx: StageContext) -> MigrationsResult:
    command = commands.artisan(ctx.plan.php_binary, "migrate", "--seed", "--force", "--no-interaction")
    ctx.executor.run_batch([command], cwd=ctx.plan.checkout_path)
    return MigrationsResult(command=command.render())


def configure_reverse_proxy(ctx: StageContext) -> ProxyResult:
    plan = ctx.plan
    ex = ctx.executor
    config = render_for_plan(plan)
    ex.run(
        commands.write_file(plan.site_available_path, sudo=True, label=f"write {plan.site_available_path}"),
        input=config,
    )
    ex.run(commands.symlink(plan.site_available_path, plan.site_enabled_path))
    check = ex.run(commands.nginx_test(), check=False)
    if not check.ok:
        raise ConfigValidationError(
            "nginx -t rejected the configuration; nginx was not reloaded.",
            stderr=check.stderr or check.stdout,
        )
    ex.run(commands.nginx_reload())
    return ProxyResult(config_path=plan.site_available_path, enabled_path=plan.site_enabled_path)


def provision_certificate(ctx: StageContext) -> CertificateResult:
    plan = ctx.plan
    installed = False
    if not _has_output(ctx, commands.lookup_binary("certbot")):
        ctx.executor.run(commands.apt_install(list(CERTBOT_PACKAGES)))
        installed = True
    ctx.executor.run(commands.certbot(plan.domain_name, email=plan.certificate_email))
    return CertificateResult(domain=plan.domain_name, certbot_installed=installed)
