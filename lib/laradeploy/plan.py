from __future__ import annotations

import posixpath
import re
import urllib.parse
from dataclasses import dataclass, field

from .errors import ValidationError

DEFAULT_PROJECT_PATH = "/var/www"
DEFAULT_WEB_USER = "www-data"
DEFAULT_ENV_TEMPLATE = ".env.example"
NGINX_SITES_AVAILABLE = "/etc/nginx/sites-available"
NGINX_SITES_ENABLED = "/etc/nginx/sites-enabled"

_RUNTIME_VERSION_RE = re.compile(r"\d+\.\d+")
_REPO_NAME_RE = re.compile(r"[A-Za-z0-9._-]+")
_SQL_IDENTIFIER_RE = re.compile(r"[A-Za-z0-9_]{1,64}")
_HOSTNAME_LABEL_RE = re.compile(r"(?!-)[A-Za-z0-9-]{1,63}(?<!-)")
_SYSTEM_USER_RE = re.compile(r"[a-z_][a-z0-9_-]*")
_PROJECT_PATH_RE = re.compile(r"/[A-Za-z0-9._/-]*")


@dataclass(frozen=True)
class DatabaseSpec:
    name: str
    root_password: str = field(repr=False)
    user: str | None = None
    user_password: str | None = field(default=None, repr=False)

    @property
    def creates_user(self) -> bool:
        return bool(self.user)


@dataclass(frozen=True)
class DeploymentPlan:
    project_path: str
    repo_url: str
    repo_name: str
    server_host: str
    ssh_user: str
    app_env: str
    runtime_version: str
    domain_name: str
    app_key: str | None = field(default=None, repr=False)
    database: DatabaseSpec | None = None
    install_migrations: bool = False
    issue_certificate: bool = False
    certificate_email: str | None = None
    ssh_port: int = 22
    web_user: str = DEFAULT_WEB_USER
    env_template: str = DEFAULT_ENV_TEMPLATE

    @property
    def create_database(self) -> bool:
        return self.database is not None

    # Remote paths stay POSIX regardless of the operator's OS.
    @property
    def checkout_path(self) -> str:
        return posixpath.join(self.project_path, self.repo_name)

    @property
    def env_path(self) -> str:
        return posixpath.join(self.checkout_path, ".env")

    @property
    def env_template_path(self) -> str:
        return posixpath.join(self.checkout_path, self.env_template)

    @property
    def document_root(self) -> str:
        return posixpath.join(self.checkout_path, "public")

    @property
    def php_binary(self) -> str:
        return f"php{self.runtime_version}"

    @property
    def fpm_socket(self) -> str:
        return fpm_socket_path(self.runtime_version)

    @property
    def staging_dir(self) -> str:
        return posixpath.join(self.project_path, ".laradeploy")

    @property
    def staged_composer_path(self) -> str:
        return posixpath.join(self.staging_dir, "composer.phar")

    @property
    def site_available_path(self) -> str:
        return posixpath.join(NGINX_SITES_AVAILABLE, self.repo_name)

    @property
    def site_enabled_path(self) -> str:
        return posixpath.join(NGINX_SITES_ENABLED, self.repo_name)

    @property
    def ssh_destination(self) -> str:
        return f"{self.ssh_user}@{self.server_host}"

    def site_urls(self, *, https: bool = False) -> list[str]:
        urls = [f"http://{self.domain_name}"]
        if https:
            urls.append(f"https://{self.domain_name}")
        return urls


def fpm_socket_path(runtime_version: str) -> str:
    return f"/var/run/php/php{runtime_version}-fpm.sock"


def derive_repo_name(repo_url: str) -> str:
    """Return the checkout directory name for a repository URL.

    ``git@host:org/My-Repo.git`` -> ``My-Repo``; ``https://host/org/name.git`` -> ``name``.
    """
    value = (repo_url or "").strip().rstrip("/")
    base = value.rsplit("/", 1)[-1]
    if "/" not in value and ":" in base:
        base = base.rsplit(":", 1)[-1]
    if base.endswith(".git"):
        base = base[: -len(".git")]
    if not base:
        raise ValidationError(f"Cannot derive repository name from URL: {repo_url!r}")
    if not _REPO_NAME_RE.fullmatch(base) or base.startswith("."):
        raise ValidationError(
            f"Repository name {base!r} is not safe as a directory and Nginx site name "
            "(allowed: letters, digits, '.', '_', '-')."
        )
    return base


def validate_runtime_version(raw: str) -> str:
    value = (raw or "").strip()
    if not _RUNTIME_VERSION_RE.fullmatch(value):
        raise ValidationError(f"Invalid PHP version format: {raw!r} (expected major.minor, e.g. 8.2).")
    return value


def normalize_domain(raw: str) -> str:
    value = (raw or "").strip()
    if not value:
        raise ValidationError("Domain cannot be empty.")
    if "://" not in value:
        value = f"http://{value}"
    try:
        host = urllib.parse.urlparse(value).hostname or ""
    except ValueError as exc:
        raise ValidationError(f"Invalid domain: {raw!r}") from exc
    labels = host.rstrip(".").split(".")
    if not host or len(host) > 253 or not all(_HOSTNAME_LABEL_RE.fullmatch(label) for label in labels):
        raise ValidationError(f"Invalid domain: {raw!r}")
    return host.rstrip(".").lower()


def validate_sql_identifier(value: str, *, what: str) -> str:
    if not _SQL_IDENTIFIER_RE.fullmatch(value or ""):
        raise ValidationError(f"Invalid {what} {value!r}: use 1-64 letters, digits or underscores.")
    return value


def require_single_line(value: str | None, *, what: str) -> str | None:
    if value is not None and ("\n" in value or "\r" in value):
        raise ValidationError(f"{what} cannot contain line breaks.")
    return value


def normalize_project_path(raw: str | None) -> str:
    value = (raw or "").strip() or DEFAULT_PROJECT_PATH
    if not value.startswith("/"):
        raise ValidationError(f"Project path must be absolute: {raw!r}")
    if not _PROJECT_PATH_RE.fullmatch(value):
        raise ValidationError(f"Project path contains unsupported characters: {raw!r}")
    normalized = posixpath.normpath(value)
    if normalized == "/":
        raise ValidationError("Project path cannot be the filesystem root.")
    return normalized


def build_database_spec(
        *,
        name: str,
        root_password: str,
        user: str | None = None,
        user_password: str | None = None,
) -> DatabaseSpec:
    validate_sql_identifier((name or "").strip(), what="database name")
    if not root_password:
        raise ValidationError("Database root password is required to create a database.")
    require_single_line(root_password, what="Database root password")
    clean_user = (user or "").strip() or None
    if clean_user:
        validate_sql_identifier(clean_user, what="database user")
        if not user_password:
            raise ValidationError("Database user password is required when creating a database user.")
        require_single_line(user_password, what="Database user password")
    return DatabaseSpec(
        name=name.strip(),
        root_password=root_password,
        user=clean_user,
        user_password=user_password if clean_user else None,
    )


def build_plan(
        *,
        repo_url: str,
        server_host: str,
        ssh_user: str,
        runtime_version: str,
        domain_name: str,
        project_path: str | None = None,
        app_env: str = "production",
        app_key: str | None = None,
        database: DatabaseSpec | None = None,
        install_migrations: bool = False,
        issue_certificate: bool = False,
        certificate_email: str | None = None,
        ssh_port: int = 22,
        web_user: str = DEFAULT_WEB_USER,
        env_template: str = DEFAULT_ENV_TEMPLATE,
) -> DeploymentPlan:
    """Validate operator input and freeze it into a plan.

    Raises ``ValidationError`` on the first bad field; nothing remote has
    happened at that point.
    """
    version = validate_runtime_version(runtime_version)
    repo_name = derive_repo_name(repo_url)
    host = (server_host or "").strip()
    if not host:
        raise ValidationError("Server host cannot be empty.")
    user = (ssh_user or "").strip()
    if not user:
        raise ValidationError("SSH user cannot be empty.")
    if not 0 < int(ssh_port) < 65536:
        raise ValidationError(f"Invalid SSH port: {ssh_port}")
    if not _SYSTEM_USER_RE.fullmatch(web_user or ""):
        raise ValidationError(f"Invalid web server user: {web_user!r}")
    template = (env_template or "").strip()
    if not template or "/" in template:
        raise ValidationError(f"Env template must be a file name inside the checkout: {env_template!r}")
    email = (certificate_email or "").strip() or None
    if email and "@" not in email:
        raise ValidationError("Certificate email must include '@'.")
    require_single_line(app_key, what="App key")
    if database is not None:
        require_single_line(database.root_password, what="Database root password")
        require_single_line(database.user_password, what="Database user password")
    env = (app_env or "").strip()
    if not env or "\n" in env:
        raise ValidationError("Application environment cannot be empty.")
    return DeploymentPlan(
        project_path=normalize_project_path(project_path),
        repo_url=repo_url.strip(),
        repo_name=repo_name,
        server_host=host,
        ssh_user=user,
        app_env=env,
        runtime_version=version,
        domain_name=normalize_domain(domain_name),
        app_key=(app_key or "").strip() or None,
        database=database,
        install_migrations=install_migrations,
        issue_certificate=issue_certificate,
        certificate_email=email,
        ssh_port=int(ssh_port),
        web_user=web_user,
        env_template=template,
    )
