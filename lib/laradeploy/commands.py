from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Iterable, Sequence

from .errors import ValidationError
from .plan import DatabaseSpec, validate_sql_identifier

COMPOSER_INSTALLER_URL = "https://getcomposer.org/installer"
COMPOSER_INSTALL_FLAGS = ("install", "--optimize-autoloader", "--no-dev", "--no-interaction")

# Fixed shell snippets; user data only ever arrives as positional args ($1, $2, ...).
_NON_EMPTY_DIR_SCRIPT = 'if [ -d "$1" ]; then ls -A "$1"; fi'
_PATH_EXISTS_SCRIPT = 'if [ -e "$1" ]; then echo yes; fi'
_WRITABLE_DIR_SCRIPT = 'if [ -d "$1" ] && [ -w "$1" ]; then echo yes; fi'
_COMMAND_LOOKUP_SCRIPT = 'command -v "$1" || true'
_WRITE_FILE_SCRIPT = 'cat > "$1"'
_MYSQL_STDIN_SCRIPT = 'IFS= read -r MYSQL_PWD && export MYSQL_PWD && exec mysql --user=root --batch'


@dataclass(frozen=True)
class Command:
    argv: tuple[str, ...]
    sudo: bool = False
    label: str | None = None

    def render(self) -> str:
        return shlex.join(self.argv)

    def describe(self) -> str:
        return self.label or self.render()


def _cmd(*argv: str, sudo: bool = False, label: str | None = None) -> Command:
    return Command(argv=tuple(argv), sudo=sudo, label=label)


def _sh(script: str, *args: str, sudo: bool = False, label: str | None = None) -> Command:
    return _cmd("sh", "-c", script, "sh", *args, sudo=sudo, label=label)


def render_batch(commands: Sequence[Command], *, cwd: str | None = None) -> str:
    parts = ["set -e"]
    if cwd:
        parts.append(f"cd {shlex.quote(cwd)}")
    parts.extend(command.render() for command in commands)
    return "\n".join(parts)


# -- packages ---------------------------------------------------------------

def package_status(packages: Iterable[str]) -> Command:
    return _cmd("dpkg-query", "-W", "-f=${Package} ${Status}\\n", *packages)


def apt_update() -> Command:
    return _cmd("env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "update", sudo=True)


def apt_upgrade() -> Command:
    return _cmd("env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "-y", "upgrade", sudo=True)


def apt_install(packages: Sequence[str]) -> Command:
    return _cmd("env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "-y", "install", *packages, sudo=True)


def lookup_binary(name: str) -> Command:
    return _sh(_COMMAND_LOOKUP_SCRIPT, name)


def fetch_composer_installer(dest: str) -> Command:
    return _cmd("curl", "-fsSL", "-o", dest, COMPOSER_INSTALLER_URL)


def run_composer_installer(php_binary: str, installer: str, install_dir: str) -> Command:
    return _cmd(php_binary, installer, "--quiet", f"--install-dir={install_dir}", "--filename=composer.phar")


# -- filesystem -------------------------------------------------------------

def list_dir_if_present(path: str) -> Command:
    return _sh(_NON_EMPTY_DIR_SCRIPT, path)


def path_exists(path: str, *, sudo: bool = False) -> Command:
    return _sh(_PATH_EXISTS_SCRIPT, path, sudo=sudo)


def writable_dir(path: str) -> Command:
    return _sh(_WRITABLE_DIR_SCRIPT, path)


def make_dir(path: str, *, sudo: bool = False) -> Command:
    return _cmd("mkdir", "-p", path, sudo=sudo)


def chown(owner: str, *paths: str, recursive: bool = False, sudo: bool = True) -> Command:
    argv = ["chown"]
    if recursive:
        argv.append("-R")
    return _cmd(*argv, owner, *paths, sudo=sudo)


def copy_file(src: str, dest: str) -> Command:
    return _cmd("cp", src, dest)


def move_file(src: str, dest: str) -> Command:
    return _cmd("mv", src, dest)


def remove_file(path: str) -> Command:
    return _cmd("rm", "-f", path)


def read_file(path: str) -> Command:
    return _cmd("cat", path)


def write_file(path: str, *, sudo: bool = False, label: str | None = None) -> Command:
    return _sh(_WRITE_FILE_SCRIPT, path, sudo=sudo, label=label or f"write {path}")


def symlink(target: str, link: str) -> Command:
    return _cmd("ln", "-sfn", target, link, sudo=True)


# -- application ------------------------------------------------------------

def git_clone(repo_url: str, dest: str) -> Command:
    return _cmd("git", "clone", repo_url, dest)


def composer_install(php_binary: str, *, local_phar: bool) -> Command:
    if local_phar:
        return _cmd(php_binary, "composer.phar", *COMPOSER_INSTALL_FLAGS)
    return _cmd("composer", *COMPOSER_INSTALL_FLAGS)


def artisan(php_binary: str, *args: str) -> Command:
    return _cmd(php_binary, "artisan", *args)


# -- database ---------------------------------------------------------------

def mysql_root() -> Command:
    """mysql as root; stdin carries the password line then the SQL batch."""
    return _sh(_MYSQL_STDIN_SCRIPT, label="mysql (root)")


def sql_string(value: str) -> str:
    if "\x00" in value:
        raise ValidationError("SQL string literals cannot contain NUL bytes.")
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def sql_identifier(value: str, *, what: str) -> str:
    return f"`{validate_sql_identifier(value, what=what)}`"


def database_statements(spec: DatabaseSpec) -> list[str]:
    db = sql_identifier(spec.name, what="database name")
    statements = [f"CREATE DATABASE IF NOT EXISTS {db};"]
    if spec.creates_user:
        account = f"{sql_string(validate_sql_identifier(spec.user or '', what='database user'))}@'localhost'"
        password = sql_string(spec.user_password or "")
        statements.append(f"CREATE USER IF NOT EXISTS {account} IDENTIFIED BY {password};")
        # resets the password of an account left by an earlier run
        statements.append(f"ALTER USER {account} IDENTIFIED BY {password};")
        statements.append(f"GRANT ALL PRIVILEGES ON {db}.* TO {account};")
        statements.append("FLUSH PRIVILEGES;")
    return statements


def database_script(spec: DatabaseSpec) -> str:
    """stdin payload for ``mysql_root()``."""
    if "\n" in spec.root_password or "\r" in spec.root_password:
        raise ValidationError("Database root password cannot contain line breaks.")
    return "\n".join([spec.root_password, *database_statements(spec)]) + "\n"


# -- nginx / tls ------------------------------------------------------------

def nginx_test() -> Command:
    return _cmd("nginx", "-t", sudo=True)


def nginx_reload() -> Command:
    return _cmd("systemctl", "reload", "nginx", sudo=True)


def certbot(domain: str, *, email: str | None) -> Command:
    argv = ["certbot", "--nginx", "-d", domain, "--non-interactive", "--agree-tos"]
    if email:
        argv += ["-m", email]
    else:
        argv.append("--register-unsafely-without-email")
    return _cmd(*argv, sudo=True)
