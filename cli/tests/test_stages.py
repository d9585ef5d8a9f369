import pytest

from laradeploy import stages
from laradeploy.errors import CloneError, CommandTimeoutError, ConfigValidationError
from laradeploy.plan import build_database_spec


def _ctx(plan, executor, warnings=None):
    return stages.StageContext(plan=plan, executor=executor, on_warning=(warnings.append if warnings is not None else None))


def test_required_packages_php8() -> None:
    pkgs = stages.required_packages("8.2")

    assert pkgs[:4] == ["nginx", "git", "curl", "unzip"]
    assert "php8.2-fpm" in pkgs
    assert "php8.2-bcmath" in pkgs
    assert "php8.2-json" not in pkgs


def test_required_packages_php7_includes_json() -> None:
    assert "php7.4-json" in stages.required_packages("7.4")


def test_parse_installed_packages() -> None:
    output = (
        "nginx install ok installed\n"
        "git install ok installed\n"
        "curl deinstall ok config-files\n"
        "php8.2-fpm:amd64 install ok installed\n"
    )

    assert stages.parse_installed_packages(output) == {"nginx", "git", "php8.2-fpm"}


def test_packages_installs_only_missing(make_plan, session, executor) -> None:
    present = [p for p in stages.required_packages("8.2") if p != "php8.2-gd"]
    session.respond("dpkg-query", stdout="".join(f"{p} install ok installed\n" for p in present))
    session.respond("command -v", "composer", stdout="/usr/local/bin/composer\n")

    result = stages.provision_packages(_ctx(make_plan(), executor))

    assert result.installed == ("php8.2-gd",)
    assert not result.index_refreshed
    assert result.staged_composer is None
    installs = [c for c in session.commands() if "apt-get" in c]
    assert len(installs) == 1
    assert installs[0].endswith("install php8.2-gd")


def test_packages_refreshes_index_only_when_nginx_missing(make_plan, session, executor) -> None:
    session.respond("command -v", "composer", stdout="/usr/bin/composer\n")

    result = stages.provision_packages(_ctx(make_plan(), executor))

    assert result.index_refreshed
    assert session.index_of("apt-get update") < session.index_of("apt-get -y upgrade")
    assert session.index_of("apt-get -y upgrade") < session.index_of("apt-get -y install")


def test_packages_nothing_to_do(make_plan, session, executor) -> None:
    session.respond(
        "dpkg-query",
        stdout="".join(f"{p} install ok installed\n" for p in stages.required_packages("8.2")),
    )
    session.respond("command -v", "composer", stdout="/usr/bin/composer\n")

    result = stages.provision_packages(_ctx(make_plan(), executor))

    assert result.installed == ()
    assert not any("apt-get" in c for c in session.commands())


def test_composer_is_staged_inside_project_dir(make_plan, session, executor) -> None:
    session.respond("dpkg-query", stdout="".join(f"{p} install ok installed\n" for p in stages.required_packages("8.2")))

    result = stages.provision_packages(_ctx(make_plan(), executor))

    assert result.staged_composer == "/var/www/.laradeploy/composer.phar"
    batch = session.calls[session.index_of("getcomposer.org")]
    assert batch.command.startswith("set -e\ncd /var/www/.laradeploy\n")
    assert "php8.2 composer-setup.php --quiet --install-dir=/var/www/.laradeploy --filename=composer.phar" in batch.command


def test_clone_refuses_non_empty_checkout(make_plan, session, executor) -> None:
    session.respond("ls -A", stdout="composer.json\n")

    with pytest.raises(CloneError, match="not empty"):
        stages.deploy_repository(_ctx(make_plan(), executor))

    assert not any("git clone" in c for c in session.commands())


def test_clone_auth_failure_becomes_clone_error(make_plan, session, executor) -> None:
    session.respond(
        "git clone",
        returncode=128,
        stderr="git@github.com: Permission denied (publickey).\nfatal: Could not read from remote repository.\n",
    )

    with pytest.raises(CloneError, match="authenticate") as excinfo:
        stages.deploy_repository(_ctx(make_plan(), executor))

    assert excinfo.value.exit_code == 128
    assert "publickey" in excinfo.value.stderr


def test_clone_creates_checkout_for_ssh_user(make_plan, session, executor) -> None:
    result = stages.deploy_repository(_ctx(make_plan(), executor))

    assert result.checkout_path == "/var/www/shop"
    mkdir = session.calls[session.index_of("mkdir -p /var/www/shop")]
    chown = session.calls[session.index_of("chown deploy /var/www/shop")]
    assert mkdir.privileged and chown.privileged
    assert session.index_of("chown deploy") < session.index_of("git clone")


def test_clone_timeout_is_not_rewrapped(make_plan, session, executor, monkeypatch) -> None:
    original = session.run

    def _run(command, *, cwd=None):
        if "git clone" in command:
            raise CommandTimeoutError("git clone", 5)
        return original(command, cwd=cwd)

    monkeypatch.setattr(session, "run", _run)

    with pytest.raises(CommandTimeoutError):
        stages.deploy_repository(_ctx(make_plan(), executor))


def test_environment_copies_template_and_sets_app_env(make_plan, session, executor) -> None:
    session.respond("cat /var/www/shop/.env", stdout="APP_NAME=Laravel\nAPP_ENV=local\n")

    result = stages.configure_environment(_ctx(make_plan(app_env="staging"), executor))

    assert result.created
    assert "cp /var/www/shop/.env.example /var/www/shop/.env" in session.commands()
    write = next(c for c in session.calls if c.input is not None)
    assert write.input == "APP_NAME=Laravel\nAPP_ENV=staging\n"


def test_environment_keeps_existing_env_with_warning(make_plan, session, executor) -> None:
    warnings: list[str] = []
    session.respond("[ -e", "/var/www/shop/.env", stdout="yes\n")
    session.respond("cat /var/www/shop/.env", stdout="APP_ENV=production\n")

    result = stages.configure_environment(_ctx(make_plan(), executor, warnings))

    assert not result.created
    assert warnings and "already exists" in warnings[0]
    assert not any(c.startswith("cp ") for c in session.commands())
    # Already up to date: nothing written.
    assert all(c.input is None for c in session.calls)


def test_database_returns_new_user_credentials(make_plan, session, executor) -> None:
    spec = build_database_spec(name="shop", root_password="rootpw", user="shop_app", user_password="apppw")

    result = stages.provision_database(_ctx(make_plan(database=spec), executor))

    assert (result.username, result.password, result.user_created) == ("shop_app", "apppw", True)
    call = session.calls[0]
    assert call.input.startswith("rootpw\n")
    assert "rootpw" not in call.command
    assert "CREATE USER IF NOT EXISTS 'shop_app'@'localhost'" in call.input
    assert "ALTER USER 'shop_app'@'localhost' IDENTIFIED BY" in call.input


def test_database_without_user_uses_root(make_plan, session, executor) -> None:
    spec = build_database_spec(name="shop", root_password="rootpw")

    result = stages.provision_database(_ctx(make_plan(database=spec), executor))

    assert (result.username, result.password, result.user_created) == ("root", "rootpw", False)


def test_dependencies_moves_staged_composer_and_writes_db_env(make_plan, session, executor) -> None:
    session.respond("cat /var/www/shop/.env", stdout="DB_DATABASE=laravel\nDB_USERNAME=root\nDB_PASSWORD=\n")
    packages = stages.PackagesResult(staged_composer="/var/www/.laradeploy/composer.phar")
    database = stages.DatabaseResult(name="shop", username="shop_app", password="p w", user_created=True)

    result = stages.install_dependencies(_ctx(make_plan(), executor), packages, database)

    assert result.composer == "composer.phar"
    assert result.key_generated
    assert session.index_of("mv /var/www/.laradeploy/composer.phar /var/www/shop/composer.phar") < session.index_of(
        "composer.phar install"
    )
    chown = session.calls[session.index_of("chown -R")]
    assert chown.command == "chown -R www-data:www-data /var/www/shop/storage /var/www/shop/bootstrap/cache"
    env_write = next(c for c in session.calls if c.input is not None)
    assert "DB_DATABASE=shop\n" in env_write.input
    assert "DB_USERNAME=shop_app\n" in env_write.input
    assert 'DB_PASSWORD="p w"\n' in env_write.input
    assert "DB_CONNECTION=mysql\n" in env_write.input
    assert "key:generate --force" in session.commands()[-1]


def test_dependencies_with_app_key_skips_generation(make_plan, session, executor) -> None:
    session.respond("cat /var/www/shop/.env", stdout="APP_KEY=\n")

    result = stages.install_dependencies(
        _ctx(make_plan(app_key="base64:abc"), executor), stages.PackagesResult(), None
    )

    assert not result.key_generated
    assert result.composer == "composer"
    assert not any("key:generate" in c for c in session.commands())
    assert not any("DB_" in (c.input or "") for c in session.calls)
    env_write = next(c for c in session.calls if c.input is not None)
    assert env_write.input == "APP_KEY=base64:abc\n"


def test_reverse_proxy_never_reloads_on_invalid_config(make_plan, session, executor) -> None:
    session.respond("nginx -t", returncode=1, stderr="nginx: [emerg] unknown directive")

    with pytest.raises(ConfigValidationError) as excinfo:
        stages.configure_reverse_proxy(_ctx(make_plan(), executor))

    assert "unknown directive" in excinfo.value.stderr
    assert not any("systemctl reload nginx" in c for c in session.commands())


def test_reverse_proxy_writes_enables_and_reloads(make_plan, session, executor) -> None:
    result = stages.configure_reverse_proxy(_ctx(make_plan(), executor))

    assert result.config_path == "/etc/nginx/sites-available/shop"
    write = session.calls[0]
    assert write.privileged
    assert "server_name shop.example.com;" in write.input
    assert "fastcgi_pass unix:/var/run/php/php8.2-fpm.sock;" in write.input
    assert session.commands()[1:] == [
        "ln -sfn /etc/nginx/sites-available/shop /etc/nginx/sites-enabled/shop",
        "nginx -t",
        "systemctl reload nginx",
    ]


def test_certificate_installs_certbot_when_missing(make_plan, session, executor) -> None:
    plan = make_plan(issue_certificate=True, certificate_email="ops@example.com")

    result = stages.provision_certificate(_ctx(plan, executor))

    assert result.certbot_installed
    assert session.commands()[-1] == (
        "certbot --nginx -d shop.example.com --non-interactive --agree-tos -m ops@example.com"
    )
