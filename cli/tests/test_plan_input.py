from __future__ import annotations

import pytest
import typer

from laradeploy.errors import ValidationError
from laradeploy_cli import plan_input
from laradeploy_cli.config import default_config
from laradeploy_cli.plan_input import PlanInputs


def test_merged_prefers_override_values() -> None:
    base = PlanInputs(server_host="a", runtime_version="8.1", create_database=True)
    override = PlanInputs(runtime_version="8.3", create_database=False)

    merged = base.merged(override)

    assert merged.server_host == "a"
    assert merged.runtime_version == "8.3"
    assert merged.create_database is False


def test_from_plan_data_maps_sections() -> None:
    inputs = plan_input.from_plan_data(
        {
            "server": {"host": "h", "user": "u", "port": 2200},
            "app": {"repo_url": "git@x:y/z.git", "php_version": 8.2, "migrations": True},
            "database": {"create": True, "name": "z", "root_password": "pw"},
        }
    )

    assert (inputs.server_host, inputs.ssh_user, inputs.ssh_port) == ("h", "u", 2200)
    assert inputs.runtime_version == "8.2"
    assert inputs.install_migrations is True
    assert inputs.create_database is True
    assert inputs.db_root_password == "pw"


def test_from_plan_data_rejects_wrong_types() -> None:
    with pytest.raises(ValidationError, match="true or false"):
        plan_input.from_plan_data({"certificate": {"issue": "yes"}})
    with pytest.raises(ValidationError, match="integer"):
        plan_input.from_plan_data({"server": {"port": "22"}})


def test_load_plan_file_errors(tmp_path) -> None:
    with pytest.raises(ValidationError, match="not found"):
        plan_input.load_plan_file(str(tmp_path / "missing.toml"))
    broken = tmp_path / "broken.toml"
    broken.write_text("[server\nhost=", encoding="utf-8")
    with pytest.raises(ValidationError, match="not valid TOML"):
        plan_input.load_plan_file(str(broken))


def test_non_interactive_reports_missing_database_flags(capsys) -> None:
    inputs = PlanInputs(
        repo_url="git@x:y/z.git",
        server_host="h",
        ssh_user="u",
        runtime_version="8.2",
        domain_name="z.example.com",
        create_database=True,
        db_user="z",
    )

    with pytest.raises(typer.Exit) as excinfo:
        plan_input.collect_inputs(inputs, default_config(), non_interactive=True)

    assert excinfo.value.exit_code == 2
    out = capsys.readouterr().out
    assert "--db-name" in out
    assert "--db-root-password" in out
    assert "--db-user-password" in out


def test_non_interactive_uses_saved_php_version() -> None:
    cfg = default_config()
    cfg.deploy.runtime_version = "8.3"
    inputs = PlanInputs(
        repo_url="git@x:acme/shop.git",
        server_host="h",
        ssh_user="u",
        domain_name="shop.example.com",
    )

    resolved = plan_input.collect_inputs(inputs, cfg, non_interactive=True)

    assert resolved.runtime_version == "8.3"
    assert resolved.project_path == "/var/www"


def test_non_interactive_without_saved_php_version_fails(capsys) -> None:
    inputs = PlanInputs(
        repo_url="git@x:acme/shop.git",
        server_host="h",
        ssh_user="u",
        domain_name="shop.example.com",
    )

    with pytest.raises(typer.Exit):
        plan_input.collect_inputs(inputs, default_config(), non_interactive=True)

    assert "--php-version" in capsys.readouterr().out


def test_interactive_prompts_only_for_missing_values(monkeypatch) -> None:
    asked: list[str] = []
    answers = {
        "PHP version (e.g. 8.2)": iter(["8", "8.2"]),
        "MySQL database name": iter(["shop"]),
        "MySQL user name": iter(["shop_app"]),
    }

    def _prompt_text(message, *, default=None):
        asked.append(message)
        if message in answers:
            return next(answers[message])
        return default if default is not None else "x"

    def _confirm(message, *, default=True):
        asked.append(message)
        return "MySQL" in message

    monkeypatch.setattr(plan_input, "prompt_text", _prompt_text)
    monkeypatch.setattr(plan_input, "prompt_secret", lambda message, *, confirm=False: "s3cret")
    monkeypatch.setattr(plan_input, "confirm_choice", _confirm)
    inputs = PlanInputs(repo_url="git@x:acme/shop.git", server_host="h", ssh_user="u", domain_name="shop.example.com")

    resolved = plan_input.collect_inputs(inputs, default_config(), non_interactive=False)

    assert resolved.runtime_version == "8.2"
    assert asked.count("PHP version (e.g. 8.2)") == 2
    assert "SSH username" not in asked
    assert resolved.create_database is True
    assert (resolved.db_name, resolved.db_user) == ("shop", "shop_app")
    assert resolved.db_root_password == "s3cret"
    assert resolved.install_migrations is False
    plan = plan_input.to_plan(resolved, default_config())
    assert plan.database is not None and plan.database.creates_user
    assert plan.project_path == "/var/www"


def test_to_plan_uses_settings_defaults() -> None:
    cfg = default_config()
    cfg.deploy.web_user = "nginx"
    cfg.deploy.certificate_email = "ops@example.com"
    cfg.ssh.port = 2022
    inputs = PlanInputs(
        repo_url="git@x:acme/shop.git",
        server_host="h",
        ssh_user="u",
        runtime_version="8.2",
        domain_name="shop.example.com",
    )

    plan = plan_input.to_plan(inputs, cfg)

    assert plan.web_user == "nginx"
    assert plan.certificate_email == "ops@example.com"
    assert plan.ssh_port == 2022
    assert plan.database is None
    assert plan.app_key is None


def test_describe_plan_hides_secrets(make_plan) -> None:
    plan = make_plan(app_key="base64:topsecret")

    rows = dict(plan_input.describe_plan(plan))

    assert rows["App key"] == "(provided)"
    assert "topsecret" not in str(rows)
    assert rows["Checkout"] == "/var/www/shop"
