from __future__ import annotations

from typer.testing import CliRunner

from laradeploy_cli import config, main


def test_settings_group_available() -> None:
    app = main._build_app()
    runner = CliRunner()
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "settings" in result.output
    assert "deploy" in result.output


def test_settings_set_and_show(isolated_config) -> None:
    runner = CliRunner()

    result = runner.invoke(
        main.app,
        ["settings", "set", "--php-version", "8.3", "--ssh-port", "2222", "--host-key-checking", "accept-new"],
    )
    assert result.exit_code == 0, result.output

    cfg = config.load_config()
    assert cfg.deploy.runtime_version == "8.3"
    assert cfg.ssh.port == 2222
    assert cfg.ssh.host_key_checking == "accept-new"

    shown = runner.invoke(main.app, ["settings", "show"])
    assert shown.exit_code == 0
    assert "deploy.runtime_version=8.3" in shown.output
    assert "ssh.port=2222" in shown.output


def test_settings_set_rejects_bad_version(isolated_config) -> None:
    result = CliRunner().invoke(main.app, ["settings", "set", "--php-version", "8"])

    assert result.exit_code == 2
    assert not isolated_config.joinpath("config.toml").exists()


def test_settings_set_rejects_relative_project_path(isolated_config) -> None:
    result = CliRunner().invoke(main.app, ["settings", "set", "--project-path", "www"])

    assert result.exit_code == 2
