from __future__ import annotations

import typer

from .commands import deploy_cmd, settings_cmd, vhost_cmd
from .logging_ import setup_logging


def _build_app() -> typer.Typer:
    app = typer.Typer(
        name="laradeploy",
        help="Provision a server and deploy a Laravel application over SSH.",
        no_args_is_help=True,
    )

    app.command("deploy")(deploy_cmd.deploy)
    app.command("plan-template")(deploy_cmd.plan_template)
    app.command("render-vhost")(vhost_cmd.render_vhost_cmd)
    app.add_typer(settings_cmd.app, name="settings")

    @app.callback()
    def _main(
            verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose logs."),
    ):
        setup_logging(verbose)

    return app


app = _build_app()
