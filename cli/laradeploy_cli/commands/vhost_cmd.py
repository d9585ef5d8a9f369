from __future__ import annotations

import posixpath

import typer

from laradeploy.errors import ValidationError
from laradeploy.nginx import render_vhost
from laradeploy.plan import (
    derive_repo_name,
    fpm_socket_path,
    normalize_domain,
    normalize_project_path,
    validate_runtime_version,
)

from .. import console
from ..config import load_config


def render_vhost_cmd(
        domain: str = typer.Option(..., "--domain", help="Domain name served by Nginx."),
        repo_url: str = typer.Option(..., "--repo-url", help="Repository URL; its base name is the checkout dir."),
        php_version: str | None = typer.Option(None, "--php-version", help="PHP version, major.minor."),
        project_path: str | None = typer.Option(None, "--project-path", help="Directory holding the checkout."),
):
    """Print the Nginx server block a deployment would install."""
    cfg = load_config()
    try:
        version = validate_runtime_version(php_version or cfg.deploy.runtime_version)
        root = posixpath.join(
            normalize_project_path(project_path or cfg.deploy.project_path),
            derive_repo_name(repo_url),
            "public",
        )
        server_name = normalize_domain(domain)
    except ValidationError as exc:
        console.err(str(exc))
        raise typer.Exit(code=2)
    typer.echo(
        render_vhost(
            domain=server_name,
            document_root=root,
            fpm_socket=fpm_socket_path(version),
        ),
        nl=False,
    )
