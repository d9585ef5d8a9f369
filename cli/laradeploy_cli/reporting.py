from __future__ import annotations

from rich.table import Table

from laradeploy.errors import CloneError, ConfigValidationError, RemoteCommandError
from laradeploy.events import EventKind, Stage, StageEvent
from laradeploy.pipeline import DeploymentReport
from laradeploy.plan import DeploymentPlan

from . import console
from .plan_input import describe_plan

_CHECKS: dict[Stage, tuple[str, ...]] = {
    Stage.PACKAGES: ("apt-get -s install nginx", "dpkg -l | grep php"),
    Stage.REPOSITORY: ("ssh -T git@github.com", "ls -la <project path>"),
    Stage.DATABASE: ("systemctl status mysql", "mysql -u root -p -e 'SHOW DATABASES'"),
    Stage.DEPENDENCIES: ("php -v", "composer diagnose"),
    Stage.MIGRATIONS: ("php artisan migrate:status",),
    Stage.REVERSE_PROXY: ("nginx -t", "journalctl -u nginx --no-pager -n 100"),
    Stage.CERTIFICATE: ("certbot certificates", "journalctl -u nginx --no-pager -n 100"),
}


def _tail(text: str, *, limit: int = 8) -> str:
    if not text:
        return ""
    lines = text.rstrip().splitlines()
    if len(lines) <= limit:
        return "\n".join(lines)
    return "\n".join(lines[-limit:])


def render_event(event: StageEvent) -> None:
    if event.kind is EventKind.STARTED:
        console.info(event.message)
    elif event.kind is EventKind.SUCCEEDED:
        console.ok(event.message)
    elif event.kind is EventKind.SKIPPED:
        console.print(f"[dim]- {event.stage.value}: {event.message}[/]")
    elif event.kind is EventKind.WARNING:
        console.warn(event.message)
    # failures are rendered by report_failure once the run has stopped


def print_plan(plan: DeploymentPlan) -> None:
    table = Table(title="Deployment plan")
    table.add_column("setting", style="bold")
    table.add_column("value")
    for key, value in describe_plan(plan):
        table.add_row(key, value)
    console.print(table)


def report_failure(report: DeploymentReport) -> None:
    failure = report.failure
    if failure is None:
        return
    exc = failure.cause
    console.err(f"Stage '{failure.stage.value}' failed: {exc}")
    stdout = stderr = ""
    if isinstance(exc, RemoteCommandError):
        console.err(f"Command: {exc.command}")
        console.err(f"Exit code: {exc.exit_code}")
        stdout, stderr = exc.stdout, exc.stderr
    elif isinstance(exc, (CloneError, ConfigValidationError)):
        stderr = exc.stderr
        if isinstance(exc, CloneError) and exc.exit_code is not None:
            console.err(f"Exit code: {exc.exit_code}")
    if _tail(stdout):
        console.err(f"Last stdout:\n{_tail(stdout)}")
    if _tail(stderr):
        console.err(f"Last stderr:\n{_tail(stderr)}")
    checks = _CHECKS.get(failure.stage)
    if checks:
        console.info("Useful checks:")
        for check in checks:
            console.print(f"- {check}", markup=False)
    console.warn("Nothing was rolled back; earlier stages remain applied on the host.")


def print_summary(report: DeploymentReport) -> None:
    console.rule("Deployment finished")
    for stage in report.skipped:
        console.print(f"[dim]skipped: {stage.value}[/]")
    for warning in report.warnings:
        console.warn(warning)
    for url in report.site_urls():
        console.ok(f"Site available at {url}")
