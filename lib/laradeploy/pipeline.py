from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from . import stages
from .errors import DeployError
from .events import DeployState, EventKind, EventSink, Stage, StageEvent
from .executor import RemoteExecutor
from .plan import DeploymentPlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageFailure:
    stage: Stage
    cause: DeployError


@dataclass
class DeploymentReport:
    plan: DeploymentPlan
    states: list[DeployState] = field(default_factory=lambda: [DeployState.INIT])
    results: dict[Stage, Any] = field(default_factory=dict)
    skipped: list[Stage] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    failure: StageFailure | None = None
    optional_failures: list[StageFailure] = field(default_factory=list)

    @property
    def state(self) -> DeployState:
        return self.states[-1]

    @property
    def succeeded(self) -> bool:
        return self.failure is None and self.state is DeployState.DONE

    @property
    def certificate_issued(self) -> bool:
        return Stage.CERTIFICATE in self.results

    def site_urls(self) -> list[str]:
        return self.plan.site_urls(https=self.certificate_issued)


@dataclass(frozen=True)
class _Step:
    stage: Stage
    reaches: DeployState
    run: Callable[[stages.StageContext, dict[Stage, Any]], Any]
    started: str
    succeeded: str
    enabled: bool = True
    skip_reason: str = ""
    fatal: bool = True


def build_steps(plan: DeploymentPlan) -> list[_Step]:
    return [
        _Step(
            Stage.PACKAGES,
            DeployState.PACKAGES_READY,
            lambda ctx, _: stages.provision_packages(ctx),
            "Checking for required packages...",
            "Required packages installed.",
        ),
        _Step(
            Stage.REPOSITORY,
            DeployState.REPO_CLONED,
            lambda ctx, _: stages.deploy_repository(ctx),
            f"Cloning {plan.repo_url} into {plan.checkout_path}...",
            "Repository cloned.",
        ),
        _Step(
            Stage.ENVIRONMENT,
            DeployState.ENV_CONFIGURED,
            lambda ctx, _: stages.configure_environment(ctx),
            "Creating .env file...",
            ".env file created and configured.",
        ),
        _Step(
            Stage.DATABASE,
            DeployState.DATABASE_READY,
            lambda ctx, _: stages.provision_database(ctx),
            "Creating MySQL database...",
            "MySQL database ready.",
            enabled=plan.create_database,
            skip_reason="database creation not requested",
        ),
        _Step(
            Stage.DEPENDENCIES,
            DeployState.DEPENDENCIES_INSTALLED,
            lambda ctx, results: stages.install_dependencies(
                ctx, results[Stage.PACKAGES], results.get(Stage.DATABASE)
            ),
            "Running composer install and finalizing .env...",
            "Composer dependencies installed and application configured.",
        ),
        _Step(
            Stage.MIGRATIONS,
            DeployState.MIGRATIONS_APPLIED,
            lambda ctx, _: stages.run_migrations(ctx),
            "Running migrations and seeders...",
            "Migrations and seeders executed.",
            enabled=plan.install_migrations,
            skip_reason="migrations not requested",
        ),
        _Step(
            Stage.REVERSE_PROXY,
            DeployState.PROXY_CONFIGURED,
            lambda ctx, _: stages.configure_reverse_proxy(ctx),
            f"Writing Nginx server block {plan.site_available_path}...",
            "Nginx configuration validated and reloaded.",
        ),
        _Step(
            Stage.CERTIFICATE,
            DeployState.CERTIFICATE_ISSUED,
            lambda ctx, _: stages.provision_certificate(ctx),
            f"Requesting Let's Encrypt certificate for {plan.domain_name}...",
            "Let's Encrypt certificate installed.",
            enabled=plan.issue_certificate,
            skip_reason="certificate not requested",
            fatal=False,
        ),
    ]


def run_pipeline(
        plan: DeploymentPlan,
        executor: RemoteExecutor,
        *,
        on_event: EventSink | None = None,
) -> DeploymentReport:
    """Run every selected stage in order and stop at the first fatal failure.

    Nothing is rolled back: a failed stage leaves the host as it was when the
    failing command returned. Certificate issuance is the only stage whose
    failure is reported as a warning and does not fail the run.
    """
    report = DeploymentReport(plan=plan)
    current: list[Stage] = []

    def emit(stage: Stage, kind: EventKind, message: str, error: Exception | None = None) -> None:
        if on_event:
            on_event(StageEvent(stage=stage, kind=kind, message=message, error=error))

    def on_warning(message: str) -> None:
        report.warnings.append(message)
        emit(current[-1], EventKind.WARNING, message)

    ctx = stages.StageContext(plan=plan, executor=executor, on_warning=on_warning)

    for step in build_steps(plan):
        if not step.enabled:
            report.skipped.append(step.stage)
            emit(step.stage, EventKind.SKIPPED, f"Skipped: {step.skip_reason}.")
            continue
        current.append(step.stage)
        emit(step.stage, EventKind.STARTED, step.started)
        try:
            result = step.run(ctx, report.results)
        except DeployError as exc:
            failure = StageFailure(stage=step.stage, cause=exc)
            if not step.fatal:
                logger.warning("optional stage %s failed: %s", step.stage.value, exc)
                report.optional_failures.append(failure)
                report.warnings.append(f"{step.stage.value}: {exc}")
                emit(step.stage, EventKind.WARNING, f"{step.stage.value} failed (deployment continues): {exc}", exc)
                continue
            logger.debug("stage %s failed", step.stage.value, exc_info=True)
            report.failure = failure
            report.states.append(DeployState.FAILED)
            emit(step.stage, EventKind.FAILED, str(exc), exc)
            return report
        report.results[step.stage] = result
        report.states.append(step.reaches)
        emit(step.stage, EventKind.SUCCEEDED, step.succeeded)

    report.states.append(DeployState.DONE)
    return report
