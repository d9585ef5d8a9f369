from .errors import (
    CloneError,
    CommandTimeoutError,
    ConfigValidationError,
    DeployError,
    RemoteCommandError,
    RemoteConnectionError,
    ValidationError,
)
from .events import DeployState, EventKind, Stage, StageEvent
from .executor import CommandResult, RemoteExecutor
from .pipeline import DeploymentReport, StageFailure, run_pipeline
from .plan import DatabaseSpec, DeploymentPlan, build_database_spec, build_plan, derive_repo_name

__all__ = [
    "CloneError",
    "CommandResult",
    "CommandTimeoutError",
    "ConfigValidationError",
    "DatabaseSpec",
    "DeployError",
    "DeployState",
    "DeploymentPlan",
    "DeploymentReport",
    "EventKind",
    "RemoteCommandError",
    "RemoteConnectionError",
    "RemoteExecutor",
    "Stage",
    "StageEvent",
    "StageFailure",
    "ValidationError",
    "build_database_spec",
    "build_plan",
    "derive_repo_name",
    "run_pipeline",
]
