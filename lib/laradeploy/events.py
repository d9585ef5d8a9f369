from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable


class Stage(str, Enum):
    PACKAGES = "packages"
    REPOSITORY = "repository"
    ENVIRONMENT = "environment"
    DATABASE = "database"
    DEPENDENCIES = "dependencies"
    MIGRATIONS = "migrations"
    REVERSE_PROXY = "reverse-proxy"
    CERTIFICATE = "certificate"


class DeployState(str, Enum):
    INIT = "Init"
    PACKAGES_READY = "PackagesReady"
    REPO_CLONED = "RepoCloned"
    ENV_CONFIGURED = "EnvConfigured"
    DATABASE_READY = "DatabaseReady"
    DEPENDENCIES_INSTALLED = "DependenciesInstalled"
    MIGRATIONS_APPLIED = "MigrationsApplied"
    PROXY_CONFIGURED = "ProxyConfigured"
    CERTIFICATE_ISSUED = "CertificateIssued"
    DONE = "Done"
    FAILED = "Failed"


class EventKind(str, Enum):
    STARTED = "started"
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"
    WARNING = "warning"


@dataclass(frozen=True)
class StageEvent:
    stage: Stage
    kind: EventKind
    message: str
    error: Exception | None = None


EventSink = Callable[[StageEvent], None]
