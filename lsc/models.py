from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from .health import Classifier
    from .orchestrator import DeployContext


class ServiceState(str, Enum):
    ABSENT = "absent"
    STOPPED = "stopped"
    RUNNING = "running"
    RUNNING_UNHEALTHY = "running-unhealthy"


class HealthStatus(str, Enum):
    READY = "ready"
    BOOTING = "booting"
    DEGRADED = "degraded"
    FAILED_FATAL = "failed-fatal"


class WriteResult(str, Enum):
    WRITTEN = "written"
    UNCHANGED = "unchanged"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class SecretSpec:
    name: str
    generator: Callable[[], str]


@dataclass(frozen=True)
class Mount:
    """Host path (absolute) or named volume mounted at `target` in the container."""

    source: str
    target: str
    read_only: bool = False

    @property
    def is_named_volume(self) -> bool:
        return not self.source.startswith("/")


@dataclass(frozen=True)
class PortBinding:
    container_port: int
    host_port: int
    host_ip: str = "127.0.0.1"
    protocol: str = "tcp"


@dataclass(frozen=True)
class Ulimit:
    name: str
    soft: int
    hard: int


@dataclass(frozen=True)
class ConfigSpec:
    """One file a service needs on the host before its container starts.

    Exactly one of `template_id` (rendered with the deploy variables) or
    `source` (copied as-is, e.g. a certificate) is set.
    """

    target: Path
    template_id: str | None = None
    source: Path | None = None
    owner: tuple[int, int] | None = None  # (uid, gid)
    mode: int = 0o644


@dataclass(frozen=True)
class RenderedConfig:
    target_path: Path
    content: bytes
    owner: tuple[int, int] | None = None
    mode: int = 0o644


@dataclass(frozen=True)
class ProbeSpec:
    check: Callable[["DeployContext"], str]
    classifier: "Classifier"
    max_attempts: int = 60
    interval_s: float = 5.0


@dataclass(frozen=True)
class ServiceSpec:
    """Static description of one deployment step.

    A step without an `image` has no container: it only ensures secrets,
    writes configs and runs its actions (e.g. credential bootstrap).
    """

    name: str
    image: str | None = None
    hostname: str | None = None
    networks: tuple[str, ...] = ()
    mounts: tuple[Mount, ...] = ()
    ports: tuple[PortBinding, ...] = ()
    env_file: Path | None = None
    user: str | None = None
    ulimits: tuple[Ulimit, ...] = ()
    cap_add: tuple[str, ...] = ()
    restart_policy: str = "always"
    secrets: tuple[SecretSpec, ...] = ()
    configs: tuple[ConfigSpec, ...] = ()
    probe: ProbeSpec | None = None
    actions: tuple[Callable[["DeployContext"], None], ...] = ()

    @property
    def named_volumes(self) -> list[str]:
        return [m.source for m in self.mounts if m.is_named_volume]


@dataclass(frozen=True)
class HealthCheckResult:
    status: HealthStatus
    detail: str
    attempts: int
    timed_out: bool = False

    @property
    def ready(self) -> bool:
        return self.status is HealthStatus.READY


@dataclass
class ServiceReport:
    name: str
    outcome: Outcome
    stage: str | None = None
    state: ServiceState | None = None
    detail: str = ""
    configs_written: int = 0
    configs_unchanged: int = 0

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["outcome"] = self.outcome.value
        d["state"] = self.state.value if self.state else None
        return d


@dataclass
class DeployReport:
    services: list[ServiceReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(s.outcome is Outcome.SUCCESS for s in self.services)

    @property
    def failed(self) -> ServiceReport | None:
        for s in self.services:
            if s.outcome is Outcome.FAILURE:
                return s
        return None

    def outcome_of(self, name: str) -> Outcome | None:
        for s in self.services:
            if s.name == name:
                return s.outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "services": [s.to_dict() for s in self.services]}
