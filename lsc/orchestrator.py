from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

from . import db
from .docker_ops import ServiceController
from .errors import ConvergeError, HealthFatal, HealthTimeout, PersistenceError
from .health import HealthProbe
from .models import (
    DeployReport,
    HealthCheckResult,
    HealthStatus,
    Outcome,
    RenderedConfig,
    ServiceReport,
    ServiceSpec,
    WriteResult,
)
from .render import ConfigRenderer, digest
from .secrets_store import SecretStore
from .settings import Settings


@dataclass
class DeployContext:
    """What probes and actions of a service can see while it is being deployed."""

    settings: Settings
    store: SecretStore
    controller: ServiceController
    variables: Mapping[str, str] = field(default_factory=dict)

    def secret(self, name: str) -> str:
        value = self.store.get(name)
        if not value:
            raise PersistenceError(f"Secret {name} is missing from {self.store.path}")
        return value

    def template_vars(self) -> dict[str, str]:
        return {**self.store.as_dict(), **self.variables}


class Orchestrator:
    """Deploys services one at a time, in the given order, stopping at the first failure.

    Per service: secrets -> configs -> container -> health -> bootstrap.
    Nothing already deployed is rolled back; every stage is safe to re-run.
    """

    def __init__(
        self,
        settings: Settings,
        renderer: ConfigRenderer,
        store: SecretStore | None = None,
        controller: ServiceController | None = None,
        variables: Mapping[str, str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.renderer = renderer
        self.store = store or SecretStore(settings.master_env_file)
        self.controller = controller or ServiceController()
        self.ctx = DeployContext(settings, self.store, self.controller, dict(variables or {}))
        self._sleep = sleep
        db.init_db()

    def deploy(self, services: Sequence[ServiceSpec]) -> DeployReport:
        report = DeployReport()
        failed = False
        for spec in services:
            if failed:
                report.services.append(ServiceReport(name=spec.name, outcome=Outcome.SKIPPED))
                continue
            result = self._deploy_one(spec)
            report.services.append(result)
            failed = result.outcome is Outcome.FAILURE
        if failed:
            skipped = [s.name for s in report.services if s.outcome is Outcome.SKIPPED]
            if skipped:
                db.log_event("WARN", f"Skipped after failure: {', '.join(skipped)}")
        return report

    def _deploy_one(self, spec: ServiceSpec) -> ServiceReport:
        rep = ServiceReport(name=spec.name, outcome=Outcome.SUCCESS)
        db.log_event("INFO", "Deploying", service_name=spec.name)
        stage = "secrets"
        try:
            for secret in spec.secrets:
                self.store.ensure(secret.name, secret.generator)

            stage = "configs"
            rendered = self._write_configs(spec, rep)

            if spec.image:
                stage = "container"
                rep.state = self.controller.converge(spec, digest(rendered))

                if spec.probe is not None:
                    stage = "health"
                    result = self._wait_ready(spec)
                    rep.detail = result.detail
                    rep.state = self.controller.state(spec.name)

            stage = "bootstrap"
            for action in spec.actions:
                action(self.ctx)
        except ConvergeError as e:
            rep.outcome = Outcome.FAILURE
            rep.stage = stage
            rep.detail = str(e)
            db.log_event("ERROR", f"{type(e).__name__}: {e}", service_name=spec.name, stage=stage)
            return rep

        db.log_event("INFO", "Deployed", service_name=spec.name)
        return rep

    def _write_configs(self, spec: ServiceSpec, rep: ServiceReport) -> list[RenderedConfig]:
        variables = self.ctx.template_vars()
        rendered = [self.renderer.materialize(c, variables) for c in spec.configs]
        for config in rendered:
            if self.renderer.write(config) is WriteResult.WRITTEN:
                rep.configs_written += 1
                db.log_event("INFO", f"Wrote {config.target_path}", service_name=spec.name, stage="configs")
            else:
                rep.configs_unchanged += 1
        return rendered

    def _wait_ready(self, spec: ServiceSpec) -> HealthCheckResult:
        probe = spec.probe
        assert probe is not None

        def log_attempt(r: HealthCheckResult) -> None:
            db.log_event(
                "INFO",
                f"[{r.attempts}/{probe.max_attempts}] {r.status.value}: {r.detail}",
                service_name=spec.name,
                stage="health",
            )

        result = HealthProbe(probe.classifier, sleep=self._sleep).wait_ready(
            lambda: probe.check(self.ctx), probe.max_attempts, probe.interval_s, on_attempt=log_attempt
        )
        if result.status is HealthStatus.FAILED_FATAL:
            raise HealthFatal(result.detail, service=spec.name)
        if not result.ready:
            raise HealthTimeout(
                f"Not ready after {result.attempts} attempts (last: {result.status.value}: {result.detail})",
                service=spec.name,
            )
        return result
