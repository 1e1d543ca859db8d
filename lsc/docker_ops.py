from __future__ import annotations

import hashlib
import json
import re
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import docker
from docker.errors import DockerException, NotFound
from docker.types import Ulimit as DockerUlimit

from . import db
from .errors import ContainerRuntimeError
from .models import ServiceSpec, ServiceState
from .secrets_store import parse_assignments

CONTAINER_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")

FINGERPRINT_LABEL = "lsc.fingerprint"
SERVICE_LABEL = "lsc.service"


def validate_container_name(name: str) -> None:
    if not CONTAINER_NAME_RE.match(name):
        raise ContainerRuntimeError(
            f"Invalid container name '{name}'. Use letters/numbers and _.-, starting with a letter or number.",
            service=name,
        )


def read_env_file(path: Path) -> dict[str, str]:
    """Parse a scoped env file the way `docker run --env-file` does (no quote handling)."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ContainerRuntimeError(f"Cannot read env file {path}: {e}") from e
    return parse_assignments(text, unquote=False)


def fingerprint(spec: ServiceSpec, env: dict[str, str], config_digest: str = "") -> str:
    """Hash of everything that requires a new container when it changes."""
    doc = {
        "image": spec.image,
        "hostname": spec.hostname,
        "networks": list(spec.networks),
        "mounts": [asdict(m) for m in spec.mounts],
        "ports": [asdict(p) for p in spec.ports],
        "env": env,
        "user": spec.user,
        "ulimits": [asdict(u) for u in spec.ulimits],
        "cap_add": sorted(spec.cap_add),
        "restart_policy": spec.restart_policy,
        "config": config_digest,
    }
    raw = json.dumps(doc, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def started_at(container: Any) -> int | None:
    """Unix time (whole seconds) the container's current run began, if the engine reports it."""
    raw = (container.attrs.get("State") or {}).get("StartedAt") or ""
    try:
        ts = datetime.strptime(raw[:19], "%Y-%m-%dT%H:%M:%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    seconds = int(ts.timestamp())
    return seconds if seconds > 0 else None


def container_state(container: Any) -> ServiceState:
    status = container.status
    if status in {"running", "restarting"}:
        health = (container.attrs.get("State") or {}).get("Health") or {}
        if health.get("Status") == "unhealthy":
            return ServiceState.RUNNING_UNHEALTHY
        return ServiceState.RUNNING
    return ServiceState.STOPPED


class ServiceController:
    """Sole owner of container lifecycle for the services it converges.

    Containers are never patched in place: when the fingerprint of a service definition
    differs from the one recorded on the existing container, the container is
    stopped, removed and created again. Named volumes are only ever created.
    """

    def __init__(self, client_factory: Callable[[], Any] = docker.from_env) -> None:
        self._client_factory = client_factory
        self._client: Any = None

    def _c(self) -> Any:
        if self._client is None:
            try:
                self._client = self._client_factory()
            except DockerException as e:
                raise ContainerRuntimeError(f"Docker is not available: {e}") from e
        return self._client

    def _get(self, name: str) -> Any | None:
        try:
            return self._c().containers.get(name)
        except NotFound:
            return None
        except DockerException as e:
            raise ContainerRuntimeError(f"Cannot inspect container '{name}': {e}", service=name) from e

    def state(self, name: str) -> ServiceState:
        container = self._get(name)
        if container is None:
            return ServiceState.ABSENT
        return container_state(container)

    def logs(self, name: str, tail: int | str = "all") -> str:
        """Output of the container's current run; lines from before its last start are left out."""
        container = self._get(name)
        if container is None:
            return ""
        try:
            kwargs: dict[str, Any] = {"stdout": True, "stderr": True, "tail": tail}
            since = started_at(container)
            if since is not None:
                kwargs["since"] = since
            raw = container.logs(**kwargs)
        except DockerException as e:
            raise ContainerRuntimeError(f"Cannot read logs of '{name}': {e}", service=name) from e
        return raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)

    def ensure_network(self, network: str) -> None:
        c = self._c()
        try:
            c.networks.get(network)
        except NotFound:
            c.networks.create(network, driver="bridge")
            db.log_event("INFO", f"Created docker network '{network}'.")

    def ensure_volume(self, volume: str) -> None:
        c = self._c()
        try:
            c.volumes.get(volume)
        except NotFound:
            c.volumes.create(name=volume)
            db.log_event("INFO", f"Created docker volume '{volume}'.")

    def remove(self, name: str) -> None:
        """Stop (if running) and remove a container; absent containers are fine."""
        container = self._get(name)
        if container is None:
            return
        try:
            if container.status in {"running", "restarting", "paused"}:
                db.log_event("INFO", f"Stopping existing '{name}'", service_name=name, stage="container")
                container.stop()
            db.log_event("INFO", f"Removing existing '{name}'", service_name=name, stage="container")
            container.remove()
        except NotFound:
            return
        except DockerException as e:
            raise ContainerRuntimeError(f"Cannot remove container '{name}': {e}", service=name) from e

    def converge(self, spec: ServiceSpec, config_digest: str = "") -> ServiceState:
        if not spec.image:
            raise ContainerRuntimeError(f"Service '{spec.name}' has no image to converge", service=spec.name)
        validate_container_name(spec.name)

        env = read_env_file(spec.env_file) if spec.env_file else {}
        fp = fingerprint(spec, env, config_digest)

        existing = self._get(spec.name)
        if existing is not None:
            applied = (existing.labels or {}).get(FINGERPRINT_LABEL)
            if applied == fp:
                return self._keep(spec, existing)
            self.remove(spec.name)

        try:
            for network in spec.networks:
                self.ensure_network(network)
            for volume in spec.named_volumes:
                self.ensure_volume(volume)
            container = self._create(spec, env, fp)
        except DockerException as e:
            raise ContainerRuntimeError(f"Cannot start '{spec.name}' from {spec.image}: {e}", service=spec.name) from e

        db.record_applied(spec.name, container.id, spec.image, fp)
        db.log_event("INFO", f"Started container from image {spec.image}", service_name=spec.name, stage="container")
        return container_state(container)

    def _keep(self, spec: ServiceSpec, container: Any) -> ServiceState:
        state = container_state(container)
        if state is ServiceState.STOPPED:
            try:
                container.start()
                container.reload()
            except DockerException as e:
                raise ContainerRuntimeError(f"Cannot start '{spec.name}': {e}", service=spec.name) from e
            db.log_event("INFO", "Started existing container (unchanged)", service_name=spec.name, stage="container")
            return container_state(container)
        db.log_event("INFO", "Container unchanged, left running", service_name=spec.name, stage="container")
        return state

    def _create(self, spec: ServiceSpec, env: dict[str, str], fp: str) -> Any:
        c = self._c()
        volumes = {
            m.source: {"bind": m.target, "mode": "ro" if m.read_only else "rw"} for m in spec.mounts
        }
        ports = {f"{p.container_port}/{p.protocol}": (p.host_ip, p.host_port) for p in spec.ports}
        kwargs: dict[str, Any] = {
            "detach": True,
            "name": spec.name,
            "environment": env,
            "volumes": volumes,
            "ports": ports,
            "labels": {SERVICE_LABEL: spec.name, FINGERPRINT_LABEL: fp},
            "restart_policy": {"Name": spec.restart_policy},
        }
        if spec.hostname:
            kwargs["hostname"] = spec.hostname
        if spec.networks:
            kwargs["network"] = spec.networks[0]
        if spec.user:
            kwargs["user"] = spec.user
        if spec.ulimits:
            kwargs["ulimits"] = [DockerUlimit(name=u.name, soft=u.soft, hard=u.hard) for u in spec.ulimits]
        if spec.cap_add:
            kwargs["cap_add"] = list(spec.cap_add)

        container = c.containers.run(spec.image, **kwargs)
        for network in spec.networks[1:]:
            c.networks.get(network).connect(container)
        container.reload()
        return container
