from __future__ import annotations

import os
from typing import Iterable, Sequence

from . import db
from .bootstrap import install_ingest_pipeline, set_kibana_system_password
from .health import (
    ELASTICSEARCH_CLASSIFIER,
    FILEBEAT_CLASSIFIER,
    KIBANA_CLASSIFIER,
    http_checker,
    tls_verify,
)
from .kernel import ensure_sysctl
from .models import ConfigSpec, Mount, PortBinding, ProbeSpec, SecretSpec, ServiceSpec, Ulimit
from .orchestrator import DeployContext, Orchestrator
from .render import ConfigRenderer
from .secrets_store import hex_token
from .settings import Settings
from .templates import TEMPLATES

ES_HOST = "elasticsearch.cicd.local"
KIBANA_HOST = "kibana.cicd.local"
CLUSTER_NAME = "cicd-elk"
PIPELINE_ID = "cicd-logs"
MAX_MAP_COUNT = 262144

# Elasticsearch and Kibana images run as uid 1000; Filebeat runs as root.
ELASTIC_OWNER = (1000, 0)
ROOT_OWNER = (0, 0)

SECRETS = (
    SecretSpec("ELASTIC_PASSWORD", hex_token(16)),
    SecretSpec("KIBANA_PASSWORD", hex_token(16)),
    SecretSpec("XPACK_SECURITY_ENCRYPTIONKEY", hex_token(32)),
    SecretSpec("XPACK_ENCRYPTEDSAVEDOBJECTS_ENCRYPTIONKEY", hex_token(32)),
    SecretSpec("XPACK_REPORTING_ENCRYPTIONKEY", hex_token(32)),
)


def invoking_user() -> tuple[int, int]:
    """uid/gid of the user behind sudo, or of the current process."""
    uid = os.getenv("SUDO_UID")
    gid = os.getenv("SUDO_GID")
    if uid and gid and uid.isdigit() and gid.isdigit():
        return int(uid), int(gid)
    return os.getuid(), os.getgid()


def stack_variables(settings: Settings) -> dict[str, str]:
    return {
        "CLUSTER_NAME": CLUSTER_NAME,
        "ES_HOST": ES_HOST,
        "KIBANA_HOST": KIBANA_HOST,
        "PIPELINE_NAME": PIPELINE_ID,
        "ES_HEAP": settings.es_heap,
    }


def _tune_kernel(ctx: DeployContext) -> None:
    if not ctx.settings.manage_kernel:
        db.log_event("INFO", "Kernel tuning disabled, skipping vm.max_map_count", service_name="elk-setup")
        return
    r = ensure_sysctl(
        "vm.max_map_count",
        MAX_MAP_COUNT,
        proc_sys_root=ctx.settings.proc_sys_root,
        conf_path=ctx.settings.sysctl_conf,
    )
    db.log_event(
        "INFO",
        f"vm.max_map_count={r.value} (runtime changed: {r.runtime_changed}, persisted changed: {r.persisted_changed})",
        service_name="elk-setup",
        stage="bootstrap",
    )


def _set_kibana_password(ctx: DeployContext) -> None:
    set_kibana_system_password(
        ctx.settings.es_url,
        ctx.secret("ELASTIC_PASSWORD"),
        ctx.secret("KIBANA_PASSWORD"),
        verify=tls_verify(ctx.settings.ca_cert),
        timeout_s=ctx.settings.http_timeout_s,
    )
    db.log_event("INFO", "'kibana_system' password set", service_name="elasticsearch", stage="bootstrap")


def _install_pipeline(ctx: DeployContext) -> None:
    install_ingest_pipeline(
        ctx.settings.es_url,
        ctx.secret("ELASTIC_PASSWORD"),
        pipeline_id=PIPELINE_ID,
        verify=tls_verify(ctx.settings.ca_cert),
        timeout_s=ctx.settings.http_timeout_s,
    )
    db.log_event("INFO", f"Pipeline '{PIPELINE_ID}' installed", service_name="ingest-pipeline", stage="bootstrap")


def _es_health(ctx: DeployContext) -> str:
    check = http_checker(
        f"{ctx.settings.es_url.rstrip('/')}/_cluster/health",
        auth=("elastic", ctx.secret("ELASTIC_PASSWORD")),
        verify=tls_verify(ctx.settings.ca_cert),
        timeout_s=ctx.settings.http_timeout_s,
    )
    return check()


def _kibana_status(ctx: DeployContext) -> str:
    check = http_checker(
        f"{ctx.settings.kibana_url.rstrip('/')}/api/status",
        auth=("elastic", ctx.secret("ELASTIC_PASSWORD")),
        verify=tls_verify(ctx.settings.ca_cert),
        timeout_s=ctx.settings.http_timeout_s,
    )
    return check()


def _filebeat_logs(ctx: DeployContext) -> str:
    return ctx.controller.logs("filebeat")


def build_stack(settings: Settings) -> list[ServiceSpec]:
    """The log stack, in dependency order."""
    user = invoking_user()
    es_dir = settings.service_dir("elasticsearch")
    kb_dir = settings.service_dir("kibana")
    fb_dir = settings.service_dir("filebeat")
    network = (settings.docker_network,)

    setup = ServiceSpec(name="elk-setup", secrets=SECRETS, actions=(_tune_kernel,))

    elasticsearch = ServiceSpec(
        name="elasticsearch",
        image=settings.image("elasticsearch", "elasticsearch"),
        hostname=ES_HOST,
        networks=network,
        ports=(PortBinding(9200, 9200),),
        env_file=es_dir / "elasticsearch.env",
        ulimits=(Ulimit("nofile", 65535, 65535), Ulimit("memlock", -1, -1)),
        cap_add=("IPC_LOCK",),
        mounts=(
            Mount("elasticsearch-data", "/usr/share/elasticsearch/data"),
            Mount(str(es_dir / "config" / "elasticsearch.yml"), "/usr/share/elasticsearch/config/elasticsearch.yml"),
            Mount(str(es_dir / "config" / "certs"), "/usr/share/elasticsearch/config/certs"),
        ),
        configs=(
            ConfigSpec(es_dir / "config" / "certs" / "elasticsearch.crt", source=settings.service_cert(ES_HOST, "crt"), owner=ELASTIC_OWNER, mode=0o644),
            ConfigSpec(es_dir / "config" / "certs" / "elasticsearch.key", source=settings.service_cert(ES_HOST, "key"), owner=ELASTIC_OWNER, mode=0o600),
            ConfigSpec(es_dir / "config" / "certs" / "ca.pem", source=settings.ca_cert, owner=ELASTIC_OWNER, mode=0o644),
            ConfigSpec(es_dir / "config" / "elasticsearch.yml", template_id="elasticsearch.yml"),
            ConfigSpec(es_dir / "elasticsearch.env", template_id="elasticsearch.env", owner=user, mode=0o600),
        ),
        probe=ProbeSpec(_es_health, ELASTICSEARCH_CLASSIFIER, max_attempts=60, interval_s=5),
        actions=(_set_kibana_password,),
    )

    kibana = ServiceSpec(
        name="kibana",
        image=settings.image("kibana", "kibana"),
        hostname=KIBANA_HOST,
        networks=network,
        ports=(PortBinding(5601, 5601),),
        env_file=kb_dir / "kibana.env",
        mounts=(
            Mount(str(kb_dir / "config" / "kibana.yml"), "/usr/share/kibana/config/kibana.yml", read_only=True),
            Mount(str(kb_dir / "config" / "certs"), "/usr/share/kibana/config/certs", read_only=True),
        ),
        configs=(
            ConfigSpec(kb_dir / "config" / "certs" / "kibana.crt", source=settings.service_cert(KIBANA_HOST, "crt"), owner=ELASTIC_OWNER, mode=0o644),
            ConfigSpec(kb_dir / "config" / "certs" / "kibana.key", source=settings.service_cert(KIBANA_HOST, "key"), owner=ELASTIC_OWNER, mode=0o600),
            ConfigSpec(kb_dir / "config" / "certs" / "ca.pem", source=settings.ca_cert, owner=ELASTIC_OWNER, mode=0o644),
            ConfigSpec(kb_dir / "config" / "kibana.yml", template_id="kibana.yml"),
            ConfigSpec(kb_dir / "kibana.env", template_id="kibana.env", owner=user, mode=0o600),
        ),
        probe=ProbeSpec(_kibana_status, KIBANA_CLASSIFIER, max_attempts=60, interval_s=5),
    )

    pipeline = ServiceSpec(name="ingest-pipeline", actions=(_install_pipeline,))

    filebeat = ServiceSpec(
        name="filebeat",
        image=settings.image("beats", "filebeat"),
        networks=network,
        user="root",
        env_file=fb_dir / "filebeat.env",
        mounts=(
            Mount(str(fb_dir / "config" / "filebeat.yml"), "/usr/share/filebeat/filebeat.yml", read_only=True),
            Mount(str(fb_dir / "config" / "certs"), "/usr/share/filebeat/certs", read_only=True),
            Mount("filebeat-data", "/usr/share/filebeat/data"),
            Mount("/var/lib/docker/volumes", "/host_volumes", read_only=True),
            Mount("/var/log", "/host_system_logs", read_only=True),
            Mount("/var/log/journal", "/var/log/journal", read_only=True),
            Mount("/etc/machine-id", "/etc/machine-id", read_only=True),
        ),
        configs=(
            ConfigSpec(fb_dir / "config" / "certs" / "ca.pem", source=settings.ca_cert, owner=ROOT_OWNER, mode=0o644),
            ConfigSpec(fb_dir / "config" / "filebeat.yml", template_id="filebeat.yml"),
            ConfigSpec(fb_dir / "filebeat.env", template_id="filebeat.env", owner=user, mode=0o600),
        ),
        probe=ProbeSpec(_filebeat_logs, FILEBEAT_CLASSIFIER, max_attempts=15, interval_s=2),
    )

    return [setup, elasticsearch, kibana, pipeline, filebeat]


def select(services: Sequence[ServiceSpec], only: Iterable[str] | None) -> list[ServiceSpec]:
    """Subset of `services` named in `only`, keeping the declared order."""
    if not only:
        return list(services)
    wanted = set(only)
    known = {s.name for s in services}
    unknown = sorted(wanted - known)
    if unknown:
        raise ValueError(f"Unknown service(s): {', '.join(unknown)}. Known: {', '.join(s.name for s in services)}")
    return [s for s in services if s.name in wanted]


def make_orchestrator(settings: Settings, **kwargs) -> Orchestrator:
    renderer = ConfigRenderer(TEMPLATES, manage_ownership=settings.manage_ownership)
    return Orchestrator(settings, renderer, variables=stack_variables(settings), **kwargs)
