from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


_DEFAULT_ROOT = os.path.join(os.path.expanduser("~"), "cicd_stack")


@dataclass(frozen=True)
class Settings:
    # Layout
    stack_root: str = os.getenv("LSC_STACK_ROOT", _DEFAULT_ROOT)
    db_path: str = os.getenv("LSC_DB_PATH", os.path.join(_DEFAULT_ROOT, "elk", "lsc-state.db"))

    # Container runtime
    docker_network: str = os.getenv("LSC_DOCKER_NETWORK", "cicd-net")
    elastic_version: str = os.getenv("LSC_ELASTIC_VERSION", "9.2.2")
    elastic_registry: str = os.getenv("LSC_ELASTIC_REGISTRY", "docker.elastic.co")
    es_heap: str = os.getenv("LSC_ES_HEAP", "1g")

    # Endpoints as seen from the host
    es_url: str = os.getenv("LSC_ES_URL", "https://127.0.0.1:9200")
    kibana_url: str = os.getenv("LSC_KIBANA_URL", "https://127.0.0.1:5601")
    http_timeout_s: int = _env_int("LSC_HTTP_TIMEOUT_S", 10)

    # Host changes that need root
    manage_kernel: bool = _env_bool("LSC_MANAGE_KERNEL", True)
    manage_ownership: bool = _env_bool("LSC_MANAGE_OWNERSHIP", True)
    sysctl_conf: str = os.getenv("LSC_SYSCTL_CONF", "/etc/sysctl.conf")
    proc_sys_root: str = os.getenv("LSC_PROC_SYS_ROOT", "/proc/sys")

    # Stress test
    stress_target: str = os.getenv("LSC_STRESS_TARGET", "https://gitlab.cicd.local:10300/admin")

    @property
    def root(self) -> Path:
        return Path(self.stack_root)

    @property
    def elk_base(self) -> Path:
        return self.root / "elk"

    @property
    def master_env_file(self) -> Path:
        return self.root / "cicd.env"

    @property
    def ca_dir(self) -> Path:
        return self.root / "ca"

    @property
    def ca_cert(self) -> Path:
        return self.ca_dir / "pki" / "certs" / "ca.pem"

    def service_cert(self, host: str, kind: str) -> Path:
        """Source certificate (kind="crt") or key (kind="key") issued for `host`."""
        return self.ca_dir / "pki" / "services" / "elk" / host / f"{host}.{kind}.pem"

    def service_dir(self, service: str) -> Path:
        return self.elk_base / service

    def image(self, product: str, name: str) -> str:
        return f"{self.elastic_registry}/{product}/{name}:{self.elastic_version}"


settings = Settings()
