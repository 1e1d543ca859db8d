from __future__ import annotations

import json
import ssl
from pathlib import Path
from typing import Any

import httpx

from .errors import BootstrapError

PAYLOAD_DIR = Path(__file__).parent / "payloads"


def load_pipeline(pipeline_id: str = "cicd-logs") -> dict[str, Any]:
    path = PAYLOAD_DIR / f"{pipeline_id}.json"
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise BootstrapError(f"Cannot load pipeline definition {path}: {e}") from e


def _request(
    method: str,
    url: str,
    *,
    auth: tuple[str, str],
    payload: dict[str, Any],
    verify: ssl.SSLContext | bool,
    timeout_s: float,
    transport: httpx.BaseTransport | None,
) -> httpx.Response:
    try:
        with httpx.Client(timeout=timeout_s, verify=verify, transport=transport) as client:
            return client.request(method, url, auth=auth, json=payload)
    except httpx.HTTPError as e:
        raise BootstrapError(f"{method} {url} failed: {type(e).__name__}: {e}") from e


def set_kibana_system_password(
    es_url: str,
    elastic_password: str,
    kibana_password: str,
    verify: ssl.SSLContext | bool = True,
    timeout_s: float = 10.0,
    transport: httpx.BaseTransport | None = None,
) -> None:
    """Give the built-in `kibana_system` user the password Kibana is configured with."""
    url = f"{es_url.rstrip('/')}/_security/user/kibana_system/_password"
    resp = _request(
        "POST",
        url,
        auth=("elastic", elastic_password),
        payload={"password": kibana_password},
        verify=verify,
        timeout_s=timeout_s,
        transport=transport,
    )
    if not resp.is_success:
        raise BootstrapError(f"Setting kibana_system password failed: HTTP {resp.status_code} {resp.text}")


def install_ingest_pipeline(
    es_url: str,
    elastic_password: str,
    pipeline_id: str = "cicd-logs",
    body: dict[str, Any] | None = None,
    verify: ssl.SSLContext | bool = True,
    timeout_s: float = 10.0,
    transport: httpx.BaseTransport | None = None,
) -> dict[str, Any]:
    """PUT the ingest pipeline; Elasticsearch replaces an existing one with the same id."""
    url = f"{es_url.rstrip('/')}/_ingest/pipeline/{pipeline_id}"
    resp = _request(
        "PUT",
        url,
        auth=("elastic", elastic_password),
        payload=body if body is not None else load_pipeline(pipeline_id),
        verify=verify,
        timeout_s=timeout_s,
        transport=transport,
    )
    if resp.status_code != 200:
        raise BootstrapError(f"Installing pipeline '{pipeline_id}' failed: HTTP {resp.status_code} {resp.text}")
    try:
        return resp.json()
    except ValueError:
        return {}
