from __future__ import annotations

import re
import ssl
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

import httpx

from .models import HealthCheckResult, HealthStatus


@dataclass(frozen=True)
class Rule:
    status: HealthStatus
    pattern: re.Pattern[str]

    @classmethod
    def of(cls, status: HealthStatus, pattern: str) -> "Rule":
        return cls(status=status, pattern=re.compile(pattern))


class Classifier:
    """Ordered pattern table mapping raw probe output to a HealthStatus.

    The first matching rule wins; output matching nothing is `default`.
    With `newest_first`, output is read as a log: the newest line that matches
    any rule decides, and rule order only breaks ties within that line.
    """

    def __init__(
        self,
        rules: Iterable[Rule],
        default: HealthStatus = HealthStatus.BOOTING,
        newest_first: bool = False,
    ) -> None:
        self.rules = list(rules)
        self.default = default
        self.newest_first = newest_first

    def classify(self, raw: str) -> tuple[HealthStatus, str]:
        if self.newest_first:
            for line in reversed(raw.splitlines()):
                for rule in self.rules:
                    if rule.pattern.search(line):
                        return rule.status, line
            return self.default, _summary(raw)
        for rule in self.rules:
            m = rule.pattern.search(raw)
            if m:
                return rule.status, _line_at(raw, m.start())
        return self.default, _summary(raw)


def _line_at(raw: str, pos: int) -> str:
    start = raw.rfind("\n", 0, pos) + 1
    end = raw.find("\n", pos)
    return raw[start:] if end == -1 else raw[start:end]


def _summary(raw: str, limit: int = 200) -> str:
    lines = [line for line in raw.strip().splitlines() if line.strip()]
    if not lines:
        return "no output"
    last = lines[-1].strip()
    return last if len(last) <= limit else last[:limit] + "..."


class HealthProbe:
    """Polls a checker until it is ready, fatally broken, or out of attempts."""

    def __init__(self, classifier: Classifier, sleep: Callable[[float], None] = time.sleep) -> None:
        self.classifier = classifier
        self._sleep = sleep

    def wait_ready(
        self,
        checker: Callable[[], str],
        max_attempts: int,
        interval: float,
        on_attempt: Callable[[HealthCheckResult], None] | None = None,
    ) -> HealthCheckResult:
        max_attempts = max(1, int(max_attempts))
        status, detail = HealthStatus.BOOTING, "no output"
        for attempt in range(1, max_attempts + 1):
            status, detail = self.classifier.classify(checker())
            result = HealthCheckResult(status=status, detail=detail, attempts=attempt)
            if on_attempt is not None:
                on_attempt(result)
            if status in (HealthStatus.READY, HealthStatus.FAILED_FATAL):
                return result
            if attempt < max_attempts:
                self._sleep(interval)
        return HealthCheckResult(status=status, detail=detail, attempts=max_attempts, timed_out=True)


def tls_verify(ca_cert: Path | str | None) -> ssl.SSLContext | bool:
    """Verify against the stack CA when it is present, else the system trust store."""
    if ca_cert and Path(ca_cert).is_file():
        return ssl.create_default_context(cafile=str(ca_cert))
    return True


def http_checker(
    url: str,
    auth: tuple[str, str] | None = None,
    verify: ssl.SSLContext | bool = True,
    timeout_s: float = 5.0,
    transport: httpx.BaseTransport | None = None,
) -> Callable[[], str]:
    """Checker returning `HTTP <code> <body>`, or `unreachable: ...` when the request fails."""

    def check() -> str:
        try:
            with httpx.Client(
                timeout=timeout_s, verify=verify, follow_redirects=False, transport=transport
            ) as client:
                resp = client.get(url, auth=auth)
            return f"HTTP {resp.status_code} {resp.text}"
        except httpx.HTTPError as e:
            return f"unreachable: {type(e).__name__}: {e}"
        except ssl.SSLError as e:
            return f"unreachable: {type(e).__name__}: {e}"

    return check


CERT_UNTRUSTED = r"CERTIFICATE_VERIFY_FAILED|certificate verify failed"

ELASTICSEARCH_CLASSIFIER = Classifier(
    [
        Rule.of(HealthStatus.FAILED_FATAL, CERT_UNTRUSTED),
        Rule.of(HealthStatus.READY, r'"status"\s*:\s*"(green|yellow)"'),
        Rule.of(HealthStatus.DEGRADED, r'"status"\s*:\s*"red"'),
    ]
)

KIBANA_CLASSIFIER = Classifier(
    [
        Rule.of(HealthStatus.FAILED_FATAL, CERT_UNTRUSTED),
        Rule.of(HealthStatus.READY, r'"level"\s*:\s*"available"'),
        Rule.of(HealthStatus.DEGRADED, r'"level"\s*:\s*"(degraded|unavailable|critical)"'),
    ]
)

# Filebeat logs are read newest line first, so a later connection outranks an
# older rejection and vice versa. Within one line the fatal rules come first.
FILEBEAT_CLASSIFIER = Classifier(
    [
        Rule.of(HealthStatus.FAILED_FATAL, r"pipeline/cicd-logs.*missing"),
        Rule.of(HealthStatus.FAILED_FATAL, r"x509: certificate signed by unknown authority"),
        Rule.of(HealthStatus.READY, r"Connection to backoff.*established"),
    ],
    newest_first=True,
)
