from __future__ import annotations

import logging
import logging.handlers
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable

import httpx

TAG = "CICD-STRESS-TEST"


@dataclass
class StressResult:
    syslog_events: int = 0
    status_counts: Counter[int] = field(default_factory=Counter)
    failed_requests: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "syslog_events": self.syslog_events,
            "status_counts": {str(k): v for k, v in sorted(self.status_counts.items())},
            "failed_requests": self.failed_requests,
        }


def syslog_handler(address: str | tuple[str, int] = "/dev/log") -> logging.Handler:
    handler = logging.handlers.SysLogHandler(
        address=address, facility=logging.handlers.SysLogHandler.LOG_SYSLOG
    )
    handler.setFormatter(logging.Formatter(f"{TAG}: %(message)s"))
    return handler


def run_stress_test(
    target_url: str,
    count: int = 1000,
    handler: logging.Handler | None = None,
    transport: httpx.BaseTransport | None = None,
    timeout_s: float = 5.0,
    progress: Callable[[str, int], None] | None = None,
) -> StressResult:
    """Flood syslog with errors/warnings, then hit a protected URL `count` times.

    Gives the dashboards a burst of red system events and a spike of access
    events (mostly 302/401/403) to look at.
    """
    result = StressResult()
    log = logging.getLogger("lsc.stress")
    log.propagate = False
    log.setLevel(logging.INFO)
    own_handler = handler is None
    handler = handler or syslog_handler()
    log.addHandler(handler)
    try:
        for i in range(1, count + 1):
            log.error("Critical Database Failure #%d", i)
            log.warning("Memory Threshold Exceeded #%d", i)
            result.syslog_events += 2
            if progress and i % 50 == 0:
                progress("syslog", i)
    finally:
        log.removeHandler(handler)
        if own_handler:
            handler.close()

    # Self-signed stack certs: the point is to generate access log lines, not to trust the host.
    with httpx.Client(verify=False, timeout=timeout_s, follow_redirects=False, transport=transport) as client:
        for i in range(1, count + 1):
            try:
                resp = client.get(target_url)
                result.status_counts[resp.status_code] += 1
            except httpx.HTTPError:
                result.failed_requests += 1
            if progress and i % 50 == 0:
                progress("http", i)
    return result
