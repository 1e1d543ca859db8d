from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from .errors import KernelTuningError


@dataclass(frozen=True)
class SysctlResult:
    name: str
    value: int
    runtime_changed: bool
    persisted_changed: bool


def _proc_path(proc_sys_root: Path | str, name: str) -> Path:
    return Path(proc_sys_root) / name.replace(".", "/")


def ensure_sysctl(
    name: str,
    minimum: int,
    proc_sys_root: Path | str = "/proc/sys",
    conf_path: Path | str = "/etc/sysctl.conf",
) -> SysctlResult:
    """Raise a kernel tunable to at least `minimum`, live and in the sysctl config.

    Values already at or above `minimum` are never lowered.
    """
    proc = _proc_path(proc_sys_root, name)
    try:
        current = int(proc.read_text().split()[0])
    except (OSError, ValueError, IndexError) as e:
        raise KernelTuningError(f"Cannot read {name} from {proc}: {e}") from e

    runtime_changed = False
    if current < minimum:
        try:
            proc.write_text(f"{minimum}\n")
        except OSError as e:
            raise KernelTuningError(f"Cannot raise {name} from {current} to {minimum}: {e}") from e
        runtime_changed = True
        current = minimum

    persisted_changed = _persist(name, minimum, Path(conf_path))
    return SysctlResult(name=name, value=current, runtime_changed=runtime_changed, persisted_changed=persisted_changed)


def _persist(name: str, minimum: int, conf: Path) -> bool:
    line_re = re.compile(rf"^\s*{re.escape(name)}\s*=\s*(\S*)\s*$")
    try:
        lines = conf.read_text().splitlines(keepends=True) if conf.exists() else []
    except OSError as e:
        raise KernelTuningError(f"Cannot read {conf}: {e}") from e

    wanted = f"{name}={minimum}\n"
    for i, line in enumerate(lines):
        m = line_re.match(line)
        if not m:
            continue
        try:
            stored = int(m.group(1))
        except ValueError:
            stored = -1
        if stored >= minimum:
            return False
        lines[i] = wanted
        break
    else:
        if lines and not lines[-1].endswith("\n"):
            lines[-1] += "\n"
        lines.append(wanted)

    try:
        conf.write_text("".join(lines))
    except OSError as e:
        raise KernelTuningError(f"Cannot persist {name} in {conf}: {e}") from e
    return True
