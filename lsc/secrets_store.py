from __future__ import annotations

import os
import re
import secrets
from pathlib import Path
from typing import Callable

from .errors import PersistenceError

KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def hex_token(nbytes: int) -> Callable[[], str]:
    """Generator producing `2 * nbytes` hex characters from the OS CSPRNG."""

    def generate() -> str:
        return secrets.token_hex(nbytes)

    return generate


def parse_assignments(text: str, *, unquote: bool) -> dict[str, str]:
    """Parse `KEY=value` lines; comments, blank lines and junk are ignored.

    The first assignment of a key wins, matching how the master file is only
    ever appended to.
    """
    out: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export "):].strip()
        if not KEY_RE.match(key) or key in out:
            continue
        if unquote and len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        out[key] = value
    return out


class SecretStore:
    """Named secrets persisted as `KEY="value"` lines in a master env file.

    Existing keys are never regenerated or rewritten; new keys are appended.
    Keys written by other tooling (e.g. a webhook URL) are readable too.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError) as e:
            raise PersistenceError(f"Cannot read secrets file {self.path}: {e}") from e
        return parse_assignments(text, unquote=True)

    def get(self, name: str, default: str | None = None) -> str | None:
        return self._load().get(name, default)

    def as_dict(self) -> dict[str, str]:
        return self._load()

    def ensure(self, name: str, generator: Callable[[], str]) -> str:
        """Return the stored value of `name`, generating and persisting it on first use."""
        if not KEY_RE.match(name):
            raise PersistenceError(f"Invalid secret name {name!r}")

        current = self._load()
        if name in current:
            return current[name]

        value = generator()
        if not value or any(c in value for c in "\"\n\r"):
            raise PersistenceError(f"Generator for {name} produced an unusable value")

        self._append(f'{name}="{value}"\n')
        return value

    def _append(self, line: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            needs_newline = self.path.exists() and self.path.stat().st_size > 0 and not self._ends_with_newline()
            fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
            with os.fdopen(fd, "a", encoding="utf-8") as f:
                if needs_newline:
                    f.write("\n")
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise PersistenceError(f"Cannot write secrets file {self.path}: {e}") from e

    def _ends_with_newline(self) -> bool:
        with open(self.path, "rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) == b"\n"
