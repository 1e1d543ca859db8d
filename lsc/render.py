from __future__ import annotations

import hashlib
import os
import tempfile
from pathlib import Path
from typing import Iterable, Mapping

from jinja2 import DictLoader, Environment, StrictUndefined, TemplateError, TemplateNotFound, UndefinedError

from .errors import ConfigWriteError, RenderError
from .models import ConfigSpec, RenderedConfig, WriteResult


class ConfigRenderer:
    """Renders config files from named jinja2 templates and writes them only when they change.

    Empty values are treated as undefined, so `{{ NAME }}` fails on a blank
    secret while `{{ NAME | default("") }}` renders empty. `${NAME}` is not
    jinja2 syntax and reaches the file untouched.
    """

    def __init__(self, templates: Mapping[str, str], manage_ownership: bool = True) -> None:
        self.templates = dict(templates)
        self.manage_ownership = manage_ownership
        self.env = Environment(
            loader=DictLoader(self.templates),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def render(
        self,
        template_id: str,
        variables: Mapping[str, str],
        *,
        target: Path,
        owner: tuple[int, int] | None = None,
        mode: int = 0o644,
    ) -> RenderedConfig:
        context = {k: str(v) for k, v in variables.items() if v}
        try:
            text = self.env.get_template(template_id).render(context)
        except TemplateNotFound:
            raise RenderError(f"Unknown template '{template_id}'") from None
        except UndefinedError as e:
            raise RenderError(f"Template '{template_id}' for {target} needs a non-empty value: {e}") from e
        except TemplateError as e:
            raise RenderError(f"Cannot render template '{template_id}' for {target}: {e}") from e
        return RenderedConfig(target_path=Path(target), content=text.encode("utf-8"), owner=owner, mode=mode)

    def stage(
        self,
        source: Path,
        *,
        target: Path,
        owner: tuple[int, int] | None = None,
        mode: int = 0o644,
    ) -> RenderedConfig:
        """Wrap an existing file (certificate, key) so it goes through `write`."""
        try:
            content = Path(source).read_bytes()
        except FileNotFoundError:
            raise RenderError(f"Certificate not found: {source}") from None
        except OSError as e:
            raise RenderError(f"Cannot read {source}: {e}") from e
        return RenderedConfig(target_path=Path(target), content=content, owner=owner, mode=mode)

    def materialize(self, spec: ConfigSpec, variables: Mapping[str, str]) -> RenderedConfig:
        if spec.source is not None:
            return self.stage(spec.source, target=spec.target, owner=spec.owner, mode=spec.mode)
        if spec.template_id is None:
            raise RenderError(f"Config for {spec.target} has neither a template nor a source")
        return self.render(spec.template_id, variables, target=spec.target, owner=spec.owner, mode=spec.mode)

    def write(self, config: RenderedConfig) -> WriteResult:
        """Write `config` atomically, or do nothing if the file already holds the same bytes."""
        path = config.target_path
        try:
            if path.is_file() and path.read_bytes() == config.content:
                return WriteResult.UNCHANGED
        except OSError as e:
            raise ConfigWriteError(f"Cannot read {path}: {e}") from e

        tmp_name: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
            with os.fdopen(fd, "wb") as f:
                f.write(config.content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, config.mode)
            if config.owner is not None and self.manage_ownership:
                os.chown(tmp_name, *config.owner)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise ConfigWriteError(f"Cannot write {path}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
        return WriteResult.WRITTEN


def digest(configs: Iterable[RenderedConfig]) -> str:
    """Stable summary of a service's rendered files, fed into its container fingerprint."""
    h = hashlib.sha256()
    for c in sorted(configs, key=lambda c: str(c.target_path)):
        h.update(str(c.target_path).encode("utf-8"))
        h.update(b"\0")
        h.update(hashlib.sha256(c.content).digest())
        h.update(f"{c.owner}:{c.mode:o}".encode("ascii"))
    return h.hexdigest()
