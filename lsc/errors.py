from __future__ import annotations


class ConvergeError(Exception):
    """Base class for failures that stop a deploy at a given stage."""

    stage = "deploy"

    def __init__(self, message: str, *, service: str | None = None) -> None:
        super().__init__(message)
        self.service = service


class PersistenceError(ConvergeError):
    """The master secrets file could not be read or written."""

    stage = "secrets"


class RenderError(ConvergeError):
    """A template referenced a missing/empty variable, or a staged source is missing."""

    stage = "configs"


class ConfigWriteError(ConvergeError):
    """A rendered config could not be written, chowned or chmodded."""

    stage = "configs"


class ContainerRuntimeError(ConvergeError):
    """The container engine was unreachable or rejected a request."""

    stage = "container"


class HealthTimeout(ConvergeError):
    stage = "health"


class HealthFatal(ConvergeError):
    """The probe matched a known-unrecoverable condition; the message is the matched diagnostic."""

    stage = "health"


class BootstrapError(ConvergeError):
    stage = "bootstrap"


class KernelTuningError(ConvergeError):
    stage = "bootstrap"
