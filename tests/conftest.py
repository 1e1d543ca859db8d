import os
import sys

import pytest

# Ensure project root is importable (so `import lsc` / `import main` work without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from lsc import db  # noqa: E402
from lsc.settings import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def state_db(tmp_path):
    """Isolated sqlite state database per test."""
    db.configure(str(tmp_path / "state.db"))
    db.init_db()
    yield
    db.configure(None)


@pytest.fixture
def test_settings(tmp_path):
    root = tmp_path / "cicd_stack"
    return Settings(
        stack_root=str(root),
        db_path=str(tmp_path / "state.db"),
        manage_kernel=False,
        manage_ownership=False,
        sysctl_conf=str(tmp_path / "sysctl.conf"),
        proc_sys_root=str(tmp_path / "proc"),
    )


class FakeContainer:
    """Just enough of docker.models.containers.Container for the controller."""

    def __init__(self, owner, name, image, labels, status="running", cid="cid"):
        self._owner = owner
        self.name = name
        self.image = image
        self.labels = labels
        self.status = status
        self.id = cid
        self.attrs = {"State": {}}
        self.log_lines = []
        self.log_calls = []
        self.calls = []

    def stop(self):
        self.calls.append("stop")
        self.status = "exited"

    def remove(self):
        self.calls.append("remove")
        self._owner.items.pop(self.name, None)

    def start(self):
        self.calls.append("start")
        self.status = "running"

    def reload(self):
        pass

    def log(self, text, ts=0):
        self.log_lines.append((ts, text))

    def logs(self, since=None, **kwargs):
        self.log_calls.append(dict(kwargs, since=since))
        return "".join(t + "\n" for ts, t in self.log_lines if since is None or ts >= since).encode()


class FakeContainers:
    def __init__(self):
        self.items = {}
        self.runs = []
        self.fail_with = None
        self.boot_log = []

    def get(self, name):
        from docker.errors import NotFound

        if name not in self.items:
            raise NotFound(f"No such container: {name}")
        return self.items[name]

    def run(self, image, **kwargs):
        if self.fail_with is not None:
            raise self.fail_with
        self.runs.append((image, kwargs))
        c = FakeContainer(self, kwargs["name"], image, kwargs.get("labels", {}), cid=f"cid-{len(self.runs)}")
        for line in self.boot_log:
            c.log(line)
        self.items[c.name] = c
        return c


class _FakeNamed:
    def __init__(self, name):
        self.name = name
        self.connected = []

    def connect(self, container):
        self.connected.append(container.name)


class FakeCollection:
    def __init__(self):
        self.items = {}
        self.created = []

    def get(self, name):
        from docker.errors import NotFound

        if name not in self.items:
            raise NotFound(f"{name} not found")
        return self.items[name]

    def create(self, name=None, **kwargs):
        self.created.append(name)
        self.items[name] = _FakeNamed(name)
        return self.items[name]


class FakeDockerClient:
    def __init__(self):
        self.containers = FakeContainers()
        self.volumes = FakeCollection()
        self.networks = FakeCollection()


@pytest.fixture
def docker_client():
    return FakeDockerClient()


@pytest.fixture
def make_container(docker_client):
    """Put a pre-existing container into the fake engine."""

    def make(name, labels=None, status="running", image="img"):
        c = FakeContainer(docker_client.containers, name, image, labels or {}, status=status)
        docker_client.containers.items[name] = c
        return c

    return make
