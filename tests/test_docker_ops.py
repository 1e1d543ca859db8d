import pytest
from docker.errors import APIError, DockerException

from lsc import db
from lsc.docker_ops import FINGERPRINT_LABEL, ServiceController, fingerprint, read_env_file
from lsc.errors import ContainerRuntimeError
from lsc.models import Mount, PortBinding, ServiceSpec, ServiceState, Ulimit


def _spec(tmp_path, image="docker.elastic.co/elasticsearch/elasticsearch:9.2.2", env="ELASTIC_PASSWORD=abc\n"):
    env_file = tmp_path / "elasticsearch.env"
    env_file.write_text(env)
    return ServiceSpec(
        name="elasticsearch",
        image=image,
        hostname="elasticsearch.cicd.local",
        networks=("cicd-net",),
        ports=(PortBinding(9200, 9200),),
        env_file=env_file,
        ulimits=(Ulimit("nofile", 65535, 65535),),
        cap_add=("IPC_LOCK",),
        mounts=(
            Mount("elasticsearch-data", "/usr/share/elasticsearch/data"),
            Mount(str(tmp_path / "elasticsearch.yml"), "/usr/share/elasticsearch/config/elasticsearch.yml", read_only=True),
        ),
    )


def test_absent_service_is_created_with_full_definition(tmp_path, docker_client):
    ctl = ServiceController(lambda: docker_client)
    spec = _spec(tmp_path)

    assert ctl.state("elasticsearch") is ServiceState.ABSENT
    assert ctl.converge(spec, "digest") is ServiceState.RUNNING

    image, kwargs = docker_client.containers.runs[0]
    assert image == spec.image
    assert kwargs["name"] == "elasticsearch"
    assert kwargs["environment"] == {"ELASTIC_PASSWORD": "abc"}
    assert kwargs["ports"] == {"9200/tcp": ("127.0.0.1", 9200)}
    assert kwargs["volumes"][str(tmp_path / "elasticsearch.yml")]["mode"] == "ro"
    assert kwargs["volumes"]["elasticsearch-data"] == {"bind": "/usr/share/elasticsearch/data", "mode": "rw"}
    assert kwargs["cap_add"] == ["IPC_LOCK"]
    assert kwargs["restart_policy"] == {"Name": "always"}
    assert kwargs["network"] == "cicd-net"
    assert kwargs["labels"][FINGERPRINT_LABEL] == fingerprint(spec, {"ELASTIC_PASSWORD": "abc"}, "digest")

    assert docker_client.volumes.created == ["elasticsearch-data"]
    assert docker_client.networks.created == ["cicd-net"]
    assert db.get_applied("elasticsearch").container_id == "cid-1"


def test_unchanged_running_service_is_left_alone(tmp_path, docker_client):
    ctl = ServiceController(lambda: docker_client)
    spec = _spec(tmp_path)
    ctl.converge(spec, "d1")
    first = docker_client.containers.items["elasticsearch"]

    assert ctl.converge(spec, "d1") is ServiceState.RUNNING
    assert len(docker_client.containers.runs) == 1
    assert first.calls == []


def test_changed_spec_is_stopped_removed_and_recreated(tmp_path, docker_client):
    ctl = ServiceController(lambda: docker_client)
    ctl.converge(_spec(tmp_path), "d1")
    old = docker_client.containers.items["elasticsearch"]

    ctl.converge(_spec(tmp_path, env="ELASTIC_PASSWORD=changed\n"), "d1")

    assert old.calls == ["stop", "remove"]
    assert len(docker_client.containers.runs) == 2
    assert docker_client.containers.items["elasticsearch"].id == "cid-2"
    # Existing volume is reused, never recreated.
    assert docker_client.volumes.created == ["elasticsearch-data"]


def test_config_digest_change_forces_recreate(tmp_path, docker_client):
    ctl = ServiceController(lambda: docker_client)
    spec = _spec(tmp_path)
    ctl.converge(spec, "d1")
    ctl.converge(spec, "d2")
    assert len(docker_client.containers.runs) == 2


def test_stopped_unchanged_service_is_started(tmp_path, docker_client):
    ctl = ServiceController(lambda: docker_client)
    spec = _spec(tmp_path)
    ctl.converge(spec, "d1")
    c = docker_client.containers.items["elasticsearch"]
    c.status = "exited"

    assert ctl.state("elasticsearch") is ServiceState.STOPPED
    assert ctl.converge(spec, "d1") is ServiceState.RUNNING
    assert c.calls == ["start"]
    assert len(docker_client.containers.runs) == 1


def test_container_from_older_tooling_is_replaced(tmp_path, docker_client, make_container):
    legacy = make_container("elasticsearch", status="exited")
    ctl = ServiceController(lambda: docker_client)

    ctl.converge(_spec(tmp_path), "d1")
    assert legacy.calls == ["remove"]
    assert len(docker_client.containers.runs) == 1


def test_unhealthy_running_container(docker_client, make_container):
    c = make_container("kibana")
    c.attrs = {"State": {"Health": {"Status": "unhealthy"}}}
    assert ServiceController(lambda: docker_client).state("kibana") is ServiceState.RUNNING_UNHEALTHY


def test_engine_rejection_is_container_runtime_error(tmp_path, docker_client):
    docker_client.containers.fail_with = APIError("port is already allocated")
    ctl = ServiceController(lambda: docker_client)
    with pytest.raises(ContainerRuntimeError):
        ctl.converge(_spec(tmp_path), "d1")
    assert db.get_applied("elasticsearch") is None


def test_unreachable_engine_is_container_runtime_error(tmp_path):
    def from_env():
        raise DockerException("Error while fetching server API version")

    ctl = ServiceController(from_env)
    with pytest.raises(ContainerRuntimeError):
        ctl.converge(_spec(tmp_path))


def test_logs_of_absent_container_are_empty(docker_client):
    assert ServiceController(lambda: docker_client).logs("filebeat") == ""


def test_read_env_file_keeps_values_verbatim(tmp_path):
    p = tmp_path / "x.env"
    p.write_text('A=1\nES_JAVA_OPTS=-Xms1g -Xmx1g\nB="quoted"\n')
    assert read_env_file(p) == {"A": "1", "ES_JAVA_OPTS": "-Xms1g -Xmx1g", "B": '"quoted"'}


def test_single_character_names_are_valid(tmp_path, docker_client):
    spec = ServiceSpec(name="a", image="example/a:1")
    ServiceController(lambda: docker_client).converge(spec)
    assert "a" in docker_client.containers.items


@pytest.mark.parametrize("spec", [
    ServiceSpec(name="-bad", image="example/a:1"),
    ServiceSpec(name="has space", image="example/a:1"),
    ServiceSpec(name="no-image"),
])
def test_rejected_definition_is_container_runtime_error(docker_client, spec):
    with pytest.raises(ContainerRuntimeError):
        ServiceController(lambda: docker_client).converge(spec)
    assert docker_client.containers.runs == []


def test_logs_cover_only_the_current_run(docker_client, make_container):
    c = make_container("filebeat")
    c.attrs["State"]["StartedAt"] = "2026-10-18T08:00:00.123456789Z"
    started = 1792310400
    c.log("ERROR pipeline/cicd-logs] missing", ts=started - 60)
    c.log("Connection to backoff(es) established", ts=started + 5)

    out = ServiceController(lambda: docker_client).logs("filebeat")

    assert out == "Connection to backoff(es) established\n"
    assert c.log_calls[-1]["since"] == started


def test_logs_without_start_time_read_everything(docker_client, make_container):
    c = make_container("filebeat")
    c.attrs["State"]["StartedAt"] = "0001-01-01T00:00:00Z"
    c.log("old line", ts=1)
    assert ServiceController(lambda: docker_client).logs("filebeat") == "old line\n"
    assert c.log_calls[-1]["since"] is None
