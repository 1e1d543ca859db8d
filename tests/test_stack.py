import pytest

from lsc.stack import (
    ELASTIC_OWNER,
    SECRETS,
    build_stack,
    invoking_user,
    select,
    stack_variables,
)


def test_stack_order(test_settings):
    names = [s.name for s in build_stack(test_settings)]
    assert names == ["elk-setup", "elasticsearch", "kibana", "ingest-pipeline", "filebeat"]


def test_setup_step_owns_every_secret(test_settings):
    setup, *rest = build_stack(test_settings)
    assert {s.name for s in setup.secrets} == {
        "ELASTIC_PASSWORD",
        "KIBANA_PASSWORD",
        "XPACK_SECURITY_ENCRYPTIONKEY",
        "XPACK_ENCRYPTEDSAVEDOBJECTS_ENCRYPTIONKEY",
        "XPACK_REPORTING_ENCRYPTIONKEY",
    }
    assert setup.image is None
    assert all(not s.secrets for s in rest)


def test_secret_generators_produce_hex():
    lengths = {s.name: len(s.generator()) for s in SECRETS}
    assert lengths["ELASTIC_PASSWORD"] == 32
    assert lengths["XPACK_SECURITY_ENCRYPTIONKEY"] == 64
    int(SECRETS[0].generator(), 16)


def test_private_keys_and_env_files_are_locked_down(test_settings):
    es = next(s for s in build_stack(test_settings) if s.name == "elasticsearch")
    by_name = {c.target.name: c for c in es.configs}
    assert by_name["elasticsearch.key"].mode == 0o600
    assert by_name["elasticsearch.key"].owner == ELASTIC_OWNER
    assert by_name["elasticsearch.env"].mode == 0o600
    assert by_name["elasticsearch.env"].owner == invoking_user()
    assert es.env_file == by_name["elasticsearch.env"].target


def test_filebeat_reads_host_logs(test_settings):
    fb = next(s for s in build_stack(test_settings) if s.name == "filebeat")
    targets = {m.target: m for m in fb.mounts}
    assert targets["/host_system_logs"].read_only
    assert targets["/usr/share/filebeat/data"].is_named_volume
    assert fb.user == "root"


def test_published_ports_stay_on_loopback(test_settings):
    for s in build_stack(test_settings):
        assert all(p.host_ip == "127.0.0.1" for p in s.ports)


def test_invoking_user_prefers_sudo(monkeypatch):
    monkeypatch.setenv("SUDO_UID", "1001")
    monkeypatch.setenv("SUDO_GID", "1002")
    assert invoking_user() == (1001, 1002)


def test_variables_follow_settings(test_settings):
    v = stack_variables(test_settings)
    assert v["ES_HEAP"] == test_settings.es_heap
    assert v["PIPELINE_NAME"] == "cicd-logs"


@pytest.mark.parametrize("bad", [["nope"], ["kibana", "nope"]])
def test_select_rejects_unknown_services(test_settings, bad):
    with pytest.raises(ValueError):
        select(build_stack(test_settings), bad)


def test_select_keeps_stack_order(test_settings):
    names = [s.name for s in select(build_stack(test_settings), ["filebeat", "elasticsearch"])]
    assert names == ["elasticsearch", "filebeat"]


def test_select_without_filter_is_everything(test_settings):
    assert len(select(build_stack(test_settings), None)) == 5
