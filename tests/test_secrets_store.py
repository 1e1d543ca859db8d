import os
import re

import pytest

from lsc.errors import PersistenceError
from lsc.secrets_store import SecretStore, hex_token, parse_assignments


def test_ensure_generates_once_and_persists(tmp_path):
    path = tmp_path / "cicd.env"
    store = SecretStore(path)
    calls = []

    def gen():
        calls.append(1)
        return "first-value"

    assert store.ensure("ELASTIC_PASSWORD", gen) == "first-value"
    assert store.ensure("ELASTIC_PASSWORD", gen) == "first-value"
    assert len(calls) == 1

    # A fresh store over the same file (a later run) sees the same value.
    again = SecretStore(path)
    assert again.ensure("ELASTIC_PASSWORD", lambda: "other") == "first-value"
    assert path.read_text() == 'ELASTIC_PASSWORD="first-value"\n'


def test_hex16_password_is_32_hex_chars_and_stable(tmp_path):
    store = SecretStore(tmp_path / "cicd.env")
    value = store.ensure("ELASTIC_PASSWORD", hex_token(16))
    assert re.fullmatch(r"[0-9a-f]{32}", value)

    def must_not_run():
        raise AssertionError("generator called for an existing secret")

    assert store.ensure("ELASTIC_PASSWORD", must_not_run) == value


def test_new_keys_are_appended_existing_lines_untouched(tmp_path):
    path = tmp_path / "cicd.env"
    path.write_text('# managed elsewhere\nSONAR_MATTERMOST_WEBHOOK="https://chat.local/hooks/x"')
    store = SecretStore(path)

    store.ensure("KIBANA_PASSWORD", lambda: "abc")

    assert path.read_text() == (
        '# managed elsewhere\nSONAR_MATTERMOST_WEBHOOK="https://chat.local/hooks/x"\nKIBANA_PASSWORD="abc"\n'
    )
    assert store.get("SONAR_MATTERMOST_WEBHOOK") == "https://chat.local/hooks/x"
    assert store.get("MISSING") is None


def test_new_file_is_private(tmp_path):
    path = tmp_path / "nested" / "cicd.env"
    SecretStore(path).ensure("A", lambda: "1")
    assert oct(os.stat(path).st_mode & 0o777) == oct(0o600)


def test_unreadable_store_raises_persistence_error(tmp_path):
    # A directory where the file should be cannot be read as a secrets file.
    path = tmp_path / "cicd.env"
    path.mkdir()
    with pytest.raises(PersistenceError):
        SecretStore(path).ensure("A", lambda: "1")


def test_generator_value_with_quote_is_rejected(tmp_path):
    store = SecretStore(tmp_path / "cicd.env")
    with pytest.raises(PersistenceError):
        store.ensure("A", lambda: 'bad"value')
    with pytest.raises(PersistenceError):
        store.ensure("B", lambda: "")
    assert store.as_dict() == {}


def test_parse_assignments_env_file_semantics():
    text = "ELASTIC_PASSWORD=abc\nES_JAVA_OPTS=-Xms1g -Xmx1g\n\n# comment\nQUOTED=\"x\"\nnot a line\n"
    parsed = parse_assignments(text, unquote=False)
    assert parsed == {"ELASTIC_PASSWORD": "abc", "ES_JAVA_OPTS": "-Xms1g -Xmx1g", "QUOTED": '"x"'}
    assert parse_assignments(text, unquote=True)["QUOTED"] == "x"
