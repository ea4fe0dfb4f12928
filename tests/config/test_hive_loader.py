import textwrap
from pathlib import Path

import pytest
from pydantic import ValidationError

from hivenode.config.loader import load_config
from hivenode.config.models import HiveConfig
from hivenode.errors import HiveError
from hivenode.hive import Hive

HIVE_YAML = textwrap.dedent("""
    name: lab
    credentials:
      username: ${HIVE_TEST_USER}
    timing:
      retry_count: 2
    folders:
      state: /var/local/lab
    nodes:
      - name: manager-0
        private_address: 10.0.0.10
      - name: worker-0
        private_address: 10.0.0.20
        public_address: 203.0.113.20
        metadata:
          role: worker
""")


def _write(tmp_path: Path, text: str, name: str = "hive.yaml") -> Path:
    f = tmp_path / name
    f.write_text(text)
    return f


def test_load_config_merges_secrets_beside_file(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("HIVE_TEST_USER", "sysadmin")
    monkeypatch.delenv("HIVE_SECRETS_FILE", raising=False)
    cfg_path = _write(tmp_path, HIVE_YAML)
    _write(tmp_path, "credentials:\n  password: s3cret\n", "secrets.yaml")

    cfg = load_config(cfg_path)

    assert cfg.name == "lab"
    assert cfg.credentials.username == "sysadmin"
    assert cfg.credentials.password == "s3cret"
    assert cfg.timing.retry_count == 2
    assert cfg.timing.poll_interval == 5.0
    assert cfg.folders.state == "/var/local/lab"
    assert cfg.folders.resolve("exec_root", "sysadmin") == "/home/sysadmin/.exec"
    assert cfg.by_name()["worker-0"].metadata == {"role": "worker"}


def test_secrets_file_env_override(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("HIVE_TEST_USER", "sysadmin")
    secrets = _write(tmp_path, "credentials:\n  password: from-env\n", "other.yaml")
    monkeypatch.setenv("HIVE_SECRETS_FILE", str(secrets))

    cfg = load_config(_write(tmp_path, HIVE_YAML))
    assert cfg.credentials.password == "from-env"


def test_credentials_require_one_method(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("HIVE_TEST_USER", "sysadmin")
    monkeypatch.delenv("HIVE_SECRETS_FILE", raising=False)
    with pytest.raises(ValidationError):
        load_config(_write(tmp_path, HIVE_YAML))


def test_node_names_must_be_unique():
    with pytest.raises(ValidationError):
        HiveConfig.model_validate({
            "credentials": {"username": "u", "password": "p"},
            "nodes": [
                {"name": "a", "private_address": "10.0.0.1"},
                {"name": "A", "private_address": "10.0.0.2"},
            ],
        })


def test_private_address_must_be_an_ip():
    with pytest.raises(ValidationError):
        HiveConfig.model_validate({
            "credentials": {"username": "u", "password": "p"},
            "nodes": [{"name": "a", "private_address": "not-an-ip"}],
        })


def test_hive_builds_node_proxies():
    cfg = HiveConfig.model_validate({
        "name": "lab",
        "use_public_address": True,
        "credentials": {"username": "u", "password": "p"},
        "nodes": [
            {"name": "manager-0", "private_address": "10.0.0.10", "public_address": "203.0.113.10"},
            {"name": "worker-0", "private_address": "10.0.0.20", "port": 2222},
        ],
    })
    hive = Hive.from_config(cfg)

    assert len(hive) == 2
    manager = hive.node("MANAGER-0")
    assert manager.resolve_endpoint() == ("203.0.113.10", 22)
    assert manager.credentials.username == "u"
    with pytest.raises(HiveError):
        hive.node("worker-0").resolve_endpoint()
    with pytest.raises(HiveError):
        hive.node("nope")


def test_hive_specific_secrets_win_and_nodes_merge_by_name(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("HIVE_TEST_USER", "sysadmin")
    monkeypatch.delenv("HIVE_SECRETS_FILE", raising=False)
    cfg_path = _write(tmp_path, HIVE_YAML, "lab.yaml")
    _write(tmp_path, "credentials:\n  password: shared\n", "secrets.yaml")
    _write(tmp_path, textwrap.dedent("""
        credentials:
          password: lab-only
        nodes:
          - name: WORKER-0
            metadata:
              token: abc
    """), "lab.secrets.yaml")

    cfg = load_config(cfg_path)

    assert cfg.credentials.password == "lab-only"
    assert cfg.by_name()["worker-0"].metadata == {"role": "worker", "token": "abc"}
    assert cfg.by_name()["worker-0"].public_address == "203.0.113.20"


def test_secrets_for_unknown_node_are_rejected(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("HIVE_TEST_USER", "sysadmin")
    monkeypatch.delenv("HIVE_SECRETS_FILE", raising=False)
    cfg_path = _write(tmp_path, HIVE_YAML)
    _write(tmp_path, "credentials:\n  password: p\nnodes:\n  - name: ghost\n", "secrets.yaml")

    with pytest.raises(HiveError, match="ghost"):
        load_config(cfg_path)
