from __future__ import annotations

import os
from pathlib import Path

import pytest

from src.chatproxy.config import ClientSettings, load_credentials, load_settings
from src.chatproxy.server import build_gateway
from src.chatproxy.upstream import DEFAULT_UPSTREAM_URL

GATEWAY_YAML = """
upstream:
  url: https://llm.internal/v1/chat/completions
  timeout_s: 15
  reasoning_models: [deepseek-reasoner, r1-lite]
retry:
  max_attempts: 5
identity:
  type: static
  tokens:
    tok-1: alice
transcripts:
  dir: logs
refresh_interval_s: 12
"""

CREDENTIALS_TOML = """
[primary]
key = "sk-primary"

[from-env]
key_env = "TEST_DEEPSEEK_KEY"

[unset]
key_env = "TEST_MISSING_KEY"
"""


@pytest.fixture(autouse=True)
def _unset_test_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TEST_MISSING_KEY", raising=False)


def test_load_settings_reads_yaml_and_toml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / "gateway.yaml").write_text(GATEWAY_YAML)
    (tmp_path / "credentials.toml").write_text(CREDENTIALS_TOML)
    monkeypatch.setenv("TEST_DEEPSEEK_KEY", "sk-env")

    settings = load_settings(str(tmp_path))

    assert settings.upstream_url == "https://llm.internal/v1/chat/completions"
    assert settings.upstream_timeout_s == 15.0
    assert settings.reasoning_models == frozenset({"deepseek-reasoner", "r1-lite"})
    assert settings.max_attempts == 5
    assert settings.identity.tokens == {"tok-1": "alice"}
    assert settings.transcripts_dir == os.path.join(str(tmp_path), "logs")
    assert settings.refresh_interval_s == 12.0
    assert [(c.id, c.secret) for c in settings.credentials] == [
        ("primary", "sk-primary"),
        ("from-env", "sk-env"),
    ]
    assert settings.credentials_mtime is not None


def test_defaults_apply_without_files(tmp_path: Path) -> None:
    settings = load_settings(str(tmp_path))

    assert settings.upstream_url == DEFAULT_UPSTREAM_URL
    assert settings.max_attempts == 3
    assert settings.credentials == []
    assert settings.credentials_mtime is None


def test_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHATPROXY_UPSTREAM_KEYS", "sk-one, sk-two,")
    monkeypatch.setenv("CHATPROXY_UPSTREAM_URL", "http://localhost:9999/chat")
    monkeypatch.setenv("CHATPROXY_REFRESH_INTERVAL", "0")

    settings = load_settings(str(tmp_path))

    assert [c.id for c in settings.credentials] == ["env-1", "env-2"]
    assert settings.upstream_url == "http://localhost:9999/chat"
    assert settings.refresh_interval_s == 0.0


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    (tmp_path / "gateway.yaml").write_text("retry:\n  max_attempts: 3\n  backoff: 2\n")

    with pytest.raises(ValueError, match="backoff"):
        load_settings(str(tmp_path))


def test_remote_identity_requires_url(tmp_path: Path) -> None:
    (tmp_path / "gateway.yaml").write_text("identity:\n  type: remote\n")

    with pytest.raises(ValueError, match="url"):
        load_settings(str(tmp_path))


def test_credential_entries_must_be_tables(tmp_path: Path) -> None:
    (tmp_path / "credentials.toml").write_text('primary = "sk-inline"\n')

    with pytest.raises(ValueError, match="primary"):
        load_credentials(str(tmp_path))


def test_refresh_reloads_pool_when_file_changes(tmp_path: Path) -> None:
    credentials_file = tmp_path / "credentials.toml"
    credentials_file.write_text('[a]\nkey = "sk-a"\n')
    gateway = build_gateway(load_settings(str(tmp_path)))
    assert gateway.pool.ids() == ["a"]

    assert gateway.refresh_credentials() is False

    credentials_file.write_text('[b]\nkey = "sk-b"\n\n[c]\nkey = "sk-c"\n')
    stat = credentials_file.stat()
    os.utime(credentials_file, (stat.st_atime, stat.st_mtime + 5))

    assert gateway.refresh_credentials() is True
    assert gateway.pool.ids() == ["b", "c"]


def test_client_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHATPROXY_GATEWAY_URL", "https://gw.example/v1/chat/completions")
    monkeypatch.setenv("CHATPROXY_MODEL", "deepseek-reasoner")
    monkeypatch.setenv("CHATPROXY_CLIENT_TIMEOUT", "30")
    monkeypatch.setenv("CHATPROXY_SEND_TOOLS", "off")

    settings = ClientSettings.from_env()

    assert settings.gateway_url == "https://gw.example/v1/chat/completions"
    assert settings.model == "deepseek-reasoner"
    assert settings.timeout_s == 30.0
    assert settings.send_tools is False
