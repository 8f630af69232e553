import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Literal

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - exercised on Python < 3.11
    import tomli as tomllib

import yaml
from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt, ValidationError, model_validator

from .pool import Credential
from .upstream import DEFAULT_REASONING_MODELS, DEFAULT_UPSTREAM_URL

logger = logging.getLogger(__name__)

TRUTHY_VALUES: frozenset[str] = frozenset({"1", "true", "yes", "on"})
FALSY_VALUES: frozenset[str] = frozenset({"0", "false", "no", "off"})

GATEWAY_FILE = "gateway.yaml"
CREDENTIALS_FILE = "credentials.toml"
DEFAULT_CONFIG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "config")


def _env_var_as_bool(name: str, *, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if not normalized:
        return default
    if normalized in TRUTHY_VALUES:
        return True
    if normalized in FALSY_VALUES:
        return False
    return default


def _env_var_as_float(name: str, *, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        return default
    return value if value >= 0 else default


def _parse_env_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def config_dir_from_env() -> str:
    return os.environ.get("CHATPROXY_CONFIG_DIR", DEFAULT_CONFIG_DIR)


class _UpstreamModel(BaseModel):
    url: str = Field(default=DEFAULT_UPSTREAM_URL)
    timeout_s: PositiveFloat = Field(default=60.0)
    reasoning_models: list[str] = Field(default_factory=lambda: sorted(DEFAULT_REASONING_MODELS))

    model_config = ConfigDict(extra="forbid")


class _RetryModel(BaseModel):
    max_attempts: PositiveInt = Field(default=3)

    model_config = ConfigDict(extra="forbid")


class _IdentityModel(BaseModel):
    type: Literal["static", "remote"] = "static"
    tokens: Dict[str, str] = Field(default_factory=dict)
    url: str | None = None
    api_key_env: str | None = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _finalize(self) -> "_IdentityModel":
        if self.type == "remote" and not self.url:
            raise ValueError("remote identity requires 'url'")
        return self


class _TranscriptsModel(BaseModel):
    dir: str = Field(default="transcripts")

    model_config = ConfigDict(extra="forbid")


class _CorsModel(BaseModel):
    allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    model_config = ConfigDict(extra="forbid")


class _GatewayModel(BaseModel):
    upstream: _UpstreamModel = Field(default_factory=_UpstreamModel)
    retry: _RetryModel = Field(default_factory=_RetryModel)
    identity: _IdentityModel = Field(default_factory=_IdentityModel)
    transcripts: _TranscriptsModel = Field(default_factory=_TranscriptsModel)
    cors: _CorsModel = Field(default_factory=_CorsModel)
    refresh_interval_s: float = Field(default=30.0, ge=0)

    model_config = ConfigDict(extra="forbid")


@dataclass
class IdentitySettings:
    type: Literal["static", "remote"]
    tokens: Dict[str, str] = field(default_factory=dict)
    url: str | None = None
    api_key: str | None = None


@dataclass
class GatewaySettings:
    upstream_url: str = DEFAULT_UPSTREAM_URL
    upstream_timeout_s: float = 60.0
    reasoning_models: frozenset[str] = DEFAULT_REASONING_MODELS
    max_attempts: int = 3
    identity: IdentitySettings = field(default_factory=lambda: IdentitySettings(type="static"))
    transcripts_dir: str = "transcripts"
    cors_allow_origins: list[str] = field(default_factory=lambda: ["*"])
    refresh_interval_s: float = 30.0
    credentials: list[Credential] = field(default_factory=list)
    config_dir: str | None = None
    credentials_mtime: float | None = None


def _format_validation_error(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = " -> ".join(str(item) for item in error.get("loc", ())) or "<root>"
        problems.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(problems)


def _credentials_path(config_dir: str) -> str:
    return os.path.join(config_dir, CREDENTIALS_FILE)


def credentials_mtime(config_dir: str) -> float | None:
    try:
        return os.stat(_credentials_path(config_dir)).st_mtime
    except FileNotFoundError:
        return None


def load_credentials(config_dir: str) -> list[Credential]:
    """Read ``credentials.toml`` plus ``CHATPROXY_UPSTREAM_KEYS``.

    Each TOML table names one credential and carries either ``key`` or
    ``key_env``. Entries that resolve to an empty secret are skipped.
    """
    credentials: list[Credential] = []
    path = _credentials_path(config_dir)
    if os.path.exists(path):
        with open(path, "rb") as f:
            data = tomllib.load(f)
        for name, entry in data.items():
            if not isinstance(entry, dict):
                raise ValueError(f"Credential '{name}' must be a table")
            secret = entry.get("key")
            key_env = entry.get("key_env")
            if secret is None and key_env:
                secret = os.environ.get(str(key_env), "")
            if not secret:
                logger.warning("credential.skipped id=%s reason=empty secret", name)
                continue
            credentials.append(Credential(id=name, secret=str(secret)))
    env_keys = _parse_env_list(os.environ.get("CHATPROXY_UPSTREAM_KEYS", ""))
    for index, secret in enumerate(env_keys, start=1):
        credentials.append(Credential(id=f"env-{index}", secret=secret))
    return credentials


def load_settings(config_dir: str | None = None) -> GatewaySettings:
    directory = config_dir or config_dir_from_env()
    gateway_path = os.path.join(directory, GATEWAY_FILE)
    raw: object = {}
    if os.path.exists(gateway_path):
        with open(gateway_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    try:
        parsed = _GatewayModel.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(_format_validation_error(exc)) from exc

    identity_model = parsed.identity
    api_key = os.environ.get(identity_model.api_key_env, "") if identity_model.api_key_env else None
    transcripts_dir = parsed.transcripts.dir
    if not os.path.isabs(transcripts_dir):
        transcripts_dir = os.path.join(directory, transcripts_dir)

    return GatewaySettings(
        upstream_url=os.environ.get("CHATPROXY_UPSTREAM_URL", parsed.upstream.url),
        upstream_timeout_s=float(parsed.upstream.timeout_s),
        reasoning_models=frozenset(parsed.upstream.reasoning_models),
        max_attempts=int(parsed.retry.max_attempts),
        identity=IdentitySettings(
            type=identity_model.type,
            tokens=dict(identity_model.tokens),
            url=identity_model.url,
            api_key=api_key or None,
        ),
        transcripts_dir=transcripts_dir,
        cors_allow_origins=list(parsed.cors.allow_origins),
        refresh_interval_s=_env_var_as_float(
            "CHATPROXY_REFRESH_INTERVAL", default=float(parsed.refresh_interval_s)
        ),
        credentials=load_credentials(directory),
        config_dir=directory,
        credentials_mtime=credentials_mtime(directory),
    )


@dataclass
class ClientSettings:
    gateway_url: str
    model: str = "deepseek-chat"
    timeout_s: float = 120.0
    send_tools: bool = True

    @classmethod
    def from_env(cls) -> "ClientSettings":
        gateway_url = os.environ.get("CHATPROXY_GATEWAY_URL", "http://127.0.0.1:8000/v1/chat/completions")
        return cls(
            gateway_url=gateway_url,
            model=os.environ.get("CHATPROXY_MODEL", "deepseek-chat"),
            timeout_s=_env_var_as_float("CHATPROXY_CLIENT_TIMEOUT", default=120.0),
            send_tools=_env_var_as_bool("CHATPROXY_SEND_TOOLS", default=True),
        )
