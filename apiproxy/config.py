"""Config loading for the apiproxy host application.

Reads `.apiproxy/config.yaml` (or `~/.apiproxy/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field or invalid values.
If no config file is found, returns default values.

Config search order:
  1. `config_path` argument (if provided, for tests or an explicit override)
  2. APIPROXY_CONFIG environment variable (if set)
  3. `.apiproxy/config.yaml` (working directory)
  4. `~/.apiproxy/config.yaml` (home directory)

Example:

    version: 1
    client:
      base_url: https://api.example.com/v2
      request_timeout: 15
    proxy:
      max_upload_size: 10485760
      transfer_response_headers: [X-Request-Id, Cache-Control]
    server:
      host: 127.0.0.1
      port: 8000

Environment variable overrides (applied after the file):
  APIPROXY_BASE_URL         client.base_url
  APIPROXY_REQUEST_TIMEOUT  client.request_timeout (seconds, > 0)
  APIPROXY_PORT             server.port
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional

import httpx
import yaml

from apiproxy.constants import DEFAULT_MAX_UPLOAD_SIZE, DEFAULT_REQUEST_TIMEOUT
from apiproxy.proxy.options import ProxyOptions
from apiproxy.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

DEFAULT_BASE_URL = "http://127.0.0.1:8080"

# Default config search paths (APIPROXY_CONFIG env var prepended at runtime)
DEFAULT_CONFIG_PATHS = [
    ".apiproxy/config.yaml",
    os.path.expanduser("~/.apiproxy/config.yaml"),
]


def _config_error(msg: str) -> NoReturn:
    print(f"CONFIG ERROR: {msg}", file=sys.stderr)
    raise SystemExit(1)


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ClientSettings:
    """Upstream API settings.

    base_url:        Absolute base URL every relative request path is joined to.
    request_timeout: Default per-call timeout in seconds.
    """

    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT


@dataclass
class ProxySettings:
    """Defaults for transparently proxied calls."""

    max_upload_size: int = DEFAULT_MAX_UPLOAD_SIZE
    transfer_response_headers: list[str] = field(default_factory=list)

    def to_options(self) -> ProxyOptions:
        return ProxyOptions(
            max_upload_size=self.max_upload_size,
            transfer_response_headers=tuple(self.transfer_response_headers),
        )


@dataclass
class ServerSettings:
    """Host application binding."""

    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class Config:
    """Root configuration object populated from .apiproxy/config.yaml."""

    version: int = SUPPORTED_CONFIG_VERSION
    client: ClientSettings = field(default_factory=ClientSettings)
    proxy: ProxySettings = field(default_factory=ProxySettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    path: Optional[str] = None

    @classmethod
    def defaults(cls) -> "Config":
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are ignored.

        Raises:
            SystemExit(1): On a value of the wrong type or out of range.
        """
        # ── Client ────────────────────────────────────────────────────────────
        client_raw = _section(raw, "client")
        client = ClientSettings(
            base_url=_base_url(client_raw.get("base_url", DEFAULT_BASE_URL), "client.base_url"),
            request_timeout=_positive_float(
                client_raw.get("request_timeout", DEFAULT_REQUEST_TIMEOUT),
                "client.request_timeout",
            ),
        )

        # ── Proxy ─────────────────────────────────────────────────────────────
        proxy_raw = _section(raw, "proxy")
        max_upload_size = proxy_raw.get("max_upload_size", DEFAULT_MAX_UPLOAD_SIZE)
        if isinstance(max_upload_size, bool) or not isinstance(max_upload_size, int):
            _config_error(
                f"proxy.max_upload_size must be an integer, got {max_upload_size!r}"
            )
        headers = proxy_raw.get("transfer_response_headers", [])
        if not isinstance(headers, list) or not all(isinstance(h, str) for h in headers):
            _config_error(
                "proxy.transfer_response_headers must be a list of header names"
            )
        proxy = ProxySettings(
            max_upload_size=max_upload_size,
            transfer_response_headers=list(headers),
        )

        # ── Server ────────────────────────────────────────────────────────────
        server_raw = _section(raw, "server")
        server = ServerSettings(
            host=str(server_raw.get("host", "127.0.0.1")),
            port=_port(server_raw.get("port", 8000), "server.port"),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            client=client,
            proxy=proxy,
            server=server,
            path=path,
        )


# ─── Value validation ─────────────────────────────────────────────────────────


def _section(raw: dict, name: str) -> dict:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        _config_error(f"'{name}' must be a mapping, got {type(section).__name__}")
    return section


def _base_url(value: Any, key: str) -> str:
    try:
        url = httpx.URL(str(value))
    except httpx.InvalidURL as exc:
        _config_error(f"{key} is not a valid URL: {value!r} ({exc})")
    if not url.scheme or not url.host:
        _config_error(f"{key} must be an absolute URL, got {value!r}")
    return str(value)


def _positive_float(value: Any, key: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        _config_error(f"{key} must be a number, got {value!r}")
    if number <= 0:
        _config_error(f"{key} must be positive, got {value!r}")
    return number


def _port(value: Any, key: str) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        _config_error(f"{key} must be an integer, got {value!r}")
    if not 0 < port < 65536:
        _config_error(f"{key} must be between 1 and 65535, got {port}")
    return port


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate apiproxy configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes an error to stderr and raises
    SystemExit(1). Environment overrides are applied in both cases.

    Raises:
        SystemExit(1): On YAML parse error, missing or unsupported ``version``,
                       an invalid value, or an invalid environment override.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("APIPROXY_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("config_defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("config_loading", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _config_error(
            f"Failed to parse {found_path}: {exc}\n"
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _config_error(f"Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _config_error(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _config_error(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _config_error(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _config_error(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    if config.server.host == "0.0.0.0":
        logger.warning(
            "binding_all_interfaces",
            host=config.server.host,
            hint="use server.host: '127.0.0.1' for local-only access",
        )

    logger.info(
        "config_loaded",
        path=found_path,
        version=config.version,
        base_url=config.client.base_url,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply APIPROXY_* environment overrides to ``config`` in place.

    Raises:
        SystemExit(1): If an override is set but invalid.
    """
    env_base_url = os.environ.get("APIPROXY_BASE_URL")
    if env_base_url:
        config.client.base_url = _base_url(env_base_url, "APIPROXY_BASE_URL")

    env_timeout = os.environ.get("APIPROXY_REQUEST_TIMEOUT")
    if env_timeout is not None:
        config.client.request_timeout = _positive_float(env_timeout, "APIPROXY_REQUEST_TIMEOUT")

    env_port = os.environ.get("APIPROXY_PORT")
    if env_port is not None:
        config.server.port = _port(env_port, "APIPROXY_PORT")
