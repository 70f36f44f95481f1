"""Communicator configuration records and loading utilities."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from dotenv import load_dotenv

from .utils.logging import get_logger

# Load .env file if it exists
load_dotenv()

logger = get_logger(__name__)

_DEFAULT_CONFIG_PATH = Path("communicator.json")


class CommunicatorType(str, Enum):
    """Communicator kinds understood by ``prepare``."""

    NONE = "none"
    SSH = "ssh"
    WINRM = "winrm"
    # Builder specific communicators that need no connection settings.
    DOCKER = "docker"
    DOCKER_WINDOWS_CONTAINER = "dockerWindowsContainer"


OPAQUE_TYPES = (
    CommunicatorType.NONE,
    CommunicatorType.DOCKER,
    CommunicatorType.DOCKER_WINDOWS_CONTAINER,
)


class FileTransferMethod(str, Enum):
    SCP = "scp"
    SFTP = "sftp"


class WinRMTransport(str, Enum):
    """HTTP transport variant used by the WinRM client."""

    BASIC = "basic"
    NTLM = "ntlm"


@dataclass
class SSHConfig:
    """Settings for an SSH communicator.

    Zero values mean "unset"; ``prepare`` fills in defaults. Durations are
    seconds.
    """

    # Identity
    host: str = ""
    port: int = 0
    username: str = ""

    # Secrets
    password: str = field(default="", repr=False)
    keypair_name: str = ""
    temporary_key_pair_name: str = ""
    private_key_file: str = ""
    private_key: bytes = field(default=b"", repr=False)
    public_key: bytes = b""

    # Agent
    agent_auth: bool = False
    disable_agent_forwarding: bool = False

    # Handshake tuning
    timeout: float = 0.0
    wait_timeout: float = 0.0  # deprecated, overrides timeout when set
    keep_alive_interval: float = 0.0  # negative disables
    handshake_attempts: int = 0
    ciphers: List[str] = field(default_factory=list)
    host_key_algorithms: List[str] = field(default_factory=list)
    read_write_timeout: float = 0.0
    pty: bool = False

    # Bastion
    bastion_host: str = ""
    bastion_port: int = 0
    bastion_username: str = ""
    bastion_password: str = field(default="", repr=False)
    bastion_private_key_file: str = ""
    bastion_agent_auth: bool = False
    bastion_interactive: bool = False

    # SOCKS proxy
    proxy_host: str = ""
    proxy_port: int = 0
    proxy_username: str = ""
    proxy_password: str = field(default="", repr=False)

    # Tunnels, in "port:host:hostport" form
    local_tunnels: List[str] = field(default_factory=list)
    remote_tunnels: List[str] = field(default_factory=list)

    file_transfer_method: str = ""
    clear_authorized_keys: bool = False

    # Which address of the machine to use ("public_ip", "private_dns", ...)
    interface: str = ""
    ip_version: str = ""


@dataclass
class WinRMConfig:
    """Settings for a WinRM communicator."""

    username: str = ""
    password: str = field(default="", repr=False)
    host: str = ""
    port: int = 0
    timeout: float = 0.0
    use_ssl: bool = False
    insecure: bool = False
    use_ntlm: bool = False
    no_proxy: bool = False
    transport: WinRMTransport = WinRMTransport.BASIC

    @property
    def endpoint(self) -> str:
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.host}:{self.port}/wsman"


ConnectionSettings = Union[SSHConfig, WinRMConfig]


@dataclass
class CommunicatorConfig:
    """Common communicator configuration of a builder.

    ``connection`` holds the settings arm matching ``type``: an
    ``SSHConfig`` for ssh, a ``WinRMConfig`` for winrm, ``None`` otherwise.
    """

    type: str = ""
    pause_before_connect: float = 0.0
    connection: Optional[ConnectionSettings] = None

    @property
    def ssh(self) -> SSHConfig:
        if not isinstance(self.connection, SSHConfig):
            raise AttributeError(f"{self.type or 'unset'!r} communicator has no SSH settings")
        return self.connection

    @property
    def winrm(self) -> WinRMConfig:
        if not isinstance(self.connection, WinRMConfig):
            raise AttributeError(f"{self.type or 'unset'!r} communicator has no WinRM settings")
        return self.connection

    def _active(self) -> Optional[ConnectionSettings]:
        if self.type == CommunicatorType.SSH and isinstance(self.connection, SSHConfig):
            return self.connection
        if self.type == CommunicatorType.WINRM and isinstance(self.connection, WinRMConfig):
            return self.connection
        return None

    @property
    def host(self) -> str:
        active = self._active()
        return active.host if active else ""

    @property
    def port(self) -> int:
        active = self._active()
        return active.port if active else 0

    @property
    def user(self) -> str:
        active = self._active()
        return active.username if active else ""

    @property
    def password(self) -> str:
        active = self._active()
        return active.password if active else ""

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CommunicatorConfig":
        """Decode the flat ``ssh_*`` / ``winrm_*`` key space into a config."""
        kind = str(payload.get("communicator", "") or "")
        pause = parse_duration(payload.get("pause_before_connecting", 0))

        connection: Optional[ConnectionSettings] = None
        if kind in ("", CommunicatorType.SSH):
            connection = SSHConfig(**_decode_fields(payload, _SSH_FIELDS))
        elif kind == CommunicatorType.WINRM:
            connection = WinRMConfig(**_decode_fields(payload, _WINRM_FIELDS))

        unknown = sorted(set(payload) - _KNOWN_KEYS)
        if unknown:
            logger.debug("Ignoring unknown communicator keys: %s", ", ".join(unknown))

        return cls(type=kind, pause_before_connect=pause, connection=connection)


_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Any) -> float:
    """Convert a number of seconds or a duration string like ``"1h30m"`` to seconds."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    sign = 1.0
    if text[:1] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return 0.0

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return sign * total


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def _as_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


# external key -> (field name, converter)
_SSH_FIELDS: Dict[str, Tuple[str, Callable[[Any], Any]]] = {
    "ssh_host": ("host", str),
    "ssh_port": ("port", int),
    "ssh_username": ("username", str),
    "ssh_password": ("password", str),
    "ssh_keypair_name": ("keypair_name", str),
    "temporary_key_pair_name": ("temporary_key_pair_name", str),
    "ssh_private_key_file": ("private_key_file", str),
    "ssh_private_key": ("private_key", _as_bytes),
    "ssh_public_key": ("public_key", _as_bytes),
    "ssh_agent_auth": ("agent_auth", _as_bool),
    "ssh_disable_agent_forwarding": ("disable_agent_forwarding", _as_bool),
    "ssh_timeout": ("timeout", parse_duration),
    "ssh_wait_timeout": ("wait_timeout", parse_duration),
    "ssh_keep_alive_interval": ("keep_alive_interval", parse_duration),
    "ssh_handshake_attempts": ("handshake_attempts", int),
    "ssh_ciphers": ("ciphers", _as_str_list),
    "ssh_host_key_algorithms": ("host_key_algorithms", _as_str_list),
    "ssh_read_write_timeout": ("read_write_timeout", parse_duration),
    "ssh_pty": ("pty", _as_bool),
    "ssh_bastion_host": ("bastion_host", str),
    "ssh_bastion_port": ("bastion_port", int),
    "ssh_bastion_username": ("bastion_username", str),
    "ssh_bastion_password": ("bastion_password", str),
    "ssh_bastion_private_key_file": ("bastion_private_key_file", str),
    "ssh_bastion_agent_auth": ("bastion_agent_auth", _as_bool),
    "ssh_bastion_interactive": ("bastion_interactive", _as_bool),
    "ssh_proxy_host": ("proxy_host", str),
    "ssh_proxy_port": ("proxy_port", int),
    "ssh_proxy_username": ("proxy_username", str),
    "ssh_proxy_password": ("proxy_password", str),
    "ssh_local_tunnels": ("local_tunnels", _as_str_list),
    "ssh_remote_tunnels": ("remote_tunnels", _as_str_list),
    "ssh_file_transfer_method": ("file_transfer_method", str),
    "ssh_clear_authorized_keys": ("clear_authorized_keys", _as_bool),
    "ssh_interface": ("interface", str),
    "ssh_ip_version": ("ip_version", str),
}

_WINRM_FIELDS: Dict[str, Tuple[str, Callable[[Any], Any]]] = {
    "winrm_username": ("username", str),
    "winrm_password": ("password", str),
    "winrm_host": ("host", str),
    "winrm_port": ("port", int),
    "winrm_timeout": ("timeout", parse_duration),
    "winrm_use_ssl": ("use_ssl", _as_bool),
    "winrm_insecure": ("insecure", _as_bool),
    "winrm_use_ntlm": ("use_ntlm", _as_bool),
    "winrm_no_proxy": ("no_proxy", _as_bool),
}

_KNOWN_KEYS = {"communicator", "pause_before_connecting"} | set(_SSH_FIELDS) | set(_WINRM_FIELDS)


def _decode_fields(
    payload: Mapping[str, Any],
    table: Mapping[str, Tuple[str, Callable[[Any], Any]]],
) -> Dict[str, Any]:
    decoded: Dict[str, Any] = {}
    for key, (name, convert) in table.items():
        if key not in payload or payload[key] is None:
            continue
        try:
            decoded[name] = convert(payload[key])
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for {key}: {exc}") from exc
    return decoded


# environment variable -> (communicator kind, field name, converter)
_ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "COMMUNICATOR_SSH_HOST": (CommunicatorType.SSH.value, "host", str),
    "COMMUNICATOR_SSH_PORT": (CommunicatorType.SSH.value, "port", int),
    "COMMUNICATOR_SSH_USERNAME": (CommunicatorType.SSH.value, "username", str),
    "COMMUNICATOR_SSH_PASSWORD": (CommunicatorType.SSH.value, "password", str),
    "COMMUNICATOR_SSH_PRIVATE_KEY_FILE": (CommunicatorType.SSH.value, "private_key_file", str),
    "COMMUNICATOR_WINRM_HOST": (CommunicatorType.WINRM.value, "host", str),
    "COMMUNICATOR_WINRM_USERNAME": (CommunicatorType.WINRM.value, "username", str),
    "COMMUNICATOR_WINRM_PASSWORD": (CommunicatorType.WINRM.value, "password", str),
}


def apply_env_overrides(
    config: CommunicatorConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> CommunicatorConfig:
    """Overwrite settings of the active arm from ``COMMUNICATOR_*`` variables."""
    env = os.environ if environ is None else environ
    kind = config.type or CommunicatorType.SSH.value
    for variable, (target_kind, name, convert) in _ENV_OVERRIDES.items():
        value = env.get(variable)
        if not value or target_kind != kind or config.connection is None:
            continue
        setattr(config.connection, name, convert(value))
        logger.debug("Applied %s from environment", variable)
    return config


def load_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> CommunicatorConfig:
    """Load communicator settings from `path` or the default location.

    Environment variables (higher priority than config file):
    - COMMUNICATOR_SSH_HOST / _PORT / _USERNAME / _PASSWORD / _PRIVATE_KEY_FILE
    - COMMUNICATOR_WINRM_HOST / _USERNAME / _PASSWORD
    """
    candidate_paths = []
    if path:
        candidate_paths.append(Path(path))
    candidate_paths.append(_DEFAULT_CONFIG_PATH)

    for candidate in candidate_paths:
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            logger.info("Loaded communicator configuration from %s", candidate)
            config = CommunicatorConfig.from_dict(data)
            return apply_env_overrides(config, environ)

    raise FileNotFoundError(
        f"Could not find configuration file. Looked in: {', '.join(str(p) for p in candidate_paths)}"
    )
