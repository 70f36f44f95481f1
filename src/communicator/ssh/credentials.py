"""SSH credential collection."""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional

import paramiko
from paramiko.agent import AgentSSH

from ..config import SSHConfig
from ..errors import CredentialError
from .keys import parse_private_key, read_private_key_file

logger = logging.getLogger(__name__)

SSH_AUTH_SOCK = "SSH_AUTH_SOCK"

# State key under which provisioning steps hand over a generated private key.
PRIVATE_KEY_STATE_KEY = "privateKey"


class AgentConnection(AgentSSH):
    """SSH agent client bound to an explicit UNIX socket path."""

    def __init__(self, socket_path: str) -> None:
        super().__init__()
        conn = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            conn.connect(socket_path)
        except OSError:
            conn.close()
            raise
        self._connect(conn)

    def close(self) -> None:
        self._close()


AgentConnector = Callable[[str], Any]


@dataclass
class KeyMaterial:
    """Raw private key bytes and where they came from."""

    source: str
    data: bytes = field(repr=False)


@dataclass
class CredentialSources:
    """Secret material gathered for one authentication attempt."""

    agent: Optional[Any] = None
    agent_signers: List[paramiko.PKey] = field(default_factory=list)
    keys: List[KeyMaterial] = field(default_factory=list)
    password: Optional[str] = field(default=None, repr=False)

    def signers(self) -> List[paramiko.PKey]:
        """Parse every collected key, in collection order."""
        return [parse_private_key(key.data, source=key.source) for key in self.keys]

    def discard_keys(self) -> None:
        self.keys.clear()

    def close(self) -> None:
        if self.agent is not None:
            self.agent.close()
            self.agent = None
        self.agent_signers = []


def connect_agent(
    environ: Mapping[str, str],
    agent_connector: AgentConnector = AgentConnection,
) -> Any:
    auth_sock = environ.get(SSH_AUTH_SOCK, "")
    if not auth_sock:
        raise CredentialError(f"{SSH_AUTH_SOCK} is not set")
    try:
        return agent_connector(auth_sock)
    except (OSError, paramiko.SSHException) as exc:
        raise CredentialError(f"Cannot connect to SSH Agent socket {auth_sock!r}: {exc}") from exc


def collect_credentials(
    ssh: SSHConfig,
    state: Optional[Mapping[str, Any]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    agent_connector: AgentConnector = AgentConnection,
) -> CredentialSources:
    """Gather agent identities, private keys and the password for ``ssh``.

    Keys are collected in a fixed order: the private key file, a key handed
    over in ``state`` by an earlier provisioning step, then the inline key.
    """
    env = os.environ if environ is None else environ
    sources = CredentialSources()

    if ssh.agent_auth:
        agent = connect_agent(env, agent_connector)
        sources.agent = agent
        try:
            sources.agent_signers = list(agent.get_keys())
        except (OSError, paramiko.SSHException) as exc:
            sources.close()
            raise CredentialError(f"Cannot list SSH Agent identities: {exc}") from exc
        logger.debug("Loaded %d identities from the SSH agent", len(sources.agent_signers))

    try:
        if ssh.private_key_file:
            sources.keys.append(
                KeyMaterial(ssh.private_key_file, read_private_key_file(ssh.private_key_file))
            )

        injected = (state or {}).get(PRIVATE_KEY_STATE_KEY)
        if injected:
            sources.keys.append(KeyMaterial(f"state[{PRIVATE_KEY_STATE_KEY!r}]", _to_bytes(injected)))
    except CredentialError:
        sources.close()
        raise

    if ssh.private_key:
        sources.keys.append(KeyMaterial("ssh_private_key", bytes(ssh.private_key)))

    if ssh.password:
        sources.password = ssh.password

    logger.info(
        "Collected SSH credentials: agent=%s keys=%s password=%s",
        ssh.agent_auth,
        [key.source for key in sources.keys],
        sources.password is not None,
    )
    return sources


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")
