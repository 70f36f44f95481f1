"""Resolved SSH client settings handed to the transport layer."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

import paramiko
from paramiko.auth_strategy import AuthSource, InMemoryPrivateKey, Password

from ..config import CommunicatorConfig, SSHConfig
from ..errors import CredentialError
from ..tunnel import TunnelDirection, TunnelSpec, parse_tunnel_argument
from .auth import (
    InteractiveHandler,
    KeyboardInteractive,
    ResolvedAuthStrategy,
    assemble_auth_methods,
    password_keyboard_interactive,
    terminal_keyboard_interactive,
)
from .credentials import AgentConnection, AgentConnector, collect_credentials, connect_agent
from .keys import file_signer
from .signer import (
    AlgorithmSigner,
    RSA_CERT_SIGNATURE_ALGORITHMS,
    RSA_SIGNATURE_ALGORITHMS,
    is_rsa_algorithm,
    new_algorithm_signer,
    pinned_algorithm_for,
)

logger = logging.getLogger(__name__)


@dataclass
class SSHClientConfig:
    """Everything needed to open one SSH handshake.

    Host keys are never verified: ``host_key_policy`` accepts any key. The
    machines this connects to are freshly built and have no known host key.
    """

    hostname: str
    port: int
    username: str
    auth_methods: List[AuthSource] = field(default_factory=list)
    ciphers: List[str] = field(default_factory=list)
    host_key_algorithms: List[str] = field(default_factory=list)
    timeout: float = 0.0
    keep_alive_interval: float = 0.0
    read_write_timeout: float = 0.0
    handshake_attempts: int = 0
    pty: bool = False
    tunnels: List[TunnelSpec] = field(default_factory=list)
    pinned_algorithms: List[str] = field(default_factory=list)
    host_key_policy: paramiko.MissingHostKeyPolicy = field(default_factory=paramiko.AutoAddPolicy)
    agent: Optional[Any] = field(default=None, repr=False)

    def auth_strategy(self) -> ResolvedAuthStrategy:
        return ResolvedAuthStrategy(self.auth_methods)

    def disabled_algorithms(self) -> Dict[str, List[str]]:
        """Translate overrides and pinned RSA signatures for paramiko's ``disabled_algorithms``."""
        disabled: Dict[str, List[str]] = {}
        if self.ciphers:
            disabled["ciphers"] = [
                cipher for cipher in paramiko.Transport._preferred_ciphers if cipher not in self.ciphers
            ]
        if self.host_key_algorithms:
            disabled["keys"] = [
                key for key in paramiko.Transport._preferred_keys if key not in self.host_key_algorithms
            ]
        rsa_pins = [algorithm for algorithm in self.pinned_algorithms if is_rsa_algorithm(algorithm)]
        if rsa_pins:
            disabled["pubkeys"] = [
                algorithm
                for algorithm in RSA_SIGNATURE_ALGORITHMS + RSA_CERT_SIGNATURE_ALGORITHMS
                if algorithm not in rsa_pins
            ]
        return disabled

    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``paramiko.SSHClient.connect``."""
        kwargs: Dict[str, Any] = {
            "hostname": self.hostname,
            "port": self.port,
            "username": self.username,
            "auth_strategy": self.auth_strategy(),
            "allow_agent": False,
            "look_for_keys": False,
        }
        if self.timeout > 0:
            kwargs["timeout"] = self.timeout
        disabled = self.disabled_algorithms()
        if disabled:
            kwargs["disabled_algorithms"] = disabled
        return kwargs

    def close(self) -> None:
        if self.agent is not None:
            self.agent.close()
            self.agent = None


def _pinned(methods: List[AuthSource]) -> List[str]:
    pinned: List[str] = []
    for method in methods:
        if isinstance(method, InMemoryPrivateKey) and isinstance(method.pkey, AlgorithmSigner):
            if method.pkey.algorithm not in pinned:
                pinned.append(method.pkey.algorithm)
    return pinned


def _tunnels(ssh: SSHConfig) -> List[TunnelSpec]:
    tunnels = [parse_tunnel_argument(spec, TunnelDirection.LOCAL) for spec in ssh.local_tunnels]
    tunnels.extend(parse_tunnel_argument(spec, TunnelDirection.REMOTE) for spec in ssh.remote_tunnels)
    return tunnels


def build_ssh_client_config(
    config: Union[CommunicatorConfig, SSHConfig],
    state: Optional[Mapping[str, Any]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    agent_connector: AgentConnector = AgentConnection,
) -> SSHClientConfig:
    """Resolve a prepared SSH configuration into client settings.

    Any credential failure aborts the whole resolution.

    Raises:
        CredentialError: If the agent, a key or the algorithm pinning fails
    """
    ssh = config.ssh if isinstance(config, CommunicatorConfig) else config
    tunnels = _tunnels(ssh)

    sources = collect_credentials(ssh, state, environ=environ, agent_connector=agent_connector)
    try:
        key_signers = sources.signers()
        methods = assemble_auth_methods(
            ssh.username, sources.agent_signers, key_signers, sources.password
        )
    except CredentialError:
        sources.close()
        raise
    finally:
        sources.discard_keys()

    return SSHClientConfig(
        hostname=ssh.host,
        port=ssh.port,
        username=ssh.username,
        auth_methods=methods,
        ciphers=list(ssh.ciphers),
        host_key_algorithms=list(ssh.host_key_algorithms),
        timeout=ssh.timeout,
        keep_alive_interval=ssh.keep_alive_interval,
        read_write_timeout=ssh.read_write_timeout,
        handshake_attempts=ssh.handshake_attempts,
        pty=ssh.pty,
        tunnels=tunnels,
        pinned_algorithms=_pinned(methods),
        agent=sources.agent,
    )


def build_bastion_client_config(
    ssh: SSHConfig,
    *,
    environ: Optional[Mapping[str, str]] = None,
    agent_connector: AgentConnector = AgentConnection,
    interactive_handler: Optional[InteractiveHandler] = None,
) -> Optional[SSHClientConfig]:
    """Client settings for the bastion hop, or ``None`` without a bastion."""
    if not ssh.bastion_host:
        return None

    username = ssh.bastion_username
    methods: List[AuthSource] = []
    agent = None

    if ssh.bastion_agent_auth:
        env = os.environ if environ is None else environ
        agent = connect_agent(env, agent_connector)
        try:
            agent_keys = list(agent.get_keys())
        except (OSError, paramiko.SSHException) as exc:
            agent.close()
            raise CredentialError(f"Cannot list SSH Agent identities: {exc}") from exc
        methods.extend(InMemoryPrivateKey(username, key) for key in agent_keys)
    else:
        if ssh.bastion_interactive:
            methods.append(
                KeyboardInteractive(username, interactive_handler or terminal_keyboard_interactive())
            )
        if ssh.bastion_password:
            methods.append(
                Password(username, password_getter=lambda: ssh.bastion_password)
            )
            methods.append(
                KeyboardInteractive(username, password_keyboard_interactive(ssh.bastion_password))
            )
        if ssh.bastion_private_key_file:
            key = file_signer(ssh.bastion_private_key_file)
            methods.append(InMemoryPrivateKey(username, new_algorithm_signer(key, pinned_algorithm_for(key))))

    return SSHClientConfig(
        hostname=ssh.bastion_host,
        port=ssh.bastion_port,
        username=username,
        auth_methods=methods,
        timeout=ssh.timeout,
        keep_alive_interval=ssh.keep_alive_interval,
        pinned_algorithms=_pinned(methods),
        agent=agent,
    )
