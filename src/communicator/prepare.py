"""Defaulting and validation of communicator configuration."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from .config import (
    OPAQUE_TYPES,
    CommunicatorConfig,
    CommunicatorType,
    FileTransferMethod,
    SSHConfig,
    WinRMConfig,
    WinRMTransport,
)
from .errors import ConfigurationError, CredentialError, TunnelSpecError
from .ssh.keys import expand_user, file_signer
from .tunnel import TunnelDirection, TunnelSpec, parse_tunnel_argument

logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22
DEFAULT_SSH_TIMEOUT = 5 * 60.0
DEFAULT_SSH_KEEP_ALIVE_INTERVAL = 5.0
DEFAULT_SSH_HANDSHAKE_ATTEMPTS = 10
DEFAULT_SOCKS_PROXY_PORT = 1080
DEFAULT_WINRM_PORT = 5985
DEFAULT_WINRM_SSL_PORT = 5986
DEFAULT_WINRM_TIMEOUT = 30 * 60.0

TunnelParser = Callable[[str, TunnelDirection], TunnelSpec]


def prepare(
    config: CommunicatorConfig,
    tunnel_parser: TunnelParser = parse_tunnel_argument,
) -> List[ConfigurationError]:
    """
    Apply defaults to ``config`` in place and validate it.

    Defaults are applied even when validation fails, so a caller that
    ignores the errors still gets sane ports and timeouts.

    Returns:
        Every validation problem found; an empty list means success
    """
    if not config.type:
        config.type = CommunicatorType.SSH.value

    if config.type == CommunicatorType.SSH:
        if config.connection is None:
            config.connection = SSHConfig()
        if not isinstance(config.connection, SSHConfig):
            return [ConfigurationError("Communicator type ssh requires SSH settings")]
        errors = _prepare_ssh(config.connection, tunnel_parser)
    elif config.type == CommunicatorType.WINRM:
        if config.connection is None:
            config.connection = WinRMConfig()
        if not isinstance(config.connection, WinRMConfig):
            return [ConfigurationError("Communicator type winrm requires WinRM settings")]
        errors = _prepare_winrm(config.connection)
    elif config.type in OPAQUE_TYPES:
        errors = []
    else:
        return [ConfigurationError(f"Communicator type {config.type} is invalid")]

    logger.debug("Prepared %s communicator: %d error(s)", config.type, len(errors))
    return errors


def _prepare_ssh(ssh: SSHConfig, tunnel_parser: TunnelParser) -> List[ConfigurationError]:
    if ssh.port == 0:
        ssh.port = DEFAULT_SSH_PORT

    if ssh.timeout == 0:
        ssh.timeout = DEFAULT_SSH_TIMEOUT

    if ssh.keep_alive_interval == 0:
        ssh.keep_alive_interval = DEFAULT_SSH_KEEP_ALIVE_INTERVAL

    if ssh.handshake_attempts == 0:
        ssh.handshake_attempts = DEFAULT_SSH_HANDSHAKE_ATTEMPTS

    if ssh.bastion_host:
        if ssh.bastion_port == 0:
            ssh.bastion_port = DEFAULT_SSH_PORT
        if not ssh.bastion_private_key_file and ssh.private_key_file:
            ssh.bastion_private_key_file = ssh.private_key_file

    if ssh.proxy_host and ssh.proxy_port == 0:
        ssh.proxy_port = DEFAULT_SOCKS_PROXY_PORT

    if not ssh.file_transfer_method:
        ssh.file_transfer_method = FileTransferMethod.SCP.value

    # Backwards compatibility: the deprecated wait timeout always wins.
    if ssh.wait_timeout != 0:
        ssh.timeout = ssh.wait_timeout

    errors: List[ConfigurationError] = []
    if not ssh.username:
        errors.append(ConfigurationError(
            "An ssh_username must be specified\n"
            "  Note: some builders used to default ssh_username to \"root\"."
        ))

    if ssh.private_key_file:
        error = validate_private_key_file("ssh_private_key_file", ssh.private_key_file)
        if error:
            errors.append(error)

    if ssh.bastion_host and not ssh.bastion_agent_auth:
        if not ssh.bastion_password and not ssh.bastion_private_key_file:
            errors.append(ConfigurationError(
                "ssh_bastion_password or ssh_bastion_private_key_file must be specified"
            ))
        elif ssh.bastion_private_key_file:
            error = validate_private_key_file(
                "ssh_bastion_private_key_file", ssh.bastion_private_key_file
            )
            if error:
                errors.append(error)

    valid_methods = [method.value for method in FileTransferMethod]
    if ssh.file_transfer_method not in valid_methods:
        errors.append(ConfigurationError(
            f"ssh_file_transfer_method ('{ssh.file_transfer_method}') is invalid, "
            f"valid methods: sftp, scp"
        ))

    if ssh.bastion_host and ssh.proxy_host:
        errors.append(ConfigurationError(
            "please specify either ssh_bastion_host or ssh_proxy_host, not both"
        ))

    errors.extend(_validate_tunnels(
        "ssh_local_tunnels", ssh.local_tunnels, TunnelDirection.LOCAL, tunnel_parser
    ))
    errors.extend(_validate_tunnels(
        "ssh_remote_tunnels", ssh.remote_tunnels, TunnelDirection.REMOTE, tunnel_parser
    ))
    return errors


def validate_private_key_file(option: str, path: str) -> Optional[ConfigurationError]:
    """Check that ``path`` expands, exists and holds a usable private key."""
    try:
        key_path = expand_user(path)
    except CredentialError as exc:
        return ConfigurationError(f"{option} is invalid: {exc}")

    if not key_path.exists():
        shown = path if str(key_path) == path else f"{path} ({key_path})"
        return ConfigurationError(f"{option} is invalid: stat {shown}: no such file or directory")

    try:
        file_signer(str(key_path))
    except CredentialError as exc:
        return ConfigurationError(f"{option} is invalid: {exc}")
    return None


def _validate_tunnels(
    option: str,
    specs: List[str],
    direction: TunnelDirection,
    tunnel_parser: TunnelParser,
) -> List[ConfigurationError]:
    errors: List[ConfigurationError] = []
    for spec in specs:
        try:
            tunnel_parser(spec, direction)
        except TunnelSpecError as exc:
            errors.append(exc.for_option(option))
        except ValueError as exc:
            errors.append(TunnelSpecError(spec, str(exc), option=option))
    return errors


def _prepare_winrm(winrm: WinRMConfig) -> List[ConfigurationError]:
    if winrm.port == 0 and winrm.use_ssl:
        winrm.port = DEFAULT_WINRM_SSL_PORT
    elif winrm.port == 0:
        winrm.port = DEFAULT_WINRM_PORT

    if winrm.timeout == 0:
        winrm.timeout = DEFAULT_WINRM_TIMEOUT

    winrm.transport = WinRMTransport.NTLM if winrm.use_ntlm else WinRMTransport.BASIC

    errors: List[ConfigurationError] = []
    if not winrm.username:
        errors.append(ConfigurationError("winrm_username must be specified."))
    return errors
