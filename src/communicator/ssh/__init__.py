"""SSH credential resolution for the communicator."""

from .auth import (
    KeyboardInteractive,
    ResolvedAuthStrategy,
    assemble_auth_methods,
    password_keyboard_interactive,
)
from .client_config import SSHClientConfig, build_bastion_client_config, build_ssh_client_config
from .credentials import AgentConnection, CredentialSources, KeyMaterial, collect_credentials
from .keys import expand_user, file_signer, parse_private_key, read_private_key_file
from .session import SSHConnectionError, SSHSession
from .signer import (
    SIG_ALGO_RSA_SHA2_256,
    AlgorithmSelectableSigner,
    AlgorithmSigner,
    new_algorithm_signer,
    pinned_algorithm_for,
)

__all__ = [
    "AgentConnection",
    "AlgorithmSelectableSigner",
    "AlgorithmSigner",
    "CredentialSources",
    "KeyMaterial",
    "KeyboardInteractive",
    "ResolvedAuthStrategy",
    "SIG_ALGO_RSA_SHA2_256",
    "SSHClientConfig",
    "SSHConnectionError",
    "SSHSession",
    "assemble_auth_methods",
    "build_bastion_client_config",
    "build_ssh_client_config",
    "collect_credentials",
    "expand_user",
    "file_signer",
    "new_algorithm_signer",
    "parse_private_key",
    "password_keyboard_interactive",
    "pinned_algorithm_for",
    "read_private_key_file",
]
