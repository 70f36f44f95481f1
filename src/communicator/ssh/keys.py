"""Private key loading helpers."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Union

import paramiko

from ..errors import CredentialError

# DSA keys are not accepted by current OpenSSH servers; they are not tried.
_KEY_CLASSES = (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey)


def expand_user(path: str) -> Path:
    """Expand a leading ``~`` to the invoking user's home directory."""
    try:
        return Path(path).expanduser()
    except RuntimeError as exc:
        raise CredentialError(f"Error expanding path for SSH private key: {exc}") from exc


def read_private_key_file(path: str) -> bytes:
    """Return the raw bytes of the key at ``path`` (``b""`` if no path is set)."""
    if not path:
        return b""
    key_path = expand_user(path)
    try:
        return key_path.read_bytes()
    except OSError as exc:
        raise CredentialError(f"Error on reading SSH private key: {exc}") from exc


def parse_private_key(key_data: Union[bytes, str], source: str = "private key") -> paramiko.PKey:
    """
    Parse private key material, trying every supported key type.

    Args:
        key_data: PEM or OpenSSH encoded private key
        source: Human readable origin of the key, used in error messages

    Returns:
        The first key type that accepts the data

    Raises:
        CredentialError: If no key type can parse the data
    """
    if isinstance(key_data, bytes):
        try:
            key_data = key_data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CredentialError(f"Error on parsing SSH private key from {source}: {exc}") from exc

    key_file = io.StringIO(key_data)
    last_error: Exception = CredentialError("no key data")
    for key_class in _KEY_CLASSES:
        key_file.seek(0)
        try:
            return key_class.from_private_key(key_file)
        except (paramiko.SSHException, ValueError) as exc:
            last_error = exc
            continue

    raise CredentialError(f"Error on parsing SSH private key from {source}: {last_error}")


def file_signer(path: str) -> paramiko.PKey:
    """Load and parse the private key stored at ``path``."""
    key_path = expand_user(path)
    try:
        data = key_path.read_bytes()
    except OSError as exc:
        raise CredentialError(f"Failed to read key '{key_path}': {exc}") from exc
    return parse_private_key(data, source=str(key_path))
