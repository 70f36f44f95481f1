"""SSH connection handling built on Paramiko."""

from __future__ import annotations

import logging
import socket
from typing import Callable, Optional

import paramiko

from .client_config import SSHClientConfig

logger = logging.getLogger(__name__)


class SSHConnectionError(RuntimeError):
    """Raised when an SSH connection cannot be established."""

    pass


class SSHSession:
    """Opens a paramiko.SSHClient from resolved client settings."""

    def __init__(
        self,
        client_config: SSHClientConfig,
        *,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
    ) -> None:
        self.client_config = client_config
        self._client_factory = client_factory or paramiko.SSHClient
        self._client: Optional[paramiko.SSHClient] = None

    @property
    def client(self) -> Optional[paramiko.SSHClient]:
        return self._client

    def __enter__(self) -> "SSHSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def connect(self) -> paramiko.SSHClient:
        if self._client:
            return self._client
        client = self._client_factory()
        client.set_missing_host_key_policy(self.client_config.host_key_policy)
        logger.info(
            "Connecting to %s@%s:%s",
            self.client_config.username,
            self.client_config.hostname,
            self.client_config.port,
        )
        try:
            client.connect(**self.client_config.connect_kwargs())
        except (paramiko.SSHException, socket.error) as exc:
            client.close()
            raise SSHConnectionError(str(exc)) from exc

        if self.client_config.keep_alive_interval > 0:
            transport = client.get_transport()
            if transport is not None:
                transport.set_keepalive(max(1, int(self.client_config.keep_alive_interval)))
        self._client = client
        return client

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None
        self.client_config.close()
