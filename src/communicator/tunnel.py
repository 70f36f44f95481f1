"""Parsing of SSH port-forwarding arguments."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

from .errors import TunnelSpecError


class TunnelDirection(str, Enum):
    UNSET = "unset"
    LOCAL = "local"    # listen locally, forward through the remote host
    REMOTE = "remote"  # listen on the remote host, forward to this machine


@dataclass(frozen=True)
class TunnelSpec:
    direction: TunnelDirection
    listen_addr: str
    listen_type: str
    forward_addr: str
    forward_type: str


def split_host_port(address: str) -> Tuple[str, str]:
    """Split ``host:port`` or ``[v6-host]:port``."""
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"address {address}: missing ']' in address")
        host, rest = address[1:end], address[end + 1:]
        if not rest.startswith(":"):
            raise ValueError(f"address {address}: missing port in address")
        return host, rest[1:]
    if ":" not in address:
        raise ValueError(f"address {address}: missing port in address")
    host, port = address.rsplit(":", 1)
    if ":" in host:
        raise ValueError(f"address {address}: too many colons in address")
    return host, port


def _valid_port(value: str) -> bool:
    return value.isdigit() and 0 < int(value) < 65536


def parse_tunnel_argument(
    forward: str,
    direction: TunnelDirection = TunnelDirection.UNSET,
) -> TunnelSpec:
    """Parse an OpenSSH style ``port:host:hostport`` forwarding argument."""
    parts = forward.split(":", 1)
    if len(parts) != 2:
        raise TunnelSpecError(forward, f"expected port:host:hostport, got {parts!r}")
    listening_port, forwarding_addr = parts

    try:
        _, forwarding_port = split_host_port(forwarding_addr)
    except ValueError as exc:
        raise TunnelSpecError(
            forward, f"Error parsing forwarding, must be a tcp address: {exc}"
        ) from exc
    if not _valid_port(forwarding_port):
        raise TunnelSpecError(
            forward, f"Error parsing forwarding port, must be a valid port: {forwarding_port!r}"
        )
    if not _valid_port(listening_port):
        raise TunnelSpecError(
            forward, f"Error parsing listening port, must be a valid port: {listening_port!r}"
        )

    return TunnelSpec(
        direction=direction,
        listen_addr=f"localhost:{listening_port}",
        listen_type="tcp",
        forward_addr=forwarding_addr,
        forward_type="tcp",
    )
