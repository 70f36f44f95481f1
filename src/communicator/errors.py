"""Error types shared by configuration and credential resolution."""

from __future__ import annotations

from typing import Optional


class ConfigurationError(ValueError):
    """A single validation problem found while preparing a communicator."""

    pass


class TunnelSpecError(ConfigurationError):
    """Raised when a tunnel argument cannot be parsed."""

    def __init__(self, spec: str, reason: str, option: Optional[str] = None) -> None:
        self.spec = spec
        self.reason = reason
        self.option = option
        if option:
            message = f"{option} ('{spec}') is invalid: {reason}"
        else:
            message = f"Error parsing tunnel '{spec}': {reason}"
        super().__init__(message)

    def for_option(self, option: str) -> "TunnelSpecError":
        return TunnelSpecError(self.spec, self.reason, option=option)


class CredentialError(RuntimeError):
    """Raised when secret material cannot be loaded or used."""

    pass


class UnsupportedSignerKind(CredentialError):
    """Raised when a signer cannot sign with an explicitly chosen algorithm."""

    def __init__(self, signer: object, algorithm: str, reason: str) -> None:
        self.signer = signer
        self.algorithm = algorithm
        super().__init__(f"Cannot pin signature algorithm {algorithm!r}: {reason}")
