"""Signers that sign with an explicitly chosen signature algorithm.

Servers that dropped ``ssh-rsa`` (SHA-1) signatures reject RSA keys that
sign with the key's default algorithm, and the failure only shows up at
the final signature check of the handshake. Wrapping a key in an
``AlgorithmSigner`` pins every signature it produces to one algorithm,
``rsa-sha2-256`` for RSA keys.
"""

from __future__ import annotations

import inspect
from typing import Any, Optional, Protocol, Tuple, runtime_checkable

from paramiko.message import Message

from ..errors import UnsupportedSignerKind

SIG_ALGO_RSA = "ssh-rsa"
SIG_ALGO_RSA_SHA2_256 = "rsa-sha2-256"
SIG_ALGO_RSA_SHA2_512 = "rsa-sha2-512"

CERT_SUFFIX = "-cert-v01@openssh.com"

RSA_SIGNATURE_ALGORITHMS: Tuple[str, ...] = (
    SIG_ALGO_RSA,
    SIG_ALGO_RSA_SHA2_256,
    SIG_ALGO_RSA_SHA2_512,
)
RSA_CERT_SIGNATURE_ALGORITHMS: Tuple[str, ...] = tuple(
    algorithm + CERT_SUFFIX for algorithm in RSA_SIGNATURE_ALGORITHMS
)


@runtime_checkable
class AlgorithmSelectableSigner(Protocol):
    """A key that can sign with a caller selected signature algorithm."""

    def get_name(self) -> str:
        ...

    def sign_ssh_data(self, data: bytes, algorithm: Optional[str] = None) -> Message:
        ...


def _accepts_algorithm(signer: Any) -> bool:
    try:
        parameters = inspect.signature(signer.sign_ssh_data).parameters
    except (TypeError, ValueError):
        return False
    return "algorithm" in parameters


def supports_algorithm_selection(signer: Any) -> bool:
    return isinstance(signer, AlgorithmSelectableSigner) and _accepts_algorithm(signer)


def signature_algorithms(signer: AlgorithmSelectableSigner) -> Tuple[str, ...]:
    """Signature algorithms the signer's key type can produce.

    RSA key classes list them in ``HASHES``. Newer paramiko releases
    dropped ``ssh-rsa`` from that table.
    """
    name = signer.get_name()
    hashes = getattr(type(signer), "HASHES", None)
    if not hashes or not is_rsa_algorithm(name):
        return (name,)
    is_cert = name.endswith(CERT_SUFFIX)
    return tuple(algorithm for algorithm in hashes if algorithm.endswith(CERT_SUFFIX) == is_cert)


def pinned_algorithm_for(signer: AlgorithmSelectableSigner) -> str:
    """Algorithm a key is pinned to: SHA-256 for RSA, the key's own otherwise."""
    name = signer.get_name()
    if name == SIG_ALGO_RSA:
        return SIG_ALGO_RSA_SHA2_256
    if name == SIG_ALGO_RSA + CERT_SUFFIX:
        return SIG_ALGO_RSA_SHA2_256 + CERT_SUFFIX
    return name


def is_rsa_algorithm(algorithm: str) -> bool:
    return algorithm in RSA_SIGNATURE_ALGORITHMS or algorithm in RSA_CERT_SIGNATURE_ALGORITHMS


class AlgorithmSigner:
    """Wraps a key so that every signature uses ``algorithm``.

    Everything except signing is delegated to the wrapped key, so the
    public key, its fingerprint and its name are unchanged.
    """

    def __init__(self, signer: AlgorithmSelectableSigner, algorithm: str) -> None:
        self._signer = signer
        self.algorithm = algorithm

    @property
    def signer(self) -> AlgorithmSelectableSigner:
        return self._signer

    def sign_ssh_data(self, data: bytes, algorithm: Optional[str] = None) -> Message:
        return self._signer.sign_ssh_data(data, self.algorithm)

    def asbytes(self) -> bytes:
        return self._signer.asbytes()  # type: ignore[attr-defined]

    def __bytes__(self) -> bytes:
        return self.asbytes()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._signer, name)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, AlgorithmSigner):
            other = other.signer
        return self._signer == other

    def __hash__(self) -> int:
        return hash(self._signer)

    def __repr__(self) -> str:
        return f"AlgorithmSigner({self._signer!r}, algorithm={self.algorithm!r})"


def new_algorithm_signer(signer: Any, algorithm: str) -> AlgorithmSigner:
    """Pin ``signer`` to ``algorithm``.

    Raises:
        UnsupportedSignerKind: If the signer cannot select its signature
            algorithm, or its key type cannot produce ``algorithm``.
    """
    if not supports_algorithm_selection(signer):
        raise UnsupportedSignerKind(
            signer, algorithm, f"{type(signer).__name__} does not support algorithm selection"
        )
    supported = signature_algorithms(signer)
    if algorithm not in supported:
        raise UnsupportedSignerKind(
            signer,
            algorithm,
            f"{signer.get_name()} keys can only sign with {', '.join(supported)}",
        )
    return AlgorithmSigner(signer, algorithm)
