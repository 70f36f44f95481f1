"""Assembly of the ordered authentication methods offered to a server."""

from __future__ import annotations

import getpass
import logging
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

import paramiko
from paramiko.auth_strategy import AuthSource, AuthStrategy, InMemoryPrivateKey, Password
from rich.console import Console

from .signer import new_algorithm_signer, pinned_algorithm_for

logger = logging.getLogger(__name__)

# (title, instructions, [(prompt, echo), ...]) -> answers
InteractiveHandler = Callable[[str, str, List[Tuple[str, bool]]], List[str]]


def password_keyboard_interactive(password: str) -> InteractiveHandler:
    """Handler that answers every keyboard-interactive prompt with ``password``."""

    def handler(title: str, instructions: str, prompt_list: List[Tuple[str, bool]]) -> List[str]:
        logger.debug("Keyboard interactive challenge: ")
        logger.debug("-- Title: %s", title)
        logger.debug("-- Instructions: %s", instructions)
        for i, (prompt, _echo) in enumerate(prompt_list, 1):
            logger.debug("-- Question %d: %s", i, prompt)
        return [password for _ in prompt_list]

    return handler


def terminal_keyboard_interactive(
    prompt_reader: Callable[[str], str] = getpass.getpass,
    console: Optional[Console] = None,
) -> InteractiveHandler:
    """Handler that asks the person at the terminal to answer each prompt.

    Hidden prompts go through ``prompt_reader``; echoed ones are read from
    the console.
    """
    console = console or Console()

    def handler(title: str, instructions: str, prompt_list: List[Tuple[str, bool]]) -> List[str]:
        if title:
            console.print(title, style="bold")
        if instructions:
            console.print(instructions)
        answers = []
        for prompt, echo in prompt_list:
            answers.append(console.input(prompt) if echo else prompt_reader(prompt))
        return answers

    return handler


class KeyboardInteractive(AuthSource):
    """Keyboard-interactive authentication driven by a prompt handler."""

    def __init__(self, username: str, handler: InteractiveHandler) -> None:
        super().__init__(username=username)
        self.handler = handler

    def __repr__(self) -> str:
        return f"KeyboardInteractive(username={self.username!r})"

    def authenticate(self, transport: paramiko.Transport) -> List[str]:
        return transport.auth_interactive(self.username, self.handler)


class ResolvedAuthStrategy(AuthStrategy):
    """Offers a fixed, already ordered list of authentication sources."""

    def __init__(self, sources: Sequence[AuthSource], ssh_config: Optional[paramiko.SSHConfig] = None) -> None:
        super().__init__(ssh_config=ssh_config or paramiko.SSHConfig())
        self.sources = list(sources)

    def get_sources(self) -> Iterator[AuthSource]:
        yield from self.sources


def assemble_auth_methods(
    username: str,
    agent_signers: Sequence[paramiko.PKey],
    key_signers: Sequence[paramiko.PKey],
    password: Optional[str] = None,
) -> List[AuthSource]:
    """
    Order credentials into the authentication methods offered during the handshake.

    Agent identities come first, then every private key pinned to its
    signature algorithm, then password and keyboard-interactive with the
    same password.

    Raises:
        UnsupportedSignerKind: If a private key cannot have its algorithm pinned
    """
    methods: List[AuthSource] = []

    for agent_key in agent_signers:
        methods.append(InMemoryPrivateKey(username, agent_key))

    for key in key_signers:
        signer = new_algorithm_signer(key, pinned_algorithm_for(key))
        methods.append(InMemoryPrivateKey(username, signer))  # type: ignore[arg-type]

    if password:
        methods.append(Password(username, password_getter=lambda: password))
        methods.append(KeyboardInteractive(username, password_keyboard_interactive(password)))

    logger.debug("Assembled %d authentication methods for %s", len(methods), username)
    return methods
