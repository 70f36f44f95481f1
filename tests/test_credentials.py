import io
import socket
import tempfile
import unittest
from pathlib import Path

import paramiko

from communicator.config import SSHConfig
from communicator.errors import CredentialError
from communicator.ssh.credentials import (
    PRIVATE_KEY_STATE_KEY,
    AgentConnection,
    collect_credentials,
    connect_agent,
)


def _private_key_text(key: paramiko.PKey) -> str:
    buffer = io.StringIO()
    key.write_private_key(buffer)
    return buffer.getvalue()


class FakeAgent:
    def __init__(self, keys=None, fail_listing: bool = False):
        self.keys = list(keys or [])
        self.fail_listing = fail_listing
        self.closed = False

    def get_keys(self):
        if self.fail_listing:
            raise paramiko.SSHException("agent went away")
        return tuple(self.keys)

    def close(self):
        self.closed = True


class ConnectAgentTests(unittest.TestCase):
    def test_requires_auth_sock(self) -> None:
        with self.assertRaises(CredentialError) as ctx:
            connect_agent({})
        self.assertIn("SSH_AUTH_SOCK", str(ctx.exception))

    def test_connector_failure_names_socket(self) -> None:
        def refuse(path):
            raise ConnectionRefusedError("refused")

        with self.assertRaises(CredentialError) as ctx:
            connect_agent({"SSH_AUTH_SOCK": "/tmp/agent.sock"}, refuse)
        self.assertIn("Cannot connect to SSH Agent socket", str(ctx.exception))
        self.assertIn("/tmp/agent.sock", str(ctx.exception))

    @unittest.skipUnless(hasattr(socket, "AF_UNIX"), "UNIX sockets are not available")
    def test_missing_socket_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = str(Path(tmp) / "agent.sock")
            with self.assertRaises(CredentialError):
                connect_agent({"SSH_AUTH_SOCK": path}, AgentConnection)


class CollectCredentialsTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.file_key = paramiko.ECDSAKey.generate()
        cls.state_key = paramiko.ECDSAKey.generate()
        cls.inline_key = paramiko.ECDSAKey.generate()

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.key_path = Path(self._tmp.name) / "id_ecdsa"
        self.file_key.write_private_key_file(str(self.key_path))

    def test_sources_are_collected_in_order(self) -> None:
        ssh = SSHConfig(
            username="builder",
            private_key_file=str(self.key_path),
            private_key=_private_key_text(self.inline_key).encode("utf-8"),
            password="secret",
        )
        state = {PRIVATE_KEY_STATE_KEY: _private_key_text(self.state_key)}

        sources = collect_credentials(ssh, state, environ={})

        self.assertIsNone(sources.agent)
        self.assertEqual(
            [key.source for key in sources.keys],
            [str(self.key_path), "state['privateKey']", "ssh_private_key"],
        )
        self.assertEqual(sources.password, "secret")
        signers = sources.signers()
        self.assertEqual(signers[0], self.file_key)
        self.assertEqual(signers[1], self.state_key)
        self.assertEqual(signers[2], self.inline_key)

    def test_nothing_configured(self) -> None:
        sources = collect_credentials(SSHConfig(username="builder"), environ={})
        self.assertEqual(sources.keys, [])
        self.assertEqual(sources.agent_signers, [])
        self.assertIsNone(sources.password)

    def test_agent_identities(self) -> None:
        agent_key = paramiko.ECDSAKey.generate()
        agent = FakeAgent([agent_key])
        seen = []

        def connector(path):
            seen.append(path)
            return agent

        sources = collect_credentials(
            SSHConfig(username="builder", agent_auth=True),
            environ={"SSH_AUTH_SOCK": "/run/agent.sock"},
            agent_connector=connector,
        )
        self.assertEqual(seen, ["/run/agent.sock"])
        self.assertIs(sources.agent, agent)
        self.assertEqual(sources.agent_signers, [agent_key])

        sources.close()
        self.assertTrue(agent.closed)
        self.assertIsNone(sources.agent)

    def test_agent_without_socket_fails(self) -> None:
        with self.assertRaises(CredentialError):
            collect_credentials(SSHConfig(username="builder", agent_auth=True), environ={})

    def test_agent_listing_failure_closes_agent(self) -> None:
        agent = FakeAgent(fail_listing=True)
        with self.assertRaises(CredentialError):
            collect_credentials(
                SSHConfig(username="builder", agent_auth=True),
                environ={"SSH_AUTH_SOCK": "/run/agent.sock"},
                agent_connector=lambda path: agent,
            )
        self.assertTrue(agent.closed)

    def test_unreadable_key_file_closes_agent(self) -> None:
        agent = FakeAgent()
        missing = str(Path(self._tmp.name) / "absent")
        with self.assertRaises(CredentialError) as ctx:
            collect_credentials(
                SSHConfig(username="builder", agent_auth=True, private_key_file=missing),
                environ={"SSH_AUTH_SOCK": "/run/agent.sock"},
                agent_connector=lambda path: agent,
            )
        self.assertIn("Error on reading SSH private key", str(ctx.exception))
        self.assertTrue(agent.closed)

    def test_parse_failure_names_source(self) -> None:
        sources = collect_credentials(
            SSHConfig(username="builder", private_key=b"not a key"), environ={}
        )
        with self.assertRaises(CredentialError) as ctx:
            sources.signers()
        self.assertIn("ssh_private_key", str(ctx.exception))

    def test_discard_keys(self) -> None:
        sources = collect_credentials(
            SSHConfig(username="builder", private_key_file=str(self.key_path)), environ={}
        )
        sources.discard_keys()
        self.assertEqual(sources.keys, [])


if __name__ == "__main__":
    unittest.main()
