import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import paramiko

from communicator.config import CommunicatorConfig, SSHConfig, WinRMConfig, WinRMTransport
from communicator.errors import ConfigurationError, TunnelSpecError
from communicator.prepare import prepare


def _ssh(**fields) -> CommunicatorConfig:
    fields.setdefault("username", "builder")
    return CommunicatorConfig(type="ssh", connection=SSHConfig(**fields))


def _messages(errors) -> str:
    return "\n".join(str(error) for error in errors)


class PrepareDispatchTests(unittest.TestCase):
    def test_empty_type_defaults_to_ssh(self) -> None:
        config = CommunicatorConfig(connection=SSHConfig(username="root"))
        self.assertEqual(prepare(config), [])
        self.assertEqual(config.type, "ssh")
        self.assertEqual(config.ssh.port, 22)

    def test_missing_arm_is_created(self) -> None:
        config = CommunicatorConfig(type="winrm")
        errors = prepare(config)
        self.assertIsInstance(config.connection, WinRMConfig)
        self.assertEqual(len(errors), 1)

    def test_opaque_types_are_noops(self) -> None:
        for kind in ("none", "docker", "dockerWindowsContainer"):
            config = CommunicatorConfig(type=kind)
            self.assertEqual(prepare(config), [])
            self.assertIsNone(config.connection)

    def test_unknown_type_is_single_error_without_defaults(self) -> None:
        ssh = SSHConfig()
        config = CommunicatorConfig(type="telnet", connection=ssh)
        errors = prepare(config)
        self.assertEqual(len(errors), 1)
        self.assertIn("telnet", str(errors[0]))
        self.assertEqual(ssh.port, 0)

    def test_mismatched_arm_is_rejected(self) -> None:
        config = CommunicatorConfig(type="ssh", connection=WinRMConfig(username="x"))
        errors = prepare(config)
        self.assertEqual(len(errors), 1)


class PrepareSSHDefaultsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        config = _ssh()
        self.assertEqual(prepare(config), [])
        ssh = config.ssh
        self.assertEqual(ssh.port, 22)
        self.assertEqual(ssh.timeout, 300.0)
        self.assertEqual(ssh.keep_alive_interval, 5.0)
        self.assertEqual(ssh.handshake_attempts, 10)
        self.assertEqual(ssh.file_transfer_method, "scp")
        self.assertEqual(ssh.bastion_port, 0)
        self.assertEqual(ssh.proxy_port, 0)

    def test_explicit_values_are_kept(self) -> None:
        config = _ssh(port=2222, timeout=60.0, keep_alive_interval=-1.0, handshake_attempts=3)
        prepare(config)
        ssh = config.ssh
        self.assertEqual(ssh.port, 2222)
        self.assertEqual(ssh.timeout, 60.0)
        self.assertEqual(ssh.keep_alive_interval, -1.0)
        self.assertEqual(ssh.handshake_attempts, 3)

    def test_wait_timeout_sets_timeout(self) -> None:
        config = _ssh(wait_timeout=900.0)
        prepare(config)
        self.assertEqual(config.ssh.timeout, 900.0)

    def test_wait_timeout_overrides_explicit_timeout(self) -> None:
        config = _ssh(timeout=60.0, wait_timeout=900.0)
        prepare(config)
        self.assertEqual(config.ssh.timeout, 900.0)

    def test_bastion_defaults_and_key_inheritance(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            key_path = Path(tmp) / "id_ecdsa"
            paramiko.ECDSAKey.generate().write_private_key_file(str(key_path))
            config = _ssh(bastion_host="bastion", private_key_file=str(key_path))
            self.assertEqual(prepare(config), [])
        self.assertEqual(config.ssh.bastion_port, 22)
        self.assertEqual(config.ssh.bastion_private_key_file, str(key_path))

    def test_proxy_port_default(self) -> None:
        config = _ssh(proxy_host="socks")
        self.assertEqual(prepare(config), [])
        self.assertEqual(config.ssh.proxy_port, 1080)

    def test_defaults_applied_even_with_errors(self) -> None:
        config = _ssh(username="", file_transfer_method="ftp")
        errors = prepare(config)
        self.assertEqual(len(errors), 2)
        self.assertEqual(config.ssh.port, 22)
        self.assertEqual(config.ssh.timeout, 300.0)


class PrepareSSHValidationTests(unittest.TestCase):
    def test_missing_username_is_only_error(self) -> None:
        config = CommunicatorConfig(type="ssh", connection=SSHConfig(username="", private_key_file=""))
        errors = prepare(config)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], ConfigurationError)
        self.assertIn("ssh_username must be specified", str(errors[0]))

    def test_invalid_file_transfer_method(self) -> None:
        errors = prepare(_ssh(file_transfer_method="ftp"))
        self.assertEqual(len(errors), 1)
        message = str(errors[0])
        self.assertIn("ftp", message)
        self.assertIn("sftp", message)
        self.assertIn("scp", message)

    def test_sftp_is_valid(self) -> None:
        self.assertEqual(prepare(_ssh(file_transfer_method="sftp")), [])

    def test_bastion_and_proxy_are_mutually_exclusive(self) -> None:
        errors = prepare(_ssh(bastion_host="b", bastion_password="pw", proxy_host="p"))
        self.assertEqual(len(errors), 1)
        self.assertIn("not both", str(errors[0]))

    def test_bastion_requires_password_or_key(self) -> None:
        errors = prepare(_ssh(bastion_host="b"))
        self.assertEqual(len(errors), 1)
        self.assertIn("ssh_bastion_password or ssh_bastion_private_key_file", str(errors[0]))

    def test_bastion_agent_auth_needs_no_secret(self) -> None:
        self.assertEqual(prepare(_ssh(bastion_host="b", bastion_agent_auth=True)), [])

    def test_missing_private_key_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            missing = str(Path(tmp) / "absent")
            errors = prepare(_ssh(private_key_file=missing))
        self.assertEqual(len(errors), 1)
        self.assertIn("ssh_private_key_file is invalid", str(errors[0]))
        self.assertIn("no such file", str(errors[0]))
        self.assertIn(missing, str(errors[0]))

    def test_unparsable_private_key_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            key_path = Path(tmp) / "garbage"
            key_path.write_text("this is not a key\n", encoding="utf-8")
            errors = prepare(_ssh(private_key_file=str(key_path)))
        self.assertEqual(len(errors), 1)
        self.assertIn("ssh_private_key_file is invalid", str(errors[0]))
        self.assertIn(str(key_path), str(errors[0]))
        self.assertNotIn("no such file", str(errors[0]))

    def test_unparsable_bastion_key_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            key_path = Path(tmp) / "garbage"
            key_path.write_bytes(b"\x00\x01\x02")
            errors = prepare(_ssh(bastion_host="b", bastion_private_key_file=str(key_path)))
        self.assertEqual(len(errors), 1)
        self.assertIn("ssh_bastion_private_key_file is invalid", str(errors[0]))

    def test_private_key_file_under_home_directory(self) -> None:
        with tempfile.TemporaryDirectory() as home:
            paramiko.ECDSAKey.generate().write_private_key_file(str(Path(home) / "id_ecdsa"))
            with mock.patch.dict(os.environ, {"HOME": home, "USERPROFILE": home}):
                self.assertEqual(prepare(_ssh(private_key_file="~/id_ecdsa")), [])
                errors = prepare(_ssh(private_key_file="~/absent"))
        self.assertEqual(len(errors), 1)
        self.assertIn("~/absent", str(errors[0]))
        self.assertIn(str(Path(home) / "absent"), str(errors[0]))

    def test_unexpandable_private_key_path(self) -> None:
        errors = prepare(_ssh(private_key_file="~no-such-user-3f9a2c/id_rsa"))
        self.assertEqual(len(errors), 1)
        self.assertIn("ssh_private_key_file is invalid", str(errors[0]))
        self.assertIn("Error expanding path", str(errors[0]))

    def test_valid_private_key_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            key_path = Path(tmp) / "id_ecdsa"
            paramiko.ECDSAKey.generate().write_private_key_file(str(key_path))
            self.assertEqual(prepare(_ssh(private_key_file=str(key_path))), [])

    def test_invalid_tunnels_are_all_reported(self) -> None:
        errors = prepare(
            _ssh(
                local_tunnels=["8080:localhost:80", "nonsense"],
                remote_tunnels=["9000:db"],
            )
        )
        self.assertEqual(len(errors), 2)
        self.assertTrue(all(isinstance(error, TunnelSpecError) for error in errors))
        self.assertIn("ssh_local_tunnels ('nonsense') is invalid", str(errors[0]))
        self.assertIn("ssh_remote_tunnels ('9000:db') is invalid", str(errors[1]))
        self.assertEqual(errors[0].spec, "nonsense")

    def test_all_independent_errors_are_collected(self) -> None:
        errors = prepare(
            _ssh(
                username="",
                file_transfer_method="rsync",
                bastion_host="b",
                proxy_host="p",
                local_tunnels=["x"],
            )
        )
        text = _messages(errors)
        self.assertEqual(len(errors), 5)
        self.assertIn("ssh_username", text)
        self.assertIn("rsync", text)
        self.assertIn("not both", text)
        self.assertIn("ssh_bastion_password", text)
        self.assertIn("ssh_local_tunnels", text)

    def test_custom_tunnel_parser(self) -> None:
        seen = []

        def parser(spec, direction):
            seen.append((spec, direction.value))
            raise ValueError("rejected")

        errors = prepare(_ssh(remote_tunnels=["1:h:2"]), tunnel_parser=parser)
        self.assertEqual(seen, [("1:h:2", "remote")])
        self.assertIn("rejected", str(errors[0]))


class PrepareWinRMTests(unittest.TestCase):
    def test_default_port_plain(self) -> None:
        config = CommunicatorConfig(type="winrm", connection=WinRMConfig(username="Administrator"))
        self.assertEqual(prepare(config), [])
        self.assertEqual(config.winrm.port, 5985)
        self.assertEqual(config.winrm.timeout, 1800.0)
        self.assertEqual(config.winrm.transport, WinRMTransport.BASIC)

    def test_default_port_ssl(self) -> None:
        config = CommunicatorConfig(
            type="winrm", connection=WinRMConfig(username="Administrator", use_ssl=True)
        )
        prepare(config)
        self.assertEqual(config.winrm.port, 5986)

    def test_explicit_port_kept(self) -> None:
        config = CommunicatorConfig(
            type="winrm", connection=WinRMConfig(username="Administrator", use_ssl=True, port=443)
        )
        prepare(config)
        self.assertEqual(config.winrm.port, 443)

    def test_ntlm_selects_transport(self) -> None:
        config = CommunicatorConfig(
            type="winrm", connection=WinRMConfig(username="Administrator", use_ntlm=True)
        )
        prepare(config)
        self.assertEqual(config.winrm.transport, WinRMTransport.NTLM)

    def test_username_required(self) -> None:
        config = CommunicatorConfig(type="winrm", connection=WinRMConfig())
        errors = prepare(config)
        self.assertEqual(len(errors), 1)
        self.assertIn("winrm_username", str(errors[0]))


if __name__ == "__main__":
    unittest.main()
