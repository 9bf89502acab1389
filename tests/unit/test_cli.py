"""Tests for the command line entry point."""

from click.testing import CliRunner

from zulip_pusher import __version__
from zulip_pusher.cli import cli
from zulip_pusher.core.notification import VapidKeyPair


class TestCli:
    def test_version(self) -> None:
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_generate_vapid_keys(self) -> None:
        result = CliRunner().invoke(cli, ["generate-vapid-keys"])
        assert result.exit_code == 0

        values = dict(line.split("=", 1) for line in result.output.strip().splitlines())
        pair = VapidKeyPair.from_base64(values["PUSHER_VAPID_PRIVATEKEY"], values["PUSHER_VAPID_PUBLICKEY"])
        assert pair.public_key_b64 == values["PUSHER_VAPID_PUBLICKEY"]

    def test_listen_requires_credentials(self) -> None:
        result = CliRunner().invoke(cli, ["listen", "--server", "https://chat.example.com"], env={"ZULIP_EMAIL": ""})
        assert result.exit_code == 2
        assert "--email" in result.output
