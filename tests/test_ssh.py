from unittest.mock import MagicMock

import paramiko
import pytest

from dropcloud.exceptions import ConfigurationError
from dropcloud.ssh import ChannelStream, _drain, is_private_key, load_private_key

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


def scripted_channel(chunks: list[bytes], exit_code: int = 0) -> MagicMock:
    channel = MagicMock()
    channel.recv.side_effect = [*chunks, b""]
    channel.recv_exit_status.return_value = exit_code
    return channel


class TestPrivateKeys:
    def test_rsa(self, rsa_pem):
        assert isinstance(load_private_key(rsa_pem), paramiko.RSAKey)
        assert is_private_key(rsa_pem)

    def test_ed25519(self):
        ed25519 = pytest.importorskip("cryptography.hazmat.primitives.asymmetric.ed25519")
        from cryptography.hazmat.primitives import serialization

        pem = (
            ed25519.Ed25519PrivateKey.generate()
            .private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.OpenSSH,
                serialization.NoEncryption(),
            )
            .decode()
        )
        assert isinstance(load_private_key(pem), paramiko.Ed25519Key)

    def test_garbage(self):
        with pytest.raises(ConfigurationError):
            load_private_key("not a key")
        assert not is_private_key("ssh-rsa AAAAB3Nza user@host")


class TestChannelStream:
    def test_read_exact(self):
        channel = MagicMock()
        channel.recv.side_effect = [b"ab", b"cd"]
        assert ChannelStream(channel).read(4) == b"abcd"

    def test_read_eof(self):
        channel = MagicMock()
        channel.recv.side_effect = [b"ab", b""]
        with pytest.raises(EOFError):
            ChannelStream(channel).read(4)

    def test_write_partial_sends(self):
        channel = MagicMock()
        channel.send.side_effect = [2, 2]
        ChannelStream(channel).write(b"abcd")
        assert [c.args[0] for c in channel.send.call_args_list] == [b"abcd", b"cd"]

    def test_close(self):
        channel = MagicMock()
        channel.closed = False
        stream = ChannelStream(channel)
        stream.close()
        channel.close.assert_called_once()


class TestDrain:
    def test_lines_split_across_chunks(self):
        lines = []
        code = _drain(scripted_channel([b"hel", b"lo\r\nwor", b"ld"], exit_code=3), lines.append)
        assert lines == ["hello", "world"]
        assert code == 3

    def test_without_sink(self):
        assert _drain(scripted_channel([b"x\n"]), None) == 0

    def test_invalid_utf8(self):
        lines = []
        _drain(scripted_channel([b"\xff\n"]), lines.append)
        assert lines == ["\ufffd"]
