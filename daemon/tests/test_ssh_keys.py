"""Tests for local SSH key discovery and generation."""

from unittest.mock import AsyncMock, patch

import pytest

from sshpair.ssh_keys import KeyGenerationError, LocalKeyReader, ensure_key_pair


class TestLocalKeyReader:
    """Tests for reading the local public key."""

    def test_prefers_ed25519(self, tmp_path):
        (tmp_path / "id_rsa.pub").write_text("ssh-rsa AAAARSA me\n")
        (tmp_path / "id_ed25519.pub").write_text("ssh-ed25519 AAAAED me\n")

        assert LocalKeyReader(tmp_path).read() == "ssh-ed25519 AAAAED me"

    def test_falls_back_to_rsa(self, tmp_path):
        (tmp_path / "id_rsa.pub").write_text("ssh-rsa AAAARSA me\n")
        assert LocalKeyReader(tmp_path)() == "ssh-rsa AAAARSA me"

    def test_skips_empty_file(self, tmp_path):
        (tmp_path / "id_ed25519.pub").write_text("\n")
        (tmp_path / "id_rsa.pub").write_text("ssh-rsa AAAARSA me\n")
        assert LocalKeyReader(tmp_path).read() == "ssh-rsa AAAARSA me"

    def test_none_without_keys(self, tmp_path):
        assert LocalKeyReader(tmp_path / "missing").read() is None


class TestEnsureKeyPair:
    """Tests for ensure_key_pair."""

    @pytest.mark.asyncio
    async def test_returns_existing_without_generating(self, tmp_path):
        (tmp_path / "id_ed25519.pub").write_text("ssh-ed25519 AAAAED me\n")

        with patch("sshpair.ssh_keys.asyncio.create_subprocess_exec") as mock_exec:
            key = await ensure_key_pair(tmp_path)

        assert key == "ssh-ed25519 AAAAED me"
        mock_exec.assert_not_called()

    @pytest.mark.asyncio
    async def test_generates_ed25519(self, tmp_path):
        ssh_dir = tmp_path / "ssh"

        async def fake_exec(*args, **kwargs):
            (ssh_dir / "id_ed25519.pub").write_text("ssh-ed25519 AAAANEW me\n")
            proc = AsyncMock()
            proc.communicate.return_value = (b"", b"")
            proc.returncode = 0
            return proc

        with patch(
            "sshpair.ssh_keys.asyncio.create_subprocess_exec", side_effect=fake_exec
        ) as mock_exec:
            key = await ensure_key_pair(ssh_dir)

        assert key == "ssh-ed25519 AAAANEW me"
        args = mock_exec.call_args.args
        assert args[:3] == ("ssh-keygen", "-t", "ed25519")
        assert args[-1] == str(ssh_dir / "id_ed25519")

    @pytest.mark.asyncio
    async def test_keygen_failure(self, tmp_path):
        proc = AsyncMock()
        proc.communicate.return_value = (b"", b"permission denied")
        proc.returncode = 1

        with patch(
            "sshpair.ssh_keys.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)
        ):
            with pytest.raises(KeyGenerationError, match="permission denied"):
                await ensure_key_pair(tmp_path)

    @pytest.mark.asyncio
    async def test_keygen_missing(self, tmp_path):
        with pytest.raises(KeyGenerationError, match="not found"):
            await ensure_key_pair(tmp_path, keygen_path="/nonexistent/ssh-keygen")
