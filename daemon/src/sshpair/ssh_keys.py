"""Local SSH key pair discovery and generation."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from sshpair.errors import SshPairError

logger = logging.getLogger(__name__)

# Preferred first
PUBLIC_KEY_NAMES = ("id_ed25519.pub", "id_rsa.pub")


class KeyGenerationError(SshPairError):
    """ssh-keygen failed or is not installed."""

    code = "keygen_failed"


class LocalKeyReader:
    """Reads this machine's own public key from an SSH directory."""

    def __init__(self, ssh_dir: Path):
        self.ssh_dir = Path(ssh_dir).expanduser()

    def candidates(self) -> list[Path]:
        return [self.ssh_dir / name for name in PUBLIC_KEY_NAMES]

    def read(self) -> Optional[str]:
        """Return the first non-empty public key, or None."""
        for path in self.candidates():
            try:
                text = path.read_text().strip()
            except OSError:
                continue
            if text:
                return text
        return None

    def __call__(self) -> Optional[str]:
        return self.read()


async def ensure_key_pair(
    ssh_dir: Path, keygen_path: str = "ssh-keygen"
) -> str:
    """Return the local public key, generating an ed25519 pair if none exists.

    Args:
        ssh_dir: SSH directory to look in and write to.
        keygen_path: ssh-keygen binary.

    Returns:
        Public key text.

    Raises:
        KeyGenerationError: If generation fails.
    """
    reader = LocalKeyReader(ssh_dir)
    existing = reader.read()
    if existing:
        return existing

    reader.ssh_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
    private_path = reader.ssh_dir / "id_ed25519"
    logger.info(f"Generating ed25519 key pair at {private_path}")

    try:
        proc = await asyncio.create_subprocess_exec(
            keygen_path, "-t", "ed25519", "-N", "", "-q", "-f", str(private_path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise KeyGenerationError(f"{keygen_path} not found")

    _, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise KeyGenerationError(f"ssh-keygen failed: {stderr.decode().strip()}")

    generated = reader.read()
    if not generated:
        raise KeyGenerationError("ssh-keygen produced no public key")
    return generated
