"""authorized_keys file access.

Security features:
- File permissions (600 for the file, 700 for the directory)
- Exclusive fcntl lock around each append
- One O_APPEND write per entry so concurrent appends never interleave
"""

import fcntl
import logging
import os
import re
from pathlib import Path
from typing import Optional

from sshpair.errors import InvalidFormatError, WriteFailedError
from sshpair.keys import PublicKey, parse_public_key

logger = logging.getLogger(__name__)

COMMENT_TAG = "sshpair"
PEER_FIELD_MAX = 64

# Any run of whitespace or control characters, line separators included
_UNSAFE_RUN = re.compile(r"[\s\x00-\x1f\x7f-\x9f]+")


def clean_peer_field(value: Optional[str]) -> Optional[str]:
    """Reduce a peer reported name to one line of printable text.

    The value ends up inside a comment line of authorized_keys, so it must
    never be able to start a new line.
    """
    if value is None:
        return None
    text = _UNSAFE_RUN.sub(" ", str(value)).strip()[:PEER_FIELD_MAX].strip()
    return text or None


def attribution_comment(
    timestamp: str, peer_user: Optional[str], peer_host: Optional[str]
) -> str:
    """Build the comment line written above an appended key."""
    user = clean_peer_field(peer_user) or ""
    host = clean_peer_field(peer_host) or ""
    stamp = clean_peer_field(timestamp) or ""
    return f"# {COMMENT_TAG} {stamp} {user}@{host}"


class AuthorizedKeysStore:
    """Append-only view of an ``authorized_keys`` file."""

    def __init__(self, path: Path):
        """Initialize store.

        Args:
            path: Path to the authorized_keys file.
        """
        self.path = Path(path).expanduser()

    @classmethod
    def for_ssh_dir(cls, ssh_dir: Path) -> "AuthorizedKeysStore":
        return cls(Path(ssh_dir).expanduser() / "authorized_keys")

    def keys(self) -> list[PublicKey]:
        """Parse the keys currently in the file, skipping other lines."""
        try:
            text = self.path.read_text()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise WriteFailedError(f"cannot read {self.path}: {e}")

        parsed = []
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                parsed.append(parse_public_key(line))
            except InvalidFormatError:
                # Options-prefixed or foreign entries are left alone
                continue
        return parsed

    def contains(self, key: PublicKey) -> bool:
        """Check whether the key material is already authorized."""
        return any(k.identity() == key.identity() for k in self.keys())

    def append(self, key: PublicKey, comment: str) -> bool:
        """Append ``key`` preceded by ``comment``.

        Args:
            key: Parsed public key.
            comment: Attribution comment line (starting with ``#``).

        Returns:
            True if the key was written, False if it was already present.

        Raises:
            WriteFailedError: If the directory or file cannot be written.
        """
        # The key line is the only non-comment line an entry may add
        comment = _UNSAFE_RUN.sub(" ", comment).strip()
        if not comment.startswith("#"):
            comment = f"# {comment}"
        entry = f"\n{comment}\n{key.to_line()}\n".encode("utf-8")
        try:
            self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
        except OSError as e:
            raise WriteFailedError(f"cannot open {self.path}: {e}")

        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            # Checked under the lock so two writers cannot both miss it
            if self.contains(key):
                logger.info(f"Key {key.fingerprint()} already authorized")
                return False
            os.write(fd, entry)
        except OSError as e:
            raise WriteFailedError(f"cannot append to {self.path}: {e}")
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

        self._tighten_permissions()
        logger.info(f"Authorized key {key.fingerprint()}")
        return True

    def _tighten_permissions(self) -> None:
        try:
            os.chmod(self.path.parent, 0o700)
            os.chmod(self.path, 0o600)
        except OSError as e:
            logger.warning(f"Could not tighten permissions on {self.path.parent}: {e}")
