"""SSH public key parsing.

Accepts the single-line OpenSSH public key format::

    <key-type> <base64-blob>[ <comment>]

The check is syntactic only. The blob must be valid base64 and must start
with the SSH wire encoding of its own key type, but the key material itself
is never verified.
"""

import base64
import binascii
import hashlib
import re
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sshpair.errors import InvalidFormatError

_WHITESPACE = re.compile(r"\s+")


class KeyType(Enum):
    """Recognized public key algorithms."""

    ED25519 = "ssh-ed25519"
    RSA = "ssh-rsa"
    ECDSA_NISTP256 = "ecdsa-sha2-nistp256"
    ECDSA_NISTP384 = "ecdsa-sha2-nistp384"
    ECDSA_NISTP521 = "ecdsa-sha2-nistp521"

    @classmethod
    def from_name(cls, name: str) -> "KeyType":
        """Look up a key type by its OpenSSH name.

        Raises:
            InvalidFormatError: If the name is not a recognized type.
        """
        try:
            return cls(name)
        except ValueError:
            raise InvalidFormatError(f"unsupported key type: {name[:32]!r}")


@dataclass(frozen=True)
class PublicKey:
    """A parsed, normalized public key line."""

    key_type: KeyType
    blob: str
    comment: Optional[str] = None

    def to_line(self) -> str:
        """Render the normalized single-line form."""
        if self.comment:
            return f"{self.key_type.value} {self.blob} {self.comment}"
        return f"{self.key_type.value} {self.blob}"

    def identity(self) -> tuple[str, str]:
        """Type and blob, ignoring the comment."""
        return self.key_type.value, self.blob

    def fingerprint(self) -> str:
        """OpenSSH style SHA256 fingerprint of the key blob."""
        digest = hashlib.sha256(base64.b64decode(self.blob)).digest()
        return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def normalize_key_text(candidate: str) -> str:
    """Collapse line breaks and other whitespace runs into single spaces."""
    return _WHITESPACE.sub(" ", candidate).strip()


def _decode_blob(blob: str) -> bytes:
    try:
        return base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidFormatError("key blob is not valid base64")


def _embedded_type(raw: bytes) -> str:
    """Read the length-prefixed key type at the start of a key blob."""
    if len(raw) < 4:
        raise InvalidFormatError("key blob is too short")
    (length,) = struct.unpack(">I", raw[:4])
    name = raw[4 : 4 + length]
    if length == 0 or len(name) != length:
        raise InvalidFormatError("key blob is truncated")
    try:
        return name.decode("ascii")
    except UnicodeDecodeError:
        raise InvalidFormatError("key blob has a malformed type field")


def parse_public_key(candidate: str) -> PublicKey:
    """Parse and normalize a public key line.

    Args:
        candidate: Raw text as pasted or submitted.

    Returns:
        The parsed key.

    Raises:
        InvalidFormatError: If the text is not a recognized public key.
    """
    if not isinstance(candidate, str):
        raise InvalidFormatError("public key must be text")

    text = normalize_key_text(candidate)
    if not text:
        raise InvalidFormatError("public key is empty")

    parts = text.split(" ", 2)
    if len(parts) < 2:
        raise InvalidFormatError("public key needs a type and a key blob")

    key_type = KeyType.from_name(parts[0])
    blob = parts[1]
    raw = _decode_blob(blob)

    if _embedded_type(raw) != key_type.value:
        raise InvalidFormatError("key blob does not match its declared type")

    comment = None
    if len(parts) == 3:
        comment = parts[2] or None

    return PublicKey(key_type=key_type, blob=blob, comment=comment)


def validate(candidate: str) -> bool:
    """Return True if ``candidate`` parses as a public key."""
    try:
        parse_public_key(candidate)
    except InvalidFormatError:
        return False
    return True
