"""Short relay codes.

A code is the first eight hex characters of SHA-1 over the token. It is a
convenience for reading a token aloud, not a secret: holding the code only
lets you ask the live service for the current token.
"""

import hashlib
import re

from sshpair.errors import NotFoundError

CODE_LENGTH = 8
_CODE_PATTERN = re.compile(r"^[0-9a-f]{%d}$" % CODE_LENGTH)


def derive_code(token: str) -> str:
    """Derive the relay code for ``token``."""
    return hashlib.sha1(token.encode("utf-8")).hexdigest()[:CODE_LENGTH]


def is_code(value: str) -> bool:
    """Check whether ``value`` has the shape of a relay code."""
    return bool(_CODE_PATTERN.match(value.strip().lower()))


def resolve_code(code: str, current_token: str) -> str:
    """Resolve ``code`` to the current token.

    Only the current token is resolvable; there is no history.

    Raises:
        NotFoundError: If the code does not belong to the current token.
    """
    if not code or code.strip().lower() != derive_code(current_token):
        raise NotFoundError("not found")
    return current_token
