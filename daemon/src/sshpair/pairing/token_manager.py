"""Pairing token lifecycle.

There is exactly one live credential at a time. It is replaced on explicit
reset, after a successful pairing, and lazily whenever a status read finds
it expired or already used.
"""

import logging
import secrets
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from sshpair.config import DEFAULT_TOKEN_TTL
from sshpair.errors import InvalidTokenError, TokenExpiredError

logger = logging.getLogger(__name__)

TOKEN_BYTES = 8


def generate_token() -> str:
    """Generate an unpredictable token (16 hex chars)."""
    return secrets.token_hex(TOKEN_BYTES)


@dataclass(frozen=True)
class Credential:
    """The live pairing credential.

    Attributes:
        token: Bearer token, the only capability in the protocol.
        issued_at: Clock reading when the token was issued.
        ttl_seconds: Validity window.
        paired: True once a key was accepted; the credential is then
            readable for status but unusable for pairing.
        last_peer_user: User name reported by the last paired peer.
        last_peer_host: Host name reported by the last paired peer.
    """

    token: str
    issued_at: float
    ttl_seconds: int
    paired: bool = False
    last_peer_user: Optional[str] = None
    last_peer_host: Optional[str] = None

    def age(self, now: float) -> float:
        return now - self.issued_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl_seconds

    def is_valid(self, now: float) -> bool:
        """Usable for pairing: unexpired and not yet paired."""
        return not self.is_expired(now) and not self.paired

    def ttl_remaining(self, now: float) -> int:
        return max(0, int(self.ttl_seconds - max(0.0, self.age(now))))


class TokenManager:
    """Owns the single live credential.

    Not synchronized on its own; callers serialize access (see
    ``PairingService``).
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TOKEN_TTL,
        clock: Callable[[], float] = time.monotonic,
        token_factory: Callable[[], str] = generate_token,
    ):
        """Initialize and issue the first token.

        Args:
            ttl_seconds: Token validity window.
            clock: Monotonic time source, injectable for tests.
            token_factory: Token generator, injectable for tests.
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._token_factory = token_factory
        self._credential = self._new_credential(previous=None)

    def now(self) -> float:
        return self._clock()

    def _new_credential(
        self, previous: Optional[Credential], paired: bool = False
    ) -> Credential:
        token = self._token_factory()
        # A repeat would let a consumed token be replayed
        while previous is not None and token == previous.token:
            token = self._token_factory()
        return Credential(
            token=token,
            issued_at=self._clock(),
            ttl_seconds=self.ttl_seconds,
            paired=paired,
            last_peer_user=previous.last_peer_user if previous else None,
            last_peer_host=previous.last_peer_host if previous else None,
        )

    def issue(self) -> Credential:
        """Replace the live credential with a fresh, unpaired one."""
        self._credential = self._new_credential(self._credential)
        logger.debug(f"Issued pairing token {self._credential.token[:4]}...")
        return self._credential

    def peek(self) -> Credential:
        """Return the live credential without rotating it."""
        return self._credential

    def current_if_valid(self, now: Optional[float] = None) -> Credential:
        """Return the live credential, rotating it first if unusable.

        This read mutates state: an expired or already paired credential
        is replaced before being returned.
        """
        now = self._clock() if now is None else now
        if not self._credential.is_valid(now):
            return self.issue()
        return self._credential

    def invalidate(self) -> Credential:
        """Explicit reset, regardless of expiry or pairing."""
        logger.info("Pairing token reset")
        return self.issue()

    def mark_paired(
        self, peer_user: Optional[str], peer_host: Optional[str]
    ) -> Credential:
        """Record a successful pairing and rotate the consumed token.

        The replacement credential carries ``paired=True`` so the next
        status read reports the pairing, then rotates again.
        """
        previous = replace(
            self._credential, last_peer_user=peer_user, last_peer_host=peer_host
        )
        self._credential = self._new_credential(previous, paired=True)
        return self._credential

    def check(
        self,
        token: Optional[str],
        now: Optional[float] = None,
        for_pairing: bool = False,
    ) -> Credential:
        """Verify ``token`` is the live, unexpired token.

        Args:
            token: Token presented by the caller.
            now: Clock reading; defaults to the manager clock.
            for_pairing: Also reject a credential that is already paired.

        Returns:
            The live credential.

        Raises:
            InvalidTokenError: Token is not the live one.
            TokenExpiredError: Token is live but past its TTL.
        """
        now = self._clock() if now is None else now
        credential = self._credential
        # Bytes, since compare_digest rejects non-ASCII str
        presented = str(token).encode("utf-8", errors="replace") if token else b""
        if not presented or not secrets.compare_digest(
            presented, credential.token.encode("utf-8")
        ):
            raise InvalidTokenError("invalid token")
        if for_pairing and credential.paired:
            raise InvalidTokenError("invalid token")
        if credential.is_expired(now):
            raise TokenExpiredError("token expired")
        return credential
