"""Pairing service.

Orchestrates the pairing flow on the offerer:

1. A client polls status, which may rotate the token.
2. The token (or its short code) is relayed out of band.
3. The accepter submits its public key under that token.
4. The key is validated and appended to authorized_keys, then the token
   is rotated so it cannot be replayed.

All state transitions run under one asyncio lock.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol

from sshpair.authorized_keys import attribution_comment, clean_peer_field
from sshpair.errors import MissingFieldError, NotFoundError
from sshpair.keys import PublicKey, parse_public_key
from sshpair.pairing.code import derive_code, resolve_code
from sshpair.pairing.token_manager import Credential, TokenManager

logger = logging.getLogger(__name__)


class KeyStore(Protocol):
    """Protocol for the authorized_keys collaborator."""

    def append(self, key: PublicKey, comment: str) -> bool:
        """Append a key with an attribution comment."""
        ...


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class PairingStatus:
    """Result of a status read."""

    token: str
    code: str
    paired: bool
    expires_in: int
    has_local_key: bool
    last_peer_user: Optional[str] = None
    last_peer_host: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "code": self.code,
            "paired": self.paired,
            "expires_in": self.expires_in,
            "has_local_key": self.has_local_key,
            "last_peer_user": self.last_peer_user,
            "last_peer_host": self.last_peer_host,
        }


class PairingService:
    """Owns the pairing credential and its state transitions.

    States per credential: idle (waiting for a key) and paired (key
    accepted, token already rotated). Rotation returns to idle.
    """

    def __init__(
        self,
        tokens: TokenManager,
        key_store: KeyStore,
        local_key_reader: Callable[[], Optional[str]] = lambda: None,
        timestamp: Callable[[], str] = utc_timestamp,
    ):
        """Initialize pairing service.

        Args:
            tokens: Token manager; owned by this service from now on.
            key_store: authorized_keys collaborator.
            local_key_reader: Returns the offerer's own public key or None.
            timestamp: Source of attribution timestamps.
        """
        self.tokens = tokens
        self.key_store = key_store
        self.local_key_reader = local_key_reader
        self._timestamp = timestamp
        self.lock = asyncio.Lock()

    async def status(self, now: Optional[float] = None) -> PairingStatus:
        """Report the live credential.

        Not a pure read: an expired or already paired credential is rotated
        first. A pairing is reported once, on the read that retires it.
        """
        async with self.lock:
            now = self.tokens.now() if now is None else now
            before = self.tokens.peek()
            current = self.tokens.current_if_valid(now)
            return PairingStatus(
                token=current.token,
                code=derive_code(current.token),
                paired=before.paired,
                expires_in=current.ttl_remaining(now),
                has_local_key=self.local_key_reader() is not None,
                last_peer_user=current.last_peer_user,
                last_peer_host=current.last_peer_host,
            )

    async def resolve(self, code: str) -> str:
        """Resolve a relay code to the live token.

        Raises:
            NotFoundError: If the code does not match the live token.
        """
        async with self.lock:
            token = resolve_code(code, self.tokens.peek().token)
        logger.info(f"Resolved code {code[:4]}...")
        return token

    async def submit_key(
        self,
        token: Optional[str],
        pubkey: Any,
        peer_user: Optional[str] = None,
        peer_host: Optional[str] = None,
        now: Optional[float] = None,
    ) -> Credential:
        """Accept a public key under ``token``.

        Args:
            token: Pairing token presented by the accepter.
            pubkey: Public key text.
            peer_user: User name reported by the accepter.
            peer_host: Host name reported by the accepter.
            now: Clock reading; defaults to the token manager clock.

        Returns:
            The credential that replaced the consumed one.

        Raises:
            InvalidTokenError: Token is not live or was already used.
            TokenExpiredError: Token is past its TTL.
            MissingFieldError: No key supplied.
            InvalidFormatError: Key text is malformed.
            WriteFailedError: authorized_keys could not be written; the
                token stays valid for a retry.
        """
        async with self.lock:
            self.tokens.check(token, now=now, for_pairing=True)

            if not isinstance(pubkey, str) or not pubkey.strip():
                raise MissingFieldError("missing pubkey")
            key = parse_public_key(pubkey)

            peer_user = clean_peer_field(peer_user)
            peer_host = clean_peer_field(peer_host)
            comment = attribution_comment(self._timestamp(), peer_user, peer_host)
            # Off the loop: flock can wait on another process
            added = await asyncio.to_thread(self.key_store.append, key, comment)

            rotated = self.tokens.mark_paired(peer_user, peer_host)

        logger.info(
            f"Paired {peer_user or '?'}@{peer_host or '?'} "
            f"({key.fingerprint()}{'' if added else ', already present'})"
        )
        return rotated

    async def fetch_local_key(
        self, token: Optional[str], now: Optional[float] = None
    ) -> str:
        """Return the offerer's public key to a token holder.

        Raises:
            InvalidTokenError: Token is not live.
            TokenExpiredError: Token is past its TTL.
            NotFoundError: The offerer has no public key.
        """
        async with self.lock:
            self.tokens.check(token, now=now)
        key = self.local_key_reader()
        if not key:
            raise NotFoundError("no public key found on offerer")
        return key

    async def reset(self) -> str:
        """Invalidate the live token and return its replacement."""
        async with self.lock:
            return self.tokens.invalidate().token
