"""Tests for the pairing service state machine."""

import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from sshpair.authorized_keys import AuthorizedKeysStore
from sshpair.errors import (
    InvalidFormatError,
    InvalidTokenError,
    MissingFieldError,
    NotFoundError,
    TokenExpiredError,
    WriteFailedError,
)
from sshpair.pairing.code import derive_code
from sshpair.pairing.service import PairingService, PairingStatus
from sshpair.pairing.token_manager import TokenManager


@pytest.fixture
def tokens(clock, token_factory):
    return TokenManager(ttl_seconds=900, clock=clock, token_factory=token_factory)


@pytest.fixture
def store(tmp_path):
    return AuthorizedKeysStore(tmp_path / ".ssh" / "authorized_keys")


@pytest.fixture
def service(tokens, store):
    return PairingService(
        tokens,
        store,
        local_key_reader=lambda: "ssh-ed25519 AAAAOFFERER offerer@box",
        timestamp=lambda: "2025-01-01T00:00:00Z",
    )


class TestStatus:
    """Tests for status reads."""

    @pytest.mark.asyncio
    async def test_reports_live_token_and_code(self, service):
        status = await service.status()

        assert isinstance(status, PairingStatus)
        assert status.token == "tok-0001"
        assert status.code == derive_code("tok-0001")
        assert status.paired is False
        assert status.expires_in == 900
        assert status.has_local_key is True

    @pytest.mark.asyncio
    async def test_has_local_key_false_without_key(self, tokens, store):
        service = PairingService(tokens, store, local_key_reader=lambda: None)
        assert (await service.status()).has_local_key is False

    @pytest.mark.asyncio
    async def test_expired_token_rotates_on_read(self, service, clock):
        """Status is not a pure read: an expired token is replaced."""
        clock.advance(901)
        status = await service.status()

        assert status.token == "tok-0002"
        assert status.expires_in == 900

    @pytest.mark.asyncio
    async def test_ttl_counts_down(self, service, clock):
        clock.advance(100)
        assert (await service.status()).expires_in == 800

    @pytest.mark.asyncio
    async def test_pairing_reported_once(self, service, make_key):
        """The read after a pairing reports it, then rotates to a fresh token."""
        await service.submit_key("tok-0001", make_key(), "alice", "laptop")

        first = await service.status()
        second = await service.status()

        assert first.paired is True
        assert first.last_peer_user == "alice"
        assert first.last_peer_host == "laptop"
        assert second.paired is False
        assert second.token == first.token

    def test_to_dict(self):
        status = PairingStatus(
            token="t", code="c", paired=False, expires_in=5, has_local_key=True
        )
        assert status.to_dict()["expires_in"] == 5


class TestSubmitKey:
    """Tests for key submission."""

    @pytest.mark.asyncio
    async def test_success_appends_key(self, service, store, make_key):
        """A valid key under the live token is written with attribution."""
        line = make_key()
        await service.submit_key("tok-0001", line, "alice", "laptop")

        content = store.path.read_text()
        assert "# sshpair 2025-01-01T00:00:00Z alice@laptop" in content
        assert line in content

    @pytest.mark.asyncio
    async def test_success_rotates_token(self, service, tokens, make_key):
        """The consumed token is replaced immediately."""
        rotated = await service.submit_key("tok-0001", make_key(), "alice", "laptop")

        assert rotated.token != "tok-0001"
        assert tokens.peek().paired is True
        assert tokens.peek().last_peer_user == "alice"

    @pytest.mark.asyncio
    async def test_second_submit_with_same_token_fails(self, service, store, make_key):
        """Exactly once per token: the replay fails and writes nothing."""
        await service.submit_key("tok-0001", make_key(seed=1), "alice", "laptop")
        before = store.path.read_text()

        with pytest.raises(InvalidTokenError):
            await service.submit_key("tok-0001", make_key(seed=2), "mallory", "evil")
        assert store.path.read_text() == before

    @pytest.mark.asyncio
    async def test_post_pairing_token_cannot_pair(self, service, make_key):
        rotated = await service.submit_key("tok-0001", make_key(), "alice", "laptop")
        with pytest.raises(InvalidTokenError):
            await service.submit_key(rotated.token, make_key(seed=2))

    @pytest.mark.asyncio
    async def test_wrong_token(self, service, make_key):
        with pytest.raises(InvalidTokenError):
            await service.submit_key("nope", make_key())

    @pytest.mark.asyncio
    async def test_expired_token_regardless_of_key(self, service, clock, make_key):
        """Expiry is checked before the key."""
        clock.advance(901)
        with pytest.raises(TokenExpiredError):
            await service.submit_key("tok-0001", make_key())
        with pytest.raises(TokenExpiredError):
            await service.submit_key("tok-0001", "not-a-key")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pubkey", [None, "", "   ", 42])
    async def test_missing_key(self, service, pubkey):
        with pytest.raises(MissingFieldError):
            await service.submit_key("tok-0001", pubkey)

    @pytest.mark.asyncio
    async def test_invalid_format(self, service, store):
        with pytest.raises(InvalidFormatError):
            await service.submit_key("tok-0001", "not-a-key")
        assert not store.path.exists()

    @pytest.mark.asyncio
    async def test_failed_append_keeps_token_valid(self, tokens, make_key):
        """A write failure leaves state unrotated so the caller can retry."""
        failing = MagicMock()
        failing.append.side_effect = WriteFailedError("disk full")
        service = PairingService(tokens, failing)

        with pytest.raises(WriteFailedError):
            await service.submit_key("tok-0001", make_key())

        assert tokens.peek().token == "tok-0001"
        assert tokens.peek().paired is False

        failing.append.side_effect = None
        failing.append.return_value = True
        await service.submit_key("tok-0001", make_key())
        assert tokens.peek().paired is True

    @pytest.mark.asyncio
    async def test_peer_fields_cannot_inject_entries(self, service, store, make_key):
        """A newline in the reported user does not add an unvalidated line."""
        line = make_key()
        smuggled = f'command="id" {make_key(seed=9, comment="evil")}'
        await service.submit_key("tok-0001", line, f"bob\n{smuggled}", "h")

        lines = [l for l in store.path.read_text().splitlines() if l]
        assert len(lines) == 2
        assert lines[0].startswith("# sshpair ")
        assert lines[1] == line
        assert "\n" not in service.tokens.peek().last_peer_user

    @pytest.mark.asyncio
    async def test_append_runs_off_the_event_loop(self, tokens, make_key):
        """A blocked file lock must not stall other requests."""
        loop_thread = threading.get_ident()
        seen = []

        class RecordingStore:
            def append(self, key, comment):
                seen.append(threading.get_ident())
                return True

        service = PairingService(tokens, RecordingStore())
        await service.submit_key("tok-0001", make_key())

        assert seen and seen[0] != loop_thread

    @pytest.mark.asyncio
    async def test_concurrent_submissions_one_winner(self, service, store, make_key):
        """Racing submissions under one token: one succeeds, the rest are invalid."""
        results = await asyncio.gather(
            *(
                service.submit_key("tok-0001", make_key(seed=i), f"user{i}", "host")
                for i in range(1, 6)
            ),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 4
        assert all(isinstance(f, InvalidTokenError) for f in failures)
        assert len(store.keys()) == 1


class TestResolve:
    """Tests for code resolution through the service."""

    @pytest.mark.asyncio
    async def test_resolves_current_code(self, service):
        assert await service.resolve(derive_code("tok-0001")) == "tok-0001"

    @pytest.mark.asyncio
    async def test_stale_code_after_reset(self, service):
        code = derive_code("tok-0001")
        await service.reset()
        with pytest.raises(NotFoundError):
            await service.resolve(code)


class TestFetchLocalKey:
    """Tests for serving the offerer's key."""

    @pytest.mark.asyncio
    async def test_returns_key(self, service):
        assert (await service.fetch_local_key("tok-0001")).startswith("ssh-ed25519")

    @pytest.mark.asyncio
    async def test_requires_token(self, service):
        with pytest.raises(InvalidTokenError):
            await service.fetch_local_key(None)

    @pytest.mark.asyncio
    async def test_expired(self, service, clock):
        clock.advance(901)
        with pytest.raises(TokenExpiredError):
            await service.fetch_local_key("tok-0001")

    @pytest.mark.asyncio
    async def test_no_local_key(self, tokens, store):
        service = PairingService(tokens, store, local_key_reader=lambda: None)
        with pytest.raises(NotFoundError):
            await service.fetch_local_key("tok-0001")


class TestReset:
    """Tests for explicit reset."""

    @pytest.mark.asyncio
    async def test_reset_returns_new_token(self, service, tokens):
        token = await service.reset()
        assert token == "tok-0002"
        assert tokens.peek().token == token

    @pytest.mark.asyncio
    async def test_old_token_rejected_after_reset(self, service, make_key):
        await service.reset()
        with pytest.raises(InvalidTokenError):
            await service.submit_key("tok-0001", make_key())
