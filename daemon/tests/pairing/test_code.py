"""Tests for short relay codes."""

import hashlib

import pytest

from sshpair.errors import NotFoundError
from sshpair.pairing.code import CODE_LENGTH, derive_code, is_code, resolve_code
from sshpair.pairing.token_manager import generate_token


class TestDeriveCode:
    """Tests for derive_code."""

    def test_is_sha1_prefix(self):
        """Code is the first 8 hex chars of SHA-1 over the token."""
        token = "0123456789abcdef"
        assert derive_code(token) == hashlib.sha1(token.encode()).hexdigest()[:8]

    def test_is_deterministic(self):
        token = generate_token()
        assert derive_code(token) == derive_code(token)

    def test_fixed_length_hex(self):
        code = derive_code(generate_token())
        assert len(code) == CODE_LENGTH
        assert is_code(code)

    def test_distinct_tokens_give_distinct_codes(self):
        """Collisions over a few hundred random tokens are negligible."""
        codes = {derive_code(generate_token()) for _ in range(500)}
        assert len(codes) == 500


class TestIsCode:
    """Tests for the code shape check."""

    @pytest.mark.parametrize("value", ["1a2b3c4d", "ABCDEF01", " 1a2b3c4d "])
    def test_accepts(self, value):
        assert is_code(value)

    @pytest.mark.parametrize("value", ["", "1a2b3c4", "1a2b3c4d5", "zzzzzzzz"])
    def test_rejects(self, value):
        assert not is_code(value)


class TestResolveCode:
    """Tests for resolve_code."""

    def test_resolves_current_token(self):
        token = generate_token()
        assert resolve_code(derive_code(token), token) == token

    def test_case_insensitive(self):
        token = generate_token()
        assert resolve_code(derive_code(token).upper(), token) == token

    def test_stale_code_not_found(self):
        """Only the current token's code resolves."""
        old = generate_token()
        with pytest.raises(NotFoundError):
            resolve_code(derive_code(old), generate_token())

    def test_empty_code_not_found(self):
        with pytest.raises(NotFoundError):
            resolve_code("", generate_token())
