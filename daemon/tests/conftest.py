"""Pytest configuration and shared fixtures."""

import base64
import struct

import pytest


def build_public_key(
    key_type: str = "ssh-ed25519",
    comment: str | None = "alice@laptop",
    seed: int = 1,
) -> str:
    """Build a well-formed public key line with a fake key body."""
    name = key_type.encode("ascii")
    body = bytes([seed]) * 32
    blob = struct.pack(">I", len(name)) + name + struct.pack(">I", len(body)) + body
    line = f"{key_type} {base64.b64encode(blob).decode('ascii')}"
    return f"{line} {comment}" if comment else line


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingTokens:
    """Deterministic token factory: tok-0001, tok-0002, ..."""

    def __init__(self):
        self.count = 0

    def __call__(self) -> str:
        self.count += 1
        return f"tok-{self.count:04d}"


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from sshpair.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def make_key():
    """Factory for well-formed public key lines."""
    return build_public_key


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token_factory():
    return CountingTokens()
