"""Pairing module for sshpair.

Provides the pairing authorization state machine:
- Token issuance, rotation and expiry
- Short relay codes
- Public key submission
"""

from .code import derive_code, is_code, resolve_code
from .service import PairingService, PairingStatus
from .token_manager import Credential, TokenManager

__all__ = [
    "Credential",
    "PairingService",
    "PairingStatus",
    "TokenManager",
    "derive_code",
    "is_code",
    "resolve_code",
]
