"""
PKCE (RFC 7636) pair and state generation.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass
from typing import Callable

# Bytes of entropy fed to the token source (both well above 128 bits).
STATE_BYTES = 32
VERIFIER_BYTES = 64

TokenSource = Callable[[int], str]


@dataclass(frozen=True)
class PkcePair:
    state: str
    code_verifier: str
    code_challenge: str

    def __repr__(self) -> str:
        return f"PkcePair(state={self.state[:8]}…, code_verifier=<redacted>)"


def challenge_for(code_verifier: str) -> str:
    """S256 challenge: unpadded base64url of sha256(verifier)."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class PkceGenerator:
    """
    Produces a fresh (state, code_verifier, code_challenge) triple.

    ``token_source`` defaults to :func:`secrets.token_urlsafe`; tests pass a
    deterministic callable taking the byte count.
    """

    def __init__(self, token_source: TokenSource = secrets.token_urlsafe):
        self._token_source = token_source

    def generate(self) -> PkcePair:
        state = self._token_source(STATE_BYTES)
        # RFC 7636 caps the verifier at 128 characters
        code_verifier = self._token_source(VERIFIER_BYTES)[:128]
        return PkcePair(
            state=state,
            code_verifier=code_verifier,
            code_challenge=challenge_for(code_verifier),
        )
