"""
Tests for PKCE pair generation.
"""

import base64
import hashlib
import re

from broker.pkce import STATE_BYTES, VERIFIER_BYTES, PkceGenerator, challenge_for

_URLSAFE = re.compile(r"^[A-Za-z0-9_-]+$")


class TestChallenge:
    def test_rfc7636_appendix_b_vector(self):
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert challenge_for(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_challenge_is_unpadded_base64url_sha256(self):
        verifier = "x" * 50
        expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).rstrip(b"=")
        assert challenge_for(verifier) == expected.decode()
        assert "=" not in challenge_for(verifier)


class TestPkceGenerator:
    def test_generated_pair_is_consistent(self):
        pair = PkceGenerator().generate()
        assert pair.code_challenge == challenge_for(pair.code_verifier)
        assert _URLSAFE.match(pair.state)
        assert _URLSAFE.match(pair.code_verifier)

    def test_verifier_length_within_rfc_bounds(self):
        pair = PkceGenerator().generate()
        assert 43 <= len(pair.code_verifier) <= 128

    def test_fresh_values_each_call(self):
        gen = PkceGenerator()
        pairs = [gen.generate() for _ in range(50)]
        assert len({p.state for p in pairs}) == 50
        assert len({p.code_verifier for p in pairs}) == 50

    def test_token_source_receives_byte_counts(self):
        calls = []

        def source(n):
            calls.append(n)
            return "a" * (n + 100)

        pair = PkceGenerator(source).generate()
        assert calls == [STATE_BYTES, VERIFIER_BYTES]
        assert len(pair.code_verifier) == 128

    def test_repr_hides_verifier(self):
        pair = PkceGenerator(lambda n: "s" * 43 if n == STATE_BYTES else "v" * 86).generate()
        assert "v" * 10 not in repr(pair)
