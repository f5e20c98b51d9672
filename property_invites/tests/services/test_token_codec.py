"""
Tests for invite token generation, hashing and normalization.
"""

import hashlib
import re

import pytest

from property_invites.services import token_codec


class TestGenerate:
    """Tests for token_codec.generate."""

    def test_default_token_is_twelve_uppercase_alphanumerics(self):
        generated = token_codec.generate()
        assert re.fullmatch(r"[A-Z0-9]{12}", generated.plaintext)

    @pytest.mark.parametrize("length", [8, 12, 20, 40])
    def test_honors_requested_length(self, length):
        assert len(token_codec.generate(length).plaintext) == length

    def test_salt_is_sixteen_random_bytes_hex(self):
        generated = token_codec.generate()
        assert re.fullmatch(r"[0-9a-f]{32}", generated.salt)

    def test_hash_is_sha256_of_token_then_salt(self):
        generated = token_codec.generate()
        expected = hashlib.sha256((generated.plaintext + generated.salt).encode()).hexdigest()
        assert generated.token_hash == expected

    def test_ten_thousand_tokens_have_no_duplicates(self):
        tokens = {token_codec.generate().plaintext for _ in range(10_000)}
        assert len(tokens) == 10_000

    def test_salts_differ_between_tokens(self):
        assert token_codec.generate().salt != token_codec.generate().salt

    def test_short_chunks_are_topped_up(self, monkeypatch):
        """Chunks that strip down to a few characters still yield a full token."""
        chunks = iter(["AB", "C", "DEFGH", "IJKLMNOP"])
        monkeypatch.setattr(token_codec, "_random_chunk", lambda: next(chunks))
        assert token_codec.generate(12).plaintext == "ABCDEFGHIJKL"

    def test_repr_hides_plaintext(self):
        generated = token_codec.generate()
        assert generated.plaintext not in repr(generated)

    def test_rejects_non_positive_length(self):
        with pytest.raises(ValueError):
            token_codec.generate(0)


class TestVerify:
    """Tests for token_codec.verify."""

    def test_accepts_matching_token(self):
        generated = token_codec.generate()
        assert token_codec.verify(generated.plaintext, generated.token_hash, generated.salt)

    def test_rejects_other_token(self):
        generated = token_codec.generate()
        other = token_codec.generate()
        assert not token_codec.verify(other.plaintext, generated.token_hash, generated.salt)

    def test_rejects_wrong_salt(self):
        generated = token_codec.generate()
        assert not token_codec.verify(generated.plaintext, generated.token_hash, "00" * 16)


class TestNormalize:
    """Tests for token_codec.normalize."""

    def test_strips_and_uppercases(self):
        assert token_codec.normalize("  abcd1234efgh \n") == "ABCD1234EFGH"

    @pytest.mark.parametrize("candidate", [
        None,
        "",
        "   ",
        "ABC",
        "ABCD1234EFGH5",
        "ABCD-234EFGH",
        "ABCD 1234EFG",
    ])
    def test_rejects_malformed(self, candidate):
        assert token_codec.normalize(candidate) is None

    def test_respects_custom_length(self):
        assert token_codec.normalize("abcdefgh", length=8) == "ABCDEFGH"


class TestFingerprint:
    """Tests for token_codec.fingerprint."""

    def test_deterministic_for_same_pepper(self):
        assert token_codec.fingerprint("ABCDEFGHIJKL", "p") == token_codec.fingerprint("ABCDEFGHIJKL", "p")

    def test_depends_on_pepper(self):
        assert token_codec.fingerprint("ABCDEFGHIJKL", "p1") != token_codec.fingerprint("ABCDEFGHIJKL", "p2")

    def test_is_not_the_plain_sha256(self):
        assert token_codec.fingerprint("ABCDEFGHIJKL", "p") != hashlib.sha256(b"ABCDEFGHIJKL").hexdigest()


class TestPropertyCode:
    """Tests for property join codes."""

    def test_generated_code_format(self):
        for _ in range(50):
            assert re.fullmatch(r"[A-Z]{3}[0-9]{3}", token_codec.generate_property_code())

    @pytest.mark.parametrize("typed, expected", [
        ("kqz042", "KQZ042"),
        ("  KQZ042 ", "KQZ042"),
        ("KQ0042", None),
        ("KQZ04", None),
        ("KQZ-042", None),
        ("", None),
        (None, None),
    ])
    def test_normalize(self, typed, expected):
        assert token_codec.normalize_property_code(typed) == expected
