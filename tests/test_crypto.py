"""
Tests for CryptoBox envelope encryption.

Property tests cover round-tripping and tamper detection.
"""

import json

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from chatgate.exceptions import ConfigError, DecryptError
from chatgate.services.crypto import CryptoBox, Envelope, decrypt, encrypt

TEST_MASTER_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
OTHER_KEY = "ff" * 32

plaintexts = st.text(max_size=512)
hex_keys = st.binary(min_size=32, max_size=32).map(bytes.hex)


class TestCryptoBoxConstruction:
    @pytest.mark.parametrize(
        "bad_key",
        [None, "", "abc", "0" * 63, "0" * 65, "zz" * 32, TEST_MASTER_KEY + "\n"],
    )
    def test_rejects_malformed_master_key(self, bad_key):
        with pytest.raises(ConfigError):
            CryptoBox(bad_key)

    def test_accepts_upper_case_hex(self):
        CryptoBox(TEST_MASTER_KEY.upper())


class TestRoundTrip:
    @given(plaintext=plaintexts, key=hex_keys)
    @settings(max_examples=50)
    def test_decrypt_inverts_encrypt(self, plaintext: str, key: str) -> None:
        assert decrypt(encrypt(plaintext, key), key) == plaintext

    def test_fresh_nonce_every_encryption(self, crypto_box: CryptoBox) -> None:
        first = crypto_box.encrypt("hf_secret")
        second = crypto_box.encrypt("hf_secret")
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext
        assert len(first.iv) == 12

    def test_storage_format_round_trips(self, crypto_box: CryptoBox) -> None:
        envelope = crypto_box.encrypt("sk-test")
        raw = envelope.to_storage()

        assert set(json.loads(raw)) == {"iv", "ct"}
        assert Envelope.from_storage(raw) == envelope
        assert crypto_box.decrypt(Envelope.from_storage(raw)) == "sk-test"


class TestTamperDetection:
    @given(plaintext=plaintexts, position=st.integers(min_value=0))
    @settings(max_examples=50)
    def test_flipped_ciphertext_bit_is_rejected(self, plaintext: str, position: int) -> None:
        box = CryptoBox(TEST_MASTER_KEY)
        envelope = box.encrypt(plaintext)
        ct = bytearray(envelope.ciphertext)
        ct[position % len(ct)] ^= 0x01

        with pytest.raises(DecryptError):
            box.decrypt(Envelope(iv=envelope.iv, ciphertext=bytes(ct)))

    @given(plaintext=plaintexts, position=st.integers(min_value=0, max_value=11))
    @settings(max_examples=50)
    def test_flipped_iv_bit_is_rejected(self, plaintext: str, position: int) -> None:
        box = CryptoBox(TEST_MASTER_KEY)
        envelope = box.encrypt(plaintext)
        iv = bytearray(envelope.iv)
        iv[position] ^= 0x80

        with pytest.raises(DecryptError):
            box.decrypt(Envelope(iv=bytes(iv), ciphertext=envelope.ciphertext))

    def test_wrong_master_key_is_rejected(self) -> None:
        envelope = encrypt("hf_secret", TEST_MASTER_KEY)
        with pytest.raises(DecryptError):
            decrypt(envelope, OTHER_KEY)

    @pytest.mark.parametrize(
        "raw",
        ["not json", "{}", '{"iv": "%%%", "ct": "AA=="}', "[]", '{"iv": "AAAA"}'],
    )
    def test_malformed_storage_is_decrypt_error(self, raw: str) -> None:
        with pytest.raises(DecryptError):
            Envelope.from_storage(raw)

    def test_short_iv_is_decrypt_error(self, crypto_box: CryptoBox) -> None:
        envelope = crypto_box.encrypt("x")
        with pytest.raises(DecryptError):
            crypto_box.decrypt(Envelope(iv=envelope.iv[:8], ciphertext=envelope.ciphertext))
