"""
Media crypto tests.

Keys are checked against an HKDF written directly on top of hmac so that a
wrong salt, info label or byte offset cannot hide behind the library call.
"""

from __future__ import annotations

import base64
import hashlib
import hmac

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from hypothesis import given, settings, strategies as st

from ledgerbot.core.errors import DecryptionFailure
from ledgerbot.services import crypto

MEDIA_KEY = bytes(range(32))


def reference_hkdf(key: bytes, info: bytes, length: int = 112, salt: bytes = b"\x00" * 32) -> bytes:
    prk = hmac.new(salt, key, hashlib.sha256).digest()
    output, block, counter = b"", b"", 1
    while len(output) < length:
        block = hmac.new(prk, block + info + bytes([counter]), hashlib.sha256).digest()
        output += block
        counter += 1
    return output[:length]


def encrypt_media(
    plaintext: bytes,
    media_key: bytes,
    info: bytes = b"WhatsApp Audio Keys",
    salt: bytes = b"\x00" * 32,
) -> bytes:
    expanded = reference_hkdf(media_key, info, salt=salt)
    iv, cipher_key, mac_key = expanded[:16], expanded[16:48], expanded[48:80]

    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(cipher_key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    mac = hmac.new(mac_key, iv + ciphertext, hashlib.sha256).digest()[:10]
    return ciphertext + mac


class TestDeriveKeys:
    @pytest.mark.parametrize(
        "kind,label",
        [
            ("audio", b"WhatsApp Audio Keys"),
            ("image", b"WhatsApp Image Keys"),
            ("video", b"WhatsApp Video Keys"),
            ("document", b"WhatsApp Document Keys"),
        ],
    )
    def test_offsets_match_reference_expansion(self, kind: str, label: bytes):
        expanded = reference_hkdf(MEDIA_KEY, label)
        keys = crypto.derive_keys(MEDIA_KEY, kind)

        assert keys.iv == expanded[0:16]
        assert keys.cipher_key == expanded[16:48]
        assert keys.mac_key == expanded[48:80]
        assert len(keys.iv) == 16
        assert len(keys.cipher_key) == 32

    def test_kinds_produce_distinct_keys(self):
        assert crypto.derive_keys(MEDIA_KEY, "audio") != crypto.derive_keys(MEDIA_KEY, "image")

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(DecryptionFailure):
            crypto.derive_keys(MEDIA_KEY, "sticker")


class TestDecrypt:
    def test_round_trip_recovers_plaintext(self):
        plaintext = b"OggS\x00voice-note-payload" * 7
        blob = encrypt_media(plaintext, MEDIA_KEY)

        assert crypto.decrypt(blob, MEDIA_KEY, "audio") == plaintext

    def test_round_trip_with_mac_verification(self):
        plaintext = b"\xff\xd8\xff receipt jpeg"
        blob = encrypt_media(plaintext, MEDIA_KEY, info=b"WhatsApp Image Keys")

        assert crypto.decrypt(blob, MEDIA_KEY, "image", verify_mac=True) == plaintext

    def test_tampered_blob_fails_mac_check(self):
        blob = bytearray(encrypt_media(b"audio bytes", MEDIA_KEY))
        blob[0] ^= 0x01

        with pytest.raises(DecryptionFailure, match="MAC"):
            crypto.decrypt(bytes(blob), MEDIA_KEY, "audio", verify_mac=True)

    def test_tampered_blob_is_accepted_without_mac_check(self):
        blob = bytearray(encrypt_media(b"audio bytes" * 4, MEDIA_KEY))
        blob[0] ^= 0x01

        assert crypto.decrypt(bytes(blob), MEDIA_KEY, "audio") != b"audio bytes" * 4

    def test_wrong_info_label_yields_garbage_not_error(self):
        plaintext = b"voice note" * 10
        blob = encrypt_media(plaintext, MEDIA_KEY, info=b"WhatsApp Audio Keys")

        assert crypto.decrypt(blob, MEDIA_KEY, "image") != plaintext

    def test_wrong_salt_yields_garbage_not_error(self):
        plaintext = b"voice note" * 10
        blob = encrypt_media(plaintext, MEDIA_KEY, salt=b"\x01" * 32)

        assert crypto.decrypt(blob, MEDIA_KEY, "audio") != plaintext

    @pytest.mark.parametrize("size", [0, 10, 15, 10 + 17])
    def test_unaligned_ciphertext_raises(self, size: int):
        with pytest.raises(DecryptionFailure):
            crypto.decrypt(b"\x00" * size, MEDIA_KEY, "audio")

    @given(
        plaintext=st.binary(min_size=0, max_size=512),
        media_key=st.binary(min_size=32, max_size=32),
    )
    @settings(max_examples=50, deadline=None)
    def test_round_trip_property(self, plaintext: bytes, media_key: bytes):
        blob = encrypt_media(plaintext, media_key)
        assert crypto.decrypt(blob, media_key, "audio", verify_mac=True) == plaintext


class TestStripPadding:
    def test_valid_padding_is_removed(self):
        assert crypto.strip_padding(b"abc" + b"\x0d" * 13) == b"abc"

    def test_invalid_padding_is_kept(self):
        data = b"abcdefghijklmno\x05"
        assert crypto.strip_padding(data) == data

    def test_zero_pad_byte_is_kept(self):
        data = b"a" * 15 + b"\x00"
        assert crypto.strip_padding(data) == data


class TestMediaKeyDecoding:
    def test_base64_string(self):
        assert crypto.decode_media_key(base64.b64encode(MEDIA_KEY).decode()) == MEDIA_KEY

    def test_data_url(self):
        encoded = "data:application/octet-stream;base64," + base64.b64encode(MEDIA_KEY).decode()
        assert crypto.decode_media_key(encoded) == MEDIA_KEY

    def test_serialised_byte_map(self):
        as_map = {str(index): value for index, value in enumerate(MEDIA_KEY)}
        assert crypto.decode_media_key(as_map) == MEDIA_KEY

    def test_buffer_object(self):
        assert crypto.decode_media_key({"type": "Buffer", "data": list(MEDIA_KEY)}) == MEDIA_KEY

    def test_int_list(self):
        assert crypto.decode_media_key(list(MEDIA_KEY)) == MEDIA_KEY

    def test_invalid_base64(self):
        with pytest.raises(DecryptionFailure):
            crypto.decode_media_key("not base64 at all!")

    def test_unsupported_type(self):
        with pytest.raises(DecryptionFailure):
            crypto.decode_media_key(12345)

    @pytest.mark.parametrize(
        "value",
        [
            {"type": "Buffer"},
            {"0": 1, "x": 2},
            {"0": "a"},
            [300, 1, 2],
            [-1],
            ["12"],
        ],
    )
    def test_malformed_buffers_raise_decryption_failure(self, value):
        with pytest.raises(DecryptionFailure, match="Malformed mediaKey"):
            crypto.decode_media_key(value)
