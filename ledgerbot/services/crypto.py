"""
WhatsApp media encryption primitives.

Media attachments are encrypted with AES-256-CBC using keys expanded from the
32-byte `mediaKey` carried in the message:

    HKDF-SHA256(mediaKey, salt=32 zero bytes, info="WhatsApp <Kind> Keys", L=112)
      [0:16]   iv
      [16:48]  cipher key
      [48:80]  mac key
      [80:112] unused (ref key)

The downloaded blob is `ciphertext || mac[:10]`.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Literal

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ledgerbot.core.errors import DecryptionFailure

MediaKind = Literal["audio", "image", "video", "document"]

MEDIA_INFO_LABELS: dict[str, bytes] = {
    "audio": b"WhatsApp Audio Keys",
    "image": b"WhatsApp Image Keys",
    "video": b"WhatsApp Video Keys",
    "document": b"WhatsApp Document Keys",
}

HKDF_SALT = b"\x00" * 32
EXPANDED_KEY_LENGTH = 112
MAC_TAG_LENGTH = 10
BLOCK_SIZE = 16


@dataclass(frozen=True)
class MediaKeys:
    iv: bytes
    cipher_key: bytes
    mac_key: bytes


def derive_keys(media_key: bytes, media_kind: str) -> MediaKeys:
    """Expand a media key into the IV, cipher key and MAC key for `media_kind`."""
    try:
        info = MEDIA_INFO_LABELS[media_kind]
    except KeyError as exc:
        raise DecryptionFailure(f"Unsupported media kind: {media_kind}") from exc

    derived = HKDF(
        algorithm=hashes.SHA256(),
        length=EXPANDED_KEY_LENGTH,
        salt=HKDF_SALT,
        info=info,
    ).derive(media_key)

    return MediaKeys(
        iv=derived[0:16],
        cipher_key=derived[16:48],
        mac_key=derived[48:80],
    )


def decrypt(
    encrypted_blob: bytes,
    media_key: bytes,
    media_kind: str,
    verify_mac: bool = False,
) -> bytes:
    """
    Decrypt a downloaded media blob.

    The trailing MAC tag is dropped; it is only checked when `verify_mac` is set.
    Padding is removed only when it is well-formed PKCS#7, so a wrong key yields
    garbage bytes rather than an error.

    Raises:
        DecryptionFailure: if the trimmed ciphertext is not block aligned, the MAC
            does not match (with `verify_mac`), or the cipher call fails.
    """
    keys = derive_keys(media_key, media_kind)
    ciphertext = encrypted_blob[:-MAC_TAG_LENGTH]
    tag = encrypted_blob[-MAC_TAG_LENGTH:]

    if not ciphertext or len(ciphertext) % BLOCK_SIZE != 0:
        raise DecryptionFailure(
            f"Ciphertext length {len(ciphertext)} is not a multiple of {BLOCK_SIZE}"
        )

    if verify_mac:
        expected = hmac.new(keys.mac_key, keys.iv + ciphertext, hashlib.sha256).digest()
        if not hmac.compare_digest(expected[:MAC_TAG_LENGTH], tag):
            raise DecryptionFailure("Media MAC mismatch")

    try:
        decryptor = Cipher(algorithms.AES(keys.cipher_key), modes.CBC(keys.iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
    except ValueError as exc:
        raise DecryptionFailure(f"AES-CBC decryption failed: {exc}") from exc

    return strip_padding(padded)


def strip_padding(data: bytes) -> bytes:
    """Remove PKCS#7 padding if present and valid; otherwise return `data` untouched."""
    if not data:
        return data
    pad = data[-1]
    if 1 <= pad <= BLOCK_SIZE and data[-pad:] == bytes([pad]) * pad:
        return data[:-pad]
    return data


def decode_media_key(value: Any) -> bytes:
    """
    Normalise the `mediaKey` field of a payload to raw bytes.

    Gateways send it as base64 (sometimes wrapped in a data URL) or as a
    serialised byte buffer (`{"0": 12, "1": 200, ...}` or a list of ints).
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return b64decode(value)
    try:
        if isinstance(value, dict):
            if isinstance(value.get("data"), list):
                return bytes(value["data"])
            return bytes(value[k] for k in sorted(value, key=lambda k: int(k)))
        if isinstance(value, list):
            return bytes(value)
    except (ValueError, TypeError, KeyError) as exc:
        raise DecryptionFailure(f"Malformed mediaKey: {exc}") from exc
    raise DecryptionFailure(f"Unsupported mediaKey type: {type(value).__name__}")


def b64decode(value: str) -> bytes:
    """Decode base64, tolerating a `data:...;base64,` prefix and embedded whitespace."""
    clean = value.split(",", 1)[1] if "," in value else value
    clean = "".join(clean.split())
    try:
        return base64.b64decode(clean, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionFailure(f"Invalid base64 data: {exc}") from exc
