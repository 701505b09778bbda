"""AES-256-CBC codec and the two ciphertext framings.

Key material is the passphrase run once through OpenSSL's legacy
``EVP_BytesToKey`` (MD5, no salt), the schedule the first generation of the
tool used. There is no real key derivation function here.

A fixed check block is encrypted in front of every plaintext. A wrong
passphrase garbles that block (or breaks the padding), which lets decryption
report :class:`InvalidPassphrase` instead of silently returning garbage.
"""

from __future__ import annotations

import binascii
import hashlib
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from key_cypher.core.errors import InvalidPassphrase, MalformedCiphertext

IV_SIZE = 16
KEY_SIZE = 32
BLOCK_SIZE = 16

_CHECK_BLOCK = b"keycypher-check\x01"


def derive_key(passphrase: str) -> bytes:
    """Stretch *passphrase* into a 32-byte AES key (EVP_BytesToKey, MD5, 1 round)."""
    if not passphrase:
        raise InvalidPassphrase("Passphrase must not be empty")
    secret = passphrase.encode("utf-8")
    derived = b""
    block = b""
    while len(derived) < KEY_SIZE:
        block = hashlib.md5(block + secret).digest()
        derived += block
    return derived[:KEY_SIZE]


def encrypt_bytes(plaintext: bytes, passphrase: str) -> tuple[bytes, bytes]:
    """Encrypt with a fresh random IV; returns ``(iv, ciphertext)``."""
    key = derive_key(passphrase)
    iv = os.urandom(IV_SIZE)
    padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
    padded = padder.update(_CHECK_BLOCK + plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return iv, encryptor.update(padded) + encryptor.finalize()


def decrypt_bytes(iv: bytes, ciphertext: bytes, passphrase: str) -> bytes:
    if len(iv) != IV_SIZE:
        raise MalformedCiphertext(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
    if not ciphertext or len(ciphertext) % BLOCK_SIZE:
        raise MalformedCiphertext("Ciphertext is not a whole number of AES blocks")
    key = derive_key(passphrase)
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
    try:
        data = unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise InvalidPassphrase("Decryption failed: wrong passphrase") from e
    if not data.startswith(_CHECK_BLOCK):
        raise InvalidPassphrase("Decryption failed: wrong passphrase")
    return data[len(_CHECK_BLOCK) :]


# --- text framing: "<ivHex>:<ciphertextHex>" ---


def encrypt_text_framed(plaintext: bytes, passphrase: str) -> str:
    iv, ciphertext = encrypt_bytes(plaintext, passphrase)
    return f"{iv.hex()}:{ciphertext.hex()}"


def decrypt_text_framed(framed: str, passphrase: str) -> bytes:
    parts = framed.strip().split(":")
    if len(parts) != 2:
        raise MalformedCiphertext("Invalid encrypted file format")
    try:
        iv = binascii.unhexlify(parts[0])
        ciphertext = binascii.unhexlify(parts[1])
    except (binascii.Error, ValueError) as e:
        raise MalformedCiphertext(f"Invalid hex in encrypted file: {e}") from e
    return decrypt_bytes(iv, ciphertext, passphrase)


# --- binary framing: IV(16) || ciphertext ---


def encrypt_binary_framed(plaintext: bytes, passphrase: str) -> bytes:
    iv, ciphertext = encrypt_bytes(plaintext, passphrase)
    return iv + ciphertext


def decrypt_binary_framed(framed: bytes, passphrase: str) -> bytes:
    if len(framed) < IV_SIZE + BLOCK_SIZE:
        raise MalformedCiphertext("Encrypted archive is too short")
    return decrypt_bytes(framed[:IV_SIZE], framed[IV_SIZE:], passphrase)
