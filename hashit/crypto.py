"""Password-based authenticated encryption for stored payloads.

Wire format (bit-exact, shared with the browser client)::

    offset 0..15   salt   (PBKDF2 salt)
    offset 16..27  nonce  (AES-GCM IV)
    offset 28..    AES-256-GCM ciphertext with the 16-byte tag appended

A fresh salt and nonce are drawn for every call, so encrypting the same
plaintext with the same password twice never produces the same payload.
"""
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import AuthenticationError, InputError

logger = logging.getLogger(__name__)

SALT_SIZE = 16
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
KDF_ITERATIONS = 100_000
HEADER_SIZE = SALT_SIZE + NONCE_SIZE


def derive_key(password: str, salt: bytes, iterations: int = KDF_ITERATIONS) -> bytes:
    """PBKDF2-HMAC-SHA256 -> 256-bit AES key. Deterministic for (password, salt)."""
    if len(salt) != SALT_SIZE:
        raise InputError(f'salt must be {SALT_SIZE} bytes')
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=salt, iterations=iterations)
    return kdf.derive(password.encode('utf-8'))


def encrypt_bytes(plaintext: bytes, password: str) -> bytes:
    if not password:
        raise InputError('an encryption password is required when encryption is enabled')
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    key = derive_key(password, salt)
    ct = AESGCM(key).encrypt(nonce, plaintext, None)
    logger.debug('Encrypted %d bytes -> %d byte payload', len(plaintext), HEADER_SIZE + len(ct))
    return salt + nonce + ct


def decrypt_bytes(payload: bytes, password: str) -> bytes:
    """Split the framing by fixed offsets and authenticated-decrypt.

    Raises AuthenticationError on a wrong password, a truncated payload or any
    tampering; no partial plaintext is ever returned.
    """
    if not password:
        raise InputError('a decryption password is required')
    if len(payload) < HEADER_SIZE + TAG_SIZE:
        raise AuthenticationError('payload is too short to be an encrypted document')
    salt = payload[0:SALT_SIZE]
    nonce = payload[SALT_SIZE:HEADER_SIZE]
    data = payload[HEADER_SIZE:]
    key = derive_key(password, salt)
    try:
        return AESGCM(key).decrypt(nonce, data, None)
    except InvalidTag as exc:
        raise AuthenticationError() from exc
