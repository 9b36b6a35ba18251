"""Ed25519 signing identities for registry writes.

An identity is a PyNaCl signing key persisted as hex under the key
directory. Its address (``0x`` + last 20 bytes of sha256(public key)) is what
the registry records as a document's uploader.
"""
import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

logger = logging.getLogger(__name__)

KEY_DIR = Path(os.environ.get('HASHIT_KEY_DIR', Path.home() / '.hashit' / 'keys'))
SK_NAME = 'ed25519_sk.hex'


def address_from_public_key(pub: bytes) -> str:
    return '0x' + hashlib.sha256(pub).digest()[-20:].hex()


class Identity:
    def __init__(self, signing_key: SigningKey):
        self._sk = signing_key
        self.verify_key = signing_key.verify_key

    @classmethod
    def generate(cls) -> 'Identity':
        return cls(SigningKey.generate())

    @classmethod
    def load(cls, key_dir: Optional[Path] = None) -> 'Identity':
        sk_path = Path(key_dir or KEY_DIR) / SK_NAME
        if not sk_path.exists():
            raise FileNotFoundError(f'no signing key at {sk_path}; run `hashit keygen` first')
        return cls(SigningKey(sk_path.read_text().strip(), encoder=HexEncoder))

    @classmethod
    def load_or_create(cls, key_dir: Optional[Path] = None) -> 'Identity':
        kd = Path(key_dir or KEY_DIR)
        sk_path = kd / SK_NAME
        if not sk_path.exists():
            kd.mkdir(parents=True, exist_ok=True)
            sk = SigningKey.generate()
            sk_path.write_text(sk.encode(encoder=HexEncoder).decode('utf-8'))
            os.chmod(sk_path, 0o600)
            logger.info('Generated new signing key at %s', sk_path)
        return cls.load(kd)

    @property
    def public_key_hex(self) -> str:
        return self.verify_key.encode(encoder=HexEncoder).decode('utf-8')

    @property
    def address(self) -> str:
        return address_from_public_key(self.verify_key.encode())

    def sign(self, data: bytes) -> str:
        return self._sk.sign(data).signature.hex()


def verify_signature(data: bytes, sig_hex: str, pub_hex: str) -> bool:
    try:
        vk = VerifyKey(bytes.fromhex(pub_hex))
        vk.verify(data, bytes.fromhex(sig_hex))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False
