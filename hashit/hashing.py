"""Deterministic content hashing.

Every document is identified by the SHA-256 digest of its original bytes.
The digest doubles as the registry's dedup key and as the binding context
for bound commitments, so its text form (``0x`` + 64 lowercase hex digits)
is part of the wire format and must never change.
"""
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Union

from .errors import InputError

DIGEST_SIZE = 32
CHUNK_SIZE = 1 << 20


@dataclass(frozen=True)
class Digest:
    raw: bytes

    def __post_init__(self):
        if len(self.raw) != DIGEST_SIZE:
            raise InputError(f'digest must be {DIGEST_SIZE} bytes, got {len(self.raw)}')

    def hex(self) -> str:
        return '0x' + self.raw.hex()

    def __str__(self):
        return self.hex()

    @classmethod
    def from_hex(cls, text: str) -> 'Digest':
        """Parse the canonical text form; the ``0x`` prefix and case are optional."""
        s = (text or '').strip().lower()
        if s.startswith('0x'):
            s = s[2:]
        try:
            raw = bytes.fromhex(s)
        except ValueError as exc:
            raise InputError(f'not a hex digest: {text!r}') from exc
        return cls(raw)


def digest_bytes(data: bytes) -> Digest:
    return Digest(hashlib.sha256(data).digest())


def digest_stream(fh: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Digest:
    """Hash a binary stream incrementally so memory stays bounded."""
    h = hashlib.sha256()
    while True:
        chunk = fh.read(chunk_size)
        if not chunk:
            break
        h.update(chunk)
    return Digest(h.digest())


def digest_file(path: Union[str, Path]) -> Digest:
    p = Path(path)
    if not p.is_file():
        raise InputError(f'file not found: {p}')
    try:
        with open(p, 'rb') as fh:
            return digest_stream(fh)
    except OSError as e:
        raise InputError(f'could not read {p}: {e}') from e
