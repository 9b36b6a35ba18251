"""Zero-knowledge commitments over a single field-element preimage.

The circuit maps one private field element (``preimage``) to one public
field element through a fixed one-way compression function. This module
derives the preimage from a secret, drives the proving backend, and renders
its public output as the on-chain commitment (``0x`` + 64 hex digits).

Soundness depends on the generate and verify paths encoding the secret
identically: UTF-8 bytes, big-endian, reduced modulo the BN254 scalar field.

Backends:
 - ``SnarkjsProver``: runs ``snarkjs groth16 fullprove`` against the circuit
   wasm/zkey assets.
 - ``HashProver``: deterministic in-process stand-in for development and
   tests. Its commitments do not match circuit-generated ones.
"""
import hashlib
import hmac
import json
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Optional, Union

from .errors import InputError, ProofGenerationError
from .hashing import Digest

logger = logging.getLogger(__name__)

# BN254 scalar field order used by Groth16 circuits compiled with circom
FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617

COMMITMENT_HEX_DIGITS = 64


class Prover:
    """Proving backend: ``prove({'preimage': <decimal str>}) -> {'public_outputs': [...]}``."""

    def prove(self, inputs: dict) -> dict:
        raise NotImplementedError()


class SnarkjsProver(Prover):
    def __init__(self, wasm_path: str, zkey_path: str, snarkjs_bin: str = 'snarkjs', timeout: int = 120):
        self.wasm_path = Path(wasm_path)
        self.zkey_path = Path(zkey_path)
        self.snarkjs_bin = snarkjs_bin
        self.timeout = timeout

    def prove(self, inputs: dict) -> dict:
        exe = shutil.which(self.snarkjs_bin)
        if not exe:
            raise ProofGenerationError(f'snarkjs CLI not found: {self.snarkjs_bin}')
        for asset in (self.wasm_path, self.zkey_path):
            if not asset.is_file():
                raise ProofGenerationError(f'circuit asset missing: {asset}')
        with tempfile.TemporaryDirectory(prefix='hashit-prove-') as tmp:
            tmpdir = Path(tmp)
            input_path = tmpdir / 'input.json'
            proof_path = tmpdir / 'proof.json'
            public_path = tmpdir / 'public.json'
            input_path.write_text(json.dumps(inputs))
            cmd = [exe, 'groth16', 'fullprove', str(input_path), str(self.wasm_path),
                   str(self.zkey_path), str(proof_path), str(public_path)]
            try:
                res = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
            except subprocess.TimeoutExpired as exc:
                raise ProofGenerationError(f'snarkjs timed out after {self.timeout}s') from exc
            except OSError as exc:
                raise ProofGenerationError(f'could not run snarkjs: {exc}') from exc
            if res.returncode != 0:
                detail = (res.stderr or res.stdout or '').strip()
                raise ProofGenerationError('snarkjs fullprove failed: ' + detail[:500])
            try:
                public = json.loads(public_path.read_text())
            except (OSError, ValueError) as exc:
                raise ProofGenerationError('snarkjs produced no readable public signals') from exc
        return {'public_outputs': [str(v) for v in public]}


class HashProver(Prover):
    """SHA-256 compression into the field. Not a zero-knowledge proof."""

    DOMAIN = b'hashit-commitment'

    def prove(self, inputs: dict) -> dict:
        preimage = _parse_field_int(inputs.get('preimage'))
        if preimage >= FIELD_MODULUS:
            raise ProofGenerationError('preimage overflows the field')
        h = hashlib.sha256(self.DOMAIN + preimage.to_bytes(32, 'big')).digest()
        return {'public_outputs': [str(int.from_bytes(h, 'big') % FIELD_MODULUS)]}


def _parse_field_int(value) -> int:
    if isinstance(value, int):
        n = value
    else:
        s = str(value).strip()
        try:
            n = int(s, 16) if s.lower().startswith('0x') else int(s)
        except ValueError as exc:
            raise ProofGenerationError(f'not a field element: {value!r}') from exc
    if n < 0:
        raise ProofGenerationError('field elements are non-negative')
    return n


def preimage_from_secret(secret: str) -> int:
    """Secret bytes as a big-endian unsigned integer, reduced into the field."""
    if not secret:
        raise InputError('a secret key is required')
    return int.from_bytes(secret.encode('utf-8'), 'big') % FIELD_MODULUS


def bound_preimage(file_digest: Union[Digest, str], secret: str) -> int:
    """sha256(digest text + secret), reduced into the field.

    Binds the commitment to one file: the same secret yields unrelated
    commitments for different digests.
    """
    if not secret:
        raise InputError('a secret key is required')
    if not isinstance(file_digest, Digest):
        file_digest = Digest.from_hex(file_digest)
    combined = (file_digest.hex() + secret).encode('utf-8')
    return int.from_bytes(hashlib.sha256(combined).digest(), 'big') % FIELD_MODULUS


def format_commitment(value: int) -> str:
    if value < 0 or value.bit_length() > COMMITMENT_HEX_DIGITS * 4:
        raise ProofGenerationError('public output does not fit a 256-bit commitment')
    return '0x' + format(value, f'0{COMMITMENT_HEX_DIGITS}x')


def commit(preimage: int, prover: Prover) -> str:
    if not isinstance(preimage, int) or preimage < 0 or preimage >= FIELD_MODULUS:
        raise ProofGenerationError('preimage is not a field element')
    try:
        result = prover.prove({'preimage': str(preimage)})
    except ProofGenerationError:
        raise
    except Exception as exc:
        # backend errors are opaque; never let them escape unwrapped
        raise ProofGenerationError(f'proving backend error: {exc}') from exc
    outputs = (result or {}).get('public_outputs') or []
    if not outputs:
        raise ProofGenerationError('proving backend returned no public output')
    value = _parse_field_int(outputs[0])
    if value >= FIELD_MODULUS:
        raise ProofGenerationError('public output overflows the field')
    commitment = format_commitment(value)
    logger.debug('Generated commitment %s', commitment)
    return commitment


def commitments_equal(a: str, b: str) -> bool:
    """Exact, case-insensitive, full-string comparison."""
    if not isinstance(a, str) or not isinstance(b, str):
        return False
    return hmac.compare_digest(a.lower().encode('utf-8'), b.lower().encode('utf-8'))


def verify_commitment(secret: str, file_digest: Optional[Union[Digest, str]], expected: str, prover: Prover) -> bool:
    """Recompute the commitment for ``secret`` and compare with ``expected``.

    A digest selects the bound mode; ``None`` selects the unbound mode.
    """
    if file_digest is None:
        preimage = preimage_from_secret(secret)
    else:
        preimage = bound_preimage(file_digest, secret)
    return commitments_equal(commit(preimage, prover), expected)
