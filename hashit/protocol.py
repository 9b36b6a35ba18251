"""Register and verify documents against the registry.

Every flow receives an explicit ``FlowContext`` (registry, storage, prover,
signing identity, binding mode) and walks a fixed sequence of steps::

    register:  hashing -> duplicate-check -> [encrypting] -> addressing
               -> committing -> submitting -> confirmed
    verify:    hashing -> lookup -> committing -> comparing -> confirmed

Each step either completes or raises exactly one ``HashItError`` tagged with
that step. A caller may cancel between steps by setting ``cancel_event``.
Side effects from completed steps stay in place (a stored payload is
content-addressed and harmless); the registry write is always the last step
and happens at most once.
"""
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from .crypto import decrypt_bytes, encrypt_bytes
from .crypto_asym import Identity
from .errors import (BindingModeError, DuplicateDocumentError, FlowCancelledError, HashItError,
                     InputError, NetworkUnavailableError, NotRegisteredError, SecretMismatchError)
from .hashing import Digest, digest_bytes, digest_file, digest_stream
from .ipfs_interface import ContentAddresser
from .registry import (DocumentRecord, Found, LookupResult, Registry,
                       RegistrationRequest, TransportError)
from .zk_proofs import (Prover, bound_preimage, commit, commitments_equal, preimage_from_secret,
                        verify_commitment)

logger = logging.getLogger(__name__)


class FlowStep(str, Enum):
    IDLE = 'idle'
    HASHING = 'hashing'
    DUPLICATE_CHECK = 'duplicate-check'
    ENCRYPTING = 'encrypting'
    ADDRESSING = 'addressing'
    COMMITTING = 'committing'
    SUBMITTING = 'submitting'
    LOOKUP = 'lookup'
    COMPARING = 'comparing'
    FETCHING = 'fetching'
    DECRYPTING = 'decrypting'
    CONFIRMED = 'confirmed'
    FAILED = 'failed'


class BindingMode(str, Enum):
    BOUND = 'bound'
    UNBOUND = 'unbound'


@dataclass
class FlowContext:
    registry: Registry
    storage: ContentAddresser
    prover: Prover
    identity: Optional[Identity] = None
    binding_mode: BindingMode = BindingMode.BOUND
    cancel_event: Optional[threading.Event] = None
    on_step: Optional[Callable[[FlowStep, str], None]] = None
    max_workers: int = 8


@dataclass(frozen=True)
class RegistrationResult:
    document_id: int
    identifier: str
    commitment: str
    original_digest: Digest
    encrypted: bool


@dataclass(frozen=True)
class VerificationResult:
    record: DocumentRecord

    @property
    def uploader(self) -> str:
        return self.record.uploader


@dataclass(frozen=True)
class DownloadResult:
    record: DocumentRecord
    data: bytes


class _Flow:
    """Tracks the current step and tags escaping errors with it."""

    def __init__(self, ctx: FlowContext, name: str):
        self.ctx = ctx
        self.name = name
        self.step = FlowStep.IDLE

    def enter(self, step: FlowStep, message: str = ''):
        if self.ctx.cancel_event is not None and self.ctx.cancel_event.is_set():
            raise FlowCancelledError(f'{self.name} cancelled before {step.value}', step=step)
        self.step = step
        self._report(step, message)

    def _report(self, step: FlowStep, message: str):
        logger.info('%s: %s %s', self.name, step.value, message)
        if self.ctx.on_step is not None:
            self.ctx.on_step(step, message)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is None:
            self._report(FlowStep.CONFIRMED, '')
        elif isinstance(exc, HashItError):
            if exc.step is None:
                exc.step = self.step
            logger.warning('%s failed: %s', self.name, exc)
            self._report(FlowStep.FAILED, str(exc))
        return False


def _require(value, what: str):
    if not value:
        raise InputError(f'{what} is required')


def _require_file(data):
    if not isinstance(data, (bytes, bytearray)):
        raise InputError('a file is required')


def _require_source(data):
    """File bytes, a path to a file, or a binary file object."""
    if isinstance(data, (bytes, bytearray)) or hasattr(data, 'read'):
        return
    if isinstance(data, (str, os.PathLike)):
        if not Path(data).is_file():
            raise InputError(f'file not found: {data}')
        return
    raise InputError('a file is required')


def _digest_source(data) -> Digest:
    if isinstance(data, (bytes, bytearray)):
        return digest_bytes(data)
    if hasattr(data, 'read'):
        return digest_stream(data)
    return digest_file(data)


def preimage_for(mode: BindingMode, digest: Digest, secret: str) -> int:
    if BindingMode(mode) is BindingMode.BOUND:
        return bound_preimage(digest, secret)
    return preimage_from_secret(secret)


def _expect_found(result: LookupResult, missing: str) -> DocumentRecord:
    if isinstance(result, Found):
        return result.record
    if isinstance(result, TransportError):
        raise NetworkUnavailableError(result.detail)
    raise NotRegisteredError(missing)


def register(ctx: FlowContext, data: bytes, secret: str, password: Optional[str] = None,
             encrypt: bool = False) -> RegistrationResult:
    _require_file(data)
    _require(secret, 'secret key')
    if encrypt:
        _require(password, 'encryption password')
    if ctx.identity is None:
        raise InputError('a signing identity is required to register')

    with _Flow(ctx, 'register') as flow:
        flow.enter(FlowStep.HASHING)
        digest = digest_bytes(data)

        flow.enter(FlowStep.DUPLICATE_CHECK, digest.hex())
        existing = ctx.registry.find_by_original_digest(digest)
        if isinstance(existing, Found):
            raise DuplicateDocumentError(existing.record.uploader)
        if isinstance(existing, TransportError):
            raise NetworkUnavailableError(existing.detail)

        payload = data
        if encrypt:
            flow.enter(FlowStep.ENCRYPTING)
            payload = encrypt_bytes(data, password)

        flow.enter(FlowStep.ADDRESSING)
        identifier = ctx.storage.store(payload)

        flow.enter(FlowStep.COMMITTING)
        commitment = commit(preimage_for(ctx.binding_mode, digest, secret), ctx.prover)

        flow.enter(FlowStep.SUBMITTING, identifier)
        request = RegistrationRequest(identifier=identifier, commitment=commitment,
                                      encrypted=bool(encrypt), original_digest=digest)
        try:
            doc_id = ctx.registry.submit(request, ctx.identity)
        except NetworkUnavailableError as e:
            doc_id = _reconcile_submit(ctx, request, e)
        return RegistrationResult(document_id=doc_id, identifier=identifier, commitment=commitment,
                                  original_digest=digest, encrypted=bool(encrypt))


def _reconcile_submit(ctx: FlowContext, request: RegistrationRequest, err: NetworkUnavailableError) -> int:
    """Decide the fate of a write whose response was lost, without re-sending it."""
    result = ctx.registry.find_by_original_digest(request.original_digest)
    if not isinstance(result, Found):
        raise err
    rec = result.record
    if (rec.uploader == ctx.identity.address and rec.identifier == request.identifier
            and commitments_equal(rec.commitment, request.commitment)):
        logger.info('Write for %s landed despite transport error; document id=%s',
                    request.original_digest, rec.document_id)
        return rec.document_id
    raise DuplicateDocumentError(rec.uploader)


def verify_by_file(ctx: FlowContext, data, secret: str) -> VerificationResult:
    """Prove this exact file is registered and the caller knows its secret.

    ``data`` is the file's bytes, a path to it, or a binary file object;
    paths and file objects are hashed incrementally.
    """
    _require_source(data)
    _require(secret, 'secret key')

    with _Flow(ctx, 'verify-by-file') as flow:
        flow.enter(FlowStep.HASHING)
        digest = _digest_source(data)

        flow.enter(FlowStep.LOOKUP, digest.hex())
        record = _expect_found(ctx.registry.find_by_original_digest(digest),
                               'This file has not been registered')

        flow.enter(FlowStep.COMMITTING)
        bound = BindingMode(ctx.binding_mode) is BindingMode.BOUND
        matched = verify_commitment(secret, digest if bound else None, record.commitment, ctx.prover)

        flow.enter(FlowStep.COMPARING)
        if not matched:
            raise SecretMismatchError()
        return VerificationResult(record)


def verify_by_identifier(ctx: FlowContext, identifier: str, secret: str) -> VerificationResult:
    """Prove knowledge of the upload secret for a stored identifier.

    Unbound variant: the commitment depends on the secret alone, so a leaked
    secret can be replayed against any identifier it was used for. Prefer
    ``verify_by_file`` when the file is at hand.
    """
    _require(identifier, 'content identifier')
    _require(secret, 'secret key')
    if BindingMode(ctx.binding_mode) is not BindingMode.UNBOUND:
        raise BindingModeError('verify-by-identifier needs an unbound deployment; '
                               'bound commitments can only be checked with the file')

    with _Flow(ctx, 'verify-by-identifier') as flow:
        flow.enter(FlowStep.LOOKUP, identifier)
        record = _expect_found(ctx.registry.find_by_identifier(identifier),
                               f'No document registered for {identifier}')

        flow.enter(FlowStep.COMMITTING)
        matched = verify_commitment(secret, None, record.commitment, ctx.prover)

        flow.enter(FlowStep.COMPARING)
        if not matched:
            raise SecretMismatchError('The identifier is registered, but the secret key is wrong')
        return VerificationResult(record)


def scan_identifiers(ctx: FlowContext, identifiers: Iterable[str],
                     secret: str) -> Dict[str, Union[VerificationResult, HashItError]]:
    """Verify one secret against many identifiers concurrently (unordered)."""
    ids = list(dict.fromkeys(identifiers))
    out: Dict[str, Union[VerificationResult, HashItError]] = {}
    with ThreadPoolExecutor(max_workers=ctx.max_workers) as pool:
        futures = {pool.submit(verify_by_identifier, ctx, i, secret): i for i in ids}
        for fut in as_completed(futures):
            ident = futures[fut]
            try:
                out[ident] = fut.result()
            except HashItError as e:
                out[ident] = e
    return out


def download(ctx: FlowContext, identifier: Optional[str] = None, document_id: Optional[int] = None,
             password: Optional[str] = None) -> DownloadResult:
    if identifier is None and document_id is None:
        raise InputError('a content identifier or document id is required')

    with _Flow(ctx, 'download') as flow:
        flow.enter(FlowStep.LOOKUP, identifier or str(document_id))
        if document_id is not None:
            record = ctx.registry.get(document_id)
        else:
            record = _expect_found(ctx.registry.find_by_identifier(identifier),
                                   f'No document registered for {identifier}')
        if record.encrypted and not password:
            raise InputError('this document is encrypted; a decryption password is required')

        flow.enter(FlowStep.FETCHING, record.identifier)
        data = ctx.storage.fetch(record.identifier)

        if record.encrypted:
            flow.enter(FlowStep.DECRYPTING)
            data = decrypt_bytes(data, password)
        return DownloadResult(record=record, data=data)


def list_documents(ctx: FlowContext, address: Optional[str] = None) -> Tuple[List[DocumentRecord], Dict[int, HashItError]]:
    """Records uploaded by ``address`` (default: the context identity), newest first.

    Per-document lookup failures are returned alongside instead of aborting
    the whole listing.
    """
    if address is None:
        if ctx.identity is None:
            raise InputError('an address or signing identity is required')
        address = ctx.identity.address
    doc_ids = ctx.registry.list_by_uploader(address)
    records: List[DocumentRecord] = []
    failures: Dict[int, HashItError] = {}
    with ThreadPoolExecutor(max_workers=ctx.max_workers) as pool:
        futures = {pool.submit(ctx.registry.get, i): i for i in doc_ids}
        for fut in as_completed(futures):
            doc_id = futures[fut]
            try:
                records.append(fut.result())
            except HashItError as e:
                logger.warning('Could not fetch details for document id=%s: %s', doc_id, e)
                failures[doc_id] = e
    records.sort(key=lambda r: r.document_id, reverse=True)
    logger.info('Found %d document(s) for %s', len(records), address)
    return records, failures
