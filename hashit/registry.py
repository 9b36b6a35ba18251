"""Append-only document registry: interface, value types and two backends.

Lookups return a tagged result (``Found`` / ``NotFound`` / ``TransportError``)
so callers branch on structure, never on error text. Uniqueness of the
original digest is enforced by the registry's write path; ``submit`` raises
DuplicateDocumentError when a second write for the same digest is rejected.

Backends:
 - ``SQLiteRegistry``: local ledger file (also backs the HTTP gateway).
 - ``HTTPRegistry``: client for the gateway served by ``hashit.ui``.
"""
import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import List, Optional, Union

import requests

from . import db, http_client
from .crypto_asym import Identity, address_from_public_key, verify_signature
from .errors import (DuplicateDocumentError, InputError, NetworkUnavailableError,
                     NotRegisteredError)
from .hashing import Digest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentRecord:
    document_id: int
    identifier: str
    commitment: str
    uploader: str
    encrypted: bool
    original_digest: Digest

    def to_dict(self) -> dict:
        return {
            'document_id': self.document_id,
            'identifier': self.identifier,
            'commitment': self.commitment,
            'uploader': self.uploader,
            'encrypted': self.encrypted,
            'original_digest': self.original_digest.hex(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> 'DocumentRecord':
        return cls(
            document_id=int(d['document_id']),
            identifier=d['identifier'],
            commitment=d['commitment'],
            uploader=d['uploader'],
            encrypted=bool(d['encrypted']),
            original_digest=Digest.from_hex(d['original_digest']),
        )

    @classmethod
    def from_row(cls, row) -> 'DocumentRecord':
        return cls(
            document_id=row['id'],
            identifier=row['ipfs_cid'],
            commitment=row['zkp_commitment'],
            uploader=row['uploader'],
            encrypted=bool(row['is_encrypted']),
            original_digest=Digest.from_hex(row['original_hash']),
        )


@dataclass(frozen=True)
class RegistrationRequest:
    identifier: str
    commitment: str
    encrypted: bool
    original_digest: Digest

    def to_payload(self) -> dict:
        return {
            'identifier': self.identifier,
            'commitment': self.commitment,
            'encrypted': self.encrypted,
            'original_digest': self.original_digest.hex(),
        }

    def signing_bytes(self) -> bytes:
        return json.dumps(self.to_payload(), sort_keys=True, separators=(',', ':')).encode('utf-8')

    @classmethod
    def from_payload(cls, d: dict) -> 'RegistrationRequest':
        try:
            return cls(
                identifier=str(d['identifier']),
                commitment=str(d['commitment']),
                encrypted=bool(d['encrypted']),
                original_digest=Digest.from_hex(d['original_digest']),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise InputError(f'malformed registration request: {e}') from e


@dataclass(frozen=True)
class Found:
    record: DocumentRecord


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class TransportError:
    detail: str


LookupResult = Union[Found, NotFound, TransportError]


class Registry:
    def find_by_original_digest(self, digest: Digest) -> LookupResult:
        raise NotImplementedError()

    def find_by_identifier(self, identifier: str) -> LookupResult:
        raise NotImplementedError()

    def submit(self, request: RegistrationRequest, identity: Identity) -> int:
        raise NotImplementedError()

    def list_by_uploader(self, address: str) -> List[int]:
        raise NotImplementedError()

    def get(self, document_id: int) -> DocumentRecord:
        raise NotImplementedError()


class SQLiteRegistry(Registry):
    def __init__(self, db_path):
        self.db_path = db_path
        db.init_db(db_path)

    def _lookup(self, fn, key) -> LookupResult:
        try:
            row = fn(self.db_path, key)
        except sqlite3.Error as e:
            return TransportError(f'registry database error: {e}')
        if row is None:
            return NotFound()
        return Found(DocumentRecord.from_row(row))

    def find_by_original_digest(self, digest: Digest) -> LookupResult:
        return self._lookup(db.document_by_hash, digest.hex())

    def find_by_identifier(self, identifier: str) -> LookupResult:
        return self._lookup(db.document_by_cid, identifier)

    def submit(self, request: RegistrationRequest, identity: Identity) -> int:
        return self.record_signed(request, identity.public_key_hex, identity.sign(request.signing_bytes()))

    def record_signed(self, request: RegistrationRequest, public_key_hex: str, signature_hex: str) -> int:
        """Verify the uploader's signature and append the record."""
        if not verify_signature(request.signing_bytes(), signature_hex, public_key_hex):
            raise InputError('registration request signature is invalid')
        uploader = address_from_public_key(bytes.fromhex(public_key_hex))
        try:
            doc_id = db.insert_document(self.db_path, request.identifier, request.commitment.lower(), uploader,
                                        request.encrypted, request.original_digest.hex(),
                                        public_key=public_key_hex, signature=signature_hex)
        except sqlite3.IntegrityError:
            row = db.document_by_hash(self.db_path, request.original_digest.hex())
            raise DuplicateDocumentError(row['uploader'] if row is not None else None)
        except sqlite3.Error as e:
            raise NetworkUnavailableError(f'registry database error: {e}') from e
        logger.info('Registered document id=%s digest=%s uploader=%s', doc_id, request.original_digest, uploader)
        return doc_id

    def list_by_uploader(self, address: str) -> List[int]:
        try:
            return db.document_ids_by_uploader(self.db_path, address)
        except sqlite3.Error as e:
            raise NetworkUnavailableError(f'registry database error: {e}') from e

    def get(self, document_id: int) -> DocumentRecord:
        result = self._lookup(db.document_by_id, document_id)
        if isinstance(result, TransportError):
            raise NetworkUnavailableError(result.detail)
        if isinstance(result, NotFound):
            raise NotRegisteredError(f'no document with id {document_id}')
        return result.record


class HTTPRegistry(Registry):
    def __init__(self, base_url: str, timeout: float = 30, retries: int = 3,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.retries = retries
        self.session = session or requests.Session()

    def _get(self, path: str) -> requests.Response:
        url = self.base_url + path
        return http_client.with_retries(
            lambda: http_client.request('GET', url, session=self.session, timeout=self.timeout),
            retries=self.retries, what=f'GET {url}')

    def _lookup(self, path: str) -> LookupResult:
        try:
            res = self._get(path)
        except NetworkUnavailableError as e:
            return TransportError(str(e))
        if res.status_code == 404:
            return NotFound()
        if res.status_code != 200:
            return TransportError(f'registry answered {res.status_code}: {res.text[:200]}')
        try:
            return Found(DocumentRecord.from_dict(res.json()['document']))
        except (ValueError, KeyError, TypeError, AttributeError, InputError) as e:
            return TransportError(f'malformed registry response: {e}')

    def find_by_original_digest(self, digest: Digest) -> LookupResult:
        return self._lookup(f'/api/documents/by-digest/{digest.hex()}')

    def find_by_identifier(self, identifier: str) -> LookupResult:
        return self._lookup(f'/api/documents/by-cid/{identifier}')

    def submit(self, request: RegistrationRequest, identity: Identity) -> int:
        body = {
            'request': request.to_payload(),
            'public_key': identity.public_key_hex,
            'signature': identity.sign(request.signing_bytes()),
        }
        # single attempt: the write is not idempotent
        res = http_client.request('POST', self.base_url + '/api/documents', session=self.session,
                                  timeout=self.timeout, json=body)
        if res.status_code == 201:
            try:
                return int(res.json()['document_id'])
            except (ValueError, KeyError, TypeError) as e:
                # the write landed; let the caller reconcile by digest
                raise NetworkUnavailableError(f'malformed registry response to a write: {res.text[:200]}') from e
        try:
            j = res.json()
        except ValueError:
            j = {}
        if res.status_code == 409 and j.get('error') == 'duplicate':
            raise DuplicateDocumentError(j.get('existing_owner'))
        if res.status_code == 400:
            raise InputError(j.get('detail') or 'registry rejected the request')
        raise NetworkUnavailableError(f'registry answered {res.status_code}: {res.text[:200]}')

    def list_by_uploader(self, address: str) -> List[int]:
        res = self._get(f'/api/uploaders/{address}/documents')
        if res.status_code != 200:
            raise NetworkUnavailableError(f'registry answered {res.status_code}: {res.text[:200]}')
        try:
            return [int(i) for i in res.json().get('document_ids', [])]
        except (ValueError, TypeError, AttributeError) as e:
            raise NetworkUnavailableError(f'malformed registry response: {res.text[:200]}') from e

    def get(self, document_id: int) -> DocumentRecord:
        result = self._lookup(f'/api/documents/{int(document_id)}')
        if isinstance(result, TransportError):
            raise NetworkUnavailableError(result.detail)
        if isinstance(result, NotFound):
            raise NotRegisteredError(f'no document with id {document_id}')
        return result.record
