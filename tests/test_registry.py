import json
import sqlite3
import sys, os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
import pytest
from hashit import db
from hashit.crypto_asym import Identity
from hashit.errors import (DuplicateDocumentError, InputError, NetworkUnavailableError,
                           NotRegisteredError)
from hashit.hashing import digest_bytes
from hashit.registry import (Found, HTTPRegistry, NotFound, RegistrationRequest, SQLiteRegistry,
                             TransportError)


def _request(data=b'hello', cid='bafkreitest', commitment='0x' + 'ab' * 32, encrypted=False):
    return RegistrationRequest(identifier=cid, commitment=commitment, encrypted=encrypted,
                               original_digest=digest_bytes(data))


def test_submit_and_lookup(tmp_path):
    reg = SQLiteRegistry(str(tmp_path / 'r.db'))
    alice = Identity.generate()
    req = _request()
    assert isinstance(reg.find_by_original_digest(req.original_digest), NotFound)

    doc_id = reg.submit(req, alice)
    found = reg.find_by_original_digest(req.original_digest)
    assert isinstance(found, Found)
    assert found.record.document_id == doc_id
    assert found.record.uploader == alice.address
    assert found.record.original_digest == req.original_digest
    assert isinstance(reg.find_by_identifier('bafkreitest'), Found)
    assert isinstance(reg.find_by_identifier('bafkreiother'), NotFound)
    assert reg.get(doc_id) == found.record
    assert reg.list_by_uploader(alice.address) == [doc_id]
    assert reg.list_by_uploader(Identity.generate().address) == []


def test_commitment_stored_lowercase(tmp_path):
    reg = SQLiteRegistry(str(tmp_path / 'r.db'))
    doc_id = reg.submit(_request(commitment='0x' + 'AB' * 32), Identity.generate())
    assert reg.get(doc_id).commitment == '0x' + 'ab' * 32


def test_duplicate_keeps_first_uploader(tmp_path):
    reg = SQLiteRegistry(str(tmp_path / 'r.db'))
    alice, bob = Identity.generate(), Identity.generate()
    reg.submit(_request(cid='bafkreione'), alice)
    with pytest.raises(DuplicateDocumentError) as ei:
        reg.submit(_request(cid='bafkreitwo', commitment='0x' + 'cd' * 32), bob)
    assert ei.value.existing_owner == alice.address
    rec = reg.find_by_original_digest(digest_bytes(b'hello')).record
    assert rec.uploader == alice.address
    assert rec.identifier == 'bafkreione'
    assert db.count_documents(reg.db_path) == 1


def test_identifier_lookup_returns_earliest(tmp_path):
    reg = SQLiteRegistry(str(tmp_path / 'r.db'))
    first = reg.submit(_request(data=b'a', cid='bafkreisame'), Identity.generate())
    reg.submit(_request(data=b'b', cid='bafkreisame'), Identity.generate())
    assert reg.find_by_identifier('bafkreisame').record.document_id == first


def test_bad_signature_rejected(tmp_path):
    reg = SQLiteRegistry(str(tmp_path / 'r.db'))
    alice, mallory = Identity.generate(), Identity.generate()
    req = _request()
    forged = mallory.sign(req.signing_bytes())
    with pytest.raises(InputError):
        reg.record_signed(req, alice.public_key_hex, forged)
    assert isinstance(reg.find_by_original_digest(req.original_digest), NotFound)


def test_get_missing(tmp_path):
    reg = SQLiteRegistry(str(tmp_path / 'r.db'))
    with pytest.raises(NotRegisteredError):
        reg.get(42)


def test_rows_are_append_only(tmp_path):
    reg = SQLiteRegistry(str(tmp_path / 'r.db'))
    doc_id = reg.submit(_request(), Identity.generate())
    conn = db.get_conn(reg.db_path)
    try:
        with pytest.raises(sqlite3.DatabaseError):
            conn.execute('UPDATE Documents SET uploader=? WHERE id=?', ('0xevil', doc_id))
        with pytest.raises(sqlite3.DatabaseError):
            conn.execute('DELETE FROM Documents WHERE id=?', (doc_id,))
    finally:
        conn.close()


def test_database_errors_are_transport_errors(tmp_path, monkeypatch):
    reg = SQLiteRegistry(str(tmp_path / 'r.db'))

    def boom(*a):
        raise sqlite3.OperationalError('disk I/O error')

    monkeypatch.setattr(db, 'document_by_hash', boom)
    result = reg.find_by_original_digest(digest_bytes(b'x'))
    assert isinstance(result, TransportError)
    assert 'disk I/O error' in result.detail


def test_request_payload():
    req = _request(encrypted=True)
    again = RegistrationRequest.from_payload(req.to_payload())
    assert again == req
    assert again.signing_bytes() == req.signing_bytes()
    with pytest.raises(InputError):
        RegistrationRequest.from_payload({'identifier': 'x'})
    with pytest.raises(InputError):
        RegistrationRequest.from_payload(dict(req.to_payload(), original_digest='0x12'))


class StubResponse:
    def __init__(self, status_code, text):
        self.status_code = status_code
        self.text = text

    def json(self):
        return json.loads(self.text)


class StubSession:
    def __init__(self, status_code, text):
        self.response = StubResponse(status_code, text)

    def request(self, method, url, timeout=None, **kw):
        return self.response


def _record_json(**overrides):
    doc = {'document_id': 1, 'identifier': 'bafkreitest', 'commitment': '0x' + 'ab' * 32,
           'uploader': '0x' + '11' * 20, 'encrypted': False,
           'original_digest': digest_bytes(b'hello').hex()}
    doc.update(overrides)
    return json.dumps({'document': doc})


def test_http_lookup_parses_record():
    reg = HTTPRegistry('http://registry.test', session=StubSession(200, _record_json()))
    result = reg.find_by_identifier('bafkreitest')
    assert isinstance(result, Found)
    assert result.record.original_digest == digest_bytes(b'hello')


def test_http_lookup_malformed_record_is_transport_error():
    for body in (_record_json(original_digest=12), _record_json(document_id=None),
                 json.dumps({'document': 'nope'}), 'not json'):
        reg = HTTPRegistry('http://registry.test', session=StubSession(200, body), retries=1)
        assert isinstance(reg.find_by_original_digest(digest_bytes(b'hello')), TransportError)
    reg = HTTPRegistry('http://registry.test', session=StubSession(200, _record_json(original_digest=12)))
    with pytest.raises(NetworkUnavailableError):
        reg.get(1)


def test_http_list_malformed_body():
    for body in ('not json', json.dumps(['x']), json.dumps({'document_ids': ['a']})):
        reg = HTTPRegistry('http://registry.test', session=StubSession(200, body), retries=1)
        with pytest.raises(NetworkUnavailableError):
            reg.list_by_uploader('0x' + '11' * 20)


def test_http_submit_malformed_created_response():
    for body in ('created', json.dumps({'id': 3}), json.dumps({'document_id': None})):
        reg = HTTPRegistry('http://registry.test', session=StubSession(201, body))
        with pytest.raises(NetworkUnavailableError):
            reg.submit(_request(), Identity.generate())


def test_http_submit_outcomes():
    alice = '0x' + '11' * 20
    reg = HTTPRegistry('http://registry.test', session=StubSession(201, json.dumps({'document_id': 7})))
    assert reg.submit(_request(), Identity.generate()) == 7
    dup = json.dumps({'error': 'duplicate', 'existing_owner': alice})
    reg = HTTPRegistry('http://registry.test', session=StubSession(409, dup))
    with pytest.raises(DuplicateDocumentError) as ei:
        reg.submit(_request(), Identity.generate())
    assert ei.value.existing_owner == alice


def test_request_payload_rejects_non_text_digest():
    with pytest.raises(InputError):
        RegistrationRequest.from_payload(dict(_request().to_payload(), original_digest=12))
