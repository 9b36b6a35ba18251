"""HTTP service: storage endpoints, registry gateway and verification.

Storage:
  POST /upload               multipart ``file`` -> {"cid"} (stored)
  POST /calculate-cid        multipart ``file`` -> {"cid"} (not stored)
Registry gateway (backed by the local SQLite ledger):
  GET  /api/documents/by-digest/<digest>
  GET  /api/documents/by-cid/<cid>
  GET  /api/documents/<id>
  GET  /api/uploaders/<address>/documents
  POST /api/documents        signed registration request
Verification:
  POST /api/verify           multipart ``file`` + form ``secret``
"""
import logging

from flask import Flask, current_app, jsonify, request
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest

from . import db
from .config import Settings, build_prover, build_storage, load_settings, parse_binding_mode
from .errors import (AuthenticationError, BindingModeError, DuplicateDocumentError, HashItError,
                     InputError, NetworkUnavailableError, NotFoundError, NotRegisteredError,
                     ProofGenerationError, SecretMismatchError)
from .hashing import Digest
from .protocol import FlowContext, verify_by_file
from .registry import Found, NotFound, RegistrationRequest, SQLiteRegistry

logger = logging.getLogger(__name__)

app = Flask(__name__)

registry = CollectorRegistry()
REGISTRATIONS = Counter('hashit_registrations_total', 'Registration requests by outcome', ['outcome'], registry=registry)
VERIFICATIONS = Counter('hashit_verifications_total', 'Verification requests by outcome', ['outcome'], registry=registry)
STORAGE_REQUESTS = Counter('hashit_storage_requests_total', 'Storage requests by operation', ['op'], registry=registry)

ERROR_CODES = [
    (DuplicateDocumentError, 409, 'duplicate'),
    (NotRegisteredError, 404, 'not-registered'),
    (SecretMismatchError, 403, 'secret-mismatch'),
    (AuthenticationError, 403, 'authentication-failed'),
    (NotFoundError, 404, 'not-found'),
    (BindingModeError, 400, 'binding-mode'),
    (InputError, 400, 'invalid-input'),
    (NetworkUnavailableError, 503, 'network-unavailable'),
    (ProofGenerationError, 500, 'proof-generation-failed'),
]


def init_app(settings: Settings = None, storage=None, prover=None, ledger=None):
    """Wire services into the app; call once before serving or testing."""
    settings = settings or load_settings()
    app.config['HASHIT_SETTINGS'] = settings
    app.config['HASHIT_LEDGER'] = ledger or SQLiteRegistry(settings.db_path)
    app.config['HASHIT_STORAGE'] = storage or build_storage(settings)
    app.config['HASHIT_PROVER'] = prover or build_prover(settings)
    return app


def _ledger() -> SQLiteRegistry:
    return current_app.config['HASHIT_LEDGER']


def _error_response(e: HashItError):
    for cls, status, code in ERROR_CODES:
        if isinstance(e, cls):
            body = {'error': code, 'detail': str(e)}
            if isinstance(e, DuplicateDocumentError):
                body['existing_owner'] = e.existing_owner
            return jsonify(body), status
    return jsonify({'error': 'failed', 'detail': str(e)}), 500


def _uploaded_bytes():
    f = request.files.get('file')
    if f is None:
        return None
    return f.read()


@app.route('/health')
def health():
    try:
        return jsonify({'status': 'ok', 'documents': db.count_documents(_ledger().db_path)})
    except Exception:
        logger.exception('health check failed')
        return jsonify({'status': 'error'}), 500


@app.route('/metrics')
def metrics():
    return generate_latest(registry), 200, {'Content-Type': CONTENT_TYPE_LATEST}


@app.route('/upload', methods=['POST'])
def upload():
    data = _uploaded_bytes()
    if data is None:
        return jsonify({'error': 'No file uploaded.'}), 400
    STORAGE_REQUESTS.labels(op='store').inc()
    try:
        cid = current_app.config['HASHIT_STORAGE'].store(data)
    except HashItError as e:
        logger.error('upload error: %s', e)
        return _error_response(e)
    return jsonify({'cid': cid})


@app.route('/calculate-cid', methods=['POST'])
def calculate_cid():
    data = _uploaded_bytes()
    if data is None:
        return jsonify({'error': 'No file provided for CID calculation.'}), 400
    STORAGE_REQUESTS.labels(op='identifier-only').inc()
    try:
        cid = current_app.config['HASHIT_STORAGE'].identifier_only(data)
    except HashItError as e:
        logger.error('CID calculation error: %s', e)
        return _error_response(e)
    return jsonify({'cid': cid})


def _lookup_response(result):
    if isinstance(result, Found):
        return jsonify({'document': result.record.to_dict()})
    if isinstance(result, NotFound):
        return jsonify({'error': 'not-found'}), 404
    return jsonify({'error': 'registry-unavailable', 'detail': result.detail}), 503


@app.route('/api/documents/by-digest/<digest>')
def api_by_digest(digest):
    try:
        d = Digest.from_hex(digest)
    except InputError as e:
        return _error_response(e)
    return _lookup_response(_ledger().find_by_original_digest(d))


@app.route('/api/documents/by-cid/<cid>')
def api_by_cid(cid):
    return _lookup_response(_ledger().find_by_identifier(cid))


@app.route('/api/documents/<int:doc_id>')
def api_document(doc_id):
    try:
        rec = _ledger().get(doc_id)
    except NotRegisteredError:
        return jsonify({'error': 'not-found'}), 404
    except HashItError as e:
        return _error_response(e)
    return jsonify({'document': rec.to_dict()})


@app.route('/api/uploaders/<address>/documents')
def api_uploader_documents(address):
    try:
        ids = _ledger().list_by_uploader(address)
    except HashItError as e:
        return _error_response(e)
    return jsonify({'address': address, 'document_ids': ids})


@app.route('/api/documents', methods=['POST'])
def api_submit():
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'invalid-input', 'detail': 'no data'}), 400
    public_key = data.get('public_key')
    signature = data.get('signature')
    if not public_key or not signature or not isinstance(data.get('request'), dict):
        return jsonify({'error': 'invalid-input', 'detail': 'request, public_key and signature required'}), 400
    try:
        req = RegistrationRequest.from_payload(data['request'])
        doc_id = _ledger().record_signed(req, public_key, signature)
    except HashItError as e:
        REGISTRATIONS.labels(outcome=type(e).__name__).inc()
        return _error_response(e)
    REGISTRATIONS.labels(outcome='confirmed').inc()
    return jsonify({'document_id': doc_id}), 201


@app.route('/api/verify', methods=['POST'])
def api_verify():
    data = _uploaded_bytes()
    secret = request.form.get('secret')
    settings = current_app.config['HASHIT_SETTINGS']
    try:
        ctx = FlowContext(registry=_ledger(), storage=current_app.config['HASHIT_STORAGE'],
                          prover=current_app.config['HASHIT_PROVER'],
                          binding_mode=parse_binding_mode(settings.binding_mode))
        result = verify_by_file(ctx, data, secret)
    except HashItError as e:
        VERIFICATIONS.labels(outcome=type(e).__name__).inc()
        return _error_response(e)
    VERIFICATIONS.labels(outcome='verified').inc()
    return jsonify({'verified': True, 'uploader': result.uploader, 'document': result.record.to_dict()})
