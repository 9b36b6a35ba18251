import sqlite3
from pathlib import Path
from typing import List, Optional

DB_PATH = Path.home() / '.hashit' / 'registry.db'

SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS Documents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ipfs_cid TEXT NOT NULL,
    zkp_commitment TEXT NOT NULL,
    uploader TEXT NOT NULL,
    is_encrypted INTEGER NOT NULL DEFAULT 0,
    original_hash TEXT NOT NULL UNIQUE,
    public_key TEXT,
    signature TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_documents_cid ON Documents(ipfs_cid);
CREATE INDEX IF NOT EXISTS idx_documents_uploader ON Documents(uploader);
CREATE TRIGGER IF NOT EXISTS documents_no_update BEFORE UPDATE ON Documents
BEGIN
    SELECT RAISE(ABORT, 'Documents is append-only');
END;
CREATE TRIGGER IF NOT EXISTS documents_no_delete BEFORE DELETE ON Documents
BEGIN
    SELECT RAISE(ABORT, 'Documents is append-only');
END;
"""


def get_conn(db_path=None):
    conn = sqlite3.connect(str(db_path or DB_PATH), timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path=None):
    p = Path(db_path or DB_PATH)
    p.parent.mkdir(parents=True, exist_ok=True)
    conn = get_conn(p)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()


def insert_document(db_path, ipfs_cid, zkp_commitment, uploader, is_encrypted, original_hash,
                    public_key=None, signature=None) -> int:
    """Append a document row. Raises sqlite3.IntegrityError for a known original_hash."""
    conn = get_conn(db_path)
    try:
        cur = conn.execute(
            'INSERT INTO Documents (ipfs_cid, zkp_commitment, uploader, is_encrypted, original_hash, public_key, signature) '
            'VALUES (?, ?, ?, ?, ?, ?, ?)',
            (ipfs_cid, zkp_commitment, uploader, 1 if is_encrypted else 0, original_hash, public_key, signature))
        conn.commit()
        return cur.lastrowid
    finally:
        conn.close()


def _fetch_one(db_path, sql, args) -> Optional[sqlite3.Row]:
    conn = get_conn(db_path)
    try:
        return conn.execute(sql, args).fetchone()
    finally:
        conn.close()


def document_by_hash(db_path, original_hash):
    return _fetch_one(db_path, 'SELECT * FROM Documents WHERE original_hash=?', (original_hash,))


def document_by_cid(db_path, ipfs_cid):
    return _fetch_one(db_path, 'SELECT * FROM Documents WHERE ipfs_cid=? ORDER BY id LIMIT 1', (ipfs_cid,))


def document_by_id(db_path, doc_id):
    return _fetch_one(db_path, 'SELECT * FROM Documents WHERE id=?', (doc_id,))


def document_ids_by_uploader(db_path, uploader) -> List[int]:
    conn = get_conn(db_path)
    try:
        rows = conn.execute('SELECT id FROM Documents WHERE uploader=? ORDER BY id', (uploader,)).fetchall()
        return [r['id'] for r in rows]
    finally:
        conn.close()


def count_documents(db_path) -> int:
    row = _fetch_one(db_path, 'SELECT COUNT(*) AS c FROM Documents', ())
    return row['c']
