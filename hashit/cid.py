"""Offline content identifier computation.

Reproduces the identifiers an IPFS node assigns with ``cid-version=1`` and
``raw-leaves=true``: fixed 256 KiB chunks stored as raw blocks, joined by a
balanced UnixFS (dag-pb) tree of at most 174 links per node. A payload that
fits in one chunk is addressed by its raw block directly (``bafkrei...``),
anything larger by the dag-pb root (``bafybei...``).
"""
import base64
import hashlib
from typing import List, Tuple

CHUNK_SIZE = 262144
MAX_LINKS = 174

CODEC_RAW = 0x55
CODEC_DAG_PB = 0x70
MH_SHA2_256 = 0x12
UNIXFS_FILE = 2


def varint(n: int) -> bytes:
    out = bytearray()
    while True:
        b = n & 0x7f
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


def _field_bytes(field: int, payload: bytes) -> bytes:
    return varint((field << 3) | 2) + varint(len(payload)) + payload


def _field_varint(field: int, value: int) -> bytes:
    return varint(field << 3) + varint(value)


def cid_bytes(codec: int, block: bytes) -> bytes:
    mh = varint(MH_SHA2_256) + varint(32) + hashlib.sha256(block).digest()
    return varint(1) + varint(codec) + mh


def cid_to_str(raw: bytes) -> str:
    """Multibase base32 (lowercase, unpadded)."""
    return 'b' + base64.b32encode(raw).decode('ascii').lower().rstrip('=')


def _unixfs_file_data(filesize: int, blocksizes: List[int]) -> bytes:
    data = _field_varint(1, UNIXFS_FILE) + _field_varint(3, filesize)
    for bs in blocksizes:
        data += _field_varint(4, bs)
    return data


def _dag_pb_node(children: List[Tuple[bytes, int, int]]) -> Tuple[bytes, int, int]:
    """Encode an internal node; children are (cid, tsize, filesize).

    Returns (cid, tsize, filesize) for the new node.
    """
    body = b''
    for child_cid, tsize, _ in children:
        link = _field_bytes(1, child_cid) + _field_bytes(2, b'') + _field_varint(3, tsize)
        body += _field_bytes(2, link)
    filesize = sum(c[2] for c in children)
    body += _field_bytes(1, _unixfs_file_data(filesize, [c[2] for c in children]))
    tsize = len(body) + sum(c[1] for c in children)
    return cid_bytes(CODEC_DAG_PB, body), tsize, filesize


def compute_cid(data: bytes, chunk_size: int = CHUNK_SIZE, max_links: int = MAX_LINKS) -> str:
    chunks = [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)] or [b'']
    nodes = [(cid_bytes(CODEC_RAW, c), len(c), len(c)) for c in chunks]
    if len(nodes) == 1:
        return cid_to_str(nodes[0][0])
    while len(nodes) > 1:
        nodes = [_dag_pb_node(nodes[i:i + max_links]) for i in range(0, len(nodes), max_links)]
    return cid_to_str(nodes[0][0])
