"""Content-addressed storage backends.

 - ``IPFSAddresser``: an IPFS daemon's HTTP API (default http://127.0.0.1:5001).
 - ``LocalAddresser``: a directory keyed by content identifier, for
   development and tests. Identifiers are computed with ``cid.compute_cid``
   using the same parameters the daemon is asked to use, so both backends
   agree on the identifier of a given payload.

``store`` and ``identifier_only`` must always return the same identifier for
the same bytes; ``identifier_only`` never retains the data.
"""
import json
import logging
import os
from pathlib import Path
from typing import Optional

import requests

from . import http_client
from .cid import CHUNK_SIZE, compute_cid
from .errors import NetworkUnavailableError, NotFoundError

logger = logging.getLogger(__name__)

IPFS_API = 'http://127.0.0.1:5001'

ADD_PARAMS = {
    'cid-version': '1',
    'raw-leaves': 'true',
    'hash': 'sha2-256',
    'chunker': f'size-{CHUNK_SIZE}',
}


class ContentAddresser:
    def store(self, data: bytes) -> str:
        raise NotImplementedError()

    def identifier_only(self, data: bytes) -> str:
        raise NotImplementedError()

    def fetch(self, cid: str) -> bytes:
        raise NotImplementedError()

    def pin(self, cid: str) -> bool:
        raise NotImplementedError()


class IPFSAddresser(ContentAddresser):
    def __init__(self, api_url: str = IPFS_API, timeout: float = 30, retries: int = 3,
                 session: Optional[requests.Session] = None):
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.retries = retries
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f'{self.api_url}{path}'

    def _add(self, data: bytes, only_hash: bool) -> str:
        params = dict(ADD_PARAMS)
        params['only-hash'] = 'true' if only_hash else 'false'
        params['pin'] = 'false' if only_hash else 'true'
        res = http_client.request('POST', self._url('/api/v0/add'), session=self.session,
                                  timeout=self.timeout, params=params, files={'file': ('file', data)})
        if res.status_code != 200:
            raise NetworkUnavailableError(f'IPFS add failed ({res.status_code}): {res.text[:200]}')
        # add streams one JSON object per line; the last one is the root
        lines = [line for line in res.text.splitlines() if line.strip()]
        if not lines:
            raise NetworkUnavailableError('IPFS add returned an empty response')
        try:
            return json.loads(lines[-1])['Hash']
        except (ValueError, KeyError) as e:
            raise NetworkUnavailableError(f'unexpected IPFS add response: {lines[-1][:200]}') from e

    def store(self, data: bytes) -> str:
        cid = self._add(data, only_hash=False)
        logger.info('IPFS upload success. CID: %s', cid)
        return cid

    def identifier_only(self, data: bytes) -> str:
        cid = self._add(data, only_hash=True)
        logger.info('CID calculated without storing. CID: %s', cid)
        return cid

    def _cat_once(self, cid: str) -> bytes:
        params = {'arg': cid, 'timeout': f'{int(self.timeout)}s'}
        try:
            res = self.session.post(self._url('/api/v0/cat'), params=params, timeout=self.timeout)
        except requests.ConnectionError as e:
            raise NetworkUnavailableError(f'IPFS API unreachable at {self.api_url}: {e}') from e
        except requests.Timeout as e:
            raise NotFoundError(f'{cid} not retrievable within {self.timeout}s') from e
        except requests.RequestException as e:
            raise NetworkUnavailableError(f'IPFS API unreachable at {self.api_url}: {e}') from e
        if res.status_code != 200:
            raise NotFoundError(f'{cid} not available: {res.text[:200]}')
        return res.content

    def fetch(self, cid: str) -> bytes:
        return http_client.with_retries(lambda: self._cat_once(cid), retries=self.retries,
                                        what=f'IPFS cat {cid}')

    def pin(self, cid: str) -> bool:
        res = http_client.request('POST', self._url('/api/v0/pin/add'), session=self.session,
                                  timeout=self.timeout, params={'arg': cid})
        return res.status_code == 200


class LocalAddresser(ContentAddresser):
    def __init__(self, root: str):
        self.root = Path(root)
        self.blocks = self.root / 'blocks'
        self.blocks.mkdir(parents=True, exist_ok=True)

    def _path(self, cid: str) -> Path:
        if not cid or not cid.isalnum():
            raise NotFoundError(f'invalid content identifier: {cid!r}')
        return self.blocks / cid

    def store(self, data: bytes) -> str:
        cid = compute_cid(data)
        p = self._path(cid)
        if not p.exists():
            tmp = p.with_suffix('.tmp')
            try:
                tmp.write_bytes(data)
                os.replace(tmp, p)
            except OSError as e:
                raise NetworkUnavailableError(f'local blockstore {self.blocks} is not writable: {e}') from e
        logger.info('Stored %d bytes locally. CID: %s', len(data), cid)
        return cid

    def identifier_only(self, data: bytes) -> str:
        return compute_cid(data)

    def fetch(self, cid: str) -> bytes:
        p = self._path(cid)
        if not p.is_file():
            raise NotFoundError(f'{cid} not found in {self.blocks}')
        try:
            data = p.read_bytes()
        except OSError as e:
            raise NotFoundError(f'{cid} could not be read: {e}') from e
        if compute_cid(data) != cid:
            raise NotFoundError(f'{cid} failed its integrity check')
        return data

    def pin(self, cid: str) -> bool:
        return self._path(cid).is_file()
