import logging
import time
from typing import Callable, Optional

import requests

from .errors import NetworkUnavailableError

logger = logging.getLogger(__name__)


def request(method: str, url: str, session: Optional[requests.Session] = None, timeout: float = 30, **kwargs) -> requests.Response:
    """Single HTTP call; transport failures surface as NetworkUnavailableError."""
    s = session or requests
    try:
        return s.request(method, url, timeout=timeout, **kwargs)
    except requests.RequestException as e:
        raise NetworkUnavailableError(f'{method} {url} failed: {e}') from e


def with_retries(fn: Callable, retries: int = 3, what: str = 'request'):
    """Run an idempotent call, retrying NetworkUnavailableError with linear backoff.

    Never wrap non-idempotent writes with this helper.
    """
    last_exc = None
    for attempt in range(max(1, retries)):
        try:
            return fn()
        except NetworkUnavailableError as e:
            last_exc = e
            logger.warning('%s failed (attempt %s): %s', what, attempt + 1, e)
            if attempt + 1 < retries:
                time.sleep(1 + attempt)
    logger.error('%s failed after %s attempts: %s', what, retries, last_exc)
    raise last_exc
