"""Bitget spot market-data gateway.

One method per logical upstream query. Every call returns the `data` member
of the Bitget envelope or raises UpstreamUnavailable / UpstreamRejected.
"""
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from requests.exceptions import RequestException
from urllib3.util.retry import Retry

from .config import CONFIG
from .errors import UpstreamRejected, UpstreamUnavailable
from .reliability import CircuitBreaker

logger = logging.getLogger(__name__)

TICKERS_PATH = '/api/spot/v1/market/tickers'
TICKER_PATH = '/api/spot/v1/market/ticker'
CANDLES_PATH = '/api/spot/v1/market/candles'
PRODUCTS_PATH = '/api/spot/v1/public/products'
SUCCESS_CODE = '00000'

_BREAKER_STATUSES = {429, 500, 502, 503, 504}


def build_session(retries: int, backoff: float, pool_maxsize: int) -> requests.Session:
    """Session with retry/backoff to absorb transient connection failures."""
    session = requests.Session()
    retry = Retry(
        total=retries,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(['GET']),
        backoff_factor=backoff,
        raise_on_status=False,
    )
    # Bigger pool so the 5m enrichment fan-out does not exhaust urllib3's default (10)
    adapter = HTTPAdapter(pool_connections=pool_maxsize, pool_maxsize=pool_maxsize, max_retries=retry)
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    return session


class BitgetGateway:
    def __init__(self,
                 base_url: Optional[str] = None,
                 api_key: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 timeout: Optional[Tuple[float, float]] = None,
                 breaker: Optional[CircuitBreaker] = None,
                 config: Optional[Dict[str, Any]] = None):
        cfg = config or CONFIG
        self.base_url = (base_url or cfg['BITGET_BASE_URL']).rstrip('/')
        self.api_key = api_key if api_key is not None else cfg.get('BITGET_API_KEY')
        self.session = session or build_session(cfg['REQUEST_RETRIES'], cfg['RETRY_BACKOFF'], cfg['POOL_MAXSIZE'])
        self.timeout = timeout or (cfg['API_TIMEOUT_CONNECT'], cfg['API_TIMEOUT_READ'])
        self.breaker = breaker or CircuitBreaker(cfg['CB_FAIL_THRESHOLD'], cfg['CB_RESET_SECONDS'])
        self.calls = 0
        self._calls_lock = threading.Lock()
        self.last_error: Optional[str] = None

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['X-API-KEY'] = self.api_key
        return headers

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if not self.breaker.allow():
            logger.warning('bitget.circuit_open', extra={'event': 'circuit_open_skip', 'path': path})
            raise UpstreamUnavailable('Upstream circuit open; try again shortly')
        url = f"{self.base_url}{path}"
        with self._calls_lock:
            self.calls += 1
        started = time.time()
        try:
            resp = self.session.get(url, params=params, headers=self._headers(), timeout=self.timeout)
        except RequestException as e:
            self.breaker.record_failure(type(e).__name__)
            self.last_error = str(e)
            logger.warning(f"bitget request failed {path}: {e}")
            raise UpstreamUnavailable(f"Failed to reach upstream: {e}") from e

        try:
            body = resp.json()
        except ValueError:
            body = resp.text
        elapsed_ms = (time.time() - started) * 1000.0

        if resp.status_code in _BREAKER_STATUSES:
            self.breaker.record_failure(f"HTTP {resp.status_code}")
        else:
            self.breaker.record_success()

        if not resp.ok:
            self.last_error = f"{path} status {resp.status_code}"
            logger.warning('bitget.upstream_error', extra={'event': 'upstream_error', 'path': path,
                                                          'status': resp.status_code})
            raise UpstreamRejected(resp.status_code, body)
        if not isinstance(body, dict) or body.get('code') != SUCCESS_CODE:
            self.last_error = f"{path} code {body.get('code') if isinstance(body, dict) else 'non-json'}"
            logger.warning('bitget.api_error', extra={'event': 'api_error', 'path': path, 'status': resp.status_code})
            raise UpstreamRejected(resp.status_code, body, message='Upstream returned an error response')
        logger.debug(f"bitget {path} ok in {elapsed_ms:.1f}ms")
        return body.get('data')

    def fetch_all_tickers(self) -> List[Dict[str, Any]]:
        data = self._get(TICKERS_PATH)
        return data if isinstance(data, list) else []

    def fetch_ticker(self, symbol: str) -> Dict[str, Any]:
        data = self._get(TICKER_PATH, {'symbol': symbol})
        if not isinstance(data, dict) or not data:
            raise UpstreamRejected(404, data, message=f"No ticker for {symbol}")
        return data

    def fetch_candles(self, symbol: str, period: str, limit: int = 1) -> List[Any]:
        data = self._get(CANDLES_PATH, {'symbol': symbol, 'period': period, 'limit': int(limit)})
        return data if isinstance(data, list) else []

    def fetch_products(self) -> List[Dict[str, Any]]:
        data = self._get(PRODUCTS_PATH)
        return data if isinstance(data, list) else []


__all__ = ['BitgetGateway', 'build_session']
