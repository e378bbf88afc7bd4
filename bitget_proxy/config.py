import os
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _flag(value) -> bool:
    return str(value).strip().lower() in {'1', 'true', 'yes', 'on'}


def load_config(env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Build the configuration dict from `env` (defaults to os.environ)."""
    env = os.environ if env is None else env
    return {
        'PORT': int(env.get('PORT', 3000)),
        'HOST': env.get('HOST', '0.0.0.0'),
        'DEBUG': _flag(env.get('DEBUG', 'false')),
        'CORS_ALLOWED_ORIGINS': env.get('CORS_ALLOWED_ORIGINS', '*'),
        # Upstream
        'BITGET_BASE_URL': env.get('BITGET_BASE_URL', 'https://api.bitget.com').rstrip('/'),
        'BITGET_API_KEY': env.get('BITGET_API_KEY') or None,
        'API_TIMEOUT_CONNECT': float(env.get('API_TIMEOUT_CONNECT', 5)),
        'API_TIMEOUT_READ': float(env.get('API_TIMEOUT_READ', 10)),
        'REQUEST_RETRIES': int(env.get('REQUEST_RETRIES', 2)),
        'RETRY_BACKOFF': float(env.get('RETRY_BACKOFF', 0.5)),
        'POOL_MAXSIZE': int(env.get('POOL_MAXSIZE', 32)),
        'CB_FAIL_THRESHOLD': int(env.get('CB_FAIL_THRESHOLD', 5)),
        'CB_RESET_SECONDS': float(env.get('CB_RESET_SECONDS', 20)),
        # Cache TTLs (seconds), one per query family
        'TICKERS_CACHE_TTL': float(env.get('TICKERS_CACHE_TTL', 30)),
        'TICKER_CACHE_TTL': float(env.get('TICKER_CACHE_TTL', 5)),
        'CANDLES_CACHE_TTL': float(env.get('CANDLES_CACHE_TTL', 10)),
        'PRODUCTS_CACHE_TTL': float(env.get('PRODUCTS_CACHE_TTL', 60)),
        'CACHE_SWEEP_INTERVAL': float(env.get('CACHE_SWEEP_INTERVAL', 300)),
        'CACHE_SWEEP_MULTIPLE': float(env.get('CACHE_SWEEP_MULTIPLE', 10)),
        # Background refresh of the all-tickers batch
        'BACKGROUND_REFRESH': _flag(env.get('BACKGROUND_REFRESH', 'true')),
        'REFRESH_INTERVAL': float(env.get('REFRESH_INTERVAL', 30)),
        # Request handling
        'DEFAULT_SYMBOL': env.get('DEFAULT_SYMBOL', 'BTCUSDT_SPBL'),
        'DEFAULT_PERIOD': env.get('DEFAULT_PERIOD', '1h'),
        'CANDLE_LIMIT_MAX': int(env.get('CANDLE_LIMIT_MAX', 1000)),
        'TICKER_FALLBACK_FETCH': _flag(env.get('TICKER_FALLBACK_FETCH', 'true')),
        'VARIATION_DECIMALS': int(env.get('VARIATION_DECIMALS', 8)),
        # Spike alerts
        'SPIKE_THRESHOLD': float(env.get('SPIKE_THRESHOLD', 0.04)),
        'SPIKE_DEDUPE_WINDOW_MS': int(env.get('SPIKE_DEDUPE_WINDOW_MS', 300000)),
        'SPIKE_DEDUPE_TOLERANCE': float(env.get('SPIKE_DEDUPE_TOLERANCE', 0.001)),
        'SPIKE_MAX_ALERTS': int(env.get('SPIKE_MAX_ALERTS', 50)),
        # 5-minute variation enrichment of the all-tickers batch
        'CHANGE_5M_ENABLED': _flag(env.get('CHANGE_5M_ENABLED', 'false')),
        'CHANGE_5M_MAX_SYMBOLS': int(env.get('CHANGE_5M_MAX_SYMBOLS', 50)),
        'CHANGE_5M_MAX_WORKERS': int(env.get('CHANGE_5M_MAX_WORKERS', 4)),
    }


# Dynamic Configuration with Environment Variables and Defaults
CONFIG = load_config()
