import math
import socket

from .errors import InvalidRequest

# Bitget market-type suffixes (spot, USDT/coin/USDC-margined futures)
MARKET_SUFFIXES = ('_SPBL', '_UMCBL', '_DMCBL', '_CMCBL', '_SUMCBL')


def find_available_port(start_port=3000, max_attempts=10):
    """Find an available port starting from start_port"""
    for port in range(start_port, start_port + max_attempts):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind(('0.0.0.0', port))
                return port
            except OSError:
                continue
    raise RuntimeError("No available ports found")


def normalize_symbol(raw) -> str:
    """Upper-case and trim a client-supplied symbol: ' btcusdt_spbl ' -> 'BTCUSDT_SPBL'."""
    symbol = str(raw or '').strip().upper()
    if not symbol:
        raise InvalidRequest('symbol is required')
    return symbol


def display_symbol(symbol: str) -> str:
    """Strip a trailing market-type suffix: 'BTCUSDT_SPBL' -> 'BTCUSDT'."""
    symbol = (symbol or '').strip().upper()
    for suffix in MARKET_SUFFIXES:
        if symbol.endswith(suffix) and len(symbol) > len(suffix):
            return symbol[: -len(suffix)]
    return symbol


def as_float(x, default=None):
    """float(x), or `default` when x is blank, unparseable, NaN or infinite."""
    try:
        if x is None or x == '':
            return default
        value = float(x)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default
