import math

from .errors import ComputationError


def variation(open_price: float, close_price: float) -> float:
    """Percentage change from `open_price` to `close_price`.

    variation(100, 95) == -5.0. Raises ComputationError when the open is zero
    or the inputs are not finite numbers.
    """
    open_price = float(open_price)
    close_price = float(close_price)
    if not (math.isfinite(open_price) and math.isfinite(close_price)):
        raise ComputationError(f"variation undefined for open={open_price} close={close_price}")
    if open_price == 0:
        raise ComputationError('variation undefined for open == 0')
    return (close_price - open_price) / open_price * 100.0


def format_variation(value: float, decimals: int = 8) -> str:
    # serialization only; keep the float for anything downstream
    return f"{value:.{int(decimals)}f}"


__all__ = ['variation', 'format_variation']
