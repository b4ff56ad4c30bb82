"""Display helpers for addresses, token amounts and USD values."""
from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Optional


def format_address(address: str, prefix: int = 4, suffix: int = 4) -> str:
    """'9WzDXwBb...AWWM' style truncation; short strings pass through."""
    if not address or len(address) < prefix + suffix + 3:
        return address
    return f"{address[:prefix]}...{address[-suffix:]}"


def scale_amount(raw: int, decimals: int) -> Decimal:
    """Exact raw → UI conversion; no float and no context rounding on the way."""
    sign, digits, _ = Decimal(int(raw)).as_tuple()
    return Decimal((sign, digits, -int(decimals)))


def format_token_amount(raw: int, decimals: int, display_decimals: int = 6) -> str:
    """Scale *raw* by 10^decimals and render with trailing zeros stripped."""
    amount = scale_amount(raw, decimals)
    text = f"{amount:.{display_decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def format_usd(amount: Optional[float], decimals: int = 2) -> str:
    if amount is None:
        return "Unknown"
    return f"${amount:,.{decimals}f}"


def format_timestamp(unix_seconds: Optional[float]) -> str:
    if not unix_seconds:
        return "Unknown"
    ts = dt.datetime.fromtimestamp(float(unix_seconds), tz=dt.timezone.utc)
    return ts.strftime("%Y-%m-%d %H:%M:%S UTC")


def utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()
