"""
Order identifier generation.

Ids combine a nanosecond timestamp with 64 random bits, so concurrent
callers across processes collide with negligible probability. Uniqueness
itself is enforced by the transaction store.
"""
import secrets
import time

ORDER_ID_PREFIX = "ORDER_"


def generate_order_id() -> str:
    """Generate a new order id, e.g. ORDER_1729350000123456789_9f86d081884c7d65."""
    return f"{ORDER_ID_PREFIX}{time.time_ns()}_{secrets.token_hex(8)}"
