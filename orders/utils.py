import string
from datetime import datetime, timezone

from django.utils.crypto import get_random_string

ALNUM = string.ascii_uppercase + string.digits


def generate_order_id(now=None) -> str:
    # e.g. 20261016-203701-K3Z9QA; the suffix carries ~31 bits of randomness
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y%m%d-%H%M%S}-{get_random_string(6, allowed_chars=ALNUM)}"


def format_amount(amount: int, currency: str = "PHP") -> str:
    """Render minor units for humans, e.g. ``123450`` -> ``PHP 1,234.50``."""
    return f"{currency} {amount // 100:,}.{amount % 100:02d}"


def from_epoch(value):
    """Gateway timestamps are epoch seconds; return an aware datetime or None."""
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
