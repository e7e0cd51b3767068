from datetime import datetime, timezone as dt_timezone
from typing import Optional, Tuple

from django.utils import timezone

from .errors import BadRequest


def identity_key(value, field: str = "identity") -> str:
    """Normalize an identity id from a JSON body or token claim to a string."""
    if isinstance(value, bool) or value is None:
        raise BadRequest(f"missing_{field}")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if "-" in text:
            # dashes separate the members of a topic name
            raise BadRequest(f"invalid_{field}")
        return text
    raise BadRequest(f"invalid_{field}")


def _pair_sort_key(value: str):
    if value.isdigit():
        return (0, int(value), value)
    return (1, 0, value)


def canonical_pair(first: str, second: str) -> Tuple[str, str]:
    """Order two identities ascending, numerically when both are integers."""
    low, high = sorted([first, second], key=_pair_sort_key)
    return low, high


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if timezone.is_naive(value):
        value = timezone.make_aware(value, dt_timezone.utc)
    return value.isoformat()
