"""Shape Square payloads so JavaScript clients can read them without loss.

Square models money amounts, object versions and card expiry fields as
64-bit integers. Those, and any other integer beyond the range a JSON number
holds exactly in a browser, are rendered as strings.
"""

from typing import Any

MAX_SAFE_INTEGER = 2**53 - 1

INT64_FIELDS = frozenset({"amount", "version", "exp_month", "exp_year"})


def json_safe(value: Any, key: str | None = None) -> Any:
    """Recursively convert 64-bit integer fields of ``value`` to strings."""
    if isinstance(value, dict):
        return {k: json_safe(v, k) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(item) for item in value]
    if isinstance(value, int) and not isinstance(value, bool):
        if key in INT64_FIELDS or abs(value) > MAX_SAFE_INTEGER:
            return str(value)
    return value
