import math
from typing import Any, Iterator, Protocol, Sequence

from tokentally.models import PricingTable, UsageEntry


class UsageProvider(Protocol):
    """
    UsageProvider stands as a common protocol that all
    AI coding assistant providers must satisfy.

    Providers read their native usage records (log files or a
    remote API) and return provider-agnostic UsageEntry objects
    priced against the given pricing table.
    """

    @property
    def name(self) -> "str": ...

    async def fetch_entries(
        self,
        pricing: "PricingTable",
    ) -> "Sequence[UsageEntry]": ...

    async def close(self) -> "None": ...


def as_dict(value: "Any") -> "dict[str, Any]":
    return value if isinstance(value, dict) else {}


def as_int(value: "Any") -> "int":
    """
    coerces a token count to a non-negative int, 0 when absent or
    not a finite number. json accepts NaN and Infinity literals.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return max(0, int(value))


def as_float(value: "Any") -> "float | None":
    """
    returns value as a float when it is a finite number, else None.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        value = float(value)
    except OverflowError:
        return None
    return value if math.isfinite(value) else None


def as_str(value: "Any") -> "str | None":
    return value if isinstance(value, str) and value else None


def read_lines(path: "str") -> "Iterator[str]":
    """
    yields the non-blank lines of a UTF-8 text file. OSError and
    UnicodeDecodeError propagate to the caller.
    """
    with open(path, encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if line:
                yield line
