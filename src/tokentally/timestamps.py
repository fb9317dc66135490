from datetime import datetime, timezone
from typing import Any


def now_utc() -> "datetime":
    return datetime.now(timezone.utc)


def parse_timestamp(value: "Any") -> "datetime | None":
    """
    parses the timestamp representations used by provider logs and APIs:
     - ISO-8601 strings ("2025-01-01T10:00:00.000Z"),
     - epoch seconds as int/float,
     - epoch milliseconds as a digit string ("1735725600000").
    Naive values are assumed to be UTC. Returns None when the
    value can't be parsed.
    """
    if isinstance(value, bool) or value is None:
        return None

    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)

        if not isinstance(value, str):
            return None

        raw = value.strip()
        if not raw:
            return None

        if raw.isdigit():
            return datetime.fromtimestamp(int(raw) / 1000, tz=timezone.utc)

        parsed = datetime.fromisoformat(raw)
    except (ValueError, OverflowError, OSError):
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def start_of_month(now: "datetime | None" = None) -> "datetime":
    """
    returns midnight of the first day of the current month in
    local time.
    """
    local = (now or now_utc()).astimezone()
    return local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
