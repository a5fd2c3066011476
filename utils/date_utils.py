from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

TIMESTAMP_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%d")
PREDEFINED_RANGES = {"last7days": 7, "last30days": 30}


def utcnow() -> datetime:
    # naive UTC, matching the DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse_timestamp(raw: str, field: str, end_of_day: bool) -> datetime:
    """
    Accepts 'YYYY-MM-DD', 'YYYY-MM-DD HH:MM', or 'YYYY-MM-DD HH:MM:SS'.
    A bare date is the start of that day, or its last microsecond for end_of_day.
    """
    if not raw:
        raise ValueError(f"Missing '{field}'")

    raw = raw.strip()
    for fmt in TIMESTAMP_FORMATS:
        try:
            parsed = datetime.strptime(raw, fmt)
        except ValueError:
            continue
        if end_of_day and fmt == "%Y-%m-%d":
            return parsed.replace(hour=23, minute=59, second=59, microsecond=999999)
        return parsed

    raise ValueError(f"Invalid date format for {field}: {raw}")


def parse_start_timestamp(raw_start: str) -> datetime:
    return _parse_timestamp(raw_start, "startDate", end_of_day=False)


def parse_end_timestamp(raw_end: str) -> datetime:
    return _parse_timestamp(raw_end, "endDate", end_of_day=True)


def resolve_date_range(
        start_date: Optional[str],
        end_date: Optional[str],
        predefined_range: Optional[str] = None,
        now: Optional[datetime] = None,
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Turn the listing/report query parameters into a (start, end) window.

    A predefined range wins over explicit dates. Either bound may be None.
    Raises ValueError on malformed input or an inverted window.
    """
    if predefined_range:
        days = PREDEFINED_RANGES.get(predefined_range)
        if days is None:
            raise ValueError(f"Unknown range: {predefined_range}")
        return (now or utcnow()) - timedelta(days=days), None

    start_dt = parse_start_timestamp(start_date) if start_date else None
    end_dt = parse_end_timestamp(end_date) if end_date else None
    if start_dt and end_dt and end_dt < start_dt:
        raise ValueError("endDate must be on or after startDate")
    return start_dt, end_dt
