from datetime import datetime, timedelta, timezone
from typing import Optional, Union

EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every stored datetime uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 string into a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def align_up(moment: datetime, step: timedelta) -> datetime:
    """Round ``moment`` up to the next multiple of ``step`` since the epoch."""
    moment = moment.replace(microsecond=0)
    remainder = (moment - EPOCH) % step
    if not remainder:
        return moment
    return moment - remainder + step
