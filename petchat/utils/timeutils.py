from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time truncated to milliseconds, the precision BSON dates keep."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def ensure_utc(value: datetime | None) -> datetime | None:
    # documents read back without tz_aware come as naive UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
