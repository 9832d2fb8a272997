import datetime as dt


def utcnow() -> dt.datetime:
    """Naive UTC timestamp, matching the ``DateTime`` columns."""

    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)
