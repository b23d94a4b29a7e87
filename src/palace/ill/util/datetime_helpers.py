import datetime

import pytz


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(tz=pytz.UTC)


def to_utc(dt: datetime.datetime | None) -> datetime.datetime | None:
    """Make a datetime timezone-aware, in UTC.

    A naive datetime is taken to already be in UTC. SQLite hands back
    naive datetimes even for timezone-aware columns, so stored times go
    through here before they are compared.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def from_timestamp(ts: float) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(ts, tz=pytz.UTC)
