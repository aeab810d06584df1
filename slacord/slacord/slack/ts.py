from __future__ import annotations

import re
from datetime import datetime, timezone

_TS_RE = re.compile(r"^\d+\.\d+$")


def is_slack_ts(value: str) -> bool:
    return bool(_TS_RE.match(value))


def ts_to_datetime(ts: str) -> datetime:
    """Convert a Slack ``ts`` such as ``1704067200.123456`` to naive UTC."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).replace(tzinfo=None)


def datetime_to_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return f"{value.timestamp():.6f}"
