# utils/time.py
from datetime import datetime, timezone, timedelta
from typing import Any, Optional

def utc_ms() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp() * 1000)

def parse_tf(tf: str) -> int:
    if tf.endswith("ms"):
        return int(tf[:-2])
    if tf.endswith("s"):
        return int(tf[:-1]) * 1000
    if tf.endswith("m"):
        return int(tf[:-1]) * 60_000
    if tf.endswith("h"):
        return int(tf[:-1]) * 3_600_000
    if tf.endswith("d"):
        return int(tf[:-1]) * 86_400_000
    raise ValueError(f"unknown timeframe: {tf}")

def to_ms(value: Any) -> Optional[int]:
    """
    Epoch millis from an int/float, a digit string, or an ISO-8601 string
    such as 2024-01-01T00:00:00.000Z. Returns None when empty or unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    s = str(value).strip()
    if not s:
        return None
    if s.isdigit():
        return int(s)
    try:
        t = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    return int(t.timestamp() * 1000)

def add_days_ms(ts_ms: int, days: int) -> int:
    t = datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc) + timedelta(days=days)
    return int(t.timestamp() * 1000)
