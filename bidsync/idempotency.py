# bidsync/idempotency.py
import time, uuid

TEMP_PREFIX = "tmp-"

def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)

def make_temp_id(kind: str) -> str:
    """Generate a local id for an optimistic record not yet acknowledged by the server."""
    return f"{TEMP_PREFIX}{kind}-{uuid.uuid4().hex[:16]}"

def is_temp_id(entity_id: str) -> bool:
    return entity_id.startswith(TEMP_PREFIX)
