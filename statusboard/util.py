"""Small helpers shared by the server and the client."""
import time
import uuid
from datetime import datetime, timezone


def utc_now() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def make_id(prefix: str) -> str:
    """
    Generate a sortable unique id (ms-precision timestamp + random hex).

    Used for entities created on the client before the server has seen them,
    so the id must stay stable across the later snapshot that commits them.
    """
    ts = int(time.time() * 1000)
    rand = uuid.uuid4().hex[:8]
    return f"{prefix}-{ts}-{rand}"
