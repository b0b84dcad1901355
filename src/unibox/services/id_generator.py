"""Prefixed ID generation utility."""

import uuid


def generate_id(prefix: str) -> str:
    """Generate a prefixed unique ID.

    Args:
        prefix: Entity prefix: "tpi_", "ntf_", "tsk_", "conn_", "job_", "evt_" (dead-letter envelopes) or "trc_" (trace ids).

    Returns:
        A string like "ntf_a1b2c3d4e5f6a7b8".
    """
    short_uuid = uuid.uuid4().hex[:16]
    return f"{prefix}{short_uuid}"
