import uuid


def random_id(prefix: str = "span") -> str:
    """Return a prefixed unique id, e.g. ``llm_0b6f...``."""
    return f"{prefix}_{uuid.uuid4()}"
