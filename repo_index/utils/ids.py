"""ID helpers."""

from __future__ import annotations

import uuid


def new_id(prefix: str) -> str:
    """Generate an opaque row identifier such as ``doc_<hex>``."""
    return f"{prefix}_{uuid.uuid4().hex}"
