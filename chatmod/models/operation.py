"""
Intent records for multi-key operations.
"""

from typing import Any, Dict
from pydantic import BaseModel, Field


class PendingOperation(BaseModel):
    """
    Written under pendingOps/ before a multi-key operation starts and
    removed once every write has landed. Leftovers are replayed on startup.
    """
    id: str
    op: str                     # ban | unban | review_delete
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at_ms: int
