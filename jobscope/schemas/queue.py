"""Queue depth schemas."""

from pydantic import BaseModel


class QueueDepth(BaseModel):
    """Point-in-time depth of one queue."""

    depth: int
    driver: str
    connection: str
    status: str  # normal, warning, critical (or healthy for the empty placeholder)
