"""Admin schemas."""

from pydantic import BaseModel


class SweepReportResponse(BaseModel):
    """Outcome of a manually triggered sweeper job."""

    job: str
    examined: int
    changed: int
    failed: int
