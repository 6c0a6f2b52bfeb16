"""Admin-only endpoints for scheduler maintenance."""

from fastapi import APIRouter, status

from clinicq.dependencies import AdminActor, Sweeper
from clinicq.scheduling.sweeper import SweepJob
from clinicq.schemas.admin import SweepReportResponse

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post(
    "/sweeper/{job}",
    response_model=SweepReportResponse,
    status_code=status.HTTP_200_OK,
    summary="Run a sweeper job now (admin only)",
)
async def run_sweeper_job(
    job: SweepJob,
    admin: AdminActor,
    sweeper: Sweeper,
) -> SweepReportResponse:
    """
    Run one maintenance job immediately instead of waiting for its schedule.

    Args:
        job: Job name
        admin: Calling admin
        sweeper: Appointment sweeper

    Returns:
        Counts of examined, changed and failed items
    """
    report = await sweeper.run_job(job)
    return SweepReportResponse.model_validate(report, from_attributes=True)
