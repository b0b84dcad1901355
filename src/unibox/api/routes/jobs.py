"""Job status polling endpoint."""

from fastapi import APIRouter

from unibox.dependencies import CurrentUserId, Inbox

router = APIRouter(tags=["Jobs"])


@router.get("/jobs/{job_id}")
async def get_job_status(
    job_id: str,
    user_id: CurrentUserId,
    inbox: Inbox,
) -> dict:
    job = await inbox.get_job(job_id, user_id=user_id)
    return job.model_dump(mode="json", exclude_none=True)
