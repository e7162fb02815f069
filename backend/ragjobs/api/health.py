from typing import Any, Dict

from fastapi import APIRouter, Depends

from ragjobs.api.deps import get_job_service, verify_token
from ragjobs.services.jobs import JobService
from ragjobs.utils.time import utc_now

router = APIRouter()


@router.get("/health")
async def health(
    service: JobService = Depends(get_job_service),
    _: None = Depends(verify_token),
) -> Dict[str, Any]:
    try:
        await service.repo.db.fetchone("select 1")
        database = "ok"
    except Exception as exc:
        database = f"error: {exc}"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "time": utc_now(),
    }
