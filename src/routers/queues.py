# src/routers/queues.py
# Мониторинг очередей для админки: счётчики по статусам, последние упавшие
# задачи и ручной перезапуск финально упавшей задачи.

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette import status

from ..queues.job_queue import Job
from ..runtime import Pipeline, get_pipeline
from ..utils.auth_dep import AuthUser, require_roles

router = APIRouter()


def _job_out(job: Job) -> dict:
    return {
        "id": job.id,
        "name": job.name,
        "data": job.data,
        "attemptsMade": job.attempts_made,
        "status": job.status,
        "timestamp": job.timestamp,
        "finishedOn": job.finished_on,
        "failedReason": job.failed_reason,
    }


@router.get("")
async def queue_overview(
    failed_limit: int = Query(20, ge=0, le=100, alias="failedLimit"),
    pipeline: Pipeline = Depends(get_pipeline),
    _: AuthUser = Depends(require_roles("ADMIN")),
):
    data = {}
    for name, queue in pipeline.queues.items():
        failed = await queue.get_failed(0, failed_limit - 1) if failed_limit else []
        data[name] = {
            "counts": await queue.get_job_counts(),
            "failed": [_job_out(j) for j in failed],
        }
    return {"success": True, "data": data}


@router.post("/{queue_name}/jobs/{job_id}/retry")
async def retry_failed_job(
    queue_name: str,
    job_id: str,
    pipeline: Pipeline = Depends(get_pipeline),
    _: AuthUser = Depends(require_roles("ADMIN")),
):
    queue = pipeline.queues.get(queue_name)
    if queue is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Queue not found")
    if not await queue.retry_job(job_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Failed job not found")
    return {"success": True, "message": f"Job {job_id} re-queued"}
