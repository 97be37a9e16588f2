from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from fsup.api import deps
from fsup.db.models import UploadTask

from . import schemas


router = APIRouter(prefix="/tasks", tags=["tasks"])


def task_info(task: UploadTask) -> schemas.TaskInfo:
    return schemas.TaskInfo(
        id=task.task_id,
        name=f"upload {task.name} to [{task.dst_dir}]",
        state=task.state.value,
        progress=task.progress,
        error=task.error or "",
        start_time=task.started_at,
        end_time=task.finished_at,
    )


@router.get("/{task_id}", response_model=schemas.TaskResponse)
async def get_task(
    task_id: str,
    service: deps.UploadServiceDependency,
    principal: deps.PrincipalDependency,
) -> schemas.TaskResponse:
    task = await service.get_task(task_id)
    if not task or task.user_id != principal.user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="task_not_found")
    return schemas.TaskResponse(data=task_info(task))


__all__ = ["router", "task_info"]
