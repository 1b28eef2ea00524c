from fastapi import Header, HTTPException

from autoflow.services.executor_service import ExecutorService
from autoflow.services.scheduler_service import get_executor as _shared_executor


async def get_user_id(x_user_id: str = Header(default="")) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id


def get_executor() -> ExecutorService:
    return _shared_executor()
