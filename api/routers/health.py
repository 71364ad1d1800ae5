from fastapi import APIRouter

from orchestrator.orchestrator_manager import orchestrator_manager
from session_rag.exception.custom_exception import SessionRagException
from session_rag.utils.thread_pool import run_sync

router = APIRouter()


@router.get("")
async def health():
    try:
        orchestrator = orchestrator_manager.get_orchestrator()
    except SessionRagException as e:
        return {"status": "degraded", "error": e.message}

    redis_ok = await run_sync(orchestrator.session_store.ping)
    return {"status": "ok" if redis_ok else "degraded", "redis": redis_ok}
