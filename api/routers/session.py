from fastapi import APIRouter, Depends

from api.deps import get_orchestrator, get_session_id
from session_rag.logger import GLOBAL_LOGGER as log
from session_rag.schemas import SourceMetadata
from session_rag.src.document_chat.orchestrator import Orchestrator

router = APIRouter()


def source_to_client(source: SourceMetadata) -> dict:
    return {
        "id": source.id,
        "name": source.name,
        "type": source.content_type,
        "size": source.size,
        "sourceType": source.kind,
        "uploadedAt": source.uploaded_at,
    }


@router.get("/session")
async def get_session(
    session_id: str = Depends(get_session_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Remaining quota and attached sources (in attachment order).
    """
    snapshot = await orchestrator.session_snapshot(session_id)
    return {
        "tokens": snapshot["tokens"],
        "files": [source_to_client(s) for s in snapshot["files"]],
    }


@router.delete("/session")
async def delete_session(
    session_id: str = Depends(get_session_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    deleted = await orchestrator.clear_session(session_id)
    log.info("Session deleted | session_id=%s | chunks=%d", session_id, deleted)
    return {"success": True}


@router.post("/session/reset")
async def reset_session_quota(
    session_id: str = Depends(get_session_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Administrative: restore the default question budget."""
    tokens = await orchestrator.reset_quota(session_id)
    return {"tokens": tokens}
