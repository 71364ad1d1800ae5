import asyncio
from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from api.deps import get_orchestrator, get_session_id
from session_rag.exception.custom_exception import GenerationFailed
from session_rag.logger import GLOBAL_LOGGER as log
from session_rag.schemas import ChatTurn
from session_rag.src.document_chat.generation import AnswerStream
from session_rag.src.document_chat.orchestrator import Orchestrator

router = APIRouter()


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: Optional[str] = None
    sources: Optional[List[Any]] = None
    target_source: Optional[str] = Field(None, alias="targetSource")
    conversation_history: Optional[List[ChatTurn]] = Field(None, alias="conversationHistory")
    model: Optional[str] = None


async def _relay(stream: AnswerStream):
    """
    Forward tokens to the client in order.
    A client disconnect cancels this task; the answer stream is cancelled
    and closed so the upstream model stream is released.
    """
    try:
        async for token in stream:
            yield token
    except asyncio.CancelledError:
        stream.cancel()
        raise
    except GenerationFailed as e:
        # headers are already sent: the stream just ends early
        log.error(
            "Stream terminated by generation failure",
            session_id=stream.session_id,
            error_type=e.error_type,
            emitted_chars=len(stream.text),
        )
    finally:
        await stream.aclose()


@router.post("/chat")
async def chat(
    req: ChatRequest,
    session_id: str = Depends(get_session_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Main chat endpoint.

    Pipeline:
      1. Validate question + sources
      2. Spend one quota unit (429 when exhausted)
      3. Retrieve this session's chunks (optionally one source only)
      4. Stream the grounded answer as text/plain
    """
    log.info("Chat request received | session_id=%s", session_id)

    stream = await orchestrator.ask(
        session_id,
        req.question,
        req.sources,
        target_source=req.target_source,
        conversation_history=req.conversation_history,
        model=req.model,
    )

    # failures before the first token still get a structured error response
    await stream.prime()

    return StreamingResponse(
        _relay(stream),
        media_type="text/plain; charset=utf-8",
        headers={"x-remaining-tokens": str(stream.remaining_quota)},
    )
