from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse

from api.deps import get_orchestrator, get_session_id
from session_rag.logger import GLOBAL_LOGGER as log
from session_rag.src.document_chat.orchestrator import Orchestrator
from session_rag.utils.document_ops import check_supported

router = APIRouter()


@router.post("/ingest")
async def ingest_source(
    file: Optional[UploadFile] = File(None),
    url: Optional[str] = Form(None),
    text: Optional[str] = Form(None),
    session_id: str = Depends(get_session_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Attach one source to the session:
      - file (pdf / md / txt), or
      - url (web page), or
      - text (raw text)
    Unsupported extensions are rejected before the upload body is read.
    """
    file_name = None
    file_bytes = None
    if file is not None and file.filename:
        check_supported(file.filename)
        file_name = file.filename
        file_bytes = await file.read()
        log.info("Upload received | file=%s | bytes=%d", file_name, len(file_bytes))

    result = await orchestrator.ingest(
        session_id, file_name=file_name, file_bytes=file_bytes, url=url, text=text
    )

    source = {
        "id": result.source.id,
        "name": result.source.name,
        "type": result.source.content_type,
        "documentsIndexed": result.documents_indexed,
        "extractedWords": result.extracted_words,
    }
    if result.extracted_pages is not None:
        source["extractedPages"] = result.extracted_pages

    return {"success": True, "source": source}


@router.delete("/ingest")
async def delete_source(
    file_name: Optional[str] = Query(None, alias="fileName"),
    session_id: str = Depends(get_session_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    if not file_name:
        return JSONResponse(
            status_code=400, content={"success": False, "error": "fileName required"}
        )

    deleted = await orchestrator.delete_source(session_id, file_name)

    if deleted == 0:
        message = f'No embeddings found for "{file_name}"'
    else:
        message = f'Deleted {deleted} embeddings for "{file_name}"'
    return {"success": True, "deleted": deleted, "message": message}
