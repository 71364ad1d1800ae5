from typing import Optional

from fastapi import Header

from orchestrator.orchestrator_manager import orchestrator_manager
from session_rag.src.document_chat.orchestrator import Orchestrator
from session_rag.utils.config_loader import load_config

# Used when a request carries no x-session-id header. A convenience
# fallback, not an identity: every such caller shares this session.
DEFAULT_SESSION_ID = load_config().get("session", {}).get(
    "default_session_id", "default-session"
)


def get_session_id(x_session_id: Optional[str] = Header(None)) -> str:
    session_id = (x_session_id or "").strip()
    return session_id or DEFAULT_SESSION_ID


def get_orchestrator() -> Orchestrator:
    """
    FastAPI dependency returning the shared Orchestrator.
    Raises Misconfigured (500) before any work when credentials are missing.
    """
    return orchestrator_manager.get_orchestrator()
