from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routers import (
    chat,
    health,
    ingest,
    session,
)
from session_rag.exception.custom_exception import SessionRagException
from session_rag.logger import GLOBAL_LOGGER as log

# Routes whose error bodies carry {"success": false, ...}
_SUCCESS_FLAG_PREFIXES = ("/ingest",)


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("Application startup initiated")
    yield
    log.info("Application shutdown")


app = FastAPI(title="Session Document Chat Backend", version="1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-remaining-tokens"],
)


@app.exception_handler(SessionRagException)
async def session_rag_exception_handler(request: Request, exc: SessionRagException):
    if exc.status_code >= 500:
        log.error(
            "Request failed | path=%s | error=%s",
            request.url.path,
            str(exc),
            error_type=type(exc).__name__,
        )
    else:
        log.warning(
            "Request rejected | path=%s | error=%s", request.url.path, exc.message
        )

    body = exc.to_dict()
    if request.url.path.startswith(_SUCCESS_FLAG_PREFIXES):
        body = {"success": False, **body}
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    log.error("Unhandled error | path=%s", request.url.path, exc_info=exc)
    body = {"error": str(exc) or "Internal server error"}
    if request.url.path.startswith(_SUCCESS_FLAG_PREFIXES):
        body = {"success": False, **body}
    return JSONResponse(status_code=500, content=body)


# Router Registration
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(ingest.router, tags=["ingest"])
app.include_router(chat.router, tags=["chat"])
app.include_router(session.router, tags=["session"])


@app.get("/")
async def root():
    return {"message": "Backend is running"}
