import sys
import traceback
from typing import Any, Optional


class SessionRagException(Exception):
    """
    Base exception for the session RAG backend.

    Records the human-readable message, the file/line where the wrapped error
    was raised (when there is one) and the formatted traceback for logs.
    Subclasses pin the HTTP status the API layer answers with.
    """

    status_code: int = 500

    def __init__(self, error_message: Any, error_details: Optional[object] = None):
        # Normalize message
        self.error_message = str(error_message)

        # Resolve exc_info (supports: sys module, Exception object, or current context)
        if error_details is sys or error_details is None:
            exc_type, exc_value, exc_tb = sys.exc_info()
        elif isinstance(error_details, BaseException):
            exc_type, exc_value, exc_tb = (
                type(error_details),
                error_details,
                error_details.__traceback__,
            )
        else:
            exc_type, exc_value, exc_tb = sys.exc_info()

        # Walk to the last frame to report the most relevant location
        last_tb = exc_tb
        while last_tb and last_tb.tb_next:
            last_tb = last_tb.tb_next

        self.file_name = last_tb.tb_frame.f_code.co_filename if last_tb else "<unknown>"
        self.lineno = last_tb.tb_lineno if last_tb else -1
        self.cause = exc_value

        if exc_type and exc_tb:
            self.traceback_str = "".join(
                traceback.format_exception(exc_type, exc_value, exc_tb)
            )
        else:
            self.traceback_str = ""

        super().__init__(self.error_message)

    @property
    def message(self) -> str:
        return self.error_message

    def to_dict(self) -> dict:
        return {"error": self.error_message}

    def __str__(self):
        base = self.error_message
        if self.cause is not None and self.lineno != -1:
            base = f"{base} [{self.file_name}:{self.lineno}] {self.cause}"
        return base

    def __repr__(self):
        return f"{type(self).__name__}(message={self.error_message!r})"


class InvalidInput(SessionRagException):
    """Malformed or missing request fields."""

    status_code = 400


class UnsupportedFormat(SessionRagException):
    """Uploaded file extension has no extractor."""

    status_code = 400

    def __init__(self, extension: str, error_details: Optional[object] = None):
        self.extension = extension
        super().__init__(
            f"Unsupported file type: {extension or '<none>'}. Supported: PDF, MD, TXT.",
            error_details,
        )


class Misconfigured(SessionRagException):
    """Required backend credentials or endpoints are absent."""

    status_code = 500


class QuotaExhausted(SessionRagException):
    status_code = 429

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.remaining = 0
        super().__init__("Daily limit reached. Please try again tomorrow.")

    def to_dict(self) -> dict:
        return {"error": self.error_message, "tokens": 0}


class IngestionFailed(SessionRagException):
    """Embedding or index-store failure while ingesting a source."""

    status_code = 500


# Sub-kinds reported to the client so it can decide whether to retry
GENERATION_ERROR_STATUS = {
    "quota_exceeded": 429,
    "rate_limited": 429,
    "auth_error": 500,
    "model_error": 503,
    "generic_error": 500,
}


class GenerationFailed(SessionRagException):
    def __init__(
        self,
        error_message: Any,
        error_type: str = "generic_error",
        model_name: Optional[str] = None,
        error_details: Optional[object] = None,
    ):
        self.error_type = error_type if error_type in GENERATION_ERROR_STATUS else "generic_error"
        self.model_name = model_name
        self.status_code = GENERATION_ERROR_STATUS[self.error_type]
        super().__init__(error_message, error_details)

    def to_dict(self) -> dict:
        out = {"error": self.error_message, "errorType": self.error_type}
        if self.model_name and self.error_type not in ("auth_error", "generic_error"):
            out["modelName"] = self.model_name
        return out
