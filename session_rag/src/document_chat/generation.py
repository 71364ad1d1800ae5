from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from session_rag.exception.custom_exception import GenerationFailed
from session_rag.logger import GLOBAL_LOGGER as log
from session_rag.prompts.prompt_library import (
    GROUNDED_PREFIX,
    NO_CONTEXT_BLOCK,
    NOT_FOUND_RESPONSE,
    PROMPT_REGISTRY,
)
from session_rag.schemas import ChatTurn, QuestionState, RetrievedChunk

# Sentinels for "cancel fired before the next token" and "upstream exhausted"
_CANCELLED = object()
_END = object()


async def _anext(iterator: AsyncIterator[str]):
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


def build_context(chunks: Sequence[RetrievedChunk]) -> str:
    return "\n\n".join(
        f"Context #{i + 1} (Page {c.metadata.page or '?'}):\n{c.content}"
        for i, c in enumerate(chunks)
    )


def _status_of(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def classify_generation_error(
    exc: BaseException, model_name: Optional[str] = None
) -> GenerationFailed:
    """
    Map an upstream model error to a GenerationFailed sub-kind the client can act on.
    """
    if isinstance(exc, GenerationFailed):
        return exc

    message = str(exc) or type(exc).__name__
    lowered = message.lower()
    status = _status_of(exc)

    if "quota" in lowered or "resource_exhausted" in lowered:
        return GenerationFailed(
            f"Quota exhausted for {model_name} model. Please try again later.",
            "quota_exceeded",
            model_name,
            exc,
        )
    if (
        "rate limit" in lowered
        or "rate_limit_exceeded" in lowered
        or "429" in message
        or status == 429
    ):
        return GenerationFailed(
            "Too many requests. Please wait a moment and try again.",
            "rate_limited",
            model_name,
            exc,
        )
    if (
        "api key" in lowered
        or "invalid_argument" in lowered
        or "authentication" in lowered
        or status in (401, 403)
    ):
        return GenerationFailed(
            "API authentication issue. Please contact support.",
            "auth_error",
            model_name,
            exc,
        )
    if "model" in lowered or "not found" in lowered or status == 404:
        return GenerationFailed(
            "The AI model is currently unavailable. Please try again later.",
            "model_error",
            model_name,
            exc,
        )
    return GenerationFailed(message, "generic_error", model_name, exc)


def _chunk_text(content: Any) -> str:
    # Gemini may return a plain string or a list of content parts
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return ""


async def _static_tokens(text: str) -> AsyncIterator[str]:
    yield text


class AnswerStream:
    """
    Single-pass stream of answer tokens for one question.

    - iterate it (once) to receive tokens in production order
    - cancel() is the cancellation channel for the transport layer: the
      upstream model stream stops being consumed and is closed
    - prime() pulls the first token ahead of time so errors raised before
      any output can still be reported as a structured error
    - text holds whatever was emitted; nothing is retracted on abort
    """

    def __init__(
        self,
        upstream: AsyncIterator[str],
        *,
        session_id: str,
        model_name: Optional[str] = None,
        remaining_quota: Optional[int] = None,
        grounded: bool = True,
    ):
        self._upstream = upstream
        self.session_id = session_id
        self.model_name = model_name
        self.remaining_quota = remaining_quota
        self.grounded = grounded

        self.state = QuestionState.STREAMING
        self.error: Optional[GenerationFailed] = None

        self._cancel = asyncio.Event()
        self._pending: List[str] = []
        self._emitted: List[str] = []
        self._primed = False
        self._iterated = False
        self._closed = False

    @property
    def text(self) -> str:
        return "".join(self._emitted)

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        if not self._cancel.is_set():
            log.info("Answer stream cancel requested", session_id=self.session_id)
        self._cancel.set()

    def _finish(self, state: QuestionState) -> None:
        if self.state == QuestionState.STREAMING:
            self.state = state
            log.info(
                "Answer stream finished",
                session_id=self.session_id,
                state=state.value,
                chars=len(self.text),
            )

    def _fail(self, error: GenerationFailed) -> None:
        self.error = error
        self._finish(QuestionState.FAILED)
        log.error(
            "Generation failed",
            session_id=self.session_id,
            error_type=error.error_type,
            error=str(error.cause or error),
        )

    async def _next_token(self):
        """Wait for the next upstream token or the cancel signal, whichever comes first."""
        next_task = asyncio.ensure_future(_anext(self._upstream))
        cancel_wait = asyncio.ensure_future(self._cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {next_task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
            )
        except BaseException:
            next_task.cancel()
            raise
        finally:
            cancel_wait.cancel()

        if next_task in done:
            return next_task.result()

        next_task.cancel()
        try:
            await next_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.warning("Upstream error while cancelling", error=str(e))
        return _CANCELLED

    async def _pull(self) -> Optional[str]:
        """Next non-empty token, or None once the stream completed or was cancelled."""
        while True:
            try:
                token = await self._next_token()
            except asyncio.CancelledError:
                self._finish(QuestionState.ABORTED)
                raise
            except GenerationFailed as e:
                self._fail(e)
                raise
            except Exception as e:
                error = classify_generation_error(e, self.model_name)
                self._fail(error)
                raise error from e

            if token is _END:
                self._finish(QuestionState.COMPLETED)
                return None
            if token is _CANCELLED:
                self._finish(QuestionState.ABORTED)
                return None
            if token:
                return token

    async def prime(self) -> None:
        if self._primed or self._iterated:
            return
        self._primed = True
        try:
            token = await self._pull()
        except BaseException:
            await self.aclose()
            raise
        if token is not None:
            self._pending.append(token)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        if self._iterated:
            raise RuntimeError("AnswerStream can only be consumed once")
        self._iterated = True

        try:
            while self._pending:
                if self._cancel.is_set():
                    self._finish(QuestionState.ABORTED)
                    return
                token = self._pending.pop(0)
                self._emitted.append(token)
                yield token

            while self.state == QuestionState.STREAMING:
                if self._cancel.is_set():
                    self._finish(QuestionState.ABORTED)
                    break
                token = await self._pull()
                if token is None:
                    break
                self._emitted.append(token)
                yield token
        except GeneratorExit:
            self._finish(QuestionState.ABORTED)
            raise
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        """Release the upstream stream; safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._finish(QuestionState.ABORTED)

        close = getattr(self._upstream, "aclose", None)
        if close is None:
            return
        try:
            await close()
        except RuntimeError as e:
            # upstream still running after a cancelled __anext__
            log.warning("Upstream stream close failed", error=str(e))


class GenerationStreamer:
    """
    Builds the grounding prompt from retrieved chunks and streams the model's answer.

    No retrieved chunks means no grounding: the fixed not-found reply is
    emitted without calling the model.
    """

    def __init__(self, model_loader, history_limit: int = 10):
        # model_loader provides resolve_model(name) and load_llm(name)
        self.model_loader = model_loader
        self.history_limit = history_limit
        self.prompt = PROMPT_REGISTRY["grounded_qa"]
        self._llms: Dict[str, Any] = {}

    def _llm(self, model_name: str):
        if model_name not in self._llms:
            self._llms[model_name] = self.model_loader.load_llm(model_name)
        return self._llms[model_name]

    def _history(
        self, conversation_history: Optional[Sequence[Union[ChatTurn, dict]]]
    ) -> List[BaseMessage]:
        turns = [
            t if isinstance(t, ChatTurn) else ChatTurn.model_validate(t)
            for t in (conversation_history or [])
        ]
        turns = turns[-self.history_limit:] if self.history_limit else turns
        return [
            HumanMessage(t.content) if t.role == "user" else AIMessage(t.content)
            for t in turns
        ]

    def build_messages(
        self,
        question: str,
        retrieved_chunks: Sequence[RetrievedChunk],
        conversation_history=None,
    ) -> List[BaseMessage]:
        context = build_context(retrieved_chunks)
        context_block = (
            f"DOCUMENT CONTEXT (extracts from uploaded files):\n{context}"
            if context.strip()
            else NO_CONTEXT_BLOCK
        )
        return self.prompt.format_messages(
            context_block=context_block,
            not_found=NOT_FOUND_RESPONSE,
            grounded_prefix=GROUNDED_PREFIX,
            chat_history=self._history(conversation_history),
            input=question,
        )

    async def _stream_llm(self, llm, messages: List[BaseMessage]) -> AsyncIterator[str]:
        async for chunk in llm.astream(messages):
            text = _chunk_text(getattr(chunk, "content", chunk))
            if text:
                yield text

    def answer(
        self,
        session_id: str,
        question: str,
        retrieved_chunks: Sequence[RetrievedChunk],
        conversation_history=None,
        model: Optional[str] = None,
        remaining_quota: Optional[int] = None,
    ) -> AnswerStream:
        model_name = self.model_loader.resolve_model(model)

        if not retrieved_chunks:
            log.info("No grounding available, replying not-found", session_id=session_id)
            return AnswerStream(
                _static_tokens(NOT_FOUND_RESPONSE),
                session_id=session_id,
                model_name=model_name,
                remaining_quota=remaining_quota,
                grounded=False,
            )

        messages = self.build_messages(question, retrieved_chunks, conversation_history)
        log.info(
            "Streaming response",
            session_id=session_id,
            model=model_name,
            context_chunks=len(retrieved_chunks),
        )
        try:
            llm = self._llm(model_name)
        except Exception as e:
            raise classify_generation_error(e, model_name) from e

        return AnswerStream(
            self._stream_llm(llm, messages),
            session_id=session_id,
            model_name=model_name,
            remaining_quota=remaining_quota,
        )
