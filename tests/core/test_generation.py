"""
Tests for grounded answer generation and the AnswerStream lifecycle
(completion, failure classification, cancellation).
"""

import asyncio

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from session_rag.exception.custom_exception import GenerationFailed
from session_rag.prompts.prompt_library import NOT_FOUND_RESPONSE
from session_rag.schemas import ChunkMetadata, QuestionState, RetrievedChunk
from session_rag.src.document_chat.generation import (
    AnswerStream,
    GenerationStreamer,
    build_context,
    classify_generation_error,
)

from conftest import FakeChatModel, FakeModelLoader


def _chunk(content, page=None):
    return RetrievedChunk(
        content=content,
        metadata=ChunkMetadata(
            tenant_id="S", source_name="report.pdf", content_type="pdf", page=page
        ),
    )


async def _collect(stream):
    return [token async for token in stream]


class _StatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


class TestClassifyGenerationError:
    @pytest.mark.parametrize(
        "exc,error_type,status",
        [
            (Exception("429 RESOURCE_EXHAUSTED: quota exceeded"), "quota_exceeded", 429),
            (Exception("Rate limit reached for requests"), "rate_limited", 429),
            (_StatusError("slow down", 429), "rate_limited", 429),
            (Exception("API key not valid"), "auth_error", 500),
            (_StatusError("forbidden", 403), "auth_error", 500),
            (Exception("models/gemini-x is not found"), "model_error", 503),
            (Exception("connection reset by peer"), "generic_error", 500),
        ],
    )
    def test_sub_kinds(self, exc, error_type, status):
        error = classify_generation_error(exc, "gemini-2.5-flash")

        assert error.error_type == error_type
        assert error.status_code == status
        assert error.cause is exc

    def test_model_name_only_for_actionable_kinds(self):
        rate = classify_generation_error(Exception("rate limit"), "gemini-2.5-flash")
        auth = classify_generation_error(Exception("api key"), "gemini-2.5-flash")

        assert rate.to_dict()["modelName"] == "gemini-2.5-flash"
        assert "modelName" not in auth.to_dict()

    def test_generation_failed_passes_through(self):
        failure = GenerationFailed("boom", "model_error")

        assert classify_generation_error(failure) is failure


class TestBuildMessages:
    def test_context_labels_pages(self):
        context = build_context([_chunk("alpha", page=2), _chunk("beta")])

        assert context == "Context #1 (Page 2):\nalpha\n\nContext #2 (Page ?):\nbeta"

    def test_system_prompt_embeds_context_and_history(self, streamer):
        history = [
            {"role": "user", "content": "Earlier question"},
            {"role": "assistant", "content": "Earlier answer"},
        ]

        messages = streamer.build_messages("What now?", [_chunk("alpha", page=2)], history)

        assert isinstance(messages[0], SystemMessage)
        assert "Context #1 (Page 2):\nalpha" in messages[0].content
        assert NOT_FOUND_RESPONSE in messages[0].content
        assert isinstance(messages[1], HumanMessage)
        assert isinstance(messages[2], AIMessage)
        assert isinstance(messages[-1], HumanMessage)
        assert messages[-1].content == "User Question: What now?"

    def test_history_is_capped(self, model_loader):
        streamer = GenerationStreamer(model_loader, history_limit=2)
        history = [{"role": "user", "content": f"q{i}"} for i in range(5)]

        messages = streamer.build_messages("now", [_chunk("x")], history)

        assert [m.content for m in messages[1:-1]] == ["q3", "q4"]


class TestGenerationStreamer:
    async def test_no_chunks_replies_not_found_without_model(self, streamer, model_loader, chat_model):
        stream = streamer.answer("S", "Who wrote it?", [])

        assert await _collect(stream) == [NOT_FOUND_RESPONSE]
        assert stream.grounded is False
        assert stream.state == QuestionState.COMPLETED
        assert model_loader.loaded == []
        assert chat_model.calls == []

    async def test_tokens_arrive_in_order(self, streamer, chat_model):
        stream = streamer.answer("S", "q", [_chunk("ctx", page=1)], remaining_quota=7)

        tokens = await _collect(stream)

        assert tokens == ["From your documents:", " the", " answer."]
        assert stream.text == "From your documents: the answer."
        assert stream.remaining_quota == 7
        assert stream.state == QuestionState.COMPLETED
        assert chat_model.closed

    async def test_disallowed_model_falls_back_to_default(self, streamer, model_loader):
        stream = streamer.answer("S", "q", [_chunk("ctx")], model="gpt-4")
        await _collect(stream)

        assert stream.model_name == "gemini-2.5-flash-lite"
        assert model_loader.loaded == ["gemini-2.5-flash-lite"]

    async def test_llm_is_reused_per_model(self, streamer, model_loader):
        await _collect(streamer.answer("S", "q", [_chunk("ctx")]))
        await _collect(streamer.answer("S", "q", [_chunk("ctx")]))

        assert model_loader.loaded == ["gemini-2.5-flash-lite"]

    async def test_list_content_parts_are_flattened(self, model_loader):
        class PartsModel(FakeChatModel):
            async def astream(self, messages):
                from langchain_core.messages import AIMessageChunk

                yield AIMessageChunk(content=[{"type": "text", "text": "part one"}, " two"])

        streamer = GenerationStreamer(FakeModelLoader(PartsModel()))

        assert await _collect(streamer.answer("S", "q", [_chunk("ctx")])) == ["part one two"]


class TestAnswerStreamFailures:
    async def test_prime_surfaces_error_before_first_token(self):
        model = FakeChatModel(error=Exception("Rate limit exceeded"))
        streamer = GenerationStreamer(FakeModelLoader(model))
        stream = streamer.answer("S", "q", [_chunk("ctx")])

        with pytest.raises(GenerationFailed) as exc_info:
            await stream.prime()

        assert exc_info.value.error_type == "rate_limited"
        assert stream.state == QuestionState.FAILED
        assert stream.text == ""

    async def test_failure_after_first_token_keeps_emitted_text(self):
        model = FakeChatModel(tokens=["first", " second"], error=Exception("boom"), fail_after=1)
        streamer = GenerationStreamer(FakeModelLoader(model))
        stream = streamer.answer("S", "q", [_chunk("ctx")])
        await stream.prime()

        received = []
        with pytest.raises(GenerationFailed):
            async for token in stream:
                received.append(token)

        assert received == ["first"]
        assert stream.text == "first"
        assert stream.state == QuestionState.FAILED
        assert stream.error.error_type == "generic_error"

    async def test_stream_is_single_pass(self, streamer):
        stream = streamer.answer("S", "q", [])
        await _collect(stream)

        with pytest.raises(RuntimeError):
            await _collect(stream)


class TestAnswerStreamCancellation:
    async def test_cancel_while_waiting_releases_upstream(self):
        model = FakeChatModel(tokens=["first"], hang=True)
        stream = GenerationStreamer(FakeModelLoader(model)).answer("S", "q", [_chunk("ctx")])
        received = []

        async def consume():
            async for token in stream:
                received.append(token)

        task = asyncio.create_task(consume())
        while not received:
            await asyncio.sleep(0.01)

        stream.cancel()
        await asyncio.wait_for(task, timeout=2)

        assert received == ["first"]
        assert stream.cancelled
        assert stream.state == QuestionState.ABORTED
        assert model.closed

    async def test_cancel_before_iteration_emits_nothing(self, streamer):
        stream = streamer.answer("S", "q", [_chunk("ctx")])
        await stream.prime()

        stream.cancel()

        assert await _collect(stream) == []
        assert stream.state == QuestionState.ABORTED

    async def test_consumer_stopping_early_aborts(self, streamer, chat_model):
        stream = streamer.answer("S", "q", [_chunk("ctx")])

        iterator = stream.__aiter__()
        assert await iterator.__anext__() == "From your documents:"
        await iterator.aclose()

        assert stream.state == QuestionState.ABORTED
        assert stream.text == "From your documents:"

    async def test_aclose_is_idempotent(self):
        async def tokens():
            yield "a"

        stream = AnswerStream(tokens(), session_id="S")
        await stream.aclose()
        await stream.aclose()

        assert stream.state == QuestionState.ABORTED
