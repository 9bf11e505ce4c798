import pytest
import pytest_asyncio

from chatflow.config.settings import ChatflowSettings, SummarizeConfig
from chatflow.domain import (
    Content,
    ContentPart,
    FunctionCall,
    FunctionResponse,
    MessageRole,
    StreamChunk,
    UsageMetadata,
)
from chatflow.exceptions import ProviderError, SummarizeError
from chatflow.providers.storage import InMemoryConversationStore
from chatflow.runtime.control import AbortSignal
from chatflow.runtime.summarizer import Summarizer, clean_messages_for_summary

from fakes import ScriptedProvider, build_rounds, make_channel, model_text


@pytest_asyncio.fixture
async def rounds_store():
    store = InMemoryConversationStore()
    for message in build_rounds(4):
        await store.add_content("c1", message)
    return store


def make_summarizer(store, provider, **summarize):
    settings = ChatflowSettings(summarize=SummarizeConfig(**summarize))
    return Summarizer(store, provider, settings)


class TestSummarize:
    @pytest.mark.asyncio
    async def test_collapses_old_rounds(self, rounds_store):
        provider = ScriptedProvider(
            [
                model_text(
                    "They asked four questions.",
                    usage_metadata=UsageMetadata(prompt_token_count=800, candidates_token_count=50),
                )
            ]
        )

        result = await make_summarizer(rounds_store, provider).summarize("c1", make_channel())

        request = provider.requests[0]
        assert request.skip_tools
        assert len(request.history) == 5
        assert request.history[-1].text.startswith("Please summarize")

        assert result.insert_index == 4
        assert result.summarized_message_count == 4
        assert (result.before_token_count, result.after_token_count) == (800, 50)

        history = await rounds_store.get_history("c1")
        assert len(history) == 9
        summary = history[4]
        assert summary.is_summary
        assert summary.role == MessageRole.USER
        assert summary.text == "[Conversation Summary]\n\nThey asked four questions."

    @pytest.mark.asyncio
    async def test_keep_zero_summarizes_everything(self, rounds_store):
        provider = ScriptedProvider([model_text("all of it")])

        result = await make_summarizer(rounds_store, provider, keep_recent_rounds=0).summarize(
            "c1", make_channel()
        )

        assert result.insert_index == 8
        assert result.summarized_message_count == 8

    @pytest.mark.asyncio
    async def test_separate_model(self, rounds_store):
        provider = ScriptedProvider([model_text("s")])
        summarizer = make_summarizer(
            rounds_store, provider, use_separate_model=True, summarize_model="small-model"
        )

        await summarizer.summarize("c1", make_channel())

        assert provider.requests[0].model_override == "small-model"

    @pytest.mark.asyncio
    async def test_streamed_summary(self, rounds_store):
        provider = ScriptedProvider(
            [[StreamChunk(delta=[ContentPart(text="part one, ")]), StreamChunk(delta=[ContentPart(text="part two")])]]
        )

        result = await make_summarizer(rounds_store, provider).summarize("c1", make_channel())

        assert result.summary.text.endswith("part one, part two")


class TestSummarizeErrors:
    @pytest.mark.asyncio
    async def test_empty_summary(self, rounds_store):
        provider = ScriptedProvider([model_text("   ")])

        with pytest.raises(SummarizeError) as exc_info:
            await make_summarizer(rounds_store, provider).summarize("c1", make_channel())

        assert exc_info.value.code == "EMPTY_SUMMARY"
        assert len(await rounds_store.get_history("c1")) == 8

    @pytest.mark.asyncio
    async def test_provider_failure(self, rounds_store):
        provider = ScriptedProvider([ProviderError("rate limited")])

        with pytest.raises(SummarizeError) as exc_info:
            await make_summarizer(rounds_store, provider).summarize("c1", make_channel())

        assert exc_info.value.code == "PROVIDER_ERROR"
        assert exc_info.value.message == "rate limited"

    @pytest.mark.asyncio
    async def test_provider_cancel(self, rounds_store):
        provider = ScriptedProvider([ProviderError("stopped", cancelled=True)])

        with pytest.raises(SummarizeError) as exc_info:
            await make_summarizer(rounds_store, provider).summarize("c1", make_channel())

        assert exc_info.value.code == "ABORTED"

    @pytest.mark.asyncio
    async def test_summarize_signal_aborts_without_writing(self, rounds_store):
        provider = ScriptedProvider([model_text("too late")])
        signal = AbortSignal()
        signal.abort()

        with pytest.raises(SummarizeError) as exc_info:
            await make_summarizer(rounds_store, provider).summarize(
                "c1", make_channel(), summarize_signal=signal
            )

        assert exc_info.value.code == "ABORTED"
        assert not any(m.is_summary for m in await rounds_store.get_history("c1"))

    @pytest.mark.asyncio
    async def test_turn_signal_keeps_no_merged_children(self, rounds_store):
        turn_signal = AbortSignal()
        provider = ScriptedProvider([ProviderError("rate limited"), model_text("summary")])
        summarizer = make_summarizer(rounds_store, provider)

        with pytest.raises(SummarizeError):
            await summarizer.summarize("c1", make_channel(), turn_signal)
        await summarizer.summarize("c1", make_channel(), turn_signal)

        assert turn_signal._children == []


def test_clean_messages_for_summary():
    messages = [
        Content(role=MessageRole.MODEL, parts=[ContentPart(text="private", thought=True)]),
        Content(
            role=MessageRole.MODEL,
            parts=[
                ContentPart(
                    function_call=FunctionCall(
                        id="1", name="apply_diff", args={"path": "a.py", "rejected": True}
                    )
                )
            ],
        ),
        Content(
            role=MessageRole.USER,
            is_function_response=True,
            parts=[
                ContentPart(
                    function_response=FunctionResponse(
                        id="1", name="apply_diff", response={"success": True, "diffId": "d-1"}
                    )
                )
            ],
        ),
    ]

    cleaned = clean_messages_for_summary(messages)

    assert len(cleaned) == 2
    assert cleaned[0].parts[0].function_call.args == {"path": "a.py"}
    assert cleaned[1].parts[0].function_response.response == {"success": True}
    # Originals untouched
    assert messages[1].parts[0].function_call.args["rejected"] is True
