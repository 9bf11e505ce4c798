import pytest
import pytest_asyncio

from chatflow.config.schema import HistoryOptions
from chatflow.domain import Content, ContentPart, MessageRole, UsageMetadata
from chatflow.providers.storage import InMemoryConversationStore
from chatflow.runtime.context_budget import (
    TRIM_STATE_KEY,
    ContextBudgetManager,
    find_last_summary_index,
    identify_round_starts,
)
from chatflow.runtime.prompt import StaticPromptProvider

from fakes import FakeTokenCounter, build_rounds, make_channel, model_text, user_text


@pytest_asyncio.fixture
async def budget_store():
    store = InMemoryConversationStore()
    for message in build_rounds(5):
        await store.add_content("c1", message)
    return store


def make_budget(store, system_prompt=""):
    return ContextBudgetManager(store, FakeTokenCounter(), StaticPromptProvider(system_prompt))


def test_round_helpers():
    history = build_rounds(2) + [user_text("summary", is_summary=True)] + build_rounds(1)

    assert find_last_summary_index(history) == 4
    assert find_last_summary_index(build_rounds(1)) == -1
    assert identify_round_starts(history) == [0, 2, 4, 5]
    assert identify_round_starts(history, 5) == [5]


class TestWithoutLimits:
    @pytest.mark.asyncio
    async def test_full_history(self, budget_store):
        result = await make_budget(budget_store).prepare("c1", make_channel())

        assert len(result.history) == 10
        assert result.trim_start_index == 0
        assert not result.needs_auto_summarize

    @pytest.mark.asyncio
    async def test_starts_at_last_summary(self):
        store = InMemoryConversationStore()
        history = (
            build_rounds(2)
            + [user_text("summary", is_summary=True, token_count_by_channel={"gemini": 50})]
            + build_rounds(1)
        )
        for message in history:
            await store.add_content("c1", message)

        result = await make_budget(store).prepare("c1", make_channel())

        assert result.trim_start_index == 4
        assert [m.text for m in result.history] == ["summary", "question 0", "answer 0"]

    @pytest.mark.asyncio
    async def test_empty_history(self):
        store = InMemoryConversationStore()
        await store.create_conversation("c1")

        result = await make_budget(store).prepare("c1", make_channel())

        assert result.history == []

    @pytest.mark.asyncio
    async def test_precounts_user_messages(self):
        store = InMemoryConversationStore()
        await store.add_content("c1", user_text("hello"))
        await store.add_content("c1", model_text("hi there"))

        await make_budget(store).prepare("c1", make_channel())

        first, second = await store.get_history("c1")
        assert first.token_count_by_channel == {"gemini": 5}
        assert first.estimated_token_count == 5
        assert second.token_count_by_channel == {}


class TestAutoSummarize:
    @pytest.mark.asyncio
    async def test_flags_overflow_without_trimming(self, budget_store):
        channel = make_channel(auto_summarize_enabled=True, context_threshold=500)

        result = await make_budget(budget_store, "system").prepare(
            "c1", channel, dynamic_context="ctx"
        )

        assert result.needs_auto_summarize
        assert result.estimated_tokens == 1009
        assert result.threshold == 500
        assert len(result.history) == 10
        assert await budget_store.get_custom_metadata("c1", TRIM_STATE_KEY) is None

    @pytest.mark.asyncio
    async def test_within_threshold(self, budget_store):
        channel = make_channel(auto_summarize_enabled=True, context_threshold="90%", max_context_tokens=10000)

        result = await make_budget(budget_store).prepare("c1", channel)

        assert not result.needs_auto_summarize
        assert result.threshold == 9000


class TestTrimming:
    @pytest.mark.asyncio
    async def test_drops_oldest_rounds_and_persists(self, budget_store):
        channel = make_channel(
            context_threshold_enabled=True, context_threshold=700, context_trim_extra_cut=300
        )

        result = await make_budget(budget_store).prepare("c1", channel)

        assert result.trim_start_index == 6
        assert result.estimated_tokens == 400
        assert [m.text for m in result.history][0] == "question 3"
        assert await budget_store.get_custom_metadata("c1", TRIM_STATE_KEY) == {
            "trim_start_index": 6
        }

    @pytest.mark.asyncio
    async def test_reuses_saved_start_while_it_fits(self, budget_store):
        channel = make_channel(
            context_threshold_enabled=True, context_threshold=700, context_trim_extra_cut=300
        )
        budget = make_budget(budget_store)
        await budget.prepare("c1", channel)
        for message in build_rounds(1):
            await budget_store.add_content("c1", message)

        result = await budget.prepare("c1", channel)

        assert result.trim_start_index == 6
        assert result.estimated_tokens == 600

    @pytest.mark.asyncio
    async def test_fitting_history_clears_state(self, budget_store):
        await budget_store.set_custom_metadata("c1", TRIM_STATE_KEY, {"trim_start_index": 4})
        channel = make_channel(context_threshold_enabled=True, context_threshold=5000)

        result = await make_budget(budget_store).prepare("c1", channel)

        assert result.trim_start_index == 0
        assert await budget_store.get_custom_metadata("c1", TRIM_STATE_KEY) is None

    @pytest.mark.asyncio
    async def test_stale_state_beyond_history_is_discarded(self, budget_store):
        await budget_store.set_custom_metadata("c1", TRIM_STATE_KEY, {"trim_start_index": 40})

        await make_budget(budget_store).prepare("c1", make_channel())

        assert await budget_store.get_custom_metadata("c1", TRIM_STATE_KEY) is None

    @pytest.mark.asyncio
    async def test_current_round_is_always_kept(self):
        store = InMemoryConversationStore()
        for message in build_rounds(3, tokens_per_message=1000):
            await store.add_content("c1", message)
        channel = make_channel(context_threshold_enabled=True, context_threshold=700)

        result = await make_budget(store).prepare("c1", channel)

        assert result.trim_start_index == 4
        assert result.estimated_tokens == 2000

    @pytest.mark.asyncio
    async def test_single_round_is_not_trimmed(self):
        store = InMemoryConversationStore()
        for message in build_rounds(1, tokens_per_message=1000):
            await store.add_content("c1", message)
        channel = make_channel(context_threshold_enabled=True, context_threshold=700)

        result = await make_budget(store).prepare("c1", channel)

        assert result.trim_start_index == 0
        assert await store.get_custom_metadata("c1", TRIM_STATE_KEY) is None


class TestModelTokens:
    @pytest_asyncio.fixture
    async def thinking_store(self):
        store = InMemoryConversationStore()
        await store.add_content("c1", user_text("q", token_count_by_channel={"gemini": 1}))
        await store.add_content(
            "c1",
            Content(
                role=MessageRole.MODEL,
                parts=[ContentPart(text="hmm", thought=True), ContentPart(text="answer")],
                usage_metadata=UsageMetadata(
                    prompt_token_count=900,
                    total_token_count=950,
                    thoughts_token_count=20,
                    candidates_token_count=999,
                ),
            ),
        )
        return store

    @pytest.mark.asyncio
    async def test_output_derived_from_totals(self, thinking_store):
        channel = make_channel(auto_summarize_enabled=True, context_threshold=5000)

        result = await make_budget(thinking_store).prepare("c1", channel)

        assert result.estimated_tokens == 31

    @pytest.mark.asyncio
    async def test_current_thoughts_counted_when_sent(self, thinking_store):
        channel = make_channel(auto_summarize_enabled=True, context_threshold=5000)

        result = await make_budget(thinking_store).prepare(
            "c1", channel, HistoryOptions(send_current_thoughts=True)
        )

        assert result.estimated_tokens == 51
        assert result.history[1].parts[0].thought
