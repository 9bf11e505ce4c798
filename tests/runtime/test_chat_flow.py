"""
Tests for the ChatFlow facade operations.
"""

import pytest

from chatflow.domain import ErrorCode, InlineData, LoopEventType
from chatflow.exceptions import SummarizeError
from chatflow.runtime.context_budget import TRIM_STATE_KEY

from fakes import (
    RecordingTool,
    build_rounds,
    call,
    collect,
    event_types,
    function_response_ids,
    make_channel,
    model_calls,
    model_text,
    user_text,
)


@pytest.mark.asyncio
async def test_disabled_channel_is_refused(flow, provider, store):
    channel = make_channel(enabled=False)

    events = await collect(flow.send_message("c1", channel, "hi"))

    assert event_types(events) == ["error"]
    assert events[0].code == ErrorCode.CONFIG_DISABLED
    assert not await store.conversation_exists("c1")
    assert provider.requests == []


@pytest.mark.asyncio
async def test_send_message_with_attachment(flow, provider, store, channel):
    provider.add(model_text("nice picture"))
    image = InlineData(mime_type="image/png", data="aGVsbG8=", display_name="a.png")

    await collect(flow.send_message("c1", channel, "look", attachments=[image]))

    history = await store.get_history("c1")
    assert history[0].parts[0].text == "look"
    assert history[0].parts[1].inline_data.display_name == "a.png"


@pytest.mark.asyncio
async def test_keeps_supplied_collaborators(
    flow, provider, registry, store, settings, prompts, channel
):
    assert len(registry) == 0
    assert flow.registry is registry
    assert flow.store is store
    assert flow.settings is settings
    assert flow.prompts is prompts

    tool = RecordingTool("list_files")
    registry.register(tool)
    provider.add(model_calls(call("list_files", "l1")), model_text("done"))

    events = await collect(flow.send_message("c1", channel, "go"))

    assert tool.calls == [{}]
    assert events[-1].type == LoopEventType.COMPLETE


class TestRetry:
    @pytest.mark.asyncio
    async def test_retry_without_history(self, flow, channel):
        events = await collect(flow.retry("c1", channel))

        assert events[-1].code == ErrorCode.NO_HISTORY

    @pytest.mark.asyncio
    async def test_retry_answers_orphaned_calls_first(
        self, flow, provider, registry, store, channel
    ):
        tool = RecordingTool("list_files")
        registry.register(tool)
        await store.add_content("c1", user_text("list", is_user_input=True))
        await store.add_content("c1", model_calls(call("list_files", "l1")))
        provider.add(model_text("done"))

        events = await collect(flow.retry("c1", channel))

        assert event_types(events) == [
            "tools_executing",
            "tool_status",
            "tool_iteration",
            "complete",
        ]
        assert len(tool.calls) == 1
        history = await store.get_history("c1")
        assert function_response_ids(history) == ["l1"]
        # Provider saw the call already paired with its response
        assert provider.requests[0].history[-1].is_function_response

    @pytest.mark.asyncio
    async def test_calls_with_narration_are_not_orphaned(
        self, flow, provider, registry, store, channel
    ):
        tool = RecordingTool("list_files")
        registry.register(tool)
        await store.add_content("c1", user_text("list", is_user_input=True))
        await store.add_content("c1", model_calls(call("list_files", "l1"), text="Listing"))
        provider.add(model_text("done"))

        await collect(flow.retry("c1", channel))

        assert tool.calls == []

    @pytest.mark.asyncio
    async def test_retry_reuses_cached_context(self, flow, provider, store, channel):
        provider.add(model_text("first"), model_text("second"))
        await collect(flow.send_message("c1", channel, "hi"))
        await flow.delete_to_message("c1", 1)

        await collect(flow.retry("c1", channel))

        # Only one user message: treated as the first message, context refreshed
        assert provider.requests[1].dynamic_context == "context #2"

    @pytest.mark.asyncio
    async def test_retry_later_in_conversation_keeps_context(
        self, flow, provider, store, channel
    ):
        provider.add(model_text("a1"), model_text("a2"), model_text("a2 again"))
        await collect(flow.send_message("c1", channel, "q1"))
        await collect(flow.send_message("c1", channel, "q2"))
        await flow.delete_to_message("c1", 3)

        await collect(flow.retry("c1", channel))

        assert provider.requests[2].dynamic_context == provider.requests[1].dynamic_context


class TestEditAndRetry:
    @pytest.mark.asyncio
    async def test_edit_replaces_message_and_truncates(
        self, flow, provider, store, settings, checkpoint_backend, channel
    ):
        settings.checkpoint_after_model_message = True
        provider.add(model_text("a0"), model_text("a1"), model_text("a0 edited"))
        await collect(flow.send_message("c1", channel, "q0"))
        await collect(flow.send_message("c1", channel, "q1"))
        await store.set_custom_metadata("c1", TRIM_STATE_KEY, {"trim_start_index": 2})

        events = await collect(flow.edit_and_retry("c1", channel, 0, "q0 edited"))

        assert events[-1].type == LoopEventType.COMPLETE
        history = await store.get_history("c1")
        assert [m.text for m in history] == ["q0 edited", "a0 edited"]
        assert history[0].is_user_input
        assert await store.get_custom_metadata("c1", TRIM_STATE_KEY) is None
        checkpoints = await checkpoint_backend.list_checkpoints("c1")
        assert [c.message_index for c in checkpoints] == [1]

    @pytest.mark.asyncio
    async def test_edit_refreshes_token_counts(self, flow, provider, store, channel):
        provider.add(model_text("a0"), model_text("again"))
        await collect(flow.send_message("c1", channel, "short"))
        assert (await store.get_message("c1", 0)).token_count_by_channel == {"gemini": 5}

        await collect(flow.edit_and_retry("c1", channel, 0, "a longer question"))

        assert (await store.get_message("c1", 0)).token_count_by_channel == {"gemini": 17}

    @pytest.mark.asyncio
    async def test_edit_errors(self, flow, provider, store, channel):
        provider.add(model_text("a0"))
        await collect(flow.send_message("c1", channel, "q0"))

        events = await collect(flow.edit_and_retry("c1", channel, 10, "x"))
        assert events[-1].code == ErrorCode.MESSAGE_NOT_FOUND

        events = await collect(flow.edit_and_retry("c1", channel, 1, "x"))
        assert events[-1].code == ErrorCode.INVALID_MESSAGE_ROLE


@pytest.mark.asyncio
async def test_delete_to_message(flow, provider, store, settings, checkpoint_backend, channel):
    settings.checkpoint_before_user_message = True
    provider.add(model_text("a0"), model_text("a1"))
    await collect(flow.send_message("c1", channel, "q0"))
    await collect(flow.send_message("c1", channel, "q1"))
    await store.set_custom_metadata("c1", TRIM_STATE_KEY, {"trim_start_index": 2})

    deleted = await flow.delete_to_message("c1", 2)

    assert deleted == 2
    assert len(await store.get_history("c1")) == 2
    assert [c.message_index for c in await checkpoint_backend.list_checkpoints("c1")] == [0]
    assert await store.get_custom_metadata("c1", TRIM_STATE_KEY) is None


class TestContinueWithAnnotation:
    @pytest.mark.asyncio
    async def test_annotation_appended(self, flow, provider, registry, store, channel):
        registry.register(RecordingTool("list_files"))
        await store.add_content("c1", user_text("go", is_user_input=True, turn_dynamic_context="ctx"))
        await store.add_content("c1", model_calls(call("list_files", "l1")))
        await collect(flow.loop.execute_orphaned_calls("c1", channel))
        provider.add(model_text("thanks"))

        events = await collect(flow.continue_with_annotation("c1", channel, " looks good "))

        assert events[-1].type == LoopEventType.COMPLETE
        history = await store.get_history("c1")
        assert history[3].text == "looks good"
        assert provider.requests[0].dynamic_context == "ctx"

    @pytest.mark.asyncio
    async def test_blank_annotation_is_skipped(self, flow, provider, store, channel):
        await store.add_content("c1", user_text("go", is_user_input=True))
        provider.add(model_text("ok"))

        await collect(flow.continue_with_annotation("c1", channel, "   "))

        history = await store.get_history("c1")
        assert [m.text for m in history] == ["go", "ok"]


class TestManualSummarize:
    @pytest.mark.asyncio
    async def test_repeated_summaries_stay_exclusive(self, flow, provider, store, channel):
        for message in build_rounds(5):
            await store.add_content("c1", message)
        await store.set_custom_metadata("c1", TRIM_STATE_KEY, {"trim_start_index": 4})
        provider.add(model_text("first summary"))

        first = await flow.summarize_context("c1", channel)

        assert first.insert_index == 6
        assert await store.get_custom_metadata("c1", TRIM_STATE_KEY) is None

        for message in build_rounds(2):
            await store.add_content("c1", message)
        provider.add(model_text("second summary"))

        second = await flow.summarize_context("c1", channel)

        history = await store.get_history("c1")
        summaries = [i for i, m in enumerate(history) if m.is_summary]
        assert summaries == [second.insert_index]
        assert second.deleted_summaries == 1
        assert "second summary" in history[second.insert_index].text

    @pytest.mark.asyncio
    async def test_not_enough_rounds(self, flow, store, channel):
        for message in build_rounds(2):
            await store.add_content("c1", message)

        with pytest.raises(SummarizeError) as exc_info:
            await flow.summarize_context("c1", channel)

        assert exc_info.value.code == "NOT_ENOUGH_ROUNDS"
