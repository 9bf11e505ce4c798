import pytest

from chatflow.config.schema import (
    DEFAULT_MAX_CONTEXT_TOKENS,
    ChannelConfig,
    ChannelType,
    ModelInfo,
    calculate_threshold,
)


@pytest.mark.parametrize(
    "threshold, expected",
    [
        (5000, 5000),
        ("50%", 50000),
        ("100%", 100000),
        ("0%", 80000),
        ("150%", 80000),
        ("abc%", 80000),
        ("half", 80000),
    ],
)
def test_calculate_threshold(threshold, expected):
    assert calculate_threshold(threshold, 100000) == expected


class TestContextWindow:
    def test_explicit_max_wins(self):
        channel = ChannelConfig(
            id="c",
            model="big",
            max_context_tokens=32000,
            models=[ModelInfo(id="big", context_window=200000)],
        )

        assert channel.resolve_max_context_tokens() == 32000

    def test_model_context_window(self):
        channel = ChannelConfig(
            id="c",
            model="big",
            models=[
                ModelInfo(id="big", context_window=200000),
                ModelInfo(id="small", context_window=8000),
            ],
        )

        assert channel.resolve_max_context_tokens() == 200000
        assert channel.resolve_max_context_tokens("small") == 8000
        assert channel.resolve_threshold("small") == 6400

    def test_default(self):
        channel = ChannelConfig(id="c", model="unknown")

        assert channel.resolve_max_context_tokens() == DEFAULT_MAX_CONTEXT_TOKENS
        assert channel.resolve_extra_cut() == 0


def test_multimodal_function_response_support():
    assert ChannelConfig(id="g", type=ChannelType.GEMINI).supports_multimodal_function_response()
    assert ChannelConfig(id="a", type=ChannelType.ANTHROPIC).supports_multimodal_function_response()
    assert not ChannelConfig(id="o", type=ChannelType.OPENAI).supports_multimodal_function_response()


def test_channel_from_dict():
    channel = ChannelConfig.model_validate(
        {"id": "x", "type": "openai-responses", "tool_mode": "xml", "context_threshold": "75%"}
    )

    assert channel.type == ChannelType.OPENAI_RESPONSES
    assert channel.tool_mode.value == "xml"
    assert channel.resolve_threshold() == 96000
