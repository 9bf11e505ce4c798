import pytest

from chatflow.config.settings import ChatflowSettings
from chatflow.providers.checkpoint import InMemoryCheckpointBackend
from chatflow.providers.storage import InMemoryConversationStore
from chatflow.providers.tools import ToolRegistry
from chatflow.runtime.chat_flow import ChatFlow
from chatflow.runtime.prompt import StaticPromptProvider

from fakes import FakeTokenCounter, ScriptedProvider, make_channel


@pytest.fixture
def settings():
    return ChatflowSettings(
        max_tool_iterations=20,
        tool_auto_exec={"delete_file": False, "write_file": False},
    )


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def registry():
    return ToolRegistry()


@pytest.fixture
def token_counter():
    return FakeTokenCounter()


@pytest.fixture
def channel():
    return make_channel()


@pytest.fixture
def checkpoint_backend():
    return InMemoryCheckpointBackend()


@pytest.fixture
def prompts():
    counter = {"n": 0}

    async def dynamic_context(conversation_id: str) -> str:
        counter["n"] += 1
        return f"context #{counter['n']}"

    return StaticPromptProvider("You are a coding assistant.", dynamic_context)


@pytest.fixture
def flow(provider, registry, store, settings, checkpoint_backend, token_counter, prompts):
    return ChatFlow(
        provider=provider,
        registry=registry,
        store=store,
        settings=settings,
        checkpoint_backend=checkpoint_backend,
        token_counter=token_counter,
        prompts=prompts,
    )
