"""Shared test fixtures."""
import pytest
from unittest.mock import AsyncMock
from payvat.llm.base import LLMClient, LLMResponse
from payvat.models.documents import AuthUser
from payvat.prompts.registry import PromptRegistry
from payvat.telemetry import RecordingEmitter
from tests.factories import FakeDocumentStore, make_document, make_settings


@pytest.fixture
def mock_settings():
    """Test settings with AI disabled and an in-memory database URL."""
    return make_settings()


@pytest.fixture
def emitter():
    return RecordingEmitter()


@pytest.fixture
def user():
    return AuthUser(id="user-1", email="owner@example.ie")


@pytest.fixture
def store():
    return FakeDocumentStore(make_document())


@pytest.fixture
def mock_llm_client():
    """Create a mock LLM client."""
    client = AsyncMock(spec=LLMClient)
    client.complete_text.return_value = LLMResponse(
        content='{"test": "response"}',
        model="mock-model",
        input_tokens=100,
        output_tokens=50,
    )
    client.complete_vision.return_value = LLMResponse(
        content='{"test": "response"}',
        model="mock-model",
        input_tokens=200,
        output_tokens=100,
    )
    return client


@pytest.fixture
def prompt_registry():
    return PromptRegistry()
